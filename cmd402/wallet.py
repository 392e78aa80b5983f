"""Wallet session projection and providers.

The console core never owns a wallet. It reads the current
:class:`WalletSession` from a provider, asks the provider to connect, and may
subscribe to changes so that an external disconnect is observed.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from .config import NetworkConfig
from .rpc_client import EthRPCClient, RPCError, RPCTransportError

logger = logging.getLogger(__name__)

METHOD_NOT_FOUND = -32601


class WalletError(RuntimeError):
    """Raised when the wallet cannot be connected."""


@dataclass(frozen=True)
class WalletSession:
    address: str
    chain_id: int
    connected: bool = True


SessionListener = Callable[[Optional[WalletSession]], None]


def is_connected(session: WalletSession | None) -> bool:
    return session is not None and session.connected and bool(session.address)


class WalletProvider:
    """Holds the active session and notifies subscribers when it changes."""

    def __init__(self) -> None:
        self._session: WalletSession | None = None
        self._listeners: List[SessionListener] = []

    def current(self) -> WalletSession | None:
        return self._session

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register ``listener``; the returned callable unregisters it."""

        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, session: WalletSession | None) -> None:
        if session == self._session:
            return
        self._session = session
        for listener in list(self._listeners):
            try:
                listener(session)
            except Exception:  # listener bugs must not break the provider
                logger.exception("Wallet session listener failed")

    async def connect(self) -> WalletSession:
        raise NotImplementedError

    async def disconnect(self) -> None:
        self._publish(None)

    async def refresh(self) -> WalletSession | None:
        return self.current()


class RPCWalletProvider(WalletProvider):
    """Wallet backed by a node or signer that manages accounts over JSON-RPC.

    ``eth_requestAccounts`` prompts signers such as Frame for approval; plain
    dev nodes only implement ``eth_accounts``, which is used as a fallback.
    """

    def __init__(self, rpc: EthRPCClient, config: NetworkConfig) -> None:
        super().__init__()
        self.rpc = rpc
        self.config = config

    async def _accounts(self, *, request: bool) -> list[str]:
        try:
            if request:
                try:
                    return await asyncio.to_thread(self.rpc.eth_requestAccounts)
                except RPCError as exc:
                    if exc.code != METHOD_NOT_FOUND:
                        raise
                    logger.debug("eth_requestAccounts unsupported; falling back to eth_accounts")
            return await asyncio.to_thread(self.rpc.eth_accounts)
        except RPCError as exc:
            raise WalletError(exc.message) from exc
        except RPCTransportError as exc:
            raise WalletError(str(exc)) from exc

    async def connect(self) -> WalletSession:
        accounts = await self._accounts(request=True)
        if not accounts:
            raise WalletError("No accounts available from the wallet endpoint")
        try:
            chain_id = await asyncio.to_thread(self.rpc.eth_chainId)
        except (RPCError, RPCTransportError) as exc:
            raise WalletError(f"Could not read chain id: {exc}") from exc
        if chain_id != self.config.chain_id:
            raise WalletError(
                f"Wallet is on chain {chain_id}, expected {self.config.chain_id} ({self.config.chain_name})"
            )
        session = WalletSession(address=accounts[0], chain_id=chain_id)
        logger.info("Wallet connected: %s on chain %s", session.address, chain_id)
        self._publish(session)
        return session

    async def refresh(self) -> WalletSession | None:
        """Re-read accounts so a disconnect made elsewhere is noticed."""

        session = self.current()
        if session is None:
            return None
        try:
            accounts = await self._accounts(request=False)
        except WalletError as exc:
            logger.warning("Wallet refresh failed: %s", exc)
            return session
        if session.address.lower() not in {account.lower() for account in accounts}:
            logger.info("Wallet %s is no longer available", session.address)
            self._publish(None)
        return self.current()
