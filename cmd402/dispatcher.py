"""Command dispatcher: turns one submitted line into transcript output.

Only one line is ever in flight. :meth:`CommandDispatcher.submit` flips the
state away from ``IDLE`` before its first suspension point, so a concurrent
submission observes ``busy`` and is dropped without touching the transcript
or the history.
"""

from __future__ import annotations

import enum
import logging
from typing import Awaitable, Callable, Dict, List

from .config import NetworkConfig
from .errors import DEFAULT_MESSAGES, ClassifiedError, ErrorCategory, classify_fault
from .ledger import LedgerFault, RemoteLedgerClient
from .mint import MintOrchestrator, MintPhase
from .transcript import HELP_HINT, CommandHistory, Transcript
from .units import format_units, short_hex
from .wallet import WalletError, WalletProvider, WalletSession, is_connected

logger = logging.getLogger(__name__)

NOT_CONNECTED_MESSAGE = DEFAULT_MESSAGES[ErrorCategory.NOT_CONNECTED]


class DispatchState(str, enum.Enum):
    IDLE = "idle"
    DISPATCHING = "dispatching"
    EXECUTING = "executing"


def parse_keyword(raw: str) -> tuple[str, List[str]]:
    """Return the lower-cased command keyword and any trailing arguments."""

    tokens = raw.split()
    if not tokens:
        return "", []
    return tokens[0].lower(), tokens[1:]


Action = Callable[[List[str]], Awaitable[None]]


class CommandDispatcher:
    def __init__(
        self,
        transcript: Transcript,
        history: CommandHistory,
        wallet: WalletProvider,
        ledger: RemoteLedgerClient,
        orchestrator: MintOrchestrator,
        config: NetworkConfig,
    ) -> None:
        self.transcript = transcript
        self.history = history
        self.wallet = wallet
        self.ledger = ledger
        self.orchestrator = orchestrator
        self.config = config
        self._state = DispatchState.IDLE
        self._actions: Dict[str, Action] = {
            "connect": self._cmd_connect,
            "mint": self._cmd_mint,
            "balance": self._cmd_balance,
            "nfts": self._cmd_nfts,
            "clear": self._cmd_clear,
            "help": self._cmd_help,
        }

    @property
    def state(self) -> DispatchState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._state is not DispatchState.IDLE

    @property
    def keywords(self) -> tuple[str, ...]:
        return tuple(self._actions)

    def help_catalogue(self) -> List[tuple[str, str]]:
        symbol = self.config.currency_symbol
        return [
            ("connect", f"Connect your wallet to {self.config.chain_name} chain"),
            ("mint", f"Mint a new NFT (requires {symbol} payment)"),
            ("balance", f"Check your {symbol} and {self.config.native_symbol} balances"),
            ("nfts", "Display your NFT collection"),
            ("clear", "Clear terminal screen"),
            ("help", "Show this help message"),
        ]

    async def submit(self, raw: str) -> bool:
        """Run one line of input; returns ``False`` when it was ignored."""

        if self.busy:
            logger.debug("Ignoring submission while a command is running: %r", raw)
            return False
        text = raw.strip()
        if not text:
            return False

        self._state = DispatchState.DISPATCHING
        try:
            self.transcript.command(f"> {text}")
            self.history.push(text)
            keyword, args = parse_keyword(text)
            action = self._actions.get(keyword)
            if action is None:
                self.transcript.error(f"Command not found: {keyword}")
                self.transcript.output(HELP_HINT)
                return True
            self._state = DispatchState.EXECUTING
            logger.debug("Executing %s", keyword)
            await action(args)
        except Exception as exc:
            logger.error("Command %r failed: %s", text, exc, exc_info=logger.isEnabledFor(logging.DEBUG))
            message = exc.human_message if isinstance(exc, ClassifiedError) else str(exc)
            self.transcript.error(f"Error: {message or type(exc).__name__}")
            self.transcript.output()
        finally:
            self._state = DispatchState.IDLE
        return True

    # Helpers --------------------------------------------------------------

    def _connected_session(self) -> WalletSession | None:
        session = self.wallet.current()
        if not is_connected(session):
            self.transcript.error(NOT_CONNECTED_MESSAGE)
            return None
        return session

    async def _still_connected(self, session: WalletSession) -> bool:
        current = await self.wallet.refresh()
        if is_connected(current) and current.address.lower() == session.address.lower():
            return True
        self.transcript.error(NOT_CONNECTED_MESSAGE)
        return False

    # Actions --------------------------------------------------------------

    async def _cmd_help(self, _args: List[str]) -> None:
        self.transcript.output()
        self.transcript.output("Available commands:")
        for keyword, description in self.help_catalogue():
            self.transcript.output(f"  {keyword:<10} - {description}")
        self.transcript.output()

    async def _cmd_clear(self, _args: List[str]) -> None:
        self.transcript.reset()

    async def _cmd_connect(self, _args: List[str]) -> None:
        self.transcript.output()
        session = self.wallet.current()
        if is_connected(session):
            self.transcript.info(f"Already connected: {short_hex(session.address)}")
            self.transcript.info(f"Chain ID: {session.chain_id} ({self.config.chain_name})")
        else:
            self.transcript.info("Initializing wallet connection...")
            self.transcript.info("Please approve the connection in your wallet")
            try:
                await self.wallet.connect()
            except WalletError as exc:
                self.transcript.error(f"Connection failed: {exc}")
            else:
                self.transcript.info("✓ Wallet connected successfully")
                self.transcript.info(f"✓ {self.config.chain_name} Chain active")
        self.transcript.output()

    async def _cmd_balance(self, _args: List[str]) -> None:
        self.transcript.output()
        session = self._connected_session()
        if session is not None:
            self.transcript.info("Fetching balances...")
            currency = await self.ledger.get_fungible_balance(session.address)
            if not await self._still_connected(session):
                self.transcript.output()
                return
            native = await self.ledger.get_native_balance(session.address)
            currency_label = f"{self.config.currency_symbol} Balance:"
            native_label = f"{self.config.native_symbol} Balance:"
            width = max(len(currency_label), len(native_label))
            currency_text = format_units(currency, self.config.currency_decimals, 2)
            native_text = format_units(native, self.config.native_decimals, 4)
            self.transcript.output()
            self.transcript.info(
                f"{currency_label.ljust(width)} {currency_text} {self.config.currency_symbol}"
            )
            self.transcript.info(
                f"{native_label.ljust(width)} {native_text} {self.config.native_symbol}"
            )
        self.transcript.output()

    async def _cmd_nfts(self, _args: List[str]) -> None:
        self.transcript.output()
        session = self._connected_session()
        if session is not None:
            self.transcript.info("Loading your NFT collection...")
            token_id = self.config.token_id
            try:
                owned = await self.ledger.get_item_balance(session.address, token_id)
            except LedgerFault as exc:
                self.transcript.error(f"Failed to load NFTs: {classify_fault(exc).human_message}")
            else:
                self.transcript.output()
                if owned == 0:
                    self.transcript.info("No NFTs found in your wallet")
                else:
                    self.transcript.info("Found 1 NFT:")
                    self.transcript.output(f"  1. NFT #{token_id} (x{owned}) (Token #{token_id})")
        self.transcript.output()

    async def _cmd_mint(self, _args: List[str]) -> None:
        self.transcript.output()
        session = self._connected_session()
        if session is not None:
            self.transcript.info("Preparing to mint NFT...")
            self.transcript.info(f"This requires {self.config.currency_symbol} payment approval")

            def progress(_phase: MintPhase, message: str) -> None:
                self.transcript.info(message)

            try:
                tx_hash = await self.orchestrator.mint(session, on_progress=progress)
            except ClassifiedError as exc:
                self.transcript.error(f"Mint failed: {exc.human_message}")
            else:
                self.transcript.info("✓ NFT minted successfully")
                self.transcript.info(f"Transaction: {short_hex(tx_hash, 10, 8)}")
        self.transcript.output()
