"""Remote ledger façade: balances, allowances and paid claims.

Every operation is a coroutine. The underlying JSON-RPC client is blocking, so
calls are pushed onto a worker thread with :func:`asyncio.to_thread`; from the
console's point of view each remote read, write, or confirmation poll is a
single suspension point. RPC and transport failures are wrapped in
:class:`LedgerFault` so callers only ever see one fault type.

Reads are idempotent. Writes are not: each ``set_spend_authorization`` or
``submit_payment_claim`` call sends exactly one transaction and is never
retried here.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Sequence

from .abi import AbiEncodingError, decode_address, decode_revert_reason, decode_uint, decode_words
from .calldata import (
    ALLOWANCE,
    APPROVE,
    BALANCE_OF,
    BALANCE_OF_ITEM,
    CLAIM,
    GET_ACTIVE_CLAIM_CONDITION_ID,
    GET_CLAIM_CONDITION_BY_ID,
    CallEncoder,
    default_encoder,
)
from .config import NATIVE_TOKEN_ADDRESS, NetworkConfig
from .rpc_client import EthRPCClient, RPCError, RPCTransportError

logger = logging.getLogger(__name__)


class LedgerFault(RuntimeError):
    """Uniform wrapper around any failure raised by the remote ledger."""

    def __init__(
        self,
        message: str,
        *,
        code: int | None = None,
        data: Any = None,
        operation: str | None = None,
        transient: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.data = data
        self.operation = operation
        self.transient = transient


class ConfirmationTimeoutFault(LedgerFault):
    """Raised when a submission is not confirmed within the bounded wait."""


@dataclass(frozen=True)
class SubmissionHandle:
    """Reference to a sent but not yet confirmed transaction."""

    tx_hash: str
    label: str
    request: Dict[str, Any] = field(default_factory=dict, compare=False)
    submitted_at: float = field(default_factory=time.time, compare=False)


@dataclass(frozen=True)
class Receipt:
    tx_hash: str
    status: int
    block_number: int | None = None
    gas_used: int | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1

    @classmethod
    def from_rpc(cls, payload: Dict[str, Any]) -> "Receipt":
        def _hex(key: str) -> int | None:
            raw = payload.get(key)
            return int(raw, 16) if isinstance(raw, str) else None

        status = _hex("status")
        return cls(
            tx_hash=str(payload.get("transactionHash", "")),
            status=1 if status is None else status,
            block_number=_hex("blockNumber"),
            gas_used=_hex("gasUsed"),
        )


@dataclass(frozen=True)
class AllowlistProof:
    """Allow-list proof passed to ``claim``; empty by default (no gating)."""

    price_per_token: int
    currency: str
    proof: tuple[str, ...] = ()
    quantity_limit_per_wallet: int = 0

    def as_abi(self) -> list[Any]:
        return [list(self.proof), self.quantity_limit_per_wallet, self.price_per_token, self.currency]


@dataclass(frozen=True)
class ClaimPrice:
    price_per_unit: int
    currency: str
    condition_id: int


class RemoteLedgerClient:
    """Stateless async façade over the contract reads and writes the console needs."""

    def __init__(
        self,
        rpc: EthRPCClient,
        config: NetworkConfig,
        encoder: CallEncoder | None = None,
    ) -> None:
        self.rpc = rpc
        self.config = config
        self.encoder = encoder or default_encoder()

    async def _run(self, operation: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except RPCError as exc:
            raise LedgerFault(exc.message, code=exc.code, data=exc.data, operation=operation) from exc
        except RPCTransportError as exc:
            raise LedgerFault(str(exc), code=exc.status_code, operation=operation, transient=True) from exc

    async def _call_uint(self, operation: str, to: str, signature: str, args: Sequence[Any]) -> int:
        data = self.encoder.encode(signature, args)
        result = await self._run(operation, self.rpc.eth_call, to, data)
        try:
            return decode_uint(result or "0x", default=0)
        except AbiEncodingError as exc:
            raise LedgerFault(f"Malformed {operation} result: {exc}", operation=operation) from exc

    # Reads ----------------------------------------------------------------

    async def get_fungible_balance(self, holder: str | None, token: str | None = None) -> int:
        """Balance of the payment currency; ``0`` when unknown or unreadable."""

        if not holder:
            return 0
        token = token or self.config.currency_address
        if token.lower() == NATIVE_TOKEN_ADDRESS.lower():
            return await self.get_native_balance(holder)
        try:
            return await self._call_uint("balanceOf", token, BALANCE_OF, [holder])
        except LedgerFault as exc:
            logger.warning("Balance read for %s failed, treating as zero: %s", holder, exc)
            return 0

    async def get_native_balance(self, holder: str | None) -> int:
        if not holder:
            return 0
        try:
            return await self._run("eth_getBalance", self.rpc.eth_getBalance, holder)
        except (LedgerFault, TypeError, ValueError) as exc:
            logger.warning("Native balance read for %s failed, treating as zero: %s", holder, exc)
            return 0

    async def get_item_balance(self, holder: str, token_id: int) -> int:
        return await self._call_uint(
            "balanceOf(item)", self.config.claim_contract, BALANCE_OF_ITEM, [holder, token_id]
        )

    async def get_spend_authorization(self, holder: str, spender: str, token: str | None = None) -> int:
        token = token or self.config.currency_address
        return await self._call_uint("allowance", token, ALLOWANCE, [holder, spender])

    async def get_claim_price(self, token_id: int) -> ClaimPrice:
        """Read price and currency from the contract's active claim condition."""

        contract = self.config.claim_contract
        condition_id = await self._call_uint(
            "getActiveClaimConditionId", contract, GET_ACTIVE_CLAIM_CONDITION_ID, [token_id]
        )
        data = self.encoder.encode(GET_CLAIM_CONDITION_BY_ID, [token_id, condition_id])
        result = await self._run("getClaimConditionById", self.rpc.eth_call, contract, data)
        try:
            words = decode_words(result or "0x")
            base = words[0] // 32
            price = words[base + 5]
            currency = decode_address(result, base + 6)
        except (AbiEncodingError, IndexError) as exc:
            raise LedgerFault(f"Malformed claim condition: {exc}", operation="getClaimConditionById") from exc
        return ClaimPrice(price_per_unit=price, currency=currency, condition_id=condition_id)

    # Writes ---------------------------------------------------------------

    async def _send(self, label: str, transaction: Dict[str, Any]) -> SubmissionHandle:
        logger.info("Submitting %s transaction to %s", label, transaction["to"])
        tx_hash = await self._run(label, self.rpc.eth_sendTransaction, transaction)
        if not isinstance(tx_hash, str) or not tx_hash.startswith("0x"):
            raise LedgerFault(f"Node returned no transaction hash for {label}", operation=label)
        logger.info("%s submitted: %s", label, tx_hash)
        return SubmissionHandle(tx_hash=tx_hash, label=label, request=dict(transaction))

    async def set_spend_authorization(
        self, holder: str, spender: str, amount: int, token: str | None = None
    ) -> SubmissionHandle:
        token = token or self.config.currency_address
        data = self.encoder.encode(APPROVE, [spender, amount])
        return await self._send("approve", {"from": holder, "to": token, "data": data})

    async def submit_payment_claim(
        self,
        holder: str,
        receiver: str,
        item_id: int,
        quantity: int,
        currency: str,
        price_per_unit: int,
        proof: AllowlistProof,
        value: int = 0,
    ) -> SubmissionHandle:
        data = self.encoder.encode(
            CLAIM,
            [receiver, item_id, quantity, currency, price_per_unit, proof.as_abi(), b""],
        )
        transaction: Dict[str, Any] = {
            "from": holder,
            "to": self.config.claim_contract,
            "data": data,
        }
        if value:
            transaction["value"] = hex(value)
        return await self._send("claim", transaction)

    # Confirmation ---------------------------------------------------------

    async def await_confirmation(
        self, handle: SubmissionHandle, timeout: Optional[float] = None
    ) -> Receipt:
        """Poll for the receipt of ``handle`` until it lands or ``timeout`` elapses."""

        loop = asyncio.get_running_loop()
        wait = self.config.confirmation_timeout if timeout is None else timeout
        deadline = loop.time() + wait
        while True:
            try:
                raw = await self._run(
                    "eth_getTransactionReceipt", self.rpc.eth_getTransactionReceipt, handle.tx_hash
                )
            except LedgerFault as exc:
                if not exc.transient:
                    raise
                logger.warning("Receipt poll for %s failed, retrying: %s", handle.tx_hash, exc)
                raw = None
            if raw:
                receipt = Receipt.from_rpc(raw)
                if receipt.succeeded:
                    logger.info("%s confirmed in block %s", handle.label, receipt.block_number)
                    return receipt
                reason, data = await self._replay_failure(handle, receipt)
                message = "execution reverted" + (f": {reason}" if reason else "")
                raise LedgerFault(message, data=data, operation=handle.label)
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise ConfirmationTimeoutFault(
                    f"{handle.label} transaction {handle.tx_hash} was not confirmed within {wait:g}s",
                    operation=handle.label,
                )
            await asyncio.sleep(min(self.config.poll_interval, remaining))

    async def _replay_failure(self, handle: SubmissionHandle, receipt: Receipt) -> tuple[str | None, Any]:
        # Re-running the call against the receipt's block is the only way to
        # recover a revert reason; receipts do not carry one.
        request = handle.request
        if not request.get("to") or not request.get("data"):
            return None, None
        block = hex(receipt.block_number) if receipt.block_number is not None else "latest"
        value = request.get("value")
        try:
            await self._run(
                "replay",
                self.rpc.eth_call,
                request["to"],
                request["data"],
                block,
                sender=request.get("from"),
                value=int(value, 16) if isinstance(value, str) else None,
            )
        except LedgerFault as exc:
            return decode_revert_reason(exc.data) or exc.message, exc.data
        return None, None
