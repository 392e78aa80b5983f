"""Closed error taxonomy surfaced to console users.

Raw remote faults come in many shapes: wallet rejections, JSON-RPC errors,
revert strings, custom-error selectors and timeouts. :func:`classify_fault`
maps each to exactly one :class:`ClassifiedError` so the console never has to
interpret a low-level failure itself.
"""

from __future__ import annotations

import enum
import re
from typing import Any, Iterable

from .abi import decode_revert_reason, function_selector
from .ledger import ConfirmationTimeoutFault, LedgerFault


class ErrorCategory(str, enum.Enum):
    NOT_CONNECTED = "NotConnected"
    INSUFFICIENT_FUNDS = "InsufficientFunds"
    USER_REJECTED = "UserRejected"
    CONFIRMATION_TIMEOUT = "ConfirmationTimeout"
    NO_ACTIVE_OFFER = "NoActiveOffer"
    LIMIT_EXCEEDED = "LimitExceeded"
    REMOTE_REJECTED = "RemoteRejected"
    UNKNOWN = "Unknown"


DEFAULT_MESSAGES = {
    ErrorCategory.NOT_CONNECTED: "Wallet not connected. Run 'connect' first.",
    ErrorCategory.INSUFFICIENT_FUNDS: "Insufficient funds",
    ErrorCategory.USER_REJECTED: "Transaction rejected by user",
    ErrorCategory.CONFIRMATION_TIMEOUT: (
        "Transaction was not confirmed in time; its outcome is unknown. "
        "Run the command again to re-check before resubmitting."
    ),
    ErrorCategory.NO_ACTIVE_OFFER: "No active claim condition",
    ErrorCategory.LIMIT_EXCEEDED: "You've already claimed the maximum amount",
    ErrorCategory.REMOTE_REJECTED: "Transaction reverted",
    ErrorCategory.UNKNOWN: "Unexpected error",
}


class ClassifiedError(RuntimeError):
    """A fault normalized into one of the :class:`ErrorCategory` values."""

    def __init__(self, category: ErrorCategory, human_message: str, cause: Any = None) -> None:
        super().__init__(human_message)
        self.category = category
        self.human_message = human_message
        self.cause = cause

    @classmethod
    def precondition(cls, category: ErrorCategory, detail: str | None = None) -> "ClassifiedError":
        """Failure detected locally before any remote write was attempted."""

        return cls(category, detail or DEFAULT_MESSAGES[category])

    def __repr__(self) -> str:
        return f"ClassifiedError({self.category.value}, {self.human_message!r})"


# Custom errors raised by drop-style claim contracts.
_CUSTOM_ERRORS = {
    function_selector("DropNoActiveCondition()").hex(): ErrorCategory.NO_ACTIVE_OFFER,
    function_selector("DropClaimExceedLimit(uint256,uint256)").hex(): ErrorCategory.LIMIT_EXCEEDED,
    function_selector("DropClaimExceedMaxSupply(uint256,uint256)").hex(): ErrorCategory.LIMIT_EXCEEDED,
    function_selector("DropClaimInvalidTokenPrice(address,uint256,address,uint256)").hex(): (
        ErrorCategory.REMOTE_REJECTED
    ),
}

_PATTERNS: tuple[tuple[ErrorCategory, tuple[str, ...]], ...] = (
    (ErrorCategory.CONFIRMATION_TIMEOUT, ("timed out", "timeout", "not confirmed within")),
    (
        ErrorCategory.USER_REJECTED,
        ("user rejected", "user denied", "rejected by user", "user cancelled", "request rejected"),
    ),
    (
        ErrorCategory.LIMIT_EXCEEDED,
        ("dropclaimexceedlimit", "!qty", "exceed limit", "exceeds max", "exceeded claim limit"),
    ),
    (
        ErrorCategory.NO_ACTIVE_OFFER,
        ("dropnoactivecondition", "!condition", "no active claim condition", "not active", "cant claim yet"),
    ),
    (
        ErrorCategory.INSUFFICIENT_FUNDS,
        ("insufficient funds", "insufficient balance", "exceeds balance", "exceeds allowance"),
    ),
    (ErrorCategory.NOT_CONNECTED, ("not connected", "unknown account", "no accounts", "unauthorized account")),
)

_REASON_PREFIX = re.compile(r"^.*?execution reverted:?\s*", re.IGNORECASE)


def _fault_texts(fault: BaseException) -> list[str]:
    texts = [str(fault)]
    data = getattr(fault, "data", None)
    if isinstance(data, str):
        texts.append(data)
    elif isinstance(data, dict):
        texts.extend(str(value) for value in data.values())
    decoded = decode_revert_reason(_revert_data(fault))
    if decoded:
        texts.append(decoded)
    cause = fault.__cause__
    if cause is not None and cause is not fault:
        texts.append(str(cause))
    return texts


def _revert_data(fault: BaseException) -> str | None:
    data = getattr(fault, "data", None)
    if isinstance(data, dict):
        data = data.get("data")
    if isinstance(data, str) and data.startswith("0x") and len(data) >= 10:
        return data
    return None


def _match(texts: Iterable[str], needles: Iterable[str]) -> bool:
    lowered = [text.lower() for text in texts]
    return any(needle in text for text in lowered for needle in needles)


def _extract_reason(fault: BaseException) -> str:
    decoded = decode_revert_reason(_revert_data(fault))
    if decoded:
        return decoded
    message = str(fault)
    stripped = _REASON_PREFIX.sub("", message, count=1).strip()
    return stripped or "no reason given"


def _default(category: ErrorCategory, fault: BaseException) -> ClassifiedError:
    return ClassifiedError(category, DEFAULT_MESSAGES[category], fault)


def classify_fault(fault: BaseException) -> ClassifiedError:
    """Map an arbitrary remote failure onto the closed taxonomy."""

    if isinstance(fault, ClassifiedError):
        return fault
    if isinstance(fault, ConfirmationTimeoutFault):
        return _default(ErrorCategory.CONFIRMATION_TIMEOUT, fault)

    code = getattr(fault, "code", None)
    if code == 4001:
        return _default(ErrorCategory.USER_REJECTED, fault)
    if code == 4100:
        return _default(ErrorCategory.NOT_CONNECTED, fault)

    revert_data = _revert_data(fault)
    if revert_data:
        category = _CUSTOM_ERRORS.get(revert_data[2:10].lower())
        if category is not None:
            return _default(category, fault)

    texts = _fault_texts(fault)
    for category, needles in _PATTERNS:
        if _match(texts, needles):
            return _default(category, fault)

    if _match(texts, ("revert",)) or revert_data:
        reason = _extract_reason(fault)
        return ClassifiedError(
            ErrorCategory.REMOTE_REJECTED,
            f"{DEFAULT_MESSAGES[ErrorCategory.REMOTE_REJECTED]}: {reason}",
            fault,
        )

    detail = fault.message if isinstance(fault, LedgerFault) else str(fault)
    return ClassifiedError(
        ErrorCategory.UNKNOWN,
        f"{DEFAULT_MESSAGES[ErrorCategory.UNKNOWN]}: {detail or type(fault).__name__}",
        fault,
    )
