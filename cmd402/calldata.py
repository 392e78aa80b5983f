"""Call-data encoding strategies for the contracts the console talks to.

``StructuredCallEncoder`` walks the ABI types of any signature. The
``ManualCallEncoder`` lays out the words of the few calls the mint flow issues
by hand. ``FallbackCallEncoder`` prefers the first and only drops to the second
when encoding itself fails.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Dict, Sequence

from .abi import AbiEncodingError, encode_call, function_selector

logger = logging.getLogger(__name__)

BALANCE_OF = "balanceOf(address)"
ALLOWANCE = "allowance(address,address)"
APPROVE = "approve(address,uint256)"
BALANCE_OF_ITEM = "balanceOf(address,uint256)"
CLAIM = (
    "claim(address,uint256,uint256,address,uint256,"
    "(bytes32[],uint256,uint256,address),bytes)"
)
GET_ACTIVE_CLAIM_CONDITION_ID = "getActiveClaimConditionId(uint256)"
GET_CLAIM_CONDITION_BY_ID = "getClaimConditionById(uint256,uint256)"

# Well-known ERC-20 selectors, kept literal for the hand-laid layouts.
APPROVE_SELECTOR = "095ea7b3"

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


class CallEncoder:
    """Turn a function signature and argument list into ``0x`` call data."""

    name = "abstract"

    def encode(self, signature: str, args: Sequence[Any]) -> str:
        raise NotImplementedError


class StructuredCallEncoder(CallEncoder):
    name = "structured"

    def encode(self, signature: str, args: Sequence[Any]) -> str:
        return encode_call(signature, args)


def _address_word(value: Any) -> str:
    if not isinstance(value, str) or not _ADDRESS_RE.match(value):
        raise AbiEncodingError(f"Invalid address for manual encoding: {value!r}")
    return value[2:].lower().rjust(64, "0")


def _uint_word(value: Any) -> str:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0 or value >= 2**256:
        raise AbiEncodingError(f"Invalid uint256 for manual encoding: {value!r}")
    return format(value, "064x")


def _bytes32_word(value: Any) -> str:
    raw = value.hex() if isinstance(value, (bytes, bytearray)) else str(value)
    raw = raw[2:] if raw.startswith("0x") else raw
    if len(raw) != 64:
        raise AbiEncodingError(f"Invalid bytes32 for manual encoding: {value!r}")
    return raw.lower()


def _approve_layout(args: Sequence[Any]) -> str:
    spender, amount = args
    return APPROVE_SELECTOR + _address_word(spender) + _uint_word(amount)


def _claim_layout(args: Sequence[Any]) -> str:
    receiver, token_id, quantity, currency, price, allowlist_proof, data = args
    proof, quantity_limit, proof_price, proof_currency = allowlist_proof
    raw_data = data.hex() if isinstance(data, (bytes, bytearray)) else str(data)
    raw_data = raw_data[2:] if raw_data.startswith("0x") else raw_data
    if len(raw_data) % 2:
        raise AbiEncodingError(f"Invalid bytes for manual encoding: {data!r}")

    head_words = 7
    proof_offset = head_words * 32
    proof_block = (
        _uint_word(4 * 32)
        + _uint_word(quantity_limit)
        + _uint_word(proof_price)
        + _address_word(proof_currency)
        + _uint_word(len(proof))
        + "".join(_bytes32_word(entry) for entry in proof)
    )
    data_offset = proof_offset + len(proof_block) // 2
    data_length = len(raw_data) // 2
    padded = raw_data + "0" * (-len(raw_data) % 64)
    data_block = _uint_word(data_length) + padded
    return (
        function_selector(CLAIM).hex()
        + _address_word(receiver)
        + _uint_word(token_id)
        + _uint_word(quantity)
        + _address_word(currency)
        + _uint_word(price)
        + _uint_word(proof_offset)
        + _uint_word(data_offset)
        + proof_block
        + data_block
    )


_MANUAL_LAYOUTS: Dict[str, Callable[[Sequence[Any]], str]] = {
    APPROVE: _approve_layout,
    CLAIM: _claim_layout,
}


class ManualCallEncoder(CallEncoder):
    name = "manual"

    def encode(self, signature: str, args: Sequence[Any]) -> str:
        layout = _MANUAL_LAYOUTS.get(signature.replace(" ", ""))
        if layout is None:
            raise AbiEncodingError(f"No manual layout for {signature}")
        try:
            return "0x" + layout(args)
        except (TypeError, ValueError) as exc:
            raise AbiEncodingError(f"Arguments do not fit {signature}: {exc}") from exc


class FallbackCallEncoder(CallEncoder):
    """Try ``primary``; on an encoding failure only, use ``fallback``."""

    name = "fallback"

    def __init__(self, primary: CallEncoder, fallback: CallEncoder) -> None:
        self.primary = primary
        self.fallback = fallback

    def encode(self, signature: str, args: Sequence[Any]) -> str:
        try:
            return self.primary.encode(signature, args)
        except AbiEncodingError as exc:
            logger.warning(
                "%s encoding of %s failed (%s); using %s layout",
                self.primary.name,
                signature,
                exc,
                self.fallback.name,
            )
            return self.fallback.encode(signature, args)


def default_encoder() -> CallEncoder:
    return FallbackCallEncoder(StructuredCallEncoder(), ManualCallEncoder())
