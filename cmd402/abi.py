"""Minimal contract ABI codec for the calls the console issues.

Only the subset needed for ERC-20 allowance handling, ERC-1155 balance reads
and drop-style ``claim`` calls is implemented: ``address``, ``uint<N>``,
``bool``, ``bytes32``, ``bytes``, ``string``, dynamic arrays and tuples.
"""

from __future__ import annotations

from typing import Any, List, Sequence

from Crypto.Hash import keccak

WORD = 32
ERROR_STRING_SELECTOR = "08c379a0"
PANIC_SELECTOR = "4e487b71"


class AbiEncodingError(RuntimeError):
    """Raised when values cannot be encoded (or decoded) for a given ABI type."""


def keccak256(data: bytes) -> bytes:
    digest = keccak.new(digest_bits=256)
    digest.update(data)
    return digest.digest()


def function_selector(signature: str) -> bytes:
    """Return the 4-byte selector for a canonical function or error signature."""

    return keccak256(signature.replace(" ", "").encode("ascii"))[:4]


def split_types(inner: str) -> List[str]:
    """Split a comma separated type list, honouring nested tuple parentheses."""

    types: List[str] = []
    depth = 0
    current = ""
    for char in inner:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                raise AbiEncodingError(f"Unbalanced parentheses in type list: {inner}")
        if char == "," and depth == 0:
            types.append(current)
            current = ""
            continue
        current += char
    if depth != 0:
        raise AbiEncodingError(f"Unbalanced parentheses in type list: {inner}")
    if current:
        types.append(current)
    return [entry.strip() for entry in types]


def parse_signature(signature: str) -> tuple[str, List[str]]:
    compact = signature.replace(" ", "")
    name, sep, rest = compact.partition("(")
    if not name or not sep or not rest.endswith(")"):
        raise AbiEncodingError(f"Malformed function signature: {signature}")
    return name, split_types(rest[:-1])


def _tuple_components(abi_type: str) -> List[str] | None:
    if abi_type.startswith("(") and abi_type.endswith(")"):
        return split_types(abi_type[1:-1])
    return None


def is_dynamic(abi_type: str) -> bool:
    if abi_type in {"bytes", "string"} or abi_type.endswith("[]"):
        return True
    components = _tuple_components(abi_type)
    if components is not None:
        return any(is_dynamic(component) for component in components)
    return False


def _head_size(abi_type: str) -> int:
    components = _tuple_components(abi_type)
    if components is not None and not is_dynamic(abi_type):
        return sum(_head_size(component) for component in components)
    return WORD


def _uint_word(value: int) -> bytes:
    return value.to_bytes(WORD, "big")


def _coerce_bytes(value: Any, abi_type: str) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        raw = value[2:] if value.startswith(("0x", "0X")) else value
        try:
            return bytes.fromhex(raw)
        except ValueError as exc:
            raise AbiEncodingError(f"Invalid hex for {abi_type}: {value}") from exc
    raise AbiEncodingError(f"Expected bytes or hex string for {abi_type}, got {type(value).__name__}")


def _encode_static(abi_type: str, value: Any) -> bytes:
    if abi_type == "address":
        if not isinstance(value, str):
            raise AbiEncodingError(f"Address must be a hex string, got {type(value).__name__}")
        raw = _coerce_bytes(value, abi_type)
        if len(raw) != 20:
            raise AbiEncodingError(f"Address must be 20 bytes: {value}")
        return raw.rjust(WORD, b"\x00")
    if abi_type.startswith("uint"):
        bits = int(abi_type[4:] or 256)
        if isinstance(value, bool) or not isinstance(value, int):
            raise AbiEncodingError(f"{abi_type} requires an int, got {type(value).__name__}")
        if value < 0 or value >= 2**bits:
            raise AbiEncodingError(f"Value {value} out of range for {abi_type}")
        return _uint_word(value)
    if abi_type == "bool":
        if not isinstance(value, bool):
            raise AbiEncodingError(f"bool requires True/False, got {value!r}")
        return _uint_word(int(value))
    if abi_type == "bytes32":
        raw = _coerce_bytes(value, abi_type)
        if len(raw) != WORD:
            raise AbiEncodingError(f"bytes32 requires exactly 32 bytes, got {len(raw)}")
        return raw
    raise AbiEncodingError(f"Unsupported ABI type: {abi_type}")


def _pad_right(data: bytes) -> bytes:
    remainder = len(data) % WORD
    if remainder:
        data += b"\x00" * (WORD - remainder)
    return data


def encode_value(abi_type: str, value: Any) -> bytes:
    components = _tuple_components(abi_type)
    if components is not None:
        if not isinstance(value, (list, tuple)):
            raise AbiEncodingError(f"Tuple {abi_type} requires a sequence value")
        return encode_arguments(components, value)
    if abi_type.endswith("[]"):
        if not isinstance(value, (list, tuple)):
            raise AbiEncodingError(f"Array {abi_type} requires a sequence value")
        element = abi_type[:-2]
        return _uint_word(len(value)) + encode_arguments([element] * len(value), value)
    if abi_type == "bytes":
        raw = _coerce_bytes(value, abi_type)
        return _uint_word(len(raw)) + _pad_right(raw)
    if abi_type == "string":
        if not isinstance(value, str):
            raise AbiEncodingError("string requires a str value")
        raw = value.encode("utf-8")
        return _uint_word(len(raw)) + _pad_right(raw)
    return _encode_static(abi_type, value)


def encode_arguments(types: Sequence[str], values: Sequence[Any]) -> bytes:
    """Encode ``values`` using the standard head/tail layout."""

    if len(types) != len(values):
        raise AbiEncodingError(f"Expected {len(types)} values, got {len(values)}")

    heads: List[bytes] = []
    tails: List[bytes] = []
    head_length = sum(_head_size(abi_type) for abi_type in types)
    tail_offset = head_length
    for abi_type, value in zip(types, values):
        if is_dynamic(abi_type):
            encoded = encode_value(abi_type, value)
            heads.append(_uint_word(tail_offset))
            tails.append(encoded)
            tail_offset += len(encoded)
        else:
            heads.append(encode_value(abi_type, value))
    return b"".join(heads) + b"".join(tails)


def encode_call(signature: str, args: Sequence[Any]) -> str:
    """Return ``0x``-prefixed call data for ``signature`` applied to ``args``."""

    _, types = parse_signature(signature)
    return "0x" + (function_selector(signature) + encode_arguments(types, args)).hex()


# Decoding ----------------------------------------------------------------


def _strip_hex(data: str) -> str:
    return data[2:] if data.startswith(("0x", "0X")) else data


def decode_words(data: str) -> List[int]:
    raw = _strip_hex(data or "")
    if len(raw) % 64:
        raise AbiEncodingError(f"Return data is not word aligned ({len(raw)} hex chars)")
    try:
        return [int(raw[index : index + 64], 16) for index in range(0, len(raw), 64)]
    except ValueError as exc:
        raise AbiEncodingError(f"Return data is not valid hex: {data}") from exc


def decode_uint(data: str, index: int = 0, *, default: int | None = None) -> int:
    """Decode the ``index``-th word of ``data`` as an unsigned integer.

    Empty return data (``0x``) yields ``default`` when one is supplied; calls
    against addresses without code return nothing at all.
    """

    words = decode_words(data)
    if index >= len(words):
        if default is not None:
            return default
        raise AbiEncodingError(f"Return data has no word at index {index}")
    return words[index]


def decode_address(data: str, index: int = 0) -> str:
    return "0x" + decode_uint(data, index).to_bytes(WORD, "big")[-20:].hex()


def _decode_string_at(raw: bytes, offset: int) -> str:
    length = int.from_bytes(raw[offset : offset + WORD], "big")
    start = offset + WORD
    if start + length > len(raw):
        raise AbiEncodingError("String payload is truncated")
    return raw[start : start + length].decode("utf-8", errors="replace")


def decode_revert_reason(data: str | None) -> str | None:
    """Extract a readable reason from revert data, if it has a standard shape."""

    if not data or not isinstance(data, str):
        return None
    raw_hex = _strip_hex(data)
    selector, body = raw_hex[:8].lower(), raw_hex[8:]
    try:
        payload = bytes.fromhex(body)
    except ValueError:
        return None
    if selector == ERROR_STRING_SELECTOR and len(payload) >= 2 * WORD:
        offset = int.from_bytes(payload[:WORD], "big")
        try:
            return _decode_string_at(payload, offset)
        except AbiEncodingError:
            return None
    if selector == PANIC_SELECTOR and len(payload) >= WORD:
        return f"panic code 0x{int.from_bytes(payload[:WORD], 'big'):02x}"
    return None
