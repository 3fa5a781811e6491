"""Contract call encoding with an appended attribution tag."""

from eth_abi import encode
from eth_abi.exceptions import EncodingError
from web3 import Web3

from .errors import CallEncodingError

ATTRIBUTION_FORMAT = 0x01
# Trailing marker that lets indexers find the tag at the end of calldata
ATTRIBUTION_MARKER = bytes.fromhex("80218021802180218021802180218021")
_ATTRIBUTION_BODY_LEN = 1 + 20 + 20


def _addr_bytes(addr: str) -> bytes:
    if not Web3.is_address(addr):
        raise CallEncodingError(f"Invalid address: {addr!r}")
    return bytes.fromhex(addr[2:].lower().zfill(40))


def _find_function(abi: list, function_name: str, arg_count: int) -> dict:
    candidates = [
        item for item in abi
        if item.get("type") == "function" and item.get("name") == function_name
    ]
    if not candidates:
        raise CallEncodingError(f"Unknown contract function: {function_name}")
    for item in candidates:
        if len(item.get("inputs", [])) == arg_count:
            return item
    raise CallEncodingError(
        f"{function_name} expects {len(candidates[0].get('inputs', []))} arguments, got {arg_count}"
    )


def _normalize(abi_type: str, value):
    if abi_type == "address":
        if not isinstance(value, str) or not Web3.is_address(value):
            raise CallEncodingError(f"Invalid address: {value!r}")
        return Web3.to_checksum_address(value)
    if abi_type == "bytes32" and isinstance(value, str):
        raw = value[2:] if value.startswith("0x") else value
        try:
            decoded = bytes.fromhex(raw)
        except ValueError:
            raise CallEncodingError(f"Invalid bytes32 value: {value!r}") from None
        if len(decoded) != 32:
            raise CallEncodingError(f"bytes32 value must be 32 bytes, got {len(decoded)}")
        return decoded
    if abi_type.startswith("uint") and isinstance(value, bool):
        raise CallEncodingError(f"Expected integer for {abi_type}, got bool")
    return value


def function_selector(fn_abi: dict) -> bytes:
    types = ",".join(inp["type"] for inp in fn_abi.get("inputs", []))
    return Web3.keccak(text=f"{fn_abi['name']}({types})")[:4]


def encode_function_call(abi: list, function_name: str, args: list | tuple = ()) -> bytes:
    """Selector + ABI-encoded arguments. Raises CallEncodingError on bad input."""
    fn_abi = _find_function(abi, function_name, len(args))
    types = [inp["type"] for inp in fn_abi.get("inputs", [])]
    values = [_normalize(t, v) for t, v in zip(types, args)]
    try:
        return function_selector(fn_abi) + encode(types, values)
    except (EncodingError, TypeError, ValueError, OverflowError) as e:
        raise CallEncodingError(f"Cannot encode {function_name}: {e}") from e


def attribution_suffix(caller: str, consumer: str) -> bytes:
    """format(1) | caller(20) | consumer(20) | body length(2) | marker(16)"""
    body = bytes([ATTRIBUTION_FORMAT]) + _addr_bytes(caller) + _addr_bytes(consumer)
    return body + len(body).to_bytes(2, "big") + ATTRIBUTION_MARKER


def encode_call(abi: list, function_name: str, args: list | tuple,
                caller: str, consumer: str) -> bytes:
    """Build the full calldata for a ledger operation, attribution tag included."""
    return encode_function_call(abi, function_name, args) + attribution_suffix(caller, consumer)


def split_attribution(data: bytes) -> tuple[bytes, str, str] | None:
    """Inverse of encode_call's suffix: (call, caller, consumer) or None."""
    tail = len(ATTRIBUTION_MARKER) + 2
    if len(data) < tail + _ATTRIBUTION_BODY_LEN or not data.endswith(ATTRIBUTION_MARKER):
        return None
    body_len = int.from_bytes(data[-tail:-len(ATTRIBUTION_MARKER)], "big")
    if body_len != _ATTRIBUTION_BODY_LEN:
        return None
    body = data[-tail - body_len:-tail]
    if body[0] != ATTRIBUTION_FORMAT:
        return None
    caller = Web3.to_checksum_address("0x" + body[1:21].hex())
    consumer = Web3.to_checksum_address("0x" + body[21:41].hex())
    return data[:-tail - body_len], caller, consumer
