from __future__ import annotations

from eth_hash.auto import keccak
from eth_utils import to_checksum_address


def strip_0x(value: str) -> str:
    return value[2:] if value[:2] in ("0x", "0X") else value


def hex_to_bytes(value: str) -> bytes:
    """Decode 0x-prefixed (or bare) hex.  Raises ValueError on bad input."""
    body = strip_0x(value.strip())
    if len(body) % 2:
        raise ValueError(f"Odd-length hex string ({len(body)} digits)")
    return bytes.fromhex(body)


def to_hex(data: bytes) -> str:
    return "0x" + data.hex()


def hex_to_int(value: str) -> int:
    if not isinstance(value, str) or value[:2] not in ("0x", "0X"):
        raise ValueError(f"Expected 0x-prefixed quantity, got {value!r}")
    return int(value, 16)


def checksum(address: str) -> str:
    # NOTE: Keccak-256 != SHA3-256 (NIST); eth_utils uses the right one.
    return to_checksum_address(address)


def same_address(a: str | None, b: str | None) -> bool:
    if not a or not b:
        return False
    return strip_0x(a).lower() == strip_0x(b).lower()


def keccak256(data: bytes) -> bytes:
    return keccak(data)
