"""
Transaction Builder - Assemble unsigned transactions and track nonces.

A transaction object is built fresh for every submission and never
mutated; a retry means a new ``UnsignedTransaction`` with a new nonce.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from ..errors import InsufficientParameters
from ..utils import checksum, to_hex

logger = logging.getLogger(__name__)


class NonceSource(Protocol):
    def get_pending_nonce(self, address: str) -> int:
        ...


@dataclass(frozen=True)
class UnsignedTransaction:
    """
    Legacy (gas-price) transaction fields.

    Attributes:
        sender: Checksummed address whose key will sign
        nonce: Pending transaction count at build time
        gas_limit: Gas limit
        gas_price: Gas price in wei
        value: ETH value in wei
        to: Recipient, or None for contract creation
        data: Call data, or creation bytecode + constructor args
    """
    sender: str
    nonce: int
    gas_limit: int
    gas_price: int
    value: int
    to: Optional[str]
    data: bytes

    @property
    def is_creation(self) -> bool:
        return self.to is None

    def to_signable(self, chain_id: int) -> dict[str, Any]:
        """Transaction dict in the shape eth-account signs (EIP-155)."""
        tx: dict[str, Any] = {
            "nonce": self.nonce,
            "gas": self.gas_limit,
            "gasPrice": self.gas_price,
            "value": self.value,
            "data": to_hex(self.data),
            "chainId": chain_id,
        }
        if self.to is not None:
            tx["to"] = self.to
        return tx


@dataclass(frozen=True)
class SignedTransaction:
    transaction: UnsignedTransaction
    chain_id: int
    raw: bytes
    hash: str

    @property
    def raw_hex(self) -> str:
        return to_hex(self.raw)


def build_transaction(
    sender: str,
    to: Optional[str],
    data: bytes,
    value: int,
    gas_limit: int,
    gas_price: Optional[int],
    nonce: int,
) -> UnsignedTransaction:
    """
    Build an unsigned transaction.

    Args:
        sender: Signing account address
        to: Target contract; empty/None means contract creation
        data: Encoded call data or creation code
        value: Wei to transfer
        gas_limit: Must be positive
        gas_price: Suggested gas price; must be available
        nonce: Freshly fetched pending nonce for ``sender``

    Raises:
        InsufficientParameters: On a zero gas limit, a missing gas price,
            a negative nonce/value or a malformed address
    """
    if not gas_limit or gas_limit <= 0:
        raise InsufficientParameters(f"Gas limit must be positive (got {gas_limit})")
    if gas_price is None or gas_price < 0:
        raise InsufficientParameters("Gas price is unavailable")
    if nonce is None or nonce < 0:
        raise InsufficientParameters(f"Invalid nonce {nonce}")
    if value < 0:
        raise InsufficientParameters(f"Value must not be negative (got {value})")

    return UnsignedTransaction(
        sender=_address(sender, "sender"),
        nonce=nonce,
        gas_limit=gas_limit,
        gas_price=gas_price,
        value=value,
        to=_address(to, "recipient") if to else None,
        data=bytes(data),
    )


def _address(value: str, role: str) -> str:
    try:
        return checksum(value)
    except (TypeError, ValueError) as exc:
        raise InsufficientParameters(f"Invalid {role} address {value!r}") from exc


class NonceTracker:
    """
    Hands out nonces for one account.

    The pending count is re-queried for every transaction; the tracker
    never goes backwards even if the node's view lags behind what this
    process has already submitted.
    """

    def __init__(self, source: NonceSource) -> None:
        self._source = source
        self._lock = threading.Lock()
        self._last: dict[str, int] = {}

    def next_nonce(self, address: str) -> int:
        key = address.lower()
        with self._lock:
            pending = self._source.get_pending_nonce(address)
            last = self._last.get(key)
            nonce = pending if last is None else max(pending, last + 1)
            if last is not None and pending <= last:
                logger.warning(
                    f"Node reports pending nonce {pending} for {address}, "
                    f"already used {last}; using {nonce}"
                )
            self._last[key] = nonce
            return nonce

    def release(self, address: str, nonce: int) -> None:
        """
        Give back a nonce whose transaction never reached the node.

        Only the most recent nonce can be released; anything older is
        already followed by a submitted transaction and is left alone.
        """
        key = address.lower()
        with self._lock:
            if self._last.get(key) != nonce:
                return
            if nonce > 0:
                self._last[key] = nonce - 1
            else:
                del self._last[key]
            logger.debug(f"Released nonce {nonce} for {address}")
