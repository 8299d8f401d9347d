"""
Confirmation Tracker - Wait for a transaction to be mined.

Polls for the receipt at a fixed interval until it appears, the deadline
passes, or the caller cancels.  A reverted transaction is confirmed but
unsuccessful and is reported separately from a timeout.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from ..errors import (
    ConfirmationCancelled,
    ConfirmationTimeout,
    TransactionReverted,
    TransportError,
)
from ..utils import hex_to_bytes, hex_to_int, same_address

logger = logging.getLogger(__name__)

STATUS_SUCCESS = 1
STATUS_FAILURE = 0


@dataclass(frozen=True)
class LogEntry:
    address: str
    topics: tuple[bytes, ...]
    data: bytes
    log_index: Optional[int] = None

    @classmethod
    def from_rpc(cls, payload: dict[str, Any]) -> "LogEntry":
        index = payload.get("logIndex")
        return cls(
            address=payload["address"],
            topics=tuple(hex_to_bytes(t) for t in payload.get("topics", [])),
            data=hex_to_bytes(payload.get("data") or "0x"),
            log_index=hex_to_int(index) if index is not None else None,
        )


@dataclass(frozen=True)
class Receipt:
    status: int
    transaction_hash: str
    block_number: int
    gas_used: int
    contract_address: Optional[str] = None
    logs: tuple[LogEntry, ...] = field(default_factory=tuple)

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_SUCCESS

    @classmethod
    def from_rpc(cls, payload: dict[str, Any]) -> "Receipt":
        # Pre-Byzantium receipts carry a state root instead of a status
        status = payload.get("status")
        return cls(
            status=hex_to_int(status) if status is not None else STATUS_SUCCESS,
            transaction_hash=payload["transactionHash"],
            block_number=hex_to_int(payload["blockNumber"]),
            gas_used=hex_to_int(payload["gasUsed"]),
            contract_address=payload.get("contractAddress") or None,
            logs=tuple(LogEntry.from_rpc(entry) for entry in payload.get("logs") or ()),
        )

    def logs_from(self, address: str) -> list[LogEntry]:
        """Logs emitted by ``address``; everything else is dropped."""
        return [log for log in self.logs if same_address(log.address, address)]


class ReceiptSource(Protocol):
    def get_receipt(self, tx_hash: str) -> Optional[Receipt]:
        ...


def wait_mined(
    rpc: ReceiptSource,
    tx_hash: str,
    poll_interval: float = 1.0,
    timeout: float = 120.0,
    cancel: Optional[threading.Event] = None,
) -> Receipt:
    """
    Wait for a transaction receipt.

    Args:
        rpc: Anything with ``get_receipt``
        tx_hash: Transaction hash
        poll_interval: Seconds to sleep between polls
        timeout: Maximum wait time in seconds
        cancel: Setting this event aborts the wait

    Returns:
        The receipt of a successful transaction

    Raises:
        ConfirmationTimeout: No receipt before the deadline
        ConfirmationCancelled: ``cancel`` was set
        TransactionReverted: Mined with a failure status
    """
    if poll_interval <= 0:
        raise ValueError("poll_interval must be positive")

    deadline = time.monotonic() + timeout
    attempt = 0
    while True:
        if cancel is not None and cancel.is_set():
            raise ConfirmationCancelled(tx_hash, timeout)

        attempt += 1
        try:
            receipt = rpc.get_receipt(tx_hash)
        except TransportError as exc:
            # Indistinguishable from "not yet mined" from the caller's side
            logger.warning(f"Receipt retrieval for {tx_hash} failed (attempt {attempt}): {exc}")
            receipt = None

        if receipt is not None:
            if not receipt.succeeded:
                raise TransactionReverted(tx_hash, receipt)
            logger.info(
                f"Transaction {tx_hash} mined in block {receipt.block_number} "
                f"(gas used {receipt.gas_used})"
            )
            return receipt

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise ConfirmationTimeout(tx_hash, timeout)

        logger.debug(f"Transaction {tx_hash} not yet mined (attempt {attempt})")
        pause = min(poll_interval, remaining)
        if cancel is not None:
            if cancel.wait(pause):
                raise ConfirmationCancelled(tx_hash, timeout)
        else:
            time.sleep(pause)
