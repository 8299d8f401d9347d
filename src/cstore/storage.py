"""
Storage contract binding.

The contract keeps a single ``DataItem {key, field, value}``::

    function save(DataItem calldata item)
    function save(string key, string field, string value)
    function data() view returns (string key, string field, string value)
    event DataSaved(string key, string field, string value)

The two ``save`` overloads differ only in selector; both emit the same
event, so there is one decode path for the log.
"""

from __future__ import annotations

import logging
from dataclasses import astuple, dataclass
from typing import Optional, Protocol

from .chain.abi import ContractInterface
from .chain.confirm import Receipt
from .errors import ArtifactInvalid, DecodeError

logger = logging.getLogger(__name__)

SAVE_ITEM = "save((string,string,string))"
SAVE_FIELDS = "save(string,string,string)"
DATA = "data"
DATA_SAVED = "DataSaved"


@dataclass(frozen=True)
class DataItem:
    key: str
    field: str
    value: str

    def as_tuple(self) -> tuple[str, str, str]:
        return astuple(self)

    def __str__(self) -> str:
        return f"key={self.key}, field={self.field}, value={self.value}"


class Caller(Protocol):
    def call(self, to: str, data: bytes, block: str = "latest") -> bytes:
        ...


class StorageContract:
    """Encodes calls to, and decodes results from, a Storage contract."""

    def __init__(self, interface: ContractInterface, address: Optional[str] = None) -> None:
        if DATA not in interface.functions or DATA_SAVED not in interface.events:
            raise ArtifactInvalid("ABI does not describe a Storage contract (needs data() and DataSaved)")
        if "save" not in interface.functions:
            raise ArtifactInvalid("ABI does not describe a Storage contract (needs save)")
        self.interface = interface
        self.address = address

    def at(self, address: str) -> "StorageContract":
        return StorageContract(self.interface, address)

    def _require_address(self) -> str:
        if not self.address:
            raise ValueError("StorageContract has no address; use .at(address)")
        return self.address

    # ---- writes ----

    def encode_save_item(self, item: DataItem) -> bytes:
        """Call data for the struct overload ``save(DataItem)``."""
        return self.interface.encode_call("save", [item], signature=SAVE_ITEM)

    def encode_save_fields(self, key: str, field: str, value: str) -> bytes:
        """Call data for the three-string overload."""
        return self.interface.encode_call("save", [key, field, value], signature=SAVE_FIELDS)

    def encode_save(self, item: DataItem, use_struct: bool = False) -> bytes:
        if use_struct:
            return self.encode_save_item(item)
        return self.encode_save_fields(*item.as_tuple())

    # ---- events ----

    def saved_items(self, receipt: Receipt) -> list[DataItem]:
        """``DataSaved`` payloads emitted by this contract in ``receipt``."""
        address = self._require_address()
        items: list[DataItem] = []
        for log in receipt.logs_from(address):
            event = self.interface.event_by_topic(log.topics[0]) if log.topics else None
            if event is None or event.name != DATA_SAVED:
                continue
            fields = self.interface.decode_log(DATA_SAVED, log.topics, log.data)
            if fields is None:
                continue
            items.append(_item(list(fields.values()), DATA_SAVED))
        logger.debug(f"{len(items)} {DATA_SAVED} log(s) from {address} in {receipt.transaction_hash}")
        return items

    # ---- reads ----

    def read(self, rpc: Caller, block: str = "latest") -> DataItem:
        """Current stored item via ``data()``."""
        address = self._require_address()
        raw = rpc.call(address, self.interface.encode_call(DATA), block=block)
        return _item(list(self.interface.decode_return(DATA, raw)), "data()")


def _item(values: list, origin: str) -> DataItem:
    if len(values) != 3 or not all(isinstance(v, str) for v in values):
        raise DecodeError(f"{origin} did not decode to three strings: {values!r}")
    return DataItem(*values)
