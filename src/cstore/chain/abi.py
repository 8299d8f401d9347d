"""
ABI Codec - Encode call data and decode return data / event logs.

Wraps eth-abi with a typed view of a contract's JSON ABI.  Head/tail
layout, padding and offsets are eth-abi's job; this module resolves
which descriptor applies and maps library failures onto the
``EncodingError`` family.
"""

from __future__ import annotations

import dataclasses
import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Optional

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_abi.exceptions import EncodingError as AbiEncodingError

from ..errors import ArtifactInvalid, DecodeError, SignatureMismatch
from ..utils import keccak256

logger = logging.getLogger(__name__)

READ_ONLY_MUTABILITY = frozenset({"view", "pure"})


@dataclass(frozen=True)
class Param:
    name: str
    type: str  # canonical, structs flattened to "(t1,t2)"
    indexed: bool = False
    components: tuple["Param", ...] = ()

    @classmethod
    def from_abi(cls, entry: Mapping[str, Any]) -> "Param":
        components = tuple(cls.from_abi(c) for c in entry.get("components") or ())
        raw_type = entry["type"]
        if raw_type.startswith("tuple"):
            inner = ",".join(c.type for c in components)
            canonical = f"({inner}){raw_type[len('tuple'):]}"
        else:
            canonical = raw_type
        return cls(
            name=entry.get("name") or "",
            type=canonical,
            indexed=bool(entry.get("indexed", False)),
            components=components,
        )

    @property
    def is_struct(self) -> bool:
        return self.type.startswith("(") and self.type.endswith(")")

    def normalize(self, value: Any) -> Any:
        """Accept mappings or dataclasses for struct parameters."""
        if not self.is_struct:
            return value
        if dataclasses.is_dataclass(value) and not isinstance(value, type):
            value = dataclasses.asdict(value)
        if isinstance(value, Mapping):
            try:
                value = [value[c.name] for c in self.components]
            except KeyError as exc:
                raise SignatureMismatch(
                    f"Struct argument {self.name or self.type} is missing field {exc}"
                ) from exc
        if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
            raise SignatureMismatch(
                f"Expected a struct {self.type} for {self.name or 'argument'}, "
                f"got {type(value).__name__}"
            )
        if len(value) != len(self.components):
            raise SignatureMismatch(
                f"Struct {self.type} takes {len(self.components)} fields, got {len(value)}"
            )
        return tuple(c.normalize(v) for c, v in zip(self.components, value))


def _types(params: Sequence[Param]) -> list[str]:
    return [p.type for p in params]


def _hashed_when_indexed(type_str: str) -> bool:
    """Indexed dynamic values are stored as their keccak hash in the topic."""
    return type_str in ("string", "bytes") or type_str.startswith("(") or type_str.endswith("]")


@dataclass(frozen=True)
class FunctionDescriptor:
    name: str
    inputs: tuple[Param, ...]
    outputs: tuple[Param, ...]
    state_mutability: str = "nonpayable"

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(_types(self.inputs))})"

    @property
    def selector(self) -> bytes:
        return keccak256(self.signature.encode("utf-8"))[:4]

    @property
    def is_read_only(self) -> bool:
        return self.state_mutability in READ_ONLY_MUTABILITY


@dataclass(frozen=True)
class EventDescriptor:
    name: str
    inputs: tuple[Param, ...]
    anonymous: bool = False

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(_types(self.inputs))})"

    @property
    def topic(self) -> bytes:
        return keccak256(self.signature.encode("utf-8"))


def _mutability(entry: Mapping[str, Any]) -> str:
    if "stateMutability" in entry:
        return entry["stateMutability"]
    # Pre-0.5 compiler output
    if entry.get("constant"):
        return "view"
    return "payable" if entry.get("payable") else "nonpayable"


class ContractInterface:
    """Ordered function and event descriptors parsed from a JSON ABI."""

    def __init__(self, entries: Sequence[Mapping[str, Any]]) -> None:
        self.entries = list(entries)
        self.functions: dict[str, list[FunctionDescriptor]] = {}
        self.events: dict[str, EventDescriptor] = {}
        self.constructor: Optional[FunctionDescriptor] = None

        for entry in self.entries:
            if not isinstance(entry, Mapping):
                raise ArtifactInvalid(f"ABI entry is not an object: {entry!r}")
            kind = entry.get("type", "function")
            try:
                if kind == "function":
                    fn = FunctionDescriptor(
                        name=entry["name"],
                        inputs=tuple(Param.from_abi(p) for p in entry.get("inputs", [])),
                        outputs=tuple(Param.from_abi(p) for p in entry.get("outputs", [])),
                        state_mutability=_mutability(entry),
                    )
                    self.functions.setdefault(fn.name, []).append(fn)
                elif kind == "event":
                    ev = EventDescriptor(
                        name=entry["name"],
                        inputs=tuple(Param.from_abi(p) for p in entry.get("inputs", [])),
                        anonymous=bool(entry.get("anonymous", False)),
                    )
                    self.events[ev.name] = ev
                elif kind == "constructor":
                    self.constructor = FunctionDescriptor(
                        name="constructor",
                        inputs=tuple(Param.from_abi(p) for p in entry.get("inputs", [])),
                        outputs=(),
                        state_mutability=_mutability(entry),
                    )
            except (KeyError, TypeError, AttributeError) as exc:
                raise ArtifactInvalid(f"Malformed ABI {kind} entry: {entry!r}") from exc

    @classmethod
    def from_json(cls, text: str) -> "ContractInterface":
        try:
            entries = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ArtifactInvalid(f"ABI is not valid JSON: {exc}") from exc
        if not isinstance(entries, list):
            raise ArtifactInvalid("ABI must be a JSON array of entries")
        return cls(entries)

    # ---- lookup ----

    def function(
        self,
        name: str,
        signature: Optional[str] = None,
        arg_count: Optional[int] = None,
    ) -> FunctionDescriptor:
        """
        Resolve a function by name.

        Overloads are picked by exact canonical ``signature`` when given,
        otherwise by ``arg_count``.  Ambiguity is a ``SignatureMismatch``.
        """
        candidates = self.functions.get(name)
        if not candidates:
            raise SignatureMismatch(f"Function {name} not found in ABI")

        if signature is not None:
            wanted = signature.replace(" ", "")
            for fn in candidates:
                if fn.signature == wanted:
                    return fn
            known = ", ".join(fn.signature for fn in candidates)
            raise SignatureMismatch(f"No overload {wanted}; ABI has {known}")

        if arg_count is not None:
            candidates = [fn for fn in candidates if len(fn.inputs) == arg_count]
        if len(candidates) == 1:
            return candidates[0]
        if not candidates:
            raise SignatureMismatch(
                f"No overload of {name} takes {arg_count} argument(s)"
            )
        known = ", ".join(fn.signature for fn in candidates)
        raise SignatureMismatch(f"Ambiguous call to {name}; pass one of: {known}")

    def event(self, name: str) -> EventDescriptor:
        try:
            return self.events[name]
        except KeyError:
            raise SignatureMismatch(f"Event {name} not found in ABI") from None

    def event_by_topic(self, topic: bytes) -> Optional[EventDescriptor]:
        for ev in self.events.values():
            if not ev.anonymous and ev.topic == topic:
                return ev
        return None

    # ---- encoding ----

    def _encode_args(self, params: tuple[Param, ...], args: Sequence[Any], what: str) -> bytes:
        if len(args) != len(params):
            raise SignatureMismatch(
                f"{what} takes {len(params)} argument(s), got {len(args)}"
            )
        values = [p.normalize(a) for p, a in zip(params, args)]
        try:
            return encode(_types(params), values)
        except (AbiEncodingError, TypeError, ValueError) as exc:
            raise SignatureMismatch(f"Cannot encode arguments for {what}: {exc}") from exc

    def encode_call(
        self,
        function_name: str,
        args: Sequence[Any] = (),
        signature: Optional[str] = None,
    ) -> bytes:
        """Selector + ABI-encoded arguments."""
        fn = self.function(function_name, signature=signature, arg_count=len(args))
        encoded = self._encode_args(fn.inputs, args, fn.signature)
        logger.debug(f"Encoded {fn.signature} selector=0x{fn.selector.hex()} ({len(encoded)} arg bytes)")
        return fn.selector + encoded

    def encode_constructor(self, args: Sequence[Any] = ()) -> bytes:
        """Encoded constructor arguments, appended to the creation bytecode."""
        if self.constructor is None:
            if args:
                raise SignatureMismatch(
                    "Constructor arguments were provided but the ABI has no constructor"
                )
            return b""
        return self._encode_args(self.constructor.inputs, args, "constructor")

    def encode_log(self, event_name: str, values: Sequence[Any]) -> tuple[list[bytes], bytes]:
        """Build (topics, data) for an event, as the EVM would emit it."""
        ev = self.event(event_name)
        if len(values) != len(ev.inputs):
            raise SignatureMismatch(
                f"{ev.signature} has {len(ev.inputs)} field(s), got {len(values)}"
            )
        topics = [] if ev.anonymous else [ev.topic]
        data_params: list[Param] = []
        data_values: list[Any] = []
        try:
            for param, value in zip(ev.inputs, values):
                value = param.normalize(value)
                if not param.indexed:
                    data_params.append(param)
                    data_values.append(value)
                elif param.type == "string":
                    topics.append(keccak256(value.encode("utf-8")))
                elif param.type == "bytes":
                    topics.append(keccak256(value))
                elif _hashed_when_indexed(param.type):
                    raise SignatureMismatch(
                        f"Indexed {param.type} fields cannot be encoded into a topic"
                    )
                else:
                    topics.append(encode([param.type], [value]))
            data = encode(_types(data_params), data_values)
        except (AbiEncodingError, TypeError, ValueError, AttributeError) as exc:
            raise SignatureMismatch(f"Cannot encode {ev.signature}: {exc}") from exc
        return topics, data

    # ---- decoding ----

    def decode_return(
        self,
        function_name: str,
        data: bytes,
        signature: Optional[str] = None,
    ) -> tuple[Any, ...]:
        fn = self.function(function_name, signature=signature)
        if not fn.outputs:
            return ()
        if not data:
            raise DecodeError(
                f"Empty return data for {fn.signature} (is there contract code at the target?)"
            )
        try:
            return tuple(decode(_types(fn.outputs), data))
        except (DecodingError, ValueError) as exc:
            raise DecodeError(f"Cannot decode return data of {fn.signature}: {exc}") from exc

    def decode_log(
        self,
        event_name: str,
        topics: Sequence[bytes],
        data: bytes,
    ) -> Optional[dict[str, Any]]:
        """
        Decode one log against ``event_name``.

        Returns ``None`` when the first topic is not this event's signature
        hash.  Indexed dynamic fields are returned as their 32-byte topic.
        """
        ev = self.event(event_name)
        if ev.anonymous:
            indexed_topics = list(topics)
        else:
            if not topics or bytes(topics[0]) != ev.topic:
                return None
            indexed_topics = list(topics[1:])

        indexed = [p for p in ev.inputs if p.indexed]
        if len(indexed_topics) < len(indexed):
            raise DecodeError(
                f"{ev.signature} expects {len(indexed)} indexed topic(s), "
                f"log has {len(indexed_topics)}"
            )
        plain = [p for p in ev.inputs if not p.indexed]
        try:
            plain_values = iter(decode(_types(plain), data)) if plain else iter(())
            topic_values = iter(indexed_topics)
            result: dict[str, Any] = {}
            for pos, param in enumerate(ev.inputs):
                key = param.name or f"arg{pos}"
                if not param.indexed:
                    result[key] = next(plain_values)
                    continue
                topic = bytes(next(topic_values))
                if _hashed_when_indexed(param.type):
                    result[key] = topic
                else:
                    result[key] = decode([param.type], topic)[0]
        except (DecodingError, ValueError) as exc:
            raise DecodeError(f"Cannot decode {ev.signature} log: {exc}") from exc
        return result


__all__ = [
    "ContractInterface",
    "EventDescriptor",
    "FunctionDescriptor",
    "Param",
]
