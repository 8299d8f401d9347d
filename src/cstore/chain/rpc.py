"""
JSON-RPC Client for an Ethereum-compatible node.

Lightweight alternative to web3.py: httpx for HTTP endpoints, the
websockets sync client for ws:// endpoints.  Every method is exactly one
request/response; there is no retry here.
"""

from __future__ import annotations

import itertools
import json
import logging
from typing import Any, Optional, Protocol
from urllib.parse import urlparse

import httpx
from websockets.exceptions import InvalidHandshake, InvalidURI, WebSocketException
from websockets.sync.client import ClientConnection, connect

from ..errors import (
    ConfigError,
    ConnectionFailed,
    MalformedResponse,
    RpcError,
    TransportError,
    TransportTimeout,
)
from ..utils import hex_to_bytes, hex_to_int, to_hex
from .confirm import Receipt

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class Transport(Protocol):
    url: str

    def send(self, payload: dict[str, Any]) -> Any:
        """Send one JSON-RPC request object, return the parsed JSON reply."""
        ...

    def close(self) -> None:
        ...


class HttpTransport:
    def __init__(
        self,
        url: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.url = url
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def send(self, payload: dict[str, Any]) -> Any:
        method = payload.get("method")
        try:
            response = self._client.post(self.url, json=payload)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise TransportTimeout(f"{method}: request to {self.url} timed out") from exc
        except httpx.ConnectError as exc:
            raise ConnectionFailed(f"{method}: cannot connect to {self.url}: {exc}") from exc
        except httpx.HTTPStatusError as exc:
            raise TransportError(
                f"{method}: HTTP {exc.response.status_code} from {self.url}"
            ) from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"{method}: {exc}") from exc

        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponse(f"{method}: response is not JSON: {response.text[:200]!r}") from exc

    def close(self) -> None:
        self._client.close()


class WebSocketTransport:
    """One persistent websocket; opened on first use."""

    def __init__(self, url: str, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.url = url
        self.timeout = timeout
        self._ws: Optional[ClientConnection] = None

    def _connection(self) -> ClientConnection:
        if self._ws is None:
            try:
                self._ws = connect(self.url, open_timeout=self.timeout)
            except TimeoutError as exc:
                raise TransportTimeout(f"Opening {self.url} timed out") from exc
            except (OSError, InvalidURI, InvalidHandshake) as exc:
                raise ConnectionFailed(f"Cannot connect to {self.url}: {exc}") from exc
        return self._ws

    def send(self, payload: dict[str, Any]) -> Any:
        method = payload.get("method")
        ws = self._connection()
        try:
            ws.send(json.dumps(payload))
            while True:
                message = ws.recv(timeout=self.timeout)
                reply = json.loads(message)
                # Skip subscription notifications that share the socket
                if isinstance(reply, dict) and "id" not in reply and reply.get("method"):
                    continue
                return reply
        except TimeoutError as exc:
            raise TransportTimeout(f"{method}: no reply from {self.url}") from exc
        except json.JSONDecodeError as exc:
            raise MalformedResponse(f"{method}: reply is not JSON") from exc
        except (OSError, WebSocketException) as exc:
            self.close()
            raise ConnectionFailed(f"{method}: connection to {self.url} lost: {exc}") from exc

    def close(self) -> None:
        if self._ws is not None:
            self._ws.close()
            self._ws = None


def open_transport(url: str, timeout: float = DEFAULT_TIMEOUT) -> Transport:
    scheme = urlparse(url).scheme.lower()
    if scheme in ("http", "https"):
        return HttpTransport(url, timeout=timeout)
    if scheme in ("ws", "wss"):
        return WebSocketTransport(url, timeout=timeout)
    raise ConfigError(f"Unsupported RPC URL scheme {scheme!r} in {url}")


def _quantity(method: str, value: Any) -> int:
    try:
        return hex_to_int(value)
    except ValueError as exc:
        raise MalformedResponse(f"{method}: {exc}") from exc


class RpcClient:
    """Typed wrappers over the handful of eth_* methods a deployment needs."""

    def __init__(self, transport: Transport) -> None:
        self.transport = transport
        self._ids = itertools.count(1)

    @classmethod
    def connect(cls, url: str, timeout: float = DEFAULT_TIMEOUT) -> "RpcClient":
        return cls(open_transport(url, timeout=timeout))

    @property
    def url(self) -> str:
        return self.transport.url

    def close(self) -> None:
        self.transport.close()

    def __enter__(self) -> "RpcClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def request(self, method: str, params: list) -> Any:
        """
        Make a JSON-RPC call.

        Returns:
            ``result`` field of the response (may be None)

        Raises:
            RpcError: The node returned an error object
            MalformedResponse: The reply is not a JSON-RPC response to this request
            TransportError: Network-level failure
        """
        request_id = next(self._ids)
        payload = {"jsonrpc": "2.0", "method": method, "params": params, "id": request_id}
        logger.debug(f"-> {method} id={request_id}")
        data = self.transport.send(payload)

        if not isinstance(data, dict):
            raise MalformedResponse(f"{method}: expected a JSON object, got {type(data).__name__}")
        if data.get("id") != request_id:
            raise MalformedResponse(f"{method}: response id {data.get('id')!r} != {request_id}")

        error = data.get("error")
        if error is not None:
            if isinstance(error, dict):
                raise RpcError(method, error.get("code"), str(error.get("message", "")), error.get("data"))
            raise RpcError(method, None, str(error))
        if "result" not in data:
            raise MalformedResponse(f"{method}: response has neither result nor error")
        return data["result"]

    # ---- account / chain state ----

    def get_pending_nonce(self, address: str) -> int:
        return _quantity(
            "eth_getTransactionCount",
            self.request("eth_getTransactionCount", [address, "pending"]),
        )

    def suggest_gas_price(self) -> int:
        return _quantity("eth_gasPrice", self.request("eth_gasPrice", []))

    def get_chain_id(self) -> int:
        return _quantity("eth_chainId", self.request("eth_chainId", []))

    def get_balance(self, address: str, block: str = "latest") -> int:
        return _quantity("eth_getBalance", self.request("eth_getBalance", [address, block]))

    # ---- transactions ----

    def send_raw_transaction(self, raw: bytes) -> str:
        tx_hash = self.request("eth_sendRawTransaction", [to_hex(raw)])
        if not isinstance(tx_hash, str) or not tx_hash.startswith("0x"):
            raise MalformedResponse(f"eth_sendRawTransaction: bad transaction hash {tx_hash!r}")
        return tx_hash

    def get_receipt(self, tx_hash: str) -> Optional[Receipt]:
        """Receipt for ``tx_hash``, or None while it is not mined."""
        result = self.request("eth_getTransactionReceipt", [tx_hash])
        if result is None:
            return None
        try:
            return Receipt.from_rpc(result)
        except (KeyError, TypeError, ValueError) as exc:
            raise MalformedResponse(f"eth_getTransactionReceipt: unparseable receipt: {exc}") from exc

    def call(self, to: str, data: bytes, block: str = "latest") -> bytes:
        """Read-only ``eth_call``; returns raw return data."""
        result = self.request("eth_call", [{"to": to, "data": to_hex(data)}, block])
        if result is None:
            return b""
        try:
            return hex_to_bytes(result)
        except (AttributeError, ValueError) as exc:
            raise MalformedResponse(f"eth_call: bad return data {result!r}") from exc
