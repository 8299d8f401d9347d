"""
Error taxonomy for contract deployment and interaction.

Every failure the tool can report is a ``DeployError``.  The CLI exits
with the error's ``exit_code``; ``step`` is filled in by the deployer so
the message says where the run stopped.
"""

from __future__ import annotations

from typing import Any, Optional


class DeployError(RuntimeError):
    exit_code: int = 1

    def __init__(self, message: str, *, step: Optional[str] = None) -> None:
        super().__init__(message)
        self.step = step

    def describe(self) -> str:
        if self.step:
            return f"[{self.step}] {self}"
        return str(self)


# ============ Inputs ============


class ConfigError(DeployError):
    exit_code = 2


class ArtifactError(DeployError):
    exit_code = 3


class ArtifactNotFound(ArtifactError):
    pass


class ArtifactInvalid(ArtifactError):
    pass


# ============ Transport ============


class TransportError(DeployError):
    exit_code = 4


class ConnectionFailed(TransportError):
    pass


class TransportTimeout(TransportError):
    pass


class MalformedResponse(TransportError):
    pass


class RpcError(TransportError):
    """JSON-RPC error object returned by the node."""

    def __init__(
        self,
        method: str,
        code: Optional[int],
        message: str,
        data: Any = None,
    ) -> None:
        super().__init__(f"{method} failed: {message} (code {code})")
        self.method = method
        self.code = code
        self.rpc_message = message
        self.data = data


# ============ Keys / encoding ============


class SigningError(DeployError):
    exit_code = 5


class InvalidKey(SigningError):
    pass


class ChainMismatch(SigningError):
    pass


class EncodingError(DeployError):
    exit_code = 6


class SignatureMismatch(EncodingError):
    pass


class DecodeError(EncodingError):
    pass


class InsufficientParameters(DeployError):
    exit_code = 7


# ============ Confirmation ============


class ConfirmationTimeout(DeployError):
    exit_code = 8

    def __init__(
        self,
        tx_hash: str,
        timeout: float,
        message: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message or f"Transaction {tx_hash} not confirmed within {timeout:g}s",
            **kwargs,
        )
        self.tx_hash = tx_hash
        self.timeout = timeout


class ConfirmationCancelled(ConfirmationTimeout):
    def __init__(self, tx_hash: str, timeout: float, **kwargs: Any) -> None:
        super().__init__(
            tx_hash, timeout, f"Wait for transaction {tx_hash} was cancelled", **kwargs
        )


class TransactionReverted(DeployError):
    exit_code = 9

    def __init__(self, tx_hash: str, receipt: Any = None, **kwargs: Any) -> None:
        block = getattr(receipt, "block_number", None)
        where = f" in block {block}" if block is not None else ""
        super().__init__(f"Transaction {tx_hash} reverted{where}", **kwargs)
        self.tx_hash = tx_hash
        self.receipt = receipt


__all__ = [
    "ArtifactError",
    "ArtifactInvalid",
    "ArtifactNotFound",
    "ChainMismatch",
    "ConfigError",
    "ConfirmationCancelled",
    "ConfirmationTimeout",
    "ConnectionFailed",
    "DecodeError",
    "DeployError",
    "EncodingError",
    "InsufficientParameters",
    "InvalidKey",
    "MalformedResponse",
    "RpcError",
    "SignatureMismatch",
    "SigningError",
    "TransactionReverted",
    "TransportError",
    "TransportTimeout",
]
