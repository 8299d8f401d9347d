__version__ = "1.0.0"

__all__ = [
    "__version__",
    # Errors
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
    # Codec
    "ContractInterface",
    # Transport / confirmation
    "RpcClient",
    "Receipt",
    "LogEntry",
    "wait_mined",
    # Transactions / signing
    "NonceTracker",
    "SignedTransaction",
    "Signer",
    "UnsignedTransaction",
    "build_transaction",
    "derive_address",
    "verify_chain_binding",
    # Collaborators
    "ContractArtifact",
    "RuntimeConfig",
    "load_artifact",
    "load_config",
    # Storage contract
    "DataItem",
    "StorageContract",
    # Orchestration
    "Deployer",
    "DeployReport",
    "DeploymentResult",
    "ExerciseOutcome",
]

from .errors import (
    ArtifactError,
    ArtifactInvalid,
    ArtifactNotFound,
    ChainMismatch,
    ConfigError,
    ConfirmationCancelled,
    ConfirmationTimeout,
    ConnectionFailed,
    DecodeError,
    DeployError,
    EncodingError,
    InsufficientParameters,
    InvalidKey,
    MalformedResponse,
    RpcError,
    SignatureMismatch,
    SigningError,
    TransactionReverted,
    TransportError,
    TransportTimeout,
)
from .chain.abi import ContractInterface
from .chain.confirm import LogEntry, Receipt, wait_mined
from .chain.rpc import RpcClient
from .chain.tx import NonceTracker, SignedTransaction, UnsignedTransaction, build_transaction
from .wallet.eth import Signer, derive_address, verify_chain_binding
from .artifacts import ContractArtifact, load_artifact
from .config import RuntimeConfig, load_config
from .storage import DataItem, StorageContract
from .deployer import DeployReport, Deployer, DeploymentResult, ExerciseOutcome
