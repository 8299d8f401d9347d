"""
Artifact Loader - Read contract bytecode and ABI from the build directory.

Two layouts are understood:

- ``<dir>/<Name>.bin`` + ``<dir>/<Name>.abi`` (solc --bin --abi output)
- ``<dir>/<Name>.json`` or ``<dir>/<Name>.sol/<Name>.json`` (Foundry /
  Hardhat style artifact with ``abi`` and ``bytecode``)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from .chain.abi import ContractInterface
from .errors import ArtifactInvalid, ArtifactNotFound
from .utils import hex_to_bytes

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContractArtifact:
    name: str
    bytecode: bytes
    interface: ContractInterface
    source: Optional[Path] = None

    def creation_data(self, constructor_args: Optional[list] = None) -> bytes:
        """Bytecode followed by ABI-encoded constructor arguments."""
        return self.bytecode + self.interface.encode_constructor(constructor_args or [])


def parse_bytecode(text: str, origin: str = "bytecode") -> bytes:
    body = "".join(text.split())
    try:
        code = hex_to_bytes(body)
    except ValueError as exc:
        raise ArtifactInvalid(f"{origin} is not valid hex: {exc}") from exc
    if not code:
        raise ArtifactInvalid(f"{origin} is empty")
    return code


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ArtifactNotFound(f"Cannot read {path}: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise ArtifactInvalid(f"{path} is not UTF-8 text: {exc}") from exc


def _load_pair(bin_path: Path, abi_path: Path, name: str) -> ContractArtifact:
    bytecode = parse_bytecode(_read_text(bin_path), origin=str(bin_path))
    logger.info(f"Loaded bytecode from: {bin_path}")
    interface = ContractInterface.from_json(_read_text(abi_path).strip())
    logger.info(f"Loaded ABI from: {abi_path}")
    return ContractArtifact(name=name, bytecode=bytecode, interface=interface, source=bin_path)


def _load_combined(path: Path, name: str) -> ContractArtifact:
    try:
        artifact: Any = json.loads(_read_text(path))
    except json.JSONDecodeError as exc:
        raise ArtifactInvalid(f"{path} is not valid JSON: {exc}") from exc
    if not isinstance(artifact, dict) or "abi" not in artifact:
        raise ArtifactInvalid(f"{path} has no 'abi' field")

    bytecode = artifact.get("bytecode", "")
    if isinstance(bytecode, dict):
        bytecode = bytecode.get("object", "")
    if not isinstance(bytecode, str):
        raise ArtifactInvalid(f"{path} has a non-string bytecode field")
    if not isinstance(artifact["abi"], list):
        raise ArtifactInvalid(f"{path}: 'abi' must be a list")

    logger.info(f"Loaded artifact from: {path}")
    return ContractArtifact(
        name=name,
        bytecode=parse_bytecode(bytecode, origin=f"{path} bytecode"),
        interface=ContractInterface(artifact["abi"]),
        source=path,
    )


def load_artifact(directory: Path, contract_name: str) -> ContractArtifact:
    """
    Load a contract's build artifact.

    Raises:
        ArtifactNotFound: No known artifact layout exists for the contract
        ArtifactInvalid: Bytecode is empty/non-hex or the ABI does not parse
    """
    directory = Path(directory)
    bin_path = directory / f"{contract_name}.bin"
    abi_path = directory / f"{contract_name}.abi"

    if bin_path.exists() or abi_path.exists():
        missing = [p for p in (bin_path, abi_path) if not p.exists()]
        if missing:
            raise ArtifactNotFound(f"Artifact file not found: {missing[0]}")
        return _load_pair(bin_path, abi_path, contract_name)

    for candidate in (
        directory / f"{contract_name}.json",
        directory / f"{contract_name}.sol" / f"{contract_name}.json",
    ):
        if candidate.exists():
            return _load_combined(candidate, contract_name)

    raise ArtifactNotFound(
        f"No artifact for {contract_name} in {directory} "
        f"(expected {bin_path.name} + {abi_path.name})"
    )
