"""
Deployer - Deploy the Storage contract and exercise it.

Flow:
1. Resolve the signing account and the endpoint's chain ID
2. Build, sign and submit the creation transaction
3. Wait for it to be mined and take the contract address from the receipt
4. Optionally call ``save`` with a test item, decode the ``DataSaved`` log,
   read ``data()`` back and compare the two views

Steps run strictly in order.  Any failure up to step 3 is fatal; step 4
reports its failure in the ``ExerciseOutcome`` and leaves the deployment
result intact.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, Optional

from eth_utils import is_address

from .artifacts import ContractArtifact
from .chain.confirm import Receipt, wait_mined
from .chain.rpc import RpcClient
from .chain.tx import NonceTracker, SignedTransaction, build_transaction
from .config import RuntimeConfig
from .errors import ChainMismatch, DeployError, InsufficientParameters, MalformedResponse
from .storage import DataItem, StorageContract
from .wallet.eth import Signer, derive_address, load_private_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeploymentResult:
    address: str
    tx_hash: str
    block_number: int
    gas_used: int
    receipt: Receipt


@dataclass
class ExerciseOutcome:
    submitted: DataItem
    use_struct: bool = False
    tx_hash: Optional[str] = None
    receipt: Optional[Receipt] = None
    logged: list[DataItem] = field(default_factory=list)
    stored: Optional[DataItem] = None
    error: Optional[DeployError] = None

    @property
    def consistent(self) -> bool:
        """Exactly one matching DataSaved log, and data() returns the same item."""
        return self.logged == [self.submitted] and self.stored == self.submitted

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.consistent


@dataclass
class DeployReport:
    chain_id: int
    sender: str
    deployment: DeploymentResult
    exercise: Optional[ExerciseOutcome] = None


@contextmanager
def step(name: str) -> Iterator[None]:
    """Tag any DeployError raised inside with the step it came from."""
    logger.info(f"{name}...")
    try:
        yield
    except DeployError as exc:
        if exc.step is None:
            exc.step = name
        logger.error(f"{name} failed: {exc}")
        raise


def resolve_chain_id(rpc: RpcClient, configured: int) -> int:
    """
    The endpoint's chain ID, checked against the configured one.

    A configured value of 0 accepts whatever the endpoint reports.
    """
    reported = rpc.get_chain_id()
    if configured and configured != reported:
        raise ChainMismatch(
            f"Configured chain ID {configured} does not match {rpc.url} (reports {reported})"
        )
    return reported


class Deployer:
    def __init__(
        self,
        rpc: RpcClient,
        signer: Signer,
        artifact: ContractArtifact,
        gas_limit: int,
        call_gas_limit: int,
        poll_interval: float = 1.0,
        timeout: float = 120.0,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        self.rpc = rpc
        self.signer = signer
        self.artifact = artifact
        self.contract = StorageContract(artifact.interface)
        self.gas_limit = gas_limit
        self.call_gas_limit = call_gas_limit
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.cancel = cancel
        self.nonces = NonceTracker(rpc)

    @classmethod
    def from_config(
        cls,
        config: RuntimeConfig,
        rpc: RpcClient,
        artifact: ContractArtifact,
        cancel: Optional[threading.Event] = None,
    ) -> "Deployer":
        with step("Load signing key"):
            private_key = config.ethereum.private_key or load_private_key()
            address = derive_address(private_key)
            logger.info(f"Signing as {address}")

        with step("Resolve chain ID"):
            chain_id = resolve_chain_id(rpc, config.ethereum.chain_id)
            logger.info(f"Connected to {rpc.url} (chain {chain_id})")

        return cls(
            rpc=rpc,
            signer=Signer(private_key, chain_id),
            artifact=artifact,
            gas_limit=config.ethereum.gas_limit,
            call_gas_limit=config.test.gas_limit,
            poll_interval=config.confirm.poll_interval,
            timeout=config.confirm.timeout,
            cancel=cancel,
        )

    @property
    def chain_id(self) -> int:
        return self.signer.chain_id

    # ---- transaction lifecycle ----

    def submit(self, to: Optional[str], data: bytes, gas_limit: int) -> SignedTransaction:
        """
        Fresh nonce + gas price, build, sign, send.

        A failure before the node accepts the transaction hands the nonce
        back, so the next attempt reuses it.
        """
        nonce = self.nonces.next_nonce(self.signer.address)
        try:
            gas_price = self.rpc.suggest_gas_price()
            tx = build_transaction(
                sender=self.signer.address,
                to=to,
                data=data,
                value=0,
                gas_limit=gas_limit,
                gas_price=gas_price,
                nonce=nonce,
            )
            signed = self.signer.sign(tx)
            logger.info(f"Sending nonce={nonce} gas_price={gas_price} gas_limit={gas_limit}")
            tx_hash = self.rpc.send_raw_transaction(signed.raw)
        except DeployError:
            self.nonces.release(self.signer.address, nonce)
            raise
        if tx_hash.lower() != signed.hash.lower():
            logger.warning(f"Node returned hash {tx_hash}, locally computed {signed.hash}")
        return signed

    def transact(self, to: Optional[str], data: bytes, gas_limit: int) -> Receipt:
        signed = self.submit(to, data, gas_limit)
        logger.info(f"Transaction sent: {signed.hash}")
        return wait_mined(
            self.rpc,
            signed.hash,
            poll_interval=self.poll_interval,
            timeout=self.timeout,
            cancel=self.cancel,
        )

    # ---- steps ----

    def deploy(self, constructor_args: Optional[list] = None) -> DeploymentResult:
        with step("Check balance"):
            balance = self.rpc.get_balance(self.signer.address)
            if balance == 0:
                logger.warning(f"{self.signer.address} has zero balance; deployment will likely fail")

        with step("Deploy contract"):
            data = self.artifact.creation_data(constructor_args)
            receipt = self.transact(None, data, self.gas_limit)
            if not receipt.contract_address:
                raise MalformedResponse(
                    f"Receipt for {receipt.transaction_hash} has no contractAddress"
                )

        self.contract = self.contract.at(receipt.contract_address)
        logger.info(f"Contract deployed at {receipt.contract_address}")
        return DeploymentResult(
            address=receipt.contract_address,
            tx_hash=receipt.transaction_hash,
            block_number=receipt.block_number,
            gas_used=receipt.gas_used,
            receipt=receipt,
        )

    def save(self, address: str, item: DataItem, use_struct: bool = False) -> tuple[Receipt, list[DataItem]]:
        contract = self.contract.at(address)
        with step("Call save"):
            receipt = self.transact(address, contract.encode_save(item, use_struct), self.call_gas_limit)
        with step("Decode DataSaved"):
            return receipt, contract.saved_items(receipt)

    def read(self, address: str) -> DataItem:
        with step("Read data()"):
            if not is_address(address):
                raise InsufficientParameters(f"Invalid contract address {address!r}")
            return self.contract.at(address).read(self.rpc)

    def exercise(self, address: str, item: DataItem, use_struct: bool = False) -> ExerciseOutcome:
        """Save ``item``, then compare the emitted log with a fresh read."""
        outcome = ExerciseOutcome(submitted=item, use_struct=use_struct)
        try:
            outcome.receipt, outcome.logged = self.save(address, item, use_struct)
            outcome.tx_hash = outcome.receipt.transaction_hash
            outcome.stored = self.read(address)
        except DeployError as exc:
            outcome.error = exc
            return outcome

        if not outcome.consistent:
            logger.warning(
                f"Saved {item} but log shows {outcome.logged} and data() returns {outcome.stored}"
            )
        return outcome

    def run(self, test_item: Optional[DataItem] = None, use_struct: bool = False) -> DeployReport:
        deployment = self.deploy()
        report = DeployReport(
            chain_id=self.chain_id,
            sender=self.signer.address,
            deployment=deployment,
        )
        if test_item is not None:
            report.exercise = self.exercise(deployment.address, test_item, use_struct)
        return report
