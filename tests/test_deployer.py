"""
End-to-end deployment tests against the in-memory chain from conftest.

Covers the full flow: deploy, save via either overload, decode the
DataSaved log, read data() back.
"""

from __future__ import annotations

import threading

import pytest
import rlp

from cstore.chain.abi import ContractInterface
from cstore.chain.rpc import RpcClient
from cstore.config import BuildConfig, ConfirmConfig, EthereumConfig, RuntimeConfig, TestConfig
from cstore.deployer import Deployer, resolve_chain_id
from cstore.errors import (
    ArtifactInvalid,
    ChainMismatch,
    ConfirmationCancelled,
    ConfirmationTimeout,
    DecodeError,
    InsufficientParameters,
    RpcError,
    TransactionReverted,
)
from cstore.storage import SAVE_FIELDS, SAVE_ITEM, DataItem, StorageContract
from cstore.utils import checksum, hex_to_bytes, keccak256, to_hex
from cstore.wallet.eth import Signer, verify_chain_binding

ITEM = DataItem("user1", "email", "a@example.com")


def _config(private_key: str, chain_id: int = 0) -> RuntimeConfig:
    return RuntimeConfig(
        ethereum=EthereumConfig(rpc_url="http://fake.node:8545", private_key=private_key, chain_id=chain_id),
        build=BuildConfig(),
        test=TestConfig(enable=True, test_key="user1", test_field="email", test_value="a@example.com"),
        confirm=ConfirmConfig(poll_interval=0.01, timeout=2.0),
    )


class TestDeploy:
    def test_creation_transaction(self, deployer: Deployer, chain, wallet) -> None:
        result = deployer.deploy()
        assert len(chain.sent) == 1
        sent = chain.sent[0]
        assert sent["to"] is None
        assert sent["nonce"] == 0
        assert sent["gas"] == 3_000_000
        assert sent["gas_price"] == chain.gas_price
        assert sent["data"] == deployer.artifact.bytecode
        assert sent["sender"] == wallet[1]

        expected = checksum(to_hex(keccak256(rlp.encode([hex_to_bytes(wallet[1]), 0]))[12:]))
        assert result.address == expected
        assert result.tx_hash == sent["hash"]
        assert result.block_number > 0
        assert result.receipt.succeeded

    def test_signed_for_endpoint_chain(self, deployer: Deployer, chain, wallet, monkeypatch) -> None:
        raw_sent: list[bytes] = []
        original = RpcClient.send_raw_transaction

        def capture(self, raw: bytes) -> str:
            raw_sent.append(raw)
            return original(self, raw)

        monkeypatch.setattr(RpcClient, "send_raw_transaction", capture)
        deployer.deploy()
        assert verify_chain_binding(raw_sent[0], chain.chain_id, wallet[1])
        assert not verify_chain_binding(raw_sent[0], 1, wallet[1])

    def test_waits_for_mining(self, deployer: Deployer, chain) -> None:
        chain.mine_after = 3
        result = deployer.deploy()
        assert chain.polls[result.tx_hash] == 4

    def test_zero_balance_warns(self, deployer: Deployer, chain, caplog: pytest.LogCaptureFixture) -> None:
        chain.balance = 0
        with caplog.at_level("WARNING"):
            deployer.deploy()
        assert "zero balance" in caplog.text

    def test_reverted_creation(self, deployer: Deployer, chain) -> None:
        chain.revert_next = True
        with pytest.raises(TransactionReverted) as excinfo:
            deployer.deploy()
        assert excinfo.value.step == "Deploy contract"
        assert excinfo.value.describe().startswith("[Deploy contract]")

    def test_timeout(self, deployer: Deployer, chain) -> None:
        chain.mine_after = 10_000
        deployer.timeout = 0.1
        with pytest.raises(ConfirmationTimeout) as excinfo:
            deployer.deploy()
        assert not isinstance(excinfo.value, ConfirmationCancelled)
        assert excinfo.value.tx_hash == chain.sent[0]["hash"]

    def test_cancel(self, deployer: Deployer, chain) -> None:
        chain.mine_after = 10_000
        deployer.cancel = threading.Event()
        deployer.cancel.set()
        with pytest.raises(ConfirmationCancelled):
            deployer.deploy()

    def test_node_rejects_wrong_chain(self, rpc, chain, artifact, wallet) -> None:
        deployer = Deployer(rpc, Signer(wallet[0], 1), artifact, 3_000_000, 300_000, poll_interval=0.01)
        with pytest.raises(RpcError, match="invalid chain id"):
            deployer.deploy()
        assert chain.sent == []

    def test_rejected_send_releases_nonce(self, deployer: Deployer, chain) -> None:
        chain.reject_next = "txpool is full"
        with pytest.raises(RpcError, match="txpool is full") as excinfo:
            deployer.deploy()
        assert excinfo.value.step == "Deploy contract"
        assert chain.sent == []

        result = deployer.deploy()
        assert result.receipt.succeeded
        assert [tx["nonce"] for tx in chain.sent] == [0]

    def test_invalid_contract_address(self, deployer: Deployer, chain) -> None:
        deployer.deploy()
        outcome = deployer.exercise("0x1234", ITEM)
        assert isinstance(outcome.error, InsufficientParameters)
        assert outcome.error.step == "Call save"
        assert "Invalid recipient address" in str(outcome.error)
        assert len(chain.sent) == 1

        deployment = deployer.deploy()
        assert chain.sent[-1]["nonce"] == 1
        assert deployer.exercise(deployment.address, ITEM).succeeded


class TestChainId:
    def test_adopts_endpoint_value(self, rpc, chain) -> None:
        assert resolve_chain_id(rpc, 0) == chain.chain_id

    def test_matching(self, rpc, chain) -> None:
        assert resolve_chain_id(rpc, chain.chain_id) == chain.chain_id

    def test_mismatch(self, rpc) -> None:
        with pytest.raises(ChainMismatch, match="does not match"):
            resolve_chain_id(rpc, 1)

    def test_from_config(self, rpc, chain, artifact, wallet) -> None:
        deployer = Deployer.from_config(_config(wallet[0]), rpc, artifact)
        assert deployer.chain_id == chain.chain_id
        assert deployer.signer.address == wallet[1]
        assert deployer.gas_limit == 3_000_000
        assert deployer.call_gas_limit == 300_000

    def test_from_config_mismatch_tagged(self, rpc, artifact, wallet) -> None:
        with pytest.raises(ChainMismatch) as excinfo:
            Deployer.from_config(_config(wallet[0], chain_id=1), rpc, artifact)
        assert excinfo.value.step == "Resolve chain ID"


class TestExercise:
    def test_three_string_overload(self, deployer: Deployer, chain) -> None:
        deployment = deployer.deploy()
        outcome = deployer.exercise(deployment.address, ITEM)

        assert outcome.error is None
        assert outcome.receipt is not None and outcome.receipt.succeeded
        assert outcome.logged == [ITEM]
        assert outcome.stored == ITEM
        assert outcome.consistent and outcome.succeeded

        save_tx = chain.sent[1]
        assert save_tx["nonce"] == 1
        assert save_tx["gas"] == 300_000
        assert save_tx["to"] == deployment.address
        selector = deployer.artifact.interface.function("save", signature=SAVE_FIELDS).selector
        assert save_tx["data"][:4] == selector

    def test_struct_overload_reaches_same_state(self, deployer: Deployer, chain) -> None:
        first = deployer.deploy()
        by_fields = deployer.exercise(first.address, ITEM, use_struct=False)
        second = deployer.deploy()
        by_struct = deployer.exercise(second.address, ITEM, use_struct=True)

        assert by_struct.succeeded and by_fields.succeeded
        assert by_struct.stored == by_fields.stored == ITEM
        assert by_struct.logged == by_fields.logged == [ITEM]

        interface = deployer.artifact.interface
        fields_data, struct_data = chain.sent[1]["data"], chain.sent[3]["data"]
        assert fields_data[:4] == interface.function("save", signature=SAVE_FIELDS).selector
        assert struct_data[:4] == interface.function("save", signature=SAVE_ITEM).selector
        assert fields_data != struct_data
        assert [tx["nonce"] for tx in chain.sent] == [0, 1, 2, 3]

    @pytest.mark.parametrize(
        "item",
        [
            DataItem("", "", ""),
            DataItem("ключ", "поле", "значение"),
            DataItem("a\x00b", "f", "v" * 100),
        ],
        ids=["empty", "multibyte", "nul-and-long"],
    )
    def test_edge_case_strings(self, deployer: Deployer, item: DataItem) -> None:
        deployment = deployer.deploy()
        outcome = deployer.exercise(deployment.address, item, use_struct=True)
        assert outcome.succeeded
        assert outcome.stored == item

    def test_logs_from_other_contracts_ignored(self, deployer: Deployer, chain) -> None:
        chain.noise_log = True
        deployment = deployer.deploy()
        outcome = deployer.exercise(deployment.address, ITEM)
        assert len(outcome.receipt.logs) == 2
        assert outcome.logged == [ITEM]

    def test_foreign_events_from_contract_ignored(self, deployer: Deployer, chain) -> None:
        chain.foreign_log = True
        deployment = deployer.deploy()
        outcome = deployer.exercise(deployment.address, ITEM)
        assert len(outcome.receipt.logs_from(deployment.address)) == 2
        assert outcome.logged == [ITEM]

    def test_reverted_save_keeps_deployment(self, deployer: Deployer, chain) -> None:
        deployment = deployer.deploy()
        chain.revert_next = True
        outcome = deployer.exercise(deployment.address, ITEM)
        assert isinstance(outcome.error, TransactionReverted)
        assert outcome.error.step == "Call save"
        assert not outcome.succeeded
        assert chain.state[deployment.address.lower()] == ("", "", "")

    def test_read_without_code(self, deployer: Deployer) -> None:
        with pytest.raises(DecodeError) as excinfo:
            deployer.read("0x" + "99" * 20)
        assert excinfo.value.step == "Read data()"

    def test_read_invalid_address(self, deployer: Deployer, chain) -> None:
        with pytest.raises(InsufficientParameters, match="Invalid contract address") as excinfo:
            deployer.read("0x1234")
        assert excinfo.value.step == "Read data()"
        assert "eth_call" not in chain.methods

    def test_nonce_not_reused_when_node_lags(self, deployer: Deployer, chain) -> None:
        deployment = deployer.deploy()
        chain.stale_nonce = True
        outcome = deployer.exercise(deployment.address, ITEM)
        assert outcome.succeeded
        assert [tx["nonce"] for tx in chain.sent] == [0, 1]


class TestRun:
    def test_with_test_item(self, deployer: Deployer, wallet, chain) -> None:
        report = deployer.run(ITEM)
        assert report.chain_id == chain.chain_id
        assert report.sender == wallet[1]
        assert report.exercise is not None and report.exercise.succeeded
        assert report.exercise.submitted == ITEM

    def test_without_test_item(self, deployer: Deployer, chain) -> None:
        report = deployer.run()
        assert report.exercise is None
        assert len(chain.sent) == 1


class TestStorageContract:
    def test_rejects_foreign_abi(self) -> None:
        with pytest.raises(ArtifactInvalid):
            StorageContract(ContractInterface([]))

    def test_requires_address(self, interface) -> None:
        with pytest.raises(ValueError):
            StorageContract(interface).read(None)  # type: ignore[arg-type]

    def test_encode_save_matches_overloads(self, interface) -> None:
        contract = StorageContract(interface)
        assert contract.encode_save(ITEM) == contract.encode_save_fields("user1", "email", "a@example.com")
        assert contract.encode_save(ITEM, use_struct=True) == contract.encode_save_item(ITEM)
