"""
Shared fixtures: an in-memory JSON-RPC node served through httpx.MockTransport.

The fake node recovers the sender from each raw signed transaction,
enforces the chain ID and nonce, derives creation addresses, and runs
the Storage contract's ``save`` / ``data`` entry points.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterator, Optional

import httpx
import pytest
import rlp
from eth_abi import decode, encode
from eth_account import Account

from cstore.artifacts import ContractArtifact
from cstore.chain.abi import ContractInterface
from cstore.chain.rpc import HttpTransport, RpcClient
from cstore.deployer import Deployer
from cstore.storage import SAVE_FIELDS, SAVE_ITEM
from cstore.utils import checksum, hex_to_bytes, keccak256, to_hex
from cstore.wallet.eth import Signer, generate_key

FIXTURES = Path(__file__).parent / "fixtures"
BYTECODE = bytes.fromhex("6001600155600080fd")
FAKE_URL = "http://fake.node:8545"


class RpcFault(Exception):
    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class FakeChain:
    def __init__(
        self,
        interface: ContractInterface,
        chain_id: int = 1337,
        gas_price: int = 1_000_000_000,
        balance: int = 10**18,
        mine_after: int = 0,
    ) -> None:
        self.interface = interface
        self.chain_id = chain_id
        self.gas_price = gas_price
        self.balance = balance
        self.mine_after = mine_after
        self.stale_nonce = False
        self.revert_next = False
        self.noise_log = False
        self.foreign_log = False
        self.reject_next: Optional[str] = None
        self.nonces: dict[str, int] = {}
        self.state: dict[str, tuple[str, str, str]] = {}
        self.receipts: dict[str, dict[str, Any]] = {}
        self.polls: dict[str, int] = {}
        self.sent: list[dict[str, Any]] = []
        self.methods: list[str] = []
        self.block = 100

    # ---- transport ----

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.methods.append(body["method"])
        fn = getattr(self, "_" + body["method"], None)
        reply: dict[str, Any] = {"jsonrpc": "2.0", "id": body["id"]}
        try:
            if fn is None:
                raise RpcFault(-32601, f"the method {body['method']} does not exist")
            reply["result"] = fn(*body["params"])
        except RpcFault as fault:
            reply["error"] = {"code": fault.code, "message": fault.message}
        return httpx.Response(200, json=reply)

    def rpc(self) -> RpcClient:
        return RpcClient(HttpTransport(FAKE_URL, transport=httpx.MockTransport(self.handler)))

    # ---- eth_* ----

    def _eth_chainId(self) -> str:
        return hex(self.chain_id)

    def _eth_gasPrice(self) -> str:
        return hex(self.gas_price)

    def _eth_getBalance(self, address: str, block: str) -> str:
        return hex(self.balance)

    def _eth_getTransactionCount(self, address: str, block: str) -> str:
        count = self.nonces.get(address.lower(), 0)
        if self.stale_nonce:
            count = 0
        return hex(count)

    def _eth_sendRawTransaction(self, raw_hex: str) -> str:
        if self.reject_next is not None:
            message, self.reject_next = self.reject_next, None
            raise RpcFault(-32000, message)
        raw = hex_to_bytes(raw_hex)
        nonce_b, gas_price_b, gas_b, to_b, value_b, data, v_b, _, _ = rlp.decode(raw)
        v = int.from_bytes(v_b, "big")
        if (v - 35) // 2 != self.chain_id:
            raise RpcFault(-32000, "invalid chain id for signer")
        sender = Account.recover_transaction(raw_hex)
        nonce = int.from_bytes(nonce_b, "big")
        expected = self.nonces.get(sender.lower(), 0)
        if nonce != expected:
            raise RpcFault(-32000, f"nonce too low: next nonce {expected}, tx nonce {nonce}")
        self.nonces[sender.lower()] = expected + 1

        tx_hash = to_hex(keccak256(raw))
        self.sent.append(
            {
                "hash": tx_hash,
                "sender": sender,
                "nonce": nonce,
                "gas": int.from_bytes(gas_b, "big"),
                "gas_price": int.from_bytes(gas_price_b, "big"),
                "to": checksum(to_hex(to_b)) if to_b else None,
                "data": bytes(data),
            }
        )
        self.block += 1
        receipt: dict[str, Any] = {
            "transactionHash": tx_hash,
            "blockNumber": hex(self.block),
            "gasUsed": hex(21_000 + 16 * len(data)),
            "status": "0x1",
            "contractAddress": None,
            "logs": [],
        }
        if self.revert_next:
            self.revert_next = False
            receipt["status"] = "0x0"
        elif not to_b:
            address = checksum(to_hex(keccak256(rlp.encode([hex_to_bytes(sender), nonce]))[12:]))
            self.state[address.lower()] = ("", "", "")
            receipt["contractAddress"] = address
        else:
            receipt["logs"] = self._execute(checksum(to_hex(to_b)), bytes(data))
        self.receipts[tx_hash] = receipt
        self.polls[tx_hash] = 0
        return tx_hash

    def _execute(self, address: str, data: bytes) -> list[dict[str, Any]]:
        if address.lower() not in self.state:
            return []
        selector, args = data[:4], data[4:]
        if selector == self.interface.function("save", signature=SAVE_FIELDS).selector:
            item = tuple(decode(["string", "string", "string"], args))
        elif selector == self.interface.function("save", signature=SAVE_ITEM).selector:
            (item,) = decode(["(string,string,string)"], args)
        else:
            raise RpcFault(3, "execution reverted")
        self.state[address.lower()] = tuple(item)
        topics, payload = self.interface.encode_log("DataSaved", list(item))
        logs = [_log(address, topics, payload, 0)]
        if self.noise_log:
            other = "0x" + "11" * 20
            logs.insert(0, _log(other, topics, encode(["string"] * 3, ["x", "y", "z"]), 1))
        if self.foreign_log:
            logs.append(_log(address, [keccak256(b"Touched(uint256)")], encode(["uint256"], [7]), len(logs)))
        return logs

    def _eth_getTransactionReceipt(self, tx_hash: str) -> Optional[dict[str, Any]]:
        if tx_hash not in self.receipts:
            return None
        self.polls[tx_hash] += 1
        if self.polls[tx_hash] <= self.mine_after:
            return None
        return self.receipts[tx_hash]

    def _eth_call(self, call: dict[str, Any], block: str) -> str:
        state = self.state.get(call["to"].lower())
        if state is None:
            return "0x"
        if hex_to_bytes(call["data"]) != self.interface.function("data").selector:
            raise RpcFault(3, "execution reverted")
        return to_hex(encode(["string", "string", "string"], list(state)))


def _log(address: str, topics: list[bytes], data: bytes, index: int) -> dict[str, Any]:
    return {
        "address": address,
        "topics": [to_hex(t) for t in topics],
        "data": to_hex(data),
        "logIndex": hex(index),
    }


@pytest.fixture()
def interface() -> ContractInterface:
    return ContractInterface.from_json((FIXTURES / "Storage.abi").read_text(encoding="utf-8"))


@pytest.fixture()
def artifact(interface: ContractInterface) -> ContractArtifact:
    return ContractArtifact(name="Storage", bytecode=BYTECODE, interface=interface)


@pytest.fixture()
def chain(interface: ContractInterface) -> FakeChain:
    return FakeChain(interface)


@pytest.fixture()
def rpc(chain: FakeChain) -> Iterator[RpcClient]:
    client = chain.rpc()
    yield client
    client.close()


@pytest.fixture()
def wallet() -> tuple[str, str]:
    return generate_key()


@pytest.fixture()
def deployer(rpc: RpcClient, chain: FakeChain, artifact: ContractArtifact, wallet: tuple[str, str]) -> Deployer:
    return Deployer(
        rpc=rpc,
        signer=Signer(wallet[0], chain.chain_id),
        artifact=artifact,
        gas_limit=3_000_000,
        call_gas_limit=300_000,
        poll_interval=0.01,
        timeout=2.0,
    )
