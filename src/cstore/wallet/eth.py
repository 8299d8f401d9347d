"""
ECDSA / secp256k1 signing for deployment transactions.

One key signs every transaction of a run.  Signatures follow EIP-155:
the chain ID is folded into ``v`` and into the signing hash, so a
transaction signed for one chain does not verify on another.

Dependencies: eth-account for signing, rlp + eth-keys for re-checking
a raw transaction against a chain ID.
"""

from __future__ import annotations

import logging
import os
import secrets
from pathlib import Path
from typing import Optional

import rlp
from dotenv import load_dotenv
from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError
from rlp.exceptions import DecodingError as RLPDecodingError

from ..chain.tx import SignedTransaction, UnsignedTransaction
from ..errors import ChainMismatch, InvalidKey, SigningError
from ..utils import keccak256, same_address, strip_0x, to_hex

logger = logging.getLogger(__name__)

# EIP-155: v = chain_id * 2 + 35 + recovery_id
CHAIN_ID_OFFSET = 35


def generate_key() -> tuple[str, str]:
    """
    Generate a new secp256k1 keypair.

    Returns:
        Tuple of (private_key_hex, address)
    """
    private_key = "0x" + secrets.token_hex(32)
    return private_key, Account.from_key(private_key).address


def _account(private_key: str) -> LocalAccount:
    if not isinstance(private_key, str) or not private_key.strip():
        raise InvalidKey("Private key is empty")
    body = strip_0x(private_key.strip())
    if len(body) != 64:
        raise InvalidKey(f"Private key must be 32 bytes of hex (got {len(body)} hex digits)")
    try:
        return Account.from_key("0x" + body)
    except (ValueError, ValidationError) as exc:
        # Key material stays out of the message
        raise InvalidKey(f"Private key is not a valid secp256k1 key: {type(exc).__name__}") from exc


def derive_address(private_key: str) -> str:
    """Checksummed address for a private key (pure, deterministic)."""
    return _account(private_key).address


def load_private_key(env_path: Optional[Path] = None) -> str:
    """
    Load PRIVATE_KEY from the environment (optionally after reading a .env).

    Returns:
        0x-prefixed hex private key

    Raises:
        InvalidKey: If PRIVATE_KEY is not set
    """
    if env_path is not None and env_path.exists():
        load_dotenv(env_path, override=False)

    private_key = os.environ.get("PRIVATE_KEY")
    if not private_key:
        raise InvalidKey("PRIVATE_KEY not found. Set it in the config, environment, or .env")

    if not private_key.startswith("0x"):
        private_key = "0x" + private_key
    return private_key


class Signer:
    """Signs transactions for a single account bound to a single chain."""

    def __init__(self, private_key: str, chain_id: int) -> None:
        self._account = _account(private_key)
        self.chain_id = chain_id

    def __repr__(self) -> str:
        return f"Signer(address={self.address}, chain_id={self.chain_id})"

    @property
    def address(self) -> str:
        return self._account.address

    def sign(
        self,
        tx: UnsignedTransaction,
        chain_id: Optional[int] = None,
        allow_chain_override: bool = False,
    ) -> SignedTransaction:
        """
        Sign ``tx`` for the bound chain.

        Raises:
            ChainMismatch: If ``chain_id`` differs from the bound chain and
                ``allow_chain_override`` is not set
            SigningError: If the sender is not this account or signing fails
        """
        target = self.chain_id if chain_id is None else chain_id
        if target != self.chain_id and not allow_chain_override:
            raise ChainMismatch(
                f"Refusing to sign for chain {target}; signer is bound to chain {self.chain_id}"
            )
        if not same_address(tx.sender, self.address):
            raise SigningError(f"Transaction sender {tx.sender} is not signer {self.address}")

        try:
            signed = self._account.sign_transaction(tx.to_signable(target))
        except (TypeError, ValueError) as exc:
            raise SigningError(f"Cannot sign transaction nonce={tx.nonce}: {exc}") from exc

        raw = bytes(signed.raw_transaction)
        tx_hash = to_hex(bytes(signed.hash))
        logger.debug(f"Signed nonce={tx.nonce} chain={target} hash={tx_hash}")
        return SignedTransaction(transaction=tx, chain_id=target, raw=raw, hash=tx_hash)


def verify_chain_binding(raw: bytes, chain_id: int, expected_address: str) -> bool:
    """
    Check that a raw legacy transaction was signed by ``expected_address``
    for ``chain_id``.

    The EIP-155 signing hash is rebuilt with ``chain_id``; a ``v`` that does
    not encode that chain, or a recovered key for another address, fails.
    """
    try:
        fields = rlp.decode(bytes(raw))
    except RLPDecodingError:
        return False
    if not isinstance(fields, list) or len(fields) != 9:
        return False

    nonce, gas_price, gas, to, value, data, v_raw, r_raw, s_raw = fields
    v = int.from_bytes(v_raw, "big")
    recovery_id = v - CHAIN_ID_OFFSET - 2 * chain_id
    if recovery_id not in (0, 1):
        return False

    unsigned = rlp.encode([nonce, gas_price, gas, to, value, data, chain_id, 0, 0])
    try:
        signature = keys.Signature(
            vrs=(recovery_id, int.from_bytes(r_raw, "big"), int.from_bytes(s_raw, "big"))
        )
        public_key = signature.recover_public_key_from_msg_hash(keccak256(unsigned))
    except (BadSignature, ValidationError):
        return False
    return same_address(public_key.to_checksum_address(), expected_address)
