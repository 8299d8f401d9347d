"""
Chain - on-chain interaction layer.

Provides the ABI codec, JSON-RPC transport, transaction builder and
confirmation tracker.

Uses httpx + eth-account + eth-abi instead of the heavyweight web3.py.
"""
