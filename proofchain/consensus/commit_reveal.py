from __future__ import annotations

import secrets

from web3 import Web3


def generate_salt() -> str:
    return "0x" + secrets.token_hex(32)


def commit_hash(vote: int, confidence: int, salt: str) -> str:
    """``keccak256(abi.encodePacked(uint8 vote, uint256 confidence, keccak256(salt)))``."""
    digest = Web3.solidity_keccak(
        ["uint8", "uint256", "bytes32"],
        [int(vote), int(confidence), Web3.keccak(text=salt)],
    )
    return Web3.to_hex(digest)


def verify_commit(expected_hash: str, vote: int, confidence: int, salt: str) -> bool:
    return commit_hash(vote, confidence, salt).lower() == expected_hash.lower()
