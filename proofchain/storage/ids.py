"""Bridges opaque storage ids and the numeric content ids the voting contract expects.

A content item created without a numeric id gets
``keccak256(id_string) mod NUMERIC_ID_MODULUS`` so the mapping is the same on
every node and every run.
"""
from __future__ import annotations

from web3 import Web3

from proofchain.models.errors import ContentNotFound
from proofchain.models.types import ContentItem

NUMERIC_ID_MODULUS = 10**12


def numeric_id_for(id_string: str) -> int:
    digest = Web3.keccak(text=id_string)
    return int.from_bytes(bytes(digest), "big") % NUMERIC_ID_MODULUS


def resolve_content(database: "Database", ref: object) -> ContentItem:
    """Find a content item by numeric content id or opaque storage id."""
    ref_str = str(ref).strip()
    content = None
    if ref_str.isdigit():
        content = database.get_content_by_numeric_id(int(ref_str))
    if content is None and ref_str:
        content = database.get_content(ref_str)
    if content is None:
        raise ContentNotFound(ref_str)
    return content
