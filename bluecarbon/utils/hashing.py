"""
Hashing utilities for the tamper-evident ledger and the audit trail.

Every function here is deterministic: same input, same digest. No salts,
no randomness. Canonical serialisations join fields with ``|`` in a fixed
order so a stored ``block_hash_input`` can be re-hashed later without
re-deriving any serialisation logic.
"""

import hashlib
import json
from datetime import datetime
from typing import Any, Dict, List, NamedTuple, Optional

from bluecarbon.core.constants import HASH_FIELD_SEPARATOR, VALIDATOR_TAG_SEPARATOR
from bluecarbon.utils.time import canonical_timestamp


class BlockHash(NamedTuple):
    """Block hash together with the exact string that was hashed."""
    hash: str
    canonical_input: str


def sha256_hex(data: str | bytes) -> str:
    """Hexadecimal SHA-256 digest of ``data`` (str is UTF-8 encoded)."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def hash_payload(payload: Dict[str, Any]) -> str:
    """
    Generate SHA-256 hash of a payload for audit trail.

    Args:
        payload: Dictionary to hash

    Returns:
        Hexadecimal SHA-256 hash string
    """
    # Sort keys for consistent hashing
    payload_str = json.dumps(payload, sort_keys=True, default=str)
    return sha256_hex(payload_str)


def canonical_credits(credits: float) -> str:
    """Shortest round-tripping text form of a credit amount."""
    return repr(float(credits))


def _join(*fields: Any) -> str:
    return HASH_FIELD_SEPARATOR.join(str(f) for f in fields)


def derive_tx_id(
    project_id: str,
    to_party: str,
    credits: float,
    timestamp: datetime
) -> str:
    """Content-derived ledger transaction id."""
    return sha256_hex(_join(
        project_id,
        to_party,
        canonical_credits(credits),
        canonical_timestamp(timestamp)
    ))


def compute_proof_hash(proof_ref: Optional[str]) -> str:
    """Hash of the supporting evidence reference; a missing proof hashes the empty string."""
    return sha256_hex(proof_ref or "")


def compute_entry_hash(
    tx_id: str,
    kind: str,
    from_party: str,
    to_party: str,
    credits: float,
    project_id: str,
    timestamp: datetime,
    proof_hash: str
) -> str:
    """Digest over every immutable field of a ledger transaction."""
    return sha256_hex(_join(
        tx_id,
        kind,
        from_party,
        to_party,
        canonical_credits(credits),
        project_id,
        canonical_timestamp(timestamp),
        proof_hash
    ))


def compute_merkle_root(tx_ids: List[str]) -> str:
    """
    Reduce an ordered list of transaction ids to a single root.

    Each level concatenates adjacent pairs and hashes them. When a level has
    an odd number of nodes the last node is paired with itself. A single id
    is its own root and an empty list yields the hash of the empty string.
    The result depends on the order of ``tx_ids``.
    """
    if not tx_ids:
        return sha256_hex("")

    layer = list(tx_ids)
    while len(layer) > 1:
        next_layer = []
        for i in range(0, len(layer), 2):
            left = layer[i]
            right = layer[i + 1] if i + 1 < len(layer) else left
            next_layer.append(sha256_hex(left + right))
        layer = next_layer
    return layer[0]


def compute_block_hash(
    index: int,
    timestamp: datetime,
    merkle_root: str,
    previous_hash: str,
    transaction_count: int
) -> BlockHash:
    """Serialise block header fields in fixed order and hash the result."""
    canonical_input = _join(
        index,
        canonical_timestamp(timestamp),
        merkle_root,
        previous_hash,
        transaction_count
    )
    return BlockHash(hash=sha256_hex(canonical_input), canonical_input=canonical_input)


def derive_validator_tag(block_hash: str, approver_id: str) -> str:
    """Audit fingerprint binding a block to the identity that approved it."""
    return sha256_hex(f"{block_hash}{VALIDATOR_TAG_SEPARATOR}{approver_id}")
