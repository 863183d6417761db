"""
Tests for the deterministic hashing primitives.
"""

import hashlib
from datetime import datetime, timezone, timedelta

from bluecarbon.core.constants import GENESIS_PREVIOUS_HASH
from bluecarbon.utils.hashing import (
    compute_block_hash,
    compute_entry_hash,
    compute_merkle_root,
    compute_proof_hash,
    derive_tx_id,
    derive_validator_tag,
    hash_payload,
    sha256_hex
)
from bluecarbon.utils.time import canonical_timestamp, utc_now


def sha(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


TS = datetime(2024, 3, 1, 12, 30, 45, 123456)


def test_sha256_hex_accepts_str_and_bytes():
    assert sha256_hex("mangrove") == sha("mangrove")
    assert sha256_hex(b"mangrove") == sha("mangrove")


def test_hash_payload_ignores_key_order():
    assert hash_payload({"a": 1, "b": 2}) == hash_payload({"b": 2, "a": 1})
    assert hash_payload({"a": 1}) != hash_payload({"a": 2})


def test_canonical_timestamp_normalises_aware_values():
    aware = datetime(2024, 3, 1, 14, 30, 45, 123456, tzinfo=timezone(timedelta(hours=2)))
    assert canonical_timestamp(aware) == canonical_timestamp(TS)
    assert canonical_timestamp(datetime(2024, 3, 1)) == "2024-03-01T00:00:00.000000"


def test_utc_now_is_aware_and_hashes_like_its_stored_form():
    now = utc_now()
    assert now.tzinfo is not None
    assert now.utcoffset() == timedelta(0)
    # SQLite returns the stored value without tzinfo
    assert canonical_timestamp(now) == canonical_timestamp(now.replace(tzinfo=None))


def test_merkle_root_of_empty_list_is_hash_of_empty_string():
    assert compute_merkle_root([]) == sha("")


def test_merkle_root_of_single_id_is_the_id():
    assert compute_merkle_root(["abc"]) == "abc"


def test_merkle_root_duplicates_last_node_on_odd_levels():
    a, b, c = "a" * 64, "b" * 64, "c" * 64
    ab = sha(a + b)
    cc = sha(c + c)
    assert compute_merkle_root([a, b, c]) == sha(ab + cc)


def test_merkle_root_depends_on_order():
    ids = [sha(str(i)) for i in range(5)]
    assert compute_merkle_root(ids) == compute_merkle_root(list(ids))
    assert compute_merkle_root(ids) != compute_merkle_root(list(reversed(ids)))


def test_block_hash_keeps_its_canonical_input():
    block_hash = compute_block_hash(0, TS, "root", GENESIS_PREVIOUS_HASH, 2)

    assert block_hash.canonical_input == (
        f"0|2024-03-01T12:30:45.123456|root|{GENESIS_PREVIOUS_HASH}|2"
    )
    assert block_hash.hash == sha(block_hash.canonical_input)


def test_block_hash_changes_with_any_header_field():
    base = compute_block_hash(1, TS, "root", "prev", 3).hash

    assert compute_block_hash(2, TS, "root", "prev", 3).hash != base
    assert compute_block_hash(1, TS + timedelta(microseconds=1), "root", "prev", 3).hash != base
    assert compute_block_hash(1, TS, "root2", "prev", 3).hash != base
    assert compute_block_hash(1, TS, "root", "prev2", 3).hash != base
    assert compute_block_hash(1, TS, "root", "prev", 4).hash != base


def test_tx_id_is_content_derived():
    tx_id = derive_tx_id("project-1", "buyer-1", 40.0, TS)

    assert tx_id == sha("project-1|buyer-1|40.0|2024-03-01T12:30:45.123456")
    assert derive_tx_id("project-1", "buyer-1", 40.0, TS) == tx_id
    assert derive_tx_id("project-1", "buyer-1", 40.5, TS) != tx_id


def test_entry_hash_covers_every_field():
    args = ["tx", "Buy", "contributor", "buyer", 10.0, "project", TS, "proof"]
    base = compute_entry_hash(*args)

    for position, replacement in enumerate(
        ["tx2", "Mint", "system", "other", 10.5, "project2", TS + timedelta(seconds=1), "proof2"]
    ):
        changed = list(args)
        changed[position] = replacement
        assert compute_entry_hash(*changed) != base


def test_proof_hash_of_missing_reference():
    assert compute_proof_hash(None) == sha("")
    assert compute_proof_hash("ipfs://x") == sha("ipfs://x")


def test_validator_tag_binds_block_and_approver():
    assert derive_validator_tag("hash", "verifier-1") == sha("hash:verifier-1")
    assert derive_validator_tag("hash", "verifier-1") != derive_validator_tag("hash", "verifier-2")
