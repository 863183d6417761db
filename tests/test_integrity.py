"""
Tests for chain verification against direct tampering of stored rows.
"""

from sqlalchemy import text

from bluecarbon.handlers.integrity import export_chain, get_chain, verify_chain
from bluecarbon.models.ledger import FindingKind, IntegrityStatus


async def build_chain(settlement, parties, blocks=3):
    """One Mint block, then one Buy block per further purchase."""
    await settlement.record_approval(
        parties.project.id, parties.contributor.id, 100.0, "ipfs://evidence", parties.verifier.id
    )
    for n in range(blocks - 1):
        await settlement.purchase(
            parties.buyer.id, parties.contributor.id, parties.project.id, 5.0 + n
        )


async def tamper(session_factory, statement, **params):
    async with session_factory() as session:
        await session.execute(text(statement), params)
        await session.commit()


async def verify(session_factory):
    async with session_factory() as session:
        return await verify_chain(session)


def kinds(report):
    return {(f.block_index, f.kind) for f in report.errors}


async def test_empty_chain_is_verified(session_factory):
    report = await verify(session_factory)
    assert report.status == IntegrityStatus.VERIFIED
    assert report.total_blocks == 0
    assert report.errors == []


async def test_untouched_chain_is_verified(settlement, parties, session_factory):
    await build_chain(settlement, parties)

    report = await verify(session_factory)

    assert report.status == IntegrityStatus.VERIFIED
    assert report.total_blocks == 3


async def test_edited_transaction_credits_are_detected(settlement, parties, session_factory):
    await build_chain(settlement, parties)
    await tamper(
        session_factory,
        "UPDATE transactions SET credits = 999 WHERE id = (SELECT MIN(id) FROM transactions)"
    )

    report = await verify(session_factory)

    assert report.status == IntegrityStatus.TAMPERED
    assert (0, FindingKind.ENTRY_HASH_MISMATCH) in kinds(report)
    assert (0, FindingKind.TX_ID_MISMATCH) in kinds(report)


async def test_edited_proof_hash_is_detected(settlement, parties, session_factory):
    await build_chain(settlement, parties)
    await tamper(session_factory, "UPDATE transactions SET proof_hash = 'forged' WHERE id = (SELECT MAX(id) FROM transactions)")

    report = await verify(session_factory)

    assert report.status == IntegrityStatus.TAMPERED
    assert {f.kind for f in report.errors} == {FindingKind.ENTRY_HASH_MISMATCH}
    assert all(f.tx_id for f in report.errors)


async def test_rewritten_tx_id_breaks_merkle_root(settlement, parties, session_factory):
    await build_chain(settlement, parties)
    await tamper(session_factory, "UPDATE transactions SET tx_id = 'forged' WHERE id = (SELECT MIN(id) FROM transactions)")

    report = await verify(session_factory)

    assert (0, FindingKind.MERKLE_MISMATCH) in kinds(report)


async def test_moved_transaction_is_detected_in_both_blocks(settlement, parties, session_factory):
    await build_chain(settlement, parties)
    await tamper(
        session_factory,
        "UPDATE transactions SET block_id = (SELECT id FROM blocks WHERE \"index\" = 2) "
        "WHERE block_id = (SELECT id FROM blocks WHERE \"index\" = 1)"
    )

    found = kinds(await verify(session_factory))

    assert (1, FindingKind.COUNT_MISMATCH) in found
    assert (1, FindingKind.MERKLE_MISMATCH) in found
    assert (2, FindingKind.COUNT_MISMATCH) in found


async def test_edited_block_hash_breaks_next_link(settlement, parties, session_factory):
    await build_chain(settlement, parties)
    await tamper(session_factory, "UPDATE blocks SET block_hash = 'forged' WHERE \"index\" = 1")

    found = kinds(await verify(session_factory))

    assert (1, FindingKind.HASH_MISMATCH) in found
    assert (2, FindingKind.BROKEN_LINK) in found


async def test_edited_header_field_is_detected(settlement, parties, session_factory):
    await build_chain(settlement, parties)
    await tamper(session_factory, "UPDATE blocks SET transaction_count = 7 WHERE \"index\" = 2")

    found = kinds(await verify(session_factory))

    assert (2, FindingKind.HEADER_MISMATCH) in found
    assert (2, FindingKind.COUNT_MISMATCH) in found


async def test_forged_genesis_link_is_detected(settlement, parties, session_factory):
    await build_chain(settlement, parties)
    await tamper(session_factory, "UPDATE blocks SET previous_hash = 'abc' WHERE \"index\" = 0")

    found = kinds(await verify(session_factory))

    assert (0, FindingKind.GENESIS_MISMATCH) in found
    assert (0, FindingKind.HEADER_MISMATCH) in found


async def test_deleted_block_leaves_index_gap(settlement, parties, session_factory):
    await build_chain(settlement, parties)
    await tamper(session_factory, "DELETE FROM blocks WHERE \"index\" = 1")

    report = await verify(session_factory)

    assert report.total_blocks == 2
    assert (2, FindingKind.INDEX_GAP) in kinds(report)
    assert (2, FindingKind.BROKEN_LINK) in kinds(report)
    assert all(f.message.startswith("Block #") for f in report.errors)


async def test_chain_view_and_export(settlement, parties, session_factory):
    await build_chain(settlement, parties, blocks=2)

    async with session_factory() as session:
        chain = await get_chain(session)
        export = await export_chain(session)

    assert [b.index for b in chain] == [0, 1]
    assert [tx.kind.value for tx in chain[0].transactions] == ["Mint"]
    assert [tx.kind.value for tx in chain[1].transactions] == ["Buy"]
    assert export.total_blocks == 2
    assert export.total_transactions == 2
    assert export.pending_transactions == 0
    assert export.integrity.status == IntegrityStatus.VERIFIED
