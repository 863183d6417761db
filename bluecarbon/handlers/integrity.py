"""
Integrity verifier and read-only chain views.

Re-derives every stored hash and link from the durable store. This is the
only mechanism that detects direct tampering with ledger rows, since the
transactions themselves carry no signature.
"""

import logging
from typing import Dict, List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from bluecarbon.core.constants import GENESIS_PREVIOUS_HASH
from bluecarbon.core.errors import StorageUnavailable
from bluecarbon.handlers.ledger_store import (
    get_blocks,
    get_transactions_by_block,
    get_unattached_transactions
)
from bluecarbon.models.ledger import (
    Block,
    ChainBlockRead,
    ChainExport,
    FindingKind,
    IntegrityFinding,
    IntegrityReport,
    IntegrityStatus,
    Transaction,
    TransactionRead
)
from bluecarbon.utils.hashing import (
    compute_block_hash,
    compute_entry_hash,
    compute_merkle_root,
    derive_tx_id,
    sha256_hex
)
from bluecarbon.utils.time import utc_now

logger = logging.getLogger(__name__)


def _check_block(
    position: int,
    block: Block,
    previous: Block | None,
    transactions: List[Transaction]
) -> List[IntegrityFinding]:
    findings: List[IntegrityFinding] = []

    def finding(kind: FindingKind, message: str, tx_id: str | None = None) -> None:
        findings.append(IntegrityFinding(
            block_index=block.index,
            kind=kind,
            message=f"Block #{block.index}: {message}",
            tx_id=tx_id
        ))

    # 1. Stored hash must be the hash of the stored input
    recomputed_hash = sha256_hex(block.block_hash_input)
    if recomputed_hash != block.block_hash:
        finding(
            FindingKind.HASH_MISMATCH,
            f"hash mismatch. Expected {recomputed_hash}, got {block.block_hash}"
        )

    # 2. Stored header fields must be what was hashed
    expected_input = compute_block_hash(
        index=block.index,
        timestamp=block.timestamp,
        merkle_root=block.merkle_root,
        previous_hash=block.previous_hash,
        transaction_count=block.transaction_count
    ).canonical_input
    if expected_input != block.block_hash_input:
        finding(FindingKind.HEADER_MISMATCH, "header fields do not match the hashed input")

    # 3. Index must be gap-free from genesis
    if block.index != position:
        finding(FindingKind.INDEX_GAP, f"expected index {position}")

    # 4. Link to the previous block
    if previous is None:
        if block.previous_hash != GENESIS_PREVIOUS_HASH:
            finding(FindingKind.GENESIS_MISMATCH, "genesis previousHash is not the sentinel")
    elif block.previous_hash != previous.block_hash:
        finding(
            FindingKind.BROKEN_LINK,
            f"previousHash does not match Block #{previous.index} hash"
        )

    # 5. Included transactions must reproduce the Merkle root
    if len(transactions) != block.transaction_count:
        finding(
            FindingKind.COUNT_MISMATCH,
            f"holds {len(transactions)} transactions, header says {block.transaction_count}"
        )
    merkle_root = compute_merkle_root([tx.tx_id for tx in transactions])
    if merkle_root != block.merkle_root:
        finding(FindingKind.MERKLE_MISMATCH, "Merkle root does not match included transactions")

    # 6. Each transaction must reproduce its own id and entry hash
    for tx in transactions:
        if derive_tx_id(tx.project_id, tx.to_party, tx.credits, tx.timestamp) != tx.tx_id:
            finding(FindingKind.TX_ID_MISMATCH, f"transaction {tx.tx_id} id mismatch", tx.tx_id)
        entry_hash = compute_entry_hash(
            tx.tx_id, tx.kind.value, tx.from_party, tx.to_party, tx.credits,
            tx.project_id, tx.timestamp, tx.proof_hash
        )
        if entry_hash != tx.entry_hash:
            finding(FindingKind.ENTRY_HASH_MISMATCH, f"transaction {tx.tx_id} content mismatch", tx.tx_id)

    return findings


async def verify_chain(session: AsyncSession) -> IntegrityReport:
    """
    Recompute every block hash, link and Merkle root in index order.

    Operates on the blocks present when the call starts; blocks created
    during the scan are left for the next call. Read-only.

    Returns:
        IntegrityReport with status 'verified' or 'tampered' and one finding
        per detected inconsistency
    """
    checked_at = utc_now()
    try:
        blocks = await get_blocks(session)
        transactions = await get_transactions_by_block(session, [b.id for b in blocks])
    except SQLAlchemyError as e:
        raise StorageUnavailable(f"Chain verification failed: {e}") from e

    errors: List[IntegrityFinding] = []
    previous = None
    for position, block in enumerate(blocks):
        errors.extend(_check_block(position, block, previous, transactions[block.id]))
        previous = block

    status = IntegrityStatus.TAMPERED if errors else IntegrityStatus.VERIFIED
    if errors:
        logger.warning(
            "Ledger integrity check found %d problems in %d blocks",
            len(errors), len(blocks)
        )

    return IntegrityReport(
        status=status,
        total_blocks=len(blocks),
        checked_at=checked_at,
        errors=errors
    )


async def get_chain(session: AsyncSession) -> List[ChainBlockRead]:
    """Blocks ordered by index, each with its transactions."""
    try:
        blocks = await get_blocks(session)
        transactions: Dict[int, List[Transaction]] = await get_transactions_by_block(
            session, [b.id for b in blocks]
        )
    except SQLAlchemyError as e:
        raise StorageUnavailable(f"Chain read failed: {e}") from e

    return [
        ChainBlockRead(
            **block.model_dump(),
            transactions=[TransactionRead.model_validate(tx) for tx in transactions[block.id]]
        )
        for block in blocks
    ]


async def export_chain(session: AsyncSession) -> ChainExport:
    """Full chain export with its integrity verdict, for public display."""
    chain = await get_chain(session)
    report = await verify_chain(session)
    try:
        pending = await get_unattached_transactions(session)
    except SQLAlchemyError as e:
        raise StorageUnavailable(f"Chain read failed: {e}") from e

    return ChainExport(
        exported_at=utc_now(),
        total_blocks=len(chain),
        total_transactions=sum(len(b.transactions) for b in chain) + len(pending),
        pending_transactions=len(pending),
        blocks=chain,
        integrity=report
    )
