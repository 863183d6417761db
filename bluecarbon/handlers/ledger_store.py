"""
Ledger entry store - insert-only persistence of transactions and blocks.

The only mutations permitted on stored entries are attaching an unbatched
transaction to a block and marking a completed transaction rolled back.
Both are guarded in the WHERE clause so concurrent writers cannot apply
them twice.
"""

from sqlalchemy import or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select
from datetime import datetime
from typing import Dict, List, Optional

from bluecarbon.models.ledger import Block, Transaction, TransactionKind, TransactionStatus
from bluecarbon.utils.hashing import compute_entry_hash, derive_tx_id


def new_transaction(
    kind: TransactionKind,
    from_party: str,
    to_party: str,
    credits: float,
    project_id: str,
    timestamp: datetime,
    proof_hash: str,
    credit_transaction_id: Optional[str] = None
) -> Transaction:
    """Build an unbatched ledger transaction with its derived id and entry hash."""
    tx_id = derive_tx_id(project_id, to_party, credits, timestamp)
    return Transaction(
        tx_id=tx_id,
        kind=kind,
        from_party=from_party,
        to_party=to_party,
        credits=credits,
        project_id=project_id,
        timestamp=timestamp,
        proof_hash=proof_hash,
        entry_hash=compute_entry_hash(
            tx_id, kind.value, from_party, to_party, credits, project_id, timestamp, proof_hash
        ),
        credit_transaction_id=credit_transaction_id,
        status=TransactionStatus.COMPLETED
    )


async def insert_transaction(session: AsyncSession, transaction: Transaction) -> Transaction:
    """Add a transaction and flush so its id is assigned; the caller commits."""
    session.add(transaction)
    await session.flush()
    return transaction


async def insert_block(session: AsyncSession, block: Block) -> Block:
    session.add(block)
    await session.flush()
    return block


async def get_transaction_by_tx_id(session: AsyncSession, tx_id: str) -> Optional[Transaction]:
    result = await session.execute(select(Transaction).where(Transaction.tx_id == tx_id))
    return result.scalars().first()


async def get_transaction_for_purchase(
    session: AsyncSession,
    credit_transaction_id: str
) -> Optional[Transaction]:
    """Buy entry that settled the given credit purchase."""
    result = await session.execute(
        select(Transaction).where(
            Transaction.credit_transaction_id == credit_transaction_id,
            Transaction.kind == TransactionKind.BUY
        )
    )
    return result.scalars().first()


async def query_transactions(
    session: AsyncSession,
    kind: Optional[TransactionKind] = None,
    project_id: Optional[str] = None,
    status: Optional[TransactionStatus] = None,
    block_id: Optional[int] = None,
    attached: Optional[bool] = None,
    party_id: Optional[str] = None,
    newest_first: bool = False,
    limit: Optional[int] = None
) -> List[Transaction]:
    """
    Transactions matching every given filter, in insertion order by default.

    Args:
        party_id: Entries sent or received by this party
        limit: Cap applied by the database after ordering
    """
    statement = select(Transaction)

    if kind:
        statement = statement.where(Transaction.kind == kind)
    if project_id:
        statement = statement.where(Transaction.project_id == project_id)
    if party_id:
        statement = statement.where(
            or_(Transaction.from_party == party_id, Transaction.to_party == party_id)
        )
    if status:
        statement = statement.where(Transaction.status == status)
    if block_id is not None:
        statement = statement.where(Transaction.block_id == block_id)
    if attached is True:
        statement = statement.where(Transaction.block_id.is_not(None))
    elif attached is False:
        statement = statement.where(Transaction.block_id.is_(None))

    order = Transaction.id.desc() if newest_first else Transaction.id
    statement = statement.order_by(order)
    if limit is not None:
        statement = statement.limit(limit)

    result = await session.execute(statement)
    return list(result.scalars().all())


async def get_unattached_transactions(session: AsyncSession) -> List[Transaction]:
    """Transactions not yet folded into a block, in insertion order."""
    return await query_transactions(session, attached=False)


async def get_last_block(session: AsyncSession) -> Optional[Block]:
    result = await session.execute(select(Block).order_by(Block.index.desc()).limit(1))
    return result.scalars().first()


async def get_blocks(session: AsyncSession) -> List[Block]:
    """All blocks ordered by index."""
    result = await session.execute(select(Block).order_by(Block.index))
    return list(result.scalars().all())


async def get_transactions_by_block(
    session: AsyncSession,
    block_ids: List[int]
) -> Dict[int, List[Transaction]]:
    """Attached transactions grouped per block id, each group in insertion order."""
    grouped: Dict[int, List[Transaction]] = {block_id: [] for block_id in block_ids}
    if not block_ids:
        return grouped

    result = await session.execute(
        select(Transaction)
        .where(Transaction.block_id.in_(block_ids))
        .order_by(Transaction.id)
    )
    for transaction in result.scalars().all():
        grouped[transaction.block_id].append(transaction)
    return grouped


async def attach_transactions(
    session: AsyncSession,
    transaction_ids: List[int],
    block_id: int
) -> int:
    """Point still-unattached transactions at a block; returns how many were attached."""
    result = await session.execute(
        update(Transaction)
        .where(Transaction.id.in_(transaction_ids), Transaction.block_id.is_(None))
        .values(block_id=block_id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


async def mark_rolled_back(session: AsyncSession, transaction_id: int) -> bool:
    """Flip a completed transaction to rolled back; False if it was not completed."""
    result = await session.execute(
        update(Transaction)
        .where(Transaction.id == transaction_id, Transaction.status == TransactionStatus.COMPLETED)
        .values(status=TransactionStatus.ROLLED_BACK)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
