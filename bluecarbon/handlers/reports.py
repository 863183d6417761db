"""
Report and aggregation handlers.
"""

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select, func
from typing import List, Dict, Any, Optional

from bluecarbon.handlers.ledger_store import query_transactions
from bluecarbon.models.credit import CertificateStatus, CreditTransaction
from bluecarbon.models.ledger import Block, Transaction, TransactionKind, TransactionStatus
from bluecarbon.models.project import Project, ProjectStatus
from bluecarbon.models.user import User, UserRole


async def _sum_ledger(session: AsyncSession, kind: TransactionKind) -> float:
    result = await session.execute(
        select(func.sum(Transaction.credits)).where(
            Transaction.kind == kind,
            Transaction.status == TransactionStatus.COMPLETED
        )
    )
    return result.scalar() or 0.0


async def get_marketplace_summary(session: AsyncSession) -> Dict[str, Any]:
    """
    Get marketplace-level aggregation summary.

    Returns:
        Dictionary with minted, sold and available credits, chain size,
        project counts and the average review time
    """
    minted = await _sum_ledger(session, TransactionKind.MINT)
    sold = await _sum_ledger(session, TransactionKind.BUY)

    # Credits still for sale on verified projects
    available = await session.execute(
        select(func.sum(Project.credits_earned)).where(
            Project.status == ProjectStatus.VERIFIED
        )
    )
    available_value = available.scalar() or 0.0

    block_count = await session.execute(select(func.count(Block.id)))
    transaction_count = await session.execute(select(func.count(Transaction.id)))
    pending_count = await session.execute(
        select(func.count(Transaction.id)).where(Transaction.block_id.is_(None))
    )

    project_counts = await session.execute(
        select(Project.status, func.count(Project.id)).group_by(Project.status)
    )
    projects_by_status = {status.value: 0 for status in ProjectStatus}
    for status, count in project_counts.all():
        projects_by_status[status.value] = count

    revoked = await session.execute(
        select(func.count(CreditTransaction.id)).where(
            CreditTransaction.certificate_status == CertificateStatus.REVOKED
        )
    )

    reviewed = await session.execute(
        select(Project.submitted_at, Project.reviewed_at).where(
            Project.reviewed_at.is_not(None)
        )
    )
    review_hours = [
        (reviewed_at - submitted_at).total_seconds() / 3600
        for submitted_at, reviewed_at in reviewed.all()
    ]
    average_review_hours = (
        round(sum(review_hours) / len(review_hours), 2) if review_hours else None
    )

    return {
        "total_minted_credits": round(minted, 4),
        "total_sold_credits": round(sold, 4),
        "available_credits": round(available_value, 4),
        "total_blocks": block_count.scalar() or 0,
        "total_transactions": transaction_count.scalar() or 0,
        "pending_transactions": pending_count.scalar() or 0,
        "projects_by_status": projects_by_status,
        "revoked_certificates": revoked.scalar() or 0,
        "average_review_hours": average_review_hours
    }


async def get_top_buyers(session: AsyncSession, limit: int = 10) -> List[Dict[str, Any]]:
    """Buyers ranked by credits purchased."""
    statement = (
        select(User)
        .where(User.role == UserRole.BUYER, User.credits_purchased > 0)
        .order_by(User.credits_purchased.desc(), User.name)
        .limit(limit)
    )
    result = await session.execute(statement)

    return [
        {
            "id": user.id,
            "name": user.name,
            "credits_purchased": user.credits_purchased,
            "reward_points": user.reward_points
        }
        for user in result.scalars().all()
    ]


async def get_top_contributors(session: AsyncSession, limit: int = 10) -> List[Dict[str, Any]]:
    """Contributors ranked by credits sold, with their verified project count."""
    sold = (
        select(
            CreditTransaction.contributor_id,
            func.sum(CreditTransaction.credits).label("credits_sold"),
            func.count(CreditTransaction.id).label("purchases")
        )
        .group_by(CreditTransaction.contributor_id)
        .subquery()
    )
    verified = (
        select(Project.user_id, func.count(Project.id).label("verified_projects"))
        .where(Project.status == ProjectStatus.VERIFIED)
        .group_by(Project.user_id)
        .subquery()
    )

    statement = (
        select(
            User,
            func.coalesce(sold.c.credits_sold, 0.0),
            func.coalesce(sold.c.purchases, 0),
            func.coalesce(verified.c.verified_projects, 0)
        )
        .outerjoin(sold, sold.c.contributor_id == User.id)
        .outerjoin(verified, verified.c.user_id == User.id)
        .where(User.role == UserRole.CONTRIBUTOR)
        .order_by(func.coalesce(sold.c.credits_sold, 0.0).desc(), User.reward_points.desc())
        .limit(limit)
    )
    result = await session.execute(statement)

    return [
        {
            "id": user.id,
            "name": user.name,
            "credits_sold": credits_sold,
            "purchases": purchases,
            "verified_projects": verified_projects,
            "reward_points": user.reward_points
        }
        for user, credits_sold, purchases, verified_projects in result.all()
    ]


async def get_admin_ledger(
    session: AsyncSession,
    kind: Optional[TransactionKind] = None,
    project_id: Optional[str] = None,
    limit: int = 100
) -> List[Dict[str, Any]]:
    """Ledger entries newest first, with the block each one landed in."""
    transactions = await query_transactions(
        session, kind=kind, project_id=project_id, newest_first=True, limit=limit
    )

    block_ids = {tx.block_id for tx in transactions if tx.block_id is not None}
    blocks: Dict[int, Block] = {}
    if block_ids:
        result = await session.execute(select(Block).where(Block.id.in_(block_ids)))
        blocks = {block.id: block for block in result.scalars().all()}

    return [
        {
            "tx_id": tx.tx_id,
            "kind": tx.kind.value,
            "status": tx.status.value,
            "from_party": tx.from_party,
            "to_party": tx.to_party,
            "credits": tx.credits,
            "project_id": tx.project_id,
            "timestamp": tx.timestamp.isoformat(),
            "block_index": blocks[tx.block_id].index if tx.block_id in blocks else None,
            "block_hash": blocks[tx.block_id].block_hash if tx.block_id in blocks else None
        }
        for tx in transactions
    ]
