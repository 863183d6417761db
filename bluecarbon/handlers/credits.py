"""
Read handlers for purchase certificates and Blue Points history.
"""

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select
from typing import Any, Dict, List, Optional

from bluecarbon.core.errors import NotFound
from bluecarbon.models.credit import CertificateStatus, CreditTransaction, RewardTransaction
from bluecarbon.models.project import Project
from bluecarbon.models.user import User


async def get_credit_transaction(session: AsyncSession, credit_transaction_id: str) -> CreditTransaction:
    credit_transaction = await session.get(CreditTransaction, credit_transaction_id)
    if not credit_transaction:
        raise NotFound(f"Certificate {credit_transaction_id} not found")
    return credit_transaction


async def get_purchases_by_buyer(
    session: AsyncSession,
    buyer_id: str,
    certificate_status: Optional[CertificateStatus] = None
) -> List[CreditTransaction]:
    """
    Purchase history for a buyer, newest first.

    Args:
        buyer_id: Buyer whose certificates to list
        certificate_status: Only valid or only revoked certificates

    Returns:
        List of credit transactions
    """
    statement = select(CreditTransaction).where(CreditTransaction.buyer_id == buyer_id)

    if certificate_status:
        statement = statement.where(CreditTransaction.certificate_status == certificate_status)

    statement = statement.order_by(CreditTransaction.timestamp.desc())
    result = await session.execute(statement)
    return list(result.scalars().all())


async def get_sales_by_contributor(
    session: AsyncSession,
    contributor_id: str,
    certificate_status: Optional[CertificateStatus] = None
) -> List[Dict[str, Any]]:
    """
    Credits sold from a contributor's projects, newest first.

    Each sale carries the buyer and project names for display.
    """
    statement = (
        select(CreditTransaction, User.name, Project.name)
        .join(User, User.id == CreditTransaction.buyer_id)
        .join(Project, Project.id == CreditTransaction.project_id)
        .where(CreditTransaction.contributor_id == contributor_id)
    )

    if certificate_status:
        statement = statement.where(CreditTransaction.certificate_status == certificate_status)

    statement = statement.order_by(CreditTransaction.timestamp.desc())
    result = await session.execute(statement)

    return [
        {**sale.model_dump(), "buyer_name": buyer_name, "project_name": project_name}
        for sale, buyer_name, project_name in result.all()
    ]


async def get_rewards_by_user(session: AsyncSession, user_id: str) -> List[RewardTransaction]:
    """Reward grants and reversals for a user in the order they were written."""
    result = await session.execute(
        select(RewardTransaction)
        .where(RewardTransaction.user_id == user_id)
        .order_by(RewardTransaction.id)
    )
    return list(result.scalars().all())


async def get_rewards_for_purchase(session: AsyncSession, credit_transaction_id: str) -> List[RewardTransaction]:
    result = await session.execute(
        select(RewardTransaction)
        .where(RewardTransaction.source_transaction_id == credit_transaction_id)
        .order_by(RewardTransaction.id)
    )
    return list(result.scalars().all())
