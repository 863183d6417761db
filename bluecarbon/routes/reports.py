"""
Report and aggregation endpoints.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Dict, Any, List, Optional

from bluecarbon.core.database import get_session
from bluecarbon.handlers.reports import (
    get_admin_ledger,
    get_marketplace_summary,
    get_top_buyers,
    get_top_contributors
)
from bluecarbon.models.ledger import TransactionKind

router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("/summary")
async def marketplace_summary_endpoint(
    session: AsyncSession = Depends(get_session)
) -> Dict[str, Any]:
    """
    Get marketplace-level aggregation summary.

    Returns:
        - total_minted_credits
        - total_sold_credits
        - available_credits
        - total_blocks, total_transactions, pending_transactions
        - projects_by_status
        - revoked_certificates
        - average_review_hours
    """
    return await get_marketplace_summary(session)


@router.get("/top-buyers")
async def top_buyers_endpoint(
    limit: int = Query(default=10, ge=1, le=100),
    session: AsyncSession = Depends(get_session)
) -> List[Dict[str, Any]]:
    """Buyers ranked by credits purchased."""
    return await get_top_buyers(session, limit)


@router.get("/top-contributors")
async def top_contributors_endpoint(
    limit: int = Query(default=10, ge=1, le=100),
    session: AsyncSession = Depends(get_session)
) -> List[Dict[str, Any]]:
    """Contributors ranked by credits sold."""
    return await get_top_contributors(session, limit)


@router.get("/ledger")
async def admin_ledger_endpoint(
    kind: Optional[TransactionKind] = None,
    project_id: Optional[str] = None,
    limit: int = Query(default=100, ge=1, le=1000),
    session: AsyncSession = Depends(get_session)
) -> List[Dict[str, Any]]:
    """Ledger entries newest first, with block placement."""
    return await get_admin_ledger(session, kind=kind, project_id=project_id, limit=limit)
