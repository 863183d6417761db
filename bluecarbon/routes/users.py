"""
User endpoints.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from bluecarbon.core.database import get_session
from bluecarbon.core.errors import LedgerError
from bluecarbon.core.services import get_audit_log
from bluecarbon.handlers.audit import AuditLog
from bluecarbon.handlers.credits import get_rewards_by_user
from bluecarbon.handlers.parties import create_user, get_user
from bluecarbon.models.credit import RewardTransactionRead
from bluecarbon.models.user import UserCreate, UserRead

router = APIRouter(prefix="/users", tags=["users"])


@router.post("/", response_model=UserRead, status_code=status.HTTP_201_CREATED)
async def create_user_endpoint(
    user_data: UserCreate,
    session: AsyncSession = Depends(get_session),
    audit_log: AuditLog = Depends(get_audit_log)
):
    """Register a marketplace party."""
    try:
        return await create_user(session, user_data, audit_log)
    except LedgerError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.get("/{user_id}", response_model=UserRead)
async def get_user_endpoint(
    user_id: str,
    session: AsyncSession = Depends(get_session)
):
    """Get a user with current purchase and Blue Points balances."""
    try:
        return await get_user(session, user_id)
    except LedgerError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.get("/{user_id}/rewards", response_model=List[RewardTransactionRead])
async def get_user_rewards_endpoint(
    user_id: str,
    session: AsyncSession = Depends(get_session)
):
    """Blue Points grants and reversals for a user."""
    try:
        await get_user(session, user_id)
    except LedgerError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return await get_rewards_by_user(session, user_id)
