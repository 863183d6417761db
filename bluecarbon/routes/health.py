"""
Health check endpoints.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from bluecarbon.core.config import get_settings
from bluecarbon.core.database import get_session

router = APIRouter(prefix="/health", tags=["health"])
settings = get_settings()


@router.get("/")
async def health_check():
    """Root health check endpoint."""
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version
    }


@router.get("/live")
async def liveness():
    """Liveness probe endpoint."""
    return {"status": "alive"}


@router.get("/ready")
async def readiness(session: AsyncSession = Depends(get_session)):
    """Readiness probe endpoint; fails while the ledger store is unreachable."""
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Database unavailable: {e}"
        )
    return {"status": "ready"}
