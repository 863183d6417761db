"""
Administrative endpoints: minting switch and audit trail.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Any, Dict, List, Optional

from bluecarbon.core.database import get_session
from bluecarbon.core.errors import LedgerError
from bluecarbon.core.services import get_audit_log, get_settlement
from bluecarbon.handlers.audit import AuditLog, list_audit_logs
from bluecarbon.handlers.settlement import SettlementEngine
from bluecarbon.models.audit import AuditActionType, AuditLogRead
from bluecarbon.models.settings import MintingStatus

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/minting", response_model=MintingStatus)
async def get_minting_endpoint(settlement: SettlementEngine = Depends(get_settlement)):
    """Whether project approvals currently mint credits."""
    try:
        return MintingStatus(minting_enabled=await settlement.get_minting_enabled())
    except LedgerError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.put("/minting", response_model=MintingStatus)
async def set_minting_endpoint(
    request: MintingStatus,
    settlement: SettlementEngine = Depends(get_settlement)
):
    """Enable or disable credit minting."""
    try:
        enabled = await settlement.set_minting_enabled(request.minting_enabled, request.admin_id)
    except LedgerError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return MintingStatus(minting_enabled=enabled, admin_id=request.admin_id)


@router.get("/audit-logs", response_model=List[AuditLogRead])
async def list_audit_logs_endpoint(
    user_id: Optional[str] = None,
    action_type: Optional[AuditActionType] = None,
    limit: int = Query(default=100, ge=1, le=1000),
    session: AsyncSession = Depends(get_session)
):
    """Durable audit entries, newest first."""
    return await list_audit_logs(session, user_id=user_id, action_type=action_type, limit=limit)


@router.post("/audit-logs/flush")
async def flush_audit_logs_endpoint(audit_log: AuditLog = Depends(get_audit_log)) -> Dict[str, Any]:
    """Write queued audit events now instead of waiting for the retry timer."""
    written = await audit_log.flush()
    return {
        "written": written,
        "pending": audit_log.pending,
        "dropped": audit_log.dropped,
        "state": audit_log.state.value
    }
