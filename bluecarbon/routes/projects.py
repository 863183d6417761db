"""
Project endpoints, including the "project approved" settlement event.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from bluecarbon.core.database import get_session
from bluecarbon.core.errors import LedgerError
from bluecarbon.core.services import get_audit_log, get_settlement
from bluecarbon.handlers.audit import AuditLog
from bluecarbon.handlers.parties import create_project, get_project, get_projects
from bluecarbon.handlers.settlement import SettlementEngine
from bluecarbon.models.ledger import TransactionRead
from bluecarbon.models.project import ApprovalRequest, ProjectCreate, ProjectRead, ProjectStatus

router = APIRouter(prefix="/projects", tags=["projects"])


@router.post("/", response_model=ProjectRead, status_code=status.HTTP_201_CREATED)
async def create_project_endpoint(
    project_data: ProjectCreate,
    session: AsyncSession = Depends(get_session),
    audit_log: AuditLog = Depends(get_audit_log)
):
    """Submit a restoration project for review."""
    try:
        return await create_project(session, project_data, audit_log)
    except LedgerError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.get("/", response_model=List[ProjectRead])
async def list_projects_endpoint(
    status: Optional[ProjectStatus] = None,
    user_id: Optional[str] = None,
    session: AsyncSession = Depends(get_session)
):
    """List projects, optionally by status or owner."""
    return await get_projects(session, status=status, user_id=user_id)


@router.get("/{project_id}", response_model=ProjectRead)
async def get_project_endpoint(
    project_id: str,
    session: AsyncSession = Depends(get_session)
):
    """Get a project with its available credit balance."""
    try:
        return await get_project(session, project_id)
    except LedgerError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/{project_id}/approve", response_model=TransactionRead)
async def approve_project_endpoint(
    project_id: str,
    approval: ApprovalRequest,
    session: AsyncSession = Depends(get_session),
    settlement: SettlementEngine = Depends(get_settlement)
):
    """
    Record a project approval and mint its credits.

    The beneficiary defaults to the project owner and the credit amount to
    the project's estimated lifetime CO2.
    """
    try:
        project = await get_project(session, project_id)
        credits = approval.credits if approval.credits is not None else project.lifetime_co2
        return await settlement.record_approval(
            project_id=project_id,
            beneficiary_id=approval.beneficiary_id or project.user_id,
            credits=credits,
            proof_ref=approval.proof_ref or project.proof_file_url,
            approver_id=approval.approver_id
        )
    except LedgerError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
