"""
Ledger endpoints: chain views, integrity verification and rollback.
"""

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from bluecarbon.core.database import get_session
from bluecarbon.core.errors import LedgerError
from bluecarbon.core.services import get_block_builder, get_settlement
from bluecarbon.handlers.blocks import BlockBuilder
from bluecarbon.handlers.integrity import export_chain, get_chain, verify_chain
from bluecarbon.handlers.ledger_store import query_transactions
from bluecarbon.handlers.settlement import SettlementEngine
from bluecarbon.models.ledger import (
    BlockRead,
    ChainBlockRead,
    ChainExport,
    IntegrityReport,
    RollbackRequest,
    TransactionKind,
    TransactionRead,
    TransactionStatus
)

router = APIRouter(prefix="/ledger", tags=["ledger"])


@router.get("/chain", response_model=List[ChainBlockRead])
async def get_chain_endpoint(session: AsyncSession = Depends(get_session)):
    """All blocks in index order, each with its transactions."""
    try:
        return await get_chain(session)
    except LedgerError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.get("/integrity", response_model=IntegrityReport)
async def verify_chain_endpoint(session: AsyncSession = Depends(get_session)):
    """
    Re-derive every block hash, link and Merkle root.

    Returns status 'tampered' with one finding per inconsistency, each
    naming the block index it was found in.
    """
    try:
        return await verify_chain(session)
    except LedgerError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.get("/export", response_model=ChainExport)
async def export_chain_endpoint(session: AsyncSession = Depends(get_session)):
    """Full chain with its integrity verdict, for public display."""
    try:
        return await export_chain(session)
    except LedgerError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.get("/transactions", response_model=List[TransactionRead])
async def list_transactions_endpoint(
    kind: Optional[TransactionKind] = None,
    project_id: Optional[str] = None,
    status: Optional[TransactionStatus] = None,
    pending: Optional[bool] = None,
    party_id: Optional[str] = None,
    session: AsyncSession = Depends(get_session)
):
    """
    Ledger transactions in insertion order.

    pending=true lists those not yet in a block; party_id lists the entries a
    party sent or received.
    """
    attached = None if pending is None else not pending
    return await query_transactions(
        session,
        kind=kind,
        project_id=project_id,
        status=status,
        attached=attached,
        party_id=party_id
    )


@router.post("/blocks", response_model=Optional[BlockRead])
async def build_block_endpoint(
    response: Response,
    approver_id: Optional[str] = None,
    block_builder: BlockBuilder = Depends(get_block_builder)
):
    """Fold pending transactions into a new block; 204 when nothing is pending."""
    try:
        block = await block_builder.build_block_if_pending(approver_id)
    except LedgerError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    if block is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    response.status_code = status.HTTP_201_CREATED
    return block


@router.post("/transactions/{tx_id}/rollback", response_model=TransactionRead)
async def rollback_transaction_endpoint(
    tx_id: str,
    request: RollbackRequest,
    settlement: SettlementEngine = Depends(get_settlement)
):
    """Reverse a ledger transaction with a compensating Rollback entry (admin only)."""
    try:
        return await settlement.rollback_transaction(tx_id, request.admin_id, request.reason)
    except LedgerError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
