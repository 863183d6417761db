"""
Carbon credit purchase and certificate endpoints.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from bluecarbon.core.database import get_session
from bluecarbon.core.errors import LedgerError
from bluecarbon.core.services import get_settlement
from bluecarbon.handlers.credits import (
    get_credit_transaction,
    get_purchases_by_buyer,
    get_sales_by_contributor
)
from bluecarbon.handlers.settlement import SettlementEngine
from bluecarbon.models.credit import (
    CertificateStatus,
    CreditSaleRead,
    CreditTransactionRead,
    PurchaseRequest,
    PurchaseResponse,
    RevokeRequest
)

router = APIRouter(prefix="/credits", tags=["credits"])


@router.post("/purchase", response_model=PurchaseResponse)
async def purchase_credits_endpoint(
    request: PurchaseRequest,
    settlement: SettlementEngine = Depends(get_settlement)
):
    """
    Buy and retire credits from a verified project.

    Atomic: the project balance, buyer and contributor balances, rewards,
    certificate and ledger entry are written together or not at all.
    Repeating a request with the same idempotency_key returns the original
    transaction and certificate with replayed=true and current balances.
    """
    try:
        result = await settlement.purchase(
            buyer_id=request.buyer_id,
            contributor_id=request.contributor_id,
            project_id=request.project_id,
            credits=request.credits,
            amount_paid=request.amount,
            idempotency_key=request.idempotency_key
        )
    except LedgerError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    return {
        "transaction": result.transaction,
        "credit_transaction": result.credit_transaction,
        "buyer": result.buyer,
        "contributor": result.contributor,
        "project": result.project,
        "replayed": result.replayed
    }


@router.get("/", response_model=List[CreditTransactionRead])
async def get_buyer_purchases_endpoint(
    buyer_id: str,
    certificate_status: Optional[CertificateStatus] = None,
    session: AsyncSession = Depends(get_session)
):
    """Purchase history for a buyer, newest first."""
    return await get_purchases_by_buyer(session, buyer_id, certificate_status)


@router.get("/sales", response_model=List[CreditSaleRead])
async def get_contributor_sales_endpoint(
    contributor_id: str,
    certificate_status: Optional[CertificateStatus] = None,
    session: AsyncSession = Depends(get_session)
):
    """Sales from a contributor's projects, newest first, with buyer and project names."""
    return await get_sales_by_contributor(session, contributor_id, certificate_status)


@router.get("/{credit_transaction_id}", response_model=CreditTransactionRead)
async def get_credit_endpoint(
    credit_transaction_id: str,
    session: AsyncSession = Depends(get_session)
):
    """Get a purchase certificate."""
    try:
        return await get_credit_transaction(session, credit_transaction_id)
    except LedgerError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/{credit_transaction_id}/revoke", response_model=CreditTransactionRead)
async def revoke_certificate_endpoint(
    credit_transaction_id: str,
    request: RevokeRequest,
    settlement: SettlementEngine = Depends(get_settlement)
):
    """Revoke a purchase certificate (admin only). The ledger entry is left untouched."""
    try:
        return await settlement.revoke_certificate(
            credit_transaction_id,
            reason=request.reason,
            admin_id=request.admin_id
        )
    except LedgerError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
