"""
Credit purchase models - buyer certificates and the Blue Points reward ledger.
"""

from pydantic import FiniteFloat
from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime
from enum import Enum
from uuid import uuid4

from bluecarbon.utils.time import utc_now
from bluecarbon.models.ledger import TransactionRead
from bluecarbon.models.project import ProjectRead
from bluecarbon.models.user import UserRead


class CertificateStatus(str, Enum):
    """Retirement certificate status."""
    VALID = "valid"
    REVOKED = "revoked"


class RewardType(str, Enum):
    EARNED = "EARNED"
    REVERSAL = "REVERSAL"


class RewardRole(str, Enum):
    BUYER = "BUYER"
    CONTRIBUTOR = "CONTRIBUTOR"


class CreditTransactionBase(SQLModel):
    """Base credit purchase schema."""
    buyer_id: str = Field(..., foreign_key="users.id", index=True)
    contributor_id: str = Field(..., foreign_key="users.id", index=True)
    project_id: str = Field(..., foreign_key="projects.id", index=True)
    credits: float = Field(..., gt=0, description="Tonnes CO2 purchased and retired")
    amount: float = Field(default=0.0, ge=0, description="Total paid")


class CreditTransaction(CreditTransactionBase, table=True):
    """Credit purchase table. Only certificate_status and revocation fields change."""
    __tablename__ = "credit_transactions"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    idempotency_key: Optional[str] = Field(default=None, unique=True)
    timestamp: datetime = Field(default_factory=utc_now)
    certificate_status: CertificateStatus = Field(default=CertificateStatus.VALID)
    revoked_at: Optional[datetime] = None
    revocation_reason: Optional[str] = None


class CreditTransactionRead(CreditTransactionBase):
    """Schema for reading a credit purchase."""
    id: str
    idempotency_key: Optional[str]
    timestamp: datetime
    certificate_status: CertificateStatus
    revoked_at: Optional[datetime]
    revocation_reason: Optional[str]


class CreditSaleRead(CreditTransactionRead):
    """A contributor's sale with the buyer and project names attached."""
    buyer_name: str
    project_name: str


class RewardTransaction(SQLModel, table=True):
    """Immutable Blue Points grant or reversal."""
    __tablename__ = "reward_transactions"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(..., foreign_key="users.id", index=True)
    points: float = Field(...)
    type: RewardType = Field(...)
    role: RewardRole = Field(...)
    source_transaction_id: str = Field(..., foreign_key="credit_transactions.id", index=True)
    created_at: datetime = Field(default_factory=utc_now)


class PurchaseRequest(SQLModel):
    """Validated purchase request; the buyer identity comes from the auth layer."""
    buyer_id: str
    contributor_id: str
    project_id: str
    credits: FiniteFloat = Field(..., gt=0)
    amount: FiniteFloat = Field(default=0.0, ge=0)
    idempotency_key: Optional[str] = Field(default=None, min_length=1, max_length=255)


class PurchaseResponse(SQLModel):
    """
    Outcome of a purchase.

    A replay returns the original transaction and certificate; the buyer,
    contributor and project balances are current, not those of the first call.
    """
    transaction: TransactionRead
    credit_transaction: CreditTransactionRead
    buyer: UserRead
    contributor: UserRead
    project: ProjectRead
    replayed: bool = False


class RevokeRequest(SQLModel):
    """Certificate revocation request; only admins may revoke over HTTP."""
    admin_id: str
    reason: Optional[str] = None


class RewardTransactionRead(SQLModel):
    """Schema for reading a Blue Points grant or reversal."""
    id: int
    user_id: str
    points: float
    type: RewardType
    role: RewardRole
    source_transaction_id: str
    created_at: datetime
