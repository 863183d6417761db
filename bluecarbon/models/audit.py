"""
Audit log model - append-only record of security-relevant actions.

No code path updates or deletes rows of this table.
"""

from pydantic import BaseModel
from sqlmodel import SQLModel, Field
from typing import Any, Dict, Optional
from datetime import datetime
from enum import Enum
from uuid import uuid4

from bluecarbon.utils.time import utc_now


class AuditActionType(str, Enum):
    """Closed set of auditable actions."""
    # Authentication
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILURE = "LOGIN_FAILURE"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    SIGNUP = "SIGNUP"

    # Project lifecycle
    PROJECT_SUBMITTED = "PROJECT_SUBMITTED"
    PROJECT_APPROVED = "PROJECT_APPROVED"
    PROJECT_REJECTED = "PROJECT_REJECTED"
    PROJECT_CLARIFICATION_REQUESTED = "PROJECT_CLARIFICATION_REQUESTED"

    # Credits & marketplace
    CREDITS_PURCHASED = "CREDITS_PURCHASED"
    REWARDS_ISSUED = "REWARDS_ISSUED"
    CERTIFICATE_ISSUED = "CERTIFICATE_ISSUED"
    CERTIFICATE_REVOKED = "CERTIFICATE_REVOKED"

    # Ledger
    LEDGER_BLOCK_CREATED = "LEDGER_BLOCK_CREATED"
    TRANSACTION_ROLLED_BACK = "TRANSACTION_ROLLED_BACK"

    # Administration
    VERIFIER_ASSIGNED = "VERIFIER_ASSIGNED"
    ROLE_CHANGED = "ROLE_CHANGED"
    MINTING_TOGGLED = "MINTING_TOGGLED"
    BACKUP_CREATED = "BACKUP_CREATED"


class AuditLogBase(SQLModel):
    """Base audit log schema."""
    user_id: Optional[str] = Field(default=None, index=True, description="Acting user, None for system events")
    action_type: AuditActionType = Field(..., index=True)
    entity_type: str = Field(..., description="Entity type (e.g., 'project', 'credit_transaction')")
    entity_id: Optional[str] = Field(default=None, description="ID of the entity")
    payload_hash: str = Field(..., description="SHA-256 hash of the metadata")
    extra_data: Optional[str] = Field(
        default=None,
        description="JSON string of additional metadata"
    )


class AuditLog(AuditLogBase, table=True):
    """Audit log database table - append-only."""
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    timestamp: datetime = Field(default_factory=utc_now, index=True)


class AuditLogRead(AuditLogBase):
    """Schema for reading an audit log entry."""
    id: str
    timestamp: datetime


class AuditEvent(BaseModel):
    """Event handed to the audit log by any subsystem."""
    action_type: AuditActionType
    entity_type: str
    entity_id: Optional[str] = None
    user_id: Optional[str] = None
    metadata: Dict[str, Any] = {}
