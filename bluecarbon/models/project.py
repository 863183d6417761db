"""
Project model - a restoration project whose approval mints credits.
"""

from pydantic import FiniteFloat
from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime
from enum import Enum
from uuid import uuid4

from bluecarbon.utils.time import utc_now


class ProjectStatus(str, Enum):
    """Project review lifecycle."""
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"
    NEEDS_CLARIFICATION = "needs_clarification"


# States from which a project may still be approved
APPROVABLE_STATUSES = (ProjectStatus.PENDING, ProjectStatus.NEEDS_CLARIFICATION)


class ProjectBase(SQLModel):
    """Base project schema."""
    name: str = Field(..., description="Project name")
    user_id: str = Field(..., foreign_key="users.id", index=True, description="Contributor owning the project")
    lifetime_co2: float = Field(default=0.0, ge=0, description="Estimated 20-year sequestration in tonnes")
    proof_file_url: Optional[str] = Field(default=None, description="Reference to supporting evidence")


class Project(ProjectBase, table=True):
    """Project database table."""
    __tablename__ = "projects"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    status: ProjectStatus = Field(default=ProjectStatus.PENDING, index=True)
    credits_earned: float = Field(default=0.0, description="Credits available for sale")
    verifier_id: Optional[str] = Field(default=None, foreign_key="users.id")
    submitted_at: datetime = Field(default_factory=utc_now)
    reviewed_at: Optional[datetime] = Field(default=None, description="When the approval was recorded")


class ProjectCreate(ProjectBase):
    """Schema for registering a submitted project."""
    id: Optional[str] = None


class ProjectRead(ProjectBase):
    """Schema for reading a project."""
    id: str
    status: ProjectStatus
    credits_earned: float
    verifier_id: Optional[str]
    submitted_at: datetime
    reviewed_at: Optional[datetime]


class ApprovalRequest(SQLModel):
    """Validated "project approved" event from the review subsystem."""
    beneficiary_id: Optional[str] = Field(default=None, description="Defaults to the project owner")
    credits: Optional[FiniteFloat] = Field(default=None, gt=0, description="Defaults to the project's lifetime CO2")
    proof_ref: Optional[str] = None
    approver_id: Optional[str] = None
