"""
User model - marketplace party holding purchase and reward balances.
"""

from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime
from enum import Enum
from uuid import uuid4

from bluecarbon.utils.time import utc_now


class UserRole(str, Enum):
    """Roles supplied by the authentication layer."""
    ADMIN = "admin"
    VERIFIER = "verifier"
    CONTRIBUTOR = "contributor"
    BUYER = "buyer"


class UserBase(SQLModel):
    """Base user schema."""
    name: str = Field(..., description="Display name")
    role: UserRole = Field(..., description="Marketplace role")


class User(UserBase, table=True):
    """User database table. Balances are mutated only by the settlement engine."""
    __tablename__ = "users"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    credits_purchased: float = Field(default=0.0, description="Buyer running total of credits bought")
    reward_points: float = Field(default=0.0, description="Blue Points balance")
    created_at: datetime = Field(default_factory=utc_now)


class UserCreate(UserBase):
    """Schema for registering a user."""
    id: Optional[str] = None


class UserRead(UserBase):
    """Schema for reading a user."""
    id: str
    credits_purchased: float
    reward_points: float
    created_at: datetime
