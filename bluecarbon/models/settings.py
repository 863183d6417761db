"""
System settings model - administratively controlled ledger switches.
"""

from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime

from bluecarbon.utils.time import utc_now

# The settings table holds a single row
SYSTEM_SETTINGS_ID = 1


class SystemSettings(SQLModel, table=True):
    """Global flags table."""
    __tablename__ = "system_settings"

    id: int = Field(default=SYSTEM_SETTINGS_ID, primary_key=True)
    minting_enabled: bool = Field(default=True)
    updated_at: datetime = Field(default_factory=utc_now)
    updated_by: Optional[str] = None


class MintingStatus(SQLModel):
    """Schema for reading or setting the minting flag."""
    minting_enabled: bool
    admin_id: Optional[str] = None
