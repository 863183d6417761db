# SQLModel database models

from bluecarbon.models.user import User
from bluecarbon.models.project import Project
from bluecarbon.models.ledger import Transaction, Block
from bluecarbon.models.credit import CreditTransaction, RewardTransaction
from bluecarbon.models.settings import SystemSettings
from bluecarbon.models.audit import AuditLog

__all__ = [
    "User",
    "Project",
    "Transaction",
    "Block",
    "CreditTransaction",
    "RewardTransaction",
    "SystemSettings",
    "AuditLog",
]
