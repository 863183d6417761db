"""
Ledger models - hash-chained blocks of immutable credit transactions.
"""

from sqlmodel import SQLModel, Field
from typing import List, Optional
from datetime import datetime
from enum import Enum


class TransactionKind(str, Enum):
    """Economic event recorded in the ledger."""
    MINT = "Mint"
    BUY = "Buy"
    SELL = "Sell"
    ROLLBACK = "Rollback"


class TransactionStatus(str, Enum):
    """Ledger transaction status; only an explicit rollback changes it."""
    COMPLETED = "Completed"
    ROLLED_BACK = "RolledBack"


class TransactionBase(SQLModel):
    """Base ledger transaction schema."""
    tx_id: str = Field(..., unique=True, index=True, description="Content-derived transaction id")
    kind: TransactionKind = Field(..., index=True)
    from_party: str = Field(..., description="Sender party id, 'system' for minting")
    to_party: str = Field(..., index=True, description="Receiver party id")
    credits: float = Field(..., gt=0, description="Tonnes CO2-equivalent")
    project_id: str = Field(..., foreign_key="projects.id", index=True)
    timestamp: datetime = Field(...)
    proof_hash: str = Field(..., description="SHA-256 of the supporting evidence reference")
    entry_hash: str = Field(..., description="SHA-256 over the immutable fields")
    credit_transaction_id: Optional[str] = Field(
        default=None,
        foreign_key="credit_transactions.id",
        index=True,
        description="Purchase this Buy entry settles"
    )


class Transaction(TransactionBase, table=True):
    """Ledger transaction table - insert-only apart from block_id and status."""
    __tablename__ = "transactions"

    id: Optional[int] = Field(default=None, primary_key=True)
    block_id: Optional[int] = Field(default=None, foreign_key="blocks.id", index=True)
    status: TransactionStatus = Field(default=TransactionStatus.COMPLETED)


class TransactionRead(TransactionBase):
    """Schema for reading a ledger transaction."""
    id: int
    block_id: Optional[int]
    status: TransactionStatus


class BlockBase(SQLModel):
    """Base block schema."""
    index: int = Field(..., unique=True, description="Position in the chain, 0 = genesis")
    timestamp: datetime = Field(...)
    merkle_root: str = Field(...)
    previous_hash: str = Field(...)
    block_hash: str = Field(..., unique=True)
    block_hash_input: str = Field(..., description="Exact string hashed into block_hash")
    validator_signature: str = Field(...)
    transaction_count: int = Field(..., ge=1)


class Block(BlockBase, table=True):
    """Block database table - immutable once written."""
    __tablename__ = "blocks"

    id: Optional[int] = Field(default=None, primary_key=True)


class BlockRead(BlockBase):
    """Schema for reading a block."""
    id: int


class ChainBlockRead(BlockRead):
    """Block together with the transactions folded into it."""
    transactions: List[TransactionRead] = []


class RollbackRequest(SQLModel):
    """Administrative reversal of a ledger transaction."""
    admin_id: str
    reason: str = Field(..., min_length=3)


class IntegrityStatus(str, Enum):
    VERIFIED = "verified"
    TAMPERED = "tampered"


class FindingKind(str, Enum):
    """What a chain verification finding is about."""
    HASH_MISMATCH = "hash_mismatch"
    HEADER_MISMATCH = "header_mismatch"
    INDEX_GAP = "index_gap"
    GENESIS_MISMATCH = "genesis_mismatch"
    BROKEN_LINK = "broken_link"
    MERKLE_MISMATCH = "merkle_mismatch"
    COUNT_MISMATCH = "count_mismatch"
    TX_ID_MISMATCH = "tx_id_mismatch"
    ENTRY_HASH_MISMATCH = "entry_hash_mismatch"


class IntegrityFinding(SQLModel):
    """A single detected inconsistency, located by block index."""
    block_index: int
    kind: FindingKind
    message: str
    tx_id: Optional[str] = None


class IntegrityReport(SQLModel):
    """Result of re-verifying the whole chain."""
    status: IntegrityStatus
    total_blocks: int
    checked_at: datetime
    errors: List[IntegrityFinding] = []


class ChainExport(SQLModel):
    """Blocks with their transactions plus the integrity verdict."""
    exported_at: datetime
    total_blocks: int
    total_transactions: int
    pending_transactions: int
    blocks: List[ChainBlockRead]
    integrity: IntegrityReport
