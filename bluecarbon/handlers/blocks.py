"""
Block builder - folds unattached ledger transactions into hash-linked blocks.
"""

import asyncio
import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bluecarbon.core.constants import GENESIS_PREVIOUS_HASH, SYSTEM_PARTY
from bluecarbon.core.errors import StorageUnavailable
from bluecarbon.handlers.ledger_store import (
    attach_transactions,
    get_last_block,
    get_unattached_transactions,
    insert_block
)
from bluecarbon.models.audit import AuditActionType, AuditEvent
from bluecarbon.models.ledger import Block
from bluecarbon.utils.hashing import compute_block_hash, compute_merkle_root, derive_validator_tag
from bluecarbon.utils.time import utc_now

logger = logging.getLogger(__name__)


class BlockConflict(Exception):
    """Another builder attached some of the pending transactions first."""


class BlockBuilder:
    """
    Builds at most one block per call from every pending transaction.

    The block insert and the attachment of its transactions commit together.
    A competing builder shows up either as a unique-index violation on the
    block index or as fewer rows attached than selected; both roll back and
    retry against fresh reads. Transactions left unattached by a crash are
    picked up by the next call.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_retries: int = 5,
        audit_log=None
    ):
        self._session_factory = session_factory
        self._max_retries = max_retries
        self._audit_log = audit_log
        self._lock = asyncio.Lock()

    async def build_block_if_pending(self, approver_id: Optional[str] = None) -> Optional[Block]:
        """
        Fold all unattached transactions into a new block.

        Args:
            approver_id: Identity bound into the validator signature, 'system' if omitted

        Returns:
            The new block, or None when nothing was pending

        Raises:
            StorageUnavailable: the store failed or conflicts did not settle
        """
        async with self._lock:
            for attempt in range(1, self._max_retries + 1):
                try:
                    block = await self._build_once(approver_id or SYSTEM_PARTY)
                except (IntegrityError, BlockConflict) as e:
                    logger.info(
                        "Block build conflict on attempt %d/%d: %s",
                        attempt, self._max_retries, e
                    )
                    continue
                except SQLAlchemyError as e:
                    raise StorageUnavailable(f"Block build failed: {e}") from e

                if block is not None:
                    self._record_block(block, approver_id)
                return block

        raise StorageUnavailable(
            f"Block build did not settle after {self._max_retries} attempts"
        )

    async def _build_once(self, approver_id: str) -> Optional[Block]:
        async with self._session_factory() as session:
            async with session.begin():
                pending = await get_unattached_transactions(session)
                if not pending:
                    return None

                last_block = await get_last_block(session)
                if last_block:
                    index = last_block.index + 1
                    previous_hash = last_block.block_hash
                else:
                    index = 0
                    previous_hash = GENESIS_PREVIOUS_HASH

                merkle_root = compute_merkle_root([tx.tx_id for tx in pending])
                timestamp = utc_now()
                block_hash = compute_block_hash(
                    index=index,
                    timestamp=timestamp,
                    merkle_root=merkle_root,
                    previous_hash=previous_hash,
                    transaction_count=len(pending)
                )

                block = await insert_block(session, Block(
                    index=index,
                    timestamp=timestamp,
                    merkle_root=merkle_root,
                    previous_hash=previous_hash,
                    block_hash=block_hash.hash,
                    block_hash_input=block_hash.canonical_input,
                    validator_signature=derive_validator_tag(block_hash.hash, approver_id),
                    transaction_count=len(pending)
                ))

                attached = await attach_transactions(session, [tx.id for tx in pending], block.id)
                if attached != len(pending):
                    raise BlockConflict(
                        f"attached {attached} of {len(pending)} transactions to block #{index}"
                    )

        logger.info(
            "Created block #%d with %d transactions (hash %s)",
            block.index, block.transaction_count, block.block_hash
        )
        return block

    def _record_block(self, block: Block, approver_id: Optional[str]) -> None:
        if self._audit_log is None:
            return
        self._audit_log.record(AuditEvent(
            user_id=approver_id,
            action_type=AuditActionType.LEDGER_BLOCK_CREATED,
            entity_type="block",
            entity_id=str(block.id),
            metadata={
                "index": block.index,
                "block_hash": block.block_hash,
                "merkle_root": block.merkle_root,
                "transaction_count": block.transaction_count
            }
        ))
