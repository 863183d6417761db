"""
Audit log service - best-effort, append-only trail of security-relevant actions.

``AuditLog.record`` is called around every sensitive action and must never
raise into, or be awaited by, the caller. Each event is appended to an
in-process store first, then written to the database by a background task.
Events whose durable write fails wait in a bounded retry queue that a timer
flushes once the database is reachable again. Events recorded from worker
threads are handed to the event loop the log was last used on. Failures are
reported through ``logging`` only.
"""

import asyncio
import json
import logging
import threading
from collections import deque
from enum import Enum
from typing import Deque, List, Optional, Set
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from bluecarbon.models.audit import AuditActionType, AuditEvent, AuditLog as AuditLogRow, AuditLogRead
from bluecarbon.utils.hashing import hash_payload
from bluecarbon.utils.time import utc_now

logger = logging.getLogger(__name__)


class QueueState(str, Enum):
    """Retry queue state; at most one flush runs at a time."""
    IDLE = "idle"
    FLUSHING = "flushing"


class AuditLog:
    """
    Append-only audit trail with an in-memory fallback queue.

    Args:
        session_factory: Durable store handle; None keeps the log in memory only
        max_queue_size: Bound on events awaiting a durable retry, oldest dropped first
        flush_interval: Seconds between a failed write and the next flush attempt
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        max_queue_size: int = 10000,
        flush_interval: float = 5.0
    ):
        self._session_factory = session_factory
        self._max_queue_size = max_queue_size
        self._flush_interval = flush_interval

        self._entries: List[AuditLogRead] = []
        self._queue: Deque[AuditLogRead] = deque()
        self._queue_lock = threading.Lock()
        self._state = QueueState.IDLE
        self._flush_handle: Optional[asyncio.TimerHandle] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError:
            pass
        self._tasks: Set[asyncio.Task] = set()
        self.dropped = 0

    @property
    def state(self) -> QueueState:
        return self._state

    @property
    def pending(self) -> int:
        """Events waiting in the retry queue."""
        return len(self._queue)

    # ---- write path -------------------------------------------------------

    def record(self, event: AuditEvent) -> None:
        """Record an event. Never raises and never blocks on the database."""
        try:
            entry = self._build_entry(event)
        except Exception:
            logger.exception("[AuditLog] Could not build audit entry for %s", event.action_type)
            return

        self._entries.append(entry)

        if self._session_factory is None:
            return

        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError:
            self._record_from_thread(entry)
            return

        self._spawn_persist(entry)

    def _record_from_thread(self, entry: AuditLogRead) -> None:
        """Hand the write to the loop that owns the store; queue it if there is none."""
        loop = self._loop
        if loop is not None and not loop.is_closed():
            try:
                loop.call_soon_threadsafe(self._spawn_persist, entry)
                return
            except RuntimeError:
                logger.warning("[AuditLog] Event loop closed, queueing audit event %s", entry.id)
        self._enqueue(entry)

    def _spawn_persist(self, entry: AuditLogRead) -> None:
        task = asyncio.get_running_loop().create_task(self._persist(entry))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _build_entry(self, event: AuditEvent) -> AuditLogRead:
        metadata = event.metadata or {}
        return AuditLogRead(
            id=str(uuid4()),
            user_id=event.user_id,
            action_type=AuditActionType(event.action_type),
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            payload_hash=hash_payload(metadata),
            extra_data=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
            timestamp=utc_now()
        )

    async def _persist(self, entry: AuditLogRead) -> None:
        try:
            async with self._session_factory() as session:
                session.add(AuditLogRow(**entry.model_dump()))
                await session.commit()
        except Exception as e:
            logger.error("[AuditLog] Failed to write audit event %s: %s", entry.id, e)
            self._enqueue(entry)

    # ---- retry queue ------------------------------------------------------

    def _enqueue(self, entry: AuditLogRead) -> None:
        with self._queue_lock:
            if len(self._queue) >= self._max_queue_size:
                lost = self._queue.popleft()
                self.dropped += 1
                logger.warning("[AuditLog] Retry queue full, dropping audit event %s", lost.id)
            self._queue.append(entry)
        self._schedule_flush()

    def _requeue(self, batch: List[AuditLogRead]) -> None:
        """Put a failed batch back ahead of newer events, keeping the newest within bounds."""
        with self._queue_lock:
            combined = batch + list(self._queue)
            overflow = len(combined) - self._max_queue_size
            if overflow > 0:
                self.dropped += overflow
                logger.warning("[AuditLog] Retry queue full, dropping %d audit events", overflow)
                combined = combined[overflow:]
            self._queue = deque(combined)

    def _schedule_flush(self) -> None:
        if self._flush_handle is not None or self._state is QueueState.FLUSHING:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._loop = loop
        self._flush_handle = loop.call_later(self._flush_interval, self._start_flush)

    def _start_flush(self) -> None:
        self._flush_handle = None
        task = asyncio.get_running_loop().create_task(self.flush())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def flush(self) -> int:
        """
        Write queued events to the database.

        Returns:
            Number of events made durable by this call; 0 when another flush
            is in flight, the queue is empty, or the write failed
        """
        if self._session_factory is None:
            return 0

        with self._queue_lock:
            if self._state is QueueState.FLUSHING or not self._queue:
                return 0
            batch = list(self._queue)
            self._queue.clear()
            self._state = QueueState.FLUSHING

        try:
            written = await self._write_batch(batch)
            logger.info("[AuditLog] Flushed %d queued audit events", written)
        except Exception as e:
            logger.error("[AuditLog] Failed to flush queue of %d events: %s", len(batch), e)
            self._requeue(batch)
            written = 0
        finally:
            self._state = QueueState.IDLE

        if self._queue:
            self._schedule_flush()
        return written

    async def _write_batch(self, batch: List[AuditLogRead]) -> int:
        try:
            async with self._session_factory() as session:
                session.add_all([AuditLogRow(**entry.model_dump()) for entry in batch])
                await session.commit()
            return len(batch)
        except IntegrityError:
            # Some events reached the database before their write was reported failed
            written = 0
            for entry in batch:
                try:
                    async with self._session_factory() as session:
                        session.add(AuditLogRow(**entry.model_dump()))
                        await session.commit()
                    written += 1
                except IntegrityError:
                    logger.debug("[AuditLog] Audit event %s already durable", entry.id)
            return written

    async def drain(self) -> None:
        """Wait for in-flight writes, then flush whatever is queued."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self.flush()

    async def close(self) -> None:
        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._flush_handle = None
        await self.drain()

    # ---- read-back --------------------------------------------------------

    def get_all(self) -> List[AuditLogRead]:
        """Copy of every event recorded by this process."""
        return list(self._entries)

    def get_by_user_id(self, user_id: str) -> List[AuditLogRead]:
        return [entry for entry in self._entries if entry.user_id == user_id]

    def get_by_action_type(self, action_type: AuditActionType) -> List[AuditLogRead]:
        return [entry for entry in self._entries if entry.action_type == action_type]


async def list_audit_logs(
    session: AsyncSession,
    user_id: Optional[str] = None,
    action_type: Optional[AuditActionType] = None,
    limit: int = 100
) -> List[AuditLogRow]:
    """Durable audit entries, newest first."""
    statement = select(AuditLogRow)

    if user_id:
        statement = statement.where(AuditLogRow.user_id == user_id)
    if action_type:
        statement = statement.where(AuditLogRow.action_type == action_type)

    statement = statement.order_by(AuditLogRow.timestamp.desc()).limit(limit)

    result = await session.execute(statement)
    return list(result.scalars().all())
