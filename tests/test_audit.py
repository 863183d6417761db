"""
Tests for the audit log: in-memory trail, durable writes and the retry queue.
"""

import asyncio

from sqlalchemy.exc import OperationalError
from sqlmodel import select

from bluecarbon.handlers.audit import AuditLog, QueueState, list_audit_logs
from bluecarbon.models.audit import AuditActionType, AuditEvent, AuditLog as AuditLogRow
from bluecarbon.utils.hashing import hash_payload


class FlakyFactory:
    """Session factory that fails while the database is 'down'."""

    def __init__(self, factory):
        self.factory = factory
        self.down = True

    def __call__(self):
        if self.down:
            raise OperationalError("INSERT INTO audit_logs", {}, Exception("database is locked"))
        return self.factory()


def event(n=0, user_id="user-1", action=AuditActionType.CREDITS_PURCHASED):
    return AuditEvent(
        user_id=user_id,
        action_type=action,
        entity_type="credit_transaction",
        entity_id=f"purchase-{n}",
        metadata={"credits": n}
    )


async def durable_rows(session_factory):
    async with session_factory() as session:
        result = await session.execute(select(AuditLogRow))
        return list(result.scalars().all())


async def test_record_is_synchronous_and_hashes_metadata():
    audit_log = AuditLog()

    assert audit_log.record(event(3)) is None

    [entry] = audit_log.get_all()
    assert entry.payload_hash == hash_payload({"credits": 3})
    assert entry.extra_data == '{"credits": 3}'
    assert entry.action_type == AuditActionType.CREDITS_PURCHASED


async def test_thousand_concurrent_records_are_all_kept():
    audit_log = AuditLog()

    async def record(n):
        audit_log.record(event(n, user_id=f"user-{n % 10}"))

    await asyncio.gather(*(record(n) for n in range(1000)))

    entries = audit_log.get_all()
    assert len(entries) == 1000
    assert len({e.id for e in entries}) == 1000
    assert len(audit_log.get_by_user_id("user-3")) == 100


async def test_read_back_returns_copies():
    audit_log = AuditLog()
    audit_log.record(event())

    audit_log.get_all().clear()

    assert len(audit_log.get_all()) == 1


async def test_filters_by_action_type():
    audit_log = AuditLog()
    audit_log.record(event(1))
    audit_log.record(event(2, action=AuditActionType.CERTIFICATE_REVOKED))

    revoked = audit_log.get_by_action_type(AuditActionType.CERTIFICATE_REVOKED)
    assert [e.entity_id for e in revoked] == ["purchase-2"]


async def test_events_reach_the_database(session_factory):
    audit_log = AuditLog(session_factory)
    for n in range(20):
        audit_log.record(event(n))

    await audit_log.drain()

    rows = await durable_rows(session_factory)
    assert {r.id for r in rows} == {e.id for e in audit_log.get_all()}


async def test_failed_writes_wait_in_queue_until_flushed(session_factory):
    flaky = FlakyFactory(session_factory)
    audit_log = AuditLog(flaky, flush_interval=60)

    for n in range(5):
        audit_log.record(event(n))
    await audit_log.drain()

    assert audit_log.pending == 5
    assert len(audit_log.get_all()) == 5
    assert await durable_rows(session_factory) == []

    flaky.down = False
    assert await audit_log.flush() == 5

    assert audit_log.pending == 0
    assert audit_log.state is QueueState.IDLE
    assert len(await durable_rows(session_factory)) == 5
    await audit_log.close()


async def test_timer_flushes_queue_once_database_recovers(session_factory):
    flaky = FlakyFactory(session_factory)
    audit_log = AuditLog(flaky, flush_interval=0.05)

    audit_log.record(event(1))
    audit_log.record(event(2))
    await asyncio.sleep(0.01)
    assert audit_log.pending == 2

    flaky.down = False
    for _ in range(50):
        if audit_log.pending == 0:
            break
        await asyncio.sleep(0.05)

    assert audit_log.pending == 0
    assert len(await durable_rows(session_factory)) == 2
    await audit_log.close()


async def test_full_queue_drops_oldest(session_factory):
    flaky = FlakyFactory(session_factory)
    audit_log = AuditLog(flaky, max_queue_size=3, flush_interval=60)

    for n in range(5):
        audit_log.record(event(n))
    await audit_log.drain()

    assert audit_log.pending == 3
    assert audit_log.dropped == 2
    # The in-process trail keeps everything
    assert len(audit_log.get_all()) == 5

    flaky.down = False
    await audit_log.flush()
    rows = await durable_rows(session_factory)
    assert sorted(r.entity_id for r in rows) == ["purchase-2", "purchase-3", "purchase-4"]
    await audit_log.close()


async def test_flush_skips_already_durable_events(session_factory):
    audit_log = AuditLog(session_factory, flush_interval=60)
    audit_log.record(event(1))
    await audit_log.drain()

    # Write reported as failed although it landed
    audit_log._requeue(audit_log.get_all())
    audit_log.record(event(2))
    await audit_log.drain()

    assert audit_log.pending == 0
    assert len(await durable_rows(session_factory)) == 2


async def test_list_audit_logs_filters(session_factory):
    audit_log = AuditLog(session_factory)
    audit_log.record(event(1, user_id="alice"))
    audit_log.record(event(2, user_id="bob"))
    audit_log.record(event(3, user_id="alice", action=AuditActionType.CERTIFICATE_REVOKED))
    await audit_log.drain()

    async with session_factory() as session:
        alice = await list_audit_logs(session, user_id="alice")
        revoked = await list_audit_logs(session, action_type=AuditActionType.CERTIFICATE_REVOKED)
        limited = await list_audit_logs(session, limit=1)

    assert {r.entity_id for r in alice} == {"purchase-1", "purchase-3"}
    assert [r.entity_id for r in revoked] == ["purchase-3"]
    assert len(limited) == 1


async def test_records_from_worker_thread_are_written_without_drain(session_factory):
    audit_log = AuditLog(session_factory, flush_interval=60)

    def record_batch():
        for n in range(50):
            audit_log.record(event(n))

    await asyncio.to_thread(record_batch)

    for _ in range(100):
        if len(await durable_rows(session_factory)) == 50:
            break
        await asyncio.sleep(0.02)

    assert len(await durable_rows(session_factory)) == 50
    assert audit_log.pending == 0
    await audit_log.close()


def test_records_without_any_loop_wait_in_queue():
    # Never bound to a loop, so the factory is never called
    audit_log = AuditLog(lambda: None)

    audit_log.record(event(1))

    assert audit_log.pending == 1
    assert len(audit_log.get_all()) == 1
