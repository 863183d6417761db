"""
Long-lived ledger services shared by every request.

Built once in the application lifespan and stored on ``app.state``.
"""

from dataclasses import dataclass

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bluecarbon.core.config import Settings
from bluecarbon.handlers.audit import AuditLog
from bluecarbon.handlers.blocks import BlockBuilder
from bluecarbon.handlers.settlement import SettlementEngine


@dataclass
class Services:
    session_factory: async_sessionmaker[AsyncSession]
    audit_log: AuditLog
    block_builder: BlockBuilder
    settlement: SettlementEngine

    async def close(self) -> None:
        await self.audit_log.close()


def build_services(session_factory: async_sessionmaker[AsyncSession], settings: Settings) -> Services:
    """Wire the audit log, block builder and settlement engine to one store."""
    audit_log = AuditLog(
        session_factory,
        max_queue_size=settings.audit_queue_max_size,
        flush_interval=settings.audit_flush_interval
    )
    block_builder = BlockBuilder(
        session_factory,
        max_retries=settings.block_build_max_retries,
        audit_log=audit_log
    )
    settlement = SettlementEngine(session_factory, block_builder, audit_log, settings)
    return Services(
        session_factory=session_factory,
        audit_log=audit_log,
        block_builder=block_builder,
        settlement=settlement
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_settlement(request: Request) -> SettlementEngine:
    return get_services(request).settlement


def get_block_builder(request: Request) -> BlockBuilder:
    return get_services(request).block_builder


def get_audit_log(request: Request) -> AuditLog:
    return get_services(request).audit_log
