"""
Shared fixtures: a throwaway SQLite ledger per test and seeded parties.
"""

from types import SimpleNamespace

import pytest

from bluecarbon.core.config import Settings
from bluecarbon.core.database import build_engine, build_session_factory, init_db
from bluecarbon.core.services import build_services
from bluecarbon.models.project import Project
from bluecarbon.models.user import User, UserRole


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite+aiosqlite://",
        audit_flush_interval=0.05,
        minting_enabled_default=True
    )


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def services(session_factory, settings):
    services = build_services(session_factory, settings)
    yield services
    await services.close()


@pytest.fixture
def settlement(services):
    return services.settlement


@pytest.fixture
async def parties(session_factory):
    """Admin, verifier, contributor, two buyers and a pending 100 t project."""
    async with session_factory() as session:
        admin = User(name="Admin", role=UserRole.ADMIN)
        verifier = User(name="Verifier", role=UserRole.VERIFIER)
        contributor = User(name="Mangrove Co-op", role=UserRole.CONTRIBUTOR)
        buyer = User(name="Harbour Shipping", role=UserRole.BUYER)
        other_buyer = User(name="Coastal Airways", role=UserRole.BUYER)
        session.add_all([admin, verifier, contributor, buyer, other_buyer])
        await session.flush()

        project = Project(
            name="Estuary Mangroves",
            user_id=contributor.id,
            lifetime_co2=100.0,
            proof_file_url="ipfs://evidence"
        )
        session.add(project)
        await session.commit()

    return SimpleNamespace(
        admin=admin,
        verifier=verifier,
        contributor=contributor,
        buyer=buyer,
        other_buyer=other_buyer,
        project=project
    )


@pytest.fixture
async def verified_project(settlement, parties):
    """The parties' project approved with 100 credits minted to the contributor."""
    await settlement.record_approval(
        project_id=parties.project.id,
        beneficiary_id=parties.contributor.id,
        credits=100.0,
        proof_ref="ipfs://evidence",
        approver_id=parties.verifier.id
    )
    return parties.project


@pytest.fixture
def load(session_factory):
    """Fresh read of a row by primary key."""
    async def _load(model, key):
        async with session_factory() as session:
            return await session.get(model, key)
    return _load
