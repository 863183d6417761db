"""
Optional development seeding script.
"""

import asyncio
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from bluecarbon.core.config import get_settings
from bluecarbon.core.database import AsyncSessionLocal, close_db, init_db
from bluecarbon.core.services import build_services
from bluecarbon.handlers.integrity import verify_chain
from bluecarbon.handlers.parties import create_project, create_user
from bluecarbon.models.project import ProjectCreate
from bluecarbon.models.user import UserCreate, UserRole


async def seed_data():
    """Seed database with a verified mangrove project and one purchase."""
    await init_db()
    services = build_services(AsyncSessionLocal, get_settings())

    async with AsyncSessionLocal() as session:
        admin = await create_user(session, UserCreate(name="Ledger Admin", role=UserRole.ADMIN), services.audit_log)
        verifier = await create_user(session, UserCreate(name="Field Verifier", role=UserRole.VERIFIER), services.audit_log)
        contributor = await create_user(session, UserCreate(name="Coastal Cooperative", role=UserRole.CONTRIBUTOR), services.audit_log)
        buyer = await create_user(session, UserCreate(name="Harbour Shipping Ltd", role=UserRole.BUYER), services.audit_log)
        print(f"Created users: admin={admin.id} verifier={verifier.id} contributor={contributor.id} buyer={buyer.id}")

        # Sundarbans mangrove restoration, 12 ha
        project = await create_project(
            session,
            ProjectCreate(
                name="Sundarbans Mangrove Restoration",
                user_id=contributor.id,
                lifetime_co2=100.0,
                proof_file_url="ipfs://bafy-seed-evidence"
            ),
            services.audit_log
        )
        print(f"Created project: {project.id}")

    mint = await services.settlement.record_approval(
        project_id=project.id,
        beneficiary_id=contributor.id,
        credits=project.lifetime_co2,
        proof_ref=project.proof_file_url,
        approver_id=verifier.id
    )
    print(f"Minted {mint.credits} credits (tx {mint.tx_id})")

    result = await services.settlement.purchase(
        buyer_id=buyer.id,
        contributor_id=contributor.id,
        project_id=project.id,
        credits=40.0,
        amount_paid=600.0,
        idempotency_key="seed-purchase-1"
    )
    print(f"Purchased 40 credits, certificate {result.credit_transaction.id}, "
          f"{result.project.credits_earned} remaining")

    async with AsyncSessionLocal() as session:
        report = await verify_chain(session)
    print(f"Chain {report.status.value}: {report.total_blocks} blocks")

    await services.close()
    await close_db()
    print("Seed data created successfully!")


if __name__ == "__main__":
    asyncio.run(seed_data())
