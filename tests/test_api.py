"""
HTTP API tests through the ASGI app.
"""

import json

import httpx
import pytest

from bluecarbon.core.database import get_session
from main import app


@pytest.fixture
async def client(services, session_factory):
    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.state.services = services
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


async def register(client, name, role):
    response = await client.post("/users/", json={"name": name, "role": role})
    assert response.status_code == 201
    return response.json()


@pytest.fixture
async def marketplace(client):
    contributor = await register(client, "Mangrove Co-op", "contributor")
    buyer = await register(client, "Harbour Shipping", "buyer")
    verifier = await register(client, "Verifier", "verifier")
    admin = await register(client, "Admin", "admin")

    response = await client.post("/projects/", json={
        "name": "Estuary Mangroves",
        "user_id": contributor["id"],
        "lifetime_co2": 100.0,
        "proof_file_url": "ipfs://evidence"
    })
    assert response.status_code == 201
    project = response.json()
    assert project["status"] == "pending"

    return {
        "contributor": contributor,
        "buyer": buyer,
        "verifier": verifier,
        "admin": admin,
        "project": project
    }


async def approve(client, marketplace):
    return await client.post(
        f"/projects/{marketplace['project']['id']}/approve",
        json={"approver_id": marketplace["verifier"]["id"]}
    )


def purchase_body(marketplace, credits, key=None):
    body = {
        "buyer_id": marketplace["buyer"]["id"],
        "contributor_id": marketplace["contributor"]["id"],
        "project_id": marketplace["project"]["id"],
        "credits": credits,
        "amount": credits * 15
    }
    if key:
        body["idempotency_key"] = key
    return body


async def test_health(client):
    assert (await client.get("/health/")).json()["status"] == "healthy"
    assert (await client.get("/health/ready")).json() == {"status": "ready"}


async def test_unknown_user_is_404(client):
    response = await client.get("/users/missing")
    assert response.status_code == 404


async def test_project_by_non_contributor_is_rejected(client):
    buyer = await register(client, "Buyer", "buyer")
    response = await client.post("/projects/", json={"name": "P", "user_id": buyer["id"]})
    assert response.status_code == 422


async def test_approve_defaults_to_owner_and_lifetime_co2(client, marketplace):
    response = await approve(client, marketplace)

    assert response.status_code == 200
    mint = response.json()
    assert mint["kind"] == "Mint"
    assert mint["to_party"] == marketplace["contributor"]["id"]
    assert mint["credits"] == 100.0

    project = (await client.get(f"/projects/{marketplace['project']['id']}")).json()
    assert project["status"] == "verified"
    assert project["credits_earned"] == 100.0

    assert (await approve(client, marketplace)).status_code == 409


async def test_purchase_flow(client, marketplace):
    await approve(client, marketplace)

    response = await client.post("/credits/purchase", json=purchase_body(marketplace, 40.0, "k1"))
    assert response.status_code == 200
    first = response.json()
    assert first["replayed"] is False
    assert first["project"]["credits_earned"] == 60.0
    assert first["buyer"]["reward_points"] == 200.0

    replay = (await client.post("/credits/purchase", json=purchase_body(marketplace, 40.0, "k1"))).json()
    assert replay["replayed"] is True
    assert replay["credit_transaction"]["id"] == first["credit_transaction"]["id"]

    response = await client.post("/credits/purchase", json=purchase_body(marketplace, 41.0, "k1"))
    assert response.status_code == 409

    response = await client.post("/credits/purchase", json=purchase_body(marketplace, 70.0))
    assert response.status_code == 409
    assert "Insufficient credits" in response.json()["detail"]

    certificate_id = first["credit_transaction"]["id"]
    history = (await client.get("/credits/", params={"buyer_id": marketplace["buyer"]["id"]})).json()
    assert [c["id"] for c in history] == [certificate_id]

    admin_id = marketplace["admin"]["id"]
    response = await client.post(
        f"/credits/{certificate_id}/revoke", json={"reason": "fraud review", "admin_id": admin_id}
    )
    assert response.json()["certificate_status"] == "revoked"
    again = await client.post(f"/credits/{certificate_id}/revoke", json={"admin_id": admin_id})
    assert again.status_code == 409

    rewards = (await client.get(f"/users/{marketplace['buyer']['id']}/rewards")).json()
    assert [r["points"] for r in rewards] == [200.0]


async def test_purchase_request_validation(client, marketplace):
    response = await client.post("/credits/purchase", json=purchase_body(marketplace, 0))
    assert response.status_code == 422


def raw_json(body):
    """Request kwargs for a body holding Infinity or NaN, which json= refuses to encode."""
    return {
        "content": json.dumps(body),
        "headers": {"content-type": "application/json"}
    }


@pytest.mark.parametrize("credits, amount", [("Infinity", 15.0), ("NaN", 15.0), (1.0, "Infinity")])
async def test_purchase_rejects_non_finite_numbers(client, marketplace, credits, amount):
    await approve(client, marketplace)
    body = purchase_body(marketplace, 1.0)
    body["credits"] = float(credits)
    body["amount"] = float(amount)

    response = await client.post("/credits/purchase", **raw_json(body))

    assert response.status_code == 422
    project = (await client.get(f"/projects/{marketplace['project']['id']}")).json()
    assert project["credits_earned"] == 100.0


@pytest.mark.parametrize("credits", ["Infinity", "-Infinity", "NaN"])
async def test_approval_rejects_non_finite_credits(client, marketplace, credits):
    response = await client.post(
        f"/projects/{marketplace['project']['id']}/approve",
        **raw_json({"credits": float(credits), "approver_id": marketplace["verifier"]["id"]})
    )

    assert response.status_code == 422
    project = (await client.get(f"/projects/{marketplace['project']['id']}")).json()
    assert project["status"] == "pending"
    assert (await client.get("/ledger/transactions")).json() == []


async def test_revoke_requires_admin(client, marketplace):
    await approve(client, marketplace)
    bought = (await client.post("/credits/purchase", json=purchase_body(marketplace, 5.0))).json()
    certificate_id = bought["credit_transaction"]["id"]

    response = await client.post(
        f"/credits/{certificate_id}/revoke",
        json={"reason": "not allowed", "admin_id": marketplace["buyer"]["id"]}
    )
    assert response.status_code == 403
    assert (await client.post(f"/credits/{certificate_id}/revoke", json={})).status_code == 422
    assert (await client.get(f"/credits/{certificate_id}")).json()["certificate_status"] == "valid"


async def test_contributor_sales_and_party_transactions(client, marketplace):
    await approve(client, marketplace)
    bought = (await client.post("/credits/purchase", json=purchase_body(marketplace, 12.0))).json()

    sales = (await client.get(
        "/credits/sales", params={"contributor_id": marketplace["contributor"]["id"]}
    )).json()
    assert [s["id"] for s in sales] == [bought["credit_transaction"]["id"]]
    assert sales[0]["buyer_name"] == "Harbour Shipping"
    assert sales[0]["project_name"] == "Estuary Mangroves"

    mine = (await client.get(
        "/ledger/transactions", params={"party_id": marketplace["buyer"]["id"]}
    )).json()
    assert [tx["kind"] for tx in mine] == ["Buy"]

    contributor = (await client.get(
        "/ledger/transactions", params={"party_id": marketplace["contributor"]["id"]}
    )).json()
    assert [tx["kind"] for tx in contributor] == ["Mint", "Buy"]

    ledger = (await client.get("/reports/ledger", params={"limit": 1})).json()
    assert [entry["kind"] for entry in ledger] == ["Buy"]


async def test_ledger_views(client, marketplace):
    await approve(client, marketplace)
    await client.post("/credits/purchase", json=purchase_body(marketplace, 10.0))

    chain = (await client.get("/ledger/chain")).json()
    assert [b["index"] for b in chain] == [0, 1]
    assert chain[1]["previous_hash"] == chain[0]["block_hash"]

    integrity = (await client.get("/ledger/integrity")).json()
    assert integrity["status"] == "verified"
    assert integrity["errors"] == []

    export = (await client.get("/ledger/export")).json()
    assert export["total_transactions"] == 2

    buys = (await client.get("/ledger/transactions", params={"kind": "Buy"})).json()
    assert len(buys) == 1
    assert (await client.get("/ledger/transactions", params={"pending": "true"})).json() == []

    assert (await client.post("/ledger/blocks")).status_code == 204


async def test_rollback_endpoint(client, marketplace):
    await approve(client, marketplace)
    buy = (await client.post("/credits/purchase", json=purchase_body(marketplace, 10.0))).json()
    tx_id = buy["transaction"]["tx_id"]

    response = await client.post(
        f"/ledger/transactions/{tx_id}/rollback",
        json={"admin_id": marketplace["verifier"]["id"], "reason": "not an admin"}
    )
    assert response.status_code == 403

    response = await client.post(
        f"/ledger/transactions/{tx_id}/rollback",
        json={"admin_id": marketplace["admin"]["id"], "reason": "chargeback"}
    )
    assert response.status_code == 200
    assert response.json()["kind"] == "Rollback"

    buyer = (await client.get(f"/users/{marketplace['buyer']['id']}")).json()
    assert buyer["reward_points"] == 0.0


async def test_minting_switch(client, marketplace):
    response = await client.put(
        "/admin/minting", json={"minting_enabled": False, "admin_id": marketplace["admin"]["id"]}
    )
    assert response.json()["minting_enabled"] is False
    assert (await client.get("/admin/minting")).json()["minting_enabled"] is False

    assert (await approve(client, marketplace)).status_code == 403


async def test_audit_log_endpoints(client, services, marketplace):
    await approve(client, marketplace)
    await services.audit_log.drain()

    logs = (await client.get("/admin/audit-logs")).json()
    actions = {log["action_type"] for log in logs}
    assert {"SIGNUP", "PROJECT_SUBMITTED", "PROJECT_APPROVED", "LEDGER_BLOCK_CREATED"} <= actions

    approved = (await client.get("/admin/audit-logs", params={"action_type": "PROJECT_APPROVED"})).json()
    assert len(approved) == 1

    flushed = (await client.post("/admin/audit-logs/flush")).json()
    assert flushed == {"written": 0, "pending": 0, "dropped": 0, "state": "idle"}


async def test_reports(client, marketplace):
    await approve(client, marketplace)
    await client.post("/credits/purchase", json=purchase_body(marketplace, 30.0))

    summary = (await client.get("/reports/summary")).json()
    assert summary["total_minted_credits"] == 100.0
    assert summary["total_sold_credits"] == 30.0
    assert summary["available_credits"] == 70.0
    assert summary["total_blocks"] == 2
    assert summary["projects_by_status"]["verified"] == 1
    assert summary["average_review_hours"] is not None

    buyers = (await client.get("/reports/top-buyers")).json()
    assert [b["id"] for b in buyers] == [marketplace["buyer"]["id"]]

    contributors = (await client.get("/reports/top-contributors")).json()
    assert contributors[0]["id"] == marketplace["contributor"]["id"]
    assert contributors[0]["credits_sold"] == 30.0
    assert contributors[0]["verified_projects"] == 1

    ledger = (await client.get("/reports/ledger")).json()
    assert [entry["kind"] for entry in ledger] == ["Buy", "Mint"]
    assert ledger[0]["block_index"] == 1
