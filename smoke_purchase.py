#!/usr/bin/env python3
"""
Smoke script: mint, purchase, replay and verify against a running server
"""

import requests
import sys
import uuid

API_BASE = "http://localhost:8000"


def create_user(name, role):
    response = requests.post(f"{API_BASE}/users/", json={"name": name, "role": role})
    if response.status_code != 201:
        print(f"❌ Failed to create {role}: {response.text}")
        return None
    return response.json()


def smoke_purchase():
    """Run one approval and purchase through the API"""

    print("👥 Creating users...")
    contributor = create_user("Smoke Contributor", "contributor")
    buyer = create_user("Smoke Buyer", "buyer")
    verifier = create_user("Smoke Verifier", "verifier")
    if not (contributor and buyer and verifier):
        return False
    print(f"✅ contributor={contributor['id']} buyer={buyer['id']}")

    print("\n🌱 Submitting and approving project...")
    response = requests.post(
        f"{API_BASE}/projects/",
        json={"name": "Smoke Seagrass Meadow", "user_id": contributor["id"], "lifetime_co2": 100.0}
    )
    if response.status_code != 201:
        print(f"❌ Failed to submit project: {response.text}")
        return False
    project = response.json()

    response = requests.post(
        f"{API_BASE}/projects/{project['id']}/approve",
        json={"approver_id": verifier["id"], "proof_ref": "smoke-evidence"}
    )
    if response.status_code != 200:
        print(f"❌ Failed to approve project: {response.text}")
        return False
    print(f"✅ Minted {response.json()['credits']} credits")

    print("\n🛒 Purchasing 40 credits...")
    payload = {
        "buyer_id": buyer["id"],
        "contributor_id": contributor["id"],
        "project_id": project["id"],
        "credits": 40.0,
        "amount": 600.0,
        "idempotency_key": f"smoke-{uuid.uuid4()}"
    }
    response = requests.post(f"{API_BASE}/credits/purchase", json=payload)
    if response.status_code != 200:
        print(f"❌ Purchase failed: {response.text}")
        return False
    first = response.json()
    print(f"✅ Certificate {first['credit_transaction']['id']}, "
          f"{first['project']['credits_earned']} credits left")

    response = requests.post(f"{API_BASE}/credits/purchase", json=payload)
    replay = response.json()
    if not replay.get("replayed") or replay["credit_transaction"]["id"] != first["credit_transaction"]["id"]:
        print(f"❌ Replay did not return the original purchase: {response.text}")
        return False
    print("✅ Replay returned the original purchase")

    print("\n⛓️ Verifying chain...")
    report = requests.get(f"{API_BASE}/ledger/integrity").json()
    print(f"  status={report['status']} blocks={report['total_blocks']}")
    for error in report.get("errors", []):
        print(f"  - {error['message']}")

    return report["status"] == "verified"

if __name__ == "__main__":
    try:
        success = smoke_purchase()
        sys.exit(0 if success else 1)
    except Exception as e:
        print(f"❌ Error: {e}")
        sys.exit(1)
