"""
Blue Carbon Ledger - Streamlit Dashboard
Ledger explorer for minted, purchased and retired blue carbon credits
"""

import streamlit as st
import requests
import pandas as pd
from datetime import datetime
import plotly.graph_objects as go
import plotly.express as px

# Page configuration
st.set_page_config(
    page_title="Blue Carbon Ledger",
    page_icon="🌊",
    layout="wide",
    initial_sidebar_state="expanded"
)

# Custom styling
st.markdown("""
    <style>
    .main { padding: 2rem; }
    .metric-card { background-color: #f0f2f6; padding: 1.5rem; border-radius: 10px; }
    </style>
    """, unsafe_allow_html=True)

# Sidebar configuration
st.sidebar.title("⚙️ Configuration")
api_url = st.sidebar.text_input("API Base URL", value="http://localhost:8000", key="api_url")

# Initialize session state
if "api_url" not in st.session_state:
    st.session_state.api_url = api_url

# API helper functions
def make_request(method: str, endpoint: str, data=None):
    """Make request to API"""
    try:
        url = f"{st.session_state.api_url}{endpoint}"
        if method == "GET":
            response = requests.get(url, timeout=10)
        elif method == "POST":
            response = requests.post(url, json=data, timeout=10)
        elif method == "PUT":
            response = requests.put(url, json=data, timeout=10)

        response.raise_for_status()
        return response.json() if response.text else {}
    except requests.exceptions.RequestException as e:
        detail = str(e)
        if e.response is not None:
            try:
                detail = e.response.json().get("detail", detail)
            except ValueError:
                pass
        st.error(f"API Error: {detail}")
        return None

# Main title
st.title("🌊 Blue Carbon Ledger")
st.markdown("**Tamper-evident registry of mangrove and seagrass carbon credits**")

# Navigation tabs
tab1, tab2, tab3, tab4 = st.tabs(["📊 Dashboard", "⛓️ Chain", "🧾 Purchases", "🔍 Audit"])

# ============ DASHBOARD TAB ============
with tab1:
    st.header("Marketplace Overview")

    summary = make_request("GET", "/reports/summary")
    if summary:
        col1, col2, col3, col4 = st.columns(4)
        with col1:
            st.metric("🌱 Minted", f"{summary.get('total_minted_credits', 0):.2f} t")
        with col2:
            st.metric("🛒 Sold", f"{summary.get('total_sold_credits', 0):.2f} t")
        with col3:
            st.metric("📦 Available", f"{summary.get('available_credits', 0):.2f} t")
        with col4:
            avg_hours = summary.get("average_review_hours")
            st.metric("⏱️ Avg Review", f"{avg_hours:.1f} h" if avg_hours is not None else "N/A")

        st.divider()

        col1, col2, col3 = st.columns(3)
        with col1:
            st.metric("⛓️ Blocks", summary.get("total_blocks", 0))
        with col2:
            st.metric("🧾 Ledger Entries", summary.get("total_transactions", 0),
                      delta=f"{summary.get('pending_transactions', 0)} pending", delta_color="off")
        with col3:
            st.metric("🚫 Revoked Certificates", summary.get("revoked_certificates", 0))

        # Project status breakdown chart
        st.subheader("Projects by Status")
        status_data = {k: v for k, v in summary.get("projects_by_status", {}).items() if v > 0}

        if status_data:
            fig = go.Figure(data=[go.Pie(
                labels=list(status_data.keys()),
                values=list(status_data.values()),
                marker=dict(colors=["#ffa15a", "#00cc96", "#ff6b6b", "#636efa"])
            )])
            fig.update_layout(height=400)
            st.plotly_chart(fig, width="stretch")

    st.divider()

    col1, col2 = st.columns(2)
    with col1:
        st.subheader("🏆 Top Buyers")
        buyers = make_request("GET", "/reports/top-buyers")
        if buyers:
            df = pd.DataFrame(buyers)
            fig = px.bar(df, x="name", y="credits_purchased", labels={"name": "Buyer", "credits_purchased": "Credits"})
            st.plotly_chart(fig, width="stretch")
        else:
            st.info("No purchases yet")
    with col2:
        st.subheader("🌿 Top Contributors")
        contributors = make_request("GET", "/reports/top-contributors")
        if contributors:
            df = pd.DataFrame([
                {
                    "Name": c.get("name"),
                    "Credits Sold": c.get("credits_sold", 0),
                    "Verified Projects": c.get("verified_projects", 0),
                    "Blue Points": c.get("reward_points", 0)
                }
                for c in contributors
            ])
            st.dataframe(df, width="stretch", hide_index=True)
        else:
            st.info("No contributors yet")

# ============ CHAIN TAB ============
with tab2:
    st.header("Ledger Chain")

    col1, col2 = st.columns([3, 1])
    with col2:
        if st.button("🔄 Refresh Chain"):
            st.rerun()

    integrity = make_request("GET", "/ledger/integrity")
    if integrity:
        if integrity.get("status") == "verified":
            st.success(f"✅ Chain verified: {integrity.get('total_blocks', 0)} blocks")
        else:
            st.error(f"❌ Chain tampered: {len(integrity.get('errors', []))} problems found")
            st.dataframe(pd.DataFrame(integrity.get("errors", [])), width="stretch", hide_index=True)

    chain = make_request("GET", "/ledger/chain")
    if chain:
        df = pd.DataFrame([
            {
                "Index": block.get("index"),
                "Timestamp": block.get("timestamp", "")[:19],
                "Transactions": block.get("transaction_count"),
                "Hash": block.get("block_hash", "")[:16],
                "Previous": block.get("previous_hash", "")[:16],
                "Merkle Root": block.get("merkle_root", "")[:16]
            }
            for block in chain
        ])
        st.dataframe(df, width="stretch", hide_index=True)

        selected = st.selectbox(
            "Inspect Block",
            options=[block.get("index") for block in chain],
            format_func=lambda x: f"Block #{x}"
        )
        block = next(b for b in chain if b.get("index") == selected)
        st.json(block)
    else:
        st.info("No blocks yet")

    st.divider()

    st.subheader("⏳ Pending Entries")
    pending = make_request("GET", "/ledger/transactions?pending=true")
    if pending:
        st.dataframe(pd.DataFrame(pending), width="stretch", hide_index=True)
    else:
        st.info("Every entry is in a block")

    if st.button("⛏️ Build Block Now"):
        result = make_request("POST", "/ledger/blocks")
        if result:
            st.success(f"✅ Block #{result.get('index')} created")
            st.rerun()
        elif result == {}:
            st.info("Nothing pending")

# ============ PURCHASES TAB ============
with tab3:
    st.header("Purchase Certificates")

    buyer_id = st.text_input("Buyer ID", placeholder="Paste a buyer id")
    if buyer_id:
        purchases = make_request("GET", f"/credits?buyer_id={buyer_id}")
        if purchases:
            df = pd.DataFrame([
                {
                    "Certificate": p.get("id"),
                    "Date": p.get("timestamp", "")[:19],
                    "Project": p.get("project_id"),
                    "Credits": p.get("credits"),
                    "Amount": p.get("amount"),
                    "Status": p.get("certificate_status")
                }
                for p in purchases
            ])
            st.dataframe(df, width="stretch", hide_index=True)
        else:
            st.info("No purchases for this buyer")

    st.divider()

    st.subheader("🛒 Purchase Credits")
    with st.form("purchase_form", border=True):
        col1, col2, col3 = st.columns(3)
        with col1:
            form_buyer = st.text_input("Buyer ID")
        with col2:
            form_contributor = st.text_input("Contributor ID")
        with col3:
            form_project = st.text_input("Project ID")

        col1, col2, col3 = st.columns(3)
        with col1:
            credits = st.number_input("Credits (t CO2)", value=1.0, step=0.5, min_value=0.01)
        with col2:
            amount = st.number_input("Amount Paid", value=0.0, step=1.0, min_value=0.0)
        with col3:
            idempotency_key = st.text_input("Idempotency Key", placeholder="Optional")

        submitted = st.form_submit_button("✅ Purchase", width="stretch")
        if submitted:
            payload = {
                "buyer_id": form_buyer,
                "contributor_id": form_contributor,
                "project_id": form_project,
                "credits": credits,
                "amount": amount
            }
            if idempotency_key:
                payload["idempotency_key"] = idempotency_key

            result = make_request("POST", "/credits/purchase", payload)
            if result:
                label = "Replayed" if result.get("replayed") else "Purchased"
                st.success(f"✅ {label}! Certificate: {result['credit_transaction']['id']}")

# ============ AUDIT TAB ============
with tab4:
    st.header("Audit Trail")

    col1, col2 = st.columns(2)

    with col1:
        st.subheader("🏥 API Information")
        health = make_request("GET", "/health")
        if health:
            st.json(health)

        minting = make_request("GET", "/admin/minting")
        if minting is not None:
            state = "enabled" if minting.get("minting_enabled") else "disabled"
            st.metric("🪙 Minting", state.title())

    with col2:
        st.subheader("📬 Audit Queue")
        if st.button("Flush Queued Events"):
            flushed = make_request("POST", "/admin/audit-logs/flush")
            if flushed:
                st.json(flushed)

    logs = make_request("GET", "/admin/audit-logs?limit=200")
    if logs:
        df = pd.DataFrame([
            {
                "Time": log.get("timestamp", "")[:19],
                "Action": log.get("action_type"),
                "User": log.get("user_id") or "system",
                "Entity": f"{log.get('entity_type')}:{log.get('entity_id')}",
                "Payload Hash": log.get("payload_hash", "")[:16]
            }
            for log in logs
        ])
        st.dataframe(df, width="stretch", hide_index=True)
    else:
        st.info("No audit entries yet")

# Footer
st.divider()
st.markdown("---")
st.markdown(
    f"**Blue Carbon Ledger** | API: {st.session_state.api_url} | "
    f"Last updated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}"
)
