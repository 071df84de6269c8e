# =============================================================================
# pages/04_Donors.py - Donors and Commitments
# Register donors, pledge commitments and follow their drawdown.
# =============================================================================
from __future__ import annotations

import pandas as pd
import streamlit as st

from drms_core.auth.authentication import require_role
from drms_core.auth.navigation import render_sidebar
from drms_core.errors.handlers import ErrorContext
from drms_core.exports.charts import commitments_by_donor
from drms_core.models.enums import DonorType
from drms_core.state.session import get_registry, init_state
from drms_core.ui.components import add_grid, header, metric_row
from drms_core.ui.theme import apply_css

st.set_page_config(page_title="Donors - DRMS", page_icon="🤝", layout="wide")
init_state()
apply_css()

principal = require_role("DONOR", "COORDINATOR")
render_sidebar(principal)
registry = get_registry()

header("Donors & Commitments", "Pledges, deliveries and how much is still available", "🤝")

donors = registry.commitments.list_donors()
if principal.has_role("DONOR") and not principal.is_privileged:
    donors = [d for d in donors if d.get("user_id") == principal.id]

stats = registry.commitments.get_commitment_stats(
    donor_id=donors[0]["id"] if len(donors) == 1 and not principal.is_privileged else None,
)
metric_row({
    "Commitments": stats["totalCommitments"],
    "Committed": stats["quantities"]["totalCommitted"],
    "Delivered": stats["quantities"]["totalDelivered"],
    "Utilization": f"{stats['quantities']['utilizationRate']:.1f}%",
})

tab_commit, tab_list, tab_donors = st.tabs(["🎁 New commitment", "📋 Commitments", "🏢 Donors"])

# =============================================================================
# NEW COMMITMENT
# =============================================================================
with tab_commit:
    entities = registry.entities.list_entities()
    incidents = registry.incidents.list_incidents(status="ACTIVE")
    if not donors:
        st.info("Register a donor first.")
    elif not entities or not incidents:
        st.info("Commitments need an active incident and at least one entity.")
    else:
        with st.form("commitment_form", clear_on_submit=True):
            donor = st.selectbox("Donor", donors, format_func=lambda d: d["name"])
            entity = st.selectbox("Entity", entities, format_func=lambda e: f"{e['name']} ({e['type']})")
            incident = st.selectbox("Incident", incidents, format_func=lambda i: f"{i['type']} at {i['location']}")
            items = st.data_editor(
                pd.DataFrame([{"name": "", "quantity": 0, "unit": ""}]),
                num_rows="dynamic", use_container_width=True, key="commitment_items",
            )
            notes = st.text_area("Notes")
            if st.form_submit_button("Pledge"):
                with ErrorContext("Create commitment", show_success=True):
                    registry.commitments.create_commitment({
                        "donor_id": donor["id"],
                        "entity_id": entity["id"],
                        "incident_id": incident["id"],
                        "items": [r for r in items.to_dict("records") if r.get("name")],
                        "notes": notes,
                    }, principal)

# =============================================================================
# COMMITMENTS
# =============================================================================
with tab_list:
    commitments = []
    for donor in donors:
        commitments.extend(registry.commitments.list_commitments(donor_id=donor["id"]))
    if not commitments:
        st.info("No commitments yet.")
    else:
        df = pd.DataFrame(commitments)
        st.plotly_chart(add_grid(commitments_by_donor(df, pd.DataFrame(donors))), use_container_width=True)
        df["available"] = df["total_committed_quantity"] - df["delivered_quantity"]
        st.dataframe(
            df[["id", "status", "total_committed_quantity", "delivered_quantity", "available", "commitment_date"]],
            hide_index=True, use_container_width=True,
        )
        open_ids = [c["id"] for c in commitments if c["status"] in ("PLANNED", "PARTIAL")]
        if open_ids:
            target = st.selectbox("Cancel commitment", open_ids)
            if st.button("Cancel selected"):
                with ErrorContext("Cancel commitment", show_success=True):
                    registry.commitments.cancel_commitment(target, principal)
                st.rerun()

# =============================================================================
# DONORS
# =============================================================================
with tab_donors:
    if donors:
        st.dataframe(pd.DataFrame(donors)[["name", "type", "organization", "contact_email"]],
                     hide_index=True, use_container_width=True)
    with st.form("donor_form", clear_on_submit=True):
        name = st.text_input("Donor name")
        donor_type = st.selectbox("Type", [t.value for t in DonorType], index=1)
        organization = st.text_input("Organization")
        email = st.text_input("Contact email")
        if st.form_submit_button("Register donor"):
            with ErrorContext("Register donor", show_success=True):
                registry.commitments.create_donor(
                    {"name": name, "type": donor_type, "organization": organization, "contact_email": email},
                    principal,
                )
