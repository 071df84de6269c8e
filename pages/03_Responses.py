# =============================================================================
# pages/03_Responses.py - Response Planning and Delivery
# Plan responses against verified assessments, online or offline.
# =============================================================================
from __future__ import annotations

import pandas as pd
import streamlit as st

from drms_core.auth.authentication import require_role
from drms_core.auth.navigation import render_sidebar
from drms_core.errors.handlers import ErrorContext
from drms_core.exports.charts import responses_by_status
from drms_core.models.enums import Priority, ResponseType
from drms_core.state.session import get_offline_context, get_registry, init_state
from drms_core.ui.components import add_grid, header, metric_row, status_badge
from drms_core.ui.theme import apply_css

st.set_page_config(page_title="Responses - DRMS", page_icon="🚚", layout="wide")
init_state()
apply_css()

principal = require_role("RESPONDER", "COORDINATOR")
render_sidebar(principal)
registry = get_registry()
ctx = get_offline_context()

header("Responses", "Plan deliveries for verified needs and confirm what arrived", "🚚")

tab_plan, tab_deliver, tab_overview = st.tabs(["🗺️ Plan", "📦 Confirm delivery", "📈 Overview"])

# =============================================================================
# PLAN
# =============================================================================
with tab_plan:
    verified = registry.assignments.get_verified_assessments(principal)
    if not verified:
        # Cached during the offline download for responders
        verified = [r.data for r in ctx.store.list_records("assessments")]

    if not verified:
        st.info("No verified assessments at your assigned entities.")
    else:
        assessment = st.selectbox(
            "Verified assessment", verified,
            format_func=lambda a: f"{a['rapid_assessment_type']} at {a.get('location') or a['entity_id']} ({a['priority']})",
        )
        check = ctx.responses.check_assessment_conflicts(assessment["id"])
        if check["hasConflict"]:
            st.warning(check["message"])

        commitments = registry.commitments.get_available_commitments(principal, entity_id=assessment["entity_id"])

        with st.form("response_form", clear_on_submit=True):
            c1, c2 = st.columns(2)
            with c1:
                response_type = st.selectbox("Response type", [t.value for t in ResponseType])
            with c2:
                priority = st.selectbox("Priority", [p.value for p in Priority], index=2)
            commitment = st.selectbox(
                "Draw from commitment", [None] + commitments,
                format_func=lambda c: "None" if c is None else
                f"{c['id'][:8]} - {c['total_committed_quantity'] - c['delivered_quantity']} available",
            )
            items = st.data_editor(
                pd.DataFrame([{"name": "", "quantity": 0, "unit": ""}]),
                num_rows="dynamic", use_container_width=True, key="response_items",
            )
            description = st.text_area("Description")

            if st.form_submit_button("Plan response"):
                rows = [r for r in items.to_dict("records") if r.get("name")]
                data = {
                    "entity_id": assessment["entity_id"],
                    "assessment_id": assessment["id"],
                    "type": response_type,
                    "priority": priority,
                    "description": description,
                    "items": rows,
                    "commitment_id": commitment["id"] if commitment else None,
                }
                with ErrorContext("Plan response"):
                    result = ctx.responses.create_response(data)
                    if result.metadata["offline"]:
                        st.info("Saved on this device; it will be sent when the server is reachable")
                    else:
                        st.success("Response planned")

# =============================================================================
# DELIVERY
# =============================================================================
with tab_deliver:
    planned = registry.responses.list_responses(principal, status="PLANNED")
    if not planned:
        st.info("Nothing waiting for delivery confirmation.")
    for response in planned:
        with st.expander(f"{response['type']} - {response.get('description') or response['id'][:8]}"):
            st.dataframe(pd.DataFrame(response["items"]), hide_index=True, use_container_width=True)
            notes = st.text_input("Delivery notes", key=f"notes_{response['id']}")
            if st.button("Confirm delivered", key=f"deliver_{response['id']}"):
                with ErrorContext("Confirm delivery", show_success=True):
                    registry.responses.confirm_delivery(response["id"], response["items"], principal,
                                                        delivery_notes=notes or None)
                st.rerun()

# =============================================================================
# OVERVIEW
# =============================================================================
with tab_overview:
    responses = ctx.responses.get_responses() if ctx.client.is_authenticated \
        else registry.responses.list_responses(principal)
    metric_row({
        "Planned": sum(1 for r in responses if r.get("status") == "PLANNED"),
        "Delivered": sum(1 for r in responses if r.get("status") == "DELIVERED"),
        "Waiting to sync": sum(1 for r in responses if r.get("syncStatus") == "PENDING"),
    })
    if responses:
        df = pd.DataFrame(responses)
        st.plotly_chart(add_grid(responses_by_status(df)), use_container_width=True)
        for r in responses[:50]:
            st.markdown(
                f"{r.get('type')} at `{r.get('entity_id')}` {status_badge(r.get('status'))} "
                f"{status_badge(r.get('syncStatus')) if r.get('syncStatus') else ''}",
                unsafe_allow_html=True,
            )
