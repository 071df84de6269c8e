# =============================================================================
# pages/02_Assessments.py - Rapid Assessments
# Field form that works offline, plus the assessor's own history.
# =============================================================================
from __future__ import annotations

import pandas as pd
import streamlit as st

from drms_core.auth.authentication import require_role
from drms_core.auth.navigation import render_sidebar
from drms_core.errors.handlers import ErrorContext
from drms_core.exports.charts import assessments_by_type
from drms_core.models.enums import AssessmentType, Priority, SyncAction, SyncEntityType, SyncStatus
from drms_core.models.records import format_timestamp, utcnow
from drms_core.state.session import get_offline_context, get_registry, init_state
from drms_core.ui.components import add_grid, header, metric_row
from drms_core.ui.theme import apply_css

st.set_page_config(page_title="Assessments - DRMS", page_icon="📋", layout="wide")
init_state()
apply_css()

principal = require_role("ASSESSOR", "COORDINATOR")
render_sidebar(principal)
registry = get_registry()
ctx = get_offline_context()

header("Rapid Assessments", "Record needs at your assigned entities, even without a connection", "📋")

entities = registry.assignments.filter_entities_by_assignment(principal, registry.entities.list_entities())
if not entities:
    # Fall back to what the device cached during the offline download
    entities = [r.data for r in ctx.store.list_records("entities")]
incidents = registry.incidents.list_incidents(status="ACTIVE")

tab_new, tab_mine = st.tabs(["📝 New assessment", "📚 My assessments"])

# =============================================================================
# NEW ASSESSMENT
# =============================================================================
with tab_new:
    if not entities:
        st.warning("You are not assigned to any entity yet. Ask a coordinator for an assignment.")
    else:
        with st.form("assessment_form", clear_on_submit=True):
            entity = st.selectbox("Entity", entities, format_func=lambda e: f"{e['name']} ({e['type']})")
            incident = st.selectbox(
                "Incident", [None] + incidents,
                format_func=lambda i: "None" if i is None else f"{i['type']} at {i['location']}",
            )
            c1, c2 = st.columns(2)
            with c1:
                assessment_type = st.selectbox("Assessment type", [t.value for t in AssessmentType])
            with c2:
                priority = st.selectbox("Priority", [p.value for p in Priority], index=2)

            st.markdown("#### Findings")
            affected = st.number_input("People affected", min_value=0, step=1)
            urgent_needs = st.text_area("Urgent needs")
            notes = st.text_area("Notes")

            if st.form_submit_button("Save assessment"):
                record = {
                    "entity_id": entity["id"],
                    "incident_id": incident["id"] if incident else None,
                    "rapid_assessment_type": assessment_type,
                    "rapid_assessment_date": format_timestamp(utcnow()),
                    "assessor_name": principal.name or principal.username,
                    "location": entity.get("location") or entity["name"],
                    "priority": priority,
                    "status": "SUBMITTED",
                    "assessment_data": {
                        "peopleAffected": int(affected),
                        "urgentNeeds": urgent_needs,
                        "notes": notes,
                    },
                }
                with ErrorContext("Save assessment"):
                    item = ctx.stage_change(SyncEntityType.ASSESSMENT.value, SyncAction.CREATE.value, record)
                    result = ctx.sync_engine.sync_now()
                    if result is not None and ctx.queue.get_item(item.id) is None:
                        st.success("Assessment saved and synced")
                    else:
                        st.info("Assessment saved on this device; it will sync when the server is reachable")

# =============================================================================
# HISTORY
# =============================================================================
with tab_mine:
    synced = registry.assessments.list_assessments(principal, mine=True)
    local = [
        r.to_dict() for r in ctx.store.list_records("assessments")
        if r.sync_status != SyncStatus.SYNCED.value
    ]
    metric_row({
        "Synced": len(synced),
        "On this device": len(local),
        "Verified": sum(1 for a in synced if a["verification_status"] in ("VERIFIED", "AUTO_VERIFIED")),
    })

    if synced:
        df = pd.DataFrame(synced)
        st.plotly_chart(add_grid(assessments_by_type(df)), use_container_width=True)
        st.dataframe(
            df[["rapid_assessment_type", "location", "priority", "verification_status", "rapid_assessment_date"]],
            hide_index=True, use_container_width=True,
        )
    if local:
        st.markdown("#### Waiting to sync")
        st.dataframe(
            pd.DataFrame(local)[["id", "rapid_assessment_type", "priority", "syncStatus"]],
            hide_index=True, use_container_width=True,
        )
