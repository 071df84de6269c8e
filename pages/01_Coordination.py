# =============================================================================
# pages/01_Coordination.py - Coordinator Dashboard
# Incidents, the assessment verification queue and entity coverage.
# =============================================================================
from __future__ import annotations

import pandas as pd
import streamlit as st

from drms_core.auth.authentication import require_role
from drms_core.auth.navigation import render_sidebar
from drms_core.errors.handlers import ErrorContext
from drms_core.exports.charts import incidents_by_severity
from drms_core.models.enums import IncidentStatus, Priority
from drms_core.state.session import get_registry, init_state
from drms_core.ui.components import add_grid, header, metric_row, status_badge
from drms_core.ui.theme import apply_css

st.set_page_config(page_title="Coordination - DRMS", page_icon="🧭", layout="wide")
init_state()
apply_css()

principal = require_role("COORDINATOR")
render_sidebar(principal)
registry = get_registry()

header("Coordination", "Incidents, verification queue and entity coverage", "🧭")

pending = registry.assessments.list_assessments(principal, verification_status="SUBMITTED")
incidents = registry.incidents.list_incidents()
metric_row({
    "Awaiting verification": len(pending),
    "Active incidents": sum(1 for i in incidents if i["status"] == IncidentStatus.ACTIVE.value),
    "Entities": len(registry.entities.list_entities()),
    "Planned responses": len(registry.responses.list_responses(principal, status="PLANNED")),
})

tab_verify, tab_incidents = st.tabs(["✅ Verification queue", "🔥 Incidents"])

# =============================================================================
# VERIFICATION QUEUE
# =============================================================================
with tab_verify:
    if not pending:
        st.success("No assessments are waiting for verification.")
    for assessment in pending:
        title = (f"{assessment['rapid_assessment_type']} at {assessment.get('location') or assessment['entity_id']}"
                 f" - {assessment['priority']}")
        with st.expander(title):
            st.caption(f"By {assessment['assessor_name']} on {assessment['rapid_assessment_date']}")
            st.json(assessment.get("assessment_data") or {})
            reason = st.text_input("Rejection reason", key=f"reason_{assessment['id']}")
            c1, c2 = st.columns(2)
            with c1:
                if st.button("Verify", key=f"verify_{assessment['id']}", use_container_width=True):
                    with ErrorContext("Verify assessment", show_success=True):
                        registry.assessments.verify_assessment(assessment["id"], principal, approve=True)
                    st.rerun()
            with c2:
                if st.button("Reject", key=f"reject_{assessment['id']}", use_container_width=True):
                    with ErrorContext("Reject assessment", show_success=True):
                        registry.assessments.verify_assessment(
                            assessment["id"], principal, approve=False, rejection_reason=reason or None,
                        )
                    st.rerun()

# =============================================================================
# INCIDENTS
# =============================================================================
with tab_incidents:
    if incidents:
        df = pd.DataFrame(incidents)
        st.plotly_chart(add_grid(incidents_by_severity(df)), use_container_width=True)
        for incident in incidents:
            c1, c2, c3 = st.columns([3, 1, 1])
            with c1:
                st.markdown(
                    f"**{incident['type']}** at {incident['location']} ({incident['severity']}) {status_badge(incident['status'])}",
                    unsafe_allow_html=True,
                )
            with c2:
                options = [s.value for s in IncidentStatus]
                new_status = st.selectbox(
                    "Status", options, index=options.index(incident["status"]),
                    key=f"status_{incident['id']}", label_visibility="collapsed",
                )
            with c3:
                if new_status != incident["status"] and st.button("Update", key=f"upd_{incident['id']}"):
                    with ErrorContext("Update incident status"):
                        registry.incidents.update_status(incident["id"], new_status, principal)
                    st.rerun()
    else:
        st.info("No incidents recorded yet.")

    st.markdown("### Declare an incident")
    with st.form("new_incident", clear_on_submit=True):
        incident_type = st.text_input("Type", placeholder="FLOOD, FIRE, EPIDEMIC...")
        location = st.text_input("Location")
        severity = st.selectbox("Severity", [p.value for p in Priority])
        description = st.text_area("Description")
        if st.form_submit_button("Create incident"):
            with ErrorContext("Create incident", show_success=True):
                registry.incidents.create_incident(
                    {"type": incident_type, "location": location, "severity": severity, "description": description},
                    principal,
                )
