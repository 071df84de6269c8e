# =============================================================================
# pages/08_Administration.py - Administration
# User accounts, affected entities and field assignments.
# =============================================================================
from __future__ import annotations

import pandas as pd
import streamlit as st

from drms_core.auth.authentication import require_role
from drms_core.auth.navigation import render_sidebar
from drms_core.errors.handlers import ErrorContext
from drms_core.models.enums import EntityType, RoleName
from drms_core.state.session import get_registry, init_state
from drms_core.ui.components import header, metric_row
from drms_core.ui.theme import apply_css

st.set_page_config(page_title="Administration - DRMS", page_icon="🛠️", layout="wide")
init_state()
apply_css()

principal = require_role("ADMIN")
render_sidebar(principal)
registry = get_registry()

header("Administration", "Accounts, entities and who works where", "🛠️")

users = registry.users.list_users()
entities = registry.entities.list_entities(active_only=False)
assignments = registry.assignments.list_assignments()
metric_row({"Users": len(users), "Entities": len(entities), "Assignments": len(assignments)})

tab_users, tab_entities, tab_assign = st.tabs(["👤 Users", "📍 Entities", "🔗 Assignments"])

# =============================================================================
# USERS
# =============================================================================
with tab_users:
    if users:
        df = pd.DataFrame(users)
        df["roles"] = df["roles"].map(", ".join)
        st.dataframe(df[["username", "name", "email", "roles", "is_active", "last_login"]],
                     hide_index=True, use_container_width=True)

    with st.form("user_form", clear_on_submit=True):
        c1, c2 = st.columns(2)
        with c1:
            name = st.text_input("Full name")
            username = st.text_input("Username")
            organization = st.text_input("Organization")
        with c2:
            email = st.text_input("Email")
            password = st.text_input("Initial password", type="password")
            roles = st.multiselect("Roles", [r.value for r in RoleName])
        if st.form_submit_button("Create user"):
            with ErrorContext("Create user", show_success=True):
                registry.users.create_user(email, username, password, name, roles=roles,
                                           organization=organization or None)

# =============================================================================
# ENTITIES
# =============================================================================
with tab_entities:
    if entities:
        st.dataframe(pd.DataFrame(entities)[["name", "type", "location", "is_active", "auto_approve_enabled"]],
                     hide_index=True, use_container_width=True)

    with st.form("entity_form", clear_on_submit=True):
        name = st.text_input("Entity name")
        entity_type = st.selectbox("Type", [t.value for t in EntityType])
        location = st.text_input("Location")
        c1, c2 = st.columns(2)
        with c1:
            lat = st.number_input("Latitude", value=0.0, format="%.5f")
        with c2:
            lng = st.number_input("Longitude", value=0.0, format="%.5f")
        auto_approve = st.checkbox("Auto-approve submitted assessments")
        if st.form_submit_button("Create entity"):
            data = {"name": name, "type": entity_type, "location": location,
                    "auto_approve_enabled": auto_approve}
            if lat or lng:
                data["coordinates"] = {"latitude": lat, "longitude": lng}
            with ErrorContext("Create entity", show_success=True):
                registry.entities.create_entity(data, principal)

    active = [e for e in entities if e["is_active"]]
    if active:
        target = st.selectbox("Deactivate entity", active, format_func=lambda e: e["name"])
        if st.button("Deactivate"):
            with ErrorContext("Deactivate entity", show_success=True):
                registry.entities.deactivate_entity(target["id"], principal)
            st.rerun()

# =============================================================================
# ASSIGNMENTS
# =============================================================================
with tab_assign:
    if assignments:
        st.dataframe(pd.DataFrame(assignments)[["user_name", "entity_name", "entity_type", "created_at"]],
                     hide_index=True, use_container_width=True)

    field_users = [u for u in users if set(u["roles"]) & {"ASSESSOR", "RESPONDER"}]
    active = [e for e in entities if e["is_active"]]
    if field_users and active:
        with st.form("assign_form"):
            user = st.selectbox("User", field_users, format_func=lambda u: f"{u['name']} ({', '.join(u['roles'])})")
            entity = st.selectbox("Entity", active, format_func=lambda e: e["name"])
            if st.form_submit_button("Assign"):
                with ErrorContext("Assign user", show_success=True):
                    registry.assignments.assign(user["id"], entity["id"], principal)
    else:
        st.info("Assignments need at least one assessor or responder and one active entity.")

    if assignments:
        target = st.selectbox("Remove assignment", assignments,
                              format_func=lambda a: f"{a['user_name']} → {a['entity_name']}")
        if st.button("Remove"):
            with ErrorContext("Remove assignment", show_success=True):
                registry.assignments.unassign(target["id"], principal)
            st.rerun()
