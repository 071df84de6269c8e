from __future__ import annotations
import streamlit as st

from drms_core.auth.authentication import check_authentication, get_principal, login_form
from drms_core.auth.navigation import render_sidebar, visible_pages
from drms_core.errors.handlers import ErrorContext
from drms_core.state.session import get_offline_context, get_registry, init_state
from drms_core.ui.components import header, metric_row
from drms_core.ui.theme import apply_css

# ============================================================================
# PAGE CONFIGURATION
# ============================================================================
st.set_page_config(
    page_title="DRMS - Disaster Response",
    page_icon="🚨",
    layout="wide",
)

init_state()
apply_css()

header(
    "Disaster Response Coordination",
    "Rapid assessments, response planning and donor commitments, online or offline",
)

registry = get_registry()

# ============================================================================
# FIRST RUN - no accounts yet
# ============================================================================
if not registry.users.list_users():
    st.info("No accounts exist yet. Create the first administrator.")
    with st.form("first_admin"):
        name = st.text_input("Full name")
        username = st.text_input("Username")
        email = st.text_input("Email")
        password = st.text_input("Password", type="password")
        if st.form_submit_button("Create administrator"):
            with ErrorContext("Create administrator", show_success=True, success_message="Administrator created, please log in"):
                registry.users.create_user(email, username, password, name, roles=["ADMIN", "COORDINATOR"])
    st.stop()

# ============================================================================
# LOGIN
# ============================================================================
if not check_authentication():
    col1, col2, col3 = st.columns([1, 2, 1])
    with col2:
        login_form()
    if not check_authentication():
        st.stop()
    st.rerun()

principal = get_principal()
render_sidebar(principal)

# ============================================================================
# OVERVIEW
# ============================================================================
st.markdown(f"### Welcome, {principal.name or principal.username}")

incidents = registry.incidents.list_incidents(status="ACTIVE")
entities = registry.assignments.filter_entities_by_assignment(principal, registry.entities.list_entities())
metric_row({
    "Active incidents": len(incidents),
    "Entities": len(entities),
    "Open conflicts": registry.conflicts.get_summary()["unresolvedConflicts"],
})

st.markdown("### Where to next")
pages = visible_pages(principal)
for col, (path, label, icon) in zip(st.columns(len(pages)), pages):
    with col:
        st.page_link(path, label=label, icon=icon)

# ============================================================================
# OFFLINE READINESS
# ============================================================================
st.markdown("### Offline readiness")
ctx = get_offline_context()
status = ctx.bootstrap.get_bootstrap_status()
info = ctx.store.get_storage_info()

c1, c2 = st.columns([2, 1])
with c1:
    st.caption(f"Last download: {status['last_bootstrap'] or 'never'} "
               f"({status['role'] or 'no role'})")
    st.caption(f"Local store: {info['path']} - key v{info['key_version']}")
    st.dataframe(
        [{"table": table, "records": count} for table, count in info["tables"].items()],
        hide_index=True,
        use_container_width=True,
    )
with c2:
    if st.button("Download data for offline use", use_container_width=True, disabled=status["is_bootstrapping"]):
        bar = st.progress(0, text="Starting...")

        def _progress(update):
            bar.progress(update.progress, text=update.message)

        with ErrorContext("Offline download"):
            role = principal.primary_role
            if ctx.bootstrap.refresh_offline_data(role, on_progress=_progress):
                st.success("Offline data ready")
            else:
                st.warning("Could not download data: the server is unreachable and nothing is cached")
