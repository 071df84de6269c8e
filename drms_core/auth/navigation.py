"""
Role-aware sidebar: user card, connection status, page links and logout.
Call render_sidebar() at the top of every page after require_authentication().
"""

import streamlit as st

from drms_core.auth.principal import Principal
from drms_core.errors.handlers import ErrorContext
from drms_core.state.session import clear_session, get_offline_context
from drms_core.ui.components import status_badge

# page path -> (label, icon, roles allowed; empty means everyone)
PAGES = [
    ("pages/01_Coordination.py", "Coordination", "🧭", ("COORDINATOR",)),
    ("pages/02_Assessments.py", "Assessments", "📋", ("ASSESSOR", "COORDINATOR")),
    ("pages/03_Responses.py", "Responses", "🚚", ("RESPONDER", "COORDINATOR")),
    ("pages/04_Donors.py", "Donors & Commitments", "🤝", ("DONOR", "COORDINATOR")),
    ("pages/05_Sync_Queue.py", "Sync Queue", "🔄", ()),
    ("pages/06_Conflicts.py", "Conflicts", "⚠️", ("COORDINATOR",)),
    ("pages/07_Reports.py", "Reports & Exports", "📊", ("COORDINATOR", "DONOR")),
    ("pages/08_Administration.py", "Administration", "🛠️", ("ADMIN",)),
]


def visible_pages(principal: Principal):
    return [
        (path, label, icon) for path, label, icon, roles in PAGES
        if not roles or principal.has_role(*roles, "ADMIN")
    ]


def api_session_form(ctx, principal: Principal):
    """Sign the device in to the REST API so sync and downloads can run."""
    with st.expander("Connect device to server"):
        with st.form("api_session"):
            password = st.text_input("Password", type="password")
            if st.form_submit_button("Connect"):
                with ErrorContext("Connect to server", show_success=True):
                    ctx.client.login(principal.username, password)
                    ctx.connection.check_connection()


def render_sidebar(principal: Principal):
    with st.sidebar:
        st.markdown("## 🚨 DRMS")
        st.markdown(f"**{principal.name or principal.username}**  \n{', '.join(principal.roles)}")

        ctx = get_offline_context()
        display = ctx.connection.get_status_display()
        label = "Forced offline" if display["forced_offline"] else display["status"].title()
        st.markdown(f"{label} &nbsp; {status_badge(display['status'].upper())}", unsafe_allow_html=True)
        pending = ctx.queue.count()
        if pending:
            st.caption(f"{pending} change(s) waiting to sync")
        if not ctx.client.is_authenticated:
            api_session_form(ctx, principal)

        st.divider()
        for path, label, icon in visible_pages(principal):
            st.page_link(path, label=label, icon=icon)

        st.divider()
        if st.button("Log out", use_container_width=True):
            from drms_core.auth.authentication import logout_user
            clear_session()
            logout_user()
            st.switch_page("Welcome.py")
