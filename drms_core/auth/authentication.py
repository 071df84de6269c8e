"""
Streamlit login for the coordination dashboards.

Credentials come from the users table (bcrypt hashes, as written by
UserService.create_user) and are handed to streamlit-authenticator, which
owns the login form and the session cookie. Once logged in, the user's
Principal is kept in st.session_state["principal"] so pages can call the
same services the REST API calls, with the same role checks.
"""

from typing import Optional

import streamlit as st
import streamlit_authenticator as stauth

from drms_core.auth.principal import Principal
from drms_core.logging import get_logger
from drms_core.state.session import AUTH_KEYS, get_registry, get_settings

logger = get_logger(__name__)

COOKIE_NAME = "drms_auth"


# ==================== AUTHENTICATOR SETUP ====================

def get_authenticator() -> stauth.Authenticate:
    registry = get_registry()
    return stauth.Authenticate(
        registry.users.login_credentials(),
        COOKIE_NAME,
        get_settings().secret_key,
        cookie_expiry_days=1,
    )


def login_form(location: str = "main") -> bool:
    """
    Render the login form and sync its outcome into session state.

    Returns:
        bool: True once the user is authenticated
    """
    authenticator = get_authenticator()
    authenticator.login(location=location)

    status = st.session_state.get("authentication_status")
    if status:
        if not check_authentication():
            _start_session(st.session_state["username"])
        return True
    if status is False:
        st.error("Username or password is incorrect")
    return False


def _start_session(username: str) -> None:
    principal = get_registry().users.principal_for_username(username)
    st.session_state.authenticated = True
    st.session_state.principal = principal
    st.session_state.username = principal.username
    st.session_state.name = principal.name
    st.session_state.email = principal.email
    st.session_state.role = principal.primary_role
    logger.info(f"Dashboard login: {principal.username} ({principal.primary_role})")


# ==================== HELPER FUNCTIONS ====================

def check_authentication() -> bool:
    return st.session_state.get("authenticated", False)


def get_principal() -> Optional[Principal]:
    if not check_authentication():
        return None
    return st.session_state.get("principal")


def get_user_role() -> Optional[str]:
    if not check_authentication():
        return None
    return st.session_state.get("role")


def logout_user():
    """Logout the current user and clear session state."""
    for key in AUTH_KEYS:
        if key in st.session_state:
            del st.session_state[key]


# ==================== PAGE PROTECTION ====================

def require_authentication(redirect_to_welcome: bool = True) -> Principal:
    """
    Stop the page unless someone is logged in.

    Args:
        redirect_to_welcome: If True, offer a button back to the login page
    """
    principal = get_principal()
    if principal is None:
        st.warning("Please log in to continue.")
        if redirect_to_welcome and st.button("Go to login"):
            st.switch_page("Welcome.py")
        st.stop()
    return principal


def require_role(*roles: str) -> Principal:
    """Stop the page unless the user holds one of `roles` (admins always pass)."""
    principal = require_authentication()
    if not principal.has_role(*roles, "ADMIN"):
        st.error(f"This page requires one of: {', '.join(roles)}")
        st.stop()
    return principal
