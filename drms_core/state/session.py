# =============================================================================
# drms_core/state/session.py
# Session-State Keys and Per-Session Service Handles
# =============================================================================
"""
Every dashboard page calls init_state() first. The server-side
ServiceRegistry and the field-device OfflineContext are built lazily, once
per browser session, and kept in st.session_state so pages never reach for
module-level singletons.
"""

import streamlit as st

from drms_core.config import Settings, load_settings
from drms_core.logging import get_logger, setup_logging
from drms_core.offline import OfflineContext
from drms_core.services.registry import ServiceRegistry

logger = get_logger(__name__)

# Central registry for session-state keys used across the app.
SESSION_DEFAULTS = {
    "authenticated": False,
    "username": None,
    "name": None,
    "role": None,
    "principal": None,
    "debug_mode": False,
    "offline_mode": False,
    "last_sync_result": None,
    "last_report": None,
    "_nav_intent": None,
}

AUTH_KEYS = ["authenticated", "username", "name", "role", "email", "authentication_status", "principal"]


def init_state():
    for k, v in SESSION_DEFAULTS.items():
        if k not in st.session_state:
            st.session_state[k] = v


def get_settings() -> Settings:
    if "_settings" not in st.session_state:
        settings = load_settings()
        setup_logging(level=settings.log_level, log_to_file=settings.log_to_file, log_filename="drms_dashboard.log")
        st.session_state["_settings"] = settings
    return st.session_state["_settings"]


def get_registry() -> ServiceRegistry:
    """Server-side services over the shared database."""
    if "_registry" not in st.session_state:
        registry = ServiceRegistry(get_settings())
        registry.initialize()
        st.session_state["_registry"] = registry
    return st.session_state["_registry"]


def get_offline_context() -> OfflineContext:
    """Field-device offline graph: local store, sync queue and engine."""
    if "_offline_ctx" not in st.session_state:
        ctx = OfflineContext(get_settings())
        ctx.initialize()
        st.session_state["_offline_ctx"] = ctx
    return st.session_state["_offline_ctx"]


def clear_session():
    """Close session services and reset everything except the login."""
    ctx = st.session_state.pop("_offline_ctx", None)
    if ctx is not None:
        ctx.close()
    st.session_state.pop("_registry", None)

    for key in list(st.session_state.keys()):
        if key not in AUTH_KEYS:
            del st.session_state[key]

    for k, v in SESSION_DEFAULTS.items():
        st.session_state.setdefault(k, v)
    logger.info("Session state cleared")
