# =============================================================================
# drms_core/auth/__init__.py
# Authentication and Role Gating
# =============================================================================
#
# Streamlit session helpers live in drms_core.auth.authentication and are
# imported directly by the dashboard pages so the API process never loads
# Streamlit.

from .passwords import hash_password, verify_password
from .principal import Principal, PRIVILEGED_ROLES
from .tokens import TokenStore

__all__ = [
    "hash_password",
    "verify_password",
    "Principal",
    "PRIVILEGED_ROLES",
    "TokenStore",
]
