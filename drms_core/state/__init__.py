# =============================================================================
# drms_core/state/__init__.py
# Streamlit Session State
# =============================================================================
