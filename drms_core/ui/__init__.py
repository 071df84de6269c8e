# =============================================================================
# drms_core/ui/__init__.py
# Streamlit Look and Feel
# =============================================================================
