# =============================================================================
# drms_core/exports/__init__.py
# CSV, PDF and Chart Exports
# =============================================================================
