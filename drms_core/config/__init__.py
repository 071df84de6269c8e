# =============================================================================
# drms_core/config/__init__.py
# Application Settings
# =============================================================================

from .settings import Settings, load_settings

__all__ = ["Settings", "load_settings"]
