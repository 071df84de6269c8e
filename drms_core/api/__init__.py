# =============================================================================
# drms_core/api/__init__.py
# REST API (FastAPI)
# =============================================================================

from .app import create_app

__all__ = ["create_app"]
