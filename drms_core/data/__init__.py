# =============================================================================
# drms_core/data/__init__.py
# Server-Side Relational Store
# =============================================================================

from .database import Database

__all__ = ["Database"]
