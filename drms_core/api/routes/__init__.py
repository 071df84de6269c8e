# =============================================================================
# drms_core/api/routes/__init__.py
# One APIRouter per resource, mounted under /api/v1
# =============================================================================

from .auth import router as auth_router
from .entities import router as entities_router
from .assessments import router as assessments_router
from .responses import router as responses_router
from .donors import router as donors_router
from .sync import router as sync_router
from .reports import router as reports_router
from .exports import router as exports_router

ALL_ROUTERS = [
    auth_router,
    entities_router,
    assessments_router,
    responses_router,
    donors_router,
    sync_router,
    reports_router,
    exports_router,
]

__all__ = ["ALL_ROUTERS"]
