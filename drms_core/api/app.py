"""FastAPI application factory for the disaster response REST API."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from drms_core import __version__
from drms_core.api.routes import ALL_ROUTERS
from drms_core.config import Settings, load_settings
from drms_core.data.database import Database
from drms_core.errors import DRMSError, RateLimitError
from drms_core.logging import get_logger
from drms_core.services.registry import ServiceRegistry

logger = get_logger(__name__)

API_PREFIX = "/api/v1"
_INSECURE_DEFAULT = "change-me-in-production"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Close the database connection on shutdown."""
    yield
    app.state.registry.close()
    logger.info("Service registry closed")


async def drms_error_handler(request: Request, exc: DRMSError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.warning(f"{request.method} {request.url.path} -> {exc.http_status}: {exc.message}")

    headers = None
    if isinstance(exc, RateLimitError) and "retry_after" in exc.details:
        headers = {"Retry-After": str(exc.details["retry_after"])}
    return JSONResponse(
        status_code=exc.http_status,
        content={"success": False, "error": exc.message, "code": exc.code, **exc.details},
        headers=headers,
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()]
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Invalid request format", "code": "DATA_001", "errors": errors},
    )


def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Runtime settings (loaded from drms.toml / env when omitted)
        database: Existing Database to serve (tests pass a temporary one)
    """
    settings = settings or load_settings()
    if settings.secret_key == _INSECURE_DEFAULT:
        logger.warning("Using insecure default secret_key; set DRMS_SECRET_KEY in production")

    registry = ServiceRegistry(settings, db=database)
    registry.initialize()

    app = FastAPI(
        title="Disaster Response Management API",
        version=__version__,
        docs_url="/api/docs",
        redoc_url=None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.registry = registry

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.extra.get("allowed_origins", ["*"]),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(DRMSError, drms_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    for router in ALL_ROUTERS:
        app.include_router(router, prefix=API_PREFIX)

    @app.get(f"{API_PREFIX}/health", tags=["health"])
    def health():
        return {"success": True, "data": {"status": "ok", "version": __version__}}

    logger.info(f"API ready with {len(ALL_ROUTERS)} routers under {API_PREFIX}")
    return app
