# =============================================================================
# drms_core/api/deps.py
# FastAPI Dependencies: registry, bearer auth, role gates
# =============================================================================

from __future__ import annotations
from typing import Any, Callable, Optional

from fastapi import Depends, Header, Request

from drms_core.auth.principal import Principal
from drms_core.errors import AuthenticationError, AuthorizationError
from drms_core.services.registry import ServiceRegistry


def get_registry(request: Request) -> ServiceRegistry:
    return request.app.state.registry


def get_token(authorization: Optional[str] = Header(None)) -> str:
    if not authorization:
        raise AuthenticationError("Missing authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise AuthenticationError("Invalid authentication scheme")
    return token


def get_current_user(
    token: str = Depends(get_token),
    registry: ServiceRegistry = Depends(get_registry),
) -> Principal:
    return registry.tokens.resolve(token)


def require_role(*roles: str) -> Callable[..., Principal]:
    """Dependency factory: the caller must hold at least one of `roles`."""

    def checker(user: Principal = Depends(get_current_user)) -> Principal:
        if not user.has_role(*roles):
            raise AuthorizationError(
                f"Requires one of roles: {', '.join(roles)}",
                required_roles=list(roles),
            )
        return user

    return checker


def ok(data: Any = None, **extra: Any) -> dict:
    """Success envelope."""
    return {"success": True, "data": data, **extra}
