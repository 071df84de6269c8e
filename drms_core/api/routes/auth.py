"""Login, logout and profile endpoints."""

from __future__ import annotations
from typing import Annotated

from fastapi import APIRouter, Depends

from drms_core.api.deps import get_current_user, get_registry, get_token, ok
from drms_core.api.schemas import LoginRequest
from drms_core.auth.principal import Principal
from drms_core.services.registry import ServiceRegistry

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login")
def login(body: LoginRequest, registry: Annotated[ServiceRegistry, Depends(get_registry)]):
    principal = registry.users.authenticate(body.username, body.password)
    token = registry.tokens.issue(principal)
    return ok({
        "token": token,
        "tokenType": "bearer",
        "expiresIn": registry.tokens.ttl_seconds,
        "user": principal.to_dict(),
    })


@router.post("/logout")
def logout(
    token: Annotated[str, Depends(get_token)],
    registry: Annotated[ServiceRegistry, Depends(get_registry)],
):
    return ok({"revoked": registry.tokens.revoke(token)})


@router.get("/profile")
def profile(
    user: Annotated[Principal, Depends(get_current_user)],
    registry: Annotated[ServiceRegistry, Depends(get_registry)],
):
    data = registry.users.get_user(user.id)
    data["roles"] = list(user.roles)
    data["assignedEntities"] = registry.assignments.get_user_assigned_entities(user.id)
    return ok(data)
