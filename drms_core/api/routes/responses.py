"""Response planning and delivery endpoints."""

from __future__ import annotations
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query

from drms_core.api.deps import get_current_user, get_registry, ok
from drms_core.api.schemas import DeliveryConfirm, ResponseCreate
from drms_core.auth.principal import Principal
from drms_core.services.registry import ServiceRegistry

router = APIRouter(prefix="/responses", tags=["responses"])

Registry = Annotated[ServiceRegistry, Depends(get_registry)]
CurrentUser = Annotated[Principal, Depends(get_current_user)]


@router.get("")
def list_responses(
    registry: Registry,
    user: CurrentUser,
    entity_id: Optional[str] = Query(None, alias="entityId"),
    status: Optional[str] = None,
    assessment_id: Optional[str] = Query(None, alias="assessmentId"),
):
    responses = registry.responses.list_responses(
        user, entity_id=entity_id, status=status, assessment_id=assessment_id,
    )
    return ok(responses, total=len(responses))


@router.post("", status_code=201)
def create_response(body: ResponseCreate, registry: Registry, user: CurrentUser):
    data = body.to_service()
    offline_id = data.pop("offline_id", None)
    return ok(registry.responses.create_response(data, user, offline_id=offline_id))


@router.get("/{response_id}")
def get_response(response_id: str, registry: Registry, user: CurrentUser):
    return ok(registry.responses.get_response(response_id, user))


@router.post("/{response_id}/deliver")
def confirm_delivery(response_id: str, body: DeliveryConfirm, registry: Registry, user: CurrentUser):
    return ok(registry.responses.confirm_delivery(
        response_id, body.delivered_items, user, delivery_notes=body.delivery_notes,
    ))
