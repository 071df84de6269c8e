"""Entities, entity assignments and incidents."""

from __future__ import annotations
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query

from drms_core.api.deps import get_current_user, get_registry, ok, require_role
from drms_core.api.schemas import (
    AssignmentCreate,
    EntityCreate,
    EntityUpdate,
    IncidentCreate,
    IncidentStatusUpdate,
)
from drms_core.auth.principal import Principal
from drms_core.services.registry import ServiceRegistry

router = APIRouter(tags=["entities"])

PRIVILEGED = ("COORDINATOR", "ADMIN")
Registry = Annotated[ServiceRegistry, Depends(get_registry)]
CurrentUser = Annotated[Principal, Depends(get_current_user)]
Privileged = Annotated[Principal, Depends(require_role(*PRIVILEGED))]


# =============================================================================
# ENTITIES
# =============================================================================

@router.get("/entities")
def list_entities(
    registry: Registry,
    user: CurrentUser,
    type: Optional[str] = None,
    include_inactive: bool = Query(False, alias="includeInactive"),
):
    ids = None
    if not user.is_privileged and user.has_role("ASSESSOR", "RESPONDER"):
        ids = registry.assignments.get_assigned_entity_ids(user.id)
    entities = registry.entities.list_entities(type, active_only=not include_inactive, ids=ids)
    return ok(entities, total=len(entities))


@router.post("/entities", status_code=201)
def create_entity(body: EntityCreate, registry: Registry, user: Privileged):
    return ok(registry.entities.create_entity(body.to_service(), user))


@router.get("/entities/{entity_id}")
def get_entity(entity_id: str, registry: Registry, user: CurrentUser):
    entity = registry.entities.get_entity(entity_id)
    entity["assignedUsers"] = registry.assignments.get_entity_assigned_users(entity_id)
    return ok(entity)


@router.put("/entities/{entity_id}")
def update_entity(entity_id: str, body: EntityUpdate, registry: Registry, user: Privileged):
    return ok(registry.entities.update_entity(entity_id, body.to_service(), user))


# =============================================================================
# ENTITY ASSIGNMENTS
# =============================================================================

@router.get("/entity-assignments")
def list_assignments(
    registry: Registry,
    user: CurrentUser,
    user_id: Optional[str] = Query(None, alias="userId"),
    entity_id: Optional[str] = Query(None, alias="entityId"),
):
    # Non-privileged callers only see their own assignments
    if not user.is_privileged:
        user_id = user.id
    return ok(registry.assignments.list_assignments(user_id=user_id, entity_id=entity_id))


@router.post("/entity-assignments", status_code=201)
def create_assignment(body: AssignmentCreate, registry: Registry, user: Privileged):
    return ok(registry.assignments.assign(body.user_id, body.entity_id, user))


@router.delete("/entity-assignments/{assignment_id}")
def delete_assignment(assignment_id: str, registry: Registry, user: Privileged):
    registry.assignments.unassign(assignment_id, user)
    return ok({"id": assignment_id})


# =============================================================================
# INCIDENTS
# =============================================================================

@router.get("/incidents")
def list_incidents(registry: Registry, user: CurrentUser, status: Optional[str] = None):
    return ok(registry.incidents.list_incidents(status))


@router.post("/incidents", status_code=201)
def create_incident(body: IncidentCreate, registry: Registry, user: Privileged):
    return ok(registry.incidents.create_incident(body.to_service(), user))


@router.get("/incidents/{incident_id}")
def get_incident(incident_id: str, registry: Registry, user: CurrentUser):
    return ok(registry.incidents.get_incident(incident_id))


@router.patch("/incidents/{incident_id}/status")
def update_incident_status(incident_id: str, body: IncidentStatusUpdate, registry: Registry, user: Privileged):
    return ok(registry.incidents.update_status(incident_id, body.status, user))
