"""Donors and donor commitments."""

from __future__ import annotations
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query

from drms_core.api.deps import get_current_user, get_registry, ok
from drms_core.api.schemas import CommitmentCreate, CommitmentUse, DonorCreate
from drms_core.auth.principal import Principal
from drms_core.services.registry import ServiceRegistry

router = APIRouter(tags=["donors"])

Registry = Annotated[ServiceRegistry, Depends(get_registry)]
CurrentUser = Annotated[Principal, Depends(get_current_user)]


@router.get("/donors")
def list_donors(
    registry: Registry,
    user: CurrentUser,
    include_inactive: bool = Query(False, alias="includeInactive"),
):
    return ok(registry.commitments.list_donors(active_only=not include_inactive))


@router.post("/donors", status_code=201)
def create_donor(body: DonorCreate, registry: Registry, user: CurrentUser):
    return ok(registry.commitments.create_donor(body.to_service(), user))


@router.get("/commitments")
def list_commitments(
    registry: Registry,
    user: CurrentUser,
    donor_id: Optional[str] = Query(None, alias="donorId"),
    entity_id: Optional[str] = Query(None, alias="entityId"),
    incident_id: Optional[str] = Query(None, alias="incidentId"),
    status: Optional[str] = None,
    available: bool = False,
):
    if available:
        return ok(registry.commitments.get_available_commitments(user, entity_id))
    return ok(registry.commitments.list_commitments(
        donor_id=donor_id, entity_id=entity_id, incident_id=incident_id, status=status,
    ))


@router.post("/commitments", status_code=201)
def create_commitment(body: CommitmentCreate, registry: Registry, user: CurrentUser):
    return ok(registry.commitments.create_commitment(body.to_service(), user))


@router.get("/commitments/stats")
def commitment_stats(
    registry: Registry,
    user: CurrentUser,
    donor_id: Optional[str] = Query(None, alias="donorId"),
    entity_id: Optional[str] = Query(None, alias="entityId"),
    incident_id: Optional[str] = Query(None, alias="incidentId"),
):
    return ok(registry.commitments.get_commitment_stats(
        donor_id=donor_id, entity_id=entity_id, incident_id=incident_id,
    ))


@router.post("/commitments/{commitment_id}/use")
def use_commitment(commitment_id: str, body: CommitmentUse, registry: Registry, user: CurrentUser):
    return ok(registry.commitments.use_commitment(commitment_id, body.items, user))


@router.post("/commitments/{commitment_id}/cancel")
def cancel_commitment(commitment_id: str, registry: Registry, user: CurrentUser):
    return ok(registry.commitments.cancel_commitment(commitment_id, user))
