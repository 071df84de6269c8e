"""Rapid assessment endpoints."""

from __future__ import annotations
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query

from drms_core.api.deps import get_current_user, get_registry, ok
from drms_core.api.schemas import AssessmentCreate, AssessmentUpdate, VerifyRequest
from drms_core.auth.principal import Principal
from drms_core.services.registry import ServiceRegistry

router = APIRouter(prefix="/rapid-assessments", tags=["assessments"])

Registry = Annotated[ServiceRegistry, Depends(get_registry)]
CurrentUser = Annotated[Principal, Depends(get_current_user)]


@router.get("")
def list_assessments(
    registry: Registry,
    user: CurrentUser,
    entity_id: Optional[str] = Query(None, alias="entityId"),
    type: Optional[str] = None,
    verification_status: Optional[str] = Query(None, alias="verificationStatus"),
    mine: bool = False,
):
    assessments = registry.assessments.list_assessments(
        user, entity_id=entity_id, assessment_type=type,
        verification_status=verification_status, mine=mine,
    )
    return ok(assessments, total=len(assessments))


@router.post("", status_code=201)
def create_assessment(body: AssessmentCreate, registry: Registry, user: CurrentUser):
    data = body.to_service()
    offline_id = data.pop("offline_id", None)
    return ok(registry.assessments.create_assessment(data, user, offline_id=offline_id))


@router.get("/stats")
def my_assessment_stats(registry: Registry, user: CurrentUser):
    return ok(registry.assignments.get_user_assessment_stats(user.id))


@router.get("/{assessment_id}")
def get_assessment(assessment_id: str, registry: Registry, user: CurrentUser):
    return ok(registry.assessments.get_assessment(assessment_id))


@router.put("/{assessment_id}")
def update_assessment(assessment_id: str, body: AssessmentUpdate, registry: Registry, user: CurrentUser):
    return ok(registry.assessments.update_assessment(assessment_id, body.to_service(), user))


@router.post("/{assessment_id}/submit")
def submit_assessment(assessment_id: str, registry: Registry, user: CurrentUser):
    return ok(registry.assessments.submit_assessment(assessment_id, user))


@router.post("/{assessment_id}/verify")
def verify_assessment(assessment_id: str, body: VerifyRequest, registry: Registry, user: CurrentUser):
    return ok(registry.assessments.verify_assessment(
        assessment_id, user, approve=body.approve, rejection_reason=body.rejection_reason,
    ))
