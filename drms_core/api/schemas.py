# =============================================================================
# drms_core/api/schemas.py
# Request Bodies for the REST API
# =============================================================================
"""
Request models accept camelCase (wire) or snake_case field names and
dump to snake_case for the service layer.

Sync batch and resolve payloads are passed through as dicts; the sync
service validates each change itself so that per-change errors carry
the exact messages clients key on.
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_service(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


# =============================================================================
# AUTH
# =============================================================================

class LoginRequest(ApiModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


# =============================================================================
# ENTITIES / INCIDENTS
# =============================================================================

class EntityCreate(ApiModel):
    id: Optional[str] = None
    name: str = Field(min_length=1)
    type: str
    location: Optional[str] = None
    coordinates: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    auto_approve_enabled: bool = False


class EntityUpdate(ApiModel):
    name: Optional[str] = None
    type: Optional[str] = None
    location: Optional[str] = None
    coordinates: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None
    auto_approve_enabled: Optional[bool] = None


class AssignmentCreate(ApiModel):
    user_id: str
    entity_id: str


class IncidentCreate(ApiModel):
    id: Optional[str] = None
    type: str
    sub_type: Optional[str] = None
    severity: str = "MEDIUM"
    status: str = "ACTIVE"
    description: str
    location: str
    coordinates: Optional[Dict[str, Any]] = None


class IncidentStatusUpdate(ApiModel):
    status: str


# =============================================================================
# ASSESSMENTS
# =============================================================================

class AssessmentCreate(ApiModel):
    id: Optional[str] = None
    entity_id: str
    rapid_assessment_type: str
    rapid_assessment_date: Optional[str] = None
    incident_id: Optional[str] = None
    assessor_name: Optional[str] = None
    location: Optional[str] = None
    coordinates: Optional[Dict[str, Any]] = None
    priority: Optional[str] = None
    status: Optional[str] = None
    assessment_data: Dict[str, Any] = Field(default_factory=dict)
    offline_id: Optional[str] = None


class AssessmentUpdate(ApiModel):
    rapid_assessment_date: Optional[str] = None
    location: Optional[str] = None
    coordinates: Optional[Dict[str, Any]] = None
    priority: Optional[str] = None
    assessment_data: Optional[Dict[str, Any]] = None
    incident_id: Optional[str] = None


class VerifyRequest(ApiModel):
    approve: bool = True
    rejection_reason: Optional[str] = None


# =============================================================================
# RESPONSES / DONORS / COMMITMENTS
# =============================================================================

class ResponseCreate(ApiModel):
    id: Optional[str] = None
    entity_id: str
    assessment_id: str
    type: str
    priority: Optional[str] = None
    description: Optional[str] = None
    items: List[Dict[str, Any]] = Field(default_factory=list)
    planned_date: Optional[str] = None
    donor_id: Optional[str] = None
    commitment_id: Optional[str] = None
    offline_id: Optional[str] = None


class DeliveryConfirm(ApiModel):
    delivered_items: List[Dict[str, Any]] = Field(default_factory=list)
    delivery_notes: Optional[str] = None


class DonorCreate(ApiModel):
    name: str = Field(min_length=1)
    type: str = "ORGANIZATION"
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    organization: Optional[str] = None
    user_id: Optional[str] = None


class CommitmentCreate(ApiModel):
    donor_id: str
    entity_id: str
    incident_id: str
    items: List[Dict[str, Any]] = Field(default_factory=list)
    total_committed_quantity: Optional[float] = None
    commitment_date: Optional[str] = None
    notes: Optional[str] = None


class CommitmentUse(ApiModel):
    items: List[Dict[str, Any]] = Field(min_length=1)


# =============================================================================
# SYNC
# =============================================================================

class SyncBatchRequest(BaseModel):
    changes: List[Dict[str, Any]]


# =============================================================================
# REPORTS
# =============================================================================

class ReportGenerateRequest(ApiModel):
    template_id: Optional[str] = None
    template: Optional[Dict[str, Any]] = None
    filters: Dict[str, Any] = Field(default_factory=dict)
    format: str = Field(default="json", pattern="^(json|html|pdf)$")
