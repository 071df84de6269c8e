# =============================================================================
# drms_core/services/assessment_service.py
# Rapid Assessments
# =============================================================================
"""
AssessmentService - rapid assessment lifecycle on the coordination server.

Lifecycle:
    DRAFT -> SUBMITTED -> VERIFIED | REJECTED
    (entities with auto-approve go straight to AUTO_VERIFIED on submit)

Rules:
- The assessor must be assigned to the entity
- Only the owning assessor may update, delete or submit
- Every update bumps version_number
- Only coordinators (or admins) verify
- An offline_id is accepted once; a replay raises DuplicateRecordError
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional

from drms_core.auth.principal import Principal
from drms_core.data.database import Database
from drms_core.errors import (
    AuthorizationError,
    DuplicateRecordError,
    ValidationError,
)
from drms_core.models.enums import (
    AssessmentStatus,
    AssessmentType,
    Priority,
    SyncStatus,
    VerificationStatus,
)
from drms_core.models.records import utcnow
from drms_core.services.assignment_service import EntityAssignmentService
from drms_core.services.base_service import BaseService, check_enum

TABLE = "rapid_assessments"

# Fields an assessor may change after creation
EDITABLE_FIELDS = (
    "rapid_assessment_date",
    "location",
    "coordinates",
    "priority",
    "assessment_data",
    "incident_id",
)


class AssessmentService(BaseService):

    def __init__(self, db: Database, assignments: EntityAssignmentService):
        super().__init__(db)
        self.assignments = assignments

    def create_assessment(
        self,
        data: Dict[str, Any],
        actor: Principal,
        offline_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        entity_id = data.get("entity_id")
        if not entity_id:
            raise ValidationError("entity_id is required", field="entity_id")
        check_enum(AssessmentType, data.get("rapid_assessment_type"), "rapid_assessment_type")
        entity = self.db.require("entities", entity_id, "Entity")

        if not self.assignments.can_create_assessment(actor, entity_id):
            raise AuthorizationError(
                "User is not assigned to this entity",
                unauthorized_entities=[entity_id],
            )

        if offline_id:
            existing = self.db.find_one(TABLE, "offline_id = ?", [offline_id])
            if existing:
                raise DuplicateRecordError(
                    "Assessment with this offline ID already exists",
                    resource=TABLE,
                    existing_id=existing["id"],
                )

        if data.get("incident_id"):
            self.db.require("incidents", data["incident_id"], "Incident")

        status = check_enum(AssessmentStatus, data.get("status") or "SUBMITTED", "status")
        verification = (
            VerificationStatus.SUBMITTED.value
            if status == AssessmentStatus.SUBMITTED.value
            else VerificationStatus.DRAFT.value
        )
        if status == AssessmentStatus.SUBMITTED.value and entity["auto_approve_enabled"]:
            verification = VerificationStatus.AUTO_VERIFIED.value

        record = {
            "rapid_assessment_type": data["rapid_assessment_type"],
            "rapid_assessment_date": data.get("rapid_assessment_date") or utcnow().isoformat(),
            "assessor_id": actor.id,
            "assessor_name": data.get("assessor_name") or actor.name or actor.username,
            "entity_id": entity_id,
            "incident_id": data.get("incident_id"),
            "location": data.get("location"),
            "coordinates": data.get("coordinates"),
            "status": status,
            "priority": check_enum(Priority, data.get("priority") or "MEDIUM", "priority"),
            "assessment_data": data.get("assessment_data") or {},
            "is_offline_created": bool(offline_id),
            "offline_id": offline_id,
            "sync_status": SyncStatus.SYNCED.value,
            "verification_status": verification,
        }
        if data.get("id"):
            record["id"] = data["id"]

        with self.db.transaction():
            assessment = self.db.insert(TABLE, record)
            self.db.audit(actor.id, "CREATE", "rapid_assessment", assessment["id"], None,
                          {"type": record["rapid_assessment_type"], "entity_id": entity_id})

        self.logger.info(
            f"Assessment {assessment['id']} ({record['rapid_assessment_type']}) "
            f"created at entity {entity_id}"
        )
        return assessment

    def get_assessment(self, assessment_id: str) -> Dict[str, Any]:
        return self.db.require(TABLE, assessment_id, "Assessment")

    def list_assessments(
        self,
        actor: Principal,
        entity_id: Optional[str] = None,
        assessment_type: Optional[str] = None,
        verification_status: Optional[str] = None,
        mine: bool = False,
    ) -> List[Dict[str, Any]]:
        clauses, params = [], []
        if entity_id:
            clauses.append("entity_id = ?")
            params.append(entity_id)
        if assessment_type:
            clauses.append("rapid_assessment_type = ?")
            params.append(assessment_type)
        if verification_status:
            clauses.append("verification_status = ?")
            params.append(verification_status)
        if mine:
            clauses.append("assessor_id = ?")
            params.append(actor.id)
        elif not actor.is_privileged and not actor.has_role("DONOR"):
            ids = self.assignments.get_assigned_entity_ids(actor.id)
            if not ids:
                return []
            clauses.append(f"entity_id IN ({', '.join('?' for _ in ids)})")
            params.extend(ids)

        return self.db.get_all(
            TABLE,
            where=" AND ".join(clauses) if clauses else None,
            params=params,
            order_by="rapid_assessment_date DESC",
        )

    def update_assessment(
        self,
        assessment_id: str,
        data: Dict[str, Any],
        actor: Principal,
    ) -> Dict[str, Any]:
        existing = self._owned(assessment_id, actor, "update")
        changes = {k: data[k] for k in EDITABLE_FIELDS if k in data}
        if "priority" in changes:
            changes["priority"] = check_enum(Priority, changes["priority"], "priority")
        changes["version_number"] = existing["version_number"] + 1

        with self.db.transaction():
            updated = self.db.update(TABLE, assessment_id, changes)
            self.db.audit(actor.id, "UPDATE", "rapid_assessment", assessment_id,
                          {"version_number": existing["version_number"]}, changes)
        return updated

    def delete_assessment(self, assessment_id: str, actor: Principal) -> None:
        self._owned(assessment_id, actor, "delete")
        with self.db.transaction():
            self.db.delete(TABLE, assessment_id)
            self.db.audit(actor.id, "DELETE", "rapid_assessment", assessment_id)

    def submit_assessment(self, assessment_id: str, actor: Principal) -> Dict[str, Any]:
        existing = self._owned(assessment_id, actor, "submit")
        entity = self.db.require("entities", existing["entity_id"], "Entity")
        verification = (
            VerificationStatus.AUTO_VERIFIED.value
            if entity["auto_approve_enabled"]
            else VerificationStatus.SUBMITTED.value
        )
        return self.db.update(TABLE, assessment_id, {
            "status": AssessmentStatus.SUBMITTED.value,
            "verification_status": verification,
        })

    def verify_assessment(
        self,
        assessment_id: str,
        actor: Principal,
        approve: bool = True,
        rejection_reason: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not actor.has_role("COORDINATOR", "ADMIN"):
            raise AuthorizationError(
                "Only coordinators can verify assessments",
                required_roles=["COORDINATOR"],
            )
        existing = self.get_assessment(assessment_id)
        if existing["verification_status"] != VerificationStatus.SUBMITTED.value:
            raise ValidationError(
                f"Only submitted assessments can be verified (current: {existing['verification_status']})",
                field="verification_status",
            )
        if not approve and not rejection_reason:
            raise ValidationError("A rejection reason is required", field="rejectionReason")

        changes: Dict[str, Any] = {
            "verified_by": actor.id,
            "verified_at": utcnow().isoformat(),
        }
        if approve:
            changes["verification_status"] = VerificationStatus.VERIFIED.value
            changes["status"] = AssessmentStatus.VERIFIED.value
        else:
            changes["verification_status"] = VerificationStatus.REJECTED.value
            changes["rejection_reason"] = rejection_reason

        with self.db.transaction():
            updated = self.db.update(TABLE, assessment_id, changes)
            self.db.audit(actor.id, "VERIFY" if approve else "REJECT", "rapid_assessment",
                          assessment_id, {"verification_status": existing["verification_status"]}, changes)
        return updated

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _owned(self, assessment_id: str, actor: Principal, action: str) -> Dict[str, Any]:
        existing = self.get_assessment(assessment_id)
        if existing["assessor_id"] != actor.id:
            raise AuthorizationError(f"Not authorized to {action} this assessment")
        return existing

