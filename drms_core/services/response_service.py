# =============================================================================
# drms_core/services/response_service.py
# Planned and Delivered Responses
# =============================================================================
"""
ResponseService - response planning and delivery confirmation.

Rules:
- Responder must be assigned to the entity
- The assessment must exist, belong to the entity and be verified
- At most one PLANNED response per assessment (second one -> 409)
- offline_id accepted once (replay -> 409)
- Delivery can only be confirmed from PLANNED
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
    Priority,
    ResponseStatus,
    ResponseType,
    SyncStatus,
    VERIFIED_STATUSES,
    VerificationStatus,
)
from drms_core.models.records import utcnow
from drms_core.services.assignment_service import EntityAssignmentService
from drms_core.services.base_service import BaseService, check_enum
from drms_core.services.commitment_service import CommitmentService

TABLE = "rapid_responses"


class ResponseService(BaseService):

    def __init__(
        self,
        db: Database,
        assignments: EntityAssignmentService,
        commitments: CommitmentService,
    ):
        super().__init__(db)
        self.assignments = assignments
        self.commitments = commitments

    def create_response(
        self,
        data: Dict[str, Any],
        actor: Principal,
        offline_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        entity_id = data.get("entity_id")
        assessment_id = data.get("assessment_id")
        if not entity_id or not assessment_id:
            raise ValidationError("entity_id and assessment_id are required", field="entity_id")

        self._validate_entity_assignment(actor, entity_id)
        self._validate_assessment(assessment_id, entity_id)

        if offline_id:
            existing = self.db.find_one(TABLE, "offline_id = ?", [offline_id])
            if existing:
                raise DuplicateRecordError(
                    "Response with this offline ID already exists",
                    resource=TABLE,
                    existing_id=existing["id"],
                )

        planned = self.db.find_one(
            TABLE, "assessment_id = ? AND status = ?", [assessment_id, ResponseStatus.PLANNED.value]
        )
        if planned:
            raise DuplicateRecordError(
                "A planned response already exists for this assessment",
                resource=TABLE,
                existing_id=planned["id"],
            )

        items = data.get("items") or []
        if not items:
            raise ValidationError("At least one item is required", field="items")

        record = {
            "responder_id": actor.id,
            "entity_id": entity_id,
            "assessment_id": assessment_id,
            "donor_id": data.get("donor_id"),
            "commitment_id": data.get("commitment_id"),
            "type": check_enum(ResponseType, data.get("type"), "type"),
            "priority": check_enum(Priority, data.get("priority") or "MEDIUM", "priority"),
            "status": ResponseStatus.PLANNED.value,
            "description": data.get("description"),
            "items": items,
            "is_offline_created": bool(offline_id),
            "offline_id": offline_id,
            "planned_date": data.get("planned_date") or utcnow().isoformat(),
            "verification_status": VerificationStatus.DRAFT.value,
            "sync_status": SyncStatus.SYNCED.value,
        }
        if data.get("id"):
            record["id"] = data["id"]

        with self.db.transaction():
            if record["commitment_id"]:
                commitment = self.commitments.use_commitment(record["commitment_id"], items, actor)
                record["donor_id"] = record["donor_id"] or commitment["donor_id"]
            response = self.db.insert(TABLE, record)
            self.db.audit(actor.id, "CREATE", "rapid_response", response["id"], None,
                          {"assessment_id": assessment_id, "type": record["type"]})

        self.logger.info(f"Planned response {response['id']} for assessment {assessment_id}")
        return response

    def get_response(self, response_id: str, actor: Optional[Principal] = None) -> Dict[str, Any]:
        response = self.db.require(TABLE, response_id, "Response")
        if actor is not None and not actor.has_role("DONOR"):
            self._validate_entity_assignment(actor, response["entity_id"])
        return response

    def list_responses(
        self,
        actor: Principal,
        entity_id: Optional[str] = None,
        status: Optional[str] = None,
        assessment_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        clauses, params = [], []
        if entity_id:
            clauses.append("entity_id = ?")
            params.append(entity_id)
        if status:
            clauses.append("status = ?")
            params.append(status)
        if assessment_id:
            clauses.append("assessment_id = ?")
            params.append(assessment_id)
        if not actor.is_privileged and not actor.has_role("DONOR"):
            ids = self.assignments.get_assigned_entity_ids(actor.id)
            if not ids:
                return []
            clauses.append(f"entity_id IN ({', '.join('?' for _ in ids)})")
            params.extend(ids)

        return self.db.get_all(
            TABLE,
            where=" AND ".join(clauses) if clauses else None,
            params=params,
            order_by="planned_date DESC",
        )

    def update_planned_response(
        self,
        response_id: str,
        data: Dict[str, Any],
        actor: Principal,
    ) -> Dict[str, Any]:
        existing = self.get_response(response_id, actor)
        if existing["status"] != ResponseStatus.PLANNED.value:
            raise ValidationError("Only planned responses can be updated", field="status")

        changes = {k: data[k] for k in ("items", "description", "planned_date") if k in data}
        if "priority" in data:
            changes["priority"] = check_enum(Priority, data["priority"], "priority")
        changes["version_number"] = existing["version_number"] + 1

        with self.db.transaction():
            updated = self.db.update(TABLE, response_id, changes)
            self.db.audit(actor.id, "UPDATE", "rapid_response", response_id,
                          {"version_number": existing["version_number"]}, changes)
        return updated

    def confirm_delivery(
        self,
        response_id: str,
        delivered_items: List[Dict[str, Any]],
        actor: Principal,
        delivery_notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        existing = self.get_response(response_id, actor)
        if existing["status"] != ResponseStatus.PLANNED.value:
            raise ValidationError("Only planned responses can have delivery confirmed", field="status")

        changes = {
            "status": ResponseStatus.DELIVERED.value,
            "delivered_items": delivered_items or existing["items"],
            "delivery_notes": delivery_notes,
            "response_date": utcnow().isoformat(),
            "verification_status": VerificationStatus.SUBMITTED.value,
            "version_number": existing["version_number"] + 1,
        }
        with self.db.transaction():
            updated = self.db.update(TABLE, response_id, changes)
            self.db.audit(
                actor.id, "CONFIRM_DELIVERY", "rapid_response", response_id,
                {"status": existing["status"], "delivered_items": existing.get("delivered_items")},
                {"status": changes["status"], "delivered_items": changes["delivered_items"]},
            )
        self.logger.info(f"Delivery confirmed for response {response_id}")
        return updated

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def _validate_entity_assignment(self, actor: Principal, entity_id: str) -> None:
        if not self.assignments.can_access_entity(actor, entity_id):
            raise AuthorizationError(
                "User is not assigned to this entity",
                unauthorized_entities=[entity_id],
            )

    def _validate_assessment(self, assessment_id: str, entity_id: str) -> Dict[str, Any]:
        assessment = self.db.require("rapid_assessments", assessment_id, "Assessment")
        if assessment["entity_id"] != entity_id:
            raise ValidationError("Assessment does not belong to this entity", field="assessment_id")
        if assessment["verification_status"] not in VERIFIED_STATUSES:
            raise ValidationError("Assessment must be verified before response planning", field="assessment_id")
        return assessment
