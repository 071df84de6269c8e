# =============================================================================
# drms_core/services/commitment_service.py
# Donors and Donor Commitments
# =============================================================================
"""
CommitmentService - donor registry and pledged commitments.

Commitment status moves PLANNED -> PARTIAL -> COMPLETE as quantities are
drawn down by responses. CANCELLED commitments cannot be used.
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional

from drms_core.auth.principal import Principal
from drms_core.data.database import Database
from drms_core.errors import AuthorizationError, ValidationError
from drms_core.models.enums import CommitmentStatus, DonorType
from drms_core.models.records import utcnow
from drms_core.services.assignment_service import EntityAssignmentService
from drms_core.services.base_service import BaseService, check_enum

USABLE_STATUSES = (CommitmentStatus.PLANNED.value, CommitmentStatus.PARTIAL.value)


def _total_quantity(items: List[Dict[str, Any]]) -> int:
    try:
        return int(sum(float(item.get("quantity", 0)) for item in items))
    except (TypeError, ValueError) as e:
        raise ValidationError("Item quantities must be numeric", field="items") from e


class CommitmentService(BaseService):

    def __init__(self, db: Database, assignments: EntityAssignmentService):
        super().__init__(db)
        self.assignments = assignments

    # =========================================================================
    # DONORS
    # =========================================================================

    def create_donor(self, data: Dict[str, Any], actor: Principal) -> Dict[str, Any]:
        if not actor.has_role("ADMIN", "COORDINATOR", "DONOR"):
            raise AuthorizationError("Not allowed to register donors")
        if not data.get("name"):
            raise ValidationError("Donor name is required", field="name")

        donor = self.db.insert("donors", {
            "name": data["name"],
            "type": check_enum(DonorType, data.get("type", "ORGANIZATION"), "type"),
            "contact_email": data.get("contact_email"),
            "contact_phone": data.get("contact_phone"),
            "organization": data.get("organization"),
            "user_id": data.get("user_id") or (actor.id if actor.has_role("DONOR") else None),
        })
        self.logger.info(f"Donor registered: {donor['name']}")
        return donor

    def get_donor(self, donor_id: str) -> Dict[str, Any]:
        return self.db.require("donors", donor_id, "Donor")

    def list_donors(self, active_only: bool = True) -> List[Dict[str, Any]]:
        where = "is_active = 1" if active_only else None
        return self.db.get_all("donors", where=where, order_by="name")

    # =========================================================================
    # COMMITMENTS
    # =========================================================================

    def create_commitment(self, data: Dict[str, Any], actor: Principal) -> Dict[str, Any]:
        donor = self.db.get_by_id("donors", data.get("donor_id") or "")
        if donor is None or not donor["is_active"]:
            raise ValidationError("Donor not found or inactive", field="donor_id")
        entity = self.db.get_by_id("entities", data.get("entity_id") or "")
        if entity is None or not entity["is_active"]:
            raise ValidationError("Entity not found or inactive", field="entity_id")
        self.db.require("incidents", data.get("incident_id") or "", "Incident")

        if actor.has_role("DONOR") and not actor.is_privileged and donor["user_id"] != actor.id:
            raise AuthorizationError("Donors may only pledge on their own behalf")

        items = data.get("items") or []
        if not items:
            raise ValidationError("At least one item is required", field="items")
        total = data.get("total_committed_quantity")
        total = int(total) if total is not None else _total_quantity(items)
        if total <= 0:
            raise ValidationError("Committed quantity must be positive", field="total_committed_quantity")

        with self.db.transaction():
            commitment = self.db.insert("donor_commitments", {
                "donor_id": donor["id"],
                "entity_id": entity["id"],
                "incident_id": data["incident_id"],
                "items": items,
                "total_committed_quantity": total,
                "delivered_quantity": 0,
                "status": CommitmentStatus.PLANNED.value,
                "notes": data.get("notes"),
                "commitment_date": utcnow().isoformat(),
            })
            self.db.audit(actor.id, "CREATE", "donor_commitment", commitment["id"], None,
                          {"total": total, "donor_id": donor["id"]})
        return commitment

    def get_commitment(self, commitment_id: str) -> Dict[str, Any]:
        return self.db.require("donor_commitments", commitment_id, "Commitment")

    def list_commitments(
        self,
        donor_id: Optional[str] = None,
        entity_id: Optional[str] = None,
        incident_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        clauses, params = [], []
        for column, value in (
            ("donor_id", donor_id),
            ("entity_id", entity_id),
            ("incident_id", incident_id),
            ("status", status),
        ):
            if value:
                clauses.append(f"{column} = ?")
                params.append(value)
        return self.db.get_all(
            "donor_commitments",
            where=" AND ".join(clauses) if clauses else None,
            params=params,
            order_by="commitment_date DESC",
        )

    def get_available_commitments(self, actor: Principal, entity_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Usable commitments at the entities a responder works at."""
        ids = (
            [e["id"] for e in self.db.get_all("entities", where="is_active = 1")]
            if actor.is_privileged
            else self.assignments.get_assigned_entity_ids(actor.id)
        )
        if entity_id:
            ids = [i for i in ids if i == entity_id]
        if not ids:
            return []
        return self.db.get_all(
            "donor_commitments",
            where=(
                f"entity_id IN ({', '.join('?' for _ in ids)}) "
                "AND status IN (?, ?) AND total_committed_quantity > delivered_quantity"
            ),
            params=[*ids, *USABLE_STATUSES],
            order_by="commitment_date DESC",
        )

    def use_commitment(
        self,
        commitment_id: str,
        items: List[Dict[str, Any]],
        actor: Principal,
    ) -> Dict[str, Any]:
        """
        Draw down a commitment.

        Raises:
            ValidationError: commitment not usable, or more requested than available
        """
        commitment = self.get_commitment(commitment_id)
        if commitment["status"] not in USABLE_STATUSES:
            raise ValidationError("Commitment is not available for use", field="status")

        requested = _total_quantity(items)
        available = commitment["total_committed_quantity"] - commitment["delivered_quantity"]
        if requested > available:
            raise ValidationError(
                f"Requested quantity ({requested}) exceeds available ({available})",
                field="items",
            )

        delivered = commitment["delivered_quantity"] + requested
        status = commitment["status"]
        if delivered >= commitment["total_committed_quantity"]:
            status = CommitmentStatus.COMPLETE.value
        elif delivered > 0:
            status = CommitmentStatus.PARTIAL.value

        with self.db.transaction():
            updated = self.db.update("donor_commitments", commitment_id, {
                "delivered_quantity": delivered,
                "status": status,
            })
            self.db.audit(actor.id, "USE", "donor_commitment", commitment_id,
                          {"delivered_quantity": commitment["delivered_quantity"]},
                          {"delivered_quantity": delivered, "status": status})
        self.logger.info(f"Commitment {commitment_id}: {delivered}/{commitment['total_committed_quantity']} ({status})")
        return updated

    def cancel_commitment(self, commitment_id: str, actor: Principal) -> Dict[str, Any]:
        commitment = self.get_commitment(commitment_id)
        if commitment["status"] == CommitmentStatus.COMPLETE.value:
            raise ValidationError("Completed commitments cannot be cancelled", field="status")
        return self.db.update("donor_commitments", commitment_id, {"status": CommitmentStatus.CANCELLED.value})

    def get_commitment_stats(
        self,
        donor_id: Optional[str] = None,
        entity_id: Optional[str] = None,
        incident_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        commitments = self.list_commitments(donor_id=donor_id, entity_id=entity_id, incident_id=incident_id)
        breakdown = {s.value.lower(): 0 for s in CommitmentStatus}
        for c in commitments:
            breakdown[c["status"].lower()] += 1

        committed = sum(c["total_committed_quantity"] for c in commitments)
        delivered = sum(c["delivered_quantity"] for c in commitments)
        return {
            "totalCommitments": len(commitments),
            "statusBreakdown": breakdown,
            "quantities": {
                "totalCommitted": committed,
                "totalDelivered": delivered,
                "utilizationRate": (delivered / committed * 100) if committed > 0 else 0,
            },
        }
