# =============================================================================
# drms_core/services/assignment_service.py
# Entity Assignments (which field users may work where)
# =============================================================================
"""
EntityAssignmentService - links assessors and responders to entities.

Features:
- Assign / unassign users (duplicate assignment -> 409)
- Assignment lookups in both directions
- Entity filtering for non-privileged roles
- Per-user assessment statistics for dashboards
"""

from __future__ import annotations
from typing import Any, Dict, Iterable, List, Optional

from drms_core.auth.principal import Principal
from drms_core.data.database import Database
from drms_core.errors import DuplicateRecordError, ValidationError
from drms_core.models.enums import VERIFIED_STATUSES
from drms_core.services.base_service import BaseService


class EntityAssignmentService(BaseService):

    def __init__(self, db: Database):
        super().__init__(db)

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def assign(self, user_id: str, entity_id: str, actor: Principal) -> Dict[str, Any]:
        self.require_privileged(actor, "assign entities")
        self.db.require("users", user_id, "User")
        entity = self.db.require("entities", entity_id, "Entity")
        if not entity["is_active"]:
            raise ValidationError("Cannot assign an inactive entity", field="entityId")

        existing = self.db.find_one(
            "entity_assignments", "user_id = ? AND entity_id = ?", [user_id, entity_id]
        )
        if existing:
            raise DuplicateRecordError(
                "User is already assigned to this entity",
                resource="entity_assignments",
                existing_id=existing["id"],
            )

        with self.db.transaction():
            assignment = self.db.insert("entity_assignments", {
                "user_id": user_id,
                "entity_id": entity_id,
                "assigned_by": actor.id,
            })
            self.db.audit(actor.id, "ASSIGN", "entity_assignment", assignment["id"], None,
                          {"user_id": user_id, "entity_id": entity_id})
        self.logger.info(f"Assigned user {user_id} to entity {entity_id}")
        return assignment

    def unassign(self, assignment_id: str, actor: Principal) -> None:
        self.require_privileged(actor, "remove assignments")
        assignment = self.db.require("entity_assignments", assignment_id, "Assignment")
        with self.db.transaction():
            self.db.delete("entity_assignments", assignment_id)
            self.db.audit(actor.id, "UNASSIGN", "entity_assignment", assignment_id,
                          {"user_id": assignment["user_id"], "entity_id": assignment["entity_id"]}, None)

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    def list_assignments(
        self,
        user_id: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        clauses, params = [], []
        if user_id:
            clauses.append("a.user_id = ?")
            params.append(user_id)
        if entity_id:
            clauses.append("a.entity_id = ?")
            params.append(entity_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        rows = self.db.query(
            f"""
            SELECT a.*, u.name AS user_name, e.name AS entity_name, e.type AS entity_type
            FROM entity_assignments a
            JOIN users u ON u.id = a.user_id
            JOIN entities e ON e.id = a.entity_id
            {where}
            ORDER BY a.created_at DESC
            """,
            params,
        )
        return [dict(row) for row in rows]

    def is_user_assigned(self, user_id: str, entity_id: str) -> bool:
        return self.db.count(
            "entity_assignments", "user_id = ? AND entity_id = ?", [user_id, entity_id]
        ) > 0

    def get_assigned_entity_ids(self, user_id: str) -> List[str]:
        rows = self.db.query(
            "SELECT entity_id FROM entity_assignments WHERE user_id = ?", [user_id]
        )
        return [row["entity_id"] for row in rows]

    def get_user_assigned_entities(self, user_id: str) -> List[Dict[str, Any]]:
        ids = self.get_assigned_entity_ids(user_id)
        if not ids:
            return []
        placeholders = ", ".join("?" for _ in ids)
        return self.db.get_all(
            "entities",
            where=f"id IN ({placeholders}) AND is_active = 1",
            params=ids,
            order_by="name",
        )

    def get_entity_assigned_users(self, entity_id: str) -> List[Dict[str, Any]]:
        rows = self.db.query(
            """
            SELECT u.id, u.name, u.email, u.username
            FROM entity_assignments a JOIN users u ON u.id = a.user_id
            WHERE a.entity_id = ?
            ORDER BY u.name
            """,
            [entity_id],
        )
        return [dict(row) for row in rows]

    # =========================================================================
    # ACCESS CHECKS
    # =========================================================================

    def can_access_entity(self, actor: Principal, entity_id: str) -> bool:
        return actor.is_privileged or self.is_user_assigned(actor.id, entity_id)

    def can_create_assessment(self, actor: Principal, entity_id: str) -> bool:
        return self.can_access_entity(actor, entity_id)

    def unauthorized_entities(self, actor: Principal, entity_ids: Iterable[str]) -> List[str]:
        """Return the ids from entity_ids the actor may not touch, in first-seen order."""
        if actor.is_privileged:
            return []
        assigned = set(self.get_assigned_entity_ids(actor.id))
        seen: List[str] = []
        for entity_id in entity_ids:
            if entity_id and entity_id not in assigned and entity_id not in seen:
                seen.append(entity_id)
        return seen

    def filter_entities_by_assignment(
        self,
        actor: Principal,
        entities: List[Dict[str, Any]],
    ) -> List[Dict[str, Any]]:
        if actor.is_privileged:
            return entities
        assigned = set(self.get_assigned_entity_ids(actor.id))
        return [e for e in entities if e["id"] in assigned]

    # =========================================================================
    # DASHBOARD QUERIES
    # =========================================================================

    def get_verified_assessments(self, actor: Principal) -> List[Dict[str, Any]]:
        """Verified assessments at the actor's entities (all entities when privileged)."""
        params: List[Any] = list(VERIFIED_STATUSES)
        where = "verification_status IN (?, ?)"
        if not actor.is_privileged:
            ids = self.get_assigned_entity_ids(actor.id)
            if not ids:
                return []
            where += f" AND entity_id IN ({', '.join('?' for _ in ids)})"
            params.extend(ids)
        return self.db.get_all(
            "rapid_assessments", where=where, params=params, order_by="rapid_assessment_date DESC"
        )

    def get_user_assessment_stats(self, user_id: str) -> Dict[str, Any]:
        rows = self.db.query(
            """
            SELECT verification_status, COUNT(*) AS count
            FROM rapid_assessments WHERE assessor_id = ?
            GROUP BY verification_status
            """,
            [user_id],
        )
        by_status = {row["verification_status"]: row["count"] for row in rows}
        total = sum(by_status.values())
        verified = sum(by_status.get(s, 0) for s in VERIFIED_STATUSES)
        return {
            "total": total,
            "byStatus": by_status,
            "verified": verified,
            "pending": by_status.get("SUBMITTED", 0),
            "drafts": by_status.get("DRAFT", 0),
            "rejected": by_status.get("REJECTED", 0),
            "assignedEntities": len(self.get_assigned_entity_ids(user_id)),
        }
