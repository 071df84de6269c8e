# =============================================================================
# drms_core/services/entity_service.py
# Affected Locations (Entities) and Incidents
# =============================================================================

from __future__ import annotations
from typing import Any, Dict, List, Optional

from drms_core.auth.principal import Principal
from drms_core.data.database import Database
from drms_core.errors import ValidationError
from drms_core.models.enums import EntityType, IncidentStatus, Priority
from drms_core.services.base_service import BaseService, check_enum

ENTITY_FIELDS = ("name", "type", "location", "coordinates", "metadata", "is_active", "auto_approve_enabled")
INCIDENT_FIELDS = ("type", "sub_type", "severity", "status", "description", "location", "coordinates")


class EntityService(BaseService):
    """CRUD for entities (communities, wards, camps, facilities...)."""

    def __init__(self, db: Database):
        super().__init__(db)

    def create_entity(self, data: Dict[str, Any], actor: Principal) -> Dict[str, Any]:
        self.require_privileged(actor, "create entities")
        if not data.get("name"):
            raise ValidationError("Entity name is required", field="name")

        record = {k: data[k] for k in ENTITY_FIELDS if k in data}
        record["type"] = check_enum(EntityType, data.get("type"), "type")
        if data.get("id"):
            record["id"] = data["id"]

        with self.db.transaction():
            entity = self.db.insert("entities", record)
            self.db.audit(actor.id, "CREATE", "entity", entity["id"], None, {"name": entity["name"]})
        self.logger.info(f"Entity created: {entity['name']} ({entity['type']})")
        return entity

    def get_entity(self, entity_id: str) -> Dict[str, Any]:
        return self.db.require("entities", entity_id, "Entity")

    def list_entities(
        self,
        entity_type: Optional[str] = None,
        active_only: bool = True,
        ids: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]:
        clauses, params = [], []
        if entity_type:
            clauses.append("type = ?")
            params.append(entity_type)
        if active_only:
            clauses.append("is_active = 1")
        if ids is not None:
            if not ids:
                return []
            clauses.append(f"id IN ({', '.join('?' for _ in ids)})")
            params.extend(ids)

        return self.db.get_all(
            "entities",
            where=" AND ".join(clauses) if clauses else None,
            params=params,
            order_by="name",
        )

    def update_entity(self, entity_id: str, data: Dict[str, Any], actor: Principal) -> Dict[str, Any]:
        self.require_privileged(actor, "edit entities")
        existing = self.get_entity(entity_id)
        changes = {k: data[k] for k in ENTITY_FIELDS if k in data}
        if "type" in changes:
            changes["type"] = check_enum(EntityType, changes["type"], "type")
        changes["version_number"] = existing["version_number"] + 1

        with self.db.transaction():
            updated = self.db.update("entities", entity_id, changes)
            self.db.audit(actor.id, "UPDATE", "entity", entity_id,
                          {k: existing.get(k) for k in changes}, changes)
        return updated

    def deactivate_entity(self, entity_id: str, actor: Principal) -> Dict[str, Any]:
        return self.update_entity(entity_id, {"is_active": False}, actor)


class IncidentService(BaseService):
    """CRUD for incidents."""

    def __init__(self, db: Database):
        super().__init__(db)

    def create_incident(self, data: Dict[str, Any], actor: Principal) -> Dict[str, Any]:
        self.require_privileged(actor, "create incidents")
        for required in ("type", "description", "location"):
            if not data.get(required):
                raise ValidationError(f"Incident {required} is required", field=required)

        record = {k: data[k] for k in INCIDENT_FIELDS if k in data}
        record["severity"] = check_enum(Priority, data.get("severity", "MEDIUM"), "severity")
        record["status"] = check_enum(IncidentStatus, data.get("status", "ACTIVE"), "status")
        record["created_by"] = actor.id
        if data.get("id"):
            record["id"] = data["id"]

        with self.db.transaction():
            incident = self.db.insert("incidents", record)
            self.db.audit(actor.id, "CREATE", "incident", incident["id"], None, {"type": incident["type"]})
        return incident

    def get_incident(self, incident_id: str) -> Dict[str, Any]:
        return self.db.require("incidents", incident_id, "Incident")

    def list_incidents(self, status: Optional[str] = None) -> List[Dict[str, Any]]:
        if status:
            return self.db.get_all("incidents", where="status = ?", params=[status], order_by="created_at DESC")
        return self.db.get_all("incidents", order_by="created_at DESC")

    def update_incident(self, incident_id: str, data: Dict[str, Any], actor: Principal) -> Dict[str, Any]:
        self.require_privileged(actor, "edit incidents")
        existing = self.get_incident(incident_id)
        changes = {k: data[k] for k in INCIDENT_FIELDS if k in data}
        if "severity" in changes:
            changes["severity"] = check_enum(Priority, changes["severity"], "severity")
        if "status" in changes:
            changes["status"] = check_enum(IncidentStatus, changes["status"], "status")
        changes["version_number"] = existing["version_number"] + 1

        with self.db.transaction():
            updated = self.db.update("incidents", incident_id, changes)
            self.db.audit(actor.id, "UPDATE", "incident", incident_id,
                          {k: existing.get(k) for k in changes}, changes)
        return updated

    def update_status(self, incident_id: str, status: str, actor: Principal) -> Dict[str, Any]:
        return self.update_incident(incident_id, {"status": status}, actor)
