# =============================================================================
# drms_core/services/sync_service.py
# Server Side of Offline Sync: batch apply, pull, conflict resolution
# =============================================================================
"""
SyncService - receives queued device mutations and serves server changes.

Batch wire format (one change):
    {
        "type": "assessment" | "response" | "entity" | "incident",
        "action": "create" | "update" | "delete",
        "offlineId": "<client uuid>",
        "recordId": "<record uuid>",
        "entityUuid": "<affected entity the record belongs to>",
        "versionNumber": <version the device edited>,
        "lastModified": "<ISO timestamp>",
        "data": {...column values...}
    }

Batch semantics:
- Atomic: one failed change rolls back every change and every result
  comes back "failed"
- A replayed offlineId answers "duplicate" with the existing server id
- A version mismatch records a conflict and answers "conflict" with the
  server copy; the server record is left untouched
"""

from __future__ import annotations
import sqlite3
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from drms_core.auth.principal import Principal
from drms_core.data.database import Database
from drms_core.errors import (
    AuthorizationError,
    DRMSError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)
from drms_core.models.enums import SyncAction, SyncEntityType
from drms_core.models.records import SyncResult, parse_timestamp
from drms_core.services.assessment_service import AssessmentService
from drms_core.services.assignment_service import EntityAssignmentService
from drms_core.services.base_service import BaseService
from drms_core.services.conflict_service import ConflictService
from drms_core.services.entity_service import EntityService, IncidentService
from drms_core.services.response_service import ResponseService

TYPE_TABLES = {
    SyncEntityType.ASSESSMENT.value: "rapid_assessments",
    SyncEntityType.RESPONSE.value: "rapid_responses",
    SyncEntityType.ENTITY.value: "entities",
    SyncEntityType.INCIDENT.value: "incidents",
}

MAX_BATCH_SIZE = 100
DEFAULT_PULL_LIMIT = 100
MAX_PULL_LIMIT = 1000

# Columns a sync payload may never overwrite
PROTECTED_COLUMNS = {"id", "created_at", "updated_at", "version_number", "offline_id", "password_hash"}

ROLLED_BACK_MESSAGE = "Batch transaction failed and was rolled back"


class RateLimiter:
    """Fixed-window request counter per client id."""

    def __init__(self, max_requests: int = 100, window_seconds: float = 60.0,
                 clock: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: Dict[str, Tuple[int, float]] = {}
        self._lock = threading.Lock()

    def check(self, client_id: str) -> None:
        """
        Count one request for client_id.

        Raises:
            RateLimitError: the client used up its window
        """
        now = self._clock()
        with self._lock:
            count, reset_at = self._windows.get(client_id, (0, 0.0))
            if now >= reset_at:
                self._windows[client_id] = (1, now + self.window_seconds)
                return
            if count >= self.max_requests:
                raise RateLimitError(retry_after=max(1, int(reset_at - now)))
            self._windows[client_id] = (count + 1, reset_at)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()


class _BatchAborted(Exception):
    pass


class SyncService(BaseService):

    def __init__(
        self,
        db: Database,
        assignments: EntityAssignmentService,
        entities: EntityService,
        incidents: IncidentService,
        assessments: AssessmentService,
        responses: ResponseService,
        conflicts: ConflictService,
        rate_limiter: Optional[RateLimiter] = None,
        max_batch_size: int = MAX_BATCH_SIZE,
    ):
        super().__init__(db)
        self.assignments = assignments
        self.entities = entities
        self.incidents = incidents
        self.assessments = assessments
        self.responses = responses
        self.conflicts = conflicts
        self.rate_limiter = rate_limiter or RateLimiter()
        self.max_batch_size = max_batch_size

    # =========================================================================
    # BATCH PUSH
    # =========================================================================

    def process_batch(
        self,
        changes: List[Dict[str, Any]],
        actor: Principal,
        client_id: Optional[str] = None,
    ) -> List[SyncResult]:
        """
        Apply a batch of device mutations atomically.

        Raises:
            RateLimitError: too many batches from this client
            ValidationError: malformed or oversized batch
            AuthorizationError: a change touches an unassigned entity, or a
                non-coordinator touches incidents
        """
        self.rate_limiter.check(client_id or actor.id)

        if len(changes) > self.max_batch_size:
            raise ValidationError(
                f"Batch size too large. Maximum {self.max_batch_size} items allowed.",
                field="changes",
            )
        if not changes:
            return []

        for change in changes:
            self._validate_change(change)
        self._check_permissions(changes, actor)

        results: List[SyncResult] = []
        try:
            with self.db.transaction():
                for change in changes:
                    result = self._apply_change(change, actor)
                    results.append(result)
                    if result.status == "failed":
                        raise _BatchAborted(result.message)
        except _BatchAborted as e:
            self.logger.error(f"Batch from {actor.username} rolled back: {e}")
            return [
                SyncResult(
                    offline_id=c.get("offlineId") or c.get("entityUuid") or "",
                    status="failed",
                    message=ROLLED_BACK_MESSAGE,
                )
                for c in changes
            ]

        counts = {s: sum(1 for r in results if r.status == s) for s in ("success", "conflict", "duplicate")}
        self.logger.info(
            f"Processed {len(changes)} changes for {actor.username}: "
            f"{counts['success']} successful, {counts['conflict']} conflicts, "
            f"{counts['duplicate']} duplicates"
        )
        return results

    def _validate_change(self, change: Dict[str, Any]) -> None:
        if change.get("type") not in TYPE_TABLES:
            raise ValidationError(f"Unsupported change type: {change.get('type')}", field="type")
        if change.get("action") not in {a.value for a in SyncAction}:
            raise ValidationError(f"Unsupported action: {change.get('action')}", field="action")
        if not change.get("entityUuid") and change["type"] != SyncEntityType.INCIDENT.value:
            raise ValidationError("entityUuid is required", field="entityUuid")
        if change["action"] != SyncAction.CREATE.value and not change.get("recordId"):
            raise ValidationError("recordId is required for update and delete", field="recordId")

    def _check_permissions(self, changes: List[Dict[str, Any]], actor: Principal) -> None:
        location_ids = [c.get("entityUuid") for c in changes if c["type"] != SyncEntityType.INCIDENT.value]
        unauthorized = self.assignments.unauthorized_entities(actor, location_ids)
        if unauthorized:
            self.logger.warning(f"User {actor.username} attempted unassigned entities: {unauthorized}")
            raise AuthorizationError("Entity permission denied", unauthorized_entities=unauthorized)

        if any(c["type"] == SyncEntityType.INCIDENT.value for c in changes) and not actor.is_privileged:
            raise AuthorizationError(
                "Incident changes require coordinator access",
                required_roles=["COORDINATOR", "ADMIN"],
            )

    def _apply_change(self, change: Dict[str, Any], actor: Principal) -> SyncResult:
        offline_id = change.get("offlineId") or change.get("recordId") or ""
        kind, action = change["type"], change["action"]
        try:
            with self.db.transaction():
                if action == SyncAction.CREATE.value:
                    existing = self._find_existing(kind, change)
                    if existing is not None:
                        return SyncResult(
                            offline_id=offline_id,
                            status="duplicate",
                            server_id=existing["id"],
                            message=f"{kind} already synced",
                        )
                    record = self._create(kind, change, actor)
                    return SyncResult(offline_id, "success", record["id"], f"{kind} create completed successfully")

                table = TYPE_TABLES[kind]
                server = self.db.require(table, change["recordId"], kind.capitalize())
                client_version = int(change.get("versionNumber") or 0)
                if client_version != server["version_number"]:
                    return self._conflict(kind, change, server, offline_id)

                if action == SyncAction.UPDATE.value:
                    record = self._update(kind, change, actor)
                else:
                    self._delete(kind, change, actor)
                    record = server
                return SyncResult(offline_id, "success", record["id"], f"{kind} {action} completed successfully")
        except (DRMSError, sqlite3.Error) as e:
            self.logger.warning(f"Change {offline_id} ({kind} {action}) failed: {e}")
            message = e.message if isinstance(e, DRMSError) else str(e)
            return SyncResult(offline_id, "failed", message=f"Processing error: {message}")

    def _find_existing(self, kind: str, change: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        table = TYPE_TABLES[kind]
        offline_id = change.get("offlineId")
        if offline_id and kind in (SyncEntityType.ASSESSMENT.value, SyncEntityType.RESPONSE.value):
            existing = self.db.find_one(table, "offline_id = ?", [offline_id])
            if existing:
                return existing
        if change.get("recordId"):
            return self.db.get_by_id(table, change["recordId"])
        return None

    def _create(self, kind: str, change: Dict[str, Any], actor: Principal) -> Dict[str, Any]:
        data = dict(change.get("data") or {})
        if change.get("recordId"):
            data["id"] = change["recordId"]
        offline_id = change.get("offlineId")

        if kind == SyncEntityType.ASSESSMENT.value:
            data.setdefault("entity_id", change["entityUuid"])
            return self.assessments.create_assessment(data, actor, offline_id=offline_id)
        if kind == SyncEntityType.RESPONSE.value:
            data.setdefault("entity_id", change["entityUuid"])
            return self.responses.create_response(data, actor, offline_id=offline_id)
        if kind == SyncEntityType.ENTITY.value:
            data.setdefault("id", change["entityUuid"])
            return self.entities.create_entity(data, actor)
        return self.incidents.create_incident(data, actor)

    def _update(self, kind: str, change: Dict[str, Any], actor: Principal) -> Dict[str, Any]:
        data = {k: v for k, v in (change.get("data") or {}).items() if k not in PROTECTED_COLUMNS}
        record_id = change["recordId"]
        if kind == SyncEntityType.ASSESSMENT.value:
            return self.assessments.update_assessment(record_id, data, actor)
        if kind == SyncEntityType.RESPONSE.value:
            return self.responses.update_planned_response(record_id, data, actor)
        if kind == SyncEntityType.ENTITY.value:
            return self.entities.update_entity(record_id, data, actor)
        return self.incidents.update_incident(record_id, data, actor)

    def _delete(self, kind: str, change: Dict[str, Any], actor: Principal) -> None:
        record_id = change["recordId"]
        if kind == SyncEntityType.ASSESSMENT.value:
            self.assessments.delete_assessment(record_id, actor)
        elif kind == SyncEntityType.ENTITY.value:
            self.entities.deactivate_entity(record_id, actor)
        elif kind == SyncEntityType.RESPONSE.value:
            response = self.responses.get_response(record_id, actor)
            if response["status"] != "PLANNED":
                raise ValidationError("Only planned responses can be deleted", field="status")
            self.db.delete("rapid_responses", record_id)
            self.db.audit(actor.id, "DELETE", "rapid_response", record_id)
        else:
            raise ValidationError("Incidents cannot be deleted through sync", field="type")

    def _conflict(
        self,
        kind: str,
        change: Dict[str, Any],
        server: Dict[str, Any],
        offline_id: str,
    ) -> SyncResult:
        local_data = dict(change.get("data") or {})
        conflict = self.conflicts.record_conflict(
            entity_type=kind,
            entity_id=server["id"],
            local_version=int(change.get("versionNumber") or 0),
            server_version=server["version_number"],
            local_data=local_data,
            server_data=server,
            local_last_modified=change.get("lastModified"),
            server_last_modified=server["updated_at"],
            entity_uuid=change.get("entityUuid"),
        )
        return SyncResult(
            offline_id=offline_id,
            status="conflict",
            server_id=server["id"],
            message=f"Version conflict detected for {kind} {server['id']}",
            conflict_data={
                **server,
                "serverVersion": server["version_number"],
                "lastModified": server["updated_at"],
                "conflictId": conflict.conflict_id,
                "conflictReason": "Version mismatch",
            },
        )

    # =========================================================================
    # PULL
    # =========================================================================

    def pull_changes(
        self,
        actor: Principal,
        last_sync_timestamp: Optional[str] = None,
        types: Optional[List[str]] = None,
        limit: int = DEFAULT_PULL_LIMIT,
        entity_ids: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """
        Records changed since last_sync_timestamp, oldest first.

        Returns:
            {"items": [...], "hasMore": bool, "nextTimestamp": str, "totalCount": int}
        """
        if not 1 <= int(limit) <= MAX_PULL_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_PULL_LIMIT}", field="limit")
        types = types or list(TYPE_TABLES)
        for kind in types:
            if kind not in TYPE_TABLES:
                raise ValidationError(f"Unsupported type: {kind}", field="types")

        since = None
        if last_sync_timestamp:
            try:
                since = parse_timestamp(last_sync_timestamp).isoformat()
            except ValueError as e:
                raise ValidationError("Invalid lastSyncTimestamp", field="lastSyncTimestamp") from e

        allowed = None if actor.is_privileged else set(self.assignments.get_assigned_entity_ids(actor.id))
        if entity_ids:
            allowed = set(entity_ids) if allowed is None else allowed & set(entity_ids)

        items: List[Dict[str, Any]] = []
        for kind in types:
            table = TYPE_TABLES[kind]
            where = "updated_at > ?" if since else None
            for row in self.db.get_all(table, where=where, params=[since] if since else None):
                location = row["id"] if kind == SyncEntityType.ENTITY.value else row.get("entity_id")
                if kind != SyncEntityType.INCIDENT.value and allowed is not None and location not in allowed:
                    continue
                items.append({
                    "id": row["id"],
                    "type": kind,
                    "entityUuid": location or "",
                    "data": row,
                    "version": row.get("version_number", 1),
                    "lastModified": row["updated_at"],
                    "action": SyncAction.CREATE.value if row.get("version_number", 1) == 1 else SyncAction.UPDATE.value,
                })

        items.sort(key=lambda item: item["lastModified"])
        has_more = len(items) > limit
        page = items[:limit]
        next_timestamp = page[-1]["lastModified"] if page else (since or "")
        return {
            "items": page,
            "hasMore": has_more,
            "nextTimestamp": next_timestamp,
            "totalCount": len(page),
        }

    # =========================================================================
    # CONFLICT RESOLUTION
    # =========================================================================

    def resolve(self, resolution: Dict[str, Any], actor: Principal) -> Dict[str, Any]:
        """
        Resolve one conflict and apply the outcome to the server record.

        Raises:
            NotFoundError, AuthorizationError, ConflictAlreadyResolvedError,
            ValidationError
        """
        conflict_id = resolution.get("conflictId")
        if not conflict_id:
            raise ValidationError("conflictId is required", field="conflictId")
        conflict = self.conflicts.get_conflict(conflict_id)

        location = conflict.metadata.get("entity_uuid") or resolution.get("entityUuid")
        if location and conflict.entity_type != SyncEntityType.INCIDENT.value:
            if self.assignments.unauthorized_entities(actor, [location]):
                raise AuthorizationError(
                    f"User does not have access to entity {location}",
                    unauthorized_entities=[location],
                )
        elif conflict.entity_type == SyncEntityType.INCIDENT.value and not actor.is_privileged:
            raise AuthorizationError("Incident conflicts require coordinator access")

        strategy = resolution.get("resolutionStrategy") or "last_write_wins"
        with self.db.transaction():
            resolved, winner = self.conflicts.resolve_conflict(
                conflict_id,
                strategy,
                resolved_by=actor.id,
                resolved_data=resolution.get("resolvedData"),
            )
            version = self._apply_resolution(resolved.entity_type, resolved.entity_id, resolved.resolved_data, winner)

        return {
            "conflictId": conflict_id,
            "success": True,
            "resolvedData": resolved.resolved_data,
            "winner": winner,
            "serverId": resolved.entity_id,
            "version": version,
            "message": "Conflict resolved successfully",
        }

    def resolve_many(self, resolutions: List[Dict[str, Any]], actor: Principal) -> List[Dict[str, Any]]:
        results = []
        for resolution in resolutions:
            try:
                results.append(self.resolve(resolution, actor))
            except DRMSError as e:
                self.logger.warning(f"Resolution of {resolution.get('conflictId')} failed: {e}")
                results.append({
                    "conflictId": resolution.get("conflictId"),
                    "success": False,
                    "code": e.code,
                    "message": e.message,
                })
        return results

    def _apply_resolution(
        self,
        kind: str,
        record_id: str,
        data: Optional[Dict[str, Any]],
        winner: str,
    ) -> Optional[int]:
        table = TYPE_TABLES.get(kind)
        record = self.db.get_by_id(table, record_id) if table else None
        if record is None:
            raise NotFoundError(f"{kind} record not found", resource=table, resource_id=record_id)
        if winner == "server" or not data:
            return record["version_number"]

        columns = set(self.db.columns(table)) - PROTECTED_COLUMNS
        changes = {k: v for k, v in data.items() if k in columns}
        changes["version_number"] = record["version_number"] + 1
        self.db.update(table, record_id, changes)
        self.logger.info(f"Applied {winner} resolution to {kind} {record_id} (v{changes['version_number']})")
        return changes["version_number"]
