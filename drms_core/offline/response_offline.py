# =============================================================================
# drms_core/offline/response_offline.py
# Offline-First Planned Responses
# =============================================================================
"""
OfflineResponseService - Responders plan deliveries whether or not the
API is reachable.

create_response tries the API first. If the server cannot be reached the
response is cached locally as PENDING and queued for the sync engine.
Errors the server actually returned (validation, permissions) are raised,
not queued.
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional

from drms_core.errors import SyncError
from drms_core.logging import get_logger
from drms_core.models.enums import ResponseStatus, SyncAction, SyncEntityType, SyncStatus
from drms_core.models.records import QueueItem, format_timestamp, new_id, utcnow
from drms_core.offline.api_client import DRMSApiClient, is_network_error
from drms_core.offline.connection_manager import ConnectionManager
from drms_core.offline.local_store import LocalStore
from drms_core.offline.queue_manager import SyncQueueManager
from drms_core.services.base_service import ServiceResult

logger = get_logger(__name__)

RESPONSE_PRIORITY = 5


class OfflineResponseService:

    def __init__(
        self,
        store: LocalStore,
        client: DRMSApiClient,
        connection: ConnectionManager,
        queue: SyncQueueManager,
    ):
        self.store = store
        self.client = client
        self.connection = connection
        self.queue = queue

    def create_response(self, data: Dict[str, Any]) -> ServiceResult:
        """
        Returns:
            ServiceResult whose metadata["offline"] says whether the response
            was queued instead of created on the server

        Raises:
            SyncError: the server rejected the response
        """
        if self.connection.is_online:
            try:
                created = self.client.create_response(data)
            except SyncError as e:
                if not is_network_error(e):
                    raise
                logger.warning(f"Response create fell back to offline queue: {e.message}")
            else:
                self.store.put_record("responses", created, SyncStatus.SYNCED.value)
                return ServiceResult.ok(created, metadata={"offline": False})

        return ServiceResult.ok(self._queue_create(data), metadata={"offline": True})

    def _queue_create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        response_id = data.get("id") or new_id()
        now = format_timestamp(utcnow())
        record = {
            **data,
            "id": response_id,
            "offlineId": data.get("offlineId") or data.get("offline_id") or response_id,
            "status": ResponseStatus.PLANNED.value,
            "createdAt": now,
            "lastModified": now,
            "version": 1,
        }
        self.store.put_record("responses", record, SyncStatus.PENDING.value)
        self.queue.add_to_queue(
            SyncEntityType.RESPONSE.value,
            SyncAction.CREATE.value,
            response_id,
            record,
            priority=RESPONSE_PRIORITY,
        )
        logger.info(f"Response {response_id} stored offline for later sync")
        return {**record, "syncStatus": SyncStatus.PENDING.value}

    def sync_pending_responses(self) -> Dict[str, Any]:
        """
        Push queued response creates one by one through POST /responses.

        Returns:
            {"success": int, "failed": int, "errors": [str]}
        """
        summary: Dict[str, Any] = {"success": 0, "failed": 0, "errors": []}
        if not self.connection.is_online:
            return summary

        for item in self.queue.get_ready_for_retry():
            if item.entity_type != SyncEntityType.RESPONSE.value or item.action != SyncAction.CREATE.value:
                continue
            try:
                created = self.client.create_response(item.data)
            except SyncError as e:
                if e.status_code == 409:
                    # The server already holds this create from an earlier attempt
                    self._settle_duplicate(item, e.details.get("existing_id"))
                    summary["success"] += 1
                    continue
                self.queue.mark_failed(item.id, e.message)
                summary["failed"] += 1
                summary["errors"].append(f"Failed to sync create for response {item.entity_id}: {e.message}")
                continue

            if created.get("id") and created["id"] != item.entity_id:
                self.store.delete_record("responses", item.entity_id)
            self.store.put_record("responses", created, SyncStatus.SYNCED.value)
            self.queue.remove_from_queue(item.id)
            summary["success"] += 1

        logger.info(f"Response sync: {summary['success']} synced, {summary['failed']} failed")
        return summary

    def _settle_duplicate(self, item: QueueItem, existing_id: Optional[str]) -> None:
        record = dict(item.data)
        if existing_id and existing_id != item.entity_id:
            self.store.delete_record("responses", item.entity_id)
            record["id"] = existing_id
        self.store.put_record("responses", record, SyncStatus.SYNCED.value)
        self.queue.remove_from_queue(item.id)
        logger.info(f"Response {item.entity_id} already on the server as {record['id']}")

    def get_responses(self, entity_id: Optional[str] = None, assessment_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Server list when online; the local cache otherwise."""
        if self.connection.is_online:
            try:
                responses = self.client.get_responses(entityId=entity_id, assessmentId=assessment_id)
            except SyncError as e:
                if not is_network_error(e):
                    raise
                logger.warning(f"Falling back to cached responses: {e.message}")
            else:
                self.store.put_records("responses", responses)
                return responses
        return self._cached(entity_id, assessment_id)

    def _cached(self, entity_id: Optional[str], assessment_id: Optional[str]) -> List[Dict[str, Any]]:
        records = self.store.list_records("responses", "entity_id = ?", [entity_id]) if entity_id \
            else self.store.list_records("responses")
        rows = [r.to_dict() for r in records]
        if assessment_id:
            rows = [r for r in rows if (r.get("assessment_id") or r.get("assessmentId")) == assessment_id]
        return rows

    def check_assessment_conflicts(self, assessment_id: str) -> Dict[str, Any]:
        """Existing responses already planned against an assessment."""
        existing = [
            r for r in self.get_responses(assessment_id=assessment_id)
            if r.get("syncStatus") != SyncStatus.FAILED.value
        ]
        count = len(existing)
        return {
            "hasConflict": count > 0,
            "conflictingResponses": [r["id"] for r in existing],
            "message": f"{count} existing response(s) found for this assessment" if count
            else "No conflicts detected",
        }
