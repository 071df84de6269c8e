# =============================================================================
# drms_core/offline/sync_engine.py
# Queue Submission Engine
# =============================================================================
"""
SyncEngine - Pushes the device sync queue to POST /api/v1/sync/batch.

Features:
- Batches ordered by priority (desc) then age (asc), at most 100 items
- Per-result handling: success, duplicate, conflict, failed
- Exponential backoff with keyed retry timers (DelayedTaskScheduler)
- Optional periodic background loop, sync on reconnect
- Status callbacks for dashboards
"""

from __future__ import annotations
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from drms_core.errors import DRMSError, SyncError
from drms_core.logging import get_logger
from drms_core.models.enums import SyncEntityType, SyncStatus
from drms_core.models.records import QueueItem, SyncResult, format_timestamp, utcnow
from drms_core.offline.api_client import DRMSApiClient
from drms_core.offline.conflict_resolver import ConflictResolver
from drms_core.offline.connection_manager import ConnectionManager, ConnectionState, ConnectionStatus
from drms_core.offline.local_store import LocalStore, table_for
from drms_core.offline.queue_manager import SyncQueueManager
from drms_core.offline.scheduler import DelayedTaskScheduler

logger = get_logger(__name__)

MAX_BATCH_SIZE = 100


@dataclass
class SyncBatchResult:
    successful: List[SyncResult] = field(default_factory=list)
    duplicates: List[SyncResult] = field(default_factory=list)
    conflicts: List[SyncResult] = field(default_factory=list)
    failed: List[SyncResult] = field(default_factory=list)

    @property
    def total_processed(self) -> int:
        return len(self.successful) + len(self.duplicates) + len(self.conflicts) + len(self.failed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "successful": [r.to_dict() for r in self.successful],
            "duplicates": [r.to_dict() for r in self.duplicates],
            "conflicts": [r.to_dict() for r in self.conflicts],
            "failed": [r.to_dict() for r in self.failed],
            "total_processed": self.total_processed,
        }


@dataclass
class SyncState:
    """Current sync state."""
    is_syncing: bool = False
    last_sync: Optional[datetime] = None
    last_sync_success: Optional[datetime] = None
    last_error: Optional[str] = None
    total_synced: int = 0
    total_conflicts: int = 0


def to_change(item: QueueItem) -> Dict[str, Any]:
    """Wire form of a queue item for the batch endpoint."""
    data = dict(item.data)
    if item.entity_type == SyncEntityType.ENTITY.value:
        location = item.entity_id
    else:
        location = data.get("entity_id") or data.get("entityId") or ""
    return {
        "type": item.entity_type,
        "action": item.action,
        "data": data,
        "offlineId": item.offline_id,
        "recordId": item.entity_id,
        "entityUuid": location,
        "versionNumber": int(data.get("version") or data.get("versionNumber") or item.version),
        "lastModified": data.get("lastModified") or format_timestamp(item.created_at),
    }


class SyncEngine:
    """
    Usage:
        engine = SyncEngine(store, queue, resolver, client, connection)
        engine.sync_now()
        engine.start()     # periodic background sync
        engine.destroy()   # stop the loop and cancel retry timers
    """

    def __init__(
        self,
        store: LocalStore,
        queue: SyncQueueManager,
        resolver: ConflictResolver,
        client: DRMSApiClient,
        connection: ConnectionManager,
        scheduler: Optional[DelayedTaskScheduler] = None,
        interval_seconds: float = 30,
        batch_size: int = MAX_BATCH_SIZE,
    ):
        self.store = store
        self.queue = queue
        self.resolver = resolver
        self.client = client
        self.connection = connection
        self.scheduler = scheduler or DelayedTaskScheduler("sync-retry")
        self.interval_seconds = interval_seconds
        self.batch_size = min(batch_size, MAX_BATCH_SIZE)

        self._state = SyncState()
        self._sync_lock = threading.Lock()
        self._worker: Optional[threading.Thread] = None
        self._halt = threading.Event()
        self._listeners: List[Callable[[SyncState], None]] = []
        self._destroyed = False

        self.connection.register_callback(self._on_connection_change)

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_syncing(self) -> bool:
        return self._state.is_syncing

    # =========================================================================
    # SYNC
    # =========================================================================

    def sync_now(self, max_items: Optional[int] = None) -> Optional[SyncBatchResult]:
        """
        Submit the next batch of due queue items.

        Returns:
            None when offline or a sync is already running
        """
        if not self.connection.is_online:
            logger.debug("Offline, sync skipped")
            return None
        if not self._sync_lock.acquire(blocking=False):
            logger.debug("Sync already in progress")
            return None

        self._state.is_syncing = True
        self._state.last_sync = utcnow()
        self._publish()
        try:
            limit = min(max_items or self.batch_size, self.batch_size)
            items = self.queue.get_ready_for_retry(limit=limit)
            if not items:
                return SyncBatchResult()

            logger.info(f"Syncing {len(items)} queued changes")
            for item in items:
                self._mark_cache(item, SyncStatus.SYNCING.value)
            result = self._process_batch(items)

            self._state.total_synced += len(result.successful) + len(result.duplicates)
            self._state.total_conflicts += len(result.conflicts)
            if not result.failed:
                self._state.last_sync_success = utcnow()
                self._state.last_error = None
            logger.info(
                f"Sync complete: {len(result.successful)} successful, {len(result.duplicates)} duplicates, "
                f"{len(result.conflicts)} conflicts, {len(result.failed)} failed"
            )
            return result
        finally:
            self._state.is_syncing = False
            self._sync_lock.release()
            self._publish()

    def _process_batch(self, items: List[QueueItem]) -> SyncBatchResult:
        result = SyncBatchResult()
        try:
            responses = self.client.submit_batch([to_change(item) for item in items])
        except SyncError as e:
            logger.error(f"Batch submission failed: {e.message}")
            self._state.last_error = e.message
            for item in items:
                self._handle_failure(item, e.message)
                result.failed.append(SyncResult(item.offline_id, "failed", message=e.message))
            return result

        by_offline_id = {r.offline_id: r for r in responses}
        for index, item in enumerate(items):
            sync_result = by_offline_id.get(item.offline_id)
            if sync_result is None and index < len(responses):
                sync_result = responses[index]
            if sync_result is None:
                sync_result = SyncResult(item.offline_id, "failed", message="No result returned for change")

            if sync_result.status == "success":
                self._handle_success(item)
                result.successful.append(sync_result)
            elif sync_result.status == "duplicate":
                self._handle_success(item)
                result.duplicates.append(sync_result)
            elif sync_result.status == "conflict":
                if self._handle_conflict(item, sync_result):
                    result.conflicts.append(sync_result)
                else:
                    result.failed.append(sync_result)
            else:
                self._handle_failure(item, sync_result.message or "Sync failed")
                result.failed.append(sync_result)
        return result

    def _handle_success(self, item: QueueItem) -> None:
        self._mark_cache(item, SyncStatus.SYNCED.value)
        self.queue.remove_from_queue(item.id)
        self.scheduler.cancel(item.id)

    def _handle_conflict(self, item: QueueItem, sync_result: SyncResult) -> bool:
        server_data = dict(sync_result.conflict_data or {})
        server_version = int(server_data.get("serverVersion") or server_data.get("version_number") or 0)
        try:
            outcome = self.resolver.handle_sync_conflict(
                item.entity_type,
                item.entity_id,
                item.data,
                server_data,
                item.version,
                server_version,
                local_modified=to_change(item)["lastModified"],
            )
        except DRMSError as e:
            logger.error(f"Conflict resolution failed for {item.entity_type} {item.entity_id}: {e.message}")
            self._handle_failure(item, "Conflict resolution failed")
            return False

        logger.info(f"Conflict on {item.entity_type} {item.entity_id}: {outcome.message}")
        self.queue.remove_from_queue(item.id)
        self.scheduler.cancel(item.id)
        if outcome.winner != "server":
            self._requeue_resolved(item, outcome.resolved_data, server_version)
        return True

    def _requeue_resolved(self, item: QueueItem, resolved: Dict[str, Any], server_version: int) -> None:
        """Push a locally won or merged copy again, this time on top of the server's version."""
        data = dict(resolved)
        data["version"] = server_version
        data.pop("versionNumber", None)
        data["offlineId"] = item.offline_id
        self.queue.add_to_queue(item.entity_type, item.action, item.entity_id, data, priority=item.priority)
        self._mark_cache(item, SyncStatus.PENDING.value)
        logger.info(f"Re-queued resolved {item.entity_type} {item.entity_id} at server version {server_version}")

    def _handle_failure(self, item: QueueItem, message: str) -> None:
        updated = self.queue.mark_failed(item.id, message)
        if self.queue.is_parked(updated):
            self._mark_cache(item, SyncStatus.FAILED.value)
            self.scheduler.cancel(item.id)
            return

        self._mark_cache(item, SyncStatus.PENDING.value)
        delay = max(0.0, (updated.next_retry - utcnow()).total_seconds())
        self.scheduler.schedule(item.id, delay, self._retry_due)

    def _retry_due(self) -> None:
        if self.connection.is_online:
            self.sync_now()

    def _mark_cache(self, item: QueueItem, status: str) -> None:
        try:
            self.store.set_sync_status(table_for(item.entity_type), item.entity_id, status)
        except DRMSError as e:
            logger.warning(f"Could not tag cached {item.entity_type} {item.entity_id}: {e.message}")

    # =========================================================================
    # QUEUE CONTROL
    # =========================================================================

    def retry_failed_items(self) -> Optional[SyncBatchResult]:
        reset = self.queue.reset_failed_items()
        logger.info(f"Retrying {reset} parked items")
        return self.sync_now()

    def get_queue_status(self) -> Dict[str, Any]:
        return {
            **self.queue.get_metrics(),
            "is_syncing": self._state.is_syncing,
            "is_online": self.connection.is_online,
            "scheduled_retries": len(self.scheduler.pending()),
            "last_sync": format_timestamp(self._state.last_sync),
            "last_success": format_timestamp(self._state.last_sync_success),
            "last_error": self._state.last_error,
        }


    # =========================================================================
    # BACKGROUND LOOP
    # =========================================================================

    def start(self) -> None:
        """Sync every interval_seconds while online and the queue is non-empty."""
        if self._destroyed:
            raise SyncError("Sync engine has been destroyed", operation="start")
        if self._worker is not None and self._worker.is_alive():
            return
        self._halt.clear()
        self._worker = threading.Thread(target=self._run_periodic, name="drms-sync", daemon=True)
        self._worker.start()
        logger.info(f"Periodic sync every {self.interval_seconds:g}s")

    def stop(self) -> None:
        self._halt.set()
        worker, self._worker = self._worker, None
        if worker is not None:
            worker.join(timeout=10)
            logger.info("Periodic sync stopped")

    def _run_periodic(self) -> None:
        while not self._halt.wait(self.interval_seconds):
            if not (self.connection.is_online and self.queue.count()):
                continue
            try:
                self.sync_now()
            except Exception as e:
                logger.error(f"Periodic sync crashed: {e}", exc_info=True)

    def _on_connection_change(self, state: ConnectionState) -> None:
        if state.status is ConnectionStatus.ONLINE:
            logger.info("Back online, draining sync queue")
            self.sync_now()

    def destroy(self) -> None:
        """Stop the loop, cancel retry timers and detach from the connection monitor."""
        if self._destroyed:
            return
        self._destroyed = True
        self.stop()
        self.scheduler.shutdown()
        self.connection.unregister_callback(self._on_connection_change)
        self._listeners.clear()

    # =========================================================================
    # LISTENERS
    # =========================================================================

    def register_callback(self, callback: Callable[[SyncState], None]) -> Callable[[], None]:
        """Returns a function that unregisters the callback."""
        if callback not in self._listeners:
            self._listeners.append(callback)
        return lambda: self.unregister_callback(callback)

    def unregister_callback(self, callback: Callable[[SyncState], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _publish(self) -> None:
        for listener in tuple(self._listeners):
            try:
                listener(self._state)
            except Exception as e:
                logger.error(f"Sync listener {listener!r} failed: {e}", exc_info=True)
