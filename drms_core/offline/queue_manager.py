# =============================================================================
# drms_core/offline/queue_manager.py
# Device Sync Queue: enqueue, backoff, parking and metrics
# =============================================================================
"""
SyncQueueManager - Owns the persistent queue of mutations awaiting submission.

Item status is derived, never stored:
- pending:  never attempted, or its retry time has passed
- retrying: waiting out a backoff delay
- failed:   parked at the attempt cap, kept for manual inspection

Failures back off exponentially: min(2**attempts * base_delay, max_delay).
"""

from __future__ import annotations
import threading
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from drms_core.errors import NotFoundError
from drms_core.logging import get_logger
from drms_core.models.enums import SyncAction, SyncEntityType
from drms_core.models.records import QueueItem, format_timestamp, utcnow
from drms_core.offline.local_store import LocalStore
from drms_core.services.base_service import check_enum

logger = get_logger(__name__)

MIN_PRIORITY = 1
MAX_PRIORITY = 10
DEFAULT_PRIORITY = 5

STATUS_PENDING = "pending"
STATUS_RETRYING = "retrying"
STATUS_FAILED = "failed"
ITEM_STATUSES = (STATUS_PENDING, STATUS_RETRYING, STATUS_FAILED)

SORT_KEYS = {
    "priority": lambda item: item.priority,
    "created_at": lambda item: item.created_at,
    "attempts": lambda item: item.attempts,
}


def clamp_priority(priority: Optional[int]) -> int:
    if priority is None:
        return DEFAULT_PRIORITY
    return max(MIN_PRIORITY, min(MAX_PRIORITY, int(priority)))


class SyncQueueManager:
    """Queue operations over the local store; mutations are serialized by an RLock."""

    def __init__(
        self,
        store: LocalStore,
        base_delay: float = 1.0,
        max_delay: float = 300.0,
        max_attempts: int = 3,
    ):
        self.store = store
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self._lock = threading.RLock()

    # =========================================================================
    # STATUS / BACKOFF
    # =========================================================================

    def compute_backoff(self, attempts: int) -> float:
        """Delay in seconds before the next retry after `attempts` failures."""
        return min((2 ** attempts) * self.base_delay, self.max_delay)

    def is_parked(self, item: QueueItem) -> bool:
        return item.attempts >= self.max_attempts

    def get_item_status(self, item: QueueItem, now: Optional[datetime] = None) -> str:
        if self.is_parked(item):
            return STATUS_FAILED
        now = now or utcnow()
        if item.next_retry is not None and item.next_retry > now:
            return STATUS_RETRYING
        return STATUS_PENDING

    # =========================================================================
    # ENQUEUE / READ
    # =========================================================================

    def add_to_queue(
        self,
        entity_type: str,
        action: str,
        entity_id: str,
        data: Dict[str, Any],
        priority: Optional[int] = None,
    ) -> QueueItem:
        """
        Raises:
            ValidationError: unknown entity type or action
        """
        check_enum(SyncEntityType, entity_type, "entity_type")
        check_enum(SyncAction, action, "action")

        item = QueueItem(
            entity_type=entity_type,
            action=action,
            entity_id=entity_id,
            data=dict(data),
            priority=clamp_priority(priority),
            version=int(data.get("version") or data.get("versionNumber") or 1),
        )
        with self._lock:
            self.store.save_queue_item(item)
        logger.info(f"Queued {action} {entity_type} {entity_id} (priority {item.priority})")
        return item

    def get_item(self, item_id: str) -> Optional[QueueItem]:
        return self.store.load_queue_item(item_id)

    def require_item(self, item_id: str) -> QueueItem:
        item = self.get_item(item_id)
        if item is None:
            raise NotFoundError(f"Queue item not found: {item_id}", resource="sync_queue", resource_id=item_id)
        return item

    def get_queue(self) -> List[QueueItem]:
        """Every item, highest priority first, oldest first within a priority."""
        return self.store.load_queue_items()

    def get_items(
        self,
        entity_type: Optional[str] = None,
        status: Optional[str] = None,
        sort_by: str = "priority",
        sort_order: str = "desc",
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[QueueItem]:
        items = self.get_queue()
        if entity_type:
            items = [i for i in items if i.entity_type == entity_type]
        if status:
            now = utcnow()
            items = [i for i in items if self.get_item_status(i, now) == status]

        key = SORT_KEYS.get(sort_by, SORT_KEYS["priority"])
        items.sort(key=key, reverse=sort_order == "desc")

        end = offset + limit if limit else None
        return items[offset:end]

    def get_ready_for_retry(self, limit: Optional[int] = None, now: Optional[datetime] = None) -> List[QueueItem]:
        """Items due for submission: not parked and past any backoff."""
        now = now or utcnow()
        ready = [i for i in self.get_queue() if self.get_item_status(i, now) == STATUS_PENDING]
        ready.sort(key=lambda i: (-i.priority, i.created_at))
        return ready[:limit] if limit else ready

    def count(self) -> int:
        return self.store.count_queue_items()

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def mark_as_retrying(self, item_id: str, next_retry: datetime, error: Optional[str] = None) -> QueueItem:
        """Record a failed attempt with an explicit retry time."""
        with self._lock:
            item = self.require_item(item_id)
            item.attempts += 1
            item.last_attempt = utcnow()
            item.next_retry = next_retry
            item.error = error
            self.store.save_queue_item(item)
        return item

    def mark_failed(self, item_id: str, error: str) -> QueueItem:
        """
        Record a failed attempt and schedule the backoff.

        At the attempt cap the item is parked: it stays queued with no
        next_retry until someone resets or clears it.
        """
        with self._lock:
            item = self.require_item(item_id)
            item.attempts += 1
            item.last_attempt = utcnow()
            item.error = error
            if self.is_parked(item):
                item.next_retry = None
                logger.error(
                    f"Queue item {item.id} ({item.entity_type} {item.entity_id}) parked "
                    f"after {item.attempts} attempts: {error}"
                )
            else:
                delay = self.compute_backoff(item.attempts)
                item.next_retry = item.last_attempt + timedelta(seconds=delay)
                logger.warning(
                    f"Queue item {item.id} failed (attempt {item.attempts}), retry in {delay:.0f}s: {error}"
                )
            self.store.save_queue_item(item)
        return item

    def remove_from_queue(self, item_id: str) -> bool:
        with self._lock:
            removed = self.store.delete_queue_item(item_id)
        if removed:
            logger.debug(f"Removed queue item {item_id}")
        return removed

    def reset_failed_items(self) -> int:
        """Give parked items a fresh set of attempts."""
        with self._lock:
            parked = [i for i in self.get_queue() if self.is_parked(i)]
            for item in parked:
                item.attempts = 0
                item.last_attempt = None
                item.next_retry = None
                item.error = None
                self.store.save_queue_item(item)
        logger.info(f"Reset {len(parked)} failed items for retry")
        return len(parked)

    def clear_failed_items(self) -> int:
        with self._lock:
            parked = [i for i in self.get_queue() if self.is_parked(i)]
            for item in parked:
                self.store.delete_queue_item(item.id)
        logger.info(f"Cleared {len(parked)} failed items")
        return len(parked)

    def prioritize_item(self, item_id: str, priority: int) -> QueueItem:
        with self._lock:
            item = self.require_item(item_id)
            item.priority = clamp_priority(priority)
            self.store.save_queue_item(item)
        return item

    def reprioritize_type(self, entity_type: str, priority: int) -> int:
        check_enum(SyncEntityType, entity_type, "entity_type")
        new_priority = clamp_priority(priority)
        with self._lock:
            items = [i for i in self.get_queue() if i.entity_type == entity_type]
            for item in items:
                item.priority = new_priority
                self.store.save_queue_item(item)
        return len(items)

    # =========================================================================
    # METRICS
    # =========================================================================

    def get_metrics(self) -> Dict[str, Any]:
        items = self.get_queue()
        now = utcnow()
        metrics: Dict[str, Any] = {
            "total": len(items),
            STATUS_PENDING: 0,
            STATUS_RETRYING: 0,
            STATUS_FAILED: 0,
            "avg_attempts": 0.0,
            "oldest_pending": None,
            "by_type": {t.value: 0 for t in SyncEntityType},
            "by_action": {a.value: 0 for a in SyncAction},
        }
        if not items:
            return metrics

        oldest: Optional[datetime] = None
        for item in items:
            status = self.get_item_status(item, now)
            metrics[status] += 1
            if status == STATUS_PENDING and (oldest is None or item.created_at < oldest):
                oldest = item.created_at
            metrics["by_type"][item.entity_type] = metrics["by_type"].get(item.entity_type, 0) + 1
            metrics["by_action"][item.action] = metrics["by_action"].get(item.action, 0) + 1

        metrics["avg_attempts"] = sum(i.attempts for i in items) / len(items)
        metrics["oldest_pending"] = format_timestamp(oldest)
        return metrics

    def describe(self, item: QueueItem) -> Dict[str, Any]:
        """Queue item plus its derived status, for dashboards."""
        return {**item.to_dict(), "status": self.get_item_status(item)}
