"""
Tests for the device sync queue: enqueue, backoff, parking and metrics.
"""

import pytest
from datetime import timedelta

from drms_core.errors import NotFoundError, ValidationError


class TestBackoff:
    """Tests for the retry delay curve"""

    def test_doubles_per_attempt(self, local_store):
        """Delay is 2**attempts times the base delay"""
        from drms_core.offline.queue_manager import SyncQueueManager

        manager = SyncQueueManager(local_store, base_delay=1.0, max_delay=300.0)

        assert manager.compute_backoff(0) == 1.0
        assert manager.compute_backoff(1) == 2.0
        assert manager.compute_backoff(3) == 8.0

    def test_capped_at_max_delay(self, local_store):
        """Delay never exceeds max_delay"""
        from drms_core.offline.queue_manager import SyncQueueManager

        manager = SyncQueueManager(local_store, base_delay=1.0, max_delay=300.0)

        assert manager.compute_backoff(9) == 300.0
        assert manager.compute_backoff(20) == 300.0


class TestEnqueue:
    """Tests for adding and reading queue items"""

    def test_add_persists_item(self, queue):
        """Queued items survive a reload from the store"""
        item = queue.add_to_queue("assessment", "create", "a-1", {"entity_id": "e-1"})

        loaded = queue.get_item(item.id)
        assert loaded.entity_id == "a-1"
        assert loaded.data == {"entity_id": "e-1"}
        assert loaded.attempts == 0
        assert queue.count() == 1

    def test_priority_is_clamped(self, queue):
        """Priorities outside 1..10 are pulled into range"""
        high = queue.add_to_queue("assessment", "create", "a-1", {}, priority=42)
        low = queue.add_to_queue("assessment", "create", "a-2", {}, priority=-3)
        default = queue.add_to_queue("assessment", "create", "a-3", {})

        assert high.priority == 10
        assert low.priority == 1
        assert default.priority == 5

    def test_unknown_entity_type_rejected(self, queue):
        """Only the four sync entity types can be queued"""
        with pytest.raises(ValidationError):
            queue.add_to_queue("donor", "create", "d-1", {})

    def test_unknown_action_rejected(self, queue):
        """Only create, update and delete are valid actions"""
        with pytest.raises(ValidationError):
            queue.add_to_queue("assessment", "upsert", "a-1", {})

    def test_offline_id_prefers_payload(self, queue):
        """offline_id comes from the payload when the device set one"""
        item = queue.add_to_queue("response", "create", "r-1", {"offlineId": "off-9"})
        plain = queue.add_to_queue("response", "create", "r-2", {})

        assert item.offline_id == "off-9"
        assert plain.offline_id == plain.id

    def test_ready_items_ordered_by_priority_then_age(self, queue):
        """Highest priority first, oldest first within a priority"""
        first = queue.add_to_queue("assessment", "create", "a-1", {}, priority=5)
        urgent = queue.add_to_queue("assessment", "create", "a-2", {}, priority=9)
        second = queue.add_to_queue("assessment", "create", "a-3", {}, priority=5)

        ready = queue.get_ready_for_retry()

        assert [i.id for i in ready] == [urgent.id, first.id, second.id]

    def test_require_missing_item(self, queue):
        """Mutating an unknown item raises NotFoundError"""
        with pytest.raises(NotFoundError):
            queue.mark_failed("missing", "boom")


class TestFailures:
    """Tests for failed attempts and parking"""

    def test_mark_failed_schedules_backoff(self, queue):
        """One failure bumps attempts by one and sets next_retry"""
        item = queue.add_to_queue("assessment", "create", "a-1", {})

        updated = queue.mark_failed(item.id, "server said no")

        assert updated.attempts == 1
        assert updated.error == "server said no"
        assert updated.next_retry - updated.last_attempt == timedelta(seconds=120)
        assert queue.get_item_status(updated) == "retrying"
        assert queue.get_ready_for_retry() == []

    def test_parked_at_attempt_cap(self, queue):
        """The third failure parks the item instead of scheduling a retry"""
        item = queue.add_to_queue("assessment", "create", "a-1", {})
        for _ in range(3):
            updated = queue.mark_failed(item.id, "still failing")

        assert updated.attempts == 3
        assert updated.next_retry is None
        assert queue.is_parked(updated)
        assert queue.get_item_status(updated) == "failed"
        assert queue.count() == 1

    def test_reset_failed_items(self, queue):
        """Reset gives parked items a fresh set of attempts"""
        item = queue.add_to_queue("assessment", "create", "a-1", {})
        for _ in range(3):
            queue.mark_failed(item.id, "still failing")

        assert queue.reset_failed_items() == 1

        reloaded = queue.get_item(item.id)
        assert reloaded.attempts == 0
        assert reloaded.error is None
        assert queue.get_item_status(reloaded) == "pending"

    def test_clear_failed_items_only_removes_parked(self, queue):
        """Items still retrying are left alone"""
        parked = queue.add_to_queue("assessment", "create", "a-1", {})
        retrying = queue.add_to_queue("assessment", "create", "a-2", {})
        for _ in range(3):
            queue.mark_failed(parked.id, "x")
        queue.mark_failed(retrying.id, "x")

        assert queue.clear_failed_items() == 1
        assert queue.get_item(parked.id) is None
        assert queue.get_item(retrying.id) is not None


class TestMetrics:
    """Tests for queue metrics and filtering"""

    def test_metrics_count_by_status_and_type(self, queue):
        """Metrics split the queue by derived status, type and action"""
        queue.add_to_queue("assessment", "create", "a-1", {})
        failing = queue.add_to_queue("response", "update", "r-1", {})
        queue.mark_failed(failing.id, "x")

        metrics = queue.get_metrics()

        assert metrics["total"] == 2
        assert metrics["pending"] == 1
        assert metrics["retrying"] == 1
        assert metrics["failed"] == 0
        assert metrics["by_type"]["assessment"] == 1
        assert metrics["by_action"]["update"] == 1
        assert metrics["avg_attempts"] == 0.5

    def test_get_items_filters_by_status(self, queue):
        """Status filter uses the derived status"""
        queue.add_to_queue("assessment", "create", "a-1", {})
        failing = queue.add_to_queue("assessment", "create", "a-2", {})
        queue.mark_failed(failing.id, "x")

        retrying = queue.get_items(status="retrying")

        assert [i.id for i in retrying] == [failing.id]

    def test_reprioritize_type(self, queue):
        """Every item of one type gets the new priority"""
        queue.add_to_queue("response", "create", "r-1", {}, priority=2)
        queue.add_to_queue("response", "create", "r-2", {}, priority=3)
        queue.add_to_queue("assessment", "create", "a-1", {}, priority=2)

        assert queue.reprioritize_type("response", 8) == 2
        assert {i.priority for i in queue.get_items(entity_type="response")} == {8}
