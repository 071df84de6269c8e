"""
Tests for the server side of offline sync: batch apply, pull, resolve, rate limiting.
"""

import pytest

from drms_core.errors import (
    AuthorizationError,
    ConflictAlreadyResolvedError,
    RateLimitError,
    ValidationError,
)


def create_change(entity_id: str, offline_id: str = "off-1", **data):
    return {
        "type": "assessment",
        "action": "create",
        "offlineId": offline_id,
        "entityUuid": entity_id,
        "versionNumber": 1,
        "lastModified": "2024-05-01T00:00:00Z",
        "data": {"rapid_assessment_type": "HEALTH", **data},
    }


def update_change(entity_id: str, record_id: str, version: int, offline_id: str = "off-u", **data):
    return {
        "type": "assessment",
        "action": "update",
        "offlineId": offline_id,
        "recordId": record_id,
        "entityUuid": entity_id,
        "versionNumber": version,
        "lastModified": "2099-01-01T00:00:00Z",
        "data": data,
    }


class TestProcessBatch:
    """Tests for SyncService.process_batch"""

    def test_create_succeeds(self, registry, assessor, assigned):
        """A create returns success with the new server id"""
        results = registry.sync.process_batch([create_change(assigned["id"])], assessor)

        assert results[0].status == "success"
        created = registry.db.get_by_id("rapid_assessments", results[0].server_id)
        assert created["offline_id"] == "off-1"
        assert created["is_offline_created"] is True

    def test_replay_is_duplicate(self, registry, assessor, assigned):
        """Replaying an offlineId answers duplicate with the original id"""
        first = registry.sync.process_batch([create_change(assigned["id"])], assessor)[0]
        replay = registry.sync.process_batch([create_change(assigned["id"])], assessor)[0]

        assert replay.status == "duplicate"
        assert replay.server_id == first.server_id
        assert registry.db.count("rapid_assessments") == 1

    def test_stale_version_is_conflict(self, registry, assessor, assigned):
        """An update against an old version records a conflict and leaves the row alone"""
        created = registry.sync.process_batch([create_change(assigned["id"])], assessor)[0]
        registry.sync.process_batch(
            [update_change(assigned["id"], created.server_id, 1, priority="HIGH")], assessor,
        )

        stale = registry.sync.process_batch(
            [update_change(assigned["id"], created.server_id, 1, offline_id="off-u2", priority="LOW")], assessor,
        )[0]

        assert stale.status == "conflict"
        assert stale.conflict_data["serverVersion"] == 2
        assert stale.conflict_data["conflictId"]
        assert registry.db.get_by_id("rapid_assessments", created.server_id)["priority"] == "HIGH"
        assert registry.conflicts.get_summary()["unresolvedConflicts"] == 1

    def test_failed_change_rolls_back_batch(self, registry, assessor, assigned):
        """One bad change fails every change and nothing is written"""
        good = create_change(assigned["id"], "off-good")
        bad = create_change(assigned["id"], "off-bad", rapid_assessment_type="ASTROLOGY")

        results = registry.sync.process_batch([good, bad], assessor)

        assert [r.status for r in results] == ["failed", "failed"]
        assert all(r.message == "Batch transaction failed and was rolled back" for r in results)
        assert registry.db.count("rapid_assessments") == 0

    def test_unassigned_entity_rejected(self, registry, assessor, assigned, other_entity):
        """Changes for entities the user is not assigned to are refused up front"""
        with pytest.raises(AuthorizationError) as exc_info:
            registry.sync.process_batch([create_change(other_entity["id"])], assessor)

        assert exc_info.value.details["unauthorizedEntities"] == [other_entity["id"]]

    def test_incident_changes_need_coordinator(self, registry, assessor, assigned):
        """Field users cannot push incident changes"""
        change = {"type": "incident", "action": "create", "offlineId": "i-1",
                  "data": {"type": "FLOOD", "description": "x", "location": "y"}}

        with pytest.raises(AuthorizationError):
            registry.sync.process_batch([change], assessor)

    def test_oversized_batch_rejected(self, registry, assessor, assigned):
        """More than 100 changes is a validation error"""
        changes = [create_change(assigned["id"], f"off-{n}") for n in range(101)]

        with pytest.raises(ValidationError):
            registry.sync.process_batch(changes, assessor)

    def test_malformed_change_rejected(self, registry, assessor, assigned):
        """Unknown types fail validation"""
        with pytest.raises(ValidationError):
            registry.sync.process_batch([{**create_change(assigned["id"]), "type": "donor"}], assessor)

    def test_empty_batch(self, registry, assessor):
        """An empty batch is a no-op"""
        assert registry.sync.process_batch([], assessor) == []


class TestPull:
    """Tests for SyncService.pull_changes"""

    def test_pull_scoped_to_assignments(self, registry, assessor, assigned, other_entity):
        """Field users only receive records at their entities"""
        registry.sync.process_batch([create_change(assigned["id"])], assessor)

        pulled = registry.sync.pull_changes(assessor, types=["entity", "assessment"])

        locations = {item["entityUuid"] for item in pulled["items"]}
        assert locations == {assigned["id"]}
        assert pulled["hasMore"] is False

    def test_pull_limit_and_cursor(self, registry, admin, entity, other_entity):
        """hasMore and nextTimestamp page through changes"""
        first = registry.sync.pull_changes(admin, types=["entity"], limit=1)

        assert first["totalCount"] == 1
        assert first["hasMore"] is True

        second = registry.sync.pull_changes(admin, last_sync_timestamp=first["nextTimestamp"], types=["entity"])
        assert [i["id"] for i in second["items"]] != [i["id"] for i in first["items"]]

    def test_invalid_limit(self, registry, admin):
        """Limits outside 1..1000 are rejected"""
        with pytest.raises(ValidationError):
            registry.sync.pull_changes(admin, limit=0)


class TestResolve:
    """Tests for SyncService.resolve"""

    def _conflict(self, registry, assessor, entity_id):
        created = registry.sync.process_batch([create_change(entity_id)], assessor)[0]
        registry.sync.process_batch([update_change(entity_id, created.server_id, 1, priority="HIGH")], assessor)
        stale = registry.sync.process_batch(
            [update_change(entity_id, created.server_id, 1, offline_id="off-u2", priority="LOW")], assessor,
        )[0]
        return created.server_id, stale.conflict_data["conflictId"]

    def test_manual_resolution_applies_to_record(self, registry, admin, assessor, assigned):
        """The resolved data is written and the version bumped"""
        record_id, conflict_id = self._conflict(registry, assessor, assigned["id"])

        result = registry.sync.resolve(
            {"conflictId": conflict_id, "resolutionStrategy": "manual", "resolvedData": {"priority": "CRITICAL"}},
            admin,
        )

        assert result["winner"] == "manual"
        assert result["version"] == 3
        assert registry.db.get_by_id("rapid_assessments", record_id)["priority"] == "CRITICAL"

    def test_second_resolution_refused(self, registry, admin, assessor, assigned):
        """A conflict resolves once"""
        _, conflict_id = self._conflict(registry, assessor, assigned["id"])
        registry.sync.resolve({"conflictId": conflict_id}, admin)

        with pytest.raises(ConflictAlreadyResolvedError):
            registry.sync.resolve({"conflictId": conflict_id}, admin)

    def test_resolve_many_reports_each(self, registry, admin, assessor, assigned):
        """Bulk resolution reports failures per conflict"""
        _, conflict_id = self._conflict(registry, assessor, assigned["id"])

        results = registry.sync.resolve_many(
            [{"conflictId": conflict_id}, {"conflictId": conflict_id}], admin,
        )

        assert results[0]["success"] is True
        assert results[1]["success"] is False
        assert results[1]["code"] == "SYNC_409"

    def test_missing_conflict_id(self, registry, admin):
        """conflictId is required"""
        with pytest.raises(ValidationError):
            registry.sync.resolve({}, admin)


class TestRateLimiter:
    """Tests for the fixed-window rate limiter"""

    def test_window_limits_and_resets(self):
        """Requests over the limit fail until the window rolls over"""
        from drms_core.services.sync_service import RateLimiter

        now = [0.0]
        limiter = RateLimiter(max_requests=2, window_seconds=60, clock=lambda: now[0])

        limiter.check("device-1")
        limiter.check("device-1")
        with pytest.raises(RateLimitError) as exc_info:
            limiter.check("device-1")
        assert exc_info.value.http_status == 429

        limiter.check("device-2")
        now[0] = 61.0
        limiter.check("device-1")

    def test_batch_is_rate_limited_per_client(self, registry, assessor, assigned):
        """The service checks the limiter before doing any work"""
        from drms_core.services.sync_service import RateLimiter

        registry.sync.rate_limiter = RateLimiter(max_requests=1, window_seconds=60)
        registry.sync.process_batch([], assessor, client_id="device-1")

        with pytest.raises(RateLimitError):
            registry.sync.process_batch([], assessor, client_id="device-1")
