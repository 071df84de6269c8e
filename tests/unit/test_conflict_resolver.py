"""
Tests for device-side conflict detection and resolution.
"""

import pytest
from datetime import timedelta

from drms_core.errors import ConflictAlreadyResolvedError
from drms_core.models.records import format_timestamp, utcnow


LOCAL = {"id": "a-1", "priority": "HIGH", "lastModified": "2024-05-02T08:00:00Z"}
SERVER = {"id": "a-1", "priority": "LOW", "updated_at": "2024-05-01T08:00:00Z"}


class TestDetection:
    """Tests for version-based detection"""

    def test_same_version_is_not_a_conflict(self, resolver):
        """Matching versions never log a conflict"""
        assert resolver.detect_conflict("assessment", "a-1", LOCAL, SERVER, 2, 2) is None
        assert resolver.get_conflict_history() == []

    def test_version_mismatch_is_logged(self, resolver):
        """A mismatch is persisted with both timestamps"""
        conflict = resolver.detect_conflict("assessment", "a-1", LOCAL, SERVER, 1, 2)

        assert conflict.local_version == 1
        assert conflict.server_version == 2
        assert conflict.metadata["local_last_modified"].startswith("2024-05-02T08:00:00")
        assert conflict.metadata["server_last_modified"].startswith("2024-05-01T08:00:00")
        assert [c.conflict_id for c in resolver.get_conflict_history()] == [conflict.conflict_id]


class TestResolution:
    """Tests for resolving and writing back"""

    def test_auto_resolve_writes_winner_to_cache(self, resolver, local_store):
        """A local winner is cached as PENDING until the server has it"""
        outcome = resolver.handle_sync_conflict("assessment", "a-1", LOCAL, SERVER, 1, 2)

        assert outcome.success
        assert outcome.winner == "local"
        cached = local_store.get_record("assessments", "a-1")
        assert cached.data["priority"] == "HIGH"
        assert cached.sync_status == "PENDING"

    def test_server_winner_is_cached_as_synced(self, resolver, local_store):
        """The server copy needs no push and is cached as SYNCED"""
        newer = {**SERVER, "updated_at": "2024-05-03T08:00:00Z"}

        outcome = resolver.handle_sync_conflict("assessment", "a-1", LOCAL, newer, 1, 2)

        assert outcome.winner == "server"
        cached = local_store.get_record("assessments", "a-1")
        assert cached.data["priority"] == "LOW"
        assert cached.sync_status == "SYNCED"

    def test_explicit_local_timestamp_overrides_payload(self, resolver):
        """The timestamp that went over the wire decides, not the payload field"""
        outcome = resolver.handle_sync_conflict(
            "assessment", "a-1", LOCAL, SERVER, 1, 2, local_modified="2024-04-30T08:00:00Z"
        )

        assert outcome.winner == "server"
        assert outcome.conflict.metadata["local_last_modified"].startswith("2024-04-30T08:00:00")

    def test_no_conflict_returns_server_copy(self, resolver):
        """Equal versions short-circuit to the server data"""
        outcome = resolver.handle_sync_conflict("assessment", "a-1", LOCAL, SERVER, 3, 3)

        assert outcome.message == "No conflict detected"
        assert outcome.resolved_data == SERVER

    def test_resolving_twice_raises(self, resolver):
        """A conflict is resolved at most once"""
        conflict = resolver.detect_conflict("assessment", "a-1", LOCAL, SERVER, 1, 2)
        resolver.resolve_conflict(conflict)

        with pytest.raises(ConflictAlreadyResolvedError):
            resolver.resolve_conflict(conflict)

    def test_manual_resolution_counts_as_manual(self, resolver):
        """Manual resolutions are not counted as automatic"""
        conflict = resolver.detect_conflict("assessment", "a-1", LOCAL, SERVER, 1, 2)

        outcome = resolver.resolve_conflict(conflict, "manual", {"priority": "MEDIUM"}, resolved_by="u-1")

        assert outcome.resolved_data == {"priority": "MEDIUM", "id": "a-1"}
        stats = resolver.get_conflict_stats()
        assert stats.manually_resolved == 1
        assert stats.auto_resolved == 0

    def test_per_type_strategy(self, local_store):
        """Entity types can be configured with their own automatic strategy"""
        from drms_core.offline.conflict_resolver import ConflictResolver

        resolver = ConflictResolver(local_store, strategies={"response": "merge"})

        outcome = resolver.handle_sync_conflict("response", "r-1", {"id": "r-1", "a": 1}, {"id": "r-1", "b": 2}, 1, 2)

        assert outcome.strategy == "merge"
        assert outcome.resolved_data["a"] == 1
        assert outcome.resolved_data["b"] == 2


class TestHistory:
    """Tests for conflict history and cleanup"""

    def test_stats(self, resolver):
        """Stats split by resolution state and entity type"""
        resolver.handle_sync_conflict("assessment", "a-1", LOCAL, SERVER, 1, 2)
        resolver.detect_conflict("response", "r-1", {"id": "r-1"}, {"id": "r-1"}, 1, 2)

        stats = resolver.get_conflict_stats()

        assert stats.total == 2
        assert stats.auto_resolved == 1
        assert stats.unresolved == 1
        assert stats.by_type["assessment"] == 1
        assert stats.by_type["response"] == 1

    def test_clear_old_conflicts(self, resolver, local_store):
        """Only entries older than the cutoff are removed"""
        old = resolver.detect_conflict("assessment", "a-1", LOCAL, SERVER, 1, 2)
        resolver.detect_conflict("assessment", "a-2", LOCAL, SERVER, 1, 2)
        local_store.execute(
            "UPDATE conflict_log SET created_at = ? WHERE conflict_id = ?",
            [format_timestamp(utcnow() - timedelta(days=45)), old.conflict_id],
        )

        assert resolver.clear_old_conflicts(days=30) == 1
        assert len(resolver.get_conflict_history()) == 1
