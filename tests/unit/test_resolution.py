"""
Tests for conflict resolution strategies shared by the device and the server.
"""

import pytest

from drms_core.errors import ValidationError
from drms_core.models.records import ConflictRecord


def make_conflict(local_ts=None, server_ts=None, **kwargs):
    return ConflictRecord(
        entity_type="assessment",
        entity_id="a-1",
        local_version=kwargs.get("local_version", 2),
        server_version=kwargs.get("server_version", 3),
        local_data=kwargs.get("local_data", {"priority": "HIGH", "location": "North gate"}),
        server_data=kwargs.get("server_data", {"priority": "LOW", "status": "VERIFIED"}),
        metadata={"local_last_modified": local_ts, "server_last_modified": server_ts},
    )


class TestLastWriteWins:
    """Tests for the last_write_wins strategy"""

    def test_newer_local_wins(self):
        """The later timestamp wins"""
        from drms_core.models.resolution import resolve_data

        conflict = make_conflict("2024-03-02T10:00:00Z", "2024-03-01T10:00:00Z")

        data, winner = resolve_data(conflict, "last_write_wins")

        assert winner == "local"
        assert data["priority"] == "HIGH"

    def test_newer_server_wins(self):
        """A newer server copy beats the device copy"""
        from drms_core.models.resolution import resolve_data

        conflict = make_conflict("2024-03-01T10:00:00Z", "2024-03-02T10:00:00+00:00")

        _, winner = resolve_data(conflict, "last_write_wins")

        assert winner == "server"

    def test_tie_goes_to_server(self):
        """Equal timestamps pick the server so every device agrees"""
        from drms_core.models.resolution import resolve_data

        conflict = make_conflict("2024-03-01T10:00:00Z", "2024-03-01T10:00:00+00:00")

        _, winner = resolve_data(conflict, "last_write_wins")

        assert winner == "server"

    def test_missing_local_timestamp_counts_as_epoch(self):
        """A device copy without a timestamp loses"""
        from drms_core.models.resolution import resolve_data

        conflict = make_conflict(None, "2024-03-01T10:00:00Z")

        _, winner = resolve_data(conflict, "last_write_wins")

        assert winner == "server"

    def test_both_missing_goes_to_server(self):
        """Two missing timestamps are a tie"""
        from drms_core.models.resolution import resolve_data

        _, winner = resolve_data(make_conflict(None, None), "last_write_wins")

        assert winner == "server"

    def test_naive_timestamp_treated_as_utc(self):
        """Naive timestamps compare as UTC"""
        from drms_core.models.resolution import resolve_data

        conflict = make_conflict("2024-03-01T10:00:01", "2024-03-01T10:00:00Z")

        _, winner = resolve_data(conflict, "last_write_wins")

        assert winner == "local"


class TestOtherStrategies:
    """Tests for manual and merge resolution"""

    def test_manual_uses_supplied_data(self):
        """Manual resolution returns exactly what the coordinator chose"""
        from drms_core.models.resolution import resolve_data

        data, winner = resolve_data(make_conflict(), "manual", {"priority": "CRITICAL"})

        assert winner == "manual"
        assert data == {"priority": "CRITICAL"}

    def test_manual_without_data_rejected(self):
        """Manual resolution needs resolved data"""
        from drms_core.models.resolution import resolve_data

        with pytest.raises(ValidationError):
            resolve_data(make_conflict(), "manual")

    def test_merge_prefers_local_fields(self):
        """Merge overlays the device copy on the server copy and bumps the version"""
        from drms_core.models.resolution import resolve_data

        conflict = make_conflict("2024-03-02T10:00:00Z", "2024-03-01T10:00:00Z")

        data, winner = resolve_data(conflict, "merge")

        assert winner == "merged"
        assert data["priority"] == "HIGH"
        assert data["status"] == "VERIFIED"
        assert data["location"] == "North gate"
        assert data["version"] == 4
        assert data["lastModified"].startswith("2024-03-02T10:00:00")

    def test_unknown_strategy_rejected(self):
        """Unsupported strategies raise ValidationError"""
        from drms_core.models.resolution import resolve_data

        with pytest.raises(ValidationError):
            resolve_data(make_conflict(), "coin_flip")


class TestLastModifiedOf:
    """Tests for timestamp extraction"""

    @pytest.mark.parametrize("key", ["lastModified", "last_modified", "updated_at", "updatedAt"])
    def test_reads_known_keys(self, key):
        """Each of the accepted timestamp keys is recognised"""
        from drms_core.models.resolution import last_modified_of

        ts = last_modified_of({key: "2024-01-01T00:00:00Z"})

        assert ts.year == 2024
        assert ts.tzinfo is not None

    def test_missing_timestamp(self):
        """Records without a timestamp return None"""
        from drms_core.models.resolution import last_modified_of

        assert last_modified_of({"id": "x"}) is None
