"""
Tests for the server-side conflict log: paging, summary, export, resolution.
"""

import csv
import io

import pytest

from drms_core.errors import ConflictAlreadyResolvedError, NotFoundError, ValidationError


def record(registry, n: int, entity_type: str = "assessment"):
    return registry.conflicts.record_conflict(
        entity_type=entity_type,
        entity_id=f"rec-{n}",
        local_version=1,
        server_version=2,
        local_data={"priority": "HIGH"},
        server_data={"priority": "LOW"},
        local_last_modified="2024-05-02T00:00:00Z",
        server_last_modified="2024-05-01T00:00:00Z",
    )


@pytest.fixture
def many_conflicts(registry):
    """25 assessment conflicts"""
    return [record(registry, n) for n in range(25)]


class TestListConflicts:
    """Tests for ConflictService.list_conflicts"""

    def test_second_page(self, registry, many_conflicts):
        """page=2&limit=10 over 25 rows"""
        page = registry.conflicts.list_conflicts(page=2, limit=10)

        assert len(page["data"]) == 10
        assert page["pagination"] == {
            "page": 2,
            "limit": 10,
            "total": 25,
            "totalPages": 3,
            "hasNext": True,
            "hasPrev": True,
        }

    def test_last_page(self, registry, many_conflicts):
        """The last page holds the remainder and has no next page"""
        page = registry.conflicts.list_conflicts(page=3, limit=10)

        assert len(page["data"]) == 5
        assert page["pagination"]["hasNext"] is False

    def test_pages_do_not_overlap(self, registry, many_conflicts):
        """Walking all pages yields every conflict exactly once"""
        seen = []
        for n in (1, 2, 3):
            seen.extend(c["id"] for c in registry.conflicts.list_conflicts(page=n, limit=10)["data"])

        assert sorted(seen) == sorted(c.conflict_id for c in many_conflicts)

    def test_limit_is_capped(self, registry, many_conflicts):
        """Page size never exceeds 100"""
        assert registry.conflicts.list_conflicts(limit=500)["pagination"]["limit"] == 100

    def test_empty_log(self, registry):
        """No conflicts means zero pages"""
        page = registry.conflicts.list_conflicts()

        assert page["data"] == []
        assert page["pagination"]["totalPages"] == 0
        assert page["pagination"]["hasNext"] is False

    def test_filter_by_type_is_case_insensitive(self, registry):
        """Entity type filters accept upper case"""
        record(registry, 1, "assessment")
        record(registry, 2, "response")

        page = registry.conflicts.list_conflicts(entity_type="RESPONSE")

        assert [c["entityId"] for c in page["data"]] == ["rec-2"]

    def test_filter_by_resolved(self, registry, admin):
        """resolved=False leaves out resolved conflicts"""
        first = record(registry, 1)
        record(registry, 2)
        registry.conflicts.resolve_conflict(first.conflict_id, "last_write_wins", admin.id)

        page = registry.conflicts.list_conflicts(resolved=False)

        assert [c["entityId"] for c in page["data"]] == ["rec-2"]

    def test_invalid_date_rejected(self, registry):
        """Unparseable date bounds raise ValidationError"""
        with pytest.raises(ValidationError):
            registry.conflicts.list_conflicts(date_from="last tuesday")

    def test_wire_shape(self, registry):
        """Rows use the dashboard's camelCase shape"""
        record(registry, 1)

        row = registry.conflicts.list_conflicts()["data"][0]

        assert row["entityType"] == "assessment"
        assert row["resolutionMethod"] == "LAST_WRITE_WINS"
        assert row["isResolved"] is False
        assert row["metadata"]["conflictReason"] == "Version mismatch"


class TestResolveConflict:
    """Tests for ConflictService.resolve_conflict"""

    def test_resolve_once(self, registry, admin):
        """Resolution stores the winner and the resolver"""
        conflict = record(registry, 1)

        resolved, winner = registry.conflicts.resolve_conflict(conflict.conflict_id, "last_write_wins", admin.id)

        assert winner == "local"
        assert resolved.is_resolved
        assert resolved.resolved_by == admin.id
        assert resolved.resolved_data == {"priority": "HIGH"}
        assert resolved.metadata["auto_resolved"] is True

    def test_resolve_twice_raises(self, registry, admin):
        """The second resolution is refused"""
        conflict = record(registry, 1)
        registry.conflicts.resolve_conflict(conflict.conflict_id, "last_write_wins", admin.id)

        with pytest.raises(ConflictAlreadyResolvedError) as exc_info:
            registry.conflicts.resolve_conflict(conflict.conflict_id, "manual", admin.id, {"priority": "LOW"})

        assert exc_info.value.http_status == 409
        assert exc_info.value.message == "Conflict already resolved"

    def test_unknown_conflict(self, registry, admin):
        """Resolving a missing conflict raises NotFoundError"""
        with pytest.raises(NotFoundError):
            registry.conflicts.resolve_conflict("missing", "last_write_wins", admin.id)


class TestSummaryAndExport:
    """Tests for summary statistics and CSV export"""

    def test_summary(self, registry, admin):
        """Summary splits automatic and manual resolutions"""
        auto = record(registry, 1)
        manual = record(registry, 2, "response")
        record(registry, 3)
        registry.conflicts.resolve_conflict(auto.conflict_id, "merge", admin.id)
        registry.conflicts.resolve_conflict(manual.conflict_id, "manual", admin.id, {"priority": "MEDIUM"})

        summary = registry.conflicts.get_summary()

        assert summary["totalConflicts"] == 3
        assert summary["unresolvedConflicts"] == 1
        assert summary["autoResolvedConflicts"] == 1
        assert summary["manuallyResolvedConflicts"] == 1
        assert summary["resolutionRate"] == pytest.approx(66.67, rel=1e-3)
        assert summary["conflictsByType"] == {"assessment": 2, "response": 1}
        assert len(summary["recentConflicts"]) == 3

    def test_csv_export_uppercases_types(self, registry):
        """CSV rows carry upper-case entity types and the fixed header"""
        record(registry, 1)
        record(registry, 2, "response")

        rows = list(csv.reader(io.StringIO(registry.conflicts.export_csv())))

        assert rows[0][:3] == ["Conflict ID", "Entity Type", "Entity ID"]
        assert {r[1] for r in rows[1:]} == {"ASSESSMENT", "RESPONSE"}
        assert all(r[7] == "No" for r in rows[1:])

    def test_export_filename(self, registry):
        """Export file names are dated"""
        name = registry.conflicts.export_filename()

        assert name.startswith("conflict-report-")
        assert name.endswith(".csv")
