"""
Integration tests for the REST API: auth, sync batch, conflict report, exports.
"""

import csv
import io


def create_change(entity_id: str, offline_id: str = "off-1"):
    return {
        "type": "assessment",
        "action": "create",
        "offlineId": offline_id,
        "entityUuid": entity_id,
        "versionNumber": 1,
        "lastModified": "2024-05-01T00:00:00Z",
        "data": {"rapid_assessment_type": "SHELTER", "priority": "HIGH"},
    }


def record_conflicts(registry, count: int):
    return [
        registry.conflicts.record_conflict(
            entity_type="assessment",
            entity_id=f"rec-{n}",
            local_version=1,
            server_version=2,
            local_data={"priority": "HIGH"},
            server_data={"priority": "LOW"},
        )
        for n in range(count)
    ]


class TestAuthEndpoints:
    """Tests for login, profile and bearer auth"""

    def test_health(self, api):
        """Health needs no token"""
        response = api.get("/api/v1/health")

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "ok"

    def test_login_and_profile(self, api, seeded, auth_headers):
        """A token from login opens the profile"""
        response = api.get("/api/v1/auth/profile", headers=auth_headers("assessor"))

        body = response.json()
        assert response.status_code == 200
        assert body["data"]["roles"] == ["ASSESSOR"]
        assert body["data"]["assignedEntities"]

    def test_bad_password(self, api, seeded):
        """Wrong credentials answer 401 in the error envelope"""
        response = api.post("/api/v1/auth/login", json={"username": "assessor", "password": "nope"})

        assert response.status_code == 401
        assert response.json()["success"] is False
        assert response.json()["code"] == "AUTH_001"

    def test_missing_token(self, api):
        """Protected routes need a bearer token"""
        assert api.get("/api/v1/entities").status_code == 401

    def test_logout_revokes_token(self, api, seeded, auth_headers):
        """A logged-out token stops working"""
        headers = auth_headers("assessor")
        api.post("/api/v1/auth/logout", headers=headers)

        assert api.get("/api/v1/auth/profile", headers=headers).status_code == 401

    def test_malformed_body(self, api):
        """Schema errors use the 400 envelope"""
        response = api.post("/api/v1/auth/login", json={"username": "assessor"})

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request format"


class TestSyncEndpoints:
    """Tests for /sync/batch, /sync/pull and /sync/resolve"""

    def test_batch_then_replay(self, api, seeded, auth_headers):
        """A replayed batch answers duplicate with the same server id"""
        headers = auth_headers("assessor")
        payload = {"changes": [create_change(seeded["entity"]["id"])]}

        first = api.post("/api/v1/sync/batch", json=payload, headers=headers).json()["data"][0]
        replay = api.post("/api/v1/sync/batch", json=payload, headers=headers).json()["data"][0]

        assert first["status"] == "success"
        assert replay["status"] == "duplicate"
        assert replay["serverId"] == first["serverId"]

    def test_unassigned_entity_forbidden(self, api, seeded, auth_headers):
        """The 403 body lists the entities the user may not touch"""
        other_id = seeded["other_entity"]["id"]

        response = api.post(
            "/api/v1/sync/batch",
            json={"changes": [create_change(other_id)]},
            headers=auth_headers("assessor"),
        )

        assert response.status_code == 403
        assert response.json()["unauthorizedEntities"] == [other_id]

    def test_oversized_batch(self, api, seeded, auth_headers):
        """Over 100 changes is a 400"""
        changes = [create_change(seeded["entity"]["id"], f"off-{n}") for n in range(101)]

        response = api.post("/api/v1/sync/batch", json={"changes": changes}, headers=auth_headers("assessor"))

        assert response.status_code == 400

    def test_pull(self, api, seeded, auth_headers):
        """Pull returns the assessor's entity"""
        response = api.get("/api/v1/sync/pull", params={"types": "entity"}, headers=auth_headers("assessor"))

        data = response.json()["data"]
        assert [item["id"] for item in data["items"]] == [seeded["entity"]["id"]]
        assert data["hasMore"] is False

    def test_resolve_twice_is_409(self, api, seeded, auth_headers):
        """The second resolution of a conflict answers 409 SYNC_409"""
        headers = auth_headers("assessor")
        entity_id = seeded["entity"]["id"]
        created = api.post(
            "/api/v1/sync/batch", json={"changes": [create_change(entity_id)]}, headers=headers,
        ).json()["data"][0]
        update = {
            "type": "assessment", "action": "update", "recordId": created["serverId"],
            "entityUuid": entity_id, "versionNumber": 1, "data": {"priority": "LOW"},
        }
        api.post("/api/v1/sync/batch", json={"changes": [{**update, "offlineId": "u-1"}]}, headers=headers)
        stale = api.post(
            "/api/v1/sync/batch", json={"changes": [{**update, "offlineId": "u-2"}]}, headers=headers,
        ).json()["data"][0]
        assert stale["status"] == "conflict"

        admin = auth_headers("admin")
        body = {"conflictId": stale["conflictData"]["conflictId"], "resolutionStrategy": "last_write_wins"}
        first = api.post("/api/v1/sync/resolve", json=body, headers=admin)
        second = api.post("/api/v1/sync/resolve", json=body, headers=admin)

        assert first.status_code == 200
        assert second.status_code == 409
        assert second.json()["code"] == "SYNC_409"
        assert second.json()["error"] == "Conflict already resolved"


class TestConflictReport:
    """Tests for the conflict list, export and summary"""

    def test_pagination(self, api, api_app, seeded, auth_headers):
        """page=2&limit=10 over 25 conflicts"""
        record_conflicts(api_app.state.registry, 25)

        response = api.get("/api/v1/sync/conflicts?page=2&limit=10", headers=auth_headers("admin"))

        body = response.json()
        assert len(body["data"]) == 10
        assert body["pagination"] == {
            "page": 2, "limit": 10, "total": 25, "totalPages": 3, "hasNext": True, "hasPrev": True,
        }

    def test_field_users_forbidden(self, api, seeded, auth_headers):
        """Only coordinators read the conflict log"""
        response = api.get("/api/v1/sync/conflicts", headers=auth_headers("assessor"))

        assert response.status_code == 403

    def test_csv_export(self, api, api_app, seeded, auth_headers):
        """Export is an attachment with upper-case entity types"""
        record_conflicts(api_app.state.registry, 2)

        response = api.get("/api/v1/sync/conflicts/export", headers=auth_headers("admin"))

        assert response.headers["content-type"].startswith("text/csv")
        assert 'filename="conflict-report-' in response.headers["content-disposition"]
        rows = list(csv.reader(io.StringIO(response.text)))
        assert len(rows) == 3
        assert rows[1][1] == "ASSESSMENT"

    def test_summary(self, api, api_app, seeded, auth_headers):
        """Summary counts unresolved conflicts"""
        record_conflicts(api_app.state.registry, 3)

        data = api.get("/api/v1/sync/conflicts/summary", headers=auth_headers("admin")).json()["data"]

        assert data["totalConflicts"] == 3
        assert data["unresolvedConflicts"] == 3


class TestExports:
    """Tests for data exports"""

    def test_csv_scoped_to_assignments(self, api, seeded, auth_headers):
        """Field users only export their own entities"""
        response = api.get("/api/v1/exports/csv", params={"dataType": "entities"}, headers=auth_headers("assessor"))

        rows = list(csv.DictReader(io.StringIO(response.text)))
        assert [r["name"] for r in rows] == ["Bakassi Camp"]

    def test_unknown_data_type(self, api, seeded, auth_headers):
        """Unknown export types are a 400"""
        response = api.get("/api/v1/exports/csv", params={"dataType": "payroll"}, headers=auth_headers("admin"))

        assert response.status_code == 400
