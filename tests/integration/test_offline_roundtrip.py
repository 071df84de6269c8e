"""
End-to-end offline flow: a field device stages changes in its encrypted
store, syncs them through the REST API and bootstraps reference data.
"""

import dataclasses
from unittest.mock import patch

import pytest

from drms_core.errors import SyncError
from drms_core.offline.api_client import API_PREFIX, APIConfig, DRMSApiClient


class InProcessApiClient(DRMSApiClient):
    """DRMSApiClient that sends requests to a FastAPI TestClient"""

    def __init__(self, http):
        super().__init__(APIConfig(base_url="http://testserver"))
        self.http = http

    def _make_request(self, endpoint, method="GET", params=None, data=None):
        response = self.http.request(
            method,
            f"{API_PREFIX}/{endpoint.lstrip('/')}",
            params=params,
            json=data,
            headers=dict(self.session.headers),
        )
        body = response.json()
        if response.status_code >= 400:
            raise SyncError(
                f"{method} {endpoint} failed: {body.get('error')}",
                operation=endpoint,
                status_code=response.status_code,
            )
        if isinstance(body, dict) and "success" in body:
            return body.get("data")
        return body


@pytest.fixture
def device(api, seeded, settings, tmp_path):
    """Offline context for the assessor, signed in and online"""
    from drms_core.offline.context import OfflineContext

    device_settings = dataclasses.replace(
        settings,
        local_store_path=str(tmp_path / "device.db"),
        sync_retry_base_delay=60.0,
        sync_retry_max_delay=600.0,
    )
    ctx = OfflineContext(device_settings, client=InProcessApiClient(api))
    ctx.client.login("assessor", "password123")
    with patch.object(ctx.connection, "_check_network", return_value=True):
        ctx.initialize()
    yield ctx
    ctx.close()


def assessment(entity_id, **fields):
    return {"entity_id": entity_id, "rapid_assessment_type": "HEALTH", "priority": "HIGH", **fields}


class TestOfflineRoundTrip:
    """Tests for device -> API -> database sync"""

    def test_device_is_online(self, device):
        """Health check through the API marks the device online"""
        assert device.connection.is_online

    def test_staged_create_reaches_server(self, device, api_app, seeded):
        """sync_now pushes the change and the cache is tagged SYNCED"""
        item = device.stage_change("assessment", "create", assessment(seeded["entity"]["id"]))

        result = device.sync_engine.sync_now()

        assert len(result.successful) == 1
        server = api_app.state.registry.db.get_by_id("rapid_assessments", item.entity_id)
        assert server["offline_id"] == item.offline_id
        assert server["is_offline_created"] is True
        assert device.store.get_record("assessments", item.entity_id).sync_status == "SYNCED"
        assert device.queue.count() == 0

    def test_resent_create_is_duplicate(self, device, api_app, seeded):
        """Re-sending a record the server already has is a duplicate, not a second row"""
        record = {"id": "a-fixed", **assessment(seeded["entity"]["id"])}
        device.stage_change("assessment", "create", record)
        device.sync_engine.sync_now()

        device.stage_change("assessment", "create", record)
        result = device.sync_engine.sync_now()

        assert len(result.duplicates) == 1
        assert api_app.state.registry.db.count("rapid_assessments") == 1
        assert device.queue.count() == 0

    def test_newer_local_update_wins_after_conflict(self, device, api_app, seeded):
        """A newer local edit loses the version race, then lands on the next sync"""
        registry = api_app.state.registry
        item = device.stage_change("assessment", "create", assessment(seeded["entity"]["id"]))
        device.sync_engine.sync_now()
        registry.assessments.update_assessment(item.entity_id, {"priority": "CRITICAL"}, seeded["assessor"])

        device.stage_change(
            "assessment", "update",
            {"id": item.entity_id, **assessment(seeded["entity"]["id"], priority="LOW"), "version": 1},
        )
        result = device.sync_engine.sync_now()

        assert len(result.conflicts) == 1
        assert device.queue.count() == 1
        assert device.resolver.get_conflict_stats().auto_resolved == 1
        assert registry.conflicts.get_summary()["unresolvedConflicts"] == 1
        assert device.store.get_record("assessments", item.entity_id).sync_status == "PENDING"

        result = device.sync_engine.sync_now()

        assert len(result.successful) == 1
        assert device.queue.count() == 0
        server = registry.db.get_by_id("rapid_assessments", item.entity_id)
        assert server["priority"] == "LOW"
        assert server["version_number"] == 3
        assert device.store.get_record("assessments", item.entity_id).sync_status == "SYNCED"

    def test_older_local_update_takes_server_copy(self, device, api_app, seeded):
        """An edit made before the server's change is replaced by the server copy"""
        registry = api_app.state.registry
        item = device.stage_change("assessment", "create", assessment(seeded["entity"]["id"]))
        device.sync_engine.sync_now()
        registry.assessments.update_assessment(item.entity_id, {"priority": "CRITICAL"}, seeded["assessor"])

        device.stage_change(
            "assessment", "update",
            {"id": item.entity_id, **assessment(seeded["entity"]["id"], priority="LOW"), "version": 1,
             "lastModified": "2020-01-01T00:00:00Z"},
        )
        result = device.sync_engine.sync_now()

        assert len(result.conflicts) == 1
        assert device.queue.count() == 0
        assert registry.db.get_by_id("rapid_assessments", item.entity_id)["priority"] == "CRITICAL"
        cached = device.store.get_record("assessments", item.entity_id)
        assert cached.data["priority"] == "CRITICAL"
        assert cached.sync_status == "SYNCED"

    def test_unassigned_entity_fails_whole_batch(self, device, seeded):
        """A 403 from the server fails the items and schedules a retry"""
        device.stage_change("assessment", "create", assessment(seeded["other_entity"]["id"]))

        result = device.sync_engine.sync_now()

        assert len(result.failed) == 1
        assert device.sync_engine.state.last_error
        queued = device.queue.get_queue()[0]
        assert queued.attempts == 1
        assert queued.next_retry is not None

    def test_bootstrap_caches_assigned_entities(self, device, seeded):
        """Bootstrap stores only the assessor's entities"""
        assert device.bootstrap.bootstrap("ASSESSOR") is True

        cached = device.store.list_records("entities")
        assert [r.data["name"] for r in cached] == ["Bakassi Camp"]
        assert device.bootstrap.get_bootstrap_status()["role"] == "ASSESSOR"
