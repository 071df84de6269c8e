"""
Tests for offline-first response planning and the connection monitor.
"""

import pytest
from unittest.mock import patch

from drms_core.errors import SyncError


@pytest.fixture
def responses(local_store, mock_client, mock_connection, queue):
    """Offline response service over mocks"""
    from drms_core.offline.response_offline import OfflineResponseService

    return OfflineResponseService(local_store, mock_client, mock_connection, queue)


PLAN = {"entity_id": "e-1", "assessment_id": "a-1", "type": "FOOD",
        "items": [{"name": "Rice", "unit": "kg", "quantity": 50}]}


class TestCreateResponse:
    """Tests for OfflineResponseService.create_response"""

    def test_online_creates_on_server(self, responses, mock_client, local_store, queue):
        """Online creates go straight to the API and are cached as SYNCED"""
        mock_client.create_response.return_value = {"id": "r-1", **PLAN, "status": "PLANNED"}

        result = responses.create_response(PLAN)

        assert result.success
        assert result.metadata == {"offline": False}
        assert local_store.get_record("responses", "r-1").sync_status == "SYNCED"
        assert queue.count() == 0

    def test_unreachable_server_queues(self, responses, mock_client, local_store, queue):
        """A network failure falls back to the offline queue"""
        mock_client.create_response.side_effect = SyncError("POST responses unreachable", operation="responses")

        result = responses.create_response(PLAN)

        assert result.metadata == {"offline": True}
        assert result.data["syncStatus"] == "PENDING"
        assert result.data["status"] == "PLANNED"
        assert queue.count() == 1
        assert local_store.get_record("responses", result.data["id"]).sync_status == "PENDING"

    def test_server_rejection_is_raised(self, responses, mock_client, queue):
        """Errors the server actually returned are not queued"""
        mock_client.create_response.side_effect = SyncError(
            "POST responses failed: Assessment not verified", operation="responses", status_code=400,
        )

        with pytest.raises(SyncError):
            responses.create_response(PLAN)
        assert queue.count() == 0

    def test_offline_queues_without_calling_api(self, responses, mock_client, mock_connection, queue):
        """Offline devices never try the API"""
        mock_connection.is_online = False

        result = responses.create_response({**PLAN, "offlineId": "off-7"})

        mock_client.create_response.assert_not_called()
        assert result.data["offlineId"] == "off-7"
        assert queue.get_queue()[0].offline_id == "off-7"


class TestPendingSync:
    """Tests for pushing queued responses one by one"""

    def test_sync_pending_responses(self, responses, mock_client, mock_connection, local_store, queue):
        """Queued creates are replayed and the local id replaced by the server id"""
        mock_connection.is_online = False
        queued = responses.create_response(PLAN).data
        mock_connection.is_online = True
        mock_client.create_response.return_value = {"id": "server-1", **PLAN, "status": "PLANNED"}

        summary = responses.sync_pending_responses()

        assert summary == {"success": 1, "failed": 0, "errors": []}
        assert local_store.get_record("responses", queued["id"]) is None
        assert local_store.get_record("responses", "server-1").sync_status == "SYNCED"
        assert queue.count() == 0

    def test_failed_replay_counts_attempt(self, responses, mock_client, mock_connection, queue):
        """A rejected replay stays queued with one more attempt"""
        mock_connection.is_online = False
        responses.create_response(PLAN)
        mock_connection.is_online = True
        mock_client.create_response.side_effect = SyncError("boom", status_code=500)

        summary = responses.sync_pending_responses()

        assert summary["failed"] == 1
        assert queue.get_queue()[0].attempts == 1

    def test_already_created_replay_counts_as_synced(self, responses, mock_client, mock_connection,
                                                     local_store, queue):
        """A 409 for a replayed create settles the item against the server's record"""
        mock_connection.is_online = False
        queued = responses.create_response(PLAN).data
        mock_connection.is_online = True
        mock_client.create_response.side_effect = SyncError(
            "POST responses failed: Response with this offline ID already exists",
            operation="responses", status_code=409, existing_id="server-7",
        )

        summary = responses.sync_pending_responses()

        assert summary == {"success": 1, "failed": 0, "errors": []}
        assert queue.count() == 0
        assert local_store.get_record("responses", queued["id"]) is None
        cached = local_store.get_record("responses", "server-7")
        assert cached.sync_status == "SYNCED"
        assert cached.data["assessment_id"] == "a-1"


class TestAssessmentConflicts:
    """Tests for duplicate planning checks"""

    def test_existing_response_is_flagged(self, responses, mock_client):
        """An assessment with a planned response reports a conflict"""
        mock_client.get_responses.return_value = [{"id": "r-1", "assessment_id": "a-1"}]

        check = responses.check_assessment_conflicts("a-1")

        assert check["hasConflict"] is True
        assert check["conflictingResponses"] == ["r-1"]

    def test_offline_check_uses_cache(self, responses, mock_connection, local_store):
        """Offline checks read cached responses"""
        mock_connection.is_online = False
        local_store.put_record("responses", {"id": "r-2", "assessment_id": "a-9", "entity_id": "e-1"})

        assert responses.check_assessment_conflicts("a-9")["hasConflict"] is True
        assert responses.check_assessment_conflicts("a-1")["hasConflict"] is False


class TestConnectionManager:
    """Tests for connection status transitions"""

    def test_status_transitions(self, mock_client):
        """Network and API health map onto online, degraded and offline"""
        from drms_core.offline.connection_manager import ConnectionManager, ConnectionStatus

        manager = ConnectionManager(mock_client)
        seen = []
        manager.register_callback(lambda state: seen.append(state.status))

        with patch.object(manager, "_check_network", return_value=True):
            mock_client.health.return_value = True
            assert manager.check_connection().status == ConnectionStatus.ONLINE
            mock_client.health.return_value = False
            assert manager.check_connection().status == ConnectionStatus.DEGRADED
        with patch.object(manager, "_check_network", return_value=False):
            assert manager.check_connection().status == ConnectionStatus.OFFLINE

        assert seen == [ConnectionStatus.ONLINE, ConnectionStatus.DEGRADED, ConnectionStatus.OFFLINE]
        assert manager.state.consecutive_failures == 2

    def test_forced_offline_ignores_checks(self, mock_client):
        """Forced offline holds until resume_online"""
        from drms_core.offline.connection_manager import ConnectionManager

        manager = ConnectionManager(mock_client)
        mock_client.health.return_value = True

        with patch.object(manager, "_check_network", return_value=True):
            manager.force_offline()
            manager.check_connection()
            assert manager.is_offline
            assert manager.get_status_display()["forced_offline"] is True

            manager.resume_online()
            assert manager.is_online
