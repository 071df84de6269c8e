"""
Tests for the role-aware offline bootstrap.
"""

import pytest
from datetime import timedelta

from drms_core.errors import SyncError
from drms_core.models.records import format_timestamp, utcnow


@pytest.fixture
def bootstrap(local_store, mock_client, mock_connection):
    """Bootstrap service over mocks with one entity and one incident on the server"""
    from drms_core.offline.bootstrap import OfflineBootstrapService

    mock_client.get_entities.return_value = [{"id": "e-1", "name": "Bakassi Camp"}]
    mock_client.get_incidents.return_value = [{"id": "i-1", "type": "FLOOD"}]
    mock_client.get_assessments.return_value = []
    return OfflineBootstrapService(local_store, mock_client, mock_connection, staleness_hours=24)


class TestBootstrap:
    """Tests for OfflineBootstrapService.bootstrap"""

    def test_offline_with_empty_cache_fails(self, bootstrap, mock_connection, mock_client):
        """Nothing to work with offline and nothing cached"""
        mock_connection.is_online = False

        assert bootstrap.bootstrap("ASSESSOR") is False
        mock_client.get_entities.assert_not_called()

    def test_online_run_caches_reference_data(self, bootstrap, local_store):
        """Entities and incidents are cached and the run is remembered"""
        assert bootstrap.bootstrap("ASSESSOR") is True

        assert local_store.count("entities") == 1
        assert local_store.count("incidents") == 1
        assert local_store.get_setting("offline.assessment_types")["types"][0] == "HEALTH"
        assert bootstrap.last_bootstrap is not None
        assert bootstrap.get_bootstrap_status()["role"] == "ASSESSOR"

    def test_recent_run_is_a_no_op(self, bootstrap, mock_client):
        """A second run within the staleness window does nothing"""
        bootstrap.bootstrap("ASSESSOR")
        bootstrap.bootstrap("ASSESSOR")

        assert mock_client.get_entities.call_count == 1

    def test_role_change_reruns(self, bootstrap, mock_client):
        """Switching role forces a fresh bootstrap"""
        bootstrap.bootstrap("ASSESSOR")
        bootstrap.bootstrap("RESPONDER")

        assert mock_client.get_entities.call_count == 2

    def test_stale_run_reruns(self, bootstrap, mock_client, local_store):
        """Runs older than the staleness window are repeated"""
        from drms_core.offline.bootstrap import LAST_BOOTSTRAP_KEY

        bootstrap.bootstrap("ASSESSOR")
        local_store.set_setting(LAST_BOOTSTRAP_KEY, format_timestamp(utcnow() - timedelta(hours=25)))
        bootstrap.bootstrap("ASSESSOR")

        assert mock_client.get_entities.call_count == 2

    def test_responder_loads_verified_assessments(self, bootstrap, mock_client, local_store):
        """Responders get verified and auto-verified assessments"""
        mock_client.get_assessments.side_effect = lambda verification_status: [
            {"id": f"a-{verification_status}", "entity_id": "e-1"}
        ]

        bootstrap.bootstrap("RESPONDER")

        statuses = [c.kwargs["verification_status"] for c in mock_client.get_assessments.call_args_list]
        assert statuses == ["VERIFIED", "AUTO_VERIFIED"]
        assert local_store.count("assessments") == 2

    def test_offline_with_cache_succeeds(self, bootstrap, mock_connection, local_store, mock_client):
        """Cached data is enough to work offline"""
        local_store.put_record("entities", {"id": "e-1", "name": "Cached"})
        mock_connection.is_online = False

        assert bootstrap.bootstrap("ASSESSOR") is True
        mock_client.get_entities.assert_not_called()
        assert bootstrap.last_bootstrap is None

    def test_dataset_failure_is_best_effort(self, bootstrap, mock_client, local_store):
        """A failing dataset is reported and the others still load"""
        mock_client.get_entities.side_effect = SyncError("GET entities failed", status_code=500)
        progress = []

        assert bootstrap.bootstrap("ASSESSOR", on_progress=progress.append) is True

        assert local_store.count("incidents") == 1
        final = progress[-1]
        assert final.stage == "completed"
        assert final.progress == 100
        assert any("entities" in e for e in final.errors)

    def test_unexpected_error_returns_false(self, bootstrap, mock_client):
        """An error outside the dataset handlers is reported, not raised"""
        mock_client.get_entities.side_effect = ValueError("malformed payload")
        progress = []

        assert bootstrap.bootstrap("ASSESSOR", on_progress=progress.append) is False

        assert bootstrap.is_bootstrapping is False
        assert bootstrap.last_bootstrap is None
        assert any("malformed payload" in e for e in progress[-1].errors)

        mock_client.get_entities.side_effect = None
        assert bootstrap.bootstrap("ASSESSOR") is True

    def test_missing_incidents_reruns(self, bootstrap, mock_client, local_store):
        """A run that left no incidents cached is repeated on the next call"""
        mock_client.get_incidents.side_effect = SyncError("GET incidents failed", status_code=500)
        bootstrap.bootstrap("ASSESSOR")
        assert local_store.count("incidents") == 0

        mock_client.get_incidents.side_effect = None
        bootstrap.bootstrap("ASSESSOR")

        assert mock_client.get_entities.call_count == 2
        assert local_store.count("incidents") == 1

    def test_progress_stages_in_order(self, bootstrap):
        """Progress moves forward through the stages"""
        progress = []

        bootstrap.bootstrap("ASSESSOR", on_progress=progress.append)

        values = [p.progress for p in progress]
        assert values == sorted(values)
        assert progress[0].stage == "initializing"

    def test_refresh_forgets_last_run(self, bootstrap, mock_client):
        """refresh_offline_data always hits the server again"""
        bootstrap.bootstrap("ASSESSOR")

        assert bootstrap.refresh_offline_data() is True
        assert mock_client.get_entities.call_count == 2


class TestSystemConfig:
    """Tests for the cached system configuration"""

    def test_falls_back_to_built_in(self, bootstrap):
        """Before any run the built-in configuration is served"""
        config = bootstrap.get_system_config()

        assert "HEALTH" in config["assessmentTypes"]
        assert "LOGISTICS" in config["responseTypes"]
