"""
Tests for the REST client's envelope and error handling.
"""

import pytest
import requests
from unittest.mock import MagicMock

from drms_core.errors import SyncError
from drms_core.offline.api_client import APIConfig, DRMSApiClient, is_network_error


@pytest.fixture
def client():
    """Client whose session never touches the network"""
    api = DRMSApiClient(APIConfig(base_url="http://drms.test/", client_id="dev-1"))
    api.session = MagicMock()
    return api


def reply(status=200, body=None, json_error=None):
    response = MagicMock()
    response.status_code = status
    if json_error is not None:
        response.json.side_effect = json_error
    else:
        response.json.return_value = body
    if status >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status} Error", response=response)
    return response


class TestMakeRequest:
    """Tests for DRMSApiClient._make_request"""

    def test_unwraps_envelope(self, client):
        """The data member of a success envelope is returned"""
        client.session.request.return_value = reply(body={"success": True, "data": [{"id": "e-1"}]})

        assert client.get_entities() == [{"id": "e-1"}]
        assert client.session.request.call_args.kwargs["url"] == "http://drms.test/api/v1/entities"

    def test_non_json_body_raises_sync_error(self, client):
        """An HTML page behind a 200 becomes a SyncError carrying the status"""
        client.session.request.return_value = reply(json_error=ValueError("Expecting value"))

        with pytest.raises(SyncError) as exc:
            client.submit_batch([])

        assert exc.value.status_code == 200
        assert "non-JSON" in exc.value.message
        assert not is_network_error(exc.value)

    def test_http_error_uses_server_message(self, client):
        """The envelope's error text is surfaced with the status code"""
        client.session.request.return_value = reply(
            status=409, body={"success": False, "error": "Already exists", "existing_id": "r-0"},
        )

        with pytest.raises(SyncError) as exc:
            client.create_response({"id": "r-1"})

        assert exc.value.status_code == 409
        assert "Already exists" in exc.value.message
        assert exc.value.details["existing_id"] == "r-0"

    def test_connection_error_is_network_error(self, client):
        """No HTTP answer means no status code"""
        client.session.request.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(SyncError) as exc:
            client.get_incidents()

        assert is_network_error(exc.value)

    def test_health_is_false_on_non_json(self, client):
        """Health checks swallow a garbled reply into False"""
        client.session.request.return_value = reply(json_error=ValueError("Expecting value"))

        assert client.health() is False
