# =============================================================================
# drms_core/offline/api_client.py
# HTTP Client for the DRMS REST API
# =============================================================================
"""
Thin requests-based client used by the field-device sync layer.

Every call unwraps the {"success": ..., "data": ...} envelope and raises
SyncError on failure. A SyncError with no status_code means the server
was never reached, which is what tells callers to fall back to the
offline queue.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from drms_core.errors import SyncError
from drms_core.logging import get_logger
from drms_core.models.records import SyncResult

logger = get_logger(__name__)

API_PREFIX = "/api/v1"


@dataclass
class APIConfig:
    """Configuration for the API connection"""
    base_url: str
    timeout: int = 30
    client_id: Optional[str] = None
    headers: Optional[Dict[str, str]] = None


def is_network_error(error: SyncError) -> bool:
    """True when the request never got an HTTP answer."""
    return error.status_code is None


class DRMSApiClient:

    def __init__(self, config: APIConfig):
        self.config = config
        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        if config.headers:
            self.session.headers.update(config.headers)
        if config.client_id:
            self.session.headers["X-Client-Id"] = config.client_id
        self._token: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self._token is not None

    def set_token(self, token: Optional[str]) -> None:
        self._token = token
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"
        else:
            self.session.headers.pop("Authorization", None)

    def _make_request(
        self,
        endpoint: str,
        method: str = "GET",
        params: Optional[Dict] = None,
        data: Optional[Dict] = None,
    ) -> Any:
        """
        Make an HTTP request and return the envelope's data.

        Raises:
            SyncError: network failure (status_code None) or error status
        """
        url = f"{self.config.base_url.rstrip('/')}{API_PREFIX}/{endpoint.lstrip('/')}"

        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                json=data,
                timeout=self.config.timeout,
            )
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            message, existing_id = str(e), None
            if e.response is not None:
                try:
                    payload = e.response.json()
                except ValueError:
                    payload = None
                if isinstance(payload, dict):
                    message = payload.get("error", message)
                    existing_id = payload.get("existing_id")
            raise SyncError(
                f"{method} {endpoint} failed: {message}",
                operation=endpoint,
                status_code=status,
                existing_id=existing_id,
            ) from e
        except requests.exceptions.RequestException as e:
            raise SyncError(f"{method} {endpoint} unreachable: {e}", operation=endpoint) from e

        try:
            body = response.json()
        except ValueError as e:
            # Captive portals and proxy error pages answer 200 with HTML
            raise SyncError(
                f"{method} {endpoint} returned a non-JSON body",
                operation=endpoint,
                status_code=response.status_code,
            ) from e
        if isinstance(body, dict) and "success" in body:
            return body.get("data")
        return body

    # =========================================================================
    # AUTH / HEALTH
    # =========================================================================

    def login(self, username: str, password: str) -> Dict[str, Any]:
        data = self._make_request("auth/login", "POST", data={"username": username, "password": password})
        self.set_token(data["token"])
        return data["user"]

    def logout(self) -> None:
        if self._token:
            self._make_request("auth/logout", "POST")
        self.set_token(None)

    def health(self) -> bool:
        try:
            data = self._make_request("health")
        except SyncError as e:
            logger.debug(f"Health check failed: {e}")
            return False
        return bool(data) and data.get("status") == "ok"

    # =========================================================================
    # REFERENCE DATA
    # =========================================================================

    def get_entities(self) -> List[Dict[str, Any]]:
        return self._make_request("entities")

    def get_incidents(self, status: Optional[str] = "ACTIVE") -> List[Dict[str, Any]]:
        return self._make_request("incidents", params={"status": status} if status else None)

    def get_assessments(self, verification_status: Optional[str] = None, **filters: Any) -> List[Dict[str, Any]]:
        params = {k: v for k, v in filters.items() if v is not None}
        if verification_status:
            params["verificationStatus"] = verification_status
        return self._make_request("rapid-assessments", params=params or None)

    # =========================================================================
    # RESPONSES
    # =========================================================================

    def create_response(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._make_request("responses", "POST", data=data)

    def get_responses(self, **filters: Any) -> List[Dict[str, Any]]:
        return self._make_request("responses", params={k: v for k, v in filters.items() if v is not None} or None)

    # =========================================================================
    # SYNC
    # =========================================================================

    def submit_batch(self, changes: List[Dict[str, Any]]) -> List[SyncResult]:
        data = self._make_request("sync/batch", "POST", data={"changes": changes})
        return [SyncResult.from_dict(raw) for raw in data or []]

    def pull_changes(
        self,
        last_sync_timestamp: Optional[str] = None,
        types: Optional[List[str]] = None,
        limit: Optional[int] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if last_sync_timestamp:
            params["lastSyncTimestamp"] = last_sync_timestamp
        if types:
            params["types"] = ",".join(types)
        if limit:
            params["limit"] = limit
        return self._make_request("sync/pull", params=params or None)

    def close(self) -> None:
        self.session.close()
