# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import pytest
from typing import Any, Dict, Optional
from unittest.mock import MagicMock

from drms_core.config import load_settings
from drms_core.models.enums import SyncStatus
from drms_core.offline.api_client import DRMSApiClient
from drms_core.offline.conflict_resolver import ConflictResolver
from drms_core.offline.local_store import LocalStore
from drms_core.offline.queue_manager import SyncQueueManager
from drms_core.services.registry import ServiceRegistry


# =============================================================================
# SERVER FIXTURES
# =============================================================================

@pytest.fixture
def settings(tmp_path):
    """Settings pointing every file at a temporary directory"""
    return load_settings(
        env={},
        database_path=str(tmp_path / "drms.db"),
        local_store_path=str(tmp_path / "offline.db"),
        secret_key="test-secret",
        log_to_file=False,
    )


@pytest.fixture
def registry(settings):
    """Initialized service registry over a fresh database"""
    reg = ServiceRegistry(settings)
    reg.initialize()
    yield reg
    reg.close()


def _make_user(registry, username: str, *roles: str):
    user = registry.users.create_user(
        email=f"{username}@drms.test",
        username=username,
        password="password123",
        name=username.title(),
        roles=roles,
    )
    return registry.users.principal_for(user["id"])


@pytest.fixture
def admin(registry):
    """Administrator who is also a coordinator"""
    return _make_user(registry, "admin", "ADMIN", "COORDINATOR")


@pytest.fixture
def coordinator(registry):
    """Coordinator"""
    return _make_user(registry, "coord", "COORDINATOR")


@pytest.fixture
def assessor(registry):
    """Field assessor (not yet assigned anywhere)"""
    return _make_user(registry, "assessor", "ASSESSOR")


@pytest.fixture
def responder(registry):
    """Field responder (not yet assigned anywhere)"""
    return _make_user(registry, "responder", "RESPONDER")


@pytest.fixture
def entity(registry, admin):
    """An active affected entity"""
    return registry.entities.create_entity(
        {"name": "Bakassi Camp", "type": "CAMP", "location": "Maiduguri",
         "coordinates": {"latitude": 11.84, "longitude": 13.15}},
        admin,
    )


@pytest.fixture
def other_entity(registry, admin):
    """A second entity nobody is assigned to"""
    return registry.entities.create_entity({"name": "Dalori Ward", "type": "WARD"}, admin)


@pytest.fixture
def incident(registry, admin):
    """An active incident"""
    return registry.incidents.create_incident(
        {"type": "FLOOD", "severity": "HIGH", "description": "River overflow", "location": "Maiduguri"},
        admin,
    )


@pytest.fixture
def assigned(registry, admin, assessor, responder, entity):
    """Assessor and responder both assigned to the entity"""
    registry.assignments.assign(assessor.id, entity["id"], admin)
    registry.assignments.assign(responder.id, entity["id"], admin)
    return entity


@pytest.fixture
def verified_assessment(registry, admin, assessor, assigned):
    """A submitted assessment a coordinator has verified"""
    assessment = registry.assessments.create_assessment(
        {"entity_id": assigned["id"], "rapid_assessment_type": "FOOD", "priority": "HIGH"},
        assessor,
    )
    return registry.assessments.verify_assessment(assessment["id"], admin, approve=True)


# =============================================================================
# DEVICE FIXTURES
# =============================================================================

@pytest.fixture
def local_store(tmp_path):
    """Initialized encrypted local store"""
    store = LocalStore(tmp_path / "device.db")
    store.initialize()
    yield store
    store.close()


@pytest.fixture
def queue(local_store):
    """Queue manager with a long backoff so retries never fire during a test"""
    return SyncQueueManager(local_store, base_delay=60.0, max_delay=600.0, max_attempts=3)


@pytest.fixture
def resolver(local_store):
    """Device conflict resolver"""
    return ConflictResolver(local_store)


# =============================================================================
# MOCK FIXTURES
# =============================================================================

@pytest.fixture
def mock_client():
    """Mock REST client"""
    return MagicMock(spec=DRMSApiClient)


@pytest.fixture
def mock_connection():
    """Mock connection manager that reports online"""
    connection = MagicMock()
    connection.is_online = True
    return connection


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

TABLES = {"assessment": "assessments", "response": "responses", "entity": "entities", "incident": "incidents"}


@pytest.fixture
def stage(local_store, queue):
    """Cache a record as PENDING and queue it, the way the dashboards do"""

    def _stage(
        record: Dict[str, Any],
        entity_type: str = "assessment",
        action: str = "create",
        priority: Optional[int] = None,
    ):
        table = TABLES[entity_type]
        local_store.put_record(table, record, SyncStatus.PENDING.value)
        return queue.add_to_queue(entity_type, action, record["id"], record, priority=priority)

    return _stage


# =============================================================================
# API FIXTURES
# =============================================================================

@pytest.fixture
def api_app(settings):
    """FastAPI app over a temporary database"""
    from drms_core.api.app import create_app

    return create_app(settings)


@pytest.fixture
def api(api_app):
    """TestClient with the app lifespan running"""
    from fastapi.testclient import TestClient

    with TestClient(api_app) as client:
        yield client


@pytest.fixture
def seeded(api_app):
    """Admin, an assessor assigned to one entity, and a second unassigned entity"""
    reg = api_app.state.registry
    admin = _make_user(reg, "admin", "ADMIN", "COORDINATOR")
    assessor = _make_user(reg, "assessor", "ASSESSOR")
    entity = reg.entities.create_entity({"name": "Bakassi Camp", "type": "CAMP"}, admin)
    other = reg.entities.create_entity({"name": "Dalori Ward", "type": "WARD"}, admin)
    reg.assignments.assign(assessor.id, entity["id"], admin)
    return {"admin": admin, "assessor": assessor, "entity": entity, "other_entity": other}


@pytest.fixture
def auth_headers(api):
    """Log in through the API and return bearer headers"""

    def _login(username: str, password: str = "password123") -> Dict[str, str]:
        response = api.post("/api/v1/auth/login", json={"username": username, "password": password})
        assert response.status_code == 200, response.text
        return {"Authorization": f"Bearer {response.json()['data']['token']}"}

    return _login
