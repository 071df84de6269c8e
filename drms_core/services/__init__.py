# =============================================================================
# drms_core/services/__init__.py
# Service Layer for the Disaster Response Platform
# Separates business logic from the API routes and Streamlit pages
# =============================================================================
"""
Usage Example:
-------------
    from drms_core.config import load_settings
    from drms_core.services import ServiceRegistry

    registry = ServiceRegistry(load_settings())
    registry.initialize()

    actor = registry.users.authenticate("coordinator", "secret")
    entities = registry.entities.list_entities()
    results = registry.sync.process_batch(changes, actor, client_id="device-1")
"""

from .base_service import BaseService, ServiceResult, check_enum
from .user_service import UserService
from .assignment_service import EntityAssignmentService
from .entity_service import EntityService, IncidentService
from .assessment_service import AssessmentService
from .commitment_service import CommitmentService
from .response_service import ResponseService
from .conflict_service import ConflictService
from .sync_service import SyncService, RateLimiter
from .report_service import ReportTemplateService
from .registry import ServiceRegistry

__all__ = [
    # Base classes
    "BaseService",
    "ServiceResult",
    "check_enum",
    # Domain services
    "UserService",
    "EntityAssignmentService",
    "EntityService",
    "IncidentService",
    "AssessmentService",
    "CommitmentService",
    "ResponseService",
    # Sync
    "ConflictService",
    "SyncService",
    "RateLimiter",
    # Reports
    "ReportTemplateService",
    # Wiring
    "ServiceRegistry",
]
