# =============================================================================
# drms_core/services/registry.py
# Explicit Wiring of the Server-Side Service Graph
# =============================================================================
"""
ServiceRegistry builds every server-side service once, in dependency
order, over a single Database. The FastAPI app keeps one on app.state and
the Streamlit dashboards keep one in st.session_state.
"""

from __future__ import annotations
from typing import Optional

from drms_core.auth.tokens import TokenStore
from drms_core.config import Settings
from drms_core.data.database import Database
from drms_core.logging import get_logger
from drms_core.reports.data_aggregator import DataAggregator
from drms_core.services.assessment_service import AssessmentService
from drms_core.services.assignment_service import EntityAssignmentService
from drms_core.services.commitment_service import CommitmentService
from drms_core.services.conflict_service import ConflictService
from drms_core.services.entity_service import EntityService, IncidentService
from drms_core.services.report_service import ReportTemplateService
from drms_core.services.response_service import ResponseService
from drms_core.services.sync_service import RateLimiter, SyncService
from drms_core.services.user_service import UserService

logger = get_logger(__name__)


class ServiceRegistry:
    """Holds the database and every service built over it."""

    def __init__(self, settings: Settings, db: Optional[Database] = None):
        self.settings = settings
        self.db = db or Database(settings.database_path)

        self.tokens = TokenStore(settings.token_ttl_seconds)
        self.rate_limiter = RateLimiter(settings.rate_limit_requests, settings.rate_limit_window_seconds)

        self.users = UserService(self.db)
        self.assignments = EntityAssignmentService(self.db)
        self.entities = EntityService(self.db)
        self.incidents = IncidentService(self.db)
        self.assessments = AssessmentService(self.db, self.assignments)
        self.commitments = CommitmentService(self.db, self.assignments)
        self.responses = ResponseService(self.db, self.assignments, self.commitments)
        self.conflicts = ConflictService(self.db)
        self.sync = SyncService(
            self.db,
            self.assignments,
            self.entities,
            self.incidents,
            self.assessments,
            self.responses,
            self.conflicts,
            rate_limiter=self.rate_limiter,
            max_batch_size=settings.sync_batch_size,
        )
        self.aggregator = DataAggregator(self.db)
        self.reports = ReportTemplateService(self.db, self.aggregator)

    def initialize(self) -> None:
        """Create tables, role rows and default report templates."""
        self.db.initialize()
        self.users.ensure_roles()
        self.reports.seed_defaults()
        logger.info(f"Service registry ready on {self.db.db_path}")

    def close(self) -> None:
        self.db.close()
