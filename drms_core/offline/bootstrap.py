# =============================================================================
# drms_core/offline/bootstrap.py
# Role-Aware Offline Bootstrap
# =============================================================================
"""
OfflineBootstrapService - Makes sure a field device holds the reference data
its user's role needs before going offline.

Datasets:
- active entities (all roles)
- active incidents (all roles)
- assessment types (ASSESSOR)
- verified assessments (RESPONDER)
- system configuration (all roles)

A successful run is remembered for `staleness_hours`; re-running within
that window is a no-op unless the role changed. Each dataset is
best-effort: failures are logged and the run carries on.
"""

from __future__ import annotations
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from drms_core.errors import SyncError
from drms_core.logging import get_logger
from drms_core.models.enums import (
    AssessmentType,
    Priority,
    ResponseType,
    RoleName,
    VerificationStatus,
)
from drms_core.models.records import format_timestamp, parse_timestamp, utcnow
from drms_core.offline.api_client import DRMSApiClient
from drms_core.offline.connection_manager import ConnectionManager
from drms_core.offline.local_store import LocalStore

logger = get_logger(__name__)

LAST_BOOTSTRAP_KEY = "bootstrap.last_run"
BOOTSTRAP_ROLE_KEY = "bootstrap.role"
ASSESSMENT_TYPES_KEY = "offline.assessment_types"
SYSTEM_CONFIG_KEY = "offline.system_config"

STAGES = {
    "initializing": 10,
    "entities": 25,
    "incidents": 45,
    "assessments": 65,
    "config": 85,
    "completed": 100,
}


@dataclass
class BootstrapProgress:
    stage: str
    progress: int
    message: str
    errors: List[str] = field(default_factory=list)


ProgressCallback = Callable[[BootstrapProgress], None]


def system_config() -> Dict[str, Any]:
    return {
        "assessmentTypes": [t.value for t in AssessmentType],
        "responseTypes": [t.value for t in ResponseType],
        "priorities": [p.value for p in Priority],
        "verificationStatuses": [s.value for s in VerificationStatus],
    }


class OfflineBootstrapService:

    def __init__(
        self,
        store: LocalStore,
        client: DRMSApiClient,
        connection: ConnectionManager,
        staleness_hours: int = 24,
    ):
        self.store = store
        self.client = client
        self.connection = connection
        self.staleness_hours = staleness_hours
        self._lock = threading.Lock()
        self._is_bootstrapping = False
        self._errors: List[str] = []
        self._progress: Optional[ProgressCallback] = None

    @property
    def is_bootstrapping(self) -> bool:
        return self._is_bootstrapping

    def bootstrap(self, role: str, on_progress: Optional[ProgressCallback] = None) -> bool:
        """
        Populate the local store for `role`.

        Returns:
            True when the device holds usable data (fresh run or still
            within the staleness window); False when offline with an empty
            cache or when a run is already in progress
        """
        if not self._lock.acquire(blocking=False):
            logger.info("Bootstrap already in progress")
            return False

        self._is_bootstrapping = True
        self._progress = on_progress
        self._errors = []
        try:
            if not self.needs_bootstrap(role):
                self._report("completed", "Already up to date")
                return True

            online = self.connection.is_online
            if not online and self.store.count("entities") == 0:
                logger.warning("Offline with no cached data; bootstrap cannot run")
                self._report("initializing", "No cached data available offline", progress=0)
                return False

            self._report("initializing", "Preparing offline storage...")
            self.store.initialize()

            self._report("entities", "Loading entities and locations...")
            self._load_entities(online)

            self._report("incidents", "Loading active incidents...")
            self._load_incidents(online)

            if role == RoleName.ASSESSOR.value:
                self._report("assessments", "Loading assessment types...")
                self._load_assessment_types()
            elif role == RoleName.RESPONDER.value:
                self._report("assessments", "Loading verified assessments...")
                self._load_verified_assessments(online)

            self._report("config", "Loading system configuration...")
            self._load_system_config()

            if online:
                self.store.set_setting(LAST_BOOTSTRAP_KEY, format_timestamp(utcnow()))
                self.store.set_setting(BOOTSTRAP_ROLE_KEY, role)
            self._report("completed", "Offline data ready")
            logger.info(f"Offline bootstrap completed for {role} ({'online' if online else 'cached'})")
            return True
        except Exception as e:
            # Anything past the per-dataset handlers ends the run as a failed bootstrap
            logger.error(f"Offline bootstrap failed for {role}: {e}", exc_info=True)
            self._errors.append(f"Bootstrap failed: {e}")
            self._report("initializing", f"Bootstrap failed: {e}", progress=0)
            return False
        finally:
            self._is_bootstrapping = False
            self._progress = None
            self._lock.release()

    def needs_bootstrap(self, role: str) -> bool:
        last_run = self.last_bootstrap
        if last_run is None or self.store.get_setting(BOOTSTRAP_ROLE_KEY) != role:
            return True
        if utcnow() - last_run > timedelta(hours=self.staleness_hours):
            return True
        return self.store.count("entities") == 0 or self.store.count("incidents") == 0

    @property
    def last_bootstrap(self) -> Optional[datetime]:
        return parse_timestamp(self.store.get_setting(LAST_BOOTSTRAP_KEY))

    # =========================================================================
    # DATASETS
    # =========================================================================

    def _load_entities(self, online: bool) -> None:
        if not online:
            logger.info(f"Using {self.store.count('entities')} cached entities (offline mode)")
            return
        try:
            entities = self.client.get_entities()
        except SyncError as e:
            self._fail("entities", e)
            return
        self.store.put_records("entities", entities, replace=True)
        logger.info(f"Loaded {len(entities)} entities for offline use")

    def _load_incidents(self, online: bool) -> None:
        if not online:
            cached = self.store.count("incidents")
            if cached:
                logger.info(f"Using {cached} cached incidents (offline mode)")
            else:
                logger.warning("No incidents available offline")
            return
        try:
            incidents = self.client.get_incidents(status="ACTIVE")
        except SyncError as e:
            self._fail("incidents", e)
            return
        self.store.put_records("incidents", incidents, replace=True)
        logger.info(f"Loaded {len(incidents)} active incidents for offline use")

    def _load_assessment_types(self) -> None:
        self.store.set_setting(ASSESSMENT_TYPES_KEY, {
            "types": [t.value for t in AssessmentType],
            "timestamp": format_timestamp(utcnow()),
        })

    def _load_verified_assessments(self, online: bool) -> None:
        if not online:
            logger.info(f"Using {self.store.count('assessments')} cached assessments (offline mode)")
            return
        try:
            assessments = []
            for status in (VerificationStatus.VERIFIED.value, VerificationStatus.AUTO_VERIFIED.value):
                assessments.extend(self.client.get_assessments(verification_status=status))
        except SyncError as e:
            self._fail("verified assessments", e)
            return
        self.store.put_records("assessments", assessments)
        logger.info(f"Loaded {len(assessments)} verified assessments for response planning")

    def _load_system_config(self) -> None:
        self.store.set_setting(SYSTEM_CONFIG_KEY, {"data": system_config(),
                                                   "timestamp": format_timestamp(utcnow())})

    def _fail(self, dataset: str, error: SyncError) -> None:
        message = f"Failed to load {dataset}: {error.message}"
        logger.warning(message)
        self._errors.append(message)

    def _report(self, stage: str, message: str, progress: Optional[int] = None) -> None:
        update = BootstrapProgress(
            stage=stage,
            progress=STAGES[stage] if progress is None else progress,
            message=message,
            errors=list(self._errors),
        )
        logger.debug(f"Bootstrap {stage}: {update.progress}% - {message}")
        if self._progress is not None:
            try:
                self._progress(update)
            except Exception as e:
                logger.error(f"Error in bootstrap progress callback: {e}")

    # =========================================================================
    # STATUS
    # =========================================================================

    def get_bootstrap_status(self) -> Dict[str, Any]:
        last_run = self.last_bootstrap
        stale = last_run is None or utcnow() - last_run > timedelta(hours=self.staleness_hours)
        return {
            "is_bootstrapping": self._is_bootstrapping,
            "last_bootstrap": format_timestamp(last_run),
            "role": self.store.get_setting(BOOTSTRAP_ROLE_KEY),
            "needs_bootstrap": stale,
        }

    def get_system_config(self) -> Dict[str, Any]:
        cached = self.store.get_setting(SYSTEM_CONFIG_KEY)
        return cached["data"] if cached else system_config()

    def refresh_offline_data(self, role: Optional[str] = None, on_progress: Optional[ProgressCallback] = None) -> bool:
        """Forget the last run and bootstrap again."""
        self.store.delete_setting(LAST_BOOTSTRAP_KEY)
        role = role or self.store.get_setting(BOOTSTRAP_ROLE_KEY) or RoleName.ASSESSOR.value
        return self.bootstrap(role, on_progress)
