# =============================================================================
# drms_core/errors/__init__.py
# Centralized Error Handling for the Disaster Response Platform
# =============================================================================

from .exceptions import (
    DRMSError,
    ValidationError,
    NotFoundError,
    DuplicateRecordError,
    AuthenticationError,
    AuthorizationError,
    RateLimitError,
    SyncError,
    ConflictAlreadyResolvedError,
    LocalStoreCorruptionError,
    ConfigurationError,
)

__all__ = [
    "DRMSError",
    "ValidationError",
    "NotFoundError",
    "DuplicateRecordError",
    "AuthenticationError",
    "AuthorizationError",
    "RateLimitError",
    "SyncError",
    "ConflictAlreadyResolvedError",
    "LocalStoreCorruptionError",
    "ConfigurationError",
]
