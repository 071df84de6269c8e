# =============================================================================
# drms_core/errors/handlers.py
# Error Display for the Streamlit Dashboards
# =============================================================================

from __future__ import annotations
from typing import List, Optional

import streamlit as st

from drms_core.logging import get_logger
from .exceptions import (
    AuthorizationError,
    ConflictAlreadyResolvedError,
    DRMSError,
    SyncError,
    ValidationError,
)

logger = get_logger(__name__)

OFFLINE_HINT = "The server could not be reached. Changes stay on this device and sync when the connection returns."


def user_message(error: DRMSError) -> str:
    """What a field user should read for a platform error."""
    if isinstance(error, SyncError) and error.status_code is None:
        return OFFLINE_HINT
    if isinstance(error, AuthorizationError) and error.details.get("unauthorizedEntities"):
        entities = ", ".join(error.details["unauthorizedEntities"])
        return f"{error.message}. You are not assigned to: {entities}"
    return error.message


def _detail_lines(error: DRMSError) -> List[str]:
    if isinstance(error, ValidationError):
        return list(error.details.get("errors", []))
    return []


def handle_error(error: Exception, user_text: Optional[str] = None) -> None:
    """
    Log an error and show it on the current page.

    Platform errors are shown with their message; anything else is shown
    as a generic failure with the exception text.
    """
    if not isinstance(error, DRMSError):
        logger.error(f"Unexpected error: {error}", exc_info=error)
        st.error(f"Error: {user_text or error}")
        return

    logger.warning(f"[{error.code}] {error.message}", extra={"details": error.details})

    if isinstance(error, ConflictAlreadyResolvedError):
        st.info("This conflict was already resolved by another coordinator.")
        return

    message = user_text or user_message(error)
    if error.recoverable:
        st.error(message)
    else:
        st.error(f"{message}. Please contact an administrator.")

    for line in _detail_lines(error):
        st.caption(f"• {line}")
    if error.details and st.session_state.get("debug_mode", False):
        with st.expander("Error details", expanded=False):
            st.json(error.details)


class ErrorContext:
    """
    Wraps a page action: platform errors are shown and swallowed so the
    page keeps rendering; other exceptions are shown and re-raised.

    Usage:
        with ErrorContext("Resolve conflict", show_success=True):
            registry.sync.resolve({"conflictId": conflict_id}, principal)
    """

    def __init__(
        self,
        operation: str,
        show_success: bool = False,
        success_message: Optional[str] = None,
    ):
        self.operation = operation
        self.show_success = show_success
        self.success_message = success_message
        self.failed = False

    def __enter__(self) -> ErrorContext:
        logger.debug(f"Starting: {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is None:
            logger.info(f"Completed: {self.operation}")
            if self.show_success:
                st.success(self.success_message or f"{self.operation} completed")
            return False

        self.failed = True
        if isinstance(exc_val, DRMSError):
            handle_error(exc_val)
            return True

        handle_error(exc_val, user_text=f"{self.operation} failed: {exc_val}")
        return False
