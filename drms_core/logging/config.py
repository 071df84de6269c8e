# =============================================================================
# drms_core/logging/config.py
# Logging Setup for the API Server, Dashboards and Field Sync
# =============================================================================

import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from drms_core.errors.exceptions import DRMSError

LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_DIR = Path("logs")

# Chatty libraries: HTTP clients, the ASGI access log, Streamlit's file watcher
QUIET_LOGGERS = ("urllib3", "httpx", "httpcore", "uvicorn.access", "watchdog", "streamlit_authenticator")


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_to_file: bool = True,
    log_filename: Optional[str] = None,
    log_dir: Optional[Path] = None,
) -> None:
    """
    Configure the root logger once per process.

    Args:
        level: Level number or name ("DEBUG", "INFO", ...)
        log_to_file: Also write to logs/<log_filename>
        log_filename: Defaults to drms_YYYY-MM-DD.log
        log_dir: Defaults to ./logs
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_to_file:
        target = Path(log_dir) if log_dir else LOG_DIR
        target.mkdir(parents=True, exist_ok=True)
        filename = log_filename or f"drms_{datetime.now().strftime('%Y-%m-%d')}.log"
        handlers.append(logging.FileHandler(target / filename))

    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT, handlers=handlers, force=True)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("drms_core").info(f"Logging initialized at {logging.getLevelName(level)}")


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LogContext:
    """
    Times an operation. Platform errors are logged as warnings, anything
    else as an error with traceback. Never suppresses the exception.

    Usage:
        with LogContext(logger, "Generating pdf report 'Assessment Summary'"):
            engine.render_pdf(template)
    """

    def __init__(self, logger: logging.Logger, operation: str):
        self.logger = logger
        self.operation = operation
        self.start_time = 0.0
        self.elapsed = 0.0

    def __enter__(self):
        self.start_time = time.perf_counter()
        self.logger.debug(f"{self.operation}... started")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed = time.perf_counter() - self.start_time

        if exc_type is None:
            self.logger.info(f"{self.operation}... completed ({self.elapsed:.2f}s)")
        elif isinstance(exc_val, DRMSError):
            self.logger.warning(f"{self.operation}... failed ({self.elapsed:.2f}s): {exc_val.message}")
        else:
            self.logger.error(f"{self.operation}... failed ({self.elapsed:.2f}s): {exc_val}", exc_info=True)
        return False
