# =============================================================================
# drms_core/config/settings.py
# Layered Settings: defaults -> TOML -> environment
# =============================================================================
"""
Settings for the API server, the dashboards and the field-device sync layer.

Expected drms.toml (or a [drms] table in .streamlit/secrets.toml):

    api_base_url = "https://drms.example.org"
    database_path = "data/drms.db"
    local_store_path = "local_data/offline.db"
    secret_key = "change-me"

    [sync]
    retry_base_delay = 1.0
    retry_max_delay = 300.0
    max_attempts = 3

Environment variables override both, e.g. DRMS_API_BASE_URL or
DRMS_SYNC_MAX_ATTEMPTS.
"""

from __future__ import annotations
import os
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any, Dict, Optional

import toml

from drms_core.errors import ConfigurationError
from drms_core.logging import get_logger

logger = get_logger(__name__)

ENV_PREFIX = "DRMS_"
DEFAULT_CONFIG_FILES = (
    Path("drms.toml"),
    Path(".streamlit") / "secrets.toml",
)

# Nested TOML tables flattened onto Settings attributes
_TABLE_PREFIXES = ("sync", "bootstrap", "security", "api")


@dataclass
class Settings:
    """Runtime configuration shared by every layer."""

    # Server
    api_base_url: str = "http://localhost:8000"
    database_path: str = "data/drms.db"
    secret_key: str = "change-me-in-production"
    token_ttl_seconds: int = 8 * 3600
    rate_limit_requests: int = 100
    rate_limit_window_seconds: int = 60

    # Field device
    local_store_path: str = "local_data/offline.db"
    request_timeout: int = 30

    # Sync queue
    sync_retry_base_delay: float = 1.0
    sync_retry_max_delay: float = 300.0
    sync_max_attempts: int = 3
    sync_batch_size: int = 100
    sync_interval_seconds: int = 30

    # Bootstrap
    bootstrap_staleness_hours: int = 24

    # Local encryption
    security_key_rotation_days: int = 90
    security_max_old_keys: int = 5

    # Logging
    log_level: str = "INFO"
    log_to_file: bool = True

    extra: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _coerce(name: str, raw: Any, target_type: Any) -> Any:
    """Convert a raw TOML/env value onto the declared field type."""
    type_name = target_type if isinstance(target_type, str) else getattr(target_type, "__name__", "")
    try:
        if type_name == "bool":
            if isinstance(raw, bool):
                return raw
            return str(raw).strip().lower() in ("1", "true", "yes", "on")
        if type_name == "int":
            return int(raw)
        if type_name == "float":
            return float(raw)
        return str(raw)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Invalid value for setting '{name}': {raw!r}",
            config_key=name,
            expected_type=type_name,
        ) from e


def _flatten(data: Dict[str, Any]) -> Dict[str, Any]:
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, dict) and key in _TABLE_PREFIXES:
            for sub_key, sub_value in value.items():
                flat[f"{key}_{sub_key}"] = sub_value
        else:
            flat[key] = value
    return flat


def _read_toml(path: Path) -> Dict[str, Any]:
    try:
        data = toml.load(path)
    except (toml.TomlDecodeError, OSError) as e:
        raise ConfigurationError(f"Could not read config file {path}: {e}", config_key=str(path)) from e

    # secrets.toml keeps our keys under a [drms] table
    if path.name == "secrets.toml":
        data = data.get("drms", {})
    return _flatten(data)


def load_settings(
    config_file: Optional[Path] = None,
    env: Optional[Dict[str, str]] = None,
    **overrides: Any,
) -> Settings:
    """
    Build Settings from defaults, the first config file found, the
    environment and explicit keyword overrides (in that order).
    """
    env = os.environ if env is None else env
    known = {f.name: f.type for f in fields(Settings) if f.name != "extra"}
    values: Dict[str, Any] = {}
    extra: Dict[str, Any] = {}

    candidates = [Path(config_file)] if config_file else list(DEFAULT_CONFIG_FILES)
    for path in candidates:
        if path.exists():
            for key, value in _read_toml(path).items():
                if key in known:
                    values[key] = _coerce(key, value, known[key])
                else:
                    extra[key] = value
            logger.info(f"Loaded settings from {path}")
            break
    else:
        if config_file:
            raise ConfigurationError(f"Config file not found: {config_file}", config_key="config_file")

    for name, declared in known.items():
        env_key = f"{ENV_PREFIX}{name.upper()}"
        if env_key in env:
            values[name] = _coerce(name, env[env_key], declared)

    for name, value in overrides.items():
        if name not in known:
            raise ConfigurationError(f"Unknown setting: {name}", config_key=name)
        values[name] = value

    return Settings(extra=extra, **values)
