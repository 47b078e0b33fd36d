"""
Transcript Learning: Configuration

Settings are resolved from environment variables, then overridden by an
optional YAML file. There is no process-wide settings object: callers
build a Settings and hand it to the store, engines, and app explicitly.
"""

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Optional, Dict, Any

import yaml

from .errors import ValidationError

logger = logging.getLogger("learning_config")


# -----------------------------------------------------------------------------
# Defaults
# -----------------------------------------------------------------------------
DEFAULT_DB_PATH = "data/learning/learning.db"
DEFAULT_STORE_TIMEOUT_SECONDS = 5.0
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_BACKOFF_SECONDS = 0.2
DEFAULT_UTC_OFFSET_HOURS = 9
DEFAULT_STATS_CACHE_TTL_SECONDS = 300
DEFAULT_SEARCH_LIMIT = 20
DEFAULT_LOG_LEVEL = "INFO"


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the learning core."""
    db_path: str = DEFAULT_DB_PATH
    store_timeout_seconds: float = DEFAULT_STORE_TIMEOUT_SECONDS
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS
    utc_offset_hours: int = DEFAULT_UTC_OFFSET_HOURS
    stats_cache_ttl_seconds: int = DEFAULT_STATS_CACHE_TTL_SECONDS
    default_search_limit: int = DEFAULT_SEARCH_LIMIT
    log_level: str = DEFAULT_LOG_LEVEL

    @property
    def db_url(self) -> str:
        if self.db_path == ":memory:":
            return "sqlite://"
        return f"sqlite:///{self.db_path}"

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


# Environment variable -> settings field
ENV_VARS = {
    "LEARNING_DB_PATH": "db_path",
    "LEARNING_STORE_TIMEOUT": "store_timeout_seconds",
    "LEARNING_RETRY_ATTEMPTS": "retry_attempts",
    "LEARNING_RETRY_BACKOFF": "retry_backoff_seconds",
    "LEARNING_UTC_OFFSET": "utc_offset_hours",
    "LEARNING_STATS_CACHE_TTL": "stats_cache_ttl_seconds",
    "LEARNING_SEARCH_LIMIT": "default_search_limit",
    "LEARNING_LOG_LEVEL": "log_level",
}


def _coerce(name: str, value: Any) -> Any:
    """Convert a raw env/YAML value to the declared field type."""
    target = {f.name: f.type for f in fields(Settings)}[name]
    # Annotations may be strings depending on the interpreter
    type_name = target if isinstance(target, str) else target.__name__
    try:
        if type_name == "int":
            if isinstance(value, bool):
                raise TypeError("bool is not an int")
            return int(value)
        if type_name == "float":
            return float(value)
        return str(value)
    except (TypeError, ValueError):
        raise ValidationError(name, f"expected {type_name}, got {value!r}")


def read_yaml_file(file_path: Path) -> dict:
    """Read and parse a YAML file."""
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")
    with open(file_path, "r") as f:
        return yaml.safe_load(f) or {}


def load_settings(config_file: Optional[Path] = None) -> Settings:
    """
    Resolve settings.

    Order of precedence (later wins):
    1. Defaults
    2. Environment variables (LEARNING_*)
    3. YAML file (config_file, or LEARNING_CONFIG_FILE)
    """
    values: Dict[str, Any] = {}
    for env_name, field_name in ENV_VARS.items():
        raw = os.getenv(env_name)
        if raw is not None and raw != "":
            values[field_name] = _coerce(field_name, raw)

    if config_file is None and os.getenv("LEARNING_CONFIG_FILE"):
        config_file = Path(os.getenv("LEARNING_CONFIG_FILE"))

    if config_file is not None:
        data = read_yaml_file(Path(config_file))
        if not isinstance(data, dict):
            raise ValidationError("config_file", "top level must be a mapping")
        known = {f.name for f in fields(Settings)}
        for key, value in data.items():
            if key not in known:
                logger.warning(f"Ignoring unknown setting in {config_file}: {key}")
                continue
            values[key] = _coerce(key, value)

    settings = replace(Settings(), **values)
    if settings.store_timeout_seconds <= 0:
        raise ValidationError("store_timeout_seconds", "must be positive")
    if settings.retry_attempts < 1:
        raise ValidationError("retry_attempts", "must be at least 1")
    return settings
