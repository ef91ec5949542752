"""Reading config.yaml into an AppConfig.

The file is optional: without one every setting takes its compiled-in
default. When present it is parsed with PyYAML and checked by the pydantic
models in config_schema. The loaded config is cached per process.

Usage:
    from inbox_triage.config import get_config

    config = get_config()
    config.transport.backend  # "graph" or "ews"
"""

import os
import threading
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from inbox_triage.config_schema import CURRENT_SCHEMA_VERSION, AppConfig
from inbox_triage.core.errors import ConfigLoadError, ConfigValidationError
from inbox_triage.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path("config/config.yaml")
CONFIG_PATH_ENV = "INBOX_TRIAGE_CONFIG_PATH"

_cache_lock = threading.Lock()
_cached: AppConfig | None = None


def config_path() -> Path:
    """Location of config.yaml: $INBOX_TRIAGE_CONFIG_PATH or config/config.yaml."""
    override = os.environ.get(CONFIG_PATH_ENV)
    return Path(override) if override else DEFAULT_CONFIG_PATH


def _describe_error(err: Any) -> str:
    location = ".".join(str(part) for part in err["loc"]) or "(root)"
    if err["type"] == "missing":
        return f"  - {location}: required but not set"
    if err["type"] == "literal_error":
        return f"  - {location}: {err['msg']} (got {err.get('input')!r})"
    return f"  - {location}: {err['msg']}"


def read_config_file(path: Path) -> dict[str, Any]:
    """Parse a YAML file into a mapping; an empty file is an empty mapping.

    Raises:
        ConfigLoadError: If the file is missing, unreadable, not YAML or not a mapping
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigLoadError(
            f"Configuration file not found: {path}. "
            f"Copy config/config.yaml.example or set {CONFIG_PATH_ENV}."
        ) from None
    except OSError as e:
        raise ConfigLoadError(f"Cannot read configuration file {path}: {e}") from e

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Failed to parse YAML in {path}:\n{e}") from e

    if data is None:
        return {}
    if isinstance(data, dict):
        return data
    raise ConfigLoadError(
        f"{path} must contain a YAML mapping at the top level, not a {type(data).__name__}"
    )


def parse_config(data: dict[str, Any], source: Path | str = "<memory>") -> AppConfig:
    """Build an AppConfig from a mapping.

    Raises:
        ConfigValidationError: On schema violations or an unsupported schema_version
    """
    try:
        config = AppConfig.model_validate(data)
    except ValidationError as e:
        details = "\n".join(_describe_error(err) for err in e.errors())
        raise ConfigValidationError(f"Invalid configuration in {source}:\n{details}") from e

    if config.schema_version > CURRENT_SCHEMA_VERSION:
        raise ConfigValidationError(
            f"{source} uses schema_version {config.schema_version}, which is newer than "
            f"the supported version {CURRENT_SCHEMA_VERSION}. Upgrade inbox-triage."
        )
    return config


def load_config(path: Path | None = None, allow_missing: bool = False) -> AppConfig:
    """Read and validate a config file.

    Args:
        path: File to read; defaults to config_path()
        allow_missing: Return defaults instead of raising when the file is absent

    Raises:
        ConfigLoadError: If the file cannot be read
        ConfigValidationError: If its contents are invalid
    """
    path = path or config_path()

    if allow_missing and not path.exists():
        logger.info("No configuration file, using defaults", path=str(path))
        return AppConfig()

    config = parse_config(read_config_file(path), path)
    logger.info(
        "Configuration loaded",
        path=str(path),
        backend=config.transport.backend,
        max_items=config.transport.max_items,
    )
    return config


def get_config(allow_missing: bool = True) -> AppConfig:
    """Process-wide config, loaded on first use.

    Raises:
        ConfigLoadError: If the file cannot be read
        ConfigValidationError: If its contents are invalid
    """
    global _cached

    with _cache_lock:
        if _cached is None:
            _cached = load_config(allow_missing=allow_missing)
        return _cached


def describe_config(config: AppConfig) -> str:
    """Short human-readable summary of the effective settings."""
    return "\n".join(
        [
            f"Configuration valid (schema version {config.schema_version})",
            f"  - backend: {config.transport.backend}",
            f"  - max items: {config.transport.max_items}",
            f"  - days back: {config.rules.days_back}",
            f"  - user: {config.user_email or '(from sign-in)'}",
        ]
    )


def validate_config_file(path: Path | None = None) -> tuple[bool, str]:
    """Check a config file without caching it.

    Returns:
        (True, summary) when valid, otherwise (False, error message)
    """
    try:
        config = load_config(path or config_path())
    except ConfigLoadError as e:
        return False, f"Load error: {e}"
    except ConfigValidationError as e:
        return False, f"Validation error: {e}"
    return True, describe_config(config)


def reset_config() -> None:
    """Drop the cached config (tests)."""
    global _cached
    with _cache_lock:
        _cached = None
