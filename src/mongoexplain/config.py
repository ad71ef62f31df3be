"""
Configuration system for mongoexplain.

Implements 12-factor config principles:
- Environment variables as primary config source
- Optional JSON/YAML config file for local development

Usage:
    from mongoexplain.config import get_config

    config = get_config()
    config.uri                 # 'mongodb://localhost:27017'
    config.verbosity           # Verbosity.QUERY_PLANNER

Environment variables:
    MONGOEXPLAIN_URI=mongodb://db.internal:27017/shop
    MONGOEXPLAIN_VERBOSITY=executionStats
    MONGOEXPLAIN_POLICY_FILE=.mongoexplain/policy.yml
    MONGOEXPLAIN_SERVER_SELECTION_TIMEOUT_MS=2000
    MONGOEXPLAIN_LOG_LEVEL=DEBUG
    MONGOEXPLAIN_CONFIG_FILE=mongoexplain.yml
"""

from __future__ import annotations

import json
import logging
import os
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from mongoexplain.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "MONGOEXPLAIN_"


class Verbosity(str, Enum):
    """Explain verbosity modes accepted by the server."""

    QUERY_PLANNER = "queryPlanner"
    EXECUTION_STATS = "executionStats"
    ALL_PLANS_EXECUTION = "allPlansExecution"


class Config(BaseModel):
    """
    mongoexplain configuration.

    Loaded from environment variables and optional config file.
    """

    model_config = ConfigDict(frozen=True)

    uri: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB connection string used by the CLI",
    )
    verbosity: Verbosity = Field(
        default=Verbosity.QUERY_PLANNER,
        description="Explain verbosity sent to servers that support it",
    )
    policy_file: Path | None = Field(
        default=None,
        description="YAML/JSON file with policy rules evaluated before the defaults",
    )
    server_selection_timeout_ms: int = Field(
        default=5000,
        gt=0,
        description="Driver server selection timeout in milliseconds",
    )
    log_level: str = Field(
        default="WARNING",
        description="Logging level for the CLI",
    )

    def client_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for pymongo.MongoClient."""
        return {"serverSelectionTimeoutMS": self.server_selection_timeout_ms}


def _parse_env_int(value: str | None, default: int) -> int:
    """Parse integer from environment variable."""
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Could not parse integer %r, using %d", value, default)
        return default


def load_config_from_env() -> Config:
    """
    Load configuration from MONGOEXPLAIN_* environment variables.

    Raises:
        ConfigurationError: If a value is present but invalid.
    """
    config_kwargs: dict[str, Any] = {
        "server_selection_timeout_ms": _parse_env_int(
            os.environ.get(f"{ENV_PREFIX}SERVER_SELECTION_TIMEOUT_MS"), 5000
        ),
    }

    for key in ("uri", "verbosity", "policy_file", "log_level"):
        value = os.environ.get(f"{ENV_PREFIX}{key.upper()}")
        if value:
            config_kwargs[key] = value

    return _build_config(config_kwargs, source="environment")


def load_config_from_file(path: Path) -> Config:
    """
    Load configuration from a JSON or YAML file.

    Falls back to environment variables when the file does not exist.

    Raises:
        ConfigurationError: If the file exists but cannot be parsed.
    """
    if not path.exists():
        logger.warning("Config file not found: %s, using environment", path)
        return load_config_from_env()

    try:
        raw = path.read_text(encoding="utf-8")
        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(raw)
        else:
            data = json.loads(raw)
    except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot load config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    return _build_config(data, source=str(path))


def _build_config(data: dict[str, Any], source: str) -> Config:
    try:
        return Config(**data)
    except ValidationError as e:
        first = e.errors()[0]
        key = ".".join(str(part) for part in first.get("loc", ()))
        raise ConfigurationError(
            f"Invalid configuration from {source}: {key}: {first.get('msg')}",
            config_key=key or None,
        ) from e


@lru_cache(maxsize=1)
def get_config() -> Config:
    """
    Get the global configuration instance.

    Loads from:
    1. MONGOEXPLAIN_CONFIG_FILE environment variable (if set)
    2. Environment variables (default)

    Result is cached for the lifetime of the process.
    """
    config_file = os.environ.get(f"{ENV_PREFIX}CONFIG_FILE")

    if config_file:
        return load_config_from_file(Path(config_file))

    return load_config_from_env()


def reset_config() -> None:
    """Reset the cached configuration (mainly for testing)."""
    get_config.cache_clear()
