"""
Configuration Loader (``billing_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the frozen
``billing_config.schema`` dataclasses.  The single public entry point for
runtime config is ``billing_config.get_active_config()``.

Invariants enforced
-------------------
* Every parse or validation error raises ``ConfigError`` naming the key.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the
  effective settings, after environment overrides.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict
from pathlib import Path
from typing import Any

import yaml

from billing_kernel.exceptions import ConfigError

from billing_config.schema import (
    CADENCES,
    LOG_LEVELS,
    BillingConfig,
    DatabaseConfig,
    LoggingConfig,
    ScheduleConfig,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a YAML file and return its contents as a dict (empty for an empty file).

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ConfigError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(str(path), "top-level YAML document must be a mapping")
    return data


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigError(key, "must be a mapping")
    return value


def _as_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    raise ConfigError(key, f"must be true or false, got {value!r}")


def _as_positive_int(key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(key, f"must be a positive integer, got {value!r}")
    return value


def parse_database(data: dict[str, Any]) -> DatabaseConfig:
    url = data.get("url")
    if not url or not isinstance(url, str):
        raise ConfigError("database.url", "is required")
    return DatabaseConfig(
        url=url,
        echo=_as_bool("database.echo", data.get("echo", False)),
        pool_size=_as_positive_int("database.pool_size", data.get("pool_size", 10)),
    )


def parse_schedule(data: dict[str, Any]) -> ScheduleConfig:
    cadence = str(data.get("cadence", "monthly")).strip().lower()
    if cadence not in CADENCES:
        raise ConfigError(
            "schedule.cadence", f"must be one of {', '.join(CADENCES)}, got {cadence!r}"
        )
    return ScheduleConfig(
        cadence=cadence,
        batch_size=_as_positive_int("schedule.batch_size", data.get("batch_size", 100)),
        enabled=_as_bool("schedule.enabled", data.get("enabled", True)),
    )


def parse_logging(data: dict[str, Any]) -> LoggingConfig:
    level = str(data.get("level", "INFO")).strip().upper()
    if level not in LOG_LEVELS:
        raise ConfigError("logging.level", f"unknown level {level!r}")
    return LoggingConfig(level=level)


def parse_config(
    data: dict[str, Any],
    database_url_override: str | None = None,
    source: str | None = None,
) -> BillingConfig:
    """
    Build a ``BillingConfig`` from a parsed YAML mapping.

    ``database_url_override`` (from ``BILLING_DATABASE_URL``) replaces
    ``database.url`` before validation.
    """
    database = dict(_section(data, "database"))
    if database_url_override:
        database["url"] = database_url_override

    database_config = parse_database(database)
    schedule_config = parse_schedule(_section(data, "schedule"))
    logging_config = parse_logging(_section(data, "logging"))

    checksum = compute_checksum({
        "database": asdict(database_config),
        "schedule": asdict(schedule_config),
        "logging": asdict(logging_config),
    })

    return BillingConfig(
        database=database_config,
        schedule=schedule_config,
        logging=logging_config,
        source=source,
        checksum=checksum,
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization (sorted keys)."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
