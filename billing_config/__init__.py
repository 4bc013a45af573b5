"""
billing_config -- single public entrypoint for billing configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly.

Resolution order:
    1. ``path`` argument, else the ``BILLING_CONFIG`` environment variable,
       else ``billing_config/sets/default.yaml``.
    2. ``BILLING_DATABASE_URL`` overrides ``database.url``.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ConfigError`` -- a value is missing or invalid.

Audit relevance:
    Every successful call emits a ``billing_config_loaded`` log entry with
    the source path and checksum, tying each process to the exact settings
    it ran with.  The database URL is never logged.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from billing_kernel.logging_config import get_logger

from billing_config.loader import load_yaml_file, parse_config
from billing_config.schema import (
    BillingConfig,
    DatabaseConfig,
    LoggingConfig,
    ScheduleConfig,
)

_logger = get_logger("config")

CONFIG_PATH_ENV = "BILLING_CONFIG"
DATABASE_URL_ENV = "BILLING_DATABASE_URL"

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> BillingConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: Explicit YAML path.  Overrides ``BILLING_CONFIG``.
        environ: Environment mapping (defaults to ``os.environ``).

    Returns:
        Frozen, validated ``BillingConfig``.
    """
    env = os.environ if environ is None else environ
    config_path = Path(path or env.get(CONFIG_PATH_ENV) or _DEFAULT_CONFIG_PATH)

    data = load_yaml_file(config_path)
    config = parse_config(
        data,
        database_url_override=env.get(DATABASE_URL_ENV),
        source=str(config_path),
    )

    _logger.info(
        "billing_config_loaded",
        extra={
            "source": config.source,
            "checksum": config.checksum,
            "cadence": config.schedule.cadence,
            "batch_size": config.schedule.batch_size,
            "schedule_enabled": config.schedule.enabled,
            "database_url_overridden": bool(env.get(DATABASE_URL_ENV)),
        },
    )
    return config


__all__ = [
    "CONFIG_PATH_ENV",
    "DATABASE_URL_ENV",
    "BillingConfig",
    "DatabaseConfig",
    "LoggingConfig",
    "ScheduleConfig",
    "get_active_config",
]
