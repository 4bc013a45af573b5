"""
BillingConfig schema.

Frozen dataclasses parsed from YAML by ``billing_config.loader``.  The
config package knows nothing about invoices; cadence is validated against
the names the batch layer understands.
"""

from __future__ import annotations

from dataclasses import dataclass

CADENCES = ("monthly", "weekly", "daily")

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class DatabaseConfig:
    url: str
    echo: bool = False
    pool_size: int = 10


@dataclass(frozen=True)
class ScheduleConfig:
    """When billing passes run and how many invoices each page holds."""

    cadence: str = "monthly"
    batch_size: int = 100
    enabled: bool = True


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class BillingConfig:
    """Root configuration object returned by ``get_active_config()``."""

    database: DatabaseConfig
    schedule: ScheduleConfig = ScheduleConfig()
    logging: LoggingConfig = LoggingConfig()
    source: str | None = None  # Path the YAML was read from
    checksum: str = ""  # SHA-256 of the canonical settings
