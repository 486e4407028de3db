"""
settlement_config -- single public entrypoint for settlement configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a frozen ``SettlementConfig``.

Architecture position:
    Configuration -- YAML-driven settings, validated at load time.
    This package sits above ``settlement_kernel`` and below
    ``settlement_services``.  The kernel MUST NEVER import from
    ``settlement_config``; services pass the values it needs explicitly.

Resolution order:
    1. ``path`` argument, when given.
    2. ``SETTLEMENT_CONFIG`` environment variable.
    3. The packaged ``defaults.yaml``.
    ``DATABASE_URL``, when set, overrides ``database.url``.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``SETTLEMENT_CONFIG_TRACE`` log entry with config_id, version,
    checksum and source, tying each allocation to the configuration that
    governed it.
"""

from __future__ import annotations

import os
from dataclasses import replace
from pathlib import Path

from settlement_config.loader import load_config
from settlement_config.schema import (
    DatabaseSettings,
    SettlementConfig,
    SettlementSettings,
    TaxSettings,
)
from settlement_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"
CONFIG_ENV_VAR = "SETTLEMENT_CONFIG"
DATABASE_URL_ENV_VAR = "DATABASE_URL"


def get_active_config(path: Path | str | None = None) -> SettlementConfig:
    """The ONLY public configuration entrypoint.

    Non-goals:
        - Does NOT cache; callers hold the returned config for the
          lifetime of their unit of work.

    Raises:
        FileNotFoundError: If the selected file does not exist.
        ConfigurationError: If the file fails validation.
    """
    env_path = os.environ.get(CONFIG_ENV_VAR)
    config_path = Path(path or env_path or DEFAULT_CONFIG_PATH)

    config = load_config(config_path)

    database_url = os.environ.get(DATABASE_URL_ENV_VAR)
    if database_url:
        config = replace(config, database=replace(config.database, url=database_url))

    _logger.info(
        "SETTLEMENT_CONFIG_TRACE",
        extra={
            "trace_type": "SETTLEMENT_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "config_checksum": config.checksum,
            "config_source": config.source,
            "database_url_overridden": bool(database_url),
        },
    )
    return config


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "DatabaseSettings",
    "SettlementConfig",
    "SettlementSettings",
    "TaxSettings",
    "get_active_config",
]
