"""
YAML loader for settlement configuration.

Parses a YAML document into ``settlement_config.schema`` dataclasses.

Invariants:
    * Every parsed object is a frozen dataclass from ``schema.py``.
    * Money and rate values are parsed from strings or ints into
      ``Decimal``; YAML floats are rejected.
    * All structural errors raise ``ConfigurationError`` naming the source.

Failure modes:
    * Missing file     -> ``FileNotFoundError`` propagates.
    * Malformed YAML   -> ``ConfigurationError`` wrapping ``yaml.YAMLError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from settlement_config.schema import (
    DatabaseSettings,
    SettlementConfig,
    SettlementSettings,
    TaxSettings,
)
from settlement_kernel.exceptions import ConfigurationError


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        ConfigurationError: if the file is not valid YAML or not a mapping.
    """
    with open(path) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(str(path), f"invalid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(str(path), "top-level document must be a mapping")
    return data


def parse_decimal(value: Any, source: str, name: str) -> Decimal:
    if isinstance(value, bool) or isinstance(value, float):
        raise ConfigurationError(source, f"{name} must be a string or integer, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ConfigurationError(source, f"{name} is not a number: {value!r}") from exc


def _section(data: dict[str, Any], key: str, source: str) -> dict[str, Any]:
    section = data.get(key) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(source, f"'{key}' must be a mapping")
    return section


def parse_settlement(data: dict[str, Any], source: str) -> SettlementSettings:
    defaults = SettlementSettings()
    statuses = data.get("calculable_statuses", defaults.calculable_statuses)
    if isinstance(statuses, str) or not statuses:
        raise ConfigurationError(source, "settlement.calculable_statuses must be a non-empty list")
    template = str(data.get("period_label_template", defaults.period_label_template))
    try:
        template.format(year=2000)
    except (KeyError, IndexError, ValueError) as exc:
        raise ConfigurationError(
            source, f"period_label_template may only use {{year}}: {template!r}"
        ) from exc
    return SettlementSettings(
        calculable_statuses=tuple(str(s).lower() for s in statuses),
        period_label_template=template,
        tax_type=str(data.get("tax_type", defaults.tax_type)).lower(),
    )


def parse_tax(data: dict[str, Any], source: str) -> TaxSettings:
    rates = data.get("fallback_rates") or {}
    if not isinstance(rates, dict):
        raise ConfigurationError(source, "tax.fallback_rates must be a mapping")
    parsed: dict[str, Decimal] = {}
    for tax_type, rate in rates.items():
        value = parse_decimal(rate, source, f"tax.fallback_rates.{tax_type}")
        if value < 0 or value > 100:
            raise ConfigurationError(source, f"tax rate {tax_type} out of range: {value}")
        parsed[str(tax_type).lower()] = value
    return TaxSettings(fallback_rates=parsed)


def parse_database(data: dict[str, Any], source: str) -> DatabaseSettings:
    defaults = DatabaseSettings()
    try:
        pool_size = int(data.get("pool_size", defaults.pool_size))
        max_overflow = int(data.get("max_overflow", defaults.max_overflow))
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(source, f"database pool settings must be integers: {exc}") from exc
    return DatabaseSettings(
        url=str(data.get("url", defaults.url)),
        echo=bool(data.get("echo", defaults.echo)),
        pool_size=pool_size,
        max_overflow=max_overflow,
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_config(data: dict[str, Any], source: str) -> SettlementConfig:
    """Build a ``SettlementConfig`` from an already-loaded YAML mapping."""
    try:
        version = int(data.get("version", 1))
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(source, f"version must be an integer: {data.get('version')!r}") from exc
    return SettlementConfig(
        config_id=str(data.get("config_id", "settlement")),
        version=version,
        settlement=parse_settlement(_section(data, "settlement", source), source),
        tax=parse_tax(_section(data, "tax", source), source),
        database=parse_database(_section(data, "database", source), source),
        checksum=compute_checksum(data),
        source=source,
    )


def load_config(path: Path) -> SettlementConfig:
    """Load and parse a configuration file."""
    return parse_config(load_yaml_file(path), str(path))
