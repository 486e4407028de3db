"""
Settlement configuration schema.

Frozen dataclasses the YAML loader produces.  Runtime code receives a
``SettlementConfig`` from ``get_active_config()`` and never reads YAML,
environment variables or files itself.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping

# ---------------------------------------------------------------------------
# Settlement pipeline
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SettlementSettings:
    """Behaviour of the allocation pipeline."""

    calculable_statuses: tuple[str, ...] = ("calculated", "settled", "advance_created")
    period_label_template: str = "Usage fee {year}"
    tax_type: str = "standard"

    def period_label(self, year: int) -> str:
        return self.period_label_template.format(year=year)


# ---------------------------------------------------------------------------
# Tax
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TaxSettings:
    """Fallback VAT rates (percent) used when no tax-rate row is effective."""

    fallback_rates: Mapping[str, Decimal] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "fallback_rates", MappingProxyType(dict(self.fallback_rates))
        )


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite://"
    echo: bool = False
    pool_size: int = 5
    max_overflow: int = 10


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SettlementConfig:
    """
    Complete runtime configuration.

    ``checksum`` is the SHA-256 of the canonical JSON of the parsed source
    document; identical YAML always yields the identical checksum.
    """

    config_id: str
    version: int
    settlement: SettlementSettings
    tax: TaxSettings
    database: DatabaseSettings
    checksum: str = ""
    source: str = ""
