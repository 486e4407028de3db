"""
TaxRateService -- point-in-time VAT rate lookup.

Responsibility:
    Resolves the rate of a tax category effective on a reference date from
    the ``tax_rate_configs`` table (implements ``TaxRateProvider``).  When no
    row is effective, falls back to the rates handed in by the caller
    (normally ``settlement_config``'s ``tax.fallback_rates``).

Architecture position:
    Kernel > Services.  Read-only; the tax-rate table is maintained by an
    external administration workflow.

Lookup rule:
    latest valid_from <= on_date whose valid_to is NULL or >= on_date.

Failure modes:
    - TaxRateNotFoundError: no effective row and no fallback for the
      category.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from settlement_kernel.db.types import round_money, to_decimal
from settlement_kernel.exceptions import TaxRateNotFoundError
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.tax_rate import TaxRateConfig
from settlement_kernel.services.base import BaseService

logger = get_logger("services.tax_rate")


class TaxRateService(BaseService[TaxRateConfig]):
    """
    Resolve VAT rates by category and date.

    Args:
        session: Caller's session.
        fallback_rates: Rate per category used when the table has no
            effective row.  Empty means "no fallback".
    """

    def __init__(
        self,
        session: Session,
        fallback_rates: Mapping[str, Decimal] | None = None,
    ):
        super().__init__(session)
        self._fallback_rates = {
            str(k).lower(): to_decimal(v) for k, v in (fallback_rates or {}).items()
        }

    def rate_percent(self, tenant_id: UUID, tax_type: str, on_date: date) -> Decimal:
        tax_type = str(getattr(tax_type, "value", tax_type)).lower()
        rate = self.session.scalar(
            select(TaxRateConfig.rate_percent)
            .where(
                TaxRateConfig.tenant_id == tenant_id,
                TaxRateConfig.tax_type == tax_type,
                TaxRateConfig.valid_from <= on_date,
                or_(
                    TaxRateConfig.valid_to.is_(None),
                    TaxRateConfig.valid_to >= on_date,
                ),
            )
            .order_by(TaxRateConfig.valid_from.desc())
            .limit(1)
        )
        if rate is not None:
            return round_money(Decimal(rate))

        fallback = self._fallback_rates.get(tax_type)
        if fallback is None:
            logger.warning("tax_rate_not_found", extra={
                "tax_type": tax_type,
                "on_date": on_date,
            })
            raise TaxRateNotFoundError(tax_type, on_date.isoformat())

        logger.warning("tax_rate_fallback_used", extra={
            "tax_type": tax_type,
            "on_date": on_date,
            "rate_percent": fallback,
        })
        return round_money(fallback)
