"""
Module: settlement_kernel.selectors.settlement_selector
Responsibility: Settlement lookup for the allocation pipeline.  Turns a
    settlement row, its line items and its facility's distribution mode
    into a ``SettlementInfo`` DTO (implements ``SettlementSource``).
Architecture position: Kernel > Selectors.  Read-only.

Pool derivation:
    total_taxable   = round2(sum(item.taxable_amount))
    total_exempt    = round2(sum(item.exempt_amount))
    total_usage_fee = round2(total_taxable + total_exempt)
    direct_billing  = sum(item.subtotal) per direct_billing_beneficiary_id,
                      left unrounded (the engine rounds per item)

Failure modes:
    - SettlementNotFoundError when the settlement does not exist or belongs
      to another tenant.
    - ConfigurationError when the facility stores an unknown mode code.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_kernel.db.types import ZERO
from settlement_kernel.domain.distribution import DistributionMode
from settlement_kernel.domain.dtos import SettlementInfo, SettlementPool
from settlement_kernel.exceptions import ConfigurationError, SettlementNotFoundError
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.facility import Facility
from settlement_kernel.models.settlement import Settlement, SettlementItem
from settlement_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.settlement")


class SettlementSelector(BaseSelector[Settlement]):
    """
    Read settlements as the allocation pipeline needs them.

    Guarantees:
        - Tenant scoping: a settlement of another tenant is reported as
          not found, never returned.
        - Returns frozen DTOs only.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    def load(self, tenant_id: UUID, settlement_id: UUID) -> SettlementInfo:
        row = self.session.execute(
            select(Settlement, Facility.distribution_mode)
            .join(Facility, Facility.id == Settlement.facility_id)
            .where(
                Settlement.id == settlement_id,
                Settlement.tenant_id == tenant_id,
            )
        ).first()
        if row is None:
            logger.info("settlement_not_found", extra={
                "settlement_id": str(settlement_id),
                "tenant_id": str(tenant_id),
            })
            raise SettlementNotFoundError(str(settlement_id), str(tenant_id))

        settlement, mode_code = row
        try:
            mode = DistributionMode.parse(mode_code)
        except ValueError as exc:
            raise ConfigurationError(
                f"facility {settlement.facility_id}",
                f"unknown distribution mode {mode_code!r}",
            ) from exc

        items = self.session.scalars(
            select(SettlementItem)
            .where(SettlementItem.settlement_id == settlement.id)
            .order_by(SettlementItem.position)
        ).all()

        taxable = sum((Decimal(i.taxable_amount) for i in items), ZERO)
        exempt = sum((Decimal(i.exempt_amount) for i in items), ZERO)

        direct_billing: dict[UUID, Decimal] = {}
        for item in items:
            if item.direct_billing_beneficiary_id is None:
                continue
            key = item.direct_billing_beneficiary_id
            direct_billing[key] = direct_billing.get(key, ZERO) + Decimal(item.subtotal)

        return SettlementInfo(
            settlement_id=settlement.id,
            tenant_id=settlement.tenant_id,
            facility_id=settlement.facility_id,
            year=settlement.year,
            status=str(getattr(settlement.status, "value", settlement.status)),
            reference_date=settlement.effective_reference_date,
            distribution_mode=mode,
            pool=SettlementPool(total_taxable=taxable, total_exempt=exempt),
            direct_billing=direct_billing,
        )

    def exists(self, tenant_id: UUID, settlement_id: UUID) -> bool:
        found = self.session.scalar(
            select(Settlement.id).where(
                Settlement.id == settlement_id,
                Settlement.tenant_id == tenant_id,
            )
        )
        return found is not None
