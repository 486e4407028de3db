"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Immutable structures that cross the boundary between the storage
    layer and the calculation/orchestration layers: the settlement pool
    (input), the settlement as seen by the allocation engine, and the
    persisted allocation header and items (output).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    ``from_model()`` class methods are boundary converters invoked only
    from services and selectors.

Invariants enforced:
    - Services and selectors return these DTOs, never ORM entities.
    - SettlementPool.total_usage_fee == round2(total_taxable + total_exempt).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from types import MappingProxyType
from typing import TYPE_CHECKING, Mapping
from uuid import UUID

from settlement_kernel.db.types import ZERO, round_money, to_decimal
from settlement_kernel.domain.distribution import DistributionMode

if TYPE_CHECKING:
    from settlement_kernel.models.allocation import (
        AllocationHeader as AllocationHeaderModel,
    )
    from settlement_kernel.models.allocation import (
        AllocationItem as AllocationItemModel,
    )


@dataclass(frozen=True)
class SettlementPool:
    """
    The aggregate to be distributed for one facility and period.

    Guarantees:
        - All totals are rounded to 2 decimal places.
        - total_usage_fee == round2(total_taxable + total_exempt).
    """

    total_taxable: Decimal
    total_exempt: Decimal
    total_usage_fee: Decimal = field(init=False)

    def __post_init__(self) -> None:
        taxable = round_money(to_decimal(self.total_taxable))
        exempt = round_money(to_decimal(self.total_exempt))
        object.__setattr__(self, "total_taxable", taxable)
        object.__setattr__(self, "total_exempt", exempt)
        object.__setattr__(self, "total_usage_fee", round_money(taxable + exempt))

    @classmethod
    def of(cls, taxable: Decimal | int | str, exempt: Decimal | int | str) -> SettlementPool:
        return cls(total_taxable=to_decimal(taxable), total_exempt=to_decimal(exempt))


@dataclass(frozen=True)
class SettlementInfo:
    """
    A settlement as the allocation engine needs it.

    direct_billing maps beneficiary id to the amount already billed to it
    directly (unrounded sum of item subtotals).
    """

    settlement_id: UUID
    tenant_id: UUID
    facility_id: UUID
    year: int
    status: str
    reference_date: date
    distribution_mode: DistributionMode
    pool: SettlementPool
    direct_billing: Mapping[UUID, Decimal] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def __post_init__(self) -> None:
        # Freeze the mapping so the DTO stays immutable
        object.__setattr__(
            self, "direct_billing", MappingProxyType(dict(self.direct_billing))
        )


@dataclass(frozen=True)
class AllocationItemInfo:
    """Persisted allocation of the pool to one beneficiary."""

    id: UUID
    allocation_id: UUID
    beneficiary_id: UUID
    position: int
    allocation_basis: str
    share_percent: Decimal
    total_allocated: Decimal
    direct_settlement: Decimal
    taxable_amount: Decimal
    vat_amount: Decimal
    exempt_amount: Decimal
    net_payable: Decimal

    @classmethod
    def from_model(cls, item: AllocationItemModel) -> AllocationItemInfo:
        return cls(
            id=item.id,
            allocation_id=item.allocation_id,
            beneficiary_id=item.beneficiary_id,
            position=item.position,
            allocation_basis=item.allocation_basis,
            share_percent=item.share_percent,
            total_allocated=item.total_allocated,
            direct_settlement=item.direct_settlement,
            taxable_amount=item.taxable_amount,
            vat_amount=item.vat_amount,
            exempt_amount=item.exempt_amount,
            net_payable=item.net_payable,
        )


@dataclass(frozen=True)
class AllocationHeaderInfo:
    """Persisted allocation header together with its items."""

    id: UUID
    tenant_id: UUID
    settlement_id: UUID
    status: str
    total_usage_fee: Decimal
    total_taxable: Decimal
    total_exempt: Decimal
    vat_rate_percent: Decimal
    distribution_mode: str
    period_label: str
    notes: str | None
    created_at: datetime | None
    created_by_id: UUID
    voided_at: datetime | None = None
    void_reason: str | None = None
    items: tuple[AllocationItemInfo, ...] = ()

    @property
    def item_count(self) -> int:
        return len(self.items)

    @property
    def total_allocated(self) -> Decimal:
        return sum((i.total_allocated for i in self.items), ZERO)

    @property
    def total_net_payable(self) -> Decimal:
        return sum((i.net_payable for i in self.items), ZERO)

    @classmethod
    def from_model(
        cls,
        header: AllocationHeaderModel,
        items: list[AllocationItemModel] | None = None,
    ) -> AllocationHeaderInfo:
        rows = header.items if items is None else items
        return cls(
            id=header.id,
            tenant_id=header.tenant_id,
            settlement_id=header.settlement_id,
            status=str(getattr(header.status, "value", header.status)),
            total_usage_fee=header.total_usage_fee,
            total_taxable=header.total_taxable,
            total_exempt=header.total_exempt,
            vat_rate_percent=header.vat_rate_percent,
            distribution_mode=header.distribution_mode,
            period_label=header.period_label,
            notes=header.notes,
            created_at=header.created_at,
            created_by_id=header.created_by_id,
            voided_at=header.voided_at,
            void_reason=header.void_reason,
            items=tuple(
                AllocationItemInfo.from_model(i)
                for i in sorted(rows, key=lambda r: r.position)
            ),
        )
