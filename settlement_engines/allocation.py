"""
Module: settlement_engines.allocation
Responsibility:
    Distribute a settlement pool across beneficiary shares, apply VAT to
    the taxable portion and net out amounts already billed directly.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Invoked by SettlementPersister after membership resolution and share
    computation.

Invariants enforced:
    - taxable = round2(pool.taxable * ratio / 100)
    - exempt  = round2(pool.exempt * ratio / 100)
      where ratio is the exact unit ratio units * 100 / unit_pool whenever
      the share carries its unit pool, and the 4 dp share percent only
      for shares given as a bare percentage.  This deviates from applying
      the stored share_percent: rounding the ratio first can push drift
      past 0.01 per beneficiary on large pools.  The stored share_percent
      is the ratio rounded to 4 dp.
    - total   = round2(taxable + exempt)
    - vat     = round2(taxable * vat_rate / 100), computed per item and
      never re-derived from header totals.
    - net     = round2(total - direct)
    - |sum(total) - pool.total_usage_fee| <= 0.01 * beneficiary_count.
      Exceeding drift is logged, never raised.
    - Output order equals input share order.

Failure modes:
    - None raised.  Malformed input (no shares) yields an empty result;
      the persister rejects that case before calling the engine.

Usage:
    engine = AllocationEngine()
    result = engine.allocate(
        pool=SettlementPool.of("10000", "2000"),
        shares=shares,
        direct_billing={fund_id: Decimal("1000")},
        vat_rate_percent=Decimal("19"),
        mode=DistributionMode.PROPORTIONAL,
    )
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from settlement_engines.shares import BeneficiaryShare
from settlement_engines.tracer import traced_engine
from settlement_kernel.db.types import (
    HUNDRED,
    ZERO,
    round_money,
    round_percent,
    to_decimal,
)
from settlement_kernel.domain.distribution import DistributionMode, ShareBasis
from settlement_kernel.domain.dtos import SettlementPool
from settlement_kernel.logging_config import get_logger

logger = get_logger("engines.allocation")

ROUNDING_TOLERANCE_PER_ITEM = Decimal("0.01")


@dataclass(frozen=True)
class AllocationItemResult:
    """Computed allocation for one beneficiary."""

    beneficiary_id: UUID
    position: int
    allocation_basis: str
    share_percent: Decimal
    taxable_amount: Decimal
    exempt_amount: Decimal
    total_allocated: Decimal
    direct_settlement: Decimal
    vat_amount: Decimal
    net_payable: Decimal
    beneficiary_name: str = ""

    @property
    def gross_payable(self) -> Decimal:
        """Net payable plus VAT on the taxable portion."""
        return round_money(self.net_payable + self.vat_amount)


@dataclass(frozen=True)
class AllocationResult:
    """
    Complete allocation of one pool.

    ``rounding_drift`` is ``sum(total_allocated) - pool.total_usage_fee``.
    """

    pool: SettlementPool
    vat_rate_percent: Decimal
    mode: DistributionMode
    basis: ShareBasis
    items: tuple[AllocationItemResult, ...]
    rounding_drift: Decimal

    @property
    def total_allocated(self) -> Decimal:
        return sum((i.total_allocated for i in self.items), ZERO)

    @property
    def total_vat(self) -> Decimal:
        return sum((i.vat_amount for i in self.items), ZERO)

    @property
    def total_direct_settlement(self) -> Decimal:
        return sum((i.direct_settlement for i in self.items), ZERO)

    @property
    def total_net_payable(self) -> Decimal:
        return sum((i.net_payable for i in self.items), ZERO)

    @property
    def drift_tolerance(self) -> Decimal:
        return ROUNDING_TOLERANCE_PER_ITEM * len(self.items)

    @property
    def within_tolerance(self) -> bool:
        return abs(self.rounding_drift) <= self.drift_tolerance


def select_basis(
    shares: Sequence[BeneficiaryShare],
    mode: DistributionMode,
) -> ShareBasis:
    """
    The share basis applied to the pool.

    Pooled mode uses the subset only while the subset pool is non-empty;
    otherwise every mode falls back to total units.
    """
    if mode.rule.basis is not ShareBasis.SUBSET:
        return ShareBasis.TOTAL
    subset_populated = any(
        s.subset_unit_pool > 0 or s.subset_share_percent > ZERO for s in shares
    )
    return ShareBasis.SUBSET if subset_populated else ShareBasis.TOTAL


class AllocationEngine:
    """
    Pure allocation calculator.

    Contract:
        Deterministic and side-effect-free apart from trace logging.
    """

    @traced_engine(
        "allocation",
        "1.0",
        fingerprint_fields=("pool", "shares", "direct_billing", "vat_rate_percent", "mode"),
    )
    def allocate(
        self,
        *,
        pool: SettlementPool,
        shares: Sequence[BeneficiaryShare],
        direct_billing: Mapping[UUID, Decimal] | None = None,
        vat_rate_percent: Decimal,
        mode: DistributionMode,
    ) -> AllocationResult:
        """
        Allocate ``pool`` across ``shares`` in input order.

        Amounts are taken from the exact unit ratio
        (``share.exact_percent``), not from the 4 dp ``share_percent``
        written on each item.  Only shares without a unit pool fall back to
        their rounded percentage.  When the mode's subset basis is empty the
        total basis is applied and each item's basis text names it.
        """
        direct_billing = direct_billing or {}
        vat_rate = to_decimal(vat_rate_percent)
        basis = select_basis(shares, mode)
        fallback = basis is not mode.rule.basis

        if fallback:
            logger.info("allocation_basis_fallback", extra={
                "mode": mode.value,
                "basis": basis.value,
            })

        items: list[AllocationItemResult] = []
        for position, share in enumerate(shares, start=1):
            percent = share.exact_percent(basis)
            basis_text = share.allocation_basis
            if fallback:
                basis_text = share.basis_text(basis) or basis_text

            taxable = round_money(pool.total_taxable * percent / HUNDRED)
            exempt = round_money(pool.total_exempt * percent / HUNDRED)
            total = round_money(taxable + exempt)
            direct = round_money(to_decimal(direct_billing.get(share.beneficiary_id, ZERO)))
            vat = round_money(taxable * vat_rate / HUNDRED)
            net = round_money(total - direct)

            items.append(
                AllocationItemResult(
                    beneficiary_id=share.beneficiary_id,
                    position=position,
                    allocation_basis=basis_text,
                    share_percent=round_percent(percent),
                    taxable_amount=taxable,
                    exempt_amount=exempt,
                    total_allocated=total,
                    direct_settlement=direct,
                    vat_amount=vat,
                    net_payable=net,
                    beneficiary_name=share.beneficiary_name,
                )
            )

        known = {s.beneficiary_id for s in shares}
        orphaned = [str(bid) for bid in direct_billing if bid not in known]
        if orphaned:
            logger.warning("direct_billing_without_share", extra={
                "beneficiary_ids": sorted(orphaned),
            })

        allocated = sum((i.total_allocated for i in items), ZERO)
        drift = allocated - pool.total_usage_fee
        tolerance = ROUNDING_TOLERANCE_PER_ITEM * len(items)
        if items and abs(drift) > tolerance:
            logger.warning("allocation_rounding_drift_exceeded", extra={
                "drift": drift,
                "tolerance": tolerance,
                "item_count": len(items),
            })

        logger.info("allocation_computed", extra={
            "mode": mode.value,
            "basis": basis.value,
            "item_count": len(items),
            "total_allocated": allocated,
            "rounding_drift": drift,
        })

        return AllocationResult(
            pool=pool,
            vat_rate_percent=vat_rate,
            mode=mode,
            basis=basis,
            items=tuple(items),
            rounding_drift=drift,
        )
