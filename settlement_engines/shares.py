"""
Module: settlement_engines.shares
Responsibility:
    Convert per-beneficiary unit counts into normalized percentage shares
    under the facility's distribution mode.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Percentages are rounded to 4 decimal places (ROUND_HALF_UP).
    - Sum of total shares is 100 within 0.0001 per beneficiary; same for
      subset shares when the subset is non-empty.
    - Beneficiaries with zero subset units stay in the output.
    - Output is ordered by beneficiary id string.
    - No division by zero: an empty pool yields 0 % shares.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
from decimal import Decimal
from uuid import UUID

from settlement_engines.membership import UnitCount
from settlement_kernel.db.types import HUNDRED, ZERO, round_percent
from settlement_kernel.domain.distribution import DistributionMode, ShareBasis
from settlement_kernel.logging_config import get_logger

logger = get_logger("engines.shares")


@dataclass(frozen=True)
class BeneficiaryShare:
    """
    Share of one beneficiary in the facility's pool.

    ``total_unit_pool`` / ``subset_unit_pool`` are the denominators the
    percentages were derived from.  When set (> 0) the allocation engine
    uses the exact unit ratio instead of the rounded percentage, so that
    rounding happens once, on the money amounts.  Shares built from a
    percentage alone leave them at 0.
    """

    beneficiary_id: UUID
    total_units: int = 0
    subset_units: int = 0
    total_share_percent: Decimal = ZERO
    subset_share_percent: Decimal = ZERO
    allocation_basis: str = ""
    beneficiary_name: str = ""
    total_unit_pool: int = 0
    subset_unit_pool: int = 0

    def share_percent(self, basis: ShareBasis) -> Decimal:
        """Rounded (4 dp) percentage for ``basis``."""
        if basis is ShareBasis.SUBSET:
            return self.subset_share_percent
        return self.total_share_percent

    def exact_percent(self, basis: ShareBasis) -> Decimal:
        """Unrounded percentage for ``basis``; the rounded one when no pool is known."""
        if basis is ShareBasis.SUBSET:
            units, pool = self.subset_units, self.subset_unit_pool
        else:
            units, pool = self.total_units, self.total_unit_pool
        if pool > 0:
            return Decimal(units) * HUNDRED / Decimal(pool)
        return self.share_percent(basis)

    def basis_text(self, basis: ShareBasis) -> str:
        """``"{units}/{pool} ({label})"`` for ``basis``; empty when no pool is known."""
        if basis is ShareBasis.SUBSET:
            units, pool = self.subset_units, self.subset_unit_pool
        else:
            units, pool = self.total_units, self.total_unit_pool
        if pool <= 0:
            return ""
        return f"{units}/{pool} ({basis.label})"

    @classmethod
    def of_percent(
        cls,
        beneficiary_id: UUID,
        percent: Decimal | str,
        allocation_basis: str = "",
    ) -> BeneficiaryShare:
        """A share given only as a percentage (total and subset alike)."""
        pct = round_percent(Decimal(percent))
        return cls(
            beneficiary_id=beneficiary_id,
            total_share_percent=pct,
            subset_share_percent=pct,
            allocation_basis=allocation_basis or f"{pct}%",
        )


def _percent(units: int, pool: int) -> Decimal:
    if pool <= 0:
        return ZERO
    return round_percent(Decimal(units) * HUNDRED / Decimal(pool))


class ShareCalculator:
    """
    Compute beneficiary shares from unit counts.

    Contract:
        Pure, deterministic; raises nothing for well-formed counts.
    """

    def compute_shares(
        self,
        per_beneficiary: Mapping[UUID, UnitCount],
        total_units: int,
        mode: DistributionMode,
        names: Mapping[UUID, str] | None = None,
    ) -> list[BeneficiaryShare]:
        """
        Args:
            per_beneficiary: Unit counts keyed by beneficiary id.
            total_units: Resolved units across all beneficiaries.
            mode: Active distribution mode.
            names: Optional display names keyed by beneficiary id.

        Returns:
            One share per beneficiary, ordered by beneficiary id.
        """
        names = names or {}
        rule = mode.rule
        total_subset_units = sum(c.subset for c in per_beneficiary.values())

        basis = rule.basis
        if basis is ShareBasis.SUBSET and total_subset_units == 0:
            # The engine falls back to total shares; describe what it will apply
            basis = ShareBasis.TOTAL
            logger.warning("shares_empty_subset_pool", extra={
                "mode": mode.value,
                "beneficiary_count": len(per_beneficiary),
            })

        shares: list[BeneficiaryShare] = []
        for beneficiary_id in sorted(per_beneficiary, key=str):
            count = per_beneficiary[beneficiary_id]
            share = BeneficiaryShare(
                beneficiary_id=beneficiary_id,
                total_units=count.total,
                subset_units=count.subset,
                total_share_percent=_percent(count.total, total_units),
                subset_share_percent=_percent(count.subset, total_subset_units),
                beneficiary_name=names.get(beneficiary_id, str(beneficiary_id)),
                total_unit_pool=total_units,
                subset_unit_pool=total_subset_units,
            )
            shares.append(replace(share, allocation_basis=share.basis_text(basis)))

        logger.info("shares_computed", extra={
            "mode": mode.value,
            "beneficiary_count": len(shares),
            "total_units": total_units,
            "total_subset_units": total_subset_units,
        })
        return shares
