"""
Module: settlement_engines.membership
Responsibility:
    Reconstruct which beneficiary held which member unit during a
    settlement period and count units per beneficiary.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Works on a ``FacilitySnapshot`` supplied by a ``MembershipSource``.

Invariants enforced:
    - A unit contributes to at most one beneficiary.
    - Only ACTIVE units and ACTIVE membership records are considered.
    - A record matches the period when
      valid_from <= Dec 31 AND (valid_to IS NULL OR valid_to >= Jan 1).
    - Overlapping active records for one unit are tie-broken on the latest
      valid_from (then the greatest record id), never raised.
    - total_units counts resolved units only, so shares derived from it
      always sum to 100 %.
    - Output ordering is stable (beneficiaries sorted by id string).

Failure modes:
    - InvalidPeriodError when period_year is outside 1..9999.
    - NoMembersError when the facility has no active member units.

Usage:
    resolver = MembershipResolver()
    resolution = resolver.resolve(snapshot, 2024, DistributionMode.POOLED)
    resolution.per_beneficiary[fund_id].total
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import MAXYEAR, MINYEAR, date
from uuid import UUID

from settlement_engines.tracer import traced_engine
from settlement_kernel.domain.distribution import DistributionMode
from settlement_kernel.domain.membership import (
    FacilitySnapshot,
    MemberUnitSnapshot,
    MembershipWindow,
)
from settlement_kernel.exceptions import InvalidPeriodError, NoMembersError
from settlement_kernel.logging_config import get_logger

logger = get_logger("engines.membership")


@dataclass(frozen=True)
class UnitCount:
    """Units held by one beneficiary during the period."""

    total: int = 0
    subset: int = 0


@dataclass(frozen=True)
class MembershipResolution:
    """
    Snapshot of resolved memberships for one facility and period.

    Guarantees:
        - ``total_units == sum(c.total for c in per_beneficiary.values())``.
        - ``per_beneficiary`` iterates in beneficiary id order.
        - ``unresolved_unit_ids`` lists active units without a matching record.
    """

    facility_id: UUID
    period_year: int
    total_units: int
    per_beneficiary: dict[UUID, UnitCount] = field(default_factory=dict)
    unresolved_unit_ids: tuple[UUID, ...] = ()

    @property
    def beneficiary_count(self) -> int:
        return len(self.per_beneficiary)

    @property
    def total_subset_units(self) -> int:
        return sum(c.subset for c in self.per_beneficiary.values())


def period_bounds(period_year: int) -> tuple[date, date]:
    """January 1st and December 31st of ``period_year``.

    Raises:
        InvalidPeriodError: If the year is not a valid calendar year.
    """
    if isinstance(period_year, bool) or not isinstance(period_year, int):
        raise InvalidPeriodError(period_year)
    if not MINYEAR <= period_year <= MAXYEAR:
        raise InvalidPeriodError(period_year)
    return date(period_year, 1, 1), date(period_year, 12, 31)


class MembershipResolver:
    """
    Resolve member-unit ownership for a settlement period.

    Contract:
        Pure function over a snapshot; the snapshot is never mutated.
    Non-goals:
        - Does not validate membership history; overlaps are the upstream
          workflow's responsibility and are only tie-broken here.
    """

    @traced_engine("membership", "1.0", fingerprint_fields=("period_year", "mode"))
    def resolve(
        self,
        snapshot: FacilitySnapshot,
        period_year: int,
        mode: DistributionMode,
    ) -> MembershipResolution:
        """
        Count units per beneficiary for ``period_year``.

        Args:
            snapshot: Member units and their membership records.
            period_year: Calendar year of the settlement.
            mode: Distribution mode; decides whether subset units are counted.

        Returns:
            MembershipResolution with per-beneficiary counts.
        """
        period_start, period_end = period_bounds(period_year)

        active_units = snapshot.active_units
        if not active_units:
            logger.warning("membership_no_active_units", extra={
                "facility_id": str(snapshot.facility_id),
                "unit_count": len(snapshot.units),
            })
            raise NoMembersError(str(snapshot.facility_id))

        tracks_subset = mode.rule.tracks_subset
        totals: dict[UUID, int] = {}
        subsets: dict[UUID, int] = {}
        unresolved: list[UUID] = []

        for unit in active_units:
            record = self._select_record(unit, period_start, period_end)
            if record is None:
                unresolved.append(unit.unit_id)
                continue

            beneficiary_id = record.beneficiary_id
            totals[beneficiary_id] = totals.get(beneficiary_id, 0) + 1
            if tracks_subset and unit.is_tolerated:
                subsets[beneficiary_id] = subsets.get(beneficiary_id, 0) + 1

        per_beneficiary = {
            bid: UnitCount(total=totals[bid], subset=subsets.get(bid, 0))
            for bid in sorted(totals, key=str)
        }
        total_units = sum(totals.values())

        if unresolved:
            logger.info("membership_units_unresolved", extra={
                "facility_id": str(snapshot.facility_id),
                "period_year": period_year,
                "unresolved_count": len(unresolved),
            })

        logger.info("membership_resolved", extra={
            "facility_id": str(snapshot.facility_id),
            "period_year": period_year,
            "mode": mode.value,
            "total_units": total_units,
            "beneficiary_count": len(per_beneficiary),
        })

        return MembershipResolution(
            facility_id=snapshot.facility_id,
            period_year=period_year,
            total_units=total_units,
            per_beneficiary=per_beneficiary,
            unresolved_unit_ids=tuple(sorted(unresolved, key=str)),
        )

    def _select_record(
        self,
        unit: MemberUnitSnapshot,
        period_start: date,
        period_end: date,
    ) -> MembershipWindow | None:
        """Pick the active record overlapping the period (latest valid_from wins)."""
        candidates = [
            m for m in unit.memberships
            if m.is_active and m.overlaps(period_start, period_end)
        ]
        if not candidates:
            return None
        if len(candidates) > 1:
            # TODO: confirm with the membership owners whether overlaps should
            # raise instead of resolving to the most recent record.
            logger.warning("membership_overlap_detected", extra={
                "unit_id": str(unit.unit_id),
                "record_count": len(candidates),
            })
        return max(candidates, key=lambda m: (m.valid_from, str(m.record_id)))
