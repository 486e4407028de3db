"""
Membership snapshot -- in-memory view of a facility's member units and
their membership history.

Responsibility:
    Immutable DTOs produced by a ``MembershipSource`` and consumed by the
    MembershipResolver.  Keeps the resolver free of any storage engine.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from uuid import UUID


@dataclass(frozen=True)
class MembershipWindow:
    """One membership record of a unit (valid_to None = open-ended)."""

    record_id: UUID
    beneficiary_id: UUID
    valid_from: date
    valid_to: date | None = None
    is_active: bool = True

    def overlaps(self, period_start: date, period_end: date) -> bool:
        """valid_from <= period_end AND (valid_to IS NULL OR valid_to >= period_start)."""
        if self.valid_from > period_end:
            return False
        return self.valid_to is None or self.valid_to >= period_start


@dataclass(frozen=True)
class MemberUnitSnapshot:
    """A member unit together with its membership records."""

    unit_id: UUID
    is_active: bool = True
    is_tolerated: bool = False
    designation: str = ""
    memberships: tuple[MembershipWindow, ...] = ()


@dataclass(frozen=True)
class FacilitySnapshot:
    """
    All member units of a facility plus beneficiary display names.

    ``beneficiary_names`` maps beneficiary id to display name; engines fall
    back to the id string when a name is missing.
    """

    facility_id: UUID
    units: tuple[MemberUnitSnapshot, ...]
    beneficiary_names: dict[UUID, str] = field(default_factory=dict)

    @property
    def active_units(self) -> tuple[MemberUnitSnapshot, ...]:
        return tuple(u for u in self.units if u.is_active)
