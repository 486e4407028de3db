"""
Module: settlement_kernel.selectors.membership_selector
Responsibility: Build the in-memory ``FacilitySnapshot`` the
    MembershipResolver works on (implements ``MembershipSource``).
Architecture position: Kernel > Selectors.  Read-only.

The membership history is queried explicitly (units, then their records)
rather than through lazy relationship loading, so the number of
statements is constant per facility.
"""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from settlement_kernel.domain.membership import (
    FacilitySnapshot,
    MemberUnitSnapshot,
    MembershipWindow,
)
from settlement_kernel.exceptions import FacilityNotFoundError
from settlement_kernel.models.beneficiary import Beneficiary
from settlement_kernel.models.facility import (
    Facility,
    MemberUnit,
    MemberUnitStatus,
    MembershipRecord,
    MembershipStatus,
)
from settlement_kernel.selectors.base import BaseSelector


def _status_value(status: object) -> str:
    return str(getattr(status, "value", status))


class SqlMembershipSource(BaseSelector[MemberUnit]):
    """SQL-backed membership history of a facility."""

    def __init__(self, session: Session):
        super().__init__(session)

    def load_snapshot(
        self,
        tenant_id: UUID,
        facility_id: UUID,
        period_year: int | None = None,
    ) -> FacilitySnapshot:
        facility = self.session.scalar(
            select(Facility).where(
                Facility.id == facility_id,
                Facility.tenant_id == tenant_id,
            )
        )
        if facility is None:
            raise FacilityNotFoundError(str(facility_id), str(tenant_id))

        units = self.session.scalars(
            select(MemberUnit)
            .where(MemberUnit.facility_id == facility_id)
            .order_by(MemberUnit.designation, MemberUnit.id)
        ).all()
        unit_ids = [u.id for u in units]

        records: list[MembershipRecord] = []
        if unit_ids:
            stmt = select(MembershipRecord).where(
                MembershipRecord.member_unit_id.in_(unit_ids)
            )
            if period_year is not None:
                # Window overlaps [Jan 1, Dec 31] of period_year
                stmt = stmt.where(
                    MembershipRecord.valid_from <= date(period_year, 12, 31),
                    or_(
                        MembershipRecord.valid_to.is_(None),
                        MembershipRecord.valid_to >= date(period_year, 1, 1),
                    ),
                )
            records = list(
                self.session.scalars(
                    stmt.order_by(MembershipRecord.valid_from, MembershipRecord.id)
                ).all()
            )

        by_unit: dict[UUID, list[MembershipWindow]] = {}
        for record in records:
            by_unit.setdefault(record.member_unit_id, []).append(
                MembershipWindow(
                    record_id=record.id,
                    beneficiary_id=record.beneficiary_id,
                    valid_from=record.valid_from,
                    valid_to=record.valid_to,
                    is_active=_status_value(record.status) == MembershipStatus.ACTIVE.value,
                )
            )

        beneficiary_ids = {r.beneficiary_id for r in records}
        names: dict[UUID, str] = {}
        if beneficiary_ids:
            for beneficiary in self.session.scalars(
                select(Beneficiary).where(Beneficiary.id.in_(beneficiary_ids))
            ):
                names[beneficiary.id] = beneficiary.display_name

        return FacilitySnapshot(
            facility_id=facility.id,
            units=tuple(
                MemberUnitSnapshot(
                    unit_id=unit.id,
                    is_active=_status_value(unit.status) == MemberUnitStatus.ACTIVE.value,
                    is_tolerated=bool(unit.is_tolerated),
                    designation=unit.designation,
                    memberships=tuple(by_unit.get(unit.id, ())),
                )
                for unit in units
            ),
            beneficiary_names=names,
        )
