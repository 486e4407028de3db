"""
Module: settlement_kernel.models.facility
Responsibility: ORM persistence for facilities (wind parks), their member
    units (turbines) and the time-bounded membership history that assigns
    each unit to a beneficiary (operator company).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants (owned by the upstream operator-change workflow, NOT re-validated
here):
    - For a given member unit, at most one ACTIVE membership record with
      valid_to = NULL exists at any instant.
    - Active windows of the same unit do not overlap.

The membership tables are read-only from the allocation engine's point of
view.  The resolver tie-breaks overlapping records instead of rejecting them.
"""

from datetime import date
from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, Date, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement_kernel.db.base import Base, UUIDString


class MemberUnitStatus(str, Enum):
    """Lifecycle status of a member unit."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    RETIRED = "retired"


class MembershipStatus(str, Enum):
    """Validity status of a membership record."""

    ACTIVE = "active"
    HISTORICAL = "historical"


class Facility(Base):
    """
    A shared facility whose usage-fee pool is distributed (a wind park).

    distribution_mode holds the raw mode code ("pooled", "proportional" or
    one of the legacy codes "smoothed" / "tolerated"); it is parsed into
    ``DistributionMode`` by the selectors.
    """

    __tablename__ = "facilities"

    __table_args__ = (Index("idx_facility_tenant", "tenant_id"),)

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    distribution_mode: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="proportional",
    )

    member_units: Mapped[list["MemberUnit"]] = relationship(
        back_populates="facility",
        order_by="MemberUnit.designation",
    )

    def __repr__(self) -> str:
        return f"<Facility {self.name} ({self.distribution_mode})>"


class MemberUnit(Base):
    """An individually identifiable asset of a facility (one turbine)."""

    __tablename__ = "member_units"

    __table_args__ = (
        Index("idx_member_unit_facility", "facility_id"),
        Index("idx_member_unit_status", "status"),
    )

    facility_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("facilities.id"),
        nullable=False,
    )

    designation: Mapped[str] = mapped_column(String(100), nullable=False)

    status: Mapped[MemberUnitStatus] = mapped_column(
        String(20),
        nullable=False,
        default=MemberUnitStatus.ACTIVE,
    )

    # Unit falls under the tolerated (pooled) accounting treatment
    is_tolerated: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )

    facility: Mapped[Facility] = relationship(back_populates="member_units")

    memberships: Mapped[list["MembershipRecord"]] = relationship(
        back_populates="member_unit",
        order_by="MembershipRecord.valid_from",
    )

    def __repr__(self) -> str:
        return f"<MemberUnit {self.designation} ({self.status})>"


class MembershipRecord(Base):
    """
    Time-bounded assignment of a member unit to a beneficiary.

    valid_to = NULL means open-ended.
    """

    __tablename__ = "membership_records"

    __table_args__ = (
        Index("idx_membership_unit", "member_unit_id"),
        Index("idx_membership_window", "valid_from", "valid_to"),
    )

    member_unit_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("member_units.id"),
        nullable=False,
    )

    beneficiary_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("beneficiaries.id"),
        nullable=False,
    )

    status: Mapped[MembershipStatus] = mapped_column(
        String(20),
        nullable=False,
        default=MembershipStatus.ACTIVE,
    )

    valid_from: Mapped[date] = mapped_column(Date, nullable=False)

    valid_to: Mapped[date | None] = mapped_column(Date, nullable=True)

    member_unit: Mapped[MemberUnit] = relationship(back_populates="memberships")

    def __repr__(self) -> str:
        return (
            f"<MembershipRecord unit={self.member_unit_id} "
            f"beneficiary={self.beneficiary_id} {self.valid_from}..{self.valid_to}>"
        )
