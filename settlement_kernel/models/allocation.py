"""
Module: settlement_kernel.models.allocation
Responsibility: ORM persistence for allocation results -- one header per
    settlement and one item per beneficiary.  These rows are the output
    consumed by downstream invoicing.
Architecture position: Kernel > Models.  May import from db/base.py and
    db/types.py only.

Invariants enforced:
    - At most one non-void header per (tenant, settlement):
      UNIQUE(tenant_id, active_settlement_id).  active_settlement_id equals
      settlement_id while the header is draft or invoiced and is cleared to
      NULL when the header is voided, so a voided allocation never blocks
      a recalculation.  NULLs never collide in the unique index.
    - Items are written in the same transaction as their header.
    - Per item: net_payable = round2(taxable + exempt - direct_settlement),
      vat_amount = round2(taxable * rate / 100).  Computed by the engine,
      stored as-is.

Failure modes:
    - IntegrityError on a second non-void header for the same settlement
      (the persister converts it into AllocationAlreadyExistsError).
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement_kernel.db.base import Base, TrackedBase, UUIDString


class AllocationStatus(str, Enum):
    """Allocation lifecycle: DRAFT -> INVOICED, or DRAFT -> VOID."""

    DRAFT = "draft"
    INVOICED = "invoiced"
    VOID = "void"


class AllocationHeader(TrackedBase):
    """
    One allocation of a settlement's usage-fee pool.

    Created exactly once per settlement by SettlementPersister.
    """

    __tablename__ = "allocation_headers"

    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "active_settlement_id",
            name="uq_allocation_active_settlement",
        ),
        Index("idx_allocation_settlement", "tenant_id", "settlement_id"),
        Index("idx_allocation_status", "status"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    settlement_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("settlements.id"),
        nullable=False,
    )

    # Equals settlement_id unless VOID
    active_settlement_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    status: Mapped[AllocationStatus] = mapped_column(
        String(20),
        nullable=False,
        default=AllocationStatus.DRAFT,
    )

    total_usage_fee: Mapped[Decimal] = mapped_column(nullable=False)

    total_taxable: Mapped[Decimal] = mapped_column(nullable=False)

    total_exempt: Mapped[Decimal] = mapped_column(nullable=False)

    vat_rate_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)

    distribution_mode: Mapped[str] = mapped_column(String(20), nullable=False)

    period_label: Mapped[str] = mapped_column(String(255), nullable=False)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    voided_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    voided_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    void_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    items: Mapped[list["AllocationItem"]] = relationship(
        back_populates="header",
        order_by="AllocationItem.position",
        cascade="all, delete-orphan",
    )

    @property
    def is_void(self) -> bool:
        return self.status == AllocationStatus.VOID

    def __repr__(self) -> str:
        return f"<AllocationHeader {self.period_label} settlement={self.settlement_id} ({self.status})>"


class AllocationItem(Base):
    """Allocation of the pool to one beneficiary."""

    __tablename__ = "allocation_items"

    __table_args__ = (
        UniqueConstraint(
            "allocation_id",
            "beneficiary_id",
            name="uq_allocation_item_beneficiary",
        ),
        Index("idx_allocation_item_header", "allocation_id"),
    )

    allocation_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("allocation_headers.id"),
        nullable=False,
    )

    beneficiary_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("beneficiaries.id"),
        nullable=False,
    )

    position: Mapped[int] = mapped_column(Integer, nullable=False)

    allocation_basis: Mapped[str] = mapped_column(String(255), nullable=False)

    share_percent: Mapped[Decimal] = mapped_column(Numeric(9, 4), nullable=False)

    total_allocated: Mapped[Decimal] = mapped_column(nullable=False)

    direct_settlement: Mapped[Decimal] = mapped_column(nullable=False)

    taxable_amount: Mapped[Decimal] = mapped_column(nullable=False)

    vat_amount: Mapped[Decimal] = mapped_column(nullable=False)

    exempt_amount: Mapped[Decimal] = mapped_column(nullable=False)

    net_payable: Mapped[Decimal] = mapped_column(nullable=False)

    header: Mapped[AllocationHeader] = relationship(back_populates="items")
