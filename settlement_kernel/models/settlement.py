"""
Module: settlement_kernel.models.settlement
Responsibility: ORM persistence for the usage-fee settlement of one facility
    and year, and its line items.  Rows are produced by the external
    settlement-calculation workflow; the allocation engine only reads them.
Architecture position: Kernel > Models.  May import from db/base.py only.

Pool derivation (performed by SettlementSelector, not here):
    total taxable   = round2(sum(item.taxable_amount))
    total exempt    = round2(sum(item.exempt_amount))
    total usage fee = round2(total taxable + total exempt)
    direct billing  = sum(item.subtotal) grouped by direct_billing_beneficiary_id
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement_kernel.db.base import Base, UUIDString


class SettlementStatus(str, Enum):
    """Lifecycle status of a settlement as set by the settlement workflow."""

    OPEN = "open"
    CALCULATED = "calculated"
    ADVANCE_CREATED = "advance_created"
    SETTLED = "settled"
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    CLOSED = "closed"
    CANCELLED = "cancelled"


class Settlement(Base):
    """Usage-fee settlement for one facility and calendar year."""

    __tablename__ = "settlements"

    __table_args__ = (
        Index("idx_settlement_tenant", "tenant_id"),
        Index("idx_settlement_facility_year", "facility_id", "year"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    facility_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("facilities.id"),
        nullable=False,
    )

    year: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[SettlementStatus] = mapped_column(
        String(30),
        nullable=False,
        default=SettlementStatus.OPEN,
    )

    # Date the VAT rate is resolved for; January 1st of year when unset
    reference_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    items: Mapped[list["SettlementItem"]] = relationship(
        back_populates="settlement",
        order_by="SettlementItem.position",
    )

    @property
    def effective_reference_date(self) -> date:
        return self.reference_date or date(self.year, 1, 1)

    def __repr__(self) -> str:
        return f"<Settlement {self.year} facility={self.facility_id} ({self.status})>"


class SettlementItem(Base):
    """One line of a settlement (e.g. one lease position)."""

    __tablename__ = "settlement_items"

    __table_args__ = (Index("idx_settlement_item_settlement", "settlement_id"),)

    settlement_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("settlements.id"),
        nullable=False,
    )

    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    description: Mapped[str | None] = mapped_column(String(255), nullable=True)

    taxable_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    exempt_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    subtotal: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    # Beneficiary that has already been billed this item directly
    direct_billing_beneficiary_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("beneficiaries.id"),
        nullable=True,
    )

    settlement: Mapped[Settlement] = relationship(back_populates="items")
