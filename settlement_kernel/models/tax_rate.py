"""
Module: settlement_kernel.models.tax_rate
Responsibility: ORM persistence for the time-varying tax-rate table.
    Maintained by an external administration workflow; read-only here.
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Date, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import Base, UUIDString


class TaxType(str, Enum):
    """Rate category."""

    STANDARD = "standard"
    REDUCED = "reduced"
    EXEMPT = "exempt"


class TaxRateConfig(Base):
    """
    Rate of one category valid over a date window.

    valid_to = NULL means open-ended.  The lookup picks the row with the
    latest valid_from whose window contains the reference date.
    """

    __tablename__ = "tax_rate_configs"

    __table_args__ = (
        Index("idx_tax_rate_lookup", "tenant_id", "tax_type", "valid_from"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    tax_type: Mapped[TaxType] = mapped_column(String(20), nullable=False)

    rate_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)

    valid_from: Mapped[date] = mapped_column(Date, nullable=False)

    valid_to: Mapped[date | None] = mapped_column(Date, nullable=True)

    def __repr__(self) -> str:
        return f"<TaxRateConfig {self.tax_type} {self.rate_percent}% from {self.valid_from}>"
