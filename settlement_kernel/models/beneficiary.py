"""
Module: settlement_kernel.models.beneficiary
Responsibility: ORM persistence for beneficiaries -- the legal/accounting
    entities (operator companies) that receive an allocation.
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from uuid import UUID

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import Base, UUIDString


class Beneficiary(Base):
    """An entity that can receive an allocation (e.g. an operating company)."""

    __tablename__ = "beneficiaries"

    __table_args__ = (Index("idx_beneficiary_tenant", "tenant_id"),)

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Legal-form suffix, e.g. "GmbH & Co. KG"
    legal_form: Mapped[str | None] = mapped_column(String(100), nullable=True)

    @property
    def display_name(self) -> str:
        """Name followed by the legal-form suffix, when there is one."""
        if self.legal_form:
            return f"{self.name} {self.legal_form}"
        return self.name

    def __repr__(self) -> str:
        return f"<Beneficiary {self.display_name}>"
