"""
Module: settlement_kernel.selectors.allocation_selector
Responsibility: Read access to persisted allocations for downstream
    invoicing and for the persister's idempotency fast path.
Architecture position: Kernel > Selectors.  Read-only.

Invariants enforced:
    - Items are returned ordered by position, the order the engine
      produced them in.
    - Tenant scoping on header lookups.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from settlement_kernel.domain.dtos import AllocationHeaderInfo, AllocationItemInfo
from settlement_kernel.models.allocation import AllocationHeader, AllocationItem
from settlement_kernel.selectors.base import BaseSelector


class AllocationSelector(BaseSelector[AllocationHeader]):
    """Query allocation headers and items."""

    def __init__(self, session: Session):
        super().__init__(session)

    def get_header(
        self,
        tenant_id: UUID,
        allocation_id: UUID,
    ) -> AllocationHeaderInfo | None:
        """Header with its items, or None if not visible to the tenant."""
        header = self.session.scalar(
            select(AllocationHeader)
            .options(selectinload(AllocationHeader.items))
            .where(
                AllocationHeader.id == allocation_id,
                AllocationHeader.tenant_id == tenant_id,
            )
        )
        if header is None:
            return None
        return AllocationHeaderInfo.from_model(header)

    def get_items(self, allocation_id: UUID) -> list[AllocationItemInfo]:
        items = self.session.scalars(
            select(AllocationItem)
            .where(AllocationItem.allocation_id == allocation_id)
            .order_by(AllocationItem.position)
        ).all()
        return [AllocationItemInfo.from_model(i) for i in items]

    def find_active_for_settlement(
        self,
        tenant_id: UUID,
        settlement_id: UUID,
    ) -> AllocationHeaderInfo | None:
        """The non-void header of a settlement, if any."""
        header = self.session.scalar(
            select(AllocationHeader)
            .options(selectinload(AllocationHeader.items))
            .where(
                AllocationHeader.tenant_id == tenant_id,
                AllocationHeader.active_settlement_id == settlement_id,
            )
        )
        if header is None:
            return None
        return AllocationHeaderInfo.from_model(header)

    def list_for_settlement(
        self,
        tenant_id: UUID,
        settlement_id: UUID,
    ) -> list[AllocationHeaderInfo]:
        """All headers of a settlement, void ones included, oldest first."""
        headers = self.session.scalars(
            select(AllocationHeader)
            .options(selectinload(AllocationHeader.items))
            .where(
                AllocationHeader.tenant_id == tenant_id,
                AllocationHeader.settlement_id == settlement_id,
            )
            .order_by(AllocationHeader.created_at, AllocationHeader.id)
        ).all()
        return [AllocationHeaderInfo.from_model(h) for h in headers]
