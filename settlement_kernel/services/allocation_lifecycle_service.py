"""
AllocationLifecycleService -- state transitions of persisted allocations.

Responsibility:
    Voids, deletes or marks as invoiced an allocation header created by
    SettlementPersister.  Voiding (or deleting) a draft is the explicit
    step a caller takes before an allocation may be recomputed.

Architecture position:
    Kernel > Services -- imperative shell.  Flush-only.

State machine:
    DRAFT -> INVOICED   (mark_invoiced)
    DRAFT -> VOID       (void; clears active_settlement_id)
    DRAFT -> (deleted)  (delete_draft; items deleted with the header)
    INVOICED and VOID are terminal.

Failure modes:
    - AllocationNotFoundError: no header with that id for the tenant.
    - AllocationNotVoidableError: the header is not DRAFT.

Audit relevance:
    Every transition is logged with allocation_id, settlement_id and
    actor_id.  Voided headers are kept with voided_at, voided_by_id and
    void_reason.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.dtos import AllocationHeaderInfo
from settlement_kernel.exceptions import (
    AllocationNotFoundError,
    AllocationNotVoidableError,
)
from settlement_kernel.logging_config import LogContext, get_logger
from settlement_kernel.models.allocation import AllocationHeader, AllocationStatus
from settlement_kernel.services.base import BaseService

logger = get_logger("services.allocation_lifecycle")


class AllocationLifecycleService(BaseService[AllocationHeader]):
    """Drive allocation headers through their lifecycle."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def void(
        self,
        tenant_id: UUID,
        allocation_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> AllocationHeaderInfo:
        """
        Void a draft allocation so the settlement can be allocated again.

        Postconditions:
            - status is VOID and active_settlement_id is NULL.
        """
        header = self._load(tenant_id, allocation_id)
        self._require_draft(header, "void")

        with LogContext.bind(allocation_id=str(allocation_id), actor_id=str(actor_id)):
            header.status = AllocationStatus.VOID
            header.active_settlement_id = None
            header.voided_at = self._clock.now()
            header.voided_by_id = actor_id
            header.void_reason = reason
            header.updated_by_id = actor_id
            self.session.flush()

            logger.info("allocation_voided", extra={
                "settlement_id": str(header.settlement_id),
                "reason": reason,
            })
            return AllocationHeaderInfo.from_model(header)

    def delete_draft(self, tenant_id: UUID, allocation_id: UUID) -> None:
        """Remove a draft header together with its items."""
        header = self._load(tenant_id, allocation_id)
        self._require_draft(header, "delete")

        settlement_id = header.settlement_id
        item_count = len(header.items)
        self.session.delete(header)
        self.session.flush()

        logger.info("allocation_draft_deleted", extra={
            "allocation_id": str(allocation_id),
            "settlement_id": str(settlement_id),
            "item_count": item_count,
        })

    def mark_invoiced(
        self,
        tenant_id: UUID,
        allocation_id: UUID,
        actor_id: UUID,
    ) -> AllocationHeaderInfo:
        header = self._load(tenant_id, allocation_id)
        self._require_draft(header, "invoice")

        header.status = AllocationStatus.INVOICED
        header.updated_by_id = actor_id
        self.session.flush()

        logger.info("allocation_invoiced", extra={
            "allocation_id": str(allocation_id),
            "settlement_id": str(header.settlement_id),
            "actor_id": str(actor_id),
        })
        return AllocationHeaderInfo.from_model(header)

    def _load(self, tenant_id: UUID, allocation_id: UUID) -> AllocationHeader:
        header = self.session.scalar(
            select(AllocationHeader).where(
                AllocationHeader.id == allocation_id,
                AllocationHeader.tenant_id == tenant_id,
            )
        )
        if header is None:
            raise AllocationNotFoundError(str(allocation_id))
        return header

    @staticmethod
    def _require_draft(header: AllocationHeader, operation: str) -> None:
        status = str(getattr(header.status, "value", header.status))
        if status != AllocationStatus.DRAFT.value:
            logger.warning("allocation_transition_rejected", extra={
                "allocation_id": str(header.id),
                "status": status,
                "operation": operation,
            })
            raise AllocationNotVoidableError(str(header.id), status, operation)
