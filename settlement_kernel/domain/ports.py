"""
Ports -- collaborator interfaces consumed by the allocation pipeline.

Responsibility:
    Structural protocols for the three read-side collaborators the
    persister depends on.  SQL-backed implementations live in
    ``settlement_kernel.selectors`` and ``settlement_kernel.services``;
    tests and other hosts may supply their own.

Architecture position:
    Kernel > Domain -- pure, zero I/O.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Protocol, runtime_checkable
from uuid import UUID

from settlement_kernel.domain.dtos import SettlementInfo
from settlement_kernel.domain.membership import FacilitySnapshot


@runtime_checkable
class SettlementSource(Protocol):
    """Settlement lookup scoped to a tenant."""

    def load(self, tenant_id: UUID, settlement_id: UUID) -> SettlementInfo:
        """Raises SettlementNotFoundError when not visible to the tenant."""
        ...


@runtime_checkable
class MembershipSource(Protocol):
    """Membership history of a facility."""

    def load_snapshot(
        self,
        tenant_id: UUID,
        facility_id: UUID,
        period_year: int | None = None,
    ) -> FacilitySnapshot:
        """
        Raises FacilityNotFoundError when not visible to the tenant.

        With ``period_year`` set, implementations may omit records whose
        window does not touch that year.
        """
        ...


@runtime_checkable
class TaxRateProvider(Protocol):
    """Point-in-time tax rate lookup."""

    def rate_percent(self, tenant_id: UUID, tax_type: str, on_date: date) -> Decimal:
        """Rate in percent (e.g. Decimal("19.00")) effective on ``on_date``."""
        ...
