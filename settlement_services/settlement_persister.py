"""
settlement_services.settlement_persister -- Orchestrate and persist one allocation.

Responsibility:
    Runs the allocation pipeline for a settlement and writes its result:
    settlement lookup -> membership resolution -> share calculation ->
    VAT rate lookup -> allocation engine -> one header plus N items.

Architecture position:
    Services -- orchestration over kernel, engines and config.
    Composes SettlementSource, MembershipSource and TaxRateProvider (kernel
    selectors/services by default) with the pure engines.

Invariants enforced:
    - Preconditions are checked before any row is written.
    - At most one non-void header per settlement.  The existing-header
      check is a fast path only; UNIQUE(tenant_id, active_settlement_id)
      is the guard under concurrency.
    - Header and items are inserted inside one savepoint, so either all
      rows exist or none do.
    - Flush-only: the caller owns the outer commit (``session_scope()`` in
      production code).

Failure modes:
    - SettlementNotFoundError: settlement unknown for the tenant.
    - SettlementNotCalculableError: status not in the calculable set.
    - AllocationAlreadyExistsError: a non-void header exists (fast path or
      unique-constraint violation).
    - NoBeneficiariesError: the facility has no active member units, or
      no unit resolved to a beneficiary for the year.  The resolver's
      NoMembersError is chained as the cause.
    - TaxRateNotFoundError: no VAT rate and no configured fallback.

Audit relevance:
    allocation_started / allocation_completed bracket every run with
    tenant, settlement and actor bound into the LogContext; rejections are
    logged at WARNING with the reason.

Usage:
    with session_scope() as session:
        header = SettlementPersister(session).execute(
            tenant_id, settlement_id, actor_id=user_id,
        )
"""

from __future__ import annotations

import time
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from settlement_config import SettlementConfig, get_active_config
from settlement_engines.allocation import AllocationEngine, AllocationResult
from settlement_engines.membership import MembershipResolver
from settlement_engines.shares import ShareCalculator
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.dtos import AllocationHeaderInfo, SettlementInfo
from settlement_kernel.domain.ports import (
    MembershipSource,
    SettlementSource,
    TaxRateProvider,
)
from settlement_kernel.exceptions import (
    AllocationAlreadyExistsError,
    NoBeneficiariesError,
    NoMembersError,
    SettlementNotCalculableError,
)
from settlement_kernel.logging_config import LogContext, get_logger
from settlement_kernel.models.allocation import (
    AllocationHeader,
    AllocationItem,
    AllocationStatus,
)
from settlement_kernel.selectors.membership_selector import SqlMembershipSource
from settlement_kernel.selectors.settlement_selector import SettlementSelector
from settlement_kernel.services.tax_rate_service import TaxRateService

logger = get_logger("services.settlement_persister")


class SettlementPersister:
    """
    Compute and store the allocation of one settlement.

    Contract:
        ``execute()`` either returns the persisted header (with items) or
        raises before anything becomes visible in the session.

    Non-goals:
        - Does NOT commit.
        - Does NOT create invoices or notify anyone.
    """

    def __init__(
        self,
        session: Session,
        settlement_source: SettlementSource | None = None,
        membership_source: MembershipSource | None = None,
        tax_rates: TaxRateProvider | None = None,
        config: SettlementConfig | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._config = config or get_active_config()
        self._settlements = settlement_source or SettlementSelector(session)
        self._memberships = membership_source or SqlMembershipSource(session)
        self._tax_rates = tax_rates or TaxRateService(
            session, fallback_rates=self._config.tax.fallback_rates
        )
        self._clock = clock or SystemClock()
        self._resolver = MembershipResolver()
        self._calculator = ShareCalculator()
        self._engine = AllocationEngine()

    def execute(
        self,
        tenant_id: UUID,
        settlement_id: UUID,
        actor_id: UUID,
        period_label: str | None = None,
        notes: str | None = None,
    ) -> AllocationHeaderInfo:
        """
        Allocate the settlement's pool and persist header plus items.

        Args:
            tenant_id: Tenant the settlement must belong to.
            settlement_id: Settlement to allocate.
            actor_id: User recorded as creator of the header.
            period_label: Label for the header; defaults to the configured
                template filled with the settlement year.
            notes: Free-text notes stored on the header.

        Returns:
            The persisted header with its items, as a frozen DTO.
        """
        with LogContext.bind(
            tenant_id=str(tenant_id),
            settlement_id=str(settlement_id),
            actor_id=str(actor_id),
        ):
            t0 = time.monotonic()
            logger.info("allocation_started")

            settlement = self._settlements.load(tenant_id, settlement_id)
            self._require_calculable(settlement)

            existing = self._find_existing_header(tenant_id, settlement_id)
            if existing is not None:
                logger.warning("allocation_already_exists", extra={
                    "existing_allocation_id": str(existing),
                })
                raise AllocationAlreadyExistsError(str(settlement_id), str(existing))

            result = self._calculate(settlement)

            header = self._persist(
                settlement,
                result,
                actor_id=actor_id,
                period_label=period_label or self._config.settlement.period_label(settlement.year),
                notes=notes,
            )

            duration_ms = round((time.monotonic() - t0) * 1000, 2)
            logger.info("allocation_completed", extra={
                "allocation_id": str(header.id),
                "item_count": header.item_count,
                "total_usage_fee": header.total_usage_fee,
                "rounding_drift": result.rounding_drift,
                "duration_ms": duration_ms,
            })
            return header

    # ------------------------------------------------------------------
    # Pipeline steps
    # ------------------------------------------------------------------

    def _require_calculable(self, settlement: SettlementInfo) -> None:
        allowed = self._config.settlement.calculable_statuses
        if settlement.status.lower() not in allowed:
            logger.warning("settlement_not_calculable", extra={
                "status": settlement.status,
                "allowed_statuses": list(allowed),
            })
            raise SettlementNotCalculableError(
                str(settlement.settlement_id), settlement.status, allowed
            )

    def _find_existing_header(self, tenant_id: UUID, settlement_id: UUID) -> UUID | None:
        return self._session.scalar(
            select(AllocationHeader.id).where(
                AllocationHeader.tenant_id == tenant_id,
                AllocationHeader.active_settlement_id == settlement_id,
            )
        )

    def _calculate(self, settlement: SettlementInfo) -> AllocationResult:
        mode = settlement.distribution_mode
        snapshot = self._memberships.load_snapshot(
            settlement.tenant_id, settlement.facility_id, period_year=settlement.year
        )
        try:
            resolution = self._resolver.resolve(snapshot, settlement.year, mode)
        except NoMembersError as exc:
            logger.warning("allocation_no_beneficiaries", extra={
                "facility_id": str(settlement.facility_id),
                "period_year": settlement.year,
                "reason": "no_active_units",
            })
            raise NoBeneficiariesError(str(settlement.facility_id), settlement.year) from exc
        if not resolution.per_beneficiary:
            logger.warning("allocation_no_beneficiaries", extra={
                "facility_id": str(settlement.facility_id),
                "period_year": settlement.year,
                "unresolved_count": len(resolution.unresolved_unit_ids),
            })
            raise NoBeneficiariesError(str(settlement.facility_id), settlement.year)

        shares = self._calculator.compute_shares(
            resolution.per_beneficiary,
            resolution.total_units,
            mode,
            names=snapshot.beneficiary_names,
        )
        vat_rate = self._tax_rates.rate_percent(
            settlement.tenant_id,
            self._config.settlement.tax_type,
            settlement.reference_date,
        )
        return self._engine.allocate(
            pool=settlement.pool,
            shares=shares,
            direct_billing=settlement.direct_billing,
            vat_rate_percent=vat_rate,
            mode=mode,
        )

    def _persist(
        self,
        settlement: SettlementInfo,
        result: AllocationResult,
        *,
        actor_id: UUID,
        period_label: str,
        notes: str | None,
    ) -> AllocationHeaderInfo:
        pool = settlement.pool
        now = self._clock.now()

        savepoint = self._session.begin_nested()
        try:
            header = AllocationHeader(
                tenant_id=settlement.tenant_id,
                settlement_id=settlement.settlement_id,
                active_settlement_id=settlement.settlement_id,
                status=AllocationStatus.DRAFT,
                total_usage_fee=pool.total_usage_fee,
                total_taxable=pool.total_taxable,
                total_exempt=pool.total_exempt,
                vat_rate_percent=result.vat_rate_percent,
                distribution_mode=result.mode.value,
                period_label=period_label,
                notes=notes,
                created_at=now,
                updated_at=now,
                created_by_id=actor_id,
            )
            self._session.add(header)
            self._session.flush()

            items = [
                AllocationItem(
                    allocation_id=header.id,
                    beneficiary_id=r.beneficiary_id,
                    position=r.position,
                    allocation_basis=r.allocation_basis,
                    share_percent=r.share_percent,
                    total_allocated=r.total_allocated,
                    direct_settlement=r.direct_settlement,
                    taxable_amount=r.taxable_amount,
                    vat_amount=r.vat_amount,
                    exempt_amount=r.exempt_amount,
                    net_payable=r.net_payable,
                )
                for r in result.items
            ]
            self._session.add_all(items)
            self._session.flush()
            savepoint.commit()
        except IntegrityError as exc:
            savepoint.rollback()
            winner = self._find_existing_header(
                settlement.tenant_id, settlement.settlement_id
            )
            if winner is None:
                # Not the active-header constraint; nothing to report as a conflict
                logger.error("allocation_insert_failed", extra={
                    "error": str(exc.orig),
                })
                raise
            logger.warning("allocation_conflict_on_insert", extra={
                "error": str(exc.orig),
                "existing_allocation_id": str(winner),
            })
            raise AllocationAlreadyExistsError(
                str(settlement.settlement_id), str(winner)
            ) from exc
        except Exception:
            savepoint.rollback()
            raise

        return AllocationHeaderInfo.from_model(header, items)
