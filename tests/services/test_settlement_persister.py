"""
Tests for SettlementPersister.

Covers:
- End-to-end allocation of a settlement into header + items
- Preconditions: not found, wrong tenant, not calculable, no beneficiaries
- Savepoint rollback on conflicts and on other write failures
- Idempotency: a second execute() raises ConflictError and writes nothing
- Voiding re-enables allocation
- Structured logging of the run
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from settlement_kernel.exceptions import (
    AllocationAlreadyExistsError,
    ConflictError,
    InvalidStateError,
    NoBeneficiariesError,
    NoMembersError,
    NotFoundError,
    SettlementNotCalculableError,
    SettlementNotFoundError,
    TaxRateNotFoundError,
)
from settlement_kernel.models import (
    AllocationHeader,
    AllocationItem,
    MemberUnitStatus,
    SettlementStatus,
)
from settlement_services.settlement_persister import SettlementPersister


def count_rows(session, model):
    return session.scalar(select(func.count()).select_from(model))


class TestExecute:
    """Happy path on the two-operator wind park."""

    def test_creates_header_and_items(self, persister, wind_park, tenant_id, test_actor_id):
        facility, settlement, nordwind, suedwind = wind_park

        header = persister.execute(tenant_id, settlement.id, test_actor_id)

        assert header.settlement_id == settlement.id
        assert header.status == "draft"
        assert header.total_taxable == Decimal("10000.00")
        assert header.total_exempt == Decimal("2000.00")
        assert header.total_usage_fee == Decimal("12000.00")
        assert header.vat_rate_percent == Decimal("19.00")
        assert header.distribution_mode == "proportional"
        assert header.period_label == "Usage fee 2024"
        assert header.created_by_id == test_actor_id
        assert header.item_count == 2

    def test_item_amounts(self, persister, wind_park, tenant_id, test_actor_id):
        facility, settlement, nordwind, suedwind = wind_park

        header = persister.execute(tenant_id, settlement.id, test_actor_id)
        items = {i.beneficiary_id: i for i in header.items}

        north = items[nordwind.id]
        assert north.share_percent == Decimal("70.0000")
        assert north.allocation_basis == "7/10 (total units)"
        assert north.taxable_amount == Decimal("7000.00")
        assert north.exempt_amount == Decimal("1400.00")
        assert north.total_allocated == Decimal("8400.00")
        assert north.vat_amount == Decimal("1330.00")
        assert north.direct_settlement == Decimal("1000.00")
        assert north.net_payable == Decimal("7400.00")

        south = items[suedwind.id]
        assert south.share_percent == Decimal("30.0000")
        assert south.total_allocated == Decimal("3600.00")
        assert south.vat_amount == Decimal("570.00")
        assert south.direct_settlement == Decimal("0.00")
        assert south.net_payable == Decimal("3600.00")

    def test_rows_are_persisted(self, session, persister, wind_park, tenant_id, test_actor_id):
        facility, settlement, *_ = wind_park

        header = persister.execute(tenant_id, settlement.id, test_actor_id, notes="first run")

        row = session.get(AllocationHeader, header.id)
        assert row.active_settlement_id == settlement.id
        assert row.notes == "first run"
        assert count_rows(session, AllocationItem) == 2
        positions = session.scalars(
            select(AllocationItem.position)
            .where(AllocationItem.allocation_id == header.id)
            .order_by(AllocationItem.position)
        ).all()
        assert positions == [1, 2]

    def test_custom_period_label(self, persister, wind_park, tenant_id, test_actor_id):
        _, settlement, *_ = wind_park
        header = persister.execute(
            tenant_id, settlement.id, test_actor_id, period_label="Nutzungsentgelt 2024"
        )
        assert header.period_label == "Nutzungsentgelt 2024"

    def test_created_at_comes_from_clock(
        self, persister, wind_park, tenant_id, test_actor_id, deterministic_clock
    ):
        _, settlement, *_ = wind_park
        header = persister.execute(tenant_id, settlement.id, test_actor_id)
        assert header.created_at.replace(tzinfo=None) == deterministic_clock.now().replace(tzinfo=None)

    def test_items_sum_to_pool(self, persister, wind_park, tenant_id, test_actor_id):
        _, settlement, *_ = wind_park
        header = persister.execute(tenant_id, settlement.id, test_actor_id)
        drift = abs(header.total_allocated - header.total_usage_fee)
        assert drift <= Decimal("0.01") * header.item_count

    @pytest.mark.parametrize(
        "status",
        [SettlementStatus.CALCULATED, SettlementStatus.SETTLED, SettlementStatus.ADVANCE_CREATED],
    )
    def test_calculable_statuses(self, session, build_park, tenant_id, test_actor_id, default_config, status):
        _, settlement, *_ = build_park(status=status)
        header = SettlementPersister(session, config=default_config).execute(
            tenant_id, settlement.id, test_actor_id
        )
        assert header.item_count == 2


class TestPooledMode:

    def test_pooled_allocates_over_tolerated_units_only(
        self,
        persister,
        tenant_id,
        test_actor_id,
        create_facility,
        create_beneficiary,
        create_unit,
        create_membership,
        create_settlement,
        create_tax_rate,
    ):
        facility = create_facility(mode="smoothed")
        fund_a = create_beneficiary("Alpha")
        fund_b = create_beneficiary("Beta")
        for n in range(4):
            create_membership(create_unit(facility, f"A{n}", is_tolerated=True), fund_a)
        for n in range(6):
            create_membership(create_unit(facility, f"B{n}", is_tolerated=False), fund_b)
        settlement = create_settlement(facility, items=[("1000.00", "0.00")])
        create_tax_rate("19.00")

        header = persister.execute(tenant_id, settlement.id, test_actor_id)

        items = {i.beneficiary_id: i for i in header.items}
        assert header.distribution_mode == "pooled"
        assert items[fund_a.id].share_percent == Decimal("100.0000")
        assert items[fund_a.id].allocation_basis == "4/4 (subset units)"
        assert items[fund_a.id].total_allocated == Decimal("1000.00")
        assert items[fund_b.id].share_percent == Decimal("0.0000")
        assert items[fund_b.id].total_allocated == Decimal("0.00")

    def test_pooled_without_tolerated_units_stores_total_basis(
        self,
        persister,
        tenant_id,
        test_actor_id,
        create_facility,
        create_beneficiary,
        create_unit,
        create_membership,
        create_settlement,
        create_tax_rate,
    ):
        facility = create_facility(mode="smoothed")
        fund_a = create_beneficiary("Alpha")
        fund_b = create_beneficiary("Beta")
        for n in range(4):
            create_membership(create_unit(facility, f"A{n}", is_tolerated=False), fund_a)
        for n in range(6):
            create_membership(create_unit(facility, f"B{n}", is_tolerated=False), fund_b)
        settlement = create_settlement(facility, items=[("1000.00", "0.00")])
        create_tax_rate("19.00")

        header = persister.execute(tenant_id, settlement.id, test_actor_id)

        items = {i.beneficiary_id: i for i in header.items}
        assert header.distribution_mode == "pooled"
        assert items[fund_a.id].allocation_basis == "4/10 (total units)"
        assert items[fund_a.id].share_percent == Decimal("40.0000")
        assert items[fund_a.id].total_allocated == Decimal("400.00")
        assert items[fund_b.id].allocation_basis == "6/10 (total units)"


class TestPreconditions:

    def test_unknown_settlement(self, persister, tenant_id, test_actor_id):
        with pytest.raises(SettlementNotFoundError) as exc_info:
            persister.execute(tenant_id, uuid4(), test_actor_id)
        assert isinstance(exc_info.value, NotFoundError)

    def test_settlement_of_other_tenant_is_not_found(
        self, persister, wind_park, test_actor_id
    ):
        _, settlement, *_ = wind_park
        with pytest.raises(NotFoundError):
            persister.execute(uuid4(), settlement.id, test_actor_id)

    @pytest.mark.parametrize(
        "status",
        [SettlementStatus.OPEN, SettlementStatus.CLOSED, SettlementStatus.CANCELLED],
    )
    def test_not_calculable_status(self, session, build_park, persister, tenant_id, test_actor_id, status):
        _, settlement, *_ = build_park(status=status)

        with pytest.raises(SettlementNotCalculableError) as exc_info:
            persister.execute(tenant_id, settlement.id, test_actor_id)

        assert isinstance(exc_info.value, InvalidStateError)
        assert exc_info.value.status == status.value
        assert status.value in str(exc_info.value)
        assert count_rows(session, AllocationHeader) == 0

    def test_no_resolvable_beneficiaries(
        self,
        session,
        persister,
        tenant_id,
        test_actor_id,
        create_facility,
        create_beneficiary,
        create_unit,
        create_membership,
        create_settlement,
    ):
        facility = create_facility()
        fund = create_beneficiary("Alpha")
        # Membership ended before the settlement year
        create_membership(create_unit(facility, "WEA-01"), fund, valid_to=date(2022, 12, 31))
        settlement = create_settlement(facility, year=2024, items=[("100.00", "0.00")])

        with pytest.raises(NoBeneficiariesError):
            persister.execute(tenant_id, settlement.id, test_actor_id)
        assert count_rows(session, AllocationHeader) == 0

    def test_no_active_units(
        self,
        persister,
        tenant_id,
        test_actor_id,
        create_facility,
        create_unit,
        create_settlement,
    ):
        facility = create_facility()
        create_unit(facility, "WEA-01", status=MemberUnitStatus.RETIRED)
        settlement = create_settlement(facility, items=[("100.00", "0.00")])

        with pytest.raises(NoBeneficiariesError) as exc_info:
            persister.execute(tenant_id, settlement.id, test_actor_id)

        assert exc_info.value.code == "NO_BENEFICIARIES"
        assert isinstance(exc_info.value.__cause__, NoMembersError)

    def test_missing_tax_rate_uses_configured_fallback(
        self,
        persister,
        tenant_id,
        test_actor_id,
        create_facility,
        create_beneficiary,
        create_unit,
        create_membership,
        create_settlement,
    ):
        facility = create_facility()
        create_membership(create_unit(facility, "WEA-01"), create_beneficiary("Alpha"))
        settlement = create_settlement(facility, items=[("100.00", "0.00")])

        header = persister.execute(tenant_id, settlement.id, test_actor_id)

        assert header.vat_rate_percent == Decimal("19.00")
        assert header.items[0].vat_amount == Decimal("19.00")

    def test_missing_tax_rate_without_fallback(
        self,
        session,
        tenant_id,
        test_actor_id,
        default_config,
        create_facility,
        create_beneficiary,
        create_unit,
        create_membership,
        create_settlement,
    ):
        from settlement_config import TaxSettings

        config = replace(default_config, tax=TaxSettings(fallback_rates={}))
        facility = create_facility()
        create_membership(create_unit(facility, "WEA-01"), create_beneficiary("Alpha"))
        settlement = create_settlement(facility, items=[("100.00", "0.00")])

        with pytest.raises(TaxRateNotFoundError):
            SettlementPersister(session, config=config).execute(
                tenant_id, settlement.id, test_actor_id
            )
        assert count_rows(session, AllocationHeader) == 0


class TestIdempotency:

    def test_second_execute_raises_conflict(
        self, session, persister, wind_park, tenant_id, test_actor_id
    ):
        _, settlement, *_ = wind_park
        first = persister.execute(tenant_id, settlement.id, test_actor_id)
        headers_before = count_rows(session, AllocationHeader)
        items_before = count_rows(session, AllocationItem)

        with pytest.raises(AllocationAlreadyExistsError) as exc_info:
            persister.execute(tenant_id, settlement.id, test_actor_id)

        assert isinstance(exc_info.value, ConflictError)
        assert exc_info.value.allocation_id == str(first.id)
        assert exc_info.value.code == "ALLOCATION_ALREADY_EXISTS"
        assert count_rows(session, AllocationHeader) == headers_before == 1
        assert count_rows(session, AllocationItem) == items_before == 2

    def test_unique_constraint_guards_when_fast_path_misses(
        self, session, persister, wind_park, tenant_id, test_actor_id, monkeypatch
    ):
        """Simulates a concurrent writer: the pre-check sees nothing."""
        _, settlement, *_ = wind_park
        persister.execute(tenant_id, settlement.id, test_actor_id)

        calls = []
        original = SettlementPersister._find_existing_header

        def blind_first_check(self, tenant, settlement_id):
            calls.append(settlement_id)
            if len(calls) == 1:
                return None
            return original(self, tenant, settlement_id)

        monkeypatch.setattr(SettlementPersister, "_find_existing_header", blind_first_check)

        with pytest.raises(AllocationAlreadyExistsError) as exc_info:
            persister.execute(tenant_id, settlement.id, test_actor_id)

        assert exc_info.value.allocation_id is not None
        assert count_rows(session, AllocationHeader) == 1
        assert count_rows(session, AllocationItem) == 2

    def test_session_usable_after_conflict(
        self, session, persister, wind_park, tenant_id, test_actor_id, monkeypatch
    ):
        _, settlement, *_ = wind_park
        persister.execute(tenant_id, settlement.id, test_actor_id)
        original = SettlementPersister._find_existing_header
        calls = []

        def blind_first_check(self, tenant, settlement_id):
            calls.append(settlement_id)
            return None if len(calls) == 1 else original(self, tenant, settlement_id)

        monkeypatch.setattr(SettlementPersister, "_find_existing_header", blind_first_check)

        with pytest.raises(ConflictError):
            persister.execute(tenant_id, settlement.id, test_actor_id)

        # The outer transaction survives the rolled-back savepoint
        assert count_rows(session, AllocationHeader) == 1

    def test_other_integrity_errors_are_not_conflicts(
        self, session, persister, wind_park, tenant_id, test_actor_id, monkeypatch
    ):
        """A duplicate item row violates the item constraint, not the header one."""
        _, settlement, *_ = wind_park
        real_allocate = persister._engine.allocate

        def allocate_with_duplicate_item(**kwargs):
            result = real_allocate(**kwargs)
            duplicate = replace(result.items[0], position=len(result.items) + 1)
            return replace(result, items=result.items + (duplicate,))

        monkeypatch.setattr(persister._engine, "allocate", allocate_with_duplicate_item)

        with pytest.raises(IntegrityError):
            persister.execute(tenant_id, settlement.id, test_actor_id)

        assert count_rows(session, AllocationHeader) == 0
        assert count_rows(session, AllocationItem) == 0

    def test_savepoint_rolled_back_on_unexpected_error(
        self, session, persister, wind_park, tenant_id, test_actor_id, monkeypatch
    ):
        _, settlement, *_ = wind_park

        def failing_add_all(instances):
            raise RuntimeError("item write failed")

        monkeypatch.setattr(session, "add_all", failing_add_all)

        with pytest.raises(RuntimeError):
            persister.execute(tenant_id, settlement.id, test_actor_id)

        monkeypatch.undo()
        assert count_rows(session, AllocationHeader) == 0

        # The header insert was undone, so a retry succeeds
        header = persister.execute(tenant_id, settlement.id, test_actor_id)
        assert header.item_count == 2

    def test_void_allows_recalculation(
        self, session, persister, lifecycle_service, wind_park, tenant_id, test_actor_id
    ):
        _, settlement, *_ = wind_park
        first = persister.execute(tenant_id, settlement.id, test_actor_id)
        lifecycle_service.void(tenant_id, first.id, test_actor_id, reason="membership corrected")

        second = persister.execute(tenant_id, settlement.id, test_actor_id)

        assert second.id != first.id
        assert count_rows(session, AllocationHeader) == 2
        assert count_rows(session, AllocationItem) == 4


class TestLogging:

    def test_run_is_bracketed_by_start_and_completion(
        self, persister, wind_park, tenant_id, test_actor_id, captured_logs
    ):
        _, settlement, *_ = wind_park
        header = persister.execute(tenant_id, settlement.id, test_actor_id)

        logs = captured_logs()
        messages = [r["message"] for r in logs]
        assert "allocation_started" in messages
        assert messages.count("SETTLEMENT_ENGINE_TRACE") >= 2
        completed = next(r for r in logs if r["message"] == "allocation_completed")
        assert completed["allocation_id"] == str(header.id)
        assert completed["settlement_id"] == str(settlement.id)
        assert completed["tenant_id"] == str(tenant_id)
        assert completed["item_count"] == 2

    def test_rejection_is_logged(
        self, build_park, persister, tenant_id, test_actor_id, captured_logs
    ):
        _, settlement, *_ = build_park(status=SettlementStatus.OPEN)
        with pytest.raises(SettlementNotCalculableError):
            persister.execute(tenant_id, settlement.id, test_actor_id)

        rejected = [r for r in captured_logs() if r["message"] == "settlement_not_calculable"]
        assert rejected and rejected[0]["status"] == "open"
