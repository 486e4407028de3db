"""
Pytest fixtures for the settlement kernel test suite.

Database selection:
    DATABASE_URL picks the backend.  The default is an in-memory SQLite
    database; set it to a PostgreSQL URL to run the ``postgres`` marked
    tests (true concurrency) as well.

Isolation:
    Engine and tables are created once per session.  Regular tests get a
    ``session`` joined to an outer transaction that is rolled back at
    teardown.  Concurrency tests use ``pg_session_factory`` (real commits,
    TRUNCATE on teardown).
"""

import json
import logging
import os
import threading
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import UUID

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Session

from settlement_config import DEFAULT_CONFIG_PATH, get_active_config
from settlement_kernel.db.base import Base
from settlement_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from settlement_kernel.domain.clock import DeterministicClock
from settlement_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from settlement_kernel.models import (
    Beneficiary,
    Facility,
    MemberUnit,
    MemberUnitStatus,
    MembershipRecord,
    MembershipStatus,
    Settlement,
    SettlementItem,
    SettlementStatus,
    TaxRateConfig,
    TaxType,
)
from settlement_kernel.selectors.allocation_selector import AllocationSelector
from settlement_kernel.services.allocation_lifecycle_service import (
    AllocationLifecycleService,
)
from settlement_services.settlement_persister import SettlementPersister

TEST_ACTOR_ID = UUID("00000000-0000-4000-8000-000000000001")
TEST_TENANT_ID = UUID("00000000-0000-4000-8000-0000000000aa")

DEFAULT_DATABASE_URL = "sqlite://"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture settlement_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, persister):
            persister.execute(...)
            logs = captured_logs()
            assert any(r["message"] == "allocation_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("settlement_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Markers
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


def get_database_url() -> str:
    """Get database URL from environment, or use in-memory SQLite."""
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


def running_on_postgres() -> bool:
    return get_database_url().startswith("postgresql")


def pytest_collection_modifyitems(config, items):
    """Skip ``postgres`` tests when the suite runs against SQLite."""
    if running_on_postgres():
        return
    skip = pytest.mark.skip(reason="requires DATABASE_URL pointing at PostgreSQL")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip)


def _kill_orphaned_connections():
    """
    Terminate leftover backends of earlier runs (PostgreSQL only).

    Prevents tests from hanging on locks held by connections a crashed
    run left open.
    """
    if not running_on_postgres():
        return
    import psycopg2

    try:
        conn = psycopg2.connect(get_database_url())
        conn.autocommit = True
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT pg_terminate_backend(pid)
                FROM pg_stat_activity
                WHERE datname = current_database()
                  AND pid <> pg_backend_pid()
                  AND state IN ('idle in transaction', 'idle in transaction (aborted)')
                """
            )
        conn.close()
    except psycopg2.Error as e:
        print(f"\n[conftest] Could not clean orphaned connections: {e}")


# =============================================================================
# Session-scoped DB infrastructure (create engine + tables ONCE per suite)
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    """Single engine for the entire test session."""
    _kill_orphaned_connections()
    eng = init_engine_from_url(
        get_database_url(), echo=False,
        pool_size=20, max_overflow=10, pool_timeout=10,
    )
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session, drop once at end."""
    drop_tables()
    create_tables()
    yield
    drop_tables()


def _truncate_all_tables(engine):
    """Delete all rows; used by tests that really commit."""
    table_names = [t.name for t in reversed(Base.metadata.sorted_tables)]
    with engine.connect() as conn:
        if engine.dialect.name == "postgresql":
            conn.execute(text("TRUNCATE " + ", ".join(table_names) + " CASCADE"))
        else:
            for name in table_names:
                conn.execute(text(f"DELETE FROM {name}"))
        conn.commit()


# =============================================================================
# Per-test session with automatic rollback
# =============================================================================


@pytest.fixture(scope="function")
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    The session joins an outer transaction in ``create_savepoint`` mode:
    ``session.commit()`` inside a test releases a savepoint only, and the
    outer transaction is rolled back at teardown.
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


@pytest.fixture(scope="function")
def pg_session_factory(db_engine, db_tables):
    """Tracked session factory for concurrent threads (real commits).

    On teardown new sessions are refused, tracked sessions are closed and
    all data is truncated.
    """
    factory = get_session_factory()
    created_sessions = []
    lock = threading.Lock()
    closed = False

    def tracked_factory():
        nonlocal closed
        with lock:
            if closed:
                raise RuntimeError("pg_session_factory closed (fixture teardown)")
            s = factory()
            created_sessions.append(s)
            return s

    yield tracked_factory

    with lock:
        closed = True

    for s in created_sessions:
        if s.is_active:
            s.rollback()
        s.close()

    _truncate_all_tables(db_engine)


# =============================================================================
# Identity, clock and configuration
# =============================================================================


@pytest.fixture
def test_actor_id() -> UUID:
    """Provide a consistent test actor ID."""
    return TEST_ACTOR_ID


@pytest.fixture
def tenant_id() -> UUID:
    return TEST_TENANT_ID


@pytest.fixture
def deterministic_clock():
    return DeterministicClock(datetime(2025, 3, 1, 9, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def default_config(monkeypatch):
    """Packaged default configuration, independent of the environment."""
    monkeypatch.delenv("SETTLEMENT_CONFIG", raising=False)
    return get_active_config(DEFAULT_CONFIG_PATH)


# =============================================================================
# Service / selector fixtures
# =============================================================================


@pytest.fixture
def persister(session, default_config, deterministic_clock) -> SettlementPersister:
    return SettlementPersister(
        session, config=default_config, clock=deterministic_clock
    )


@pytest.fixture
def lifecycle_service(session, deterministic_clock) -> AllocationLifecycleService:
    return AllocationLifecycleService(session, clock=deterministic_clock)


@pytest.fixture
def allocation_selector(session) -> AllocationSelector:
    return AllocationSelector(session)


# =============================================================================
# Data builders
# =============================================================================


def make_beneficiary(session, tenant_id, name, legal_form=None) -> Beneficiary:
    beneficiary = Beneficiary(tenant_id=tenant_id, name=name, legal_form=legal_form)
    session.add(beneficiary)
    session.flush()
    return beneficiary


def make_facility(session, tenant_id, name="Windpark Nord", mode="proportional") -> Facility:
    facility = Facility(tenant_id=tenant_id, name=name, distribution_mode=mode)
    session.add(facility)
    session.flush()
    return facility


def make_unit(
    session,
    facility,
    designation,
    is_tolerated=True,
    status=MemberUnitStatus.ACTIVE,
) -> MemberUnit:
    unit = MemberUnit(
        facility_id=facility.id,
        designation=designation,
        is_tolerated=is_tolerated,
        status=status,
    )
    session.add(unit)
    session.flush()
    return unit


def make_membership(
    session,
    unit,
    beneficiary,
    valid_from=date(2020, 1, 1),
    valid_to=None,
    status=MembershipStatus.ACTIVE,
) -> MembershipRecord:
    record = MembershipRecord(
        member_unit_id=unit.id,
        beneficiary_id=beneficiary.id,
        valid_from=valid_from,
        valid_to=valid_to,
        status=status,
    )
    session.add(record)
    session.flush()
    return record


def make_settlement(
    session,
    tenant_id,
    facility,
    year=2024,
    status=SettlementStatus.CALCULATED,
    items=(),
    reference_date=None,
) -> Settlement:
    """
    ``items`` is a sequence of (taxable, exempt) or
    (taxable, exempt, direct_billing_beneficiary) tuples.
    """
    settlement = Settlement(
        tenant_id=tenant_id,
        facility_id=facility.id,
        year=year,
        status=status,
        reference_date=reference_date,
    )
    session.add(settlement)
    session.flush()
    for position, row in enumerate(items, start=1):
        taxable, exempt = Decimal(row[0]), Decimal(row[1])
        direct = row[2] if len(row) > 2 else None
        session.add(
            SettlementItem(
                settlement_id=settlement.id,
                position=position,
                description=f"Position {position}",
                taxable_amount=taxable,
                exempt_amount=exempt,
                subtotal=taxable + exempt,
                direct_billing_beneficiary_id=direct.id if direct is not None else None,
            )
        )
    session.flush()
    return settlement


def make_tax_rate(
    session,
    tenant_id,
    rate,
    valid_from=date(2007, 1, 1),
    valid_to=None,
    tax_type=TaxType.STANDARD,
) -> TaxRateConfig:
    row = TaxRateConfig(
        tenant_id=tenant_id,
        tax_type=tax_type,
        rate_percent=Decimal(rate),
        valid_from=valid_from,
        valid_to=valid_to,
    )
    session.add(row)
    session.flush()
    return row


@pytest.fixture
def create_beneficiary(session, tenant_id):
    def _create(name, legal_form=None):
        return make_beneficiary(session, tenant_id, name, legal_form)
    return _create


@pytest.fixture
def create_facility(session, tenant_id):
    def _create(name="Windpark Nord", mode="proportional"):
        return make_facility(session, tenant_id, name, mode)
    return _create


@pytest.fixture
def create_unit(session):
    def _create(facility, designation, is_tolerated=True, status=MemberUnitStatus.ACTIVE):
        return make_unit(session, facility, designation, is_tolerated, status)
    return _create


@pytest.fixture
def create_membership(session):
    def _create(unit, beneficiary, valid_from=date(2020, 1, 1), valid_to=None,
                status=MembershipStatus.ACTIVE):
        return make_membership(session, unit, beneficiary, valid_from, valid_to, status)
    return _create


@pytest.fixture
def create_settlement(session, tenant_id):
    def _create(facility, year=2024, status=SettlementStatus.CALCULATED, items=(),
                reference_date=None):
        return make_settlement(session, tenant_id, facility, year, status, items, reference_date)
    return _create


@pytest.fixture
def create_tax_rate(session, tenant_id):
    def _create(rate, valid_from=date(2007, 1, 1), valid_to=None, tax_type=TaxType.STANDARD):
        return make_tax_rate(session, tenant_id, rate, valid_from, valid_to, tax_type)
    return _create


def build_wind_park(session, tenant_id, mode="proportional", year=2024,
                    status=SettlementStatus.CALCULATED):
    """
    Two operators on one park: "Nordwind" owns 7 turbines, "Suedwind" 3.
    Nordwind was billed 1000.00 directly.  Pool: taxable 10000, exempt 2000.

    Returns (facility, settlement, nordwind, suedwind).
    """
    facility = make_facility(session, tenant_id, mode=mode)
    nordwind = make_beneficiary(session, tenant_id, "Nordwind", "GmbH")
    suedwind = make_beneficiary(session, tenant_id, "Suedwind", "GmbH & Co. KG")
    for n in range(7):
        unit = make_unit(session, facility, f"WEA-N{n + 1:02d}")
        make_membership(session, unit, nordwind)
    for n in range(3):
        unit = make_unit(session, facility, f"WEA-S{n + 1:02d}")
        make_membership(session, unit, suedwind)
    settlement = make_settlement(
        session,
        tenant_id,
        facility,
        year=year,
        status=status,
        items=[
            ("9000.00", "2000.00"),
            ("1000.00", "0.00", nordwind),
        ],
    )
    make_tax_rate(session, tenant_id, "19.00")
    return facility, settlement, nordwind, suedwind


@pytest.fixture
def wind_park(session, tenant_id):
    return build_wind_park(session, tenant_id)


@pytest.fixture
def build_park(session, tenant_id):
    """Factory variant of ``wind_park`` for other statuses or modes."""
    def _build(mode="proportional", year=2024, status=SettlementStatus.CALCULATED):
        return build_wind_park(session, tenant_id, mode=mode, year=year, status=status)
    return _build


@pytest.fixture
def committed_wind_park(pg_session_factory, tenant_id):
    """``wind_park`` data committed for real, visible to other connections."""
    setup_session = pg_session_factory()
    park = build_wind_park(setup_session, tenant_id)
    setup_session.commit()
    return park
