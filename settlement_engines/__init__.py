"""
Module: settlement_engines
Responsibility:
    Package entrypoint that re-exports the pure calculation engines of the
    settlement pipeline.  This is the canonical import surface for
    settlement_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import settlement_kernel domain/db-type helpers and logging.
    MUST NOT import settlement_services or touch a Session.

Invariants enforced:
    - Purity: engines never read the clock or the database.
    - Decimal-only arithmetic: floats are rejected at the boundary.
    - Determinism: identical inputs always produce identical outputs,
      including output ordering.

Audit relevance:
    Engine invocations are traced via ``@traced_engine``, emitting
    SETTLEMENT_ENGINE_TRACE log records.

Usage:
    from settlement_engines import (
        AllocationEngine,
        MembershipResolver,
        ShareCalculator,
    )
"""

from settlement_engines.allocation import (
    AllocationEngine,
    AllocationItemResult,
    AllocationResult,
    select_basis,
)
from settlement_engines.membership import (
    MembershipResolution,
    MembershipResolver,
    UnitCount,
    period_bounds,
)
from settlement_engines.shares import BeneficiaryShare, ShareCalculator
from settlement_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    "AllocationEngine",
    "AllocationItemResult",
    "AllocationResult",
    "BeneficiaryShare",
    "MembershipResolution",
    "MembershipResolver",
    "ShareCalculator",
    "UnitCount",
    "compute_input_fingerprint",
    "period_bounds",
    "select_basis",
    "traced_engine",
]
