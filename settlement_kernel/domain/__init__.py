"""Pure domain layer: value objects, DTOs, distribution rules and ports."""

from settlement_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from settlement_kernel.domain.distribution import (
    DistributionMode,
    ShareBasis,
    ShareRule,
)
from settlement_kernel.domain.dtos import (
    AllocationHeaderInfo,
    AllocationItemInfo,
    SettlementInfo,
    SettlementPool,
)
from settlement_kernel.domain.membership import (
    FacilitySnapshot,
    MemberUnitSnapshot,
    MembershipWindow,
)
from settlement_kernel.domain.ports import (
    MembershipSource,
    SettlementSource,
    TaxRateProvider,
)

__all__ = [
    "AllocationHeaderInfo",
    "AllocationItemInfo",
    "Clock",
    "DeterministicClock",
    "DistributionMode",
    "FacilitySnapshot",
    "MemberUnitSnapshot",
    "MembershipSource",
    "MembershipWindow",
    "SettlementInfo",
    "SettlementPool",
    "SettlementSource",
    "ShareBasis",
    "ShareRule",
    "SystemClock",
    "TaxRateProvider",
]
