"""Read-only selectors (query side) of the settlement kernel."""

from settlement_kernel.selectors.allocation_selector import AllocationSelector
from settlement_kernel.selectors.base import BaseSelector
from settlement_kernel.selectors.membership_selector import SqlMembershipSource
from settlement_kernel.selectors.settlement_selector import SettlementSelector

__all__ = [
    "AllocationSelector",
    "BaseSelector",
    "SettlementSelector",
    "SqlMembershipSource",
]
