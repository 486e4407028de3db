"""Domain models for the settlement kernel."""

from settlement_kernel.models.allocation import (
    AllocationHeader,
    AllocationItem,
    AllocationStatus,
)
from settlement_kernel.models.beneficiary import Beneficiary
from settlement_kernel.models.facility import (
    Facility,
    MemberUnit,
    MemberUnitStatus,
    MembershipRecord,
    MembershipStatus,
)
from settlement_kernel.models.settlement import (
    Settlement,
    SettlementItem,
    SettlementStatus,
)
from settlement_kernel.models.tax_rate import TaxRateConfig, TaxType

__all__ = [
    "AllocationHeader",
    "AllocationItem",
    "AllocationStatus",
    "Beneficiary",
    "Facility",
    "MemberUnit",
    "MemberUnitStatus",
    "MembershipRecord",
    "MembershipStatus",
    "Settlement",
    "SettlementItem",
    "SettlementStatus",
    "TaxRateConfig",
    "TaxType",
]
