"""Write-side kernel services.  Services flush; callers commit."""

from settlement_kernel.services.allocation_lifecycle_service import (
    AllocationLifecycleService,
)
from settlement_kernel.services.base import BaseService
from settlement_kernel.services.tax_rate_service import TaxRateService

__all__ = [
    "AllocationLifecycleService",
    "BaseService",
    "TaxRateService",
]
