"""
Typed Exception Hierarchy for the Settlement Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the allocation engine sit behind a web layer that has to turn
failures into different operator messages.  A missing settlement is a 404,
a settlement in the wrong state needs its current status explained, and an
existing allocation should offer "view existing allocation" rather than
"retry".  None of that works if callers have to parse message strings.

Every error therefore:
  1. Has its own class (catch by type, not message)
  2. Carries a CODE class attribute (machine-readable, API-safe)
  3. Stores its context as attributes (not only inside the message)

Example:
    try:
        persister.execute(tenant_id, settlement_id, actor_id)
    except AllocationAlreadyExistsError as e:
        redirect_to_allocation(e.allocation_id)
    except SettlementNotCalculableError as e:
        flash(f"Settlement is {e.status}, calculate it first")

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    SettlementKernelError (base)
    |
    +-- NotFoundError
    |   +-- SettlementNotFoundError
    |   +-- FacilityNotFoundError
    |   +-- AllocationNotFoundError
    |
    +-- InvalidStateError
    |   +-- SettlementNotCalculableError
    |   +-- AllocationNotVoidableError
    |
    +-- ConflictError
    |   +-- AllocationAlreadyExistsError
    |
    +-- NoBeneficiariesError
    +-- NoMembersError
    +-- InvalidPeriodError
    +-- TaxRateNotFoundError
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                        | When Raised
-------------|-----------------------------|-----------------------------------
Not found    | SETTLEMENT_NOT_FOUND        | Settlement missing for the tenant
             | FACILITY_NOT_FOUND          | Facility missing for the tenant
             | ALLOCATION_NOT_FOUND        | Allocation header missing
-------------|-----------------------------|-----------------------------------
State        | SETTLEMENT_NOT_CALCULABLE   | Settlement status forbids allocation
             | ALLOCATION_NOT_VOIDABLE     | Only draft allocations change state
-------------|-----------------------------|-----------------------------------
Conflict     | ALLOCATION_ALREADY_EXISTS   | Non-void header exists (idempotency)
-------------|-----------------------------|-----------------------------------
Membership   | NO_BENEFICIARIES            | Nobody to distribute the pool to
             | NO_MEMBERS                  | Facility has no active member units
             | INVALID_PERIOD              | Period year outside 1..9999
-------------|-----------------------------|-----------------------------------
Tax          | TAX_RATE_NOT_FOUND          | No rate configured and no fallback
-------------|-----------------------------|-----------------------------------
Config       | CONFIGURATION_ERROR         | YAML config missing or malformed

None of these are retried internally.  Re-running ``execute()`` after a
failure is safe only because the header uniqueness guard rejects the
second attempt; it is not a substitute for fixing the cause.
"""


class SettlementKernelError(Exception):
    """
    Base exception for all settlement kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "SETTLEMENT_KERNEL_ERROR"


# Not-found exceptions


class NotFoundError(SettlementKernelError):
    """Referenced record does not exist or is not visible to the tenant."""

    code: str = "NOT_FOUND"


class SettlementNotFoundError(NotFoundError):
    """Settlement with given ID was not found for the tenant."""

    code: str = "SETTLEMENT_NOT_FOUND"

    def __init__(self, settlement_id: str, tenant_id: str | None = None):
        self.settlement_id = settlement_id
        self.tenant_id = tenant_id
        super().__init__(f"Settlement not found: {settlement_id}")


class FacilityNotFoundError(NotFoundError):
    """Facility with given ID was not found for the tenant."""

    code: str = "FACILITY_NOT_FOUND"

    def __init__(self, facility_id: str, tenant_id: str | None = None):
        self.facility_id = facility_id
        self.tenant_id = tenant_id
        super().__init__(f"Facility not found: {facility_id}")


class AllocationNotFoundError(NotFoundError):
    """Allocation header with given ID was not found for the tenant."""

    code: str = "ALLOCATION_NOT_FOUND"

    def __init__(self, allocation_id: str):
        self.allocation_id = allocation_id
        super().__init__(f"Allocation not found: {allocation_id}")


# State exceptions


class InvalidStateError(SettlementKernelError):
    """Record is not in a state that permits the requested operation."""

    code: str = "INVALID_STATE"


class SettlementNotCalculableError(InvalidStateError):
    """
    Settlement status does not allow an allocation to be computed.

    The actual status is carried so the caller can explain the conflict
    to a human operator.
    """

    code: str = "SETTLEMENT_NOT_CALCULABLE"

    def __init__(
        self,
        settlement_id: str,
        status: str,
        allowed_statuses: tuple[str, ...] = (),
    ):
        self.settlement_id = settlement_id
        self.status = status
        self.allowed_statuses = allowed_statuses
        allowed = ", ".join(allowed_statuses) if allowed_statuses else "-"
        super().__init__(
            f"Settlement {settlement_id} has status '{status}'; "
            f"allocation requires one of: {allowed}"
        )


class AllocationNotVoidableError(InvalidStateError):
    """Allocation is not a draft and cannot change lifecycle state."""

    code: str = "ALLOCATION_NOT_VOIDABLE"

    def __init__(self, allocation_id: str, status: str, operation: str = "void"):
        self.allocation_id = allocation_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} allocation {allocation_id} in status '{status}'"
        )


# Conflict exceptions


class ConflictError(SettlementKernelError):
    """Operation conflicts with existing state (idempotency guard)."""

    code: str = "CONFLICT"


class AllocationAlreadyExistsError(ConflictError):
    """
    A non-void allocation header already exists for the settlement.

    ``allocation_id`` is None when the conflict was detected by the
    storage-level unique constraint and the winner is not yet visible.
    """

    code: str = "ALLOCATION_ALREADY_EXISTS"

    def __init__(self, settlement_id: str, allocation_id: str | None = None):
        self.settlement_id = settlement_id
        self.allocation_id = allocation_id
        if allocation_id is not None:
            message = (
                f"Settlement {settlement_id} already has allocation {allocation_id}"
            )
        else:
            message = f"Settlement {settlement_id} already has an allocation"
        super().__init__(message)


# Membership exceptions


class NoBeneficiariesError(SettlementKernelError):
    """Resolved membership yields zero beneficiaries."""

    code: str = "NO_BENEFICIARIES"

    def __init__(self, facility_id: str, period_year: int):
        self.facility_id = facility_id
        self.period_year = period_year
        super().__init__(
            f"No beneficiaries resolved for facility {facility_id} in {period_year}"
        )


class NoMembersError(SettlementKernelError):
    """Facility has no active member units."""

    code: str = "NO_MEMBERS"

    def __init__(self, facility_id: str):
        self.facility_id = facility_id
        super().__init__(f"Facility {facility_id} has no active member units")


class InvalidPeriodError(SettlementKernelError):
    """Period year is not a valid calendar year."""

    code: str = "INVALID_PERIOD"

    def __init__(self, period_year: object):
        self.period_year = period_year
        super().__init__(f"Invalid period year: {period_year!r}")


# Tax exceptions


class TaxRateNotFoundError(SettlementKernelError):
    """No tax rate is configured for the category and date."""

    code: str = "TAX_RATE_NOT_FOUND"

    def __init__(self, tax_type: str, on_date: str):
        self.tax_type = tax_type
        self.on_date = on_date
        super().__init__(f"No {tax_type} tax rate effective on {on_date}")


# Configuration exceptions


class ConfigurationError(SettlementKernelError):
    """Runtime configuration file is missing or malformed."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Invalid configuration in {source}: {reason}")
