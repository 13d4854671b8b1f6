class GasStationError(Exception):
    """Base class for ledger errors. No state is mutated when one is raised."""

    reason_code = "GAS_STATION_ERROR"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.details = details


class InvalidAmount(GasStationError):
    reason_code = "INVALID_AMOUNT"


class InsufficientFunds(GasStationError):
    reason_code = "INSUFFICIENT_FUNDS"


class StationInactive(GasStationError):
    reason_code = "STATION_INACTIVE"


class AllocationNotFound(GasStationError):
    reason_code = "ALLOCATION_NOT_FOUND"


class AllocationInactive(GasStationError):
    reason_code = "ALLOCATION_INACTIVE"


class AllocationExceeded(GasStationError):
    reason_code = "ALLOCATION_EXCEEDED"


class SponsorshipFailure(Exception):
    """A sponsored mint attempt failed; the caller falls back to a user-paid transaction."""

    reason_code = "SPONSORSHIP_FAILED"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class EstimationFailure(SponsorshipFailure):
    reason_code = "ESTIMATION_FAILED"


class EligibilityCheckFailure(SponsorshipFailure):
    reason_code = "ELIGIBILITY_CHECK_FAILED"


class PreparationFailure(SponsorshipFailure):
    reason_code = "PREPARATION_FAILED"


class SigningFailure(SponsorshipFailure):
    reason_code = "SIGNING_FAILED"


class SubmissionFailure(SponsorshipFailure):
    reason_code = "SUBMISSION_FAILED"

    def __init__(self, message: str, transaction_id=None, gas_used=None):
        super().__init__(message)
        # Set when the chain executed the transaction but reported failure
        self.transaction_id = transaction_id
        self.gas_used = gas_used
