"""
Gas accounting value types and the sponsorship eligibility decision.

All amounts are ints in the chain's smallest unit (MIST on Sui). Python ints
are arbitrary precision, so no amount is ever rounded.
"""
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .errors import InvalidAmount

_AMOUNT_RE = re.compile(r"^[0-9]+$")


def parse_amount(raw, *, field: str = "amount", allow_zero: bool = False) -> int:
    """Parse a decimal-integer string (or int) into a non-negative int amount."""
    if isinstance(raw, bool):
        raise InvalidAmount(f"{field} must be an integer amount", field=field)
    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, str) and _AMOUNT_RE.match(raw.strip()):
        value = int(raw.strip())
    else:
        raise InvalidAmount(f"{field} must be a decimal integer string, got {raw!r}", field=field)

    if value < 0 or (value == 0 and not allow_zero):
        raise InvalidAmount(f"{field} must be positive, got {value}", field=field)
    return value


@dataclass(frozen=True)
class GasStationState:
    available_balance: int
    allocated_balance: int
    total_used: int
    is_active: bool
    last_updated: datetime

    @property
    def total_funds(self) -> int:
        # Equals the sum of every add_balance call
        return self.available_balance + self.allocated_balance + self.total_used

    def to_dict(self) -> dict:
        return {
            "available_balance": str(self.available_balance),
            "allocated_balance": str(self.allocated_balance),
            "total_used": str(self.total_used),
            "is_active": self.is_active,
            "last_updated": self.last_updated.isoformat(),
        }


@dataclass(frozen=True)
class EventGasAllocation:
    event_id: str
    max_gas_per_tx: int
    total_allocated: int
    used: int
    transactions: int
    is_active: bool

    @property
    def remaining_allocation(self) -> int:
        return self.total_allocated - self.used

    def to_dict(self) -> dict:
        return {
            "event_id": self.event_id,
            "max_gas_per_tx": str(self.max_gas_per_tx),
            "total_allocated": str(self.total_allocated),
            "used": str(self.used),
            "remaining_allocation": str(self.remaining_allocation),
            "transactions": self.transactions,
            "is_active": self.is_active,
        }


# Eligibility reason codes
SPONSORSHIP_DISABLED = "SPONSORSHIP_DISABLED"
CAP_EXCEEDED = "CAP_EXCEEDED"
INSUFFICIENT_ALLOCATION = "INSUFFICIENT_ALLOCATION"


@dataclass(frozen=True)
class Eligibility:
    eligible: bool
    reason: Optional[str] = None
    reason_code: Optional[str] = None

    def to_dict(self) -> dict:
        out = {"eligible": self.eligible}
        if not self.eligible:
            out["reason"] = self.reason
            out["reason_code"] = self.reason_code
        return out


ELIGIBLE = Eligibility(eligible=True)


def check_eligibility(
    allocation: Optional[EventGasAllocation],
    estimated_gas: int,
    station_active: bool = True,
) -> Eligibility:
    """
    Decide whether a transaction with the given estimate may be sponsored.

    Pure function of an allocation snapshot: checks run from "is sponsorship
    configured" to the per-transaction cap to the remaining allocation.
    """
    if estimated_gas < 0:
        raise InvalidAmount(f"estimated gas must be non-negative, got {estimated_gas}", field="estimated_gas")

    if allocation is None or not allocation.is_active or not station_active:
        return Eligibility(False, "sponsorship disabled for event", SPONSORSHIP_DISABLED)

    if estimated_gas > allocation.max_gas_per_tx:
        return Eligibility(
            False,
            f"estimated gas {estimated_gas} exceeds per-transaction cap {allocation.max_gas_per_tx}",
            CAP_EXCEEDED,
        )

    if estimated_gas > allocation.remaining_allocation:
        return Eligibility(False, "insufficient remaining allocation", INSUFFICIENT_ALLOCATION)

    return ELIGIBLE
