"""
Gas station ledger.

One shared balance (available / allocated / used) plus a sub-ledger per event.
Every mutation runs in a single DB transaction while holding the ledger lock,
so concurrent mint attempts never interleave partially and
available + allocated + used always equals everything ever added.
"""
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from .errors import AllocationExceeded, AllocationInactive, AllocationNotFound, InsufficientFunds, StationInactive
from .gas import Eligibility, EventGasAllocation, GasStationState, check_eligibility, parse_amount
from .models import GasAllocation, GasReconciliation, GasStation, GasUsage

logger = logging.getLogger(__name__)

STATION_ID = 1


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _station_state(row: GasStation) -> GasStationState:
    return GasStationState(
        available_balance=row.available_balance,
        allocated_balance=row.allocated_balance,
        total_used=row.total_used,
        is_active=row.is_active,
        last_updated=row.last_updated,
    )


def _allocation_state(row: GasAllocation) -> EventGasAllocation:
    return EventGasAllocation(
        event_id=row.event_id,
        max_gas_per_tx=row.max_gas_per_tx,
        total_allocated=row.total_allocated,
        used=row.used,
        transactions=row.transactions,
        is_active=row.is_active,
    )


def _sync_remaining(row: GasAllocation) -> None:
    row.remaining_allocation = row.total_allocated - row.used


class GasStationLedger:
    def __init__(self, session_factory):
        self._session_factory = session_factory
        self._lock = threading.RLock()

    @contextmanager
    def _transaction(self):
        with self._lock:
            db = self._session_factory()
            try:
                yield db
                db.commit()
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    def _station(self, db) -> GasStation:
        row = db.execute(
            select(GasStation).where(GasStation.id == STATION_ID).with_for_update()
        ).scalar_one_or_none()
        if row is None:
            row = GasStation(
                id=STATION_ID,
                available_balance=0,
                allocated_balance=0,
                total_used=0,
                is_active=True,
                last_updated=_now(),
            )
            db.add(row)
            db.flush()
        return row

    def _allocation(self, db, event_id: str) -> Optional[GasAllocation]:
        return db.execute(
            select(GasAllocation).where(GasAllocation.event_id == event_id).with_for_update()
        ).scalar_one_or_none()

    def _require_allocation(self, db, event_id: str) -> GasAllocation:
        row = self._allocation(db, event_id)
        if row is None:
            raise AllocationNotFound(f"no gas allocation for event {event_id}", event_id=event_id)
        return row

    # -------------------------
    # Reads
    # -------------------------
    def ensure_station(self) -> GasStationState:
        with self._transaction() as db:
            return _station_state(self._station(db))

    def state(self) -> GasStationState:
        return self.ensure_station()

    def get_allocation(self, event_id: str) -> Optional[EventGasAllocation]:
        with self._transaction() as db:
            row = self._allocation(db, event_id)
            return _allocation_state(row) if row else None

    def snapshot(self, event_id: str) -> tuple[GasStationState, Optional[EventGasAllocation]]:
        """Station and allocation read under the same lock (one writer generation)."""
        with self._transaction() as db:
            station = self._station(db)
            row = self._allocation(db, event_id)
            return _station_state(station), (_allocation_state(row) if row else None)

    def check_eligibility(self, event_id: str, estimated_gas: int) -> Eligibility:
        station, allocation = self.snapshot(event_id)
        return check_eligibility(allocation, estimated_gas, station_active=station.is_active)

    # -------------------------
    # Mutations
    # -------------------------
    def add_balance(self, amount: int) -> GasStationState:
        amount = parse_amount(amount)
        with self._transaction() as db:
            station = self._station(db)
            station.available_balance += amount
            station.last_updated = _now()
            logger.info("gas station balance added amount=%s available=%s", amount, station.available_balance)
            return _station_state(station)

    def allocate(self, event_id: str, amount: int, max_gas_per_tx: int) -> EventGasAllocation:
        amount = parse_amount(amount)
        max_gas_per_tx = parse_amount(max_gas_per_tx, field="max_gas_per_tx")

        with self._transaction() as db:
            station = self._station(db)
            if not station.is_active:
                raise StationInactive("gas station is not accepting allocations")
            if amount > station.available_balance:
                raise InsufficientFunds(
                    f"requested {amount} but only {station.available_balance} available",
                    requested=amount,
                    available=station.available_balance,
                )

            row = self._allocation(db, event_id)
            if row is None:
                row = GasAllocation(
                    event_id=event_id,
                    max_gas_per_tx=max_gas_per_tx,
                    total_allocated=amount,
                    used=0,
                    transactions=0,
                    is_active=True,
                )
                db.add(row)
            else:
                row.total_allocated += amount
                row.max_gas_per_tx = max_gas_per_tx
            _sync_remaining(row)

            station.available_balance -= amount
            station.allocated_balance += amount
            station.last_updated = _now()
            db.flush()

            logger.info(
                "gas allocated event_id=%s amount=%s total_allocated=%s max_gas_per_tx=%s",
                event_id, amount, row.total_allocated, max_gas_per_tx,
            )
            return _allocation_state(row)

    def record_usage(self, event_id: str, gas_used: int, transaction_id: Optional[str] = None) -> EventGasAllocation:
        """
        Move gas_used from the event's allocation to the station's used total.

        Only called after a sponsored transaction executed on-chain. When a
        transaction_id is given, a second call for the same transaction is a
        no-op returning the current allocation.
        """
        gas_used = parse_amount(gas_used, field="gas_used", allow_zero=True)

        try:
            with self._transaction() as db:
                if transaction_id is not None:
                    seen = db.execute(
                        select(GasUsage.id).where(GasUsage.transaction_id == transaction_id)
                    ).first()
                    if seen:
                        logger.warning("gas usage already recorded transaction_id=%s", transaction_id)
                        return _allocation_state(self._require_allocation(db, event_id))

                station = self._station(db)
                row = self._require_allocation(db, event_id)
                if not row.is_active:
                    raise AllocationInactive(f"gas allocation for event {event_id} is inactive", event_id=event_id)
                remaining = row.total_allocated - row.used
                if gas_used > remaining:
                    raise AllocationExceeded(
                        f"gas used {gas_used} exceeds remaining allocation {remaining}",
                        event_id=event_id,
                        gas_used=gas_used,
                        remaining=remaining,
                    )

                row.used += gas_used
                row.transactions += 1
                _sync_remaining(row)
                station.allocated_balance -= gas_used
                station.total_used += gas_used
                station.last_updated = _now()

                if transaction_id is not None:
                    db.add(GasUsage(event_id=event_id, transaction_id=transaction_id, gas_used=gas_used))
                db.flush()

                logger.info(
                    "gas usage recorded event_id=%s gas_used=%s remaining=%s transaction_id=%s",
                    event_id, gas_used, row.remaining_allocation, transaction_id,
                )
                return _allocation_state(row)
        except IntegrityError:
            # Another process recorded the same transaction first
            logger.warning("gas usage already recorded transaction_id=%s", transaction_id)
            allocation = self.get_allocation(event_id)
            if allocation is None:
                raise
            return allocation

    def reclaim(self, event_id: str, amount: Optional[int] = None) -> EventGasAllocation:
        """Return unspent allocation to the available balance (all of it when amount is None)."""
        with self._transaction() as db:
            station = self._station(db)
            row = self._require_allocation(db, event_id)
            remaining = row.total_allocated - row.used
            amount = remaining if amount is None else parse_amount(amount)
            if amount > remaining:
                raise AllocationExceeded(
                    f"cannot reclaim {amount}, only {remaining} unspent",
                    event_id=event_id,
                    requested=amount,
                    remaining=remaining,
                )

            row.total_allocated -= amount
            _sync_remaining(row)
            station.allocated_balance -= amount
            station.available_balance += amount
            station.last_updated = _now()
            db.flush()

            logger.info("gas reclaimed event_id=%s amount=%s", event_id, amount)
            return _allocation_state(row)

    def set_allocation_active(self, event_id: str, active: bool) -> EventGasAllocation:
        with self._transaction() as db:
            row = self._require_allocation(db, event_id)
            row.is_active = active
            db.flush()
            logger.info("gas allocation event_id=%s active=%s", event_id, active)
            return _allocation_state(row)

    def set_station_active(self, active: bool) -> GasStationState:
        with self._transaction() as db:
            station = self._station(db)
            station.is_active = active
            station.last_updated = _now()
            logger.info("gas station active=%s", active)
            return _station_state(station)

    # -------------------------
    # Reconciliation
    # -------------------------
    def flag_for_reconciliation(self, event_id: str, transaction_id: str, gas_used: int, reason_code: str, detail: str) -> None:
        with self._transaction() as db:
            db.add(GasReconciliation(
                event_id=event_id,
                transaction_id=transaction_id,
                gas_used=gas_used,
                reason_code=reason_code,
                detail=detail,
            ))
        logger.error(
            "unaccounted sponsored gas event_id=%s transaction_id=%s gas_used=%s reason=%s",
            event_id, transaction_id, gas_used, reason_code,
        )

    def reconciliations(self, include_resolved: bool = False, limit: int = 100) -> list[dict]:
        with self._transaction() as db:
            q = select(GasReconciliation).order_by(GasReconciliation.id.desc()).limit(limit)
            if not include_resolved:
                q = q.where(GasReconciliation.resolved.is_(False))
            return [
                {
                    "id": r.id,
                    "event_id": r.event_id,
                    "transaction_id": r.transaction_id,
                    "gas_used": str(r.gas_used),
                    "reason_code": r.reason_code,
                    "detail": r.detail,
                    "resolved": r.resolved,
                    "created_at": str(r.created_at),
                }
                for r in db.execute(q).scalars().all()
            ]
