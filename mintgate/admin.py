import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from .db import SessionLocal
from .deps import get_ledger, get_redis
from .errors import AllocationNotFound
from .gas import parse_amount
from .idempotency import claim_key, get_cached_response, release_key, set_cached_response
from .ledger import GasStationLedger
from .minting import as_utc, event_to_dict, mint_count
from .models import Event, MintAuditLog
from .security import passphrase_digest, require_admin_key

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin_key)])


def _gen_event_id() -> str:
    return f"evt_{uuid.uuid4().hex[:8]}"


# -------------------------
# Events
# -------------------------
class CreateEventReq(BaseModel):
    event_name: str
    event_details: str = ""
    mint_start_date: datetime
    mint_end_date: datetime
    mint_limit: int
    gas_sponsored: bool = True
    transferable: bool = False
    passphrase: str
    nft_name: str
    nft_description: str
    nft_image_url: Optional[str] = None
    nft_animation_url: Optional[str] = None


@router.post("/events", status_code=201)
def create_event(req: CreateEventReq):
    if not req.event_name.strip():
        raise HTTPException(status_code=400, detail="event_name is required")
    if not req.passphrase.strip():
        raise HTTPException(status_code=400, detail="passphrase is required")
    if req.mint_limit < 1:
        raise HTTPException(status_code=400, detail="mint_limit must be at least 1")
    if as_utc(req.mint_start_date) >= as_utc(req.mint_end_date):
        raise HTTPException(status_code=400, detail="mint_start_date must be before mint_end_date")

    event = Event(
        id=_gen_event_id(),
        event_name=req.event_name.strip(),
        event_details=req.event_details,
        mint_start_date=as_utc(req.mint_start_date),
        mint_end_date=as_utc(req.mint_end_date),
        mint_limit=req.mint_limit,
        gas_sponsored=req.gas_sponsored,
        transferable=req.transferable,
        passphrase_hash=passphrase_digest(req.passphrase),
        nft_name=req.nft_name,
        nft_description=req.nft_description,
        nft_image_url=req.nft_image_url,
        nft_animation_url=req.nft_animation_url,
    )

    db = SessionLocal()
    try:
        db.add(event)
        db.commit()
        db.refresh(event)
        return event_to_dict(event, minted=0)
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="passphrase already in use by another event")
    finally:
        db.close()


@router.get("/events")
def list_events():
    db = SessionLocal()
    try:
        rows = db.execute(select(Event).order_by(Event.created_at.desc())).scalars().all()
        return [event_to_dict(e, minted=mint_count(db, e.id)) for e in rows]
    finally:
        db.close()


def _require_event(event_id: str) -> None:
    db = SessionLocal()
    try:
        if db.get(Event, event_id) is None:
            raise HTTPException(status_code=404, detail="Event not found")
    finally:
        db.close()


# -------------------------
# Gas station
# -------------------------
class AddBalanceReq(BaseModel):
    amount: str


class AllocateReq(BaseModel):
    event_id: str
    amount: str
    max_gas_per_tx: str


class ReclaimReq(BaseModel):
    amount: Optional[str] = None


@router.get("/gas-station")
def gas_station_state(ledger: GasStationLedger = Depends(get_ledger)):
    return ledger.state().to_dict()


@router.post("/gas-station/balance")
def add_balance(req: AddBalanceReq, ledger: GasStationLedger = Depends(get_ledger)):
    return ledger.add_balance(parse_amount(req.amount)).to_dict()


@router.post("/gas-station/allocations")
async def allocate(
    req: AllocateReq,
    ledger: GasStationLedger = Depends(get_ledger),
    redis=Depends(get_redis),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    amount = parse_amount(req.amount)
    max_gas_per_tx = parse_amount(req.max_gas_per_tx, field="max_gas_per_tx")
    _require_event(req.event_id)

    if not idempotency_key:
        return ledger.allocate(req.event_id, amount, max_gas_per_tx).to_dict()

    cached = await get_cached_response(redis, "allocate", idempotency_key)
    if cached:
        return cached
    if not await claim_key(redis, "allocate", idempotency_key):
        return JSONResponse(status_code=409, content={"detail": "request with this Idempotency-Key is in progress"})
    try:
        resp = ledger.allocate(req.event_id, amount, max_gas_per_tx).to_dict()
        await set_cached_response(redis, "allocate", idempotency_key, resp, ttl_seconds=3600)
        return resp
    finally:
        await release_key(redis, "allocate", idempotency_key)


@router.get("/gas-station/allocations/{event_id}")
def get_allocation(event_id: str, ledger: GasStationLedger = Depends(get_ledger)):
    allocation = ledger.get_allocation(event_id)
    if allocation is None:
        raise AllocationNotFound(f"no gas allocation for event {event_id}", event_id=event_id)
    return allocation.to_dict()


@router.post("/gas-station/allocations/{event_id}/reclaim")
def reclaim(event_id: str, req: ReclaimReq, ledger: GasStationLedger = Depends(get_ledger)):
    amount = parse_amount(req.amount) if req.amount is not None else None
    return ledger.reclaim(event_id, amount).to_dict()


@router.post("/gas-station/allocations/{event_id}/deactivate")
def deactivate_allocation(event_id: str, ledger: GasStationLedger = Depends(get_ledger)):
    return ledger.set_allocation_active(event_id, False).to_dict()


@router.post("/gas-station/allocations/{event_id}/activate")
def activate_allocation(event_id: str, ledger: GasStationLedger = Depends(get_ledger)):
    return ledger.set_allocation_active(event_id, True).to_dict()


@router.post("/gas-station/deactivate")
def deactivate_station(ledger: GasStationLedger = Depends(get_ledger)):
    return ledger.set_station_active(False).to_dict()


@router.post("/gas-station/activate")
def activate_station(ledger: GasStationLedger = Depends(get_ledger)):
    return ledger.set_station_active(True).to_dict()


@router.get("/gas-station/reconciliations")
def reconciliations(include_resolved: bool = False, limit: int = 100, ledger: GasStationLedger = Depends(get_ledger)):
    return ledger.reconciliations(include_resolved=include_resolved, limit=limit)


# -------------------------
# Logs
# -------------------------
@router.get("/audit")
def get_audit(limit: int = 80, event_id: Optional[str] = None):
    db = SessionLocal()
    try:
        q = select(MintAuditLog)
        if event_id:
            q = q.where(MintAuditLog.event_id == event_id)
        rows = db.execute(q.order_by(MintAuditLog.id.desc()).limit(limit)).scalars().all()
        return [
            {
                "created_at": str(log.created_at),
                "decision_id": log.decision_id,
                "event_id": log.event_id,
                "wallet_address": log.wallet_address,
                "transaction_id": log.transaction_id,
                "status": log.status,
                "reason_code": log.reason_code,
            }
            for log in rows
        ]
    finally:
        db.close()
