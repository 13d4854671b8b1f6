import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .admin import router as admin_router
from .chain import UnsignedTransaction
from .config import CLAIM_SIGNING_SECRET, CLAIM_TTL_MINUTES, LOG_LEVEL, MINT_RATE_LIMIT_PER_MIN
from .db import Base, SessionLocal, engine
from .deps import close_clients, get_coordinator, get_ledger, get_redis, get_sponsor_configs, ledger
from .errors import (
    AllocationExceeded,
    AllocationInactive,
    AllocationNotFound,
    GasStationError,
    InsufficientFunds,
    InvalidAmount,
    SponsorshipFailure,
    StationInactive,
)
from .gas import parse_amount
from .idempotency import claim_key, get_cached_response, release_key, set_cached_response
from .ledger import GasStationLedger
from .minting import MintRejected, check_mint_allowed, event_to_dict, mint_count, mint_to_dict
from .models import Event, MintAuditLog, NftMint
from .rate_limit import token_bucket
from .security import mint_claim_token, passphrase_digest, verify_claim_token
from .sponsorship import RETRY_MSG, EventSponsorConfigSource, MintAttempt, MintState, SponsoredTransactionCoordinator
from .wallet import PresignedWallet, wallet_state_for

# --- Logging ---
logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)

# Create DB tables and the gas station row at import time
Base.metadata.create_all(bind=engine)
ledger.ensure_station()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_clients()


app = FastAPI(title="Event Mint Gate", version="1.0.0", lifespan=lifespan)
app.include_router(admin_router)

_ERROR_STATUS = {
    InvalidAmount: 422,
    InsufficientFunds: 409,
    AllocationExceeded: 409,
    StationInactive: 409,
    AllocationInactive: 409,
    AllocationNotFound: 404,
}


@app.exception_handler(GasStationError)
async def gas_station_error_handler(request: Request, exc: GasStationError):
    return JSONResponse(
        status_code=_ERROR_STATUS.get(type(exc), 400),
        content={"detail": str(exc), "reason_code": exc.reason_code},
    )


# -------------------------
# Events (participant side)
# -------------------------
class PassphraseReq(BaseModel):
    passphrase: str


@app.get("/api/events/{event_id}")
def get_event(event_id: str):
    db = SessionLocal()
    try:
        event = db.get(Event, event_id)
        if event is None:
            raise HTTPException(status_code=404, detail="Event not found")
        return event_to_dict(event, minted=mint_count(db, event_id))
    finally:
        db.close()


@app.post("/api/verify-passphrase")
def verify_passphrase(req: PassphraseReq):
    if not req.passphrase.strip():
        raise HTTPException(status_code=400, detail="Passphrase is required")

    db = SessionLocal()
    try:
        event = db.execute(
            select(Event).where(Event.passphrase_hash == passphrase_digest(req.passphrase))
        ).scalar_one_or_none()
        if event is None:
            raise HTTPException(status_code=404, detail="Invalid passphrase")
        return {
            "valid": True,
            "event": event_to_dict(event),
            "claim_token": mint_claim_token(event.id, CLAIM_SIGNING_SECRET, ttl_minutes=CLAIM_TTL_MINUTES),
        }
    finally:
        db.close()


@app.get("/api/events/{event_id}/sponsor")
async def sponsor_config(event_id: str, configs: EventSponsorConfigSource = Depends(get_sponsor_configs)):
    config = await configs.get(event_id)
    if config is None:
        raise HTTPException(status_code=404, detail="Gas sponsorship is not configured for this event")
    return {"event_id": event_id, "sponsor_address": config.sponsor_address, "gas_budget": str(config.gas_budget)}


@app.get("/api/events/{event_id}/eligibility")
def eligibility(event_id: str, estimated_gas: str, ledger: GasStationLedger = Depends(get_ledger)):
    gas = parse_amount(estimated_gas, field="estimated_gas", allow_zero=True)
    return ledger.check_eligibility(event_id, gas).to_dict()


# -------------------------
# Minting
# -------------------------
class SponsoredMintReq(BaseModel):
    claim_token: str
    tx_bytes: str
    wallet_address: Optional[str] = None
    user_signature: Optional[str] = None
    # User-paid version of the same mint, submitted when sponsorship is unavailable or fails
    fallback_tx_bytes: Optional[str] = None
    fallback_signature: Optional[str] = None


class UserPaidMintReq(BaseModel):
    claim_token: str
    wallet_address: str
    transaction_id: str


@app.post("/api/mint")
async def sponsored_mint(
    req: SponsoredMintReq,
    request: Request,
    redis=Depends(get_redis),
    coordinator: SponsoredTransactionCoordinator = Depends(get_coordinator),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    decision_id = str(uuid.uuid4())
    ip = request.client.host if request.client else "unknown"
    ua = request.headers.get("user-agent", "")

    async def finish(resp: dict) -> dict:
        if idempotency_key:
            await set_cached_response(redis, "mint", idempotency_key, resp)
        await _audit(decision_id, ip, ua, resp.get("event_id"), req.wallet_address, resp.get("transaction_id"),
                     resp["status"], resp["reason_code"])
        return resp

    def decision(status: str, reason_code: str, message: str, event_id: str | None = None, **extra) -> dict:
        return {"status": status, "reason_code": reason_code, "message": message,
                "event_id": event_id, "decision_id": decision_id, **extra}

    async def user_paid(event_id: str, wallet: PresignedWallet) -> dict:
        tx = UnsignedTransaction(tx_bytes=req.fallback_tx_bytes, sender=req.wallet_address,
                                 gas_owner=req.wallet_address)
        try:
            result = await wallet.execute_transaction(tx)
        except SponsorshipFailure as e:
            logger.warning("user-paid mint failed event_id=%s reason=%s: %s", event_id, e.reason_code, e.message)
            return decision("FAILED", e.reason_code, RETRY_MSG, event_id, fallback_required=True,
                            transaction_id=getattr(e, "transaction_id", None), sponsored=False)
        _record_mint(event_id, req.wallet_address, result.transaction_id, sponsored=False)
        return decision("MINTED", "OK", "NFT minted; gas was paid from your wallet.", event_id,
                        transaction_id=result.transaction_id, sponsored=False)

    # Idempotency
    if idempotency_key:
        cached = await get_cached_response(redis, "mint", idempotency_key)
        if cached:
            return cached
        if not await claim_key(redis, "mint", idempotency_key):
            return JSONResponse(status_code=409, content=decision("REJECTED", "IN_PROGRESS", "This mint request is already being processed"))

    try:
        allowed = await token_bucket(redis, "mint", ip, capacity=MINT_RATE_LIMIT_PER_MIN,
                                     refill_per_sec=MINT_RATE_LIMIT_PER_MIN / 60)
        if not allowed:
            return await finish(decision("REJECTED", "RATE_LIMITED", "Too many mint requests, slow down"))

        try:
            claim = verify_claim_token(req.claim_token, CLAIM_SIGNING_SECRET)
        except ValueError as e:
            return await finish(decision("REJECTED", str(e), "Passphrase verification is invalid or expired"))
        event_id = claim["event_id"]

        db = SessionLocal()
        try:
            check_mint_allowed(db, event_id)
        except MintRejected as e:
            return await finish(decision("REJECTED", e.reason_code, e.message, event_id))
        finally:
            db.close()

        wallet_state = wallet_state_for(req.wallet_address)
        attempt = MintAttempt(
            event_id=event_id,
            transaction=UnsignedTransaction(tx_bytes=req.tx_bytes, sender=req.wallet_address),
            wallet=wallet_state,
        )
        wallet = PresignedWallet(wallet_state, req.user_signature, chain=coordinator.chain,
                                 paid_signature=req.fallback_signature)
        try:
            await coordinator.run(attempt, wallet)
        except SponsorshipFailure as e:
            if req.fallback_tx_bytes:
                return await finish(await user_paid(event_id, wallet))
            return await finish(decision(
                "FAILED", e.reason_code, attempt.message, event_id,
                fallback_required=True, transaction_id=attempt.transaction_id,
            ))

        if attempt.state is MintState.NOT_ELIGIBLE:
            if req.fallback_tx_bytes:
                return await finish(await user_paid(event_id, wallet))
            return await finish(decision(
                "FALLBACK_REQUIRED", "SPONSORSHIP_UNAVAILABLE", attempt.message, event_id,
                fallback_required=True, eligibility=attempt.eligibility.to_dict(),
            ))

        _record_mint(event_id, req.wallet_address, attempt.transaction_id, sponsored=True)
        return await finish(decision(
            "MINTED", "OK", attempt.message, event_id,
            transaction_id=attempt.transaction_id,
            gas_used=str(attempt.gas_recorded) if attempt.gas_recorded is not None else None,
            needs_reconciliation=attempt.needs_reconciliation,
            sponsored=True,
        ))
    finally:
        if idempotency_key:
            await release_key(redis, "mint", idempotency_key)


@app.post("/api/mints", status_code=201)
def record_user_paid_mint(req: UserPaidMintReq):
    try:
        claim = verify_claim_token(req.claim_token, CLAIM_SIGNING_SECRET)
    except ValueError as e:
        raise HTTPException(status_code=401, detail=str(e))

    db = SessionLocal()
    try:
        check_mint_allowed(db, claim["event_id"])
        mint = NftMint(event_id=claim["event_id"], wallet_address=req.wallet_address,
                       transaction_id=req.transaction_id, sponsored=False)
        db.add(mint)
        db.commit()
        db.refresh(mint)
        return mint_to_dict(mint)
    except MintRejected as e:
        raise HTTPException(status_code=400, detail=e.message)
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Mint already recorded for this transaction")
    finally:
        db.close()


@app.get("/api/mints/{event_id}")
def mints_by_event(event_id: str):
    db = SessionLocal()
    try:
        rows = db.execute(select(NftMint).where(NftMint.event_id == event_id).order_by(NftMint.id)).scalars().all()
        return [mint_to_dict(m) for m in rows]
    finally:
        db.close()


@app.get("/api/wallet-mints/{wallet_address}")
def mints_by_wallet(wallet_address: str):
    db = SessionLocal()
    try:
        rows = db.execute(
            select(NftMint).where(NftMint.wallet_address == wallet_address).order_by(NftMint.id)
        ).scalars().all()
        return [mint_to_dict(m) for m in rows]
    finally:
        db.close()


def _record_mint(event_id: str, wallet_address: str | None, transaction_id: str, sponsored: bool) -> None:
    db = SessionLocal()
    try:
        db.add(NftMint(event_id=event_id, wallet_address=wallet_address or "", transaction_id=transaction_id,
                       sponsored=sponsored))
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.warning("mint already recorded transaction_id=%s", transaction_id)
    finally:
        db.close()


async def _audit(decision_id: str, ip: str, ua: str, event_id: str | None, wallet_address: str | None,
                 transaction_id: str | None, status: str, reason: str):
    db = SessionLocal()
    try:
        db.add(MintAuditLog(decision_id=decision_id, ip=ip, user_agent=ua, event_id=event_id,
                            wallet_address=wallet_address, transaction_id=transaction_id,
                            status=status, reason_code=reason))
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("failed to write mint audit log decision_id=%s", decision_id)
    finally:
        db.close()
