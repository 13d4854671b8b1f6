"""Mint admission (window and limit) and mint records."""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select

from .models import Event, NftMint


class MintRejected(Exception):
    def __init__(self, reason_code: str, message: str):
        super().__init__(message)
        self.reason_code = reason_code
        self.message = message


def as_utc(ts: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC
    return ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts.astimezone(timezone.utc)


def mint_count(db, event_id: str) -> int:
    return db.execute(select(func.count(NftMint.id)).where(NftMint.event_id == event_id)).scalar_one()


def check_mint_allowed(db, event_id: str, now: Optional[datetime] = None) -> Event:
    event = db.get(Event, event_id)
    if event is None:
        raise MintRejected("EVENT_NOT_FOUND", "Event not found")

    now = now or datetime.now(timezone.utc)
    if now < as_utc(event.mint_start_date):
        raise MintRejected("MINT_NOT_STARTED", "Minting has not started for this event")
    if now > as_utc(event.mint_end_date):
        raise MintRejected("MINT_ENDED", "Minting has ended for this event")

    if mint_count(db, event_id) >= event.mint_limit:
        raise MintRejected("MINT_LIMIT_REACHED", "Mint limit reached for this event")

    return event


def mint_to_dict(m: NftMint) -> dict:
    return {
        "id": m.id,
        "event_id": m.event_id,
        "wallet_address": m.wallet_address,
        "transaction_id": m.transaction_id,
        "sponsored": m.sponsored,
        "minted_at": str(m.minted_at),
    }


def event_to_dict(e: Event, minted: Optional[int] = None) -> dict:
    out = {
        "event_id": e.id,
        "event_name": e.event_name,
        "event_details": e.event_details,
        "mint_start_date": as_utc(e.mint_start_date).isoformat(),
        "mint_end_date": as_utc(e.mint_end_date).isoformat(),
        "mint_limit": e.mint_limit,
        "gas_sponsored": e.gas_sponsored,
        "transferable": e.transferable,
        "nft_name": e.nft_name,
        "nft_description": e.nft_description,
        "nft_image_url": e.nft_image_url,
        "nft_animation_url": e.nft_animation_url,
        "created_at": str(e.created_at),
    }
    if minted is not None:
        out["minted"] = minted
    return out
