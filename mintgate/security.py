import hashlib
import hmac
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Header, HTTPException, status
from jose import jwt
from jose.exceptions import JWTError

from .config import ADMIN_API_KEY


def passphrase_digest(passphrase: str) -> str:
    return hashlib.sha256(passphrase.strip().encode("utf-8")).hexdigest()


def mint_claim_token(event_id: str, secret: str, ttl_minutes: int = 30) -> str:
    """Short-lived proof that the holder presented the event's passphrase."""
    exp = int((datetime.now(timezone.utc) + timedelta(minutes=ttl_minutes)).timestamp())
    payload = {"event_id": event_id, "nonce": str(uuid.uuid4()), "exp": exp}
    return jwt.encode(payload, secret, algorithm="HS256")


def verify_claim_token(token: str, secret: str) -> dict:
    try:
        payload = jwt.decode(token, secret, algorithms=["HS256"])
    except JWTError:
        raise ValueError("INVALID_CLAIM")

    now = datetime.now(timezone.utc).timestamp()
    exp = payload.get("exp")
    if exp is None or now > float(exp):
        raise ValueError("CLAIM_EXPIRED")

    for k in ["event_id", "nonce"]:
        if k not in payload:
            raise ValueError("INVALID_CLAIM")

    return payload


async def require_admin_key(x_api_key: Optional[str] = Header(default=None, alias="X-API-Key")) -> None:
    # Open when no ADMIN_API_KEY is configured (local development)
    if ADMIN_API_KEY is None:
        return
    if not x_api_key or not hmac.compare_digest(x_api_key.strip(), ADMIN_API_KEY):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or missing API key")
