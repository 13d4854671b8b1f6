import json
from typing import Optional


def _key(scope: str, idem_key: str) -> str:
    return f"idem:{scope}:{idem_key}"


async def get_cached_response(redis, scope: str, idem_key: str) -> Optional[dict]:
    raw = await redis.get(_key(scope, idem_key))
    return json.loads(raw) if raw else None


async def set_cached_response(redis, scope: str, idem_key: str, response: dict, ttl_seconds: int = 300) -> None:
    await redis.setex(_key(scope, idem_key), ttl_seconds, json.dumps(response, default=str))


async def claim_key(redis, scope: str, idem_key: str, ttl_seconds: int = 60) -> bool:
    """Mark a key as in flight; False when another request already holds it."""
    return bool(await redis.set(f"{_key(scope, idem_key)}:lock", "1", nx=True, ex=ttl_seconds))


async def release_key(redis, scope: str, idem_key: str) -> None:
    await redis.delete(f"{_key(scope, idem_key)}:lock")
