import time


async def token_bucket(redis, scope: str, key: str, capacity: int, refill_per_sec: float, ttl_seconds: int = 3600) -> bool:
    """Take one token from the (scope, key) bucket; False when it is empty."""
    now = time.time()
    bucket_key = f"rl:{scope}:{key}"

    # Read-modify-write; a Lua script would make it atomic across API workers
    data = await redis.hgetall(bucket_key)
    tokens = float(data.get("tokens", capacity))
    last = float(data.get("last", now))

    tokens = min(capacity, tokens + max(0.0, now - last) * refill_per_sec)
    allowed = tokens >= 1.0
    if allowed:
        tokens -= 1.0

    await redis.hset(bucket_key, mapping={"tokens": tokens, "last": now})
    await redis.expire(bucket_key, ttl_seconds)
    return allowed
