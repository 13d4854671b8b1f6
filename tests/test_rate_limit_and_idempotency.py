import asyncio

import pytest

from mintgate.idempotency import claim_key
from mintgate.rate_limit import token_bucket
from tests.helpers import claim_token, create_event, fund_event, sponsored_mint

pytestmark = pytest.mark.asyncio


async def test_rate_limit_kicks_in(client):
    # Invalid claims still spend tokens, so nothing gets minted
    hits = [await sponsored_mint(client, "definitely-not-a-jwt") for _ in range(12)]

    assert hits[0]["reason_code"] == "INVALID_CLAIM"
    assert any(x.get("reason_code") == "RATE_LIMITED" for x in hits)


async def test_token_bucket_refills(redis):
    for _ in range(2):
        assert await token_bucket(redis, "t", "ip", capacity=2, refill_per_sec=0.0)
    assert not await token_bucket(redis, "t", "ip", capacity=2, refill_per_sec=0.0)

    # Other keys and scopes have their own buckets
    assert await token_bucket(redis, "t", "other-ip", capacity=2, refill_per_sec=0.0)
    assert await token_bucket(redis, "u", "ip", capacity=2, refill_per_sec=0.0)

    bucket = await redis.hgetall("rl:t:ip")
    await redis.hset("rl:t:ip", mapping={"last": float(bucket["last"]) - 10})
    assert await token_bucket(redis, "t", "ip", capacity=2, refill_per_sec=1.0)


async def test_idempotency_returns_same_cached_response(client, chain):
    event_id = await create_event(client)
    await fund_event(client, event_id)
    token = await claim_token(client)

    headers = {"Idempotency-Key": "mint-demo-123"}
    j1 = await sponsored_mint(client, token, headers=headers)
    j2 = await sponsored_mint(client, token, headers=headers)

    assert j1 == j2, f"Expected exact cached response, got diff: {j1} vs {j2}"
    assert j1["status"] == "MINTED"
    assert len(chain.submitted) == 1

    allocation = (await client.get(f"/admin/gas-station/allocations/{event_id}")).json()
    assert allocation["transactions"] == 1


async def test_in_flight_idempotency_key_is_refused(client, redis):
    assert await claim_key(redis, "mint", "busy-key")
    assert 0 < await redis.ttl("idem:mint:busy-key:lock") <= 60
    assert not await claim_key(redis, "mint", "busy-key")

    r = await client.post("/api/mint", json={"claim_token": "x", "tx_bytes": "AAEC"}, headers={"Idempotency-Key": "busy-key"})
    assert r.status_code == 409
    assert r.json()["reason_code"] == "IN_PROGRESS"


async def test_allocation_with_idempotency_key_applies_once(client):
    event_id = await create_event(client)
    await client.post("/admin/gas-station/balance", json={"amount": "100"})
    body = {"event_id": event_id, "amount": "40", "max_gas_per_tx": "5"}
    headers = {"Idempotency-Key": "alloc-1"}

    r1 = await client.post("/admin/gas-station/allocations", json=body, headers=headers)
    r2 = await client.post("/admin/gas-station/allocations", json=body, headers=headers)

    assert r1.json() == r2.json()
    state = (await client.get("/admin/gas-station")).json()
    assert state["available_balance"] == "60"
    assert state["allocated_balance"] == "40"


async def test_concurrent_mints_conserve_gas(client, chain):
    chain.estimate = 3
    event_id = await create_event(client, mint_limit=100)
    await fund_event(client, event_id, balance=100, amount=30, max_gas_per_tx=5)
    token = await claim_token(client)

    results = await asyncio.gather(*[sponsored_mint(client, token, wallet=f"0xw{i}") for i in range(8)])
    minted = [r for r in results if r["status"] == "MINTED"]

    state = (await client.get("/admin/gas-station")).json()
    assert int(state["available_balance"]) + int(state["allocated_balance"]) + int(state["total_used"]) == 100
    assert int(state["total_used"]) == 3 * len([r for r in minted if not r["needs_reconciliation"]])
