import asyncio
from datetime import datetime, timedelta, timezone

import httpx

from mintgate.chain import SignedTransaction, SubmissionResult, UnsignedTransaction


class FakeChain:
    def __init__(self, estimate=4, gas_used=None, submit_error=None, estimate_error=None, estimate_delay=0.0,
                 submit_delay=0.0):
        self.estimate = estimate
        self.gas_used = gas_used
        self.submit_error = submit_error
        self.estimate_error = estimate_error
        self.estimate_delay = estimate_delay
        self.submit_delay = submit_delay
        self.estimated: list[UnsignedTransaction] = []
        self.submitted: list[SignedTransaction] = []

    async def estimate_gas(self, tx):
        self.estimated.append(tx)
        if self.estimate_delay:
            await asyncio.sleep(self.estimate_delay)
        if self.estimate_error:
            raise self.estimate_error
        return self.estimate

    async def submit(self, signed):
        if self.submit_delay:
            await asyncio.sleep(self.submit_delay)
        self.submitted.append(signed)
        if self.submit_error:
            raise self.submit_error
        return SubmissionResult(transaction_id=f"tx-{len(self.submitted)}", gas_used=self.gas_used)


class FakeSponsorSigner:
    def __init__(self, error=None):
        self.error = error
        self.signed: list[UnsignedTransaction] = []

    async def sign(self, tx):
        self.signed.append(tx)
        if self.error:
            raise self.error
        return "sponsor-sig"


def event_payload(name="Test Event", passphrase="open-sesame", mint_limit=10, starts_in=-1, ends_in=24, **overrides):
    now = datetime.now(timezone.utc)
    body = {
        "event_name": name,
        "event_details": "Community meetup",
        "mint_start_date": (now + timedelta(hours=starts_in)).isoformat(),
        "mint_end_date": (now + timedelta(hours=ends_in)).isoformat(),
        "mint_limit": mint_limit,
        "gas_sponsored": True,
        "passphrase": passphrase,
        "nft_name": f"{name} Badge",
        "nft_description": "Proof of attendance",
    }
    body.update(overrides)
    return body


async def create_event(client: httpx.AsyncClient, **kwargs) -> str:
    r = await client.post("/admin/events", json=event_payload(**kwargs))
    r.raise_for_status()
    return r.json()["event_id"]


async def claim_token(client: httpx.AsyncClient, passphrase="open-sesame") -> str:
    r = await client.post("/api/verify-passphrase", json={"passphrase": passphrase})
    r.raise_for_status()
    return r.json()["claim_token"]


async def fund_event(client: httpx.AsyncClient, event_id: str, balance=100, amount=40, max_gas_per_tx=5) -> dict:
    r = await client.post("/admin/gas-station/balance", json={"amount": str(balance)})
    r.raise_for_status()
    r = await client.post("/admin/gas-station/allocations", json={
        "event_id": event_id, "amount": str(amount), "max_gas_per_tx": str(max_gas_per_tx),
    })
    r.raise_for_status()
    return r.json()


async def sponsored_mint(client: httpx.AsyncClient, token: str, wallet="0xparticipant", headers=None, **extra) -> dict:
    r = await client.post("/api/mint", json={
        "claim_token": token,
        "tx_bytes": "AAEC",
        "wallet_address": wallet,
        "user_signature": "user-sig",
        **extra,
    }, headers=headers or {})
    return r.json()
