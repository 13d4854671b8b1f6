import pytest

from mintgate.errors import SubmissionFailure
from tests.helpers import claim_token, create_event, event_payload, fund_event, sponsored_mint

pytestmark = pytest.mark.asyncio


async def test_passphrase_yields_event_and_claim(client):
    event_id = await create_event(client, name="Passphrase Event", passphrase="aikotoba")

    r = await client.post("/api/verify-passphrase", json={"passphrase": "aikotoba"})
    data = r.json()
    assert r.status_code == 200
    assert data["valid"] is True
    assert data["event"]["event_id"] == event_id
    assert "passphrase" not in data["event"] and "passphrase_hash" not in data["event"]
    assert data["claim_token"]

    r = await client.post("/api/verify-passphrase", json={"passphrase": "wrong"})
    assert r.status_code == 404


async def test_sponsored_mint_end_to_end(client, chain):
    event_id = await create_event(client)
    await fund_event(client, event_id)
    token = await claim_token(client)

    r = await client.get(f"/api/events/{event_id}/sponsor")
    assert r.json() == {"event_id": event_id, "sponsor_address": "0xsponsor", "gas_budget": "5"}

    resp = await sponsored_mint(client, token)
    assert resp["status"] == "MINTED"
    assert resp["transaction_id"] == "tx-1"
    assert resp["gas_used"] == "4"
    assert resp["needs_reconciliation"] is False

    allocation = (await client.get(f"/admin/gas-station/allocations/{event_id}")).json()
    assert allocation["used"] == "4"
    assert allocation["remaining_allocation"] == "36"
    assert allocation["transactions"] == 1

    mints = (await client.get(f"/api/mints/{event_id}")).json()
    assert [(m["transaction_id"], m["sponsored"]) for m in mints] == [("tx-1", True)]
    assert (await client.get("/api/wallet-mints/0xparticipant")).json()[0]["event_id"] == event_id


async def test_unfunded_event_asks_participant_to_pay(client, chain):
    event_id = await create_event(client)
    token = await claim_token(client)

    resp = await sponsored_mint(client, token)
    assert resp["status"] == "FALLBACK_REQUIRED"
    assert resp["reason_code"] == "SPONSORSHIP_UNAVAILABLE"
    assert resp["eligibility"]["reason_code"] == "SPONSORSHIP_DISABLED"
    assert "you will pay" in resp["message"]
    assert chain.submitted == []

    # Participant pays from their own wallet, then reports the transaction
    r = await client.post("/api/mints", json={"claim_token": token, "wallet_address": "0xparticipant", "transaction_id": "0xuserpaid"})
    assert r.status_code == 201
    assert r.json()["sponsored"] is False

    r = await client.post("/api/mints", json={"claim_token": token, "wallet_address": "0xparticipant", "transaction_id": "0xuserpaid"})
    assert r.status_code == 409

    mints = (await client.get(f"/api/mints/{event_id}")).json()
    assert len(mints) == 1


async def test_unfunded_event_runs_supplied_user_paid_transaction(client, chain):
    event_id = await create_event(client)
    token = await claim_token(client)

    resp = await sponsored_mint(client, token, fallback_tx_bytes="AAED", fallback_signature="paid-sig")
    assert resp["status"] == "MINTED"
    assert resp["sponsored"] is False
    assert resp["transaction_id"] == "tx-1"

    [signed] = chain.submitted
    assert signed.signatures == ("paid-sig",)
    assert signed.transaction.tx_bytes == "AAED"
    assert signed.transaction.gas_owner == "0xparticipant"

    mints = (await client.get(f"/api/mints/{event_id}")).json()
    assert [(m["transaction_id"], m["sponsored"]) for m in mints] == [("tx-1", False)]
    state = (await client.get("/admin/gas-station")).json()
    assert state["total_used"] == "0"


async def test_user_paid_transaction_without_signature_is_not_submitted(client, chain):
    event_id = await create_event(client)
    token = await claim_token(client)

    resp = await sponsored_mint(client, token, fallback_tx_bytes="AAED")
    assert resp["status"] == "FAILED"
    assert resp["reason_code"] == "SIGNING_FAILED"
    assert chain.submitted == []
    assert (await client.get(f"/api/mints/{event_id}")).json() == []


async def test_failed_submission_tells_participant_to_retry(client, chain):
    event_id = await create_event(client)
    await fund_event(client, event_id)
    token = await claim_token(client)
    chain.submit_error = SubmissionFailure("submission failed: timeout")

    resp = await sponsored_mint(client, token)
    assert resp["status"] == "FAILED"
    assert resp["reason_code"] == "SUBMISSION_FAILED"
    assert resp["fallback_required"] is True
    assert "retry" in resp["message"]
    assert (await client.get(f"/api/mints/{event_id}")).json() == []


async def test_missing_wallet_fails_at_signing(client):
    event_id = await create_event(client)
    await fund_event(client, event_id)
    token = await claim_token(client)

    r = await client.post("/api/mint", json={"claim_token": token, "tx_bytes": "AAEC"})
    assert r.json()["reason_code"] == "SIGNING_FAILED"


async def test_invalid_claim_is_rejected(client):
    resp = await sponsored_mint(client, "not-a-jwt")
    assert resp["status"] == "REJECTED"
    assert resp["reason_code"] == "INVALID_CLAIM"


async def test_mint_window_and_limit_are_enforced(client):
    await create_event(client, name="Future", passphrase="later", starts_in=2, ends_in=4)
    resp = await sponsored_mint(client, await claim_token(client, "later"))
    assert resp["reason_code"] == "MINT_NOT_STARTED"

    await create_event(client, name="Past", passphrase="earlier", starts_in=-4, ends_in=-2)
    resp = await sponsored_mint(client, await claim_token(client, "earlier"))
    assert resp["reason_code"] == "MINT_ENDED"

    event_id = await create_event(client, name="Tiny", passphrase="tiny", mint_limit=1)
    await fund_event(client, event_id)
    token = await claim_token(client, "tiny")
    assert (await sponsored_mint(client, token))["status"] == "MINTED"
    resp = await sponsored_mint(client, token, wallet="0xsomeone-else")
    assert resp["status"] == "REJECTED"
    assert resp["reason_code"] == "MINT_LIMIT_REACHED"


async def test_mint_decisions_are_audited(client):
    event_id = await create_event(client)
    token = await claim_token(client)
    resp = await sponsored_mint(client, token)

    logs = (await client.get("/admin/audit", params={"event_id": event_id})).json()
    assert logs[0]["decision_id"] == resp["decision_id"]
    assert logs[0]["status"] == "FALLBACK_REQUIRED"


async def test_eligibility_endpoint(client):
    event_id = await create_event(client)
    await fund_event(client, event_id)

    ok = (await client.get(f"/api/events/{event_id}/eligibility", params={"estimated_gas": "4"})).json()
    too_big = (await client.get(f"/api/events/{event_id}/eligibility", params={"estimated_gas": "6"})).json()

    assert ok == {"eligible": True}
    assert too_big["eligible"] is False
    assert too_big["reason_code"] == "CAP_EXCEEDED"


async def test_event_validation(client):
    r = await client.post("/admin/events", json=event_payload(mint_limit=0))
    assert r.status_code == 400

    await create_event(client, passphrase="dup")
    r = await client.post("/admin/events", json=event_payload(passphrase="dup"))
    assert r.status_code == 409

    r = await client.get("/api/events/evt_missing")
    assert r.status_code == 404
