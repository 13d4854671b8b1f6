import os
import tempfile

os.environ.setdefault(
    "DATABASE_URL",
    "sqlite:///" + os.path.join(tempfile.gettempdir(), f"mintgate-test-{os.getpid()}.db"),
)
os.environ.setdefault("SPONSOR_ADDRESS", "0xsponsor")
os.environ.setdefault("CLAIM_SIGNING_SECRET", "test_secret")

import fakeredis
import httpx
import pytest
import pytest_asyncio

from mintgate import deps
from mintgate.db import Base, SessionLocal, engine
from mintgate.main import app
from mintgate.sponsorship import EventSponsorConfigSource, SponsoredTransactionCoordinator
from tests.helpers import FakeChain, FakeSponsorSigner


@pytest.fixture(autouse=True)
def clean_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    deps.ledger.ensure_station()
    yield


@pytest.fixture
def ledger():
    return deps.ledger


@pytest_asyncio.fixture(scope="function")
async def redis():
    r = fakeredis.FakeAsyncRedis(decode_responses=True)
    try:
        await r.flushdb()
        yield r
    finally:
        await r.aclose()


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def signer():
    return FakeSponsorSigner()


@pytest.fixture
def coordinator(ledger, chain, signer):
    configs = EventSponsorConfigSource(SessionLocal, ledger, "0xsponsor")
    return SponsoredTransactionCoordinator(ledger, chain, signer, configs, estimate_timeout=1.0)


@pytest_asyncio.fixture(scope="function")
async def client(redis, coordinator):
    app.dependency_overrides[deps.get_redis] = lambda: redis
    app.dependency_overrides[deps.get_coordinator] = lambda: coordinator
    transport = httpx.ASGITransport(app=app)
    try:
        async with httpx.AsyncClient(transport=transport, base_url="http://test", timeout=10.0) as c:
            yield c
    finally:
        app.dependency_overrides.clear()
