"""Process-wide collaborators, exposed as FastAPI dependencies so tests can override them."""
from redis.asyncio import Redis

from .chain import SuiRpcChainClient
from .config import CHAIN_TIMEOUT_SECONDS, REDIS_URL, SPONSOR_ADDRESS, SPONSOR_SIGNER_URL, SUI_RPC_URL
from .db import SessionLocal
from .ledger import GasStationLedger
from .sponsorship import EventSponsorConfigSource, SponsoredTransactionCoordinator
from .wallet import RemoteSponsorSigner

redis = Redis.from_url(REDIS_URL, decode_responses=True)

ledger = GasStationLedger(SessionLocal)
chain = SuiRpcChainClient(SUI_RPC_URL, timeout=CHAIN_TIMEOUT_SECONDS)
sponsor_signer = RemoteSponsorSigner(SPONSOR_SIGNER_URL, timeout=CHAIN_TIMEOUT_SECONDS)
sponsor_configs = EventSponsorConfigSource(SessionLocal, ledger, SPONSOR_ADDRESS)
coordinator = SponsoredTransactionCoordinator(
    ledger, chain, sponsor_signer, sponsor_configs, estimate_timeout=CHAIN_TIMEOUT_SECONDS
)


def get_redis() -> Redis:
    return redis


def get_ledger() -> GasStationLedger:
    return ledger


def get_sponsor_configs() -> EventSponsorConfigSource:
    return sponsor_configs


def get_coordinator() -> SponsoredTransactionCoordinator:
    return coordinator


async def close_clients() -> None:
    await chain.aclose()
    await sponsor_signer.aclose()
    await redis.aclose()
