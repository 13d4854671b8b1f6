"""
Sponsored mint coordination.

One MintAttempt moves through
IDLE -> ESTIMATING -> CHECKING_ELIGIBILITY -> PREPARING -> SIGNING -> EXECUTING -> SUCCEEDED,
or stops at NOT_ELIGIBLE / FAILED, where the caller falls back to a
user-paid transaction. The coordinator never retries on its own.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Protocol

from sqlalchemy import select

from .chain import ChainClient, SignedTransaction, SubmissionResult, UnsignedTransaction
from .errors import (
    EligibilityCheckFailure,
    EstimationFailure,
    GasStationError,
    PreparationFailure,
    SigningFailure,
    SponsorshipFailure,
    SubmissionFailure,
)
from .gas import Eligibility
from .ledger import GasStationLedger
from .models import Event
from .wallet import Connected, SponsorSigner, WalletClient, WalletState

logger = logging.getLogger(__name__)

SPONSORSHIP_UNAVAILABLE_MSG = "Gas sponsorship is unavailable for this mint; you will pay the gas fee."
RETRY_MSG = "The transaction failed; please retry or pay the gas fee yourself."
MINTED_MSG = "NFT minted with sponsored gas."


class MintState(str, Enum):
    IDLE = "IDLE"
    ESTIMATING = "ESTIMATING"
    CHECKING_ELIGIBILITY = "CHECKING_ELIGIBILITY"
    NOT_ELIGIBLE = "NOT_ELIGIBLE"
    PREPARING = "PREPARING"
    SIGNING = "SIGNING"
    EXECUTING = "EXECUTING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


TERMINAL_STATES = {MintState.NOT_ELIGIBLE, MintState.SUCCEEDED, MintState.FAILED}


@dataclass(frozen=True)
class SponsorConfig:
    event_id: str
    sponsor_address: str
    gas_budget: int


class SponsorConfigSource(Protocol):
    async def get(self, event_id: str) -> Optional[SponsorConfig]: ...


class EventSponsorConfigSource:
    """Sponsor config for events flagged gas_sponsored that hold an active allocation."""

    def __init__(self, session_factory, ledger: GasStationLedger, sponsor_address: Optional[str]):
        self._session_factory = session_factory
        self._ledger = ledger
        self.sponsor_address = sponsor_address

    async def get(self, event_id: str) -> Optional[SponsorConfig]:
        if not self.sponsor_address:
            return None

        db = self._session_factory()
        try:
            sponsored = db.execute(select(Event.gas_sponsored).where(Event.id == event_id)).scalar_one_or_none()
        finally:
            db.close()
        if not sponsored:
            return None

        allocation = self._ledger.get_allocation(event_id)
        if allocation is None or not allocation.is_active:
            return None
        return SponsorConfig(event_id=event_id, sponsor_address=self.sponsor_address, gas_budget=allocation.max_gas_per_tx)


@dataclass
class MintAttempt:
    event_id: str
    transaction: UnsignedTransaction
    wallet: WalletState
    attempt_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: MintState = MintState.IDLE
    history: list = field(default_factory=lambda: [MintState.IDLE])
    estimated_gas: Optional[int] = None
    eligibility: Optional[Eligibility] = None
    transaction_id: Optional[str] = None
    gas_recorded: Optional[int] = None
    usage_recorded: bool = False
    needs_reconciliation: bool = False
    failure: Optional[SponsorshipFailure] = None

    def advance(self, state: MintState) -> None:
        self.state = state
        self.history.append(state)

    @property
    def fallback_required(self) -> bool:
        return self.state in (MintState.NOT_ELIGIBLE, MintState.FAILED)

    @property
    def message(self) -> str:
        if self.state is MintState.SUCCEEDED:
            return MINTED_MSG
        if self.state is MintState.NOT_ELIGIBLE:
            return SPONSORSHIP_UNAVAILABLE_MSG
        if self.state is MintState.FAILED:
            return RETRY_MSG
        return ""


class SponsoredTransactionCoordinator:
    def __init__(
        self,
        ledger: GasStationLedger,
        chain: ChainClient,
        sponsor_signer: SponsorSigner,
        config_source: SponsorConfigSource,
        estimate_timeout: float = 15.0,
    ):
        self.ledger = ledger
        self.chain = chain
        self.sponsor_signer = sponsor_signer
        self.config_source = config_source
        self.estimate_timeout = estimate_timeout

    async def run(self, attempt: MintAttempt, wallet: WalletClient) -> MintAttempt:
        """
        Drive one attempt to SUCCEEDED or NOT_ELIGIBLE, or raise a
        SponsorshipFailure after moving it to FAILED.

        Running an attempt that already left IDLE returns it untouched, so a
        retried request can never submit or record usage twice.
        """
        if attempt.state is not MintState.IDLE:
            logger.warning("mint attempt %s re-entered in state %s", attempt.attempt_id, attempt.state.value)
            return attempt

        tx = attempt.transaction

        attempt.advance(MintState.ESTIMATING)
        try:
            estimate = await asyncio.wait_for(self.chain.estimate_gas(tx), self.estimate_timeout)
        except asyncio.TimeoutError as e:
            raise self._fail(attempt, EstimationFailure("estimation failed: timed out")) from e
        except SponsorshipFailure as e:
            raise self._fail(attempt, e)
        except Exception as e:
            raise self._fail(attempt, EstimationFailure(f"estimation failed: {e}")) from e
        attempt.estimated_gas = estimate

        attempt.advance(MintState.CHECKING_ELIGIBILITY)
        try:
            attempt.eligibility = self.ledger.check_eligibility(attempt.event_id, estimate)
        except Exception as e:
            raise self._fail(attempt, EligibilityCheckFailure(f"eligibility check failed: {e}")) from e
        if not attempt.eligibility.eligible:
            attempt.advance(MintState.NOT_ELIGIBLE)
            logger.info(
                "sponsorship not eligible attempt=%s event_id=%s reason=%s",
                attempt.attempt_id, attempt.event_id, attempt.eligibility.reason,
            )
            return attempt

        attempt.advance(MintState.PREPARING)
        try:
            config = await self.config_source.get(attempt.event_id)
        except Exception as e:
            raise self._fail(attempt, PreparationFailure(f"sponsor configuration lookup failed: {e}")) from e
        if config is None:
            raise self._fail(attempt, PreparationFailure("sponsor configuration unavailable for event"))
        prepared = tx.sponsored_by(config.sponsor_address, config.gas_budget)

        attempt.advance(MintState.SIGNING)
        if not isinstance(attempt.wallet, Connected):
            raise self._fail(attempt, SigningFailure("wallet is not connected"))
        try:
            sponsor_signature = await self.sponsor_signer.sign(prepared)
            user_signature = await wallet.sign_transaction(prepared)
        except SponsorshipFailure as e:
            raise self._fail(attempt, e)
        except Exception as e:
            raise self._fail(attempt, SigningFailure(f"signing failed: {e}")) from e
        signed = SignedTransaction(transaction=prepared, signatures=(user_signature, sponsor_signature))

        # Once submitted the attempt runs to completion even if the caller goes away
        attempt.advance(MintState.EXECUTING)
        return await asyncio.shield(self._execute(attempt, signed))

    async def _execute(self, attempt: MintAttempt, signed: SignedTransaction) -> MintAttempt:
        try:
            result: SubmissionResult = await self.chain.submit(signed)
        except SubmissionFailure as e:
            if e.transaction_id:
                # Aborted on-chain after charging the sponsor
                attempt.transaction_id = e.transaction_id
                gas = e.gas_used if e.gas_used is not None else attempt.estimated_gas or 0
                self._flag(attempt, gas, "EXECUTION_FAILED", e.message)
            raise self._fail(attempt, e)
        except Exception as e:
            raise self._fail(attempt, SubmissionFailure(f"submission failed: {e}")) from e

        attempt.transaction_id = result.transaction_id
        gas = result.gas_used if result.gas_used is not None else attempt.estimated_gas
        self._record_usage(attempt, gas)
        attempt.advance(MintState.SUCCEEDED)
        logger.info(
            "sponsored mint succeeded attempt=%s event_id=%s transaction_id=%s gas=%s",
            attempt.attempt_id, attempt.event_id, attempt.transaction_id, gas,
        )
        return attempt

    def _record_usage(self, attempt: MintAttempt, gas: int) -> None:
        if attempt.usage_recorded:
            return
        try:
            self.ledger.record_usage(attempt.event_id, gas, transaction_id=attempt.transaction_id)
            attempt.gas_recorded = gas
        except GasStationError as e:
            self._flag(attempt, gas, e.reason_code, str(e))
        except Exception as e:
            # The transaction is already on-chain, so the attempt still completes
            logger.exception(
                "recording usage failed attempt=%s transaction_id=%s", attempt.attempt_id, attempt.transaction_id,
            )
            self._flag(attempt, gas, "USAGE_NOT_RECORDED", str(e))
        attempt.usage_recorded = True

    def _flag(self, attempt: MintAttempt, gas: int, reason_code: str, detail: str) -> None:
        attempt.needs_reconciliation = True
        try:
            self.ledger.flag_for_reconciliation(attempt.event_id, attempt.transaction_id, gas, reason_code, detail)
        except Exception:
            # Last resort: the log line carries what the reconciliation row would have
            logger.exception(
                "could not flag for reconciliation event_id=%s transaction_id=%s gas=%s reason=%s",
                attempt.event_id, attempt.transaction_id, gas, reason_code,
            )

    def _fail(self, attempt: MintAttempt, failure: SponsorshipFailure) -> SponsorshipFailure:
        attempt.failure = failure
        attempt.advance(MintState.FAILED)
        logger.warning(
            "sponsored mint failed attempt=%s event_id=%s reason=%s: %s",
            attempt.attempt_id, attempt.event_id, failure.reason_code, failure.message,
        )
        return failure
