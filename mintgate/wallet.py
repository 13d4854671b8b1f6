"""Participant wallet state and the two signers a sponsored transaction needs."""
import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Union

import httpx

from .chain import ChainClient, SignedTransaction, SubmissionResult, UnsignedTransaction
from .errors import SigningFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Disconnected:
    pass


@dataclass(frozen=True)
class Connecting:
    pass


@dataclass(frozen=True)
class Connected:
    address: str


WalletState = Union[Disconnected, Connecting, Connected]


def wallet_state_for(address: Optional[str]) -> WalletState:
    return Connected(address) if address else Disconnected()


class WalletClient(Protocol):
    async def sign_transaction(self, tx: UnsignedTransaction) -> str: ...

    async def execute_transaction(self, tx: UnsignedTransaction) -> SubmissionResult: ...


class SponsorSigner(Protocol):
    async def sign(self, tx: UnsignedTransaction) -> str: ...


class PresignedWallet:
    """
    Wallet whose user signatures were produced client-side, in the participant's
    own wallet, and sent along with the mint request.

    `signature` signs the sponsored transaction. `paid_signature` optionally
    signs a user-paid version of it, which is submitted when sponsorship is
    unavailable or fails.
    """

    def __init__(
        self,
        state: WalletState,
        signature: Optional[str],
        chain: Optional[ChainClient] = None,
        paid_signature: Optional[str] = None,
    ):
        self.state = state
        self._signature = signature
        self._chain = chain
        self._paid_signature = paid_signature

    async def sign_transaction(self, tx: UnsignedTransaction) -> str:
        if not isinstance(self.state, Connected):
            raise SigningFailure("wallet is not connected")
        if not self._signature:
            raise SigningFailure("user signature missing")
        return self._signature

    async def execute_transaction(self, tx: UnsignedTransaction) -> SubmissionResult:
        if not isinstance(self.state, Connected):
            raise SigningFailure("wallet is not connected")
        if self._chain is None or not self._paid_signature:
            raise SigningFailure("user-paid signature missing")
        # Gas is paid by the sender, so the participant's signature is the only one
        return await self._chain.submit(SignedTransaction(transaction=tx, signatures=(self._paid_signature,)))


class RemoteSponsorSigner:
    """Asks the organizer's signing service for the sponsor (gas owner) signature."""

    def __init__(self, url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def sign(self, tx: UnsignedTransaction) -> str:
        payload = {
            "tx_bytes": tx.tx_bytes,
            "sender": tx.sender,
            "gas_owner": tx.gas_owner,
            "gas_budget": str(tx.gas_budget) if tx.gas_budget is not None else None,
        }
        try:
            r = await self._client.post(self.url, json=payload)
            r.raise_for_status()
            signature = r.json().get("signature")
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("sponsor signer unavailable: %s", e)
            raise SigningFailure(f"sponsor signing failed: {e}") from e
        if not signature:
            raise SigningFailure("sponsor signer returned no signature")
        return signature
