"""Chain collaborator: dry-run gas estimation and transaction submission over Sui JSON-RPC."""
import itertools
import logging
from dataclasses import dataclass, replace
from typing import Optional, Protocol

import httpx

from .errors import EstimationFailure, SubmissionFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UnsignedTransaction:
    # base64 BCS transaction bytes built by the participant's client
    tx_bytes: str
    sender: Optional[str] = None
    gas_owner: Optional[str] = None
    gas_budget: Optional[int] = None

    def sponsored_by(self, gas_owner: str, gas_budget: int) -> "UnsignedTransaction":
        return replace(self, gas_owner=gas_owner, gas_budget=gas_budget)


@dataclass(frozen=True)
class SignedTransaction:
    transaction: UnsignedTransaction
    signatures: tuple[str, ...]


@dataclass(frozen=True)
class SubmissionResult:
    transaction_id: str
    gas_used: Optional[int] = None


class ChainClient(Protocol):
    async def estimate_gas(self, tx: UnsignedTransaction) -> int: ...

    async def submit(self, signed: SignedTransaction) -> SubmissionResult: ...


def net_gas_used(effects: dict) -> int:
    """computation + storage - rebate, floored at zero."""
    gas = effects["gasUsed"]
    total = int(gas["computationCost"]) + int(gas["storageCost"]) - int(gas["storageRebate"])
    return max(total, 0)


class SuiRpcChainClient:
    def __init__(self, rpc_url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.rpc_url = rpc_url
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _call(self, method: str, params: list) -> dict:
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        r = await self._client.post(self.rpc_url, json=body)
        r.raise_for_status()
        data = r.json()
        if data.get("error"):
            raise RuntimeError(f"{method}: {data['error'].get('message', data['error'])}")
        return data["result"]

    async def estimate_gas(self, tx: UnsignedTransaction) -> int:
        try:
            result = await self._call("sui_dryRunTransactionBlock", [tx.tx_bytes])
            effects = result["effects"]
            status = effects.get("status", {})
            if status.get("status") != "success":
                raise RuntimeError(f"dry run failed: {status.get('error', 'unknown')}")
            return net_gas_used(effects)
        except (httpx.HTTPError, RuntimeError, KeyError, TypeError, ValueError) as e:
            logger.warning("gas estimation failed: %s", e)
            raise EstimationFailure(f"estimation failed: {e}") from e

    async def submit(self, signed: SignedTransaction) -> SubmissionResult:
        params = [
            signed.transaction.tx_bytes,
            list(signed.signatures),
            {"showEffects": True},
            "WaitForLocalExecution",
        ]
        try:
            result = await self._call("sui_executeTransactionBlock", params)
            digest = result["digest"]
            effects = result.get("effects")
        except (httpx.HTTPError, RuntimeError, KeyError, TypeError, ValueError) as e:
            logger.warning("transaction submission failed: %s", e)
            raise SubmissionFailure(f"submission failed: {e}") from e

        if effects is None:
            return SubmissionResult(transaction_id=digest)

        try:
            gas_used = net_gas_used(effects)
        except (KeyError, TypeError, ValueError):
            gas_used = None

        status = effects.get("status", {})
        if status.get("status") != "success":
            # Executed but aborted: the gas owner was still charged
            logger.warning("transaction %s executed with failure: %s", digest, status.get("error"))
            raise SubmissionFailure(
                f"transaction {digest} failed: {status.get('error', 'unknown')}",
                transaction_id=digest,
                gas_used=gas_used,
            )
        return SubmissionResult(transaction_id=digest, gas_used=gas_used)
