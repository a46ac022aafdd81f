"""
Soroban RPC client.

JSON-RPC over httpx. Idempotent calls are retried a bounded number of times
on transport errors, HTTP 429/5xx and transient server codes, then surface
as ``NetworkTransient``. ``sendTransaction`` is only retried when the
connection was never established; any later transport failure is ambiguous
and surfaces as ``SubmissionFailure``.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, Dict, Optional

import httpx

from ..core.execution.errors import (
    AccountNotFound,
    LedgerClientError,
    NetworkTransient,
    ProtocolViolation,
    SubmissionFailure,
)
from ..core.execution.models import (
    LedgerAccount,
    OutcomeStatus,
    SimulationResult,
    SubmissionReceipt,
    SubmissionStatus,
    TransactionOutcome,
)
from . import xdr
from .base import LedgerRpc


logger = logging.getLogger(__name__)

# JSON-RPC error codes worth another attempt
_TRANSIENT_RPC_CODES = {-32603}
_RETRYABLE_HTTP_STATUS = {429, 500, 502, 503, 504}


class _RetryableError(Exception):
    pass


class SorobanRpcClient(LedgerRpc):
    """
    Client for a Soroban RPC endpoint.

    Usage:
        rpc = SorobanRpcClient("https://soroban-testnet.stellar.org")
        account = await rpc.get_account("GABC...")
        await rpc.close()
    """

    name = "soroban-rpc"

    def __init__(
        self,
        rpc_url: str,
        timeout_s: float = 30.0,
        max_retries: int = 3,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.rpc_url = rpc_url
        self.timeout_s = timeout_s
        self.max_retries = max(1, max_retries)
        self._client = client
        self._ids = itertools.count(1)

    @classmethod
    def from_config(cls, config) -> "SorobanRpcClient":
        return cls(
            config.rpc_url,
            timeout_s=config.request_timeout_seconds,
            max_retries=config.rpc_max_retries,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_s)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _post(self, method: str, params: Optional[Dict[str, Any]]) -> Any:
        client = await self._get_client()
        payload: Dict[str, Any] = {"jsonrpc": "2.0", "id": next(self._ids), "method": method}
        if params is not None:
            payload["params"] = params

        response = await client.post(
            self.rpc_url,
            json=payload,
            headers={"Content-Type": "application/json"},
        )
        if response.status_code in _RETRYABLE_HTTP_STATUS:
            raise _RetryableError(f"HTTP {response.status_code}")
        if response.status_code >= 400:
            raise ProtocolViolation(f"{method}: HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError:
            raise ProtocolViolation(f"{method}: response is not JSON")
        if not isinstance(data, dict):
            raise ProtocolViolation(f"{method}: unexpected response shape")

        error = data.get("error")
        if error is not None:
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            if code in _TRANSIENT_RPC_CODES:
                raise _RetryableError(f"RPC error {code}: {message}")
            raise ProtocolViolation(f"{method}: RPC error {code}: {message}")

        if "result" not in data:
            raise ProtocolViolation(f"{method}: response has no result")
        return data["result"]

    async def _rpc_call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Make an idempotent RPC call, retrying transient failures."""
        last_error = ""
        for attempt in range(self.max_retries):
            try:
                return await self._post(method, params)
            except LedgerClientError:
                raise
            except (_RetryableError, httpx.TransportError) as e:
                last_error = str(e) or type(e).__name__
                logger.debug(f"{method} attempt {attempt + 1}/{self.max_retries} failed: {last_error}")
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(0.5 * (attempt + 1))

        raise NetworkTransient(f"{method} failed after {self.max_retries} attempts: {last_error}")

    # ------------------------------------------------------------------
    # LedgerRpc
    # ------------------------------------------------------------------

    async def health_check(self) -> Dict[str, Any]:
        try:
            result = await self._rpc_call("getHealth")
        except LedgerClientError as e:
            return {"status": "unhealthy", "error": str(e)}
        return {
            "status": result.get("status", "unknown"),
            "latest_ledger": result.get("latestLedger"),
        }

    async def get_account(self, address: str) -> LedgerAccount:
        result = await self._rpc_call(
            "getLedgerEntries",
            {"keys": [xdr.account_ledger_key(address)]},
        )
        entries = result.get("entries") or []
        if not entries:
            raise AccountNotFound(address)
        return LedgerAccount(address=address, sequence=xdr.account_sequence(entries[0]["xdr"]))

    async def simulate(self, envelope_xdr: str) -> SimulationResult:
        result = await self._rpc_call("simulateTransaction", {"transaction": envelope_xdr})

        error = result.get("error")
        if error:
            return SimulationResult(
                latest_ledger=int(result.get("latestLedger", 0)),
                error=str(error),
                failure=xdr.failure_from_events_xdr(result.get("events") or []),
            )

        results = result.get("results") or []
        first = results[0] if results else {}
        return_value = xdr.decode_scval(first["xdr"]) if first.get("xdr") else None
        try:
            min_resource_fee = int(result.get("minResourceFee", 0))
        except (TypeError, ValueError):
            raise ProtocolViolation(f"Bad minResourceFee: {result.get('minResourceFee')!r}")

        return SimulationResult(
            latest_ledger=int(result.get("latestLedger", 0)),
            min_resource_fee=min_resource_fee,
            transaction_data=result.get("transactionData"),
            auth=list(first.get("auth") or []),
            return_value=return_value,
        )

    async def send(self, envelope_xdr: str) -> SubmissionReceipt:
        params = {"transaction": envelope_xdr}
        result = None
        for attempt in range(self.max_retries):
            try:
                result = await self._post("sendTransaction", params)
                break
            except LedgerClientError:
                raise
            except (httpx.ConnectError, httpx.ConnectTimeout) as e:
                # Nothing was written; safe to try again
                if attempt == self.max_retries - 1:
                    raise NetworkTransient(f"sendTransaction: cannot connect: {e}")
                await asyncio.sleep(0.5 * (attempt + 1))
            except (_RetryableError, httpx.TransportError) as e:
                raise SubmissionFailure(f"outcome unknown after transport error: {str(e) or type(e).__name__}")

        try:
            status = SubmissionStatus(result["status"])
            tx_hash = result["hash"]
        except (KeyError, TypeError, ValueError):
            raise ProtocolViolation(f"sendTransaction: unexpected result {result!r}")

        receipt = SubmissionReceipt(
            tx_hash=tx_hash,
            status=status,
            latest_ledger=int(result.get("latestLedger", 0)),
        )
        if status == SubmissionStatus.ERROR:
            receipt.error_result_code, _ = xdr.decode_result(result.get("errorResultXdr"))
            receipt.failure = xdr.failure_from_events_xdr(result.get("diagnosticEventsXdr") or [])
        return receipt

    async def get_transaction(self, tx_hash: str) -> TransactionOutcome:
        result = await self._rpc_call("getTransaction", {"hash": tx_hash})
        try:
            status = OutcomeStatus(result["status"])
        except (KeyError, TypeError, ValueError):
            raise ProtocolViolation(f"getTransaction: unexpected result {result!r}")

        if status == OutcomeStatus.NOT_FOUND:
            return TransactionOutcome(tx_hash=tx_hash, status=status)

        return_value, failure = xdr.decode_meta(result.get("resultMetaXdr"))
        if failure is None:
            failure = xdr.failure_from_events_xdr(result.get("diagnosticEventsXdr") or [])
        result_code, fee_charged = xdr.decode_result(result.get("resultXdr"))
        created_at = result.get("createdAt")

        return TransactionOutcome(
            tx_hash=tx_hash,
            status=status,
            ledger=result.get("ledger"),
            created_at=int(created_at) if created_at is not None else None,
            fee_charged=fee_charged,
            return_value=return_value if status == OutcomeStatus.SUCCESS else None,
            result_code=result_code,
            failure=failure if status == OutcomeStatus.FAILED else None,
        )
