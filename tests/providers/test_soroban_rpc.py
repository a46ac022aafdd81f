"""
Tests for the Soroban JSON-RPC client, run against httpx.MockTransport.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import httpx
import pytest
from stellar_sdk import Keypair, scval

from dob_client.core.execution.errors import (
    AccountNotFound,
    ContractFailure,
    InvalidAddress,
    NetworkTransient,
    ProtocolViolation,
    SubmissionFailure,
)
from dob_client.core.execution.models import OutcomeStatus, SubmissionStatus
from dob_client.providers import soroban
from dob_client.providers.soroban import SorobanRpcClient


RPC_URL = "http://rpc.test"
TX_HASH = "cd" * 32


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    sleep = AsyncMock()
    monkeypatch.setattr(asyncio, "sleep", sleep)
    return sleep


def make_client(handler, max_retries=3):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SorobanRpcClient(RPC_URL, max_retries=max_retries, client=http)


def rpc_result(request, result):
    body = json.loads(request.content)
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})


class Recorder:
    """Handler that replays scripted responses and records request bodies."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.bodies = []

    def __call__(self, request):
        self.bodies.append(json.loads(request.content))
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(request)
        if isinstance(response, httpx.Response):
            return response
        return rpc_result(request, response)


class TestTransport:
    @pytest.mark.asyncio
    async def test_request_is_json_rpc(self):
        handler = Recorder({"status": "healthy", "latestLedger": 77})
        rpc = make_client(handler)

        health = await rpc.health_check()

        assert health == {"status": "healthy", "latest_ledger": 77}
        body = handler.bodies[0]
        assert body["jsonrpc"] == "2.0"
        assert body["method"] == "getHealth"
        assert "params" not in body

    @pytest.mark.asyncio
    async def test_retries_server_errors_then_succeeds(self, no_backoff):
        handler = Recorder(httpx.Response(503), httpx.Response(502), {"status": "healthy"})
        rpc = make_client(handler)

        health = await rpc.health_check()

        assert health["status"] == "healthy"
        assert len(handler.bodies) == 3
        assert no_backoff.await_count == 2

    @pytest.mark.asyncio
    async def test_exhausted_retries_are_transient(self):
        handler = Recorder(httpx.ConnectError("refused"))
        rpc = make_client(handler, max_retries=2)

        with pytest.raises(NetworkTransient) as exc_info:
            await rpc.get_transaction(TX_HASH)

        assert exc_info.value.retryable
        assert len(handler.bodies) == 2

    @pytest.mark.asyncio
    async def test_transient_rpc_code_is_retried(self):
        error = httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32603, "message": "busy"}})
        handler = Recorder(error, {"status": "NOT_FOUND"})
        rpc = make_client(handler)

        outcome = await rpc.get_transaction(TX_HASH)

        assert outcome.status == OutcomeStatus.NOT_FOUND
        assert len(handler.bodies) == 2

    @pytest.mark.asyncio
    async def test_rpc_error_is_protocol_violation_without_retry(self):
        error = httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32602, "message": "bad hash"}})
        handler = Recorder(error)
        rpc = make_client(handler)

        with pytest.raises(ProtocolViolation, match="bad hash"):
            await rpc.get_transaction("nope")
        assert len(handler.bodies) == 1

    @pytest.mark.asyncio
    async def test_client_error_status_is_protocol_violation(self):
        rpc = make_client(Recorder(httpx.Response(404)))

        with pytest.raises(ProtocolViolation):
            await rpc.get_transaction(TX_HASH)

    @pytest.mark.asyncio
    async def test_missing_result_is_protocol_violation(self):
        rpc = make_client(Recorder(httpx.Response(200, json={"jsonrpc": "2.0", "id": 1})))

        with pytest.raises(ProtocolViolation):
            await rpc.get_transaction(TX_HASH)

    @pytest.mark.asyncio
    async def test_unhealthy_when_unreachable(self):
        rpc = make_client(Recorder(httpx.ConnectTimeout("slow")), max_retries=1)

        health = await rpc.health_check()

        assert health["status"] == "unhealthy"


class TestAccounts:
    @pytest.mark.asyncio
    async def test_reads_sequence(self, monkeypatch):
        address = Keypair.random().public_key
        monkeypatch.setattr(soroban.xdr, "account_sequence", lambda entry: 42)
        handler = Recorder({"entries": [{"xdr": "entry"}], "latestLedger": 9})
        rpc = make_client(handler)

        account = await rpc.get_account(address)

        assert account.address == address
        assert account.sequence == 42
        assert handler.bodies[0]["method"] == "getLedgerEntries"
        assert len(handler.bodies[0]["params"]["keys"]) == 1

    @pytest.mark.asyncio
    async def test_unfunded_account(self):
        rpc = make_client(Recorder({"entries": [], "latestLedger": 9}))

        with pytest.raises(AccountNotFound):
            await rpc.get_account(Keypair.random().public_key)

    @pytest.mark.asyncio
    async def test_malformed_address_is_rejected_before_any_request(self):
        handler = Recorder({"entries": [], "latestLedger": 9})
        rpc = make_client(handler)

        with pytest.raises(InvalidAddress) as exc_info:
            await rpc.get_account("not-an-address")

        assert exc_info.value.address == "not-an-address"
        assert handler.bodies == []


class TestSimulate:
    @pytest.mark.asyncio
    async def test_success(self):
        value_xdr = scval.to_int128(49_005_000).to_xdr()
        handler = Recorder({
            "latestLedger": 12,
            "minResourceFee": "5432",
            "transactionData": "sorobandata",
            "results": [{"xdr": value_xdr, "auth": ["authentry"]}],
        })
        rpc = make_client(handler)

        result = await rpc.simulate("envelope")

        assert result.is_success
        assert result.min_resource_fee == 5432
        assert result.transaction_data == "sorobandata"
        assert result.auth == ["authentry"]
        assert result.return_value == 49_005_000
        assert handler.bodies[0]["params"] == {"transaction": "envelope"}

    @pytest.mark.asyncio
    async def test_error_decodes_events(self, monkeypatch):
        failure = ContractFailure("contract", 13, contract_id="CUSDC")
        monkeypatch.setattr(soroban.xdr, "failure_from_events_xdr", lambda events: failure)
        rpc = make_client(Recorder({
            "latestLedger": 12,
            "error": "HostError: Error(Contract, #13)",
            "events": ["event"],
        }))

        result = await rpc.simulate("envelope")

        assert not result.is_success
        assert result.error.startswith("HostError")
        assert result.failure is failure


class TestSend:
    @pytest.mark.asyncio
    async def test_pending(self):
        rpc = make_client(Recorder({"status": "PENDING", "hash": TX_HASH, "latestLedger": 3}))

        receipt = await rpc.send("signed")

        assert receipt.status == SubmissionStatus.PENDING
        assert receipt.tx_hash == TX_HASH
        assert receipt.accepted

    @pytest.mark.asyncio
    async def test_error_status_carries_result_code(self, monkeypatch):
        monkeypatch.setattr(soroban.xdr, "decode_result", lambda raw: ("txBAD_SEQ", 100))
        rpc = make_client(Recorder({
            "status": "ERROR",
            "hash": TX_HASH,
            "errorResultXdr": "result",
        }))

        receipt = await rpc.send("signed")

        assert not receipt.accepted
        assert receipt.error_result_code == "txBAD_SEQ"

    @pytest.mark.asyncio
    async def test_ambiguous_transport_failure_is_not_retried(self):
        handler = Recorder(httpx.ReadTimeout("no response"))
        rpc = make_client(handler)

        with pytest.raises(SubmissionFailure):
            await rpc.send("signed")
        assert len(handler.bodies) == 1

    @pytest.mark.asyncio
    async def test_server_error_is_not_retried(self):
        handler = Recorder(httpx.Response(503))
        rpc = make_client(handler)

        with pytest.raises(SubmissionFailure):
            await rpc.send("signed")
        assert len(handler.bodies) == 1

    @pytest.mark.asyncio
    async def test_connect_failure_is_retried(self):
        handler = Recorder(httpx.ConnectError("refused"), {"status": "DUPLICATE", "hash": TX_HASH})
        rpc = make_client(handler)

        receipt = await rpc.send("signed")

        assert receipt.status == SubmissionStatus.DUPLICATE
        assert len(handler.bodies) == 2

    @pytest.mark.asyncio
    async def test_unknown_status_is_protocol_violation(self):
        rpc = make_client(Recorder({"status": "WEIRD", "hash": TX_HASH}))

        with pytest.raises(ProtocolViolation):
            await rpc.send("signed")


class TestGetTransaction:
    @pytest.mark.asyncio
    async def test_not_found(self):
        rpc = make_client(Recorder({"status": "NOT_FOUND", "latestLedger": 5}))

        outcome = await rpc.get_transaction(TX_HASH)

        assert outcome.status == OutcomeStatus.NOT_FOUND
        assert not outcome.is_final

    @pytest.mark.asyncio
    async def test_success(self, monkeypatch):
        monkeypatch.setattr(soroban.xdr, "decode_meta", lambda raw: (49_005_000, None))
        monkeypatch.setattr(soroban.xdr, "decode_result", lambda raw: ("txSUCCESS", 5_100))
        rpc = make_client(Recorder({
            "status": "SUCCESS",
            "ledger": 88,
            "createdAt": "1700000000",
            "resultXdr": "result",
            "resultMetaXdr": "meta",
        }))

        outcome = await rpc.get_transaction(TX_HASH)

        assert outcome.status == OutcomeStatus.SUCCESS
        assert outcome.return_value == 49_005_000
        assert outcome.ledger == 88
        assert outcome.created_at == 1_700_000_000
        assert outcome.fee_charged == 5_100
        assert outcome.failure is None

    @pytest.mark.asyncio
    async def test_failed_falls_back_to_diagnostic_events(self, monkeypatch):
        failure = ContractFailure("contract", 1, contract_id="CPOOL")
        monkeypatch.setattr(soroban.xdr, "decode_meta", lambda raw: (None, None))
        monkeypatch.setattr(soroban.xdr, "decode_result", lambda raw: ("INVOKE_HOST_FUNCTION_TRAPPED", 300))
        monkeypatch.setattr(soroban.xdr, "failure_from_events_xdr", lambda events: failure)
        rpc = make_client(Recorder({
            "status": "FAILED",
            "ledger": 88,
            "resultXdr": "result",
            "resultMetaXdr": "meta",
            "diagnosticEventsXdr": ["event"],
        }))

        outcome = await rpc.get_transaction(TX_HASH)

        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.failure is failure
        assert outcome.result_code == "INVOKE_HOST_FUNCTION_TRAPPED"
        assert outcome.return_value is None
