"""
Transaction Lifecycle Manager

Drives a contract invocation from intent to terminal outcome:

    BUILT -> SIMULATED -> ASSEMBLED -> SIGNED -> SUBMITTED -> CONFIRMING
          -> SUCCEEDED | FAILED | TIMED_OUT

Anything that goes wrong before SUBMITTED aborts the operation locally and
is safe to retry from scratch. Once a hash exists the operation is never
resubmitted automatically; the caller recovers the outcome with
``lookup_outcome``.
"""

import asyncio
import logging
import time
import uuid
from collections import deque
from typing import TYPE_CHECKING, Any, Callable, Deque, Dict, Mapping, Optional, Tuple

import httpx
import structlog

from .errors import (
    ConfirmationTimeout,
    ContractKind,
    FailureCategory,
    LedgerClientError,
    NetworkTransient,
    ObservationDetached,
    OnChainFailure,
    SignRejected,
    SimulationFailure,
    SubmissionFailure,
    classify_failure,
)
from .models import (
    ConfirmationPolicy,
    OperationIntent,
    OperationResult,
    OperationState,
    OutcomeStatus,
    PendingOperation,
    SimulationResult,
    TransactionOutcome,
)
from .signer import Signer

if TYPE_CHECKING:
    from ...providers.base import LedgerRpc
    from ...providers.xdr import EnvelopeBuilder


logger = logging.getLogger(__name__)
_slog = structlog.stdlib.get_logger("execution.lifecycle")

# Result codes that mean the transaction ran out of its resource budget
_RESOURCE_RESULT_CODES = {
    "INVOKE_HOST_FUNCTION_RESOURCE_LIMIT_EXCEEDED",
    "INVOKE_HOST_FUNCTION_INSUFFICIENT_REFUNDABLE_FEE",
    "txINSUFFICIENT_FEE",
}

SubmittedCallback = Callable[[PendingOperation], None]


class TransactionLifecycleManager:
    """
    Builds, simulates, assembles, signs, submits and confirms invocations.

    Args:
        rpc: ledger RPC client
        builder: envelope builder bound to the network passphrase
        signer: signs assembled envelopes; required for ``execute``
        policy: confirmation polling policy
        registry: contract address -> role, used to classify failures
            emitted by a contract other than the one invoked
    """

    def __init__(
        self,
        rpc: "LedgerRpc",
        builder: "EnvelopeBuilder",
        signer: Optional[Signer] = None,
        policy: Optional[ConfirmationPolicy] = None,
        registry: Optional[Mapping[str, ContractKind]] = None,
        history_size: int = 100,
    ):
        self.rpc = rpc
        self.builder = builder
        self.signer = signer
        self.policy = policy or ConfirmationPolicy()
        self.registry: Dict[str, ContractKind] = dict(registry or {})
        self.recent: Deque[PendingOperation] = deque(maxlen=history_size)
        self._account_locks: Dict[str, asyncio.Lock] = {}
        self._lock_holders: Dict[str, int] = {}     # holders plus waiters per account
        self._reads: Dict[Tuple[Any, ...], "asyncio.Future[Any]"] = {}

    @property
    def network_passphrase(self) -> str:
        return self.builder.network_passphrase

    def _get_lock(self, address: str) -> asyncio.Lock:
        if address not in self._account_locks:
            self._account_locks[address] = asyncio.Lock()
        self._lock_holders[address] = self._lock_holders.get(address, 0) + 1
        return self._account_locks[address]

    def _release_lock(self, address: str) -> None:
        remaining = self._lock_holders.get(address, 1) - 1
        if remaining > 0:
            self._lock_holders[address] = remaining
            return
        self._lock_holders.pop(address, None)
        self._account_locks.pop(address, None)

    def classify(self, failure, kind: Optional[ContractKind]) -> FailureCategory:
        return classify_failure(failure, kind, self.registry)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def read(self, intent: OperationIntent) -> Any:
        """
        Simulate a read-only call and return its decoded value.

        Identical reads already in flight share a single RPC round-trip.

        Raises:
            SimulationFailure: the contract or host rejected the call
            NetworkTransient: the RPC could not be reached
        """
        key = intent.read_key
        inflight = self._reads.get(key)
        if inflight is None:
            inflight = asyncio.ensure_future(self._simulate_read(intent))
            self._reads[key] = inflight

            def _release(fut: "asyncio.Future[Any]", key=key) -> None:
                if self._reads.get(key) is fut:
                    del self._reads[key]

            inflight.add_done_callback(_release)
        else:
            logger.debug(f"Joining in-flight read {intent.contract.kind.value}.{intent.method}")
        return await asyncio.shield(inflight)

    async def _simulate_read(self, intent: OperationIntent) -> Any:
        envelope_xdr = self.builder.build_read(intent)
        simulation = await self._pre_submission(self.rpc.simulate(envelope_xdr))
        self._raise_for_simulation(intent, simulation)
        return simulation.return_value

    async def lookup_outcome(self, tx_hash: str) -> TransactionOutcome:
        """Re-query a submitted transaction by hash."""
        return await self.rpc.get_transaction(tx_hash)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def execute(
        self,
        intent: OperationIntent,
        source_address: str,
        cancel: Optional[asyncio.Event] = None,
        on_submitted: Optional[SubmittedCallback] = None,
    ) -> OperationResult:
        """
        Run one mutation to a terminal outcome.

        Only one mutation per source account is in flight at a time so the
        sequence number read at BUILT is still current at submission.

        Args:
            intent: contract method and typed arguments
            source_address: fee-paying, signing account
            cancel: set to stop observing after submission
            on_submitted: called with the operation once its hash is known

        Raises:
            NetworkTransient, SimulationFailure, ProtocolViolation,
            SignRejected, SubmissionFailure: before submission
            OnChainFailure, ConfirmationTimeout, ObservationDetached: after
        """
        if self.signer is None:
            raise SignRejected("No signer configured")

        lock = self._get_lock(source_address)
        try:
            async with lock:
                return await self._execute_locked(intent, source_address, cancel, on_submitted)
        finally:
            self._release_lock(source_address)

    async def _execute_locked(
        self,
        intent: OperationIntent,
        source_address: str,
        cancel: Optional[asyncio.Event],
        on_submitted: Optional[SubmittedCallback],
    ) -> OperationResult:
        op_id = uuid.uuid4().hex[:12]
        log = _slog.bind(op_id=op_id, method=intent.method, contract=intent.contract.kind.value)

        # Sequence number is fetched fresh for every mutation
        account = await self._pre_submission(self.rpc.get_account(source_address))
        op = PendingOperation(op_id=op_id, intent=intent, source_address=source_address)
        self.recent.append(op)

        try:
            op.envelope_xdr = self.builder.build(intent, account)
            log.info("tx_built", sequence=account.sequence)

            simulation = await self._pre_submission(self.rpc.simulate(op.envelope_xdr))
            self._raise_for_simulation(intent, simulation)
            op.simulation = simulation
            op.advance(OperationState.SIMULATED)

            op.envelope_xdr, op.fee = self.builder.assemble(op.envelope_xdr, simulation)
            op.advance(OperationState.ASSEMBLED)
            log.info("tx_assembled", fee=op.fee, resource_fee=simulation.min_resource_fee)

            op.envelope_xdr = await self._sign(op.envelope_xdr, source_address)
            op.advance(OperationState.SIGNED)

            receipt = await self._send(op.envelope_xdr)
        except LedgerClientError as e:
            self._abort(op, e)
            log.warning("tx_aborted", state=op.states[-2].value, error=str(e))
            raise

        op.tx_hash = receipt.tx_hash
        op.advance(OperationState.SUBMITTED)
        log = log.bind(tx_hash=op.tx_hash)
        log.info("tx_submitted", status=receipt.status.value)
        if on_submitted is not None:
            on_submitted(op)

        op.advance(OperationState.CONFIRMING)
        outcome = await self._confirm(op, cancel, log)

        if outcome.status == OutcomeStatus.SUCCESS:
            op.advance(OperationState.SUCCEEDED)
            log.info("tx_succeeded", ledger=outcome.ledger, fee_charged=outcome.fee_charged)
            return OperationResult(
                op_id=op.op_id,
                tx_hash=op.tx_hash,
                method=intent.method,
                return_value=outcome.return_value,
                ledger=outcome.ledger,
                fee=outcome.fee_charged if outcome.fee_charged is not None else op.fee,
            )

        category = self.classify(outcome.failure, intent.contract.kind)
        if category == FailureCategory.UNKNOWN and outcome.result_code in _RESOURCE_RESULT_CODES:
            category = FailureCategory.RESOURCE_LIMIT
        error = OnChainFailure(
            tx_hash=op.tx_hash,
            category=category,
            code=outcome.failure.code if outcome.failure else None,
            result_code=outcome.result_code,
            failure=outcome.failure,
        )
        op.error = str(error)
        op.advance(OperationState.FAILED)
        log.warning("tx_failed", category=category.value, result_code=outcome.result_code)
        raise error

    async def _pre_submission(self, call):
        """Await an RPC call made before submission, normalizing transport errors."""
        try:
            return await call
        except LedgerClientError:
            raise
        except (httpx.TransportError, asyncio.TimeoutError) as e:
            raise NetworkTransient(f"Network error: {e}")

    def _raise_for_simulation(self, intent: OperationIntent, simulation: SimulationResult) -> None:
        if simulation.is_success:
            return
        raise SimulationFailure(
            simulation.error,
            failure=simulation.failure,
            category=self.classify(simulation.failure, intent.contract.kind),
        )

    async def _sign(self, envelope_xdr: str, source_address: str) -> str:
        # No timeout: the signer may be waiting on a person
        try:
            return await self.signer.sign(envelope_xdr, self.network_passphrase, source_address)
        except SignRejected:
            raise
        except Exception as e:  # noqa: BLE001
            raise SignRejected(f"Signer error: {e}")

    async def _send(self, envelope_xdr: str):
        try:
            receipt = await self.rpc.send(envelope_xdr)
        except NetworkTransient as e:
            # The request may have reached the network; never resend blindly
            raise SubmissionFailure(f"transport error during submission: {e}")
        except (httpx.TransportError, asyncio.TimeoutError) as e:
            raise SubmissionFailure(f"transport error during submission: {e}")

        if not receipt.accepted:
            detail = receipt.status.value
            if receipt.error_result_code:
                detail = f"{detail} ({receipt.error_result_code})"
            raise SubmissionFailure(detail, tx_hash=receipt.tx_hash)
        return receipt

    def _abort(self, op: PendingOperation, error: Exception) -> None:
        op.error = str(error)
        op.advance(OperationState.ABORTED)

    async def _confirm(
        self,
        op: PendingOperation,
        cancel: Optional[asyncio.Event],
        log,
    ) -> TransactionOutcome:
        policy = self.policy
        interval = policy.initial_interval_seconds
        started = time.monotonic()
        polls = 0

        try:
            while True:
                if cancel is not None and cancel.is_set():
                    self._detach(op, log)

                try:
                    outcome = await self.rpc.get_transaction(op.tx_hash)
                    polls += 1
                    if outcome.is_final:
                        log.debug("tx_confirmed", polls=polls, status=outcome.status.value)
                        return outcome
                except LedgerClientError as e:
                    # Already submitted: keep polling, never resubmit
                    log.warning("tx_poll_error", error=str(e), retryable=e.retryable)
                except (httpx.TransportError, asyncio.TimeoutError) as e:
                    log.warning("tx_poll_error", error=str(e), retryable=True)

                elapsed = time.monotonic() - started
                if elapsed >= policy.timeout_seconds:
                    op.error = f"not confirmed after {polls} polls"
                    op.advance(OperationState.TIMED_OUT)
                    log.warning("tx_timed_out", waited_seconds=round(elapsed, 2), polls=polls)
                    raise ConfirmationTimeout(op.tx_hash, elapsed)

                wait = max(0.0, min(interval, policy.timeout_seconds - elapsed))
                if cancel is not None:
                    try:
                        await asyncio.wait_for(cancel.wait(), timeout=wait)
                    except asyncio.TimeoutError:
                        pass
                else:
                    await asyncio.sleep(wait)
                interval = policy.next_interval(interval)
        except asyncio.CancelledError:
            if not op.is_terminal:
                op.advance(OperationState.DETACHED)
                log.info("tx_detached", reason="task_cancelled")
            raise

    def _detach(self, op: PendingOperation, log) -> None:
        op.advance(OperationState.DETACHED)
        log.info("tx_detached", reason="cancel_requested")
        raise ObservationDetached(op.tx_hash)
