"""
Transaction execution models and types.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

from .errors import ContractFailure, ContractKind, InvalidTransitionError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ContractRef:
    """Address of a deployed contract and the role it plays."""
    address: str
    kind: ContractKind


class ArgKind(str, Enum):
    """Wire types used by the contract methods this client calls."""
    I128 = "i128"
    U32 = "u32"
    ADDRESS = "address"


@dataclass(frozen=True)
class ContractArg:
    kind: ArgKind
    value: Any

    @classmethod
    def i128(cls, value: int) -> "ContractArg":
        return cls(ArgKind.I128, int(value))

    @classmethod
    def u32(cls, value: int) -> "ContractArg":
        return cls(ArgKind.U32, int(value))

    @classmethod
    def address(cls, value: str) -> "ContractArg":
        return cls(ArgKind.ADDRESS, value)


@dataclass(frozen=True)
class OperationIntent:
    """One contract invocation: method name plus ordered, typed arguments."""
    contract: ContractRef
    method: str
    args: Tuple[ContractArg, ...] = ()
    description: str = ""

    @property
    def read_key(self) -> Tuple[Any, ...]:
        """Identity of a read-only call, used to coalesce duplicates."""
        return (
            self.contract.address,
            self.method,
            tuple((arg.kind.value, arg.value) for arg in self.args),
        )


@dataclass(frozen=True)
class LedgerAccount:
    """Fee-paying source account with its current sequence number."""
    address: str
    sequence: int


class OperationState(str, Enum):
    """Lifecycle of one submitted operation."""
    BUILT = "built"                # Envelope created with placeholder fee
    SIMULATED = "simulated"        # Resource cost known
    ASSEMBLED = "assembled"        # Real fee and footprint merged in
    SIGNED = "signed"              # Signed by the external signer
    SUBMITTED = "submitted"        # Accepted by sendTransaction
    CONFIRMING = "confirming"      # Polling getTransaction
    SUCCEEDED = "succeeded"
    FAILED = "failed"              # On-chain failure
    TIMED_OUT = "timed_out"        # Polling ceiling reached
    ABORTED = "aborted"            # Local failure before submission
    DETACHED = "detached"          # Caller stopped observing


TERMINAL_STATES: Set[OperationState] = {
    OperationState.SUCCEEDED,
    OperationState.FAILED,
    OperationState.TIMED_OUT,
    OperationState.ABORTED,
    OperationState.DETACHED,
}


TRANSITIONS: Dict[OperationState, Set[OperationState]] = {
    OperationState.BUILT: {OperationState.SIMULATED, OperationState.ABORTED},
    OperationState.SIMULATED: {OperationState.ASSEMBLED, OperationState.ABORTED},
    OperationState.ASSEMBLED: {OperationState.SIGNED, OperationState.ABORTED},
    OperationState.SIGNED: {OperationState.SUBMITTED, OperationState.ABORTED},
    OperationState.SUBMITTED: {OperationState.CONFIRMING},
    OperationState.CONFIRMING: {
        OperationState.SUCCEEDED,
        OperationState.FAILED,
        OperationState.TIMED_OUT,
        OperationState.DETACHED,
    },
}


@dataclass
class SimulationResult:
    """Parsed simulateTransaction response."""
    latest_ledger: int = 0
    min_resource_fee: int = 0
    transaction_data: Optional[str] = None      # SorobanTransactionData XDR
    auth: List[str] = field(default_factory=list)
    return_value: Any = None                    # Decoded preview value
    error: Optional[str] = None
    failure: Optional[ContractFailure] = None

    @property
    def is_success(self) -> bool:
        return self.error is None


class SubmissionStatus(str, Enum):
    PENDING = "PENDING"
    DUPLICATE = "DUPLICATE"
    TRY_AGAIN_LATER = "TRY_AGAIN_LATER"
    ERROR = "ERROR"


@dataclass
class SubmissionReceipt:
    """Parsed sendTransaction response. Not a terminal outcome."""
    tx_hash: str
    status: SubmissionStatus
    latest_ledger: int = 0
    error_result_code: Optional[str] = None
    failure: Optional[ContractFailure] = None

    @property
    def accepted(self) -> bool:
        return self.status in (SubmissionStatus.PENDING, SubmissionStatus.DUPLICATE)


class OutcomeStatus(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


@dataclass
class TransactionOutcome:
    """Parsed getTransaction response."""
    tx_hash: str
    status: OutcomeStatus
    ledger: Optional[int] = None
    created_at: Optional[int] = None
    fee_charged: Optional[int] = None
    return_value: Any = None
    result_code: Optional[str] = None
    failure: Optional[ContractFailure] = None

    @property
    def is_final(self) -> bool:
        return self.status != OutcomeStatus.NOT_FOUND


@dataclass
class ConfirmationPolicy:
    """Bounded polling with exponential backoff."""
    initial_interval_seconds: float = 1.0
    backoff_factor: float = 1.5
    max_interval_seconds: float = 5.0
    timeout_seconds: float = 60.0

    def next_interval(self, interval: float) -> float:
        return min(interval * self.backoff_factor, self.max_interval_seconds)


@dataclass
class PendingOperation:
    """
    State of one in-flight submission.

    Lives from BUILT to a terminal state and is never persisted. Once
    ``tx_hash`` is set the caller must keep it to recover the outcome.
    """
    op_id: str
    intent: OperationIntent
    source_address: str
    state: OperationState = OperationState.BUILT
    envelope_xdr: Optional[str] = None
    simulation: Optional[SimulationResult] = None
    tx_hash: Optional[str] = None
    fee: Optional[int] = None
    error: Optional[str] = None
    history: List[Tuple[OperationState, datetime]] = field(default_factory=list)

    def __post_init__(self):
        if not self.history:
            self.history.append((self.state, _utcnow()))

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def can_transition_to(self, to_state: OperationState) -> bool:
        return to_state in TRANSITIONS.get(self.state, set())

    def advance(self, to_state: OperationState) -> None:
        if not self.can_transition_to(to_state):
            raise InvalidTransitionError(self.state.value, to_state.value)
        self.state = to_state
        self.history.append((to_state, _utcnow()))

    @property
    def states(self) -> List[OperationState]:
        return [state for state, _ in self.history]


@dataclass
class OperationResult:
    """Terminal success of a mutation. Amounts stay in base units."""
    op_id: str
    tx_hash: str
    method: str
    return_value: Any = None
    ledger: Optional[int] = None
    fee: Optional[int] = None
    confirmed_at: datetime = field(default_factory=_utcnow)
    state: OperationState = OperationState.SUCCEEDED

    @property
    def is_success(self) -> bool:
        return self.state == OperationState.SUCCEEDED
