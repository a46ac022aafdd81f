"""
Error Classification

Typed failures for the transaction pipeline and the decoding of
contract-level rejections into a closed category taxonomy.

Failures raised before a transaction reaches the network are local and
retryable from scratch. Failures at or after submission are never retried
automatically; the caller re-queries by hash first.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Mapping, Optional


class ContractKind(str, Enum):
    """Roles a configured contract address can play."""

    ORACLE = "oracle"
    POOL = "pool"
    TOKEN = "token"      # DOB token contract
    ASSET = "asset"      # Stellar asset contract (USDC)
    NODE = "node"        # Liquidity node / stabilizer


class FailureCategory(str, Enum):
    """Closed taxonomy of contract-level rejections."""

    INSUFFICIENT_BALANCE = "insufficient_balance"
    INSUFFICIENT_ALLOWANCE = "insufficient_allowance"
    INSUFFICIENT_LIQUIDITY = "insufficient_liquidity"
    NO_LIQUIDITY = "no_liquidity"
    INVALID_AMOUNT = "invalid_amount"
    INVALID_LP_SHARES = "invalid_lp_shares"
    TRANSFER_FAILED = "transfer_failed"
    UNAUTHORIZED = "unauthorized"
    ALREADY_REGISTERED = "already_registered"
    NOT_REGISTERED = "not_registered"
    TRUSTLINE_MISSING = "trustline_missing"
    MISSING_VALUE = "missing_value"
    RESOURCE_LIMIT = "resource_limit"
    UNKNOWN = "unknown"

    @property
    def label(self) -> str:
        return _CATEGORY_LABELS[self]


_CATEGORY_LABELS: Dict[FailureCategory, str] = {
    FailureCategory.INSUFFICIENT_BALANCE: "Insufficient balance",
    FailureCategory.INSUFFICIENT_ALLOWANCE: "Insufficient allowance",
    FailureCategory.INSUFFICIENT_LIQUIDITY: "Insufficient pool liquidity",
    FailureCategory.NO_LIQUIDITY: "No liquidity available",
    FailureCategory.INVALID_AMOUNT: "Invalid amount",
    FailureCategory.INVALID_LP_SHARES: "Invalid LP shares",
    FailureCategory.TRANSFER_FAILED: "Token transfer failed",
    FailureCategory.UNAUTHORIZED: "Unauthorized",
    FailureCategory.ALREADY_REGISTERED: "Liquidity node already registered",
    FailureCategory.NOT_REGISTERED: "Liquidity node not registered",
    FailureCategory.TRUSTLINE_MISSING: "Trustline missing",
    FailureCategory.MISSING_VALUE: "No stored value",
    FailureCategory.RESOURCE_LIMIT: "Resource limit exceeded",
    FailureCategory.UNKNOWN: "Unknown failure",
}


# Contract error enums, keyed by the emitting contract's role
_CONTRACT_CODES: Dict[ContractKind, Dict[int, FailureCategory]] = {
    ContractKind.POOL: {
        1: FailureCategory.INSUFFICIENT_LIQUIDITY,
        2: FailureCategory.INVALID_AMOUNT,
        3: FailureCategory.TRANSFER_FAILED,
        4: FailureCategory.NO_LIQUIDITY,
        5: FailureCategory.INVALID_LP_SHARES,
        6: FailureCategory.UNAUTHORIZED,
        7: FailureCategory.ALREADY_REGISTERED,
        8: FailureCategory.NOT_REGISTERED,
    },
    ContractKind.ORACLE: {
        1: FailureCategory.UNAUTHORIZED,
    },
    ContractKind.TOKEN: {
        1: FailureCategory.UNAUTHORIZED,
        2: FailureCategory.INSUFFICIENT_BALANCE,
        3: FailureCategory.INSUFFICIENT_ALLOWANCE,
    },
    ContractKind.NODE: {
        1: FailureCategory.UNAUTHORIZED,
        2: FailureCategory.INSUFFICIENT_BALANCE,
        3: FailureCategory.INVALID_AMOUNT,
    },
    # Stellar asset contract built-in error codes
    ContractKind.ASSET: {
        4: FailureCategory.UNAUTHORIZED,
        5: FailureCategory.UNAUTHORIZED,
        8: FailureCategory.INVALID_AMOUNT,
        9: FailureCategory.INSUFFICIENT_ALLOWANCE,
        10: FailureCategory.INSUFFICIENT_BALANCE,
        11: FailureCategory.UNAUTHORIZED,
        13: FailureCategory.TRUSTLINE_MISSING,
    },
}

# Host error types that classify without a contract table
_HOST_ERROR_TYPES: Dict[str, FailureCategory] = {
    "auth": FailureCategory.UNAUTHORIZED,
    "budget": FailureCategory.RESOURCE_LIMIT,
}


@dataclass(frozen=True)
class ContractFailure:
    """
    Structured error decoded from the ledger's diagnostic events.

    Attributes:
        error_type: SCError type name without prefix ("contract", "storage",
            "auth", "budget", ...)
        code: contract error number for "contract" errors, otherwise the
            host error code name ("missing_value", "invalid_action", ...)
        contract_id: strkey of the contract that emitted the error, if known
    """

    error_type: str
    code: object
    contract_id: Optional[str] = None

    @property
    def is_contract_error(self) -> bool:
        return self.error_type == "contract"


def classify_failure(
    failure: Optional[ContractFailure],
    fallback_kind: Optional[ContractKind] = None,
    registry: Optional[Mapping[str, ContractKind]] = None,
) -> FailureCategory:
    """
    Map a decoded failure to a category.

    The emitting contract's role is looked up in ``registry`` by address;
    when unknown, ``fallback_kind`` (the invoked contract) is used.
    """
    if failure is None:
        return FailureCategory.UNKNOWN

    if failure.is_contract_error:
        kind = None
        if registry and failure.contract_id:
            kind = registry.get(failure.contract_id)
        kind = kind or fallback_kind
        if kind is None or not isinstance(failure.code, int):
            return FailureCategory.UNKNOWN
        return _CONTRACT_CODES.get(kind, {}).get(failure.code, FailureCategory.UNKNOWN)

    if failure.error_type == "storage" and failure.code == "missing_value":
        return FailureCategory.MISSING_VALUE

    return _HOST_ERROR_TYPES.get(failure.error_type, FailureCategory.UNKNOWN)


class LedgerClientError(Exception):
    """Base exception for ledger client errors."""

    retryable: bool = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidAmount(LedgerClientError, ValueError):
    """Amount input is not numeric or violates an operation precondition."""
    pass


class InvalidAddress(LedgerClientError, ValueError):
    """Account or contract address is not a valid strkey."""

    def __init__(self, address: str):
        super().__init__(f"Invalid address: {address!r}")
        self.address = address


class NetworkTransient(LedgerClientError):
    """Timeout or connection error before anything reached the ledger."""

    retryable = True


class ProtocolViolation(LedgerClientError):
    """The RPC returned a malformed or unexpected response."""
    pass


class AccountNotFound(LedgerClientError):
    """The source account does not exist on the ledger (unfunded)."""

    def __init__(self, address: str):
        super().__init__(f"Account {address} not found; fund it before submitting")
        self.address = address


class SimulationFailure(LedgerClientError):
    """Remote simulation reported an error; the operation was never submitted."""

    def __init__(
        self,
        detail: str,
        failure: Optional[ContractFailure] = None,
        category: FailureCategory = FailureCategory.UNKNOWN,
    ):
        super().__init__(f"Simulation failed: {detail}")
        self.detail = detail
        self.failure = failure
        self.category = category


class SignRejected(LedgerClientError):
    """The signer returned an error or the user declined."""
    pass


class SubmissionFailure(LedgerClientError):
    """The network refused the envelope or the submission transport failed."""

    def __init__(self, detail: str, tx_hash: Optional[str] = None):
        super().__init__(f"Submission failed: {detail}")
        self.detail = detail
        self.tx_hash = tx_hash


class OnChainFailure(LedgerClientError):
    """Transaction was included in a ledger and failed."""

    def __init__(
        self,
        tx_hash: str,
        category: FailureCategory,
        code: object = None,
        result_code: Optional[str] = None,
        failure: Optional[ContractFailure] = None,
    ):
        super().__init__(f"{category.label} (code={code}, tx={tx_hash})")
        self.tx_hash = tx_hash
        self.category = category
        self.code = code
        self.result_code = result_code
        self.failure = failure


class ConfirmationTimeout(LedgerClientError):
    """No terminal status was observed before the polling ceiling."""

    def __init__(self, tx_hash: str, waited_seconds: float):
        super().__init__(
            f"Transaction {tx_hash} not confirmed after {waited_seconds:.1f}s; "
            "query it by hash before resubmitting"
        )
        self.tx_hash = tx_hash
        self.waited_seconds = waited_seconds


class ObservationDetached(LedgerClientError):
    """Polling was cancelled by the caller; the ledger outcome is unaffected."""

    def __init__(self, tx_hash: str):
        super().__init__(f"Stopped observing {tx_hash}; outcome must be queried by hash")
        self.tx_hash = tx_hash


class TrustlineMissing(LedgerClientError):
    """Account has no trustline for the asset. Never escapes the balance resolver."""
    pass


class InvalidTransitionError(LedgerClientError):
    """Attempted a state transition that the operation state machine forbids."""

    def __init__(self, from_state: str, to_state: str):
        super().__init__(f"Invalid transition from {from_state} to {to_state}")
        self.from_state = from_state
        self.to_state = to_state
