"""
Transaction Execution Layer

Takes a contract invocation from intent to terminal outcome on Soroban:
- TransactionLifecycleManager: build, simulate, assemble, sign, submit, confirm
- Signer / KeypairSigner: external signing seam and a local-key implementation
- errors: typed failures and contract error classification

Usage:
    from dob_client.core.execution import (
        TransactionLifecycleManager,
        OperationIntent,
        ContractArg,
    )

    manager = TransactionLifecycleManager(rpc, builder, signer=signer)
    result = await manager.execute(intent, source_address)
    value = await manager.read(read_intent)
"""

from .errors import (
    AccountNotFound,
    ConfirmationTimeout,
    ContractFailure,
    ContractKind,
    FailureCategory,
    InvalidAddress,
    InvalidAmount,
    InvalidTransitionError,
    LedgerClientError,
    NetworkTransient,
    ObservationDetached,
    OnChainFailure,
    ProtocolViolation,
    SignRejected,
    SimulationFailure,
    SubmissionFailure,
    TrustlineMissing,
    classify_failure,
)

from .models import (
    ArgKind,
    ConfirmationPolicy,
    ContractArg,
    ContractRef,
    LedgerAccount,
    OperationIntent,
    OperationResult,
    OperationState,
    OutcomeStatus,
    PendingOperation,
    SimulationResult,
    SubmissionReceipt,
    SubmissionStatus,
    TransactionOutcome,
)

from .signer import KeypairSigner, Signer

from .lifecycle import TransactionLifecycleManager

__all__ = [
    # Errors
    "AccountNotFound",
    "ConfirmationTimeout",
    "ContractFailure",
    "ContractKind",
    "FailureCategory",
    "InvalidAddress",
    "InvalidAmount",
    "InvalidTransitionError",
    "LedgerClientError",
    "NetworkTransient",
    "ObservationDetached",
    "OnChainFailure",
    "ProtocolViolation",
    "SignRejected",
    "SimulationFailure",
    "SubmissionFailure",
    "TrustlineMissing",
    "classify_failure",
    # Models
    "ArgKind",
    "ConfirmationPolicy",
    "ContractArg",
    "ContractRef",
    "LedgerAccount",
    "OperationIntent",
    "OperationResult",
    "OperationState",
    "OutcomeStatus",
    "PendingOperation",
    "SimulationResult",
    "SubmissionReceipt",
    "SubmissionStatus",
    "TransactionOutcome",
    # Execution
    "KeypairSigner",
    "Signer",
    "TransactionLifecycleManager",
]
