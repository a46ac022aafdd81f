"""
Stellar XDR helpers.

Builds and assembles invocation envelopes and decodes the base64 XDR that
Soroban RPC returns (ScVal return values, transaction meta, diagnostic
events, result codes). All stellar-sdk usage is kept in this module.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Optional, Tuple

from stellar_sdk import Account, Address, Keypair, StrKey, TransactionBuilder, scval
from stellar_sdk import xdr as stellar_xdr
from stellar_sdk.operation import InvokeHostFunction

from ..core.execution.errors import ContractFailure, InvalidAddress, ProtocolViolation
from ..core.execution.models import (
    ArgKind,
    ContractArg,
    LedgerAccount,
    OperationIntent,
    SimulationResult,
)


logger = logging.getLogger(__name__)

# Unfunded all-zero account used as the source of read-only simulations
READ_ONLY_ACCOUNT = "GAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAWHF"


def check_account(address: str) -> str:
    if not isinstance(address, str) or not StrKey.is_valid_ed25519_public_key(address):
        raise InvalidAddress(address)
    return address


def check_address(address: str) -> str:
    """Accept an account (G...) or contract (C...) address."""
    if isinstance(address, str) and (
        StrKey.is_valid_ed25519_public_key(address) or StrKey.is_valid_contract(address)
    ):
        return address
    raise InvalidAddress(address)


def to_scval(arg: ContractArg) -> stellar_xdr.SCVal:
    if arg.kind == ArgKind.I128:
        return scval.to_int128(int(arg.value))
    if arg.kind == ArgKind.U32:
        return scval.to_uint32(int(arg.value))
    if arg.kind == ArgKind.ADDRESS:
        return scval.to_address(check_address(arg.value))
    raise ValueError(f"Unsupported argument kind: {arg.kind}")


def _normalize_native(value: Any) -> Any:
    if isinstance(value, Address):
        return value.address
    if isinstance(value, (list, tuple)):
        return [_normalize_native(v) for v in value]
    if isinstance(value, dict):
        return {_normalize_native(k): _normalize_native(v) for k, v in value.items()}
    return value


def scval_to_python(value: stellar_xdr.SCVal) -> Any:
    """Convert an ScVal to plain Python (ints, str addresses, lists, dicts)."""
    return _normalize_native(scval.to_native(value))


def decode_scval(value_xdr: str) -> Any:
    try:
        return scval_to_python(stellar_xdr.SCVal.from_xdr(value_xdr))
    except Exception as e:  # noqa: BLE001
        raise ProtocolViolation(f"Undecodable ScVal: {e}")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

def failure_from_scval(value: stellar_xdr.SCVal) -> Optional[ContractFailure]:
    """Decode an SCV_ERROR value; None for any other ScVal type."""
    if value is None or value.type != stellar_xdr.SCValType.SCV_ERROR:
        return None
    error = value.error
    error_type = error.type.name.removeprefix("SCE_").lower()
    if error.type == stellar_xdr.SCErrorType.SCE_CONTRACT:
        code: object = int(error.contract_code.uint32)
    else:
        code = error.code.name.removeprefix("SCEC_").lower()
    return ContractFailure(error_type=error_type, code=code)


def _contract_strkey(contract_id: Any) -> Optional[str]:
    if contract_id is None:
        return None
    # Hash in older XDR, ContractID wrapping a Hash in newer
    inner = getattr(contract_id, "contract_id", contract_id)
    raw = getattr(inner, "hash", None)
    if raw is None:
        return None
    return StrKey.encode_contract(raw)


def failure_from_event(event: stellar_xdr.DiagnosticEvent) -> Optional[ContractFailure]:
    contract_event = event.event
    body = contract_event.body.v0
    if body is None:
        return None
    for value in [*body.topics, body.data]:
        failure = failure_from_scval(value)
        if failure is not None:
            return ContractFailure(
                error_type=failure.error_type,
                code=failure.code,
                contract_id=_contract_strkey(contract_event.contract_id),
            )
    return None


def first_failure(events: Iterable[stellar_xdr.DiagnosticEvent]) -> Optional[ContractFailure]:
    """
    Pick the error that caused the failure.

    The innermost contract error is emitted first; a contract-typed error
    is preferred over host errors raised while unwinding.
    """
    host_failure = None
    for event in events:
        failure = failure_from_event(event)
        if failure is None:
            continue
        if failure.is_contract_error:
            return failure
        if host_failure is None:
            host_failure = failure
    return host_failure


def decode_events(events_xdr: Iterable[str]) -> List[stellar_xdr.DiagnosticEvent]:
    decoded = []
    for raw in events_xdr or []:
        try:
            decoded.append(stellar_xdr.DiagnosticEvent.from_xdr(raw))
        except Exception as e:  # noqa: BLE001
            logger.debug(f"Skipping undecodable diagnostic event: {e}")
    return decoded


def failure_from_events_xdr(events_xdr: Iterable[str]) -> Optional[ContractFailure]:
    return first_failure(decode_events(events_xdr))


# ---------------------------------------------------------------------------
# Transaction meta / result
# ---------------------------------------------------------------------------

def _soroban_meta_parts(meta: stellar_xdr.TransactionMeta) -> Tuple[Optional[stellar_xdr.SCVal], list]:
    for version in ("v4", "v3"):
        body = getattr(meta, version, None)
        if body is None:
            continue
        soroban_meta = body.soroban_meta
        return_value = soroban_meta.return_value if soroban_meta is not None else None
        events = getattr(body, "diagnostic_events", None)
        if events is None and soroban_meta is not None:
            events = getattr(soroban_meta, "diagnostic_events", None)
        return return_value, list(events or [])
    return None, []


def decode_meta(meta_xdr: Optional[str]) -> Tuple[Any, Optional[ContractFailure]]:
    """Return (decoded return value, failure from embedded diagnostic events)."""
    if not meta_xdr:
        return None, None
    try:
        meta = stellar_xdr.TransactionMeta.from_xdr(meta_xdr)
        return_value, events = _soroban_meta_parts(meta)
    except Exception as e:  # noqa: BLE001
        raise ProtocolViolation(f"Undecodable transaction meta: {e}")
    value = scval_to_python(return_value) if return_value is not None else None
    return value, first_failure(events)


def decode_result(result_xdr: Optional[str]) -> Tuple[Optional[str], Optional[int]]:
    """Return (most specific result code name, fee charged)."""
    if not result_xdr:
        return None, None
    try:
        result = stellar_xdr.TransactionResult.from_xdr(result_xdr)
    except Exception as e:  # noqa: BLE001
        raise ProtocolViolation(f"Undecodable transaction result: {e}")

    code = result.result.code.name
    for op_result in result.result.results or []:
        tr = op_result.tr
        invoke = getattr(tr, "invoke_host_function_result", None) if tr else None
        if invoke is not None:
            code = invoke.code.name
            break
    return code, result.fee_charged.int64


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------

def account_ledger_key(address: str) -> str:
    key = stellar_xdr.LedgerKey(
        type=stellar_xdr.LedgerEntryType.ACCOUNT,
        account=stellar_xdr.LedgerKeyAccount(
            account_id=Keypair.from_public_key(check_account(address)).xdr_account_id()
        ),
    )
    return key.to_xdr()


def account_sequence(entry_xdr: str) -> int:
    try:
        data = stellar_xdr.LedgerEntryData.from_xdr(entry_xdr)
        return int(data.account.seq_num.sequence.int64)
    except Exception as e:  # noqa: BLE001
        raise ProtocolViolation(f"Undecodable account entry: {e}")


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------

class EnvelopeBuilder:
    """
    Builds and assembles contract-invocation envelopes.

    Args:
        network_passphrase: passphrase of the selected network
        placeholder_fee: fee used before simulation (stroops)
        inclusion_fee: per-transaction inclusion fee added to the resource fee
        timeout_seconds: validity window of built envelopes
    """

    def __init__(
        self,
        network_passphrase: str,
        placeholder_fee: int = 100_000,
        inclusion_fee: int = 100,
        timeout_seconds: int = 30,
    ):
        self.network_passphrase = network_passphrase
        self.placeholder_fee = placeholder_fee
        self.inclusion_fee = inclusion_fee
        self.timeout_seconds = timeout_seconds

    def build(self, intent: OperationIntent, account: LedgerAccount) -> str:
        """
        Build an unsigned invocation envelope at the next sequence number.

        Raises:
            InvalidAddress: if the source, contract or an address argument is malformed
        """
        if not StrKey.is_valid_contract(intent.contract.address):
            raise InvalidAddress(intent.contract.address)
        source = Account(check_account(account.address), account.sequence)
        envelope = (
            TransactionBuilder(
                source_account=source,
                network_passphrase=self.network_passphrase,
                base_fee=self.placeholder_fee,
            )
            .append_invoke_contract_function_op(
                contract_id=intent.contract.address,
                function_name=intent.method,
                parameters=[to_scval(arg) for arg in intent.args],
            )
            .set_timeout(self.timeout_seconds)
            .build()
        )
        return envelope.to_xdr()

    def build_read(self, intent: OperationIntent) -> str:
        return self.build(intent, LedgerAccount(READ_ONLY_ACCOUNT, 0))

    def assemble(self, envelope_xdr: str, simulation: SimulationResult) -> Tuple[str, int]:
        """
        Merge simulation output into the envelope.

        Returns the assembled envelope and its final fee.

        Raises:
            ProtocolViolation: if the simulation output cannot be applied
        """
        if not simulation.transaction_data:
            raise ProtocolViolation("Simulation returned no transaction data")
        if simulation.min_resource_fee < 0:
            raise ProtocolViolation(f"Negative resource fee: {simulation.min_resource_fee}")

        try:
            envelope = TransactionBuilder.from_xdr(envelope_xdr, self.network_passphrase)
            transaction = envelope.transaction
            operation = transaction.operations[0]
            if not isinstance(operation, InvokeHostFunction):
                raise ProtocolViolation("Envelope does not invoke a contract")

            transaction.soroban_data = stellar_xdr.SorobanTransactionData.from_xdr(
                simulation.transaction_data
            )
            if simulation.auth and not operation.auth:
                operation.auth = [
                    stellar_xdr.SorobanAuthorizationEntry.from_xdr(entry)
                    for entry in simulation.auth
                ]
            fee = self.inclusion_fee + simulation.min_resource_fee
            transaction.fee = fee
            return envelope.to_xdr(), fee
        except ProtocolViolation:
            raise
        except Exception as e:  # noqa: BLE001
            raise ProtocolViolation(f"Cannot assemble envelope: {e}")


__all__ = [
    "READ_ONLY_ACCOUNT",
    "EnvelopeBuilder",
    "check_account",
    "check_address",
    "to_scval",
    "decode_scval",
    "scval_to_python",
    "failure_from_scval",
    "failure_from_events_xdr",
    "decode_meta",
    "decode_result",
    "account_ledger_key",
    "account_sequence",
]
