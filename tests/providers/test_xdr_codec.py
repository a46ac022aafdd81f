"""
Tests for XDR encoding, decoding and envelope handling (real stellar-sdk).
"""

from types import SimpleNamespace

import pytest
from stellar_sdk import Keypair, Network, StrKey, TransactionBuilder, scval
from stellar_sdk import xdr as stellar_xdr
from stellar_sdk.operation import InvokeHostFunction

from dob_client.core import intents
from dob_client.core.execution.errors import ContractKind, InvalidAddress, ProtocolViolation, SignRejected
from dob_client.core.execution.models import ContractRef, LedgerAccount, SimulationResult
from dob_client.core.execution.signer import KeypairSigner
from dob_client.providers import xdr


PASSPHRASE = Network.TESTNET_NETWORK_PASSPHRASE
POOL = ContractRef(StrKey.encode_contract(bytes(32)), ContractKind.POOL)


def contract_error(code):
    return stellar_xdr.SCVal(
        type=stellar_xdr.SCValType.SCV_ERROR,
        error=stellar_xdr.SCError(
            type=stellar_xdr.SCErrorType.SCE_CONTRACT,
            contract_code=stellar_xdr.Uint32(code),
        ),
    )


def host_error(error_type, code):
    return stellar_xdr.SCVal(
        type=stellar_xdr.SCValType.SCV_ERROR,
        error=stellar_xdr.SCError(type=error_type, code=code),
    )


def diagnostic_event(*values, contract_id=None):
    """Minimal stand-in exposing the attributes the decoder walks."""
    body = SimpleNamespace(v0=SimpleNamespace(topics=list(values), data=scval.to_string("context")))
    return SimpleNamespace(event=SimpleNamespace(contract_id=contract_id, body=body))


class TestScVal:
    def test_contract_error(self):
        failure = xdr.failure_from_scval(contract_error(13))

        assert failure.error_type == "contract"
        assert failure.code == 13
        assert failure.is_contract_error

    def test_host_error(self):
        value = host_error(stellar_xdr.SCErrorType.SCE_STORAGE, stellar_xdr.SCErrorCode.SCEC_MISSING_VALUE)

        failure = xdr.failure_from_scval(value)

        assert (failure.error_type, failure.code) == ("storage", "missing_value")

    def test_non_error_value(self):
        assert xdr.failure_from_scval(scval.to_int128(5)) is None

    def test_decode_i128(self):
        assert xdr.decode_scval(scval.to_int128(49_005_000).to_xdr()) == 49_005_000

    def test_decode_address_as_strkey(self):
        address = Keypair.random().public_key

        assert xdr.decode_scval(scval.to_address(address).to_xdr()) == address

    def test_decode_struct(self):
        value = scval.to_struct({
            "usdc_out": scval.to_int128(97),
            "from_pool": scval.to_int128(60),
        })

        assert xdr.decode_scval(value.to_xdr()) == {"usdc_out": 97, "from_pool": 60}

    def test_undecodable(self):
        with pytest.raises(ProtocolViolation):
            xdr.decode_scval("not-xdr")


class TestEventFailures:
    def test_contract_error_preferred_over_host_error(self):
        events = [
            diagnostic_event(scval.to_symbol("log")),
            diagnostic_event(
                scval.to_symbol("error"),
                host_error(stellar_xdr.SCErrorType.SCE_AUTH, stellar_xdr.SCErrorCode.SCEC_INVALID_ACTION),
            ),
            diagnostic_event(scval.to_symbol("error"), contract_error(10)),
        ]

        failure = xdr.first_failure(events)

        assert (failure.error_type, failure.code) == ("contract", 10)

    def test_host_error_when_no_contract_error(self):
        events = [
            diagnostic_event(
                scval.to_symbol("error"),
                host_error(stellar_xdr.SCErrorType.SCE_BUDGET, stellar_xdr.SCErrorCode.SCEC_EXCEEDED_LIMIT),
            ),
        ]

        assert xdr.first_failure(events).error_type == "budget"

    def test_emitting_contract_is_recorded(self):
        event = diagnostic_event(contract_error(13), contract_id=stellar_xdr.Hash(bytes(32)))

        failure = xdr.failure_from_event(event)

        assert failure.contract_id == StrKey.encode_contract(bytes(32))

    def test_no_events(self):
        assert xdr.first_failure([]) is None
        assert xdr.failure_from_events_xdr(["garbage"]) is None


class TestAccounts:
    def test_account_ledger_key(self):
        address = Keypair.random().public_key

        key = stellar_xdr.LedgerKey.from_xdr(xdr.account_ledger_key(address))

        assert key.type == stellar_xdr.LedgerEntryType.ACCOUNT
        assert key.account.account_id == Keypair.from_public_key(address).xdr_account_id()

    @pytest.mark.parametrize("address", ["not-an-address", "", POOL.address])
    def test_account_ledger_key_rejects_non_account(self, address):
        with pytest.raises(InvalidAddress):
            xdr.account_ledger_key(address)

    def test_bad_account_entry(self):
        with pytest.raises(ProtocolViolation):
            xdr.account_sequence("garbage")

    def test_empty_meta_and_result(self):
        assert xdr.decode_meta(None) == (None, None)
        assert xdr.decode_result(None) == (None, None)


class TestEnvelopeBuilder:
    def test_build_uses_next_sequence_and_placeholder_fee(self):
        address = Keypair.random().public_key
        builder = xdr.EnvelopeBuilder(PASSPHRASE)

        envelope_xdr = builder.build(intents.swap_buy(POOL, address, 50_000_000), LedgerAccount(address, 41))

        transaction = TransactionBuilder.from_xdr(envelope_xdr, PASSPHRASE).transaction
        assert transaction.sequence == 42
        assert transaction.fee == 100_000
        assert transaction.source.account_id == address
        assert isinstance(transaction.operations[0], InvokeHostFunction)

    def test_build_read_uses_read_only_source(self):
        builder = xdr.EnvelopeBuilder(PASSPHRASE)

        envelope_xdr = builder.build_read(intents.reserves(POOL))

        transaction = TransactionBuilder.from_xdr(envelope_xdr, PASSPHRASE).transaction
        assert transaction.source.account_id == xdr.READ_ONLY_ACCOUNT

    def test_build_rejects_malformed_contract(self):
        address = Keypair.random().public_key
        builder = xdr.EnvelopeBuilder(PASSPHRASE)
        pool = ContractRef("CPOOL", ContractKind.POOL)

        with pytest.raises(InvalidAddress):
            builder.build(intents.swap_buy(pool, address, 1), LedgerAccount(address, 1))

    def test_build_rejects_malformed_address_argument(self):
        address = Keypair.random().public_key
        builder = xdr.EnvelopeBuilder(PASSPHRASE)

        with pytest.raises(InvalidAddress) as exc_info:
            builder.build(intents.swap_buy(POOL, "GBROKEN", 1), LedgerAccount(address, 1))

        assert exc_info.value.address == "GBROKEN"

    def test_assemble_requires_transaction_data(self):
        builder = xdr.EnvelopeBuilder(PASSPHRASE)

        with pytest.raises(ProtocolViolation):
            builder.assemble("envelope", SimulationResult(min_resource_fee=10))

    def test_assemble_rejects_bad_transaction_data(self):
        address = Keypair.random().public_key
        builder = xdr.EnvelopeBuilder(PASSPHRASE)
        envelope_xdr = builder.build(intents.swap_buy(POOL, address, 1), LedgerAccount(address, 1))

        with pytest.raises(ProtocolViolation):
            builder.assemble(envelope_xdr, SimulationResult(min_resource_fee=10, transaction_data="garbage"))


class TestKeypairSigner:
    @pytest.mark.asyncio
    async def test_signs_for_own_account(self):
        keypair = Keypair.random()
        signer = KeypairSigner(keypair.secret)
        envelope_xdr = xdr.EnvelopeBuilder(PASSPHRASE).build(
            intents.swap_sell(POOL, keypair.public_key, 5), LedgerAccount(keypair.public_key, 1)
        )

        signed = await signer.sign(envelope_xdr, PASSPHRASE, keypair.public_key)

        assert len(TransactionBuilder.from_xdr(signed, PASSPHRASE).signatures) == 1

    @pytest.mark.asyncio
    async def test_rejects_other_account(self):
        signer = KeypairSigner(Keypair.random().secret)

        with pytest.raises(SignRejected):
            await signer.sign("envelope", PASSPHRASE, Keypair.random().public_key)

    def test_rejects_invalid_secret(self):
        with pytest.raises(SignRejected):
            KeypairSigner("not-a-secret")
