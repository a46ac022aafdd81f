"""
Tests for the dob-client command line.
"""

from dataclasses import replace

import pytest
from stellar_sdk import Keypair

from dob_client import cli
from dob_client.client import DobClient
from dob_client.config import Settings
from dob_client.core.execution.errors import ContractFailure, NetworkTransient
from dob_client.core.execution.models import ConfirmationPolicy, OutcomeStatus, TransactionOutcome
from dob_client.core.quotes import QuoteEstimator
from dob_client.core.sync import StateSynchronizer

from fakes import TX_HASH, FakeBuilder, FakeReader, FakeSigner, market_responses


@pytest.fixture
def keypair():
    return Keypair.random()


@pytest.fixture
def cli_env(monkeypatch, ledger_config, fake_rpc, keypair):
    """Point the CLI at a faked ledger and return the client it will use."""
    monkeypatch.setattr(cli, "settings", Settings(_env_file=None, signer_secret=keypair.secret))

    reader = FakeReader(market_responses())
    client = DobClient(ledger_config, signer=FakeSigner(), rpc=fake_rpc, builder=FakeBuilder())
    client.sync = StateSynchronizer(reader, ledger_config)
    client.quotes = QuoteEstimator(reader, ledger_config.oracle, ledger_config.pool)
    monkeypatch.setattr(cli, "build_client", lambda signer=None: client)
    return client


def success():
    return TransactionOutcome(TX_HASH, OutcomeStatus.SUCCESS, ledger=88, fee_charged=5_100)


@pytest.mark.asyncio
async def test_no_command_prints_help(capsys):
    assert await cli.main([]) == 0
    assert "usage" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_mutation_requires_signer(monkeypatch, capsys):
    monkeypatch.setattr(cli, "settings", Settings(_env_file=None, signer_secret=""))

    assert await cli.main(["swap-buy", "5"]) == 1
    assert "SIGNER_SECRET" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_invalid_signer_secret(monkeypatch, capsys):
    monkeypatch.setattr(cli, "settings", Settings(_env_file=None, signer_secret="nonsense"))

    assert await cli.main(["swap-buy", "5"]) == 1


@pytest.mark.asyncio
async def test_configuration_error(monkeypatch, capsys):
    def broken(signer=None):
        raise ValueError("Missing contract configuration: POOL_CONTRACT")

    monkeypatch.setattr(cli, "build_client", broken)

    assert await cli.main(["quote", "buy", "5"]) == 1
    assert "POOL_CONTRACT" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_swap_buy(cli_env, fake_rpc, keypair, capsys):
    fake_rpc.outcomes = [success()]

    assert await cli.main(["swap-buy", "5"]) == 0

    out = capsys.readouterr().out
    assert f"Submitted swap_buy: {TX_HASH}" in out
    assert "confirmed in ledger 88" in out
    op = cli_env.manager.recent[-1]
    assert op.source_address == keypair.public_key
    assert op.intent.args[1].value == 50_000_000


@pytest.mark.asyncio
async def test_oracle_update_converts_units(cli_env, fake_rpc):
    fake_rpc.outcomes = [success()]

    assert await cli.main(["oracle-update", "1.05", "2.5"]) == 0

    op = cli_env.manager.recent[-1]
    assert [arg.value for arg in op.intent.args] == [10_500_000, 250]


@pytest.mark.asyncio
async def test_remove_liquidity_uses_base_units(cli_env, fake_rpc):
    fake_rpc.outcomes = [success()]

    assert await cli.main(["remove-liquidity", "10"]) == 0

    assert cli_env.manager.recent[-1].intent.args[1].value == 100_000_000


@pytest.mark.asyncio
async def test_on_chain_failure(cli_env, fake_rpc, capsys):
    fake_rpc.outcomes = [
        TransactionOutcome(
            TX_HASH,
            OutcomeStatus.FAILED,
            failure=ContractFailure("contract", 1, contract_id="CPOOL"),
        )
    ]

    assert await cli.main(["swap-sell", "1"]) == 1
    assert "Insufficient pool liquidity" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_confirmation_timeout(cli_env, capsys):
    cli_env.manager.policy = ConfirmationPolicy(0.0, 1.5, 0.0, 0.0)

    assert await cli.main(["swap-buy", "1"]) == 2
    assert f"dob-client outcome {TX_HASH}" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_pre_submission_error(cli_env, fake_rpc, capsys):
    fake_rpc.account_error = NetworkTransient("rpc down")

    assert await cli.main(["swap-buy", "1"]) == 1
    assert "rpc down" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_invalid_amount(cli_env, capsys):
    assert await cli.main(["swap-buy", "0"]) == 1
    assert cli_env.rpc.calls == []


@pytest.mark.asyncio
async def test_quote(cli_env, capsys):
    assert await cli.main(["quote", "buy", "5"]) == 0
    assert "5.00 USDC → ~4.90 DOB" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_snapshot(cli_env, capsys):
    assert await cli.main(["snapshot"]) == 0

    out = capsys.readouterr().out
    assert "Fair price:   1.00 USDC" in out
    assert "Default risk: 2.50%" in out
    assert "GNODE1" in out


@pytest.mark.asyncio
async def test_outcome(cli_env, fake_rpc, capsys):
    fake_rpc.outcomes = [replace(success(), result_code="txSUCCESS")]

    assert await cli.main(["outcome", TX_HASH]) == 0

    out = capsys.readouterr().out
    assert "SUCCESS" in out
    assert "ledger: 88" in out
