"""
Fixtures shared across the test suite. Fakes live in fakes.py.
"""

from typing import Callable

import pytest

from dob_client.config import LedgerConfig
from dob_client.core.execution.lifecycle import TransactionLifecycleManager
from dob_client.core.execution.models import ConfirmationPolicy

from fakes import ORACLE, POOL, TOKEN, USDC, USER, FakeBuilder, FakeReader, FakeRpc, FakeSigner


@pytest.fixture
def fake_rpc() -> FakeRpc:
    return FakeRpc()


@pytest.fixture
def fake_signer() -> FakeSigner:
    return FakeSigner()


@pytest.fixture
def instant_policy() -> ConfirmationPolicy:
    """Polls back-to-back with a generous ceiling."""
    return ConfirmationPolicy(
        initial_interval_seconds=0.0,
        backoff_factor=1.5,
        max_interval_seconds=0.0,
        timeout_seconds=5.0,
    )


@pytest.fixture
def manager(fake_rpc, fake_signer, instant_policy) -> TransactionLifecycleManager:
    return TransactionLifecycleManager(
        fake_rpc,
        FakeBuilder(),
        signer=fake_signer,
        policy=instant_policy,
        registry={ref.address: ref.kind for ref in (ORACLE, POOL, TOKEN, USDC)},
    )


@pytest.fixture
def ledger_config(instant_policy) -> LedgerConfig:
    return LedgerConfig(
        rpc_url="http://rpc.test",
        network_passphrase=FakeBuilder.network_passphrase,
        oracle=ORACLE,
        pool=POOL,
        token=TOKEN,
        usdc=USDC,
        liquidity_nodes=("GNODE1", "GNODE2"),
        user_address=USER,
        refresh_interval_seconds=30.0,
        confirmation=instant_policy,
    )


@pytest.fixture
def make_reader() -> Callable[..., FakeReader]:
    return FakeReader
