import pytest

from dob_client.core import intents
from dob_client.core.execution.errors import InvalidAmount
from dob_client.core.execution.models import ArgKind

from fakes import ORACLE, POOL, USER


def test_swap_buy_encoding():
    intent = intents.swap_buy(POOL, USER, 50_000_000)

    assert intent.contract == POOL
    assert intent.method == "swap_buy"
    assert [(arg.kind, arg.value) for arg in intent.args] == [
        (ArgKind.ADDRESS, USER),
        (ArgKind.I128, 50_000_000),
    ]


def test_add_liquidity_encoding():
    intent = intents.add_liquidity(POOL, USER, 1, 2)

    assert intent.method == "add_liquidity"
    assert [arg.kind for arg in intent.args] == [ArgKind.ADDRESS, ArgKind.I128, ArgKind.I128]


def test_oracle_update_encoding():
    intent = intents.oracle_update(ORACLE, 10_500_000, 250)

    assert intent.method == "update"
    assert [(arg.kind, arg.value) for arg in intent.args] == [
        (ArgKind.I128, 10_500_000),
        (ArgKind.U32, 250),
    ]


@pytest.mark.parametrize(
    "build",
    [
        lambda: intents.swap_buy(POOL, USER, 0),
        lambda: intents.swap_sell(POOL, USER, -5),
        lambda: intents.add_liquidity(POOL, USER, 10, 0),
        lambda: intents.remove_liquidity(POOL, USER, 0),
        lambda: intents.oracle_update(ORACLE, 0, 100),
        lambda: intents.oracle_update(ORACLE, 10_000_000, 10_001),
        lambda: intents.oracle_update(ORACLE, 10_000_000, -1),
        lambda: intents.swap_buy(POOL, USER, "5"),
    ],
)
def test_preconditions_raise_before_network(build):
    with pytest.raises(InvalidAmount):
        build()


def test_risk_bounds_are_inclusive():
    assert intents.oracle_update(ORACLE, 1, 0).args[1].value == 0
    assert intents.oracle_update(ORACLE, 1, 10_000).args[1].value == 10_000


def test_read_key_distinguishes_arguments():
    a = intents.balance(POOL, "GA")
    b = intents.balance(POOL, "GB")

    assert a.read_key != b.read_key
    assert a.read_key == intents.balance(POOL, "GA").read_key
