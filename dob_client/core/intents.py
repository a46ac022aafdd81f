"""
Contract call encodings.

Each function returns an ``OperationIntent`` with a fixed method name and
typed arguments. Mutation builders check their preconditions and raise
``InvalidAmount`` before anything touches the network.
"""

from .amounts import BPS_DENOMINATOR
from .execution.errors import InvalidAmount
from .execution.models import ContractArg, ContractRef, OperationIntent


def _require_positive(name: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidAmount(f"{name} must be an integer amount in base units, got {value!r}")
    if value <= 0:
        raise InvalidAmount(f"{name} must be greater than zero, got {value}")
    return value


# Oracle reads

def fair_price(oracle: ContractRef) -> OperationIntent:
    return OperationIntent(oracle, "fair_price", description="Read oracle fair price")


def default_risk(oracle: ContractRef) -> OperationIntent:
    return OperationIntent(oracle, "default_risk", description="Read oracle default risk")


def oracle_updater(oracle: ContractRef) -> OperationIntent:
    return OperationIntent(oracle, "updater", description="Read oracle updater")


# Pool reads

def reserves(pool: ContractRef) -> OperationIntent:
    return OperationIntent(pool, "get_reserves", description="Read pool reserves")


def total_lp_shares(pool: ContractRef) -> OperationIntent:
    return OperationIntent(pool, "get_total_lp_shares", description="Read total LP shares")


def lp_shares(pool: ContractRef, provider: str) -> OperationIntent:
    return OperationIntent(
        pool,
        "get_lp_shares",
        (ContractArg.address(provider),),
        description="Read LP shares",
    )


def liquid_nodes(pool: ContractRef) -> OperationIntent:
    return OperationIntent(pool, "get_liquid_nodes", description="List liquidity nodes")


def quote_swap_sell(pool: ContractRef, token_in: int) -> OperationIntent:
    return OperationIntent(
        pool,
        "quote_swap_sell",
        (ContractArg.i128(token_in),),
        description="Quote a sell",
    )


# Token reads

def balance(asset: ContractRef, account: str) -> OperationIntent:
    return OperationIntent(
        asset,
        "balance",
        (ContractArg.address(account),),
        description=f"Read {asset.kind.value} balance",
    )


# Mutations

def oracle_update(oracle: ContractRef, new_fair_price: int, new_risk_bps: int) -> OperationIntent:
    _require_positive("new_fair_price", new_fair_price)
    if isinstance(new_risk_bps, bool) or not isinstance(new_risk_bps, int):
        raise InvalidAmount(f"new_risk_bps must be an integer, got {new_risk_bps!r}")
    if not 0 <= new_risk_bps <= BPS_DENOMINATOR:
        raise InvalidAmount(f"new_risk_bps must be between 0 and {BPS_DENOMINATOR}, got {new_risk_bps}")
    return OperationIntent(
        oracle,
        "update",
        (ContractArg.i128(new_fair_price), ContractArg.u32(new_risk_bps)),
        description="Update oracle parameters",
    )


def swap_buy(pool: ContractRef, buyer: str, usdc_in: int) -> OperationIntent:
    _require_positive("usdc_in", usdc_in)
    return OperationIntent(
        pool,
        "swap_buy",
        (ContractArg.address(buyer), ContractArg.i128(usdc_in)),
        description="Buy DOB with USDC",
    )


def swap_sell(pool: ContractRef, seller: str, token_in: int) -> OperationIntent:
    _require_positive("token_in", token_in)
    return OperationIntent(
        pool,
        "swap_sell",
        (ContractArg.address(seller), ContractArg.i128(token_in)),
        description="Sell DOB for USDC",
    )


def add_liquidity(pool: ContractRef, provider: str, usdc_in: int, token_in: int) -> OperationIntent:
    _require_positive("usdc_in", usdc_in)
    _require_positive("token_in", token_in)
    return OperationIntent(
        pool,
        "add_liquidity",
        (ContractArg.address(provider), ContractArg.i128(usdc_in), ContractArg.i128(token_in)),
        description="Add liquidity",
    )


def remove_liquidity(pool: ContractRef, provider: str, lp_shares_in: int) -> OperationIntent:
    _require_positive("lp_shares_in", lp_shares_in)
    return OperationIntent(
        pool,
        "remove_liquidity",
        (ContractArg.address(provider), ContractArg.i128(lp_shares_in)),
        description="Remove liquidity",
    )
