"""Command line interface for the DOB market client"""

import argparse
import asyncio
import sys
from typing import List, Optional

from .client import DobClient
from .config import settings
from .core.amounts import bps_to_percent, percent_to_bps, to_base_units, to_decimal_string
from .core.execution.errors import (
    ConfirmationTimeout,
    LedgerClientError,
    ObservationDetached,
    OnChainFailure,
    SignRejected,
)
from .core.execution.models import OperationResult, PendingOperation
from .core.execution.signer import KeypairSigner
from .core.quotes import QuoteDirection
from .core.sync import Snapshot
from .logging_config import setup_logging


MUTATIONS = {"swap-buy", "swap-sell", "add-liquidity", "remove-liquidity", "oracle-update"}


def build_client(signer: Optional[KeypairSigner] = None) -> DobClient:
    return DobClient(settings.to_ledger_config(), signer=signer)


def print_snapshot(snapshot: Snapshot) -> None:
    """Pretty print a snapshot"""
    print(f"\n📊 Snapshot (cycle {snapshot.cycle})")
    print("=" * 50)

    oracle = snapshot.oracle
    if oracle.value:
        stale = " ⚠️ stale" if oracle.is_stale else ""
        print(f"Fair price:   {to_decimal_string(oracle.value.fair_price)} USDC{stale}")
        print(f"Default risk: {bps_to_percent(oracle.value.risk_bps)}%")
    else:
        print(f"Oracle:       unavailable ({oracle.error})")

    pool = snapshot.pool
    if pool.value:
        print(f"Pool USDC:    {to_decimal_string(pool.value.usdc)}")
        print(f"Pool DOB:     {to_decimal_string(pool.value.dob)}")
        print(f"LP shares:    {to_decimal_string(pool.value.total_lp_shares)}")
    else:
        print(f"Pool:         unavailable ({pool.error})")

    if snapshot.user_address:
        print(f"\nUser {snapshot.user_address}")
        print("-" * 50)
        if snapshot.user.value:
            print(f"  USDC: {to_decimal_string(snapshot.user.value.usdc)}")
            print(f"  DOB:  {to_decimal_string(snapshot.user.value.dob)}")
            print(f"  LP:   {to_decimal_string(snapshot.user.value.lp_shares)}")
        else:
            print(f"  unavailable ({snapshot.user.error})")

    if snapshot.nodes:
        print("\nLiquidity nodes:")
        print("-" * 50)
        for address, state in snapshot.nodes.items():
            if state.value:
                print(f"  {address[:8]}…  USDC {to_decimal_string(state.value.usdc):>14}  "
                      f"DOB {to_decimal_string(state.value.dob):>14}")
            else:
                print(f"  {address[:8]}…  unavailable ({state.error})")


def print_result(result: OperationResult) -> None:
    print(f"✅ {result.method} confirmed in ledger {result.ledger}")
    print(f"   tx:  {result.tx_hash}")
    if result.fee is not None:
        print(f"   fee: {result.fee} stroops")
    if result.return_value is not None:
        print(f"   returned: {result.return_value}")


def _announce(op: PendingOperation) -> None:
    print(f"📤 Submitted {op.intent.method}: {op.tx_hash}")


async def cli_snapshot(client: DobClient, user: Optional[str]) -> int:
    if user:
        client.sync.bind_user(user)
    snapshot = await client.refresh_now()
    print_snapshot(snapshot)
    return 0


async def cli_quote(client: DobClient, direction: str, amount: str) -> int:
    amount_in = to_base_units(amount)
    quote = await client.estimate_quote(QuoteDirection(direction), amount_in)
    if quote is None:
        print("❌ No estimate available")
        return 1

    unit_in, unit_out = ("USDC", "DOB") if quote.direction == QuoteDirection.BUY else ("DOB", "USDC")
    print(f"💱 {to_decimal_string(quote.amount_in)} {unit_in} → ~{to_decimal_string(quote.amount_out)} {unit_out}")
    print(f"   fee: {bps_to_percent(quote.fee_bps)}% ({quote.source})")
    if quote.from_pool is not None:
        print(f"   from pool: {to_decimal_string(quote.from_pool)}  "
              f"from nodes: {to_decimal_string(quote.from_liquid_nodes or 0)}")
    return 0


async def cli_outcome(client: DobClient, tx_hash: str) -> int:
    outcome = await client.lookup_outcome(tx_hash)
    print(f"🔎 {tx_hash}: {outcome.status.value}")
    if outcome.ledger is not None:
        print(f"   ledger: {outcome.ledger}")
    if outcome.result_code:
        print(f"   result: {outcome.result_code}")
    if outcome.failure is not None:
        category = client.manager.classify(outcome.failure, None)
        print(f"   failure: {category.label} (code {outcome.failure.code})")
    return 0


async def cli_mutation(client: DobClient, args: argparse.Namespace, source: str) -> int:
    if args.command == "swap-buy":
        coro = client.submit_swap_buy(source, to_base_units(args.amount), on_submitted=_announce)
    elif args.command == "swap-sell":
        coro = client.submit_swap_sell(source, to_base_units(args.amount), on_submitted=_announce)
    elif args.command == "add-liquidity":
        coro = client.submit_add_liquidity(
            source, to_base_units(args.usdc), to_base_units(args.dob), on_submitted=_announce
        )
    elif args.command == "remove-liquidity":
        coro = client.submit_remove_liquidity(source, to_base_units(args.shares), on_submitted=_announce)
    else:
        coro = client.submit_oracle_update(
            source,
            to_base_units(args.fair_price),
            percent_to_bps(args.risk_percent),
            on_submitted=_announce,
        )

    try:
        result = await coro
    except OnChainFailure as e:
        print(f"❌ Failed on-chain: {e.category.label} (code {e.code})")
        print(f"   tx: {e.tx_hash}")
        return 1
    except (ConfirmationTimeout, ObservationDetached) as e:
        print(f"⏳ {e.message}")
        print(f"   check later with: dob-client outcome {e.tx_hash}")
        return 2

    print_result(result)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="DOB market client")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command")

    snapshot_parser = subparsers.add_parser("snapshot", help="Refresh and print the market snapshot")
    snapshot_parser.add_argument("--user", help="Also show balances for this account")

    quote_parser = subparsers.add_parser("quote", help="Estimate a swap")
    quote_parser.add_argument("direction", choices=[d.value for d in QuoteDirection])
    quote_parser.add_argument("amount", help="Input amount, e.g. 12.5")

    outcome_parser = subparsers.add_parser("outcome", help="Look up a submitted transaction")
    outcome_parser.add_argument("tx_hash", help="Transaction hash")

    buy_parser = subparsers.add_parser("swap-buy", help="Buy DOB with USDC")
    buy_parser.add_argument("amount", help="USDC to spend")

    sell_parser = subparsers.add_parser("swap-sell", help="Sell DOB for USDC")
    sell_parser.add_argument("amount", help="DOB to sell")

    add_parser = subparsers.add_parser("add-liquidity", help="Deposit USDC and DOB into the pool")
    add_parser.add_argument("usdc", help="USDC to deposit")
    add_parser.add_argument("dob", help="DOB to deposit")

    remove_parser = subparsers.add_parser("remove-liquidity", help="Burn LP shares")
    remove_parser.add_argument("shares", help="LP shares to burn, e.g. 10")

    oracle_parser = subparsers.add_parser("oracle-update", help="Publish new oracle parameters")
    oracle_parser.add_argument("fair_price", help="New fair price in USDC, e.g. 1.05")
    oracle_parser.add_argument("risk_percent", help="New default risk in percent, e.g. 2.5")

    return parser


async def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    setup_logging(args.log_level or "WARNING", console=True)

    signer = None
    if args.command in MUTATIONS:
        if not settings.has_signer:
            print("❌ SIGNER_SECRET is not set; mutations need a signing key")
            return 1
        try:
            signer = KeypairSigner(settings.signer_secret)
        except SignRejected as e:
            print(f"❌ {e.message}")
            return 1

    try:
        client = build_client(signer)
    except ValueError as e:
        print(f"❌ Configuration error: {e}")
        return 1

    try:
        if args.command == "snapshot":
            return await cli_snapshot(client, args.user)
        if args.command == "quote":
            return await cli_quote(client, args.direction, args.amount)
        if args.command == "outcome":
            return await cli_outcome(client, args.tx_hash)
        return await cli_mutation(client, args, signer.public_key)
    except LedgerClientError as e:
        print(f"❌ Error: {e}")
        return 1
    finally:
        await client.close()


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
