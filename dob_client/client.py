"""
DOB market client.

Wires the RPC client, lifecycle manager, quote estimator, balance resolver
and synchronizer together from one ``LedgerConfig``.

Usage:
    async with DobClient(settings.to_ledger_config(), signer=KeypairSigner(secret)) as client:
        quote = await client.estimate_quote(QuoteDirection.BUY, to_base_units("5"))
        result = await client.submit_swap_buy(buyer, to_base_units("5"))
"""

import asyncio
import logging
from typing import Optional

from .config import LedgerConfig
from .core import intents
from .core.balances import BalanceResolver
from .core.execution.lifecycle import SubmittedCallback, TransactionLifecycleManager
from .core.execution.models import OperationIntent, OperationResult, TransactionOutcome
from .core.execution.signer import Signer
from .core.quotes import Quote, QuoteDirection, QuoteEstimator
from .core.sync import Snapshot, StateSynchronizer
from .providers.base import LedgerRpc
from .providers.soroban import SorobanRpcClient
from .providers.xdr import EnvelopeBuilder


logger = logging.getLogger(__name__)


class DobClient:
    def __init__(
        self,
        config: LedgerConfig,
        signer: Optional[Signer] = None,
        rpc: Optional[LedgerRpc] = None,
        builder: Optional[EnvelopeBuilder] = None,
    ):
        self.config = config
        self.rpc = rpc or SorobanRpcClient.from_config(config)
        self.builder = builder or EnvelopeBuilder(
            config.network_passphrase,
            placeholder_fee=config.placeholder_fee,
            inclusion_fee=config.inclusion_fee,
            timeout_seconds=config.tx_timeout_seconds,
        )
        self.manager = TransactionLifecycleManager(
            self.rpc,
            self.builder,
            signer=signer,
            policy=config.confirmation,
            registry=config.registry(),
        )
        self.balances = BalanceResolver(self.manager, config.pool)
        self.quotes = QuoteEstimator(self.manager, config.oracle, config.pool)
        self.sync = StateSynchronizer(self.manager, config, balances=self.balances)

    async def __aenter__(self) -> "DobClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def start(self) -> None:
        await self.sync.start()

    async def close(self) -> None:
        await self.sync.stop()
        close = getattr(self.rpc, "close", None)
        if close is not None:
            await close()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_snapshot(self) -> Snapshot:
        return self.sync.snapshot

    async def refresh_now(self) -> Snapshot:
        return await self.sync.refresh_now()

    async def estimate_quote(self, direction: QuoteDirection, amount_in: int) -> Optional[Quote]:
        return await self.quotes.quote(direction, amount_in)

    async def lookup_outcome(self, tx_hash: str) -> TransactionOutcome:
        return await self.manager.lookup_outcome(tx_hash)

    async def is_oracle_updater(self, address: str) -> bool:
        updater = await self.manager.read(intents.oracle_updater(self.config.oracle))
        return updater == address

    async def health_check(self):
        return await self.rpc.health_check()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def _submit(
        self,
        intent: OperationIntent,
        source: str,
        cancel: Optional[asyncio.Event],
        on_submitted: Optional[SubmittedCallback],
    ) -> OperationResult:
        result = await self.manager.execute(intent, source, cancel=cancel, on_submitted=on_submitted)
        logger.info(f"{intent.description} confirmed in ledger {result.ledger} ({result.tx_hash})")
        if self.sync.is_running():
            self.sync.request_refresh()
        return result

    async def submit_oracle_update(
        self,
        updater: str,
        new_fair_price: int,
        new_risk_bps: int,
        cancel: Optional[asyncio.Event] = None,
        on_submitted: Optional[SubmittedCallback] = None,
    ) -> OperationResult:
        intent = intents.oracle_update(self.config.oracle, new_fair_price, new_risk_bps)
        return await self._submit(intent, updater, cancel, on_submitted)

    async def submit_swap_buy(
        self,
        buyer: str,
        usdc_in: int,
        cancel: Optional[asyncio.Event] = None,
        on_submitted: Optional[SubmittedCallback] = None,
    ) -> OperationResult:
        intent = intents.swap_buy(self.config.pool, buyer, usdc_in)
        return await self._submit(intent, buyer, cancel, on_submitted)

    async def submit_swap_sell(
        self,
        seller: str,
        token_in: int,
        cancel: Optional[asyncio.Event] = None,
        on_submitted: Optional[SubmittedCallback] = None,
    ) -> OperationResult:
        intent = intents.swap_sell(self.config.pool, seller, token_in)
        return await self._submit(intent, seller, cancel, on_submitted)

    async def submit_add_liquidity(
        self,
        provider: str,
        usdc_in: int,
        token_in: int,
        cancel: Optional[asyncio.Event] = None,
        on_submitted: Optional[SubmittedCallback] = None,
    ) -> OperationResult:
        intent = intents.add_liquidity(self.config.pool, provider, usdc_in, token_in)
        return await self._submit(intent, provider, cancel, on_submitted)

    async def submit_remove_liquidity(
        self,
        provider: str,
        lp_shares_in: int,
        cancel: Optional[asyncio.Event] = None,
        on_submitted: Optional[SubmittedCallback] = None,
    ) -> OperationResult:
        intent = intents.remove_liquidity(self.config.pool, provider, lp_shares_in)
        return await self._submit(intent, provider, cancel, on_submitted)
