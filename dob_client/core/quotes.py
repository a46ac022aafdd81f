"""
Quote Estimator

Buy quotes are computed locally from the oracle fair price; sell quotes
come from the pool's own ``quote_swap_sell``. Both fail softly: an estimate
that cannot be produced is ``None``, never an exception.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional

from . import intents
from .amounts import BPS_DENOMINATOR, STROOPS_PER_UNIT
from .execution.errors import LedgerClientError
from .execution.models import ContractRef


logger = logging.getLogger(__name__)

BUY_FEE_BPS = 100
OPERATOR_SHARE_PERCENT = 99


class QuoteDirection(str, Enum):
    BUY = "buy"     # USDC -> DOB
    SELL = "sell"   # DOB -> USDC


@dataclass
class Quote:
    """Estimated swap output. Amounts in base units."""
    direction: QuoteDirection
    amount_in: int
    amount_out: int
    fee_bps: int
    source: str                                  # "local" or "remote"
    fair_price: Optional[int] = None
    from_pool: Optional[int] = None
    from_liquid_nodes: Optional[int] = None
    quoted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def estimate_buy_output(usdc_in: int, fair_price: int) -> int:
    """
    DOB received for ``usdc_in`` at ``fair_price`` (both base units).

    1% DEX fee, then 99% of the remainder goes to the operator; every step floors.
    Estimate only: the pool may settle differently.
    """
    if fair_price <= 0:
        raise ValueError(f"fair_price must be positive, got {fair_price}")
    fee = usdc_in * BUY_FEE_BPS // BPS_DENOMINATOR
    after_fee = usdc_in - fee
    operator_amount = after_fee * OPERATOR_SHARE_PERCENT // 100
    return operator_amount * STROOPS_PER_UNIT // fair_price


def _parse_sell_quote(token_in: int, value: Any) -> Quote:
    if not isinstance(value, Mapping):
        raise TypeError(f"expected a struct, got {type(value).__name__}")
    return Quote(
        direction=QuoteDirection.SELL,
        amount_in=token_in,
        amount_out=int(value["usdc_out"]),
        fee_bps=int(value["total_fee_bps"]),
        source="remote",
        from_pool=int(value["from_pool"]),
        from_liquid_nodes=int(value["from_liquid_nodes"]),
    )


class QuoteEstimator:
    def __init__(self, manager, oracle: ContractRef, pool: ContractRef):
        self.manager = manager
        self.oracle = oracle
        self.pool = pool

    async def quote(self, direction: QuoteDirection, amount_in: int) -> Optional[Quote]:
        if direction == QuoteDirection.BUY:
            return await self.quote_buy(amount_in)
        return await self.quote_sell(amount_in)

    async def quote_buy(self, usdc_in: int) -> Optional[Quote]:
        if usdc_in <= 0:
            return None
        # Fair price is read fresh for every quote
        try:
            fair_price = int(await self.manager.read(intents.fair_price(self.oracle)))
        except (LedgerClientError, TypeError, ValueError) as e:
            logger.warning(f"Buy quote unavailable: cannot read fair price: {e}")
            return None
        if fair_price <= 0:
            logger.warning(f"Buy quote unavailable: oracle fair price is {fair_price}")
            return None

        return Quote(
            direction=QuoteDirection.BUY,
            amount_in=usdc_in,
            amount_out=estimate_buy_output(usdc_in, fair_price),
            fee_bps=BUY_FEE_BPS,
            source="local",
            fair_price=fair_price,
        )

    async def quote_sell(self, token_in: int) -> Optional[Quote]:
        if token_in <= 0:
            return None
        try:
            value = await self.manager.read(intents.quote_swap_sell(self.pool, token_in))
            return _parse_sell_quote(token_in, value)
        except LedgerClientError as e:
            logger.warning(f"Sell quote unavailable: {e}")
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Sell quote unavailable: unexpected quote_swap_sell result: {e}")
        return None
