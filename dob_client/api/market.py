from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from ..client import DobClient
from ..core.amounts import bps_to_percent, to_base_units, to_decimal_string
from ..core.execution.errors import InvalidAmount
from ..core.quotes import QuoteDirection
from ..core.sync import Snapshot
from .deps import get_client


router = APIRouter()


class QuoteResponse(BaseModel):
    direction: QuoteDirection
    amount_in: int = Field(description="Input amount in base units")
    amount_out: int = Field(description="Estimated output in base units")
    amount_out_display: str
    fee_bps: int
    fee_percent: str
    source: str = Field(description="local (oracle formula) or remote (pool quote)")
    fair_price: Optional[int] = None
    from_pool: Optional[int] = None
    from_liquid_nodes: Optional[int] = None
    quoted_at: datetime


def _with_display(snapshot: Snapshot) -> Dict[str, Any]:
    data = snapshot.to_dict()
    display: Dict[str, Any] = {}
    if snapshot.oracle.value:
        display["fair_price"] = to_decimal_string(snapshot.oracle.value.fair_price)
        display["risk_percent"] = bps_to_percent(snapshot.oracle.value.risk_bps)
    if snapshot.pool.value:
        display["pool_usdc"] = to_decimal_string(snapshot.pool.value.usdc)
        display["pool_dob"] = to_decimal_string(snapshot.pool.value.dob)
    if snapshot.user.value:
        display["user_usdc"] = to_decimal_string(snapshot.user.value.usdc)
        display["user_dob"] = to_decimal_string(snapshot.user.value.dob)
    data["display"] = display
    return data


@router.get("/snapshot")
async def get_snapshot(client: DobClient = Depends(get_client)) -> Dict[str, Any]:
    return _with_display(client.get_snapshot())


@router.post("/snapshot/refresh")
async def refresh_snapshot(client: DobClient = Depends(get_client)) -> Dict[str, Any]:
    return _with_display(await client.refresh_now())


@router.get("/quote")
async def get_quote(
    direction: QuoteDirection = Query(description="buy (USDC -> DOB) or sell (DOB -> USDC)"),
    amount: str = Query(description="Human decimal input amount, e.g. 12.5"),
    client: DobClient = Depends(get_client),
) -> QuoteResponse:
    try:
        amount_in = to_base_units(amount)
    except InvalidAmount as e:
        raise HTTPException(status_code=422, detail=e.message)
    if amount_in <= 0:
        raise HTTPException(status_code=422, detail="Amount must be greater than zero")

    quote = await client.estimate_quote(direction, amount_in)
    if quote is None:
        raise HTTPException(status_code=503, detail="No estimate available")

    return QuoteResponse(
        direction=quote.direction,
        amount_in=quote.amount_in,
        amount_out=quote.amount_out,
        amount_out_display=to_decimal_string(quote.amount_out),
        fee_bps=quote.fee_bps,
        fee_percent=bps_to_percent(quote.fee_bps),
        source=quote.source,
        fair_price=quote.fair_price,
        from_pool=quote.from_pool,
        from_liquid_nodes=quote.from_liquid_nodes,
        quoted_at=quote.quoted_at,
    )
