from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..client import DobClient
from ..core.execution.errors import FailureCategory, NetworkTransient, ProtocolViolation
from ..core.execution.models import OutcomeStatus
from .deps import get_client


router = APIRouter(prefix="/transactions")


class TransactionResponse(BaseModel):
    tx_hash: str
    status: OutcomeStatus
    ledger: Optional[int] = None
    created_at: Optional[int] = None
    fee_charged: Optional[int] = None
    result_code: Optional[str] = None
    return_value: Any = None
    failure_category: Optional[FailureCategory] = None
    failure_label: Optional[str] = None
    failure_code: Any = None


@router.get("/{tx_hash}")
async def get_transaction(tx_hash: str, client: DobClient = Depends(get_client)) -> TransactionResponse:
    try:
        outcome = await client.lookup_outcome(tx_hash)
    except NetworkTransient as e:
        raise HTTPException(status_code=503, detail=e.message)
    except ProtocolViolation as e:
        raise HTTPException(status_code=502, detail=e.message)

    response = TransactionResponse(
        tx_hash=outcome.tx_hash,
        status=outcome.status,
        ledger=outcome.ledger,
        created_at=outcome.created_at,
        fee_charged=outcome.fee_charged,
        result_code=outcome.result_code,
        return_value=outcome.return_value,
    )
    if outcome.status == OutcomeStatus.FAILED:
        category = client.manager.classify(outcome.failure, None)
        response.failure_category = category
        response.failure_label = category.label
        response.failure_code = outcome.failure.code if outcome.failure else None
    return response
