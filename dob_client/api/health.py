from typing import Any, Dict

from fastapi import APIRouter, Depends

from ..client import DobClient
from .deps import get_client

router = APIRouter()


@router.get("/healthz")
async def health_check(client: DobClient = Depends(get_client)) -> Dict[str, Any]:
    """Health check endpoint that verifies RPC and synchronizer status"""
    rpc_status = await client.health_check()
    snapshot = client.get_snapshot()

    rpc_healthy = rpc_status.get("status") == "healthy"
    stale_fields = [
        name for name, state in (("oracle", snapshot.oracle), ("pool", snapshot.pool))
        if state.is_stale
    ]

    return {
        "status": "healthy" if rpc_healthy and not stale_fields else "degraded",
        "rpc": rpc_status,
        "sync": {
            "running": client.sync.is_running(),
            "cycle": snapshot.cycle,
            "refreshed_at": snapshot.refreshed_at.isoformat() if snapshot.refreshed_at else None,
            "stale_fields": stale_fields,
        },
    }
