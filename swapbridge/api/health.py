from typing import Any, Dict

from fastapi import APIRouter, Depends

from ..runtime import SwapBridgeRuntime
from .deps import get_runtime

router = APIRouter()


@router.get("/healthz")
async def health_check(runtime: SwapBridgeRuntime = Depends(get_runtime)) -> Dict[str, Any]:
    """Runtime status, provider readiness, active polls and request counters"""

    details = await runtime.health()
    provider_status = details["providers"]

    ready_providers = sum(
        1 for status in provider_status.values()
        if status.get("status") in ("ready", "healthy")
    )

    return {
        "status": "healthy" if details["running"] and ready_providers > 0 else "degraded",
        "ready_providers": ready_providers,
        "total_providers": len(provider_status),
        **details,
    }
