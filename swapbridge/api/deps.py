from fastapi import HTTPException, Request

from ..runtime import SwapBridgeRuntime


def get_runtime(request: Request) -> SwapBridgeRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Runtime not started")
    return runtime
