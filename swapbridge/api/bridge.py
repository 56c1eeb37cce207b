import asyncio
import json
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from ..core.bridge.models import BridgeTransaction, TransactionNotFoundError
from ..core.quotes.models import Quote
from ..runtime import SwapBridgeRuntime
from .deps import get_runtime

router = APIRouter(prefix="/bridge")


class SubmitBridgeRequest(BaseModel):
    owner: str = Field(description="Wallet address submitting the bridge")
    requestKey: str = Field(description="requestKey returned by POST /quotes")


def _sse_event(event: str, payload: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(payload, ensure_ascii=False)}\n\n"


def _serialize(transactions: List[BridgeTransaction]) -> List[Dict[str, Any]]:
    return [tx.to_dict() for tx in transactions]


@router.post("/transactions")
async def submit_bridge(
    request: SubmitBridgeRequest,
    runtime: SwapBridgeRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    entry = await runtime.coordinator.cache.get(request.requestKey)
    if entry is None or not isinstance(entry.value, Quote):
        raise HTTPException(status_code=404, detail="Quote expired or unknown; request a new quote")

    try:
        transaction_id = await runtime.service.submit_bridge(entry.value, owner=request.owner)
    except RuntimeError as e:
        raise HTTPException(status_code=503, detail=str(e))

    tx = runtime.store.get(transaction_id, request.owner)
    return {"success": True, "transactionId": transaction_id, "transaction": tx.to_dict() if tx else None}


@router.get("/transactions")
async def list_transactions(
    owner: str = Query(..., description="Wallet address"),
    runtime: SwapBridgeRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    await runtime.store.ensure_loaded(owner)
    transactions = runtime.store.list(owner)
    return {
        "owner": owner.lower(),
        "pendingCount": sum(1 for tx in transactions if tx.is_pending),
        "transactions": _serialize(transactions),
    }


@router.get("/transactions/stream")
async def stream_transactions(
    request: Request,
    owner: str = Query(..., description="Wallet address"),
    max_events: Optional[int] = Query(None, ge=1, description="Close the stream after this many events"),
    runtime: SwapBridgeRuntime = Depends(get_runtime),
) -> StreamingResponse:
    """Server-Sent Events: the owner's full list, then one event per change."""

    await runtime.store.ensure_loaded(owner)
    queue: "asyncio.Queue[List[BridgeTransaction]]" = asyncio.Queue()
    unsubscribe = runtime.store.subscribe(owner, queue.put_nowait)

    async def events() -> AsyncIterator[str]:
        sent = 0
        try:
            yield _sse_event("transactions", _serialize(runtime.store.list(owner)))
            sent += 1
            while max_events is None or sent < max_events:
                try:
                    transactions = await asyncio.wait_for(queue.get(), timeout=15.0)
                except asyncio.TimeoutError:
                    if await request.is_disconnected():
                        return
                    yield ": keep-alive\n\n"
                    continue
                yield _sse_event("transactions", _serialize(transactions))
                sent += 1
        finally:
            unsubscribe()

    return StreamingResponse(events(), media_type="text/event-stream", headers={"Cache-Control": "no-cache"})


@router.post("/transactions/clear")
async def clear_history(
    owner: str = Query(..., description="Wallet address"),
    runtime: SwapBridgeRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    removed = await runtime.store.clear_history(owner)
    return {"success": True, "removed": removed}


@router.post("/transactions/{transaction_id}/refresh")
async def refresh_transaction(
    transaction_id: str,
    owner: str = Query(..., description="Wallet address"),
    runtime: SwapBridgeRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    await runtime.store.ensure_loaded(owner)
    try:
        tx = await runtime.service.refresh(transaction_id, owner)
    except TransactionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True, "transaction": tx.to_dict() if tx else None}
