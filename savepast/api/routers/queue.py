from __future__ import annotations

from fastapi import APIRouter, Depends

from savepast.api.deps import get_runtime
from savepast.core.audit import recent
from savepast.core.runtime import Runtime

router = APIRouter()


@router.get("")
def get_queue(rt: Runtime = Depends(get_runtime)) -> dict:
    ops = rt.queue_store.list()
    return {
        "queued_operations": [op.model_dump(mode="json") for op in ops],
        "has_queued_operations": bool(ops),
        "is_processing": rt.processor.is_processing,
        "is_online": rt.monitor.is_online,
        "failed_operations": recent(rt.session_factory, event_type="QUEUE_OPERATION_EXHAUSTED", limit=20),
    }


@router.post("/process")
async def process_queue(rt: Runtime = Depends(get_runtime)) -> dict:
    res = await rt.processor.drain()
    out = res.as_dict()
    out["queued_operations"] = [op.model_dump(mode="json") for op in rt.queue_store.list()]
    return out


@router.delete("")
def clear_queue(rt: Runtime = Depends(get_runtime)) -> dict:
    return {"cleared": rt.queue_store.clear()}
