from __future__ import annotations

from fastapi import APIRouter, Depends

from savepast.api.deps import get_runtime
from savepast.core.runtime import Runtime
from savepast.core.security import require_control_token
from savepast.worker.dispatch import MessageEvent

router = APIRouter()


@router.get("/status")
def worker_status(rt: Runtime = Depends(get_runtime)) -> dict:
    lc = rt.worker.lifecycle
    return {
        "state": lc.state.value,
        "cache_version": rt.settings.CACHE_VERSION,
        "caches": rt.storage.keys(),
        "update_waiting": lc.update_waiting,
        "controlled_clients": len(lc.controlled_clients),
        "last_error": lc.last_error,
        "fallback_cache": rt.worker.fallback_engine.static_cache if rt.worker.fallback_engine else None,
    }


@router.post("/message", dependencies=[Depends(require_control_token)])
async def post_message(payload: dict, rt: Runtime = Depends(get_runtime)) -> dict:
    return await rt.worker.dispatch(MessageEvent(data=payload or {}))
