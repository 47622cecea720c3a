from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from savepast.api.deps import get_runtime
from savepast.core.runtime import Runtime

router = APIRouter()


@router.get("")
def get_connectivity(rt: Runtime = Depends(get_runtime)) -> dict:
    return rt.monitor.snapshot()


@router.post("")
async def report_connectivity(payload: dict, rt: Runtime = Depends(get_runtime)) -> dict:
    # Clients forward their platform online/offline events here.
    online = (payload or {}).get("online")
    if not isinstance(online, bool):
        raise HTTPException(status_code=400, detail="Missing boolean 'online'")
    rt.monitor.set_online(online)
    return rt.monitor.snapshot()
