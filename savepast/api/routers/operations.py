from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from savepast.api.deps import get_runtime
from savepast.core.runtime import Runtime
from savepast.integrations.functions import APIError
from savepast.queue.store import InvalidOperationError

router = APIRouter()


@router.post("/{op_type}")
async def submit_operation(op_type: str, payload: dict, rt: Runtime = Depends(get_runtime)) -> dict:
    """Run a mutating operation now, or queue it when the network is unavailable."""

    try:
        res = await rt.gateway.submit(op_type, payload)
    except InvalidOperationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except APIError as e:
        raise HTTPException(
            status_code=502,
            detail={"error": str(e), "status_code": e.status_code, "details": e.details},
        )

    return {"status": res.status, "id": res.id, "result": res.result}
