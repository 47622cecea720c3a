from __future__ import annotations

import asyncio
import logging

from sqlalchemy.orm import sessionmaker

from savepast.core.celery_app import celery
from savepast.core.config import Settings
from savepast.core.runtime import build_runtime

log = logging.getLogger("queue_tasks")


async def _drain(cfg: Settings | None, session_factory: sessionmaker | None, transport) -> dict:
    rt = build_runtime(cfg=cfg, session_factory=session_factory, transport=transport)
    try:
        res = await rt.processor.drain()
    finally:
        await rt.upstream.aclose()
        await rt.functions_http.aclose()
    return res.as_dict()


def drain_once(*, cfg: Settings | None = None, session_factory: sessionmaker | None = None, transport=None) -> dict:
    """Run one drain pass outside the gateway process."""

    out = asyncio.run(_drain(cfg, session_factory, transport))
    log.info("drain_operation_queue: processed=%s failed=%s remaining=%s", out["processed"], out["failed"], out["remaining"])
    return {"ok": True, **out}


@celery.task(name="savepast.tasks.queue_tasks.drain_operation_queue")
def drain_operation_queue() -> dict:
    """Replay queued operations from a worker process.

    The connectivity probe runs first; offline or empty queues return at once.
    """

    return drain_once()
