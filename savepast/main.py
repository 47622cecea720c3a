from __future__ import annotations

import logging
from typing import Any

import httpx
from fastapi import Depends, FastAPI, Request, Response
from redis import Redis
from sqlalchemy import text

from savepast.api.deps import get_client_id, get_runtime
from savepast.api.routers.connectivity import router as connectivity_router
from savepast.api.routers.operations import router as operations_router
from savepast.api.routers.queue import router as queue_router
from savepast.api.routers.worker import router as worker_router
from savepast.cache.messages import FetchRequest
from savepast.core.config import settings
from savepast.core.logging import configure_logging
from savepast.core.runtime import Runtime, build_runtime
from savepast.memory.object_store import minio_ready
from savepast.models.base import Base
from savepast.worker.dispatch import FetchEvent
from savepast.worker.strategies import network_fetch

configure_logging(settings.LOG_LEVEL)
log = logging.getLogger("app")

CONTROL_PREFIX = "/_sw"
PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def _check_database(rt: Runtime) -> bool:
    try:
        with rt.session_factory() as db:
            db.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


def _check_redis() -> bool:
    try:
        r = Redis.from_url(settings.REDIS_URL, socket_connect_timeout=1, socket_timeout=1)
        return bool(r.ping())
    except Exception:
        return False


def upstream_url(base: str, request: Request) -> str:
    url = base.rstrip("/") + request.url.path
    if request.url.query:
        url += "?" + request.url.query
    return url


def create_app(runtime: Runtime | None = None) -> FastAPI:
    app = FastAPI(title=settings.APP_NAME)
    app.state.runtime = runtime or build_runtime()

    @app.on_event("startup")
    async def _startup() -> None:
        rt: Runtime = app.state.runtime
        if rt.settings.DB_CREATE_ALL:
            import savepast.models.tables  # noqa: F401

            Base.metadata.create_all(bind=rt.session_factory.kw["bind"])
        await rt.start()
        log.info("Startup: worker state=%s online=%s", rt.worker.state.value, rt.monitor.is_online)

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        await app.state.runtime.close()

    @app.get(f"{CONTROL_PREFIX}/health")
    def health(rt: Runtime = Depends(get_runtime)) -> dict[str, Any]:
        deps = {
            "database": _check_database(rt),
            "redis": _check_redis(),
            "object_store": minio_ready(),
        }
        return {
            "ok": deps["database"],
            "deps": deps,
            "worker": rt.worker.state.value,
            "online": rt.monitor.is_online,
            "app": settings.APP_NAME,
        }

    app.include_router(worker_router, prefix=CONTROL_PREFIX, tags=["worker"])
    app.include_router(queue_router, prefix=f"{CONTROL_PREFIX}/queue", tags=["queue"])
    app.include_router(operations_router, prefix=f"{CONTROL_PREFIX}/operations", tags=["operations"])
    app.include_router(connectivity_router, prefix=f"{CONTROL_PREFIX}/connectivity", tags=["connectivity"])

    @app.api_route("/{path:path}", methods=PROXY_METHODS, include_in_schema=False)
    async def intercept(
        request: Request,
        path: str,
        rt: Runtime = Depends(get_runtime),
        client_id: str | None = Depends(get_client_id),
    ) -> Response:
        fetch_request = FetchRequest(
            url=upstream_url(rt.settings.UPSTREAM_BASE_URL, request),
            method=request.method,
            headers=dict(request.headers),
            mode=request.headers.get("sec-fetch-mode", "cors"),
            body=await request.body(),
        )

        resp = await rt.worker.dispatch(FetchEvent(request=fetch_request, client_id=client_id))
        if resp is None:
            # Not intercepted: plain pass-through, never cached.
            try:
                resp = await network_fetch(rt.upstream, fetch_request)
            except httpx.RequestError as e:
                log.warning("Pass-through %s %s failed: %s", request.method, fetch_request.url, type(e).__name__)
                return Response(content=b"Bad Gateway", status_code=502, media_type="text/plain")

        return Response(content=resp.body, status_code=resp.status, headers=resp.headers)

    return app


app = create_app()
