from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx
from sqlalchemy.orm import sessionmaker

from savepast.cache.storage import CacheStorage
from savepast.connectivity.monitor import ConnectivityMonitor, http_probe
from savepast.core.config import Settings, settings as default_settings
from savepast.integrations.functions import FunctionsClient
from savepast.memory.object_store import store_operation_result
from savepast.queue.gateway import OperationGateway
from savepast.queue.processor import QueueProcessor
from savepast.queue.store import OperationQueueStore
from savepast.worker.dispatch import ServiceWorker
from savepast.worker.lifecycle import Lifecycle
from savepast.worker.strategies import StrategyEngine

log = logging.getLogger("runtime")

ROLES = ("static", "dynamic", "api")


@dataclass
class Runtime:
    """Every long-lived component of one gateway process, wired together."""

    settings: Settings
    session_factory: sessionmaker
    storage: CacheStorage
    upstream: httpx.AsyncClient
    functions_http: httpx.AsyncClient
    worker: ServiceWorker
    queue_store: OperationQueueStore
    functions: FunctionsClient
    monitor: ConnectivityMonitor
    processor: QueueProcessor
    gateway: OperationGateway

    async def start(self) -> None:
        await self.monitor.start()
        await self.worker.start()

        self.monitor.subscribe(self._drain_on_reconnect)
        self.monitor.start_polling(self.settings.CONNECTIVITY_POLL_INTERVAL_S)

        # Work left over from a previous run is replayed as soon as we are online.
        if self.monitor.is_online and self.queue_store.count():
            self.worker.spawn(self.processor.drain())

    async def close(self) -> None:
        await self.monitor.stop()
        await self.worker.wait_background()
        await self.upstream.aclose()
        await self.functions_http.aclose()

    async def _drain_on_reconnect(self) -> None:
        res = await self.processor.drain()
        if res.exhausted:
            log.warning("%s queued operations permanently failed after reconnect", len(res.exhausted))


def build_runtime(
    *,
    cfg: Settings | None = None,
    session_factory: sessionmaker | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Runtime:
    cfg = cfg or default_settings
    if session_factory is None:
        from savepast.core.db import SessionLocal

        session_factory = SessionLocal

    caches = {role: cfg.partition_name(role) for role in ROLES}

    storage = CacheStorage(session_factory)
    upstream = httpx.AsyncClient(transport=transport, timeout=cfg.NETWORK_TIMEOUT_S)
    functions_http = httpx.AsyncClient(transport=transport, timeout=cfg.FUNCTIONS_TIMEOUT_S)

    lifecycle = Lifecycle(
        storage=storage,
        client=upstream,
        origin=cfg.UPSTREAM_BASE_URL,
        static_assets=cfg.STATIC_ASSETS,
        cache_prefix=cfg.CACHE_PREFIX,
        cache_version=cfg.CACHE_VERSION,
        current_caches=list(caches.values()),
        static_cache=caches["static"],
    )
    worker = ServiceWorker(
        lifecycle=lifecycle,
        session_factory=session_factory,
        skip_waiting_on_install=cfg.SKIP_WAITING_ON_INSTALL,
    )
    worker.engine = StrategyEngine(
        storage=storage,
        client=upstream,
        spawn=worker.spawn,
        static_cache=caches["static"],
        dynamic_cache=caches["dynamic"],
        api_cache=caches["api"],
        api_prefixes=cfg.API_PREFIXES,
        static_extensions=cfg.STATIC_EXTENSIONS,
        shell_path=cfg.SHELL_PATH,
        offline_page_path=cfg.OFFLINE_PAGE_PATH,
    )

    queue_store = OperationQueueStore(session_factory, max_retries=cfg.QUEUE_MAX_RETRIES)
    functions = FunctionsClient(base_url=cfg.FUNCTIONS_BASE_URL, client=functions_http)
    monitor = ConnectivityMonitor(
        http_probe(
            upstream,
            cfg.CONNECTIVITY_PROBE_URL or cfg.UPSTREAM_BASE_URL,
            timeout_s=cfg.CONNECTIVITY_PROBE_TIMEOUT_S,
        ),
        was_offline_window_s=cfg.WAS_OFFLINE_WINDOW_S,
    )
    processor = QueueProcessor(
        store=queue_store,
        invoke=functions.invoke,
        is_online=monitor.check,
        result_sink=store_operation_result,
        session_factory=session_factory,
        max_retries=cfg.QUEUE_MAX_RETRIES,
    )
    gateway = OperationGateway(store=queue_store, functions=functions, monitor=monitor)

    return Runtime(
        settings=cfg,
        session_factory=session_factory,
        storage=storage,
        upstream=upstream,
        functions_http=functions_http,
        worker=worker,
        queue_store=queue_store,
        functions=functions,
        monitor=monitor,
        processor=processor,
        gateway=gateway,
    )
