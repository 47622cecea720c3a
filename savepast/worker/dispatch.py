from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import sessionmaker

from savepast.cache.messages import FetchRequest, FetchResponse
from savepast.core.audit import record
from savepast.worker.lifecycle import InstallError, Lifecycle, State
from savepast.worker.strategies import StrategyEngine

log = logging.getLogger("worker")

SKIP_WAITING = "SKIP_WAITING"


@dataclass(frozen=True)
class InstallEvent:
    kind: str = "install"


@dataclass(frozen=True)
class ActivateEvent:
    kind: str = "activate"


@dataclass(frozen=True)
class FetchEvent:
    request: FetchRequest
    client_id: str | None = None
    kind: str = "fetch"


@dataclass(frozen=True)
class MessageEvent:
    data: dict = field(default_factory=dict)
    kind: str = "message"


class ServiceWorker:
    """Dispatches install/activate/fetch/message events to their handlers.

    The host drives it: it calls start() once, then dispatch(FetchEvent(...)) per
    request. A fetch handler returning None means "not intercepted" and the host
    should pass the request through to the network itself.
    """

    def __init__(
        self,
        *,
        lifecycle: Lifecycle,
        engine: StrategyEngine | None = None,
        session_factory: sessionmaker | None = None,
        skip_waiting_on_install: bool = True,
    ) -> None:
        self.lifecycle = lifecycle
        self.engine = engine
        self.session_factory = session_factory
        self.skip_waiting_on_install = skip_waiting_on_install
        # Serves the last activated generation until this one activates.
        self.fallback_engine: StrategyEngine | None = None
        self._background: set[asyncio.Task] = set()
        self._handlers: dict[str, Callable[[Any], Awaitable[Any]]] = {
            "install": self._on_install,
            "activate": self._on_activate,
            "fetch": self._on_fetch,
            "message": self._on_message,
        }

    @property
    def state(self) -> State:
        return self.lifecycle.state

    async def dispatch(self, event: Any) -> Any:
        handler = self._handlers.get(getattr(event, "kind", ""))
        if handler is None:
            raise ValueError(f"No handler for event kind={getattr(event, 'kind', None)!r}")
        return await handler(event)

    async def start(self) -> State:
        """Install, then activate right away when waiting is skipped."""

        try:
            await self.dispatch(InstallEvent())
        except InstallError:
            return self.state
        await self._activate_if_allowed()
        return self.state

    def spawn(self, coro: Awaitable) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def wait_background(self) -> None:
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _on_install(self, event: InstallEvent) -> None:
        try:
            await self.lifecycle.install()
        except InstallError as e:
            self._audit("WORKER_INSTALL_FAILED", "ERROR", str(e), {})
            self._keep_previous_generation()
            raise
        if self.skip_waiting_on_install:
            self.lifecycle.skip_waiting()
        else:
            self._keep_previous_generation()

    async def _on_activate(self, event: ActivateEvent) -> list[str]:
        deleted = await self.lifecycle.activate()
        self.fallback_engine = None
        for name in deleted:
            self._audit("CACHE_PARTITION_DELETED", "INFO", name, {"partition": name})
        return deleted

    async def _on_fetch(self, event: FetchEvent) -> FetchResponse | None:
        if event.client_id:
            self.lifecycle.register_client(event.client_id)
        engine = self.engine if self.lifecycle.is_active else self.fallback_engine
        if engine is None:
            return None
        return await engine.handle(event.request)

    async def _on_message(self, event: MessageEvent) -> dict:
        data = event.data or {}
        if data.get("type") == SKIP_WAITING:
            self.lifecycle.skip_waiting()
            await self._activate_if_allowed()
        else:
            log.warning("Ignoring unknown control message: %s", data.get("type"))
        return {"state": self.state.value}

    async def _activate_if_allowed(self) -> None:
        if self.lifecycle.state == State.INSTALLED and self.lifecycle.skip_waiting_requested:
            await self.dispatch(ActivateEvent())

    def _keep_previous_generation(self) -> None:
        if self.engine is None:
            return
        names = self.lifecycle.previous_generation()
        if not names:
            return
        self.fallback_engine = self.engine.with_partitions(names)
        log.warning("Previous generation keeps serving from %s", self.fallback_engine.static_cache)

    def _audit(self, event_type: str, severity: str, message: str, context: dict) -> None:
        if self.session_factory is None:
            return
        record(self.session_factory, event_type=event_type, severity=severity, message=message, context=context)
