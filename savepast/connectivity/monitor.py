from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime

import httpx

from savepast.util.time import now_utc

log = logging.getLogger("connectivity")

Probe = Callable[[], Awaitable[bool]]
Listener = Callable[[], Awaitable[None]]


def http_probe(client: httpx.AsyncClient, url: str, *, timeout_s: float = 3.0) -> Probe:
    """Online means the URL answered at all; any HTTP status counts."""

    async def _probe() -> bool:
        try:
            await client.head(url, timeout=timeout_s)
            return True
        except httpx.TransportError:
            return False

    return _probe


class ConnectivityMonitor:
    """Tracks online/offline transitions.

    was_offline and last_online are for status display only; anything that
    needs a reliable answer calls check(), which probes again.
    """

    def __init__(self, probe: Probe, *, was_offline_window_s: float = 5.0) -> None:
        self.probe = probe
        self.was_offline_window_s = was_offline_window_s

        self.is_online = True
        self.was_offline = False
        self.last_online: datetime | None = None

        self._listeners: list[Listener] = []
        self._tasks: set[asyncio.Task] = set()
        self._clear_handle: asyncio.TimerHandle | None = None
        self._poll_task: asyncio.Task | None = None

    def subscribe(self, listener: Listener) -> None:
        """Register a coroutine function run on every offline -> online transition."""
        self._listeners.append(listener)

    async def start(self) -> bool:
        online = await self.probe()
        self.is_online = online
        if online:
            self.last_online = now_utc()
        log.info("Initial connectivity: %s", "online" if online else "offline")
        return online

    async def check(self) -> bool:
        online = await self.probe()
        self.set_online(online)
        return online

    def set_online(self, online: bool) -> None:
        if online:
            self.handle_online()
        else:
            self.handle_offline()

    def handle_online(self) -> None:
        was_online = self.is_online
        self.is_online = True
        self.last_online = now_utc()
        if was_online:
            return

        log.info("Connection restored")
        self.was_offline = True
        loop = asyncio.get_running_loop()
        if self._clear_handle is not None:
            self._clear_handle.cancel()
        self._clear_handle = loop.call_later(self.was_offline_window_s, self._clear_was_offline)

        for listener in self._listeners:
            task = asyncio.ensure_future(listener())
            self._tasks.add(task)
            task.add_done_callback(self._on_listener_done)

    def handle_offline(self) -> None:
        if self.is_online:
            log.info("Connection lost")
        self.is_online = False

    def snapshot(self) -> dict:
        return {"is_online": self.is_online, "was_offline": self.was_offline, "last_online": self.last_online}

    def start_polling(self, interval_s: float) -> None:
        if interval_s <= 0 or self._poll_task is not None:
            return
        self._poll_task = asyncio.ensure_future(self._poll(interval_s))

    async def stop(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None
        if self._clear_handle is not None:
            self._clear_handle.cancel()
            self._clear_handle = None
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def wait_listeners(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _poll(self, interval_s: float) -> None:
        while True:
            await asyncio.sleep(interval_s)
            await self.check()

    def _clear_was_offline(self) -> None:
        self.was_offline = False
        self._clear_handle = None

    def _on_listener_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log.error("Reconnect listener failed: %s", task.exception())
