from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from savepast.connectivity.monitor import ConnectivityMonitor
from savepast.integrations.functions import FunctionsClient
from savepast.queue.store import OperationQueueStore

log = logging.getLogger("queue.gateway")


@dataclass(frozen=True)
class SubmitResult:
    status: str  # DONE | QUEUED
    id: str | None = None
    result: dict | None = None


class OperationGateway:
    """Entry point for mutating actions: run now when online, else queue for replay."""

    def __init__(self, *, store: OperationQueueStore, functions: FunctionsClient, monitor: ConnectivityMonitor) -> None:
        self.store = store
        self.functions = functions
        self.monitor = monitor

    async def submit(self, op_type: str, payload: dict) -> SubmitResult:
        if not self.monitor.is_online:
            return SubmitResult(status="QUEUED", id=self.store.enqueue(op_type, payload))

        normalized = self.store.validate(op_type, payload)
        try:
            out = await self.functions.invoke(op_type, normalized)
        except httpx.TransportError as e:
            log.info("Network error running %s (%s); queueing for later", op_type, type(e).__name__)
            self.monitor.handle_offline()
            return SubmitResult(status="QUEUED", id=self.store.enqueue(op_type, payload))

        return SubmitResult(status="DONE", result=out)
