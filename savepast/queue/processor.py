from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import sessionmaker

from savepast.core.audit import record
from savepast.integrations.functions import FUNCTION_NAMES
from savepast.queue.store import OperationQueueStore
from savepast.schemas.operations_v1 import QueuedOperationOut

log = logging.getLogger("queue.processor")

Invoke = Callable[[str, dict], Awaitable[dict]]
ResultSink = Callable[..., Any]


@dataclass
class DrainResult:
    processed: int = 0
    failed: int = 0
    remaining: int = 0
    exhausted: list[QueuedOperationOut] = field(default_factory=list)
    skipped: bool = False
    reason: str | None = None  # busy | offline | empty

    def as_dict(self) -> dict:
        return {
            "processed": self.processed,
            "failed": self.failed,
            "remaining": self.remaining,
            "exhausted": [op.model_dump(mode="json") for op in self.exhausted],
            "skipped": self.skipped,
            "reason": self.reason,
        }


class QueueProcessor:
    """Replays queued operations oldest-first, one drain pass at a time.

    A failing entry never blocks the ones behind it. After max_retries recorded
    failures an entry is dropped and reported as exhausted.
    """

    def __init__(
        self,
        *,
        store: OperationQueueStore,
        invoke: Invoke,
        is_online: Callable[[], Awaitable[bool]],
        result_sink: ResultSink | None = None,
        session_factory: sessionmaker | None = None,
        max_retries: int = 3,
    ) -> None:
        self.store = store
        self.invoke = invoke
        self.is_online = is_online
        self.result_sink = result_sink
        self.session_factory = session_factory
        self.max_retries = max_retries
        self._processing = False

    @property
    def is_processing(self) -> bool:
        return self._processing

    async def drain(self) -> DrainResult:
        if self._processing:
            return DrainResult(remaining=self.store.count(), skipped=True, reason="busy")

        # Claim the flag before the first await so concurrent callers see it.
        self._processing = True
        try:
            operations = self.store.list()
            if not operations:
                return DrainResult(skipped=True, reason="empty")
            if not await self.is_online():
                return DrainResult(remaining=len(operations), skipped=True, reason="offline")
            return await self._run_pass(operations)
        finally:
            self._processing = False

    async def _run_pass(self, operations: list[QueuedOperationOut]) -> DrainResult:
        result = DrainResult()
        log.info("Processing %s queued operations", len(operations))

        for op in operations:
            if op.retryCount >= self.max_retries:
                self._exhaust(op, reason="retry_ceiling", result=result)
                continue

            if op.type not in FUNCTION_NAMES:
                # Configuration error: retrying cannot fix it.
                log.error("Queued operation %s has unroutable type=%s", op.id, op.type)
                self._exhaust(op, reason=f"unknown_type:{op.type}", result=result)
                continue

            try:
                out = await self.invoke(op.type, op.payload)
            except Exception as e:
                log.warning("Failed to process queued operation %s: %s", op.id, e)
                retries = self.store.increment_retry(op.id)
                if retries is None:
                    # Cleared while we were waiting on the network.
                    continue
                if retries >= self.max_retries:
                    self._exhaust(op.model_copy(update={"retryCount": retries}), reason=str(e), result=result)
                else:
                    result.remaining += 1
                continue

            self.store.remove(op.id)
            result.processed += 1
            await self._deliver(op, out)

        log.info(
            "Drain pass done: processed=%s failed=%s remaining=%s",
            result.processed,
            result.failed,
            result.remaining,
        )
        return result

    def _exhaust(self, op: QueuedOperationOut, *, reason: str, result: DrainResult) -> None:
        self.store.remove(op.id)
        result.failed += 1
        result.exhausted.append(op)
        log.error("Queued operation %s (%s) permanently failed: %s", op.id, op.type, reason)
        if self.session_factory is not None:
            record(
                self.session_factory,
                event_type="QUEUE_OPERATION_EXHAUSTED",
                severity="ERROR",
                message=reason,
                context={"operation": op.model_dump(mode="json")},
            )

    async def _deliver(self, op: QueuedOperationOut, out: dict) -> None:
        if self.result_sink is None:
            return
        try:
            await asyncio.to_thread(self.result_sink, op_id=op.id, op_type=op.type, result=out)
        except Exception:
            # The remote call already succeeded; requeueing would submit it twice.
            log.exception("Storing result of operation %s failed", op.id)
