from __future__ import annotations

import asyncio

from savepast.core.audit import recent
from savepast.models.tables import QueuedOperation
from savepast.queue.processor import QueueProcessor
from savepast.queue.store import OperationQueueStore
from savepast.util.time import now_utc
from tests.utils_runtime import FakeNetwork, make_db, make_runtime

IMG = "aGVsbG8="
COLORIZE = {"imageBase64": IMG, "colorScheme": "roman"}


class Recorder:
    def __init__(self, fail_types: set[str] | None = None) -> None:
        self.calls: list[tuple[str, dict]] = []
        self.fail_types = fail_types or set()

    async def __call__(self, op_type: str, payload: dict) -> dict:
        self.calls.append((op_type, payload))
        if op_type in self.fail_types:
            raise RuntimeError(f"{op_type} unavailable")
        return {"success": True}


def _processor(db, invoke, *, online=True, sink=None) -> QueueProcessor:
    async def is_online() -> bool:
        return online

    return QueueProcessor(
        store=OperationQueueStore(db),
        invoke=invoke,
        is_online=is_online,
        result_sink=sink,
        session_factory=db,
    )


def test_offline_colorize_is_replayed_once_after_reconnect():
    net = FakeNetwork()
    net.functions["colorize"] = lambda payload: (200, {"success": True, "colorizedImageBase64": IMG})
    net.online = False
    rt = make_runtime(net)
    delivered = []
    rt.processor.result_sink = lambda **kw: delivered.append(kw)

    async def run():
        await rt.monitor.start()
        queued = await rt.gateway.submit("colorize", COLORIZE)

        offline_pass = await rt.processor.drain()

        net.online = True
        online_pass = await rt.processor.drain()
        again = await rt.processor.drain()
        await rt.close()
        return queued, offline_pass, online_pass, again

    queued, offline_pass, online_pass, again = asyncio.run(run())

    assert queued.status == "QUEUED"
    assert offline_pass.skipped and offline_pass.reason == "offline"
    assert online_pass.processed == 1
    assert again.skipped and again.reason == "empty"
    assert net.function_calls == [("colorize", COLORIZE)]
    assert rt.queue_store.list() == []
    assert delivered[0]["op_id"] == queued.id
    assert delivered[0]["result"]["success"] is True


def test_always_failing_operation_is_dropped_after_exactly_three_failures():
    db = make_db()
    invoke = Recorder(fail_types={"reconstruct3d"})
    proc = _processor(db, invoke)
    op_id = proc.store.enqueue("reconstruct3d", {"imageBase64": IMG})

    async def run():
        return [await proc.drain() for _ in range(4)]

    passes = asyncio.run(run())

    assert [p.remaining for p in passes[:2]] == [1, 1]
    assert passes[2].failed == 1
    assert passes[2].exhausted[0].id == op_id
    assert passes[2].exhausted[0].retryCount == 3
    assert passes[3].reason == "empty"
    assert len(invoke.calls) == 3
    assert proc.store.list() == []

    failures = recent(db, event_type="QUEUE_OPERATION_EXHAUSTED")
    assert len(failures) == 1
    assert failures[0]["context"]["operation"]["id"] == op_id


def test_failure_does_not_block_later_entries_and_order_is_kept():
    db = make_db()
    invoke = Recorder(fail_types={"generateInfoCard"})
    proc = _processor(db, invoke)
    first = proc.store.enqueue("generateInfoCard", {"imageBase64": IMG})
    proc.store.enqueue("colorize", COLORIZE)
    proc.store.enqueue("reconstruct3d", {"imageBase64": IMG})

    res = asyncio.run(proc.drain())

    assert [c[0] for c in invoke.calls] == ["generateInfoCard", "colorize", "reconstruct3d"]
    assert res.processed == 2
    assert res.remaining == 1
    remaining = proc.store.list()
    assert [op.id for op in remaining] == [first]
    assert remaining[0].retryCount == 1


def test_empty_drain_is_a_repeatable_no_op():
    invoke = Recorder()
    proc = _processor(make_db(), invoke)

    async def run():
        return [await proc.drain() for _ in range(3)]

    for res in asyncio.run(run()):
        assert res.skipped is True
        assert res.reason == "empty"
        assert res.processed == res.failed == res.remaining == 0
    assert invoke.calls == []


def test_offline_drain_does_not_touch_entries():
    invoke = Recorder()
    proc = _processor(make_db(), invoke, online=False)
    proc.store.enqueue("colorize", COLORIZE)

    res = asyncio.run(proc.drain())

    assert res.reason == "offline"
    assert res.remaining == 1
    assert invoke.calls == []
    assert proc.store.list()[0].retryCount == 0


def test_concurrent_drain_calls_are_no_ops_while_processing():
    release = None
    calls = []

    async def slow_invoke(op_type: str, payload: dict) -> dict:
        calls.append(op_type)
        await release.wait()
        return {}

    proc = _processor(make_db(), slow_invoke)
    proc.store.enqueue("colorize", COLORIZE)

    async def run():
        nonlocal release
        release = asyncio.Event()
        first = asyncio.ensure_future(proc.drain())
        await asyncio.sleep(0)
        assert proc.is_processing
        second = await proc.drain()
        release.set()
        return await first, second

    first, second = asyncio.run(run())

    assert second.skipped and second.reason == "busy"
    assert second.remaining == 1
    assert first.processed == 1
    assert calls == ["colorize"]
    assert proc.is_processing is False


def test_unroutable_type_is_not_retried():
    db = make_db()
    with db() as s:
        s.add(QueuedOperation(id="legacy-1", type="enhance", payload={}, retry_count=0, created_at=now_utc()))
        s.commit()
    invoke = Recorder()
    proc = _processor(db, invoke)

    res = asyncio.run(proc.drain())

    assert invoke.calls == []
    assert res.failed == 1
    assert res.exhausted[0].id == "legacy-1"
    assert proc.store.list() == []


def test_entry_already_at_ceiling_is_dropped_without_a_call():
    db = make_db()
    invoke = Recorder()
    proc = _processor(db, invoke)
    op_id = proc.store.enqueue("colorize", COLORIZE)
    for _ in range(3):
        proc.store.increment_retry(op_id)

    res = asyncio.run(proc.drain())

    assert invoke.calls == []
    assert [op.id for op in res.exhausted] == [op_id]


def test_result_sink_failure_does_not_requeue():
    invoke = Recorder()

    def broken_sink(**kwargs):
        raise OSError("disk full")

    proc = _processor(make_db(), invoke, sink=broken_sink)
    proc.store.enqueue("colorize", COLORIZE)

    res = asyncio.run(proc.drain())

    assert res.processed == 1
    assert proc.store.list() == []
    assert len(invoke.calls) == 1
