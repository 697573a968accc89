from __future__ import annotations

import pytest

from gatekeeper.services.stats import RuntimeStats
from gatekeeper.services.task_queue import QueuePolicy, TaskQueue


async def test_queue_runs_tasks_and_counts_failures():
    stats = RuntimeStats()
    queue = TaskQueue(QueuePolicy(max_batch=2, every_ms=1, max_queue_size=10), stats)
    ran: list[int] = []

    async def ok(n: int) -> None:
        ran.append(n)

    async def boom() -> None:
        raise RuntimeError("side effect failed")

    queue.start()
    try:
        await queue.enqueue(lambda: ok(1))
        await queue.enqueue(boom)
        await queue.enqueue(lambda: ok(2))
        await queue.join()
    finally:
        await queue.stop()

    assert ran == [1, 2]
    assert stats.tasks_enqueued == 3
    assert stats.tasks_executed == 2
    assert stats.tasks_failed == 1
    assert not queue.running


async def test_full_queue_refuses():
    queue = TaskQueue(QueuePolicy(max_queue_size=1), RuntimeStats())

    async def noop() -> None:
        return None

    await queue.enqueue(noop)
    with pytest.raises(RuntimeError):
        await queue.enqueue(noop)
    assert queue.size() == 1


async def test_stop_runs_tasks_still_queued():
    stats = RuntimeStats()
    queue = TaskQueue(QueuePolicy(max_batch=1, every_ms=1000, max_queue_size=10), stats)
    ran: list[str] = []

    async def close_ticket() -> None:
        ran.append("closed")

    queue.start()
    await queue.enqueue(close_ticket)
    await queue.enqueue(close_ticket)
    await queue.stop()

    assert ran == ["closed", "closed"]
    assert queue.size() == 0
    assert stats.tasks_executed == 2
    assert not queue.running
