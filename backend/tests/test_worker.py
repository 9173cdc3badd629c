"""Tests for the turn queue and worker pool."""

import asyncio

from listpilot.services.worker import TurnJob, TurnQueue, WorkerPool


def _job(message_id=1):
    return TurnJob(message_id=message_id, conversation_id=1, user_id=1, organization_id=1, placeholder_id=message_id + 100)


def test_message_is_queued_once():
    queue = TurnQueue()
    assert queue.enqueue(_job(1)) is True
    assert queue.enqueue(_job(1)) is False
    assert queue.enqueue(_job(2)) is True
    assert queue.depth() == 2


def test_finished_message_is_forgotten():
    queue = TurnQueue()
    queue.enqueue(_job(1))

    async def take():
        return await queue.get()

    job = asyncio.run(take())
    assert queue.enqueue(_job(1)) is False
    queue.task_done(job)
    assert queue._seen == set()


def test_timeout_reports_failure():
    failures = []

    async def slow(job):
        await asyncio.sleep(5)

    async def on_failure(job):
        failures.append(job.message_id)

    pool = WorkerPool(TurnQueue(), slow, on_failure, size=1, timeout=0.01)
    asyncio.run(pool.run_job(_job(7)))
    assert failures == [7]


def test_crash_reports_failure():
    failures = []

    async def crash(job):
        raise RuntimeError("boom")

    async def on_failure(job):
        failures.append(job.message_id)

    pool = WorkerPool(TurnQueue(), crash, on_failure, size=1, timeout=1)
    asyncio.run(pool.run_job(_job(3)))
    assert failures == [3]


def test_workers_drain_the_queue():
    handled = []

    async def handler(job):
        handled.append(job.message_id)

    async def on_failure(job):
        raise AssertionError("should not fail")

    async def scenario():
        queue = TurnQueue()
        pool = WorkerPool(queue, handler, on_failure, size=2, timeout=1)
        pool.start()
        for n in range(5):
            queue.enqueue(_job(n))
        await queue.join()
        await pool.stop()

    asyncio.run(scenario())
    assert sorted(handled) == [0, 1, 2, 3, 4]


def test_failure_callback_errors_do_not_kill_the_worker():
    handled = []

    async def handler(job):
        if job.message_id == 0:
            raise RuntimeError("first job breaks")
        handled.append(job.message_id)

    async def on_failure(job):
        raise RuntimeError("reporting breaks too")

    async def scenario():
        queue = TurnQueue()
        pool = WorkerPool(queue, handler, on_failure, size=1, timeout=1)
        pool.start()
        queue.enqueue(_job(0))
        queue.enqueue(_job(1))
        await queue.join()
        await pool.stop()

    asyncio.run(scenario())
    assert handled == [1]
