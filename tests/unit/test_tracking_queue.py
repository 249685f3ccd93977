"""
Unit tests for the background tracking queue.
"""

import asyncio

import pytest

from src.core.errors import TrackingUpdateError
from src.cortex.tracking_queue import LoguruSink, ObservabilitySink, TrackingQueue


class RecordingSink:
    def __init__(self):
        self.failures: list[TrackingUpdateError] = []
        self.dropped: list[tuple[str, str]] = []

    def tracking_failed(self, error: TrackingUpdateError) -> None:
        self.failures.append(error)

    def tracking_dropped(self, kind: str, key: str) -> None:
        self.dropped.append((kind, key))


def test_sinks_satisfy_protocol():
    assert isinstance(RecordingSink(), ObservabilitySink)
    assert isinstance(LoguruSink(), ObservabilitySink)


def test_rejects_bad_sizes():
    with pytest.raises(ValueError):
        TrackingQueue(maxsize=0)
    with pytest.raises(ValueError):
        TrackingQueue(workers=0)


@pytest.mark.asyncio
async def test_jobs_run_in_background():
    done = []

    async def write(key):
        done.append(key)

    queue = TrackingQueue(sink=RecordingSink())
    assert queue.submit("fsrs", "fc-1", lambda: write("fc-1"))
    assert queue.submit("bkt", "sub-1", lambda: write("sub-1"))
    await queue.drain()

    assert sorted(done) == ["fc-1", "sub-1"]
    assert queue.stats.completed == 2
    assert queue.stats.pending == 0
    await queue.close()


@pytest.mark.asyncio
async def test_submit_does_not_wait_for_job():
    release = asyncio.Event()

    async def slow():
        await release.wait()

    queue = TrackingQueue(sink=RecordingSink())
    queue.submit("fsrs", "fc-1", slow)
    await asyncio.sleep(0)
    assert queue.stats.completed == 0

    release.set()
    await queue.drain()
    assert queue.stats.completed == 1
    await queue.close()


@pytest.mark.asyncio
async def test_failures_go_to_sink():
    sink = RecordingSink()

    async def broken():
        raise ConnectionError("platform down")

    async with TrackingQueue(sink=sink) as queue:
        queue.submit("bkt", "sub-9", broken)
        await queue.drain()

    assert queue.stats.failed == 1
    assert len(sink.failures) == 1
    error = sink.failures[0]
    assert error.kind == "bkt"
    assert error.key == "sub-9"
    assert isinstance(error.cause, ConnectionError)


@pytest.mark.asyncio
async def test_full_queue_drops_and_reports():
    sink = RecordingSink()
    release = asyncio.Event()

    async def blocked():
        await release.wait()

    queue = TrackingQueue(sink=sink, maxsize=1, workers=1)
    assert queue.submit("fsrs", "a", blocked)
    await asyncio.sleep(0)  # worker takes "a"
    assert queue.submit("fsrs", "b", blocked)
    assert not queue.submit("fsrs", "c", blocked)

    assert queue.stats.dropped == 1
    assert sink.dropped == [("fsrs", "c")]

    release.set()
    await queue.close()
    assert queue.stats.completed == 2


@pytest.mark.asyncio
async def test_sink_errors_do_not_kill_workers():
    class ExplodingSink(RecordingSink):
        def tracking_failed(self, error):
            raise RuntimeError("sink broken")

    done = []

    async def broken():
        raise ValueError("nope")

    async def ok():
        done.append(True)

    async with TrackingQueue(sink=ExplodingSink(), workers=1) as queue:
        queue.submit("fsrs", "a", broken)
        queue.submit("fsrs", "b", ok)
        await queue.drain()

    assert done == [True]


@pytest.mark.asyncio
async def test_submit_after_close_raises():
    queue = TrackingQueue()
    await queue.close()
    with pytest.raises(RuntimeError):
        queue.submit("fsrs", "a", asyncio.sleep)
