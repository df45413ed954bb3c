"""Tests for progress reporting and cooperative cancellation."""

import asyncio

import pytest

from schema_porter.tasks import LongTask, Progress, ProgressCounter, never_cancel


class TestProgress:
    def test_fraction(self) -> None:
        assert Progress(done=1, total=4).fraction == 0.25
        assert Progress(done=0, total=0).fraction == 0.0
        assert Progress(done=5, total=4).fraction == 1.0


class TestLongTask:
    """Status transitions and cancel requests."""

    def test_initial_state(self) -> None:
        task = LongTask()

        assert task.status == "idle"
        assert not task.is_cancel_requested()
        assert never_cancel() is False

    def test_start_and_complete_notify_listener(self) -> None:
        seen: list[Progress] = []
        task = LongTask(on_progress=seen.append)

        task.start(Progress(label="Working..."))
        task.set_progress(Progress(done=1, total=2, label="Half"))
        task.complete(Progress(done=2, total=2, label="Done"))

        assert task.status == "completed"
        assert [p.label for p in seen] == ["Working...", "Half", "Done"]

    def test_request_cancel_while_running(self) -> None:
        task = LongTask()
        task.start()

        task.request_cancel()
        task.request_cancel()

        assert task.status == "cancelling"
        assert task.is_cancel_requested()
        assert task.cancel_requested

    def test_start_clears_previous_cancel(self) -> None:
        task = LongTask()
        task.request_cancel()

        task.start()

        assert task.status == "running"
        assert not task.is_cancel_requested()

    def test_fail_and_reset(self) -> None:
        task = LongTask()
        task.start()
        error = RuntimeError("boom")

        task.fail(error)
        assert task.status == "failed"
        assert task.error is error

        task.reset()
        assert task.status == "idle"
        assert task.error is None
        assert task.progress == Progress()


class TestProgressCounter:
    @pytest.mark.asyncio
    async def test_concurrent_advances_are_strictly_increasing(self) -> None:
        seen: list[Progress] = []
        counter = ProgressCounter(10, on_progress=seen.append, phase="import")

        await asyncio.gather(*(counter.advance(f"unit {i}") for i in range(10)))

        assert [p.done for p in seen] == list(range(1, 11))
        assert all(p.total == 10 and p.phase == "import" for p in seen)
        assert counter.done == 10

    def test_emit_does_not_advance(self) -> None:
        seen: list[Progress] = []
        counter = ProgressCounter(3, on_progress=seen.append)

        counter.emit("Starting...")

        assert counter.done == 0
        assert seen == [Progress(done=0, total=3, label="Starting...")]

    @pytest.mark.asyncio
    async def test_without_listener(self) -> None:
        counter = ProgressCounter(1)

        assert await counter.advance("only") == 1
