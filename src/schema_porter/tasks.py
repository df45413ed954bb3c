"""Progress reporting and cooperative cancellation for long operations.

- ``Progress``: one ``{done, total, label, phase}`` update.
- ``LongTask``: status controller (``idle -> running -> completed|failed``,
  with ``cancelling`` while a cancel request is pending) plus the
  ``request_cancel()`` / ``is_cancel_requested()`` pair.
- ``ProgressCounter``: increment-only counter shared by concurrent
  workers; emitted ``done`` values are strictly increasing.

Usage:
    task = LongTask(on_progress=print)
    task.start(Progress(label="Importing..."))
    result = await import_schema(doc, client,
                                 on_progress=task.set_progress,
                                 should_cancel=task.is_cancel_requested)
"""

import asyncio
import threading
from collections.abc import Callable
from typing import Literal

from pydantic import BaseModel

TaskStatus = Literal["idle", "running", "cancelling", "completed", "failed"]


class Progress(BaseModel):
    """A single progress update."""

    done: int = 0
    total: int = 0
    label: str = ""
    phase: str | None = None

    @property
    def fraction(self) -> float:
        if self.total <= 0:
            return 0.0
        return min(1.0, self.done / self.total)


ProgressCallback = Callable[[Progress], None]
CancelCheck = Callable[[], bool]


def never_cancel() -> bool:
    return False


class LongTask:
    """Status and cancellation controller for one long-running operation.

    ``request_cancel`` is idempotent and safe to call from another task
    or thread (e.g. a signal handler); the operation observes it through
    ``is_cancel_requested`` at its next unit of work.

    Args:
        on_progress: Optional listener notified on every progress change.
    """

    def __init__(self, on_progress: ProgressCallback | None = None) -> None:
        self._on_progress = on_progress
        self._cancel_event = threading.Event()
        self.status: TaskStatus = "idle"
        self.progress = Progress()
        self.error: BaseException | None = None

    def _notify(self) -> None:
        if self._on_progress is not None:
            self._on_progress(self.progress)

    def start(self, progress: Progress | None = None) -> None:
        self._cancel_event.clear()
        self.status = "running"
        self.error = None
        self.progress = progress or Progress()
        self._notify()

    def set_progress(self, update: Progress) -> None:
        self.progress = update
        self._notify()

    def complete(self, progress: Progress | None = None) -> None:
        self.status = "completed"
        if progress is not None:
            self.progress = progress
        self._notify()

    def fail(self, error: BaseException) -> None:
        self.status = "failed"
        self.error = error

    def request_cancel(self) -> None:
        self._cancel_event.set()
        if self.status == "running":
            self.status = "cancelling"

    def reset(self) -> None:
        self._cancel_event.clear()
        self.status = "idle"
        self.progress = Progress()
        self.error = None

    def is_cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def cancel_requested(self) -> bool:
        return self.is_cancel_requested()


class ProgressCounter:
    """Increment-only progress counter shared by concurrent workers.

    Args:
        total: Planned number of units.
        on_progress: Listener called after every increment.
        phase: Phase name attached to emitted updates.
    """

    def __init__(
        self,
        total: int,
        on_progress: ProgressCallback | None = None,
        phase: str | None = None,
    ) -> None:
        self.total = total
        self.done = 0
        self.phase = phase
        self._on_progress = on_progress
        self._lock = asyncio.Lock()

    async def advance(self, label: str) -> int:
        """Count one finished unit and emit an update; returns the new ``done``."""
        async with self._lock:
            self.done += 1
            if self._on_progress is not None:
                self._on_progress(
                    Progress(done=self.done, total=self.total, label=label, phase=self.phase)
                )
            return self.done

    def emit(self, label: str) -> None:
        """Emit the current state without advancing (e.g. phase headings)."""
        if self._on_progress is not None:
            self._on_progress(
                Progress(done=self.done, total=self.total, label=label, phase=self.phase)
            )
