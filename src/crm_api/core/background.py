"""Background task runner abstraction.

Import commits are long-running and must not hold an HTTP request open, so
routes hand them to a runner. The durable job state is the ``imports`` row
itself; the runner only tracks in-flight coroutines for this process, which
keeps a later swap to a real queue (ARQ, Celery) out of the service layer.
"""

import asyncio
import contextlib
import enum
import uuid
from collections.abc import Coroutine
from typing import Any, Protocol

from loguru import logger


class JobStatus(enum.StrEnum):
    """Status of a background job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


_FINISHED = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


class BackgroundTaskRunner(Protocol):
    """Protocol for background task execution."""

    def submit_task(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> str:
        """Submit an async task for background execution.

        Args:
            coro: The coroutine to execute.
            name: Optional label used in logs.

        Returns:
            A job ID string for tracking.
        """
        ...

    def get_status(self, job_id: str) -> JobStatus:
        """Get the current status of a background job."""
        ...

    async def shutdown(self) -> None:
        """Cancel outstanding work and wait for it to unwind."""
        ...


class InProcessTaskRunner:
    """In-process background task runner using asyncio.

    Tasks run in the API process via ``asyncio.create_task()``. Work lost on
    restart is recoverable because the import row keeps its status and the
    stalled-import sweep moves it to ``error``. Failures are logged, not
    re-raised, and only the newest ``max_finished`` finished statuses are kept.
    """

    def __init__(self, *, max_finished: int = 1000) -> None:
        self._jobs: dict[str, JobStatus] = {}
        self._tasks: dict[str, asyncio.Task[Any]] = {}
        self._max_finished = max_finished

    def submit_task(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> str:
        """Submit an async task for background execution.

        Args:
            coro: The coroutine to execute.
            name: Optional label used in logs.

        Returns:
            A job ID string for tracking.
        """
        job_id = str(uuid.uuid4())
        label = name or job_id
        self._jobs[job_id] = JobStatus.PENDING

        async def _run() -> None:
            self._jobs[job_id] = JobStatus.RUNNING
            try:
                await coro
                self._jobs[job_id] = JobStatus.COMPLETED
            except Exception:
                self._jobs[job_id] = JobStatus.FAILED
                logger.exception(f"Background task {label} failed")
            except asyncio.CancelledError:
                self._jobs[job_id] = JobStatus.FAILED
                raise
            finally:
                self._tasks.pop(job_id, None)
                self._prune_finished()

        self._tasks[job_id] = asyncio.create_task(_run(), name=label)
        return job_id

    def _prune_finished(self) -> None:
        """Drop the oldest finished job statuses beyond the retention limit."""
        finished = [job_id for job_id, status in self._jobs.items() if status in _FINISHED]
        for job_id in finished[: max(len(finished) - self._max_finished, 0)]:
            del self._jobs[job_id]

    def get_status(self, job_id: str) -> JobStatus:
        """Get the current status of a background job.

        Args:
            job_id: The job ID returned by submit_task.

        Returns:
            The current job status.

        Raises:
            KeyError: If the job ID is unknown or its status has been pruned.
        """
        return self._jobs[job_id]

    @property
    def active_count(self) -> int:
        """Number of tasks still running in this process."""
        return len(self._tasks)

    async def shutdown(self) -> None:
        """Cancel outstanding tasks and wait for them to finish unwinding."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await task


# Singleton instance for the application
task_runner = InProcessTaskRunner()
