"""Summary: Background job runners for dispatch work.

Importance: Moves bulk sends off the request and event path.
Alternatives: Use a distributed queue such as Celery or RQ.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable


logger = logging.getLogger(__name__)

Task = Callable[[dict[str, Any]], Any]


class JobRunner(ABC):
    """Summary: Abstract fire-and-forget job runner.

    Importance: Lets the trigger listener enqueue work without knowing how it runs.
    Alternatives: Call the dispatcher inline from event handlers.
    """

    @abstractmethod
    def enqueue(self, task: Task, payload: dict[str, Any]) -> None:
        """Summary: Schedule `task(payload)` and return immediately.

        Importance: Keeps triggering code non-blocking.
        Alternatives: Return a handle and let callers wait.
        """

    def shutdown(self, wait: bool = True) -> None:
        """Release worker resources."""


class ThreadPoolJobRunner(JobRunner):
    """Summary: Runs jobs on a bounded thread pool.

    Importance: Sends are network-bound, so threads give concurrency without extra services.
    Alternatives: Spawn one thread per job.
    """

    def __init__(self, max_workers: int = 2) -> None:
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, max_workers), thread_name_prefix="mailcast-job"
        )
        self._futures: list[Future] = []

    def enqueue(self, task: Task, payload: dict[str, Any]) -> None:
        future = self._executor.submit(task, payload)
        future.add_done_callback(_log_failure)
        self._futures = [pending for pending in self._futures if not pending.done()]
        self._futures.append(future)
        logger.debug("Enqueued job %s.", getattr(task, "__name__", task))

    def wait(self) -> None:
        """Block until every job enqueued so far has finished."""

        for future in list(self._futures):
            future.exception()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class InlineJobRunner(JobRunner):
    """Summary: Runs jobs synchronously in the calling thread.

    Importance: Gives the CLI deterministic, blocking behavior.
    Alternatives: Start a thread pool and wait on it before exiting.
    """

    def enqueue(self, task: Task, payload: dict[str, Any]) -> None:
        try:
            task(payload)
        except Exception:
            logger.exception("Job %s failed.", getattr(task, "__name__", task))


def _log_failure(future: Future) -> None:
    exc = future.exception()
    if exc is not None:
        logger.error("Background job failed: %s", exc, exc_info=exc)
