"""
Cadence — Background task runner.

Owns every piece of work that must outlive the request that scheduled it
(queue refills after a swipe, external rescoring after a refill).

* Concurrency is bounded by an ``asyncio.Semaphore``.
* A job submitted under a key that is already pending or running is
  coalesced (dropped) rather than queued twice.
* Each job receives a fresh ``ProfileStore`` from the store factory, so it
  runs in its own session and transaction.
* Jobs are plain ``asyncio`` tasks owned by the runner, not by the request,
  so client disconnects never cancel them.
* ``shutdown()`` waits up to a timeout, then cancels whatever is left.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

import structlog

from app.store import ProfileStore, StoreFactory

logger = structlog.get_logger("cadence.task_runner")

Job = Callable[[ProfileStore], Awaitable[object]]


class BackgroundTaskRunner:
    """Bounded, keyed, store-scoped background job pool."""

    def __init__(
        self,
        store_factory: StoreFactory,
        max_concurrency: int = 4,
        shutdown_timeout: float = 10.0,
    ) -> None:
        self._store_factory = store_factory
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._shutdown_timeout = shutdown_timeout
        self._tasks: dict[str, asyncio.Task] = {}
        self._closed = False

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    def is_pending(self, key: str) -> bool:
        return key in self._tasks

    def submit(self, key: str, job: Job) -> bool:
        """Schedule ``job`` under ``key``.

        Returns ``False`` if the runner is shut down or a job with the same
        key is still in flight.
        """
        if self._closed:
            logger.warning("background_job_rejected", key=key, reason="shutdown")
            return False
        if key in self._tasks:
            logger.debug("background_job_coalesced", key=key)
            return False

        task = asyncio.create_task(self._run(key, job), name=f"cadence:{key}")
        self._tasks[key] = task
        task.add_done_callback(lambda _t, _key=key: self._tasks.pop(_key, None))
        logger.info("background_job_submitted", key=key, pending=len(self._tasks))
        return True

    async def _run(self, key: str, job: Job) -> None:
        log = logger.bind(key=key)
        async with self._semaphore:
            try:
                async with self._store_factory() as store:
                    await job(store)
            except asyncio.CancelledError:
                log.warning("background_job_cancelled")
                raise
            except Exception:
                log.exception("background_job_failed")
            else:
                log.info("background_job_completed")

    async def join(self) -> None:
        """Wait until every job submitted so far (and any they spawn) is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        self._closed = True
        tasks = list(self._tasks.values())
        if not tasks:
            return

        logger.info("background_runner_draining", pending=len(tasks))
        _done, still_running = await asyncio.wait(tasks, timeout=self._shutdown_timeout)

        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
            logger.warning("background_runner_cancelled", cancelled=len(still_running))

        logger.info("background_runner_stopped")
