"""Delayed re-lookups that replace optimistic state with confirmed records."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

from triage_tracker.errors import TrackerError
from triage_tracker.records.cache import OverlayCache
from triage_tracker.utils.time import Clock, SystemClock

logger = logging.getLogger(__name__)

LookupFn = Callable[[str], Awaitable[list[object]]]
ReconciledCallback = Callable[[str], None]


@dataclass
class _Job:
    correlation_key: str
    task: asyncio.Task[None]
    attempts: int = 0


class ReconciliationScheduler:
    """Background reconciliation, one job per correlation key.

    A job sleeps for each configured delay in turn, issues a lookup and folds
    the result into the cache. It stops early once nothing is pending for its
    key. Failures are logged and dropped; they never reach the view.
    """

    def __init__(
        self,
        cache: OverlayCache,
        lookup: LookupFn,
        *,
        delays: Sequence[float] = (2.5, 5.0),
        clock: Clock | None = None,
        on_reconciled: ReconciledCallback | None = None,
    ) -> None:
        if not delays:
            raise ValueError("at least one reconciliation delay is required")
        self._cache = cache
        self._lookup = lookup
        self._delays = tuple(delays)
        self._clock = clock or SystemClock()
        self._on_reconciled = on_reconciled
        self._jobs: dict[str, _Job] = {}

    @property
    def budget(self) -> int:
        return len(self._delays)

    def is_scheduled(self, correlation_key: str) -> bool:
        job = self._jobs.get(correlation_key)
        return job is not None and not job.task.done()

    def attempts(self, correlation_key: str) -> int:
        job = self._jobs.get(correlation_key)
        return job.attempts if job is not None else 0

    def schedule(self, correlation_key: str) -> asyncio.Task[None]:
        """Start reconciling ``correlation_key``, restarting any running job."""
        self.cancel(correlation_key)
        task = asyncio.get_running_loop().create_task(
            self._run(correlation_key), name=f"reconcile:{correlation_key}"
        )
        job = _Job(correlation_key=correlation_key, task=task)
        self._jobs[correlation_key] = job
        task.add_done_callback(lambda _t, key=correlation_key, j=job: self._forget(key, j))
        logger.debug("Reconciliation scheduled for %s", correlation_key)
        return task

    def cancel(self, correlation_key: str) -> bool:
        job = self._jobs.pop(correlation_key, None)
        if job is None or job.task.done():
            return False
        job.task.cancel()
        logger.debug("Reconciliation for %s cancelled", correlation_key)
        return True

    async def wait_idle(self) -> None:
        tasks = [job.task for job in self._jobs.values()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def aclose(self) -> None:
        jobs = list(self._jobs.values())
        self._jobs.clear()
        for job in jobs:
            job.task.cancel()
        if jobs:
            await asyncio.gather(*(job.task for job in jobs), return_exceptions=True)

    def _forget(self, correlation_key: str, job: _Job) -> None:
        if self._jobs.get(correlation_key) is job:
            del self._jobs[correlation_key]

    async def _run(self, correlation_key: str) -> None:
        job = self._jobs.get(correlation_key)
        for attempt, delay in enumerate(self._delays, start=1):
            await self._clock.sleep(delay)
            if job is not None:
                job.attempts = attempt
            ticket = self._cache.begin_lookup(correlation_key)
            try:
                records = await self._lookup(correlation_key)
            except TrackerError as exc:
                logger.info(
                    "Reconciliation attempt %d/%d for %s failed: %s",
                    attempt,
                    self.budget,
                    correlation_key,
                    exc,
                )
                continue
            except Exception:
                logger.exception(
                    "Reconciliation attempt %d/%d for %s raised unexpectedly",
                    attempt,
                    self.budget,
                    correlation_key,
                )
                continue

            if not self._cache.reconcile(records, ticket):
                logger.debug("Reconciliation result for %s was stale", correlation_key)
                return
            if self._on_reconciled is not None:
                self._on_reconciled(correlation_key)
            if not self._cache.has_pending(correlation_key):
                logger.info(
                    "Reconciliation for %s settled after %d attempt(s)", correlation_key, attempt
                )
                return

        logger.warning(
            "Reconciliation budget exhausted for %s; optimistic records stay pending",
            correlation_key,
        )
