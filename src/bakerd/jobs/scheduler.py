"""Periodic job scheduler with a non-overlap guarantee per job.

Every registered job gets a ticker task firing at a fixed interval. A tick
starts a run unless the previous run of the same job is still executing, in
which case the tick is dropped (never queued) and ``job_tick_skipped`` is
logged. Different jobs run concurrently.

A failed run is logged at a level matching its cause and retried on the next
tick:
  NodeUnavailableError, PriceSourceError -> warning
  NodeResponseError                      -> error
  ConsistencyError                       -> critical
  StorageError                           -> critical, then the scheduler stops
                                            and wait_closed() reports the error
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Protocol

import structlog

from bakerd.exceptions import (
    ConsistencyError,
    NodeResponseError,
    NodeUnavailableError,
    PriceSourceError,
    StorageError,
)
from bakerd.logging import get_logger

logger = get_logger(__name__)


class Job(Protocol):
    """A unit of periodic work."""

    name: str

    async def execute(self) -> None: ...


@dataclass
class _ScheduledJob:
    job: Job
    interval: float
    ticker: asyncio.Task | None = None  # type: ignore[type-arg]
    run: asyncio.Task | None = None  # type: ignore[type-arg]
    runs: int = 0
    failures: int = 0
    skipped: int = 0

    @property
    def busy(self) -> bool:
        return self.run is not None and not self.run.done()


class Scheduler:
    """Fires registered jobs on fixed intervals.

    Args:
        shutdown_timeout: Seconds stop() waits for in-flight runs before
            cancelling them.
    """

    def __init__(self, shutdown_timeout: float = 10.0) -> None:
        self._shutdown_timeout = shutdown_timeout
        self._jobs: dict[str, _ScheduledJob] = {}
        self._running = False
        self._closed = asyncio.Event()
        self._fatal_error: StorageError | None = None
        self._stop_task: asyncio.Task | None = None  # type: ignore[type-arg]

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def fatal_error(self) -> StorageError | None:
        return self._fatal_error

    def add_job(self, job: Job, interval: float) -> None:
        """Register a job. An interval of 0 registers it for run_once() only."""
        if job.name in self._jobs:
            raise ValueError(f"Job already registered: {job.name}")
        if interval < 0:
            raise ValueError(f"Negative interval for job {job.name}: {interval}")
        self._jobs[job.name] = _ScheduledJob(job=job, interval=interval)
        if interval == 0:
            logger.info("job_disabled", job=job.name)

    def stats(self) -> dict[str, dict]:
        """Run counters per job."""
        return {
            name: {
                "interval": entry.interval,
                "runs": entry.runs,
                "failures": entry.failures,
                "skipped": entry.skipped,
                "busy": entry.busy,
            }
            for name, entry in self._jobs.items()
        }

    async def start(self) -> None:
        """Start a ticker for every enabled job. The first tick fires immediately."""
        if self._running:
            logger.warning("scheduler_already_running")
            return
        if self._stop_task is not None and not self._stop_task.done():
            raise RuntimeError("Scheduler is still stopping")
        self._running = True
        self._stop_task = None
        self._closed.clear()
        for entry in self._jobs.values():
            if entry.interval > 0:
                entry.ticker = asyncio.create_task(self._tick_loop(entry))
        logger.info(
            "scheduler_started",
            jobs={name: entry.interval for name, entry in self._jobs.items()},
        )

    async def stop(self) -> None:
        """Stop ticking, let in-flight runs finish, then cancel stragglers.

        In-flight runs get up to ``shutdown_timeout`` seconds. A cancelled run
        rolls back its open transaction. Concurrent callers all wait for the
        same shutdown, so none returns while a run is still executing.
        """
        if self._stop_task is None:
            if not self._running:
                self._closed.set()
                return
            self._stop_task = asyncio.create_task(self._drain(asyncio.current_task()))
        await asyncio.shield(self._stop_task)

    async def wait_closed(self) -> StorageError | None:
        """Block until the scheduler has stopped. Returns the fatal error, if any."""
        await self._closed.wait()
        return self._fatal_error

    async def run_once(self, name: str) -> bool:
        """Run a job now and wait for it.

        Returns False (without running) when the job is already running.
        """
        entry = self._jobs.get(name)
        if entry is None:
            raise ValueError(f"Unknown job: {name}")
        task = self._fire(entry)
        if task is None:
            return False
        await task
        return True

    # ──────────────────────────────────────────────
    # Internals
    # ──────────────────────────────────────────────

    async def _drain(self, caller: asyncio.Task | None) -> None:  # type: ignore[type-arg]
        """The single shutdown sequence. ``caller`` is a run that asked to stop and is not waited for."""
        self._running = False

        tickers = [e.ticker for e in self._jobs.values() if e.ticker is not None]
        for ticker in tickers:
            ticker.cancel()
        await asyncio.gather(*tickers, return_exceptions=True)
        for entry in self._jobs.values():
            entry.ticker = None

        in_flight = [e.run for e in self._jobs.values() if e.busy and e.run is not caller]
        if in_flight:
            logger.info("scheduler_waiting_for_runs", count=len(in_flight))
            _, pending = await asyncio.wait(in_flight, timeout=self._shutdown_timeout)
            if pending:
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
                logger.warning("job_runs_cancelled", count=len(pending))

        self._closed.set()
        logger.info("scheduler_stopped")

    async def _tick_loop(self, entry: _ScheduledJob) -> None:
        while self._running:
            self._fire(entry)
            await asyncio.sleep(entry.interval)

    def _fire(self, entry: _ScheduledJob) -> asyncio.Task | None:  # type: ignore[type-arg]
        if entry.busy:
            entry.skipped += 1
            logger.info("job_tick_skipped", job=entry.job.name, skipped=entry.skipped)
            return None
        entry.run = asyncio.create_task(self._run(entry), name=f"job:{entry.job.name}")
        return entry.run

    async def _run(self, entry: _ScheduledJob) -> None:
        entry.runs += 1
        started = time.monotonic()
        with structlog.contextvars.bound_contextvars(job=entry.job.name):
            try:
                await entry.job.execute()
            except asyncio.CancelledError:
                logger.warning("job_cancelled")
                raise
            except (NodeUnavailableError, PriceSourceError) as e:
                entry.failures += 1
                logger.warning("job_failed", error_type=type(e).__name__, error=str(e))
            except NodeResponseError as e:
                entry.failures += 1
                logger.error("job_failed", error_type=type(e).__name__, error=str(e))
            except ConsistencyError as e:
                entry.failures += 1
                logger.critical(
                    "job_consistency_fault",
                    error_type=type(e).__name__,
                    error=str(e),
                    action="manual intervention required",
                )
            except StorageError as e:
                entry.failures += 1
                logger.critical("job_storage_failure", error=str(e), exc_info=True)
                self._fail(e)
            except Exception:
                entry.failures += 1
                logger.error("job_failed_unexpectedly", exc_info=True)
            else:
                logger.debug("job_completed", duration_s=round(time.monotonic() - started, 3))

    def _fail(self, error: StorageError) -> None:
        if self._fatal_error is None:
            self._fatal_error = error
        if self._stop_task is not None:
            return
        if self._running:
            self._stop_task = asyncio.create_task(self._drain(None))
        else:
            self._closed.set()
