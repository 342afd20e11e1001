import asyncio
import logging
from datetime import timedelta
from typing import Optional, Set

from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from analytics_engine.core.engine.orchestrator import JobOrchestrator
from analytics_engine.core.errors import AnalyticsError, ExecutionError, NotFoundError
from analytics_engine.core.schemas import JobStatus

# -----------------------------------------------------------------------------
# WORKFLOW DRIVERS
# Purpose: decide when job attempts run and how often they are retried.
# InlineDriver runs the whole job inside the caller's await (tests, CLI).
# BackgroundDriver runs it as a detached asyncio task with a time budget.
# -----------------------------------------------------------------------------

logger = logging.getLogger(__name__)


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, AnalyticsError) and error.retryable


class WorkflowDriver:
    """
    Base driver: bounded retries around `orchestrator.run_attempt`.

    max_retries is the number of *extra* attempts, so max_retries=2 means
    try, retry, retry.
    """

    def __init__(
        self,
        orchestrator: JobOrchestrator,
        max_retries: int = 2,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
    ):
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.orchestrator = orchestrator
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.base_delay, max=self.max_delay),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        )

    async def _drive(self, job_id: str) -> None:
        try:
            async for attempt in self._retrying():
                with attempt:
                    await self.orchestrator.run_attempt(
                        job_id, attempt.retry_state.attempt_number
                    )
        except NotFoundError:
            logger.warning(f"[{job_id}] driver: job record is gone, nothing to run")
        except AnalyticsError as error:
            logger.error(f"[{job_id}] driver: giving up after retries: {error.message}")
            await self.orchestrator.fail(job_id, error)

    async def dispatch(self, job_id: str) -> None:
        raise NotImplementedError

    async def start(self) -> None:
        return None

    async def aclose(self) -> None:
        return None


class InlineDriver(WorkflowDriver):
    """dispatch() returns once the job is terminal."""

    async def dispatch(self, job_id: str) -> None:
        await self._drive(job_id)


class BackgroundDriver(WorkflowDriver):
    """
    Runs each job as an asyncio task inside the service process.

    On start() it picks up jobs still `submitted` from a previous process and
    starts the watchdog that fails jobs stuck in `running`.

    Example:
        driver = BackgroundDriver(orchestrator, time_budget=900)
        await driver.start()
        await driver.dispatch(job.job_id)
        ...
        await driver.aclose()
    """

    def __init__(
        self,
        orchestrator: JobOrchestrator,
        max_retries: int = 2,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        time_budget: float = 900.0,
        watchdog_interval: Optional[float] = 60.0,
    ):
        super().__init__(orchestrator, max_retries, base_delay, max_delay)
        self.time_budget = time_budget
        self.watchdog_interval = watchdog_interval
        self._tasks: Set[asyncio.Task] = set()
        self._watchdog: Optional[asyncio.Task] = None

    async def dispatch(self, job_id: str) -> None:
        task = asyncio.create_task(self._run_bounded(job_id), name=f"analytics-{job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_bounded(self, job_id: str) -> None:
        try:
            await asyncio.wait_for(self._drive(job_id), timeout=self.time_budget)
        except asyncio.TimeoutError:
            logger.error(f"[{job_id}] driver: time budget of {self.time_budget}s exceeded")
            timeout = ExecutionError(
                f"Job exceeded its time budget of {int(self.time_budget)}s (timeout)"
            )
            try:
                await self.orchestrator.fail(job_id, timeout)
            except AnalyticsError as error:
                # Left in `running`; the watchdog retries the terminal write
                logger.error(f"[{job_id}] driver: could not record timeout: {error.message}")
        except Exception:
            logger.exception(f"[{job_id}] driver: job task crashed")

    async def start(self) -> None:
        pending = await self.orchestrator.jobs.list_by_status(JobStatus.SUBMITTED)
        for job in pending:
            logger.info(f"[{job.job_id}] driver: resuming submitted job")
            await self.dispatch(job.job_id)

        if self.watchdog_interval:
            self._watchdog = asyncio.create_task(self._watch(), name="analytics-watchdog")

    async def _watch(self) -> None:
        max_runtime = timedelta(seconds=self.time_budget)
        while True:
            await asyncio.sleep(self.watchdog_interval)
            try:
                await self.orchestrator.fail_stale_jobs(max_runtime)
            except AnalyticsError as error:
                logger.error(f"Watchdog sweep failed: {error.message}")

    async def wait_idle(self) -> None:
        """Wait for every job task dispatched so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        tasks = list(self._tasks)
        if self._watchdog is not None:
            tasks.append(self._watchdog)
            self._watchdog = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
