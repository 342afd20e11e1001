import logging
import time
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Tuple

from analytics_engine.core import models
from analytics_engine.core.engine.notifications import LogNotifier, Notifier
from analytics_engine.core.engine.registry import OperationRegistry
from analytics_engine.core.engine.routing import ResultRouter
from analytics_engine.core.engine.store import JobStore, TransitionOutcome, utcnow
from analytics_engine.core.errors import (
    AnalyticsError,
    ExecutionError,
    StaleTransitionError,
)
from analytics_engine.core.schemas import (
    JobStatus,
    ResultEnvelope,
    ScheduledRunResult,
    ScheduledRunSummary,
)

# -----------------------------------------------------------------------------
# ORCHESTRATOR MODULE
# Purpose: drive one job through submitted -> running -> completed | failed.
# Why: the state machine lives in one place; drivers only decide *when* an
# attempt runs (inline, background task) and how often it is retried.
# -----------------------------------------------------------------------------

logger = logging.getLogger(__name__)

# Batch run by the scheduled trigger: (operation, parameters, description)
SCHEDULED_OPERATIONS: List[Tuple[str, Dict[str, Any], str]] = [
    (
        "multi_dimensional_analytics",
        {"timeframe": "1 month"},
        "Monthly multi-dimensional analytics",
    ),
    ("data_integrity_analysis", {}, "Daily data integrity check"),
]


def new_operation_id() -> str:
    return f"analytics-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


def error_record(error: BaseException) -> Dict[str, Any]:
    """JSON shape stored in `AnalyticsJob.error`."""
    if isinstance(error, AnalyticsError):
        return error.to_dict()
    return {"message": str(error) or type(error).__name__, "type": ExecutionError.__name__}


class JobLogger:
    """Logger scoped to one job or synchronous operation; also times it."""

    def __init__(self, scope_id: str):
        """
        Args:
            scope_id: Job id or operation id prefixed to every message.

        Example:
            job_log = JobLogger("job_3f2a...")
            job_log.log("execute", "Running count_analysis")
        """
        self.scope_id = scope_id
        self.start_time = datetime.now()

    def log(self, step: str, message: str, level: str = "info"):
        if level == "error":
            logger.error(f"[{self.scope_id}] {step}: {message}")
        elif level == "warning":
            logger.warning(f"[{self.scope_id}] {step}: {message}")
        else:
            logger.info(f"[{self.scope_id}] {step}: {message}")

    def elapsed_seconds(self) -> float:
        return (datetime.now() - self.start_time).total_seconds()

    def execution_time(self) -> str:
        """Elapsed time as reported to callers, e.g. '125ms'."""
        return f"{int(self.elapsed_seconds() * 1000)}ms"


class JobOrchestrator:
    """
    Runs operations and owns every job status write.

    Example:
        orchestrator = JobOrchestrator(registry, router, JobStore(session_factory))
        job = await orchestrator.submit("count_analysis", {})
        await orchestrator.run_attempt(job.job_id, attempt=1)
    """

    def __init__(
        self,
        registry: OperationRegistry,
        router: ResultRouter,
        jobs: JobStore,
        notifier: Optional[Notifier] = None,
    ):
        self.registry = registry
        self.router = router
        self.jobs = jobs
        self.notifier = notifier or LogNotifier()

    # =========================
    # Synchronous path
    # =========================
    async def execute_now(
        self, operation: Any, parameters: Optional[Mapping[str, Any]] = None
    ) -> ResultEnvelope:
        """
        Run an operation in-process and return its envelope.

        No job record, no retries: errors go straight back to the caller.
        """
        call = self.registry.prepare(operation, parameters)
        rows = await self.registry.run(call)
        return await self.router.route(rows, call.operation)

    # =========================
    # Asynchronous path
    # =========================
    async def submit(
        self, operation: str, parameters: Optional[Mapping[str, Any]] = None
    ) -> models.AnalyticsJob:
        job = await self.jobs.create(operation, dict(parameters or {}))
        logger.info(f"[{job.job_id}] submit: {operation} accepted")
        return job

    async def run_attempt(self, job_id: str, attempt: int = 1) -> None:
        """
        One pass through Running for a job.

        Terminal errors end the job here. Retryable ones (ExecutionError,
        StorageError) are raised so the driver can decide on another attempt.
        Calling this on a job that is already completed or failed does nothing.
        """
        job = await self.jobs.get(job_id)
        if JobStatus(job.status).is_terminal:
            logger.info(f"[{job_id}] attempt {attempt}: already {job.status}, skipping")
            return

        job_log = JobLogger(job_id)

        try:
            call = self.registry.prepare(job.operation, job.parameters)
        except AnalyticsError as error:
            job_log.log("prepare", f"Rejected: {error.message}", "warning")
            await self.fail(job_id, error)
            return

        try:
            await self.jobs.update_status(job_id, JobStatus.RUNNING, attempts=attempt)
        except StaleTransitionError as error:
            # Another attempt already finished the job
            job_log.log("running", error.message, "warning")
            return

        job_log.log("execute", f"Attempt {attempt}: running {call.operation}")
        try:
            rows = await self.registry.run(call)
            envelope = await self.router.route(rows, call.operation, job_id=job_id)
        except AnalyticsError as error:
            if error.retryable:
                job_log.log("execute", f"Attempt {attempt} failed: {error.message}", "warning")
                raise
            job_log.log("execute", f"Failed: {error.message}", "error")
            await self.fail(job_id, error)
            return

        job_log.log(
            "route",
            f"{envelope.record_count} rows returned {envelope.payload.kind} "
            f"in {job_log.execution_time()}",
        )
        await self.complete(job_id, envelope)

    async def complete(self, job_id: str, envelope: ResultEnvelope) -> bool:
        """Write `completed`; True only if this call made the transition."""
        try:
            outcome = await self.jobs.update_status(
                job_id,
                JobStatus.COMPLETED,
                result=envelope.model_dump(mode="json", by_alias=True),
            )
        except StaleTransitionError as error:
            logger.warning(f"[{job_id}] complete: dropped, {error.message}")
            return False
        return await self._after_terminal(job_id, outcome)

    async def fail(self, job_id: str, error: BaseException) -> bool:
        """Write `failed`; True only if this call made the transition."""
        try:
            outcome = await self.jobs.update_status(
                job_id, JobStatus.FAILED, error=error_record(error)
            )
        except StaleTransitionError as stale:
            logger.warning(f"[{job_id}] fail: dropped, {stale.message}")
            return False
        return await self._after_terminal(job_id, outcome)

    async def _after_terminal(self, job_id: str, outcome: TransitionOutcome) -> bool:
        if outcome is not TransitionOutcome.APPLIED:
            return False
        try:
            job = await self.jobs.get(job_id)
            await self.notifier.notify(job)
        except Exception:
            # The status is already durable; a notifier can't undo it
            logger.exception(f"[{job_id}] notify: notification failed")
        return True

    async def fail_stale_jobs(self, max_runtime: timedelta) -> int:
        """Fail jobs left in `running` longer than `max_runtime`."""
        cutoff = utcnow() - max_runtime
        stale = await self.jobs.list_by_status(JobStatus.RUNNING, started_before=cutoff)

        failed = 0
        for job in stale:
            timeout = ExecutionError(
                f"Job exceeded its time budget of {int(max_runtime.total_seconds())}s (timeout)"
            )
            if await self.fail(job.job_id, timeout):
                failed += 1

        if failed:
            logger.warning(f"Watchdog failed {failed} stale running job(s)")
        return failed

    # =========================
    # Scheduled batch
    # =========================
    async def run_scheduled(
        self, operations: Optional[List[Tuple[str, Dict[str, Any], str]]] = None
    ) -> ScheduledRunSummary:
        """
        Run the scheduled batch one operation after another.

        A failing operation is recorded and the batch moves on.
        """
        results = []
        for operation, parameters, description in operations or SCHEDULED_OPERATIONS:
            op_log = JobLogger(new_operation_id())
            op_log.log("scheduled", f"Running {operation}")
            try:
                envelope = await self.execute_now(operation, parameters)
            except AnalyticsError as error:
                op_log.log("scheduled", f"{operation} failed: {error.message}", "error")
                results.append(
                    ScheduledRunResult(
                        operation=operation,
                        description=description,
                        success=False,
                        execution_time=op_log.execution_time(),
                        error=error.message,
                    )
                )
                continue

            results.append(
                ScheduledRunResult(
                    operation=operation,
                    description=description,
                    success=True,
                    execution_time=op_log.execution_time(),
                    result_count=envelope.record_count,
                )
            )

        successful = sum(1 for result in results if result.success)
        return ScheduledRunSummary(
            timestamp=utcnow(),
            results=results,
            total=len(results),
            successful=successful,
            failed=len(results) - successful,
        )
