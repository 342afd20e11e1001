from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine

from analytics_engine.core.config import Settings
from analytics_engine.core.database import build_session_factory
from analytics_engine.core.engine.blobs import LocalBlobStore
from analytics_engine.core.engine.drivers import (
    BackgroundDriver,
    InlineDriver,
    WorkflowDriver,
)
from analytics_engine.core.engine.executor import QueryExecutor
from analytics_engine.core.engine.notifications import (
    LogNotifier,
    Notifier,
    WebhookNotifier,
)
from analytics_engine.core.engine.orchestrator import JobOrchestrator
from analytics_engine.core.engine.registry import OperationRegistry
from analytics_engine.core.engine.reports import DEFAULT_OPERATIONS
from analytics_engine.core.engine.routing import ResultRouter
from analytics_engine.core.engine.sandbox import SqlSandbox
from analytics_engine.core.engine.store import JobStore


@dataclass
class AnalyticsServices:
    """Everything a request handler needs, built once per process."""

    executor: QueryExecutor
    registry: OperationRegistry
    router: ResultRouter
    jobs: JobStore
    orchestrator: JobOrchestrator
    driver: WorkflowDriver
    notifier: Notifier

    async def aclose(self) -> None:
        await self.driver.aclose()
        await self.notifier.aclose()


def build_services(
    settings: Settings,
    engine: AsyncEngine,
    notifier: Optional[Notifier] = None,
) -> AnalyticsServices:
    """Wire the engine components from settings; nothing is started here."""
    executor = QueryExecutor(engine, statement_timeout_ms=settings.DB_STATEMENT_TIMEOUT_MS)
    registry = OperationRegistry(
        executor,
        SqlSandbox(max_length=settings.MAX_QUERY_LENGTH),
        DEFAULT_OPERATIONS,
    )
    router = ResultRouter(
        LocalBlobStore(Path(settings.RESULTS_DIR), ttl=timedelta(days=settings.RESULT_TTL_DAYS)),
        row_threshold=settings.ROW_THRESHOLD,
        byte_threshold=settings.BYTE_THRESHOLD,
    )
    jobs = JobStore(build_session_factory(engine), ttl=timedelta(days=settings.JOB_TTL_DAYS))

    if notifier is None:
        if settings.NOTIFY_WEBHOOK_URL:
            notifier = WebhookNotifier(
                settings.NOTIFY_WEBHOOK_URL, timeout=settings.NOTIFY_TIMEOUT_SECONDS
            )
        else:
            notifier = LogNotifier()

    orchestrator = JobOrchestrator(registry, router, jobs, notifier)

    if settings.WORKFLOW_DRIVER == "inline":
        driver: WorkflowDriver = InlineDriver(
            orchestrator,
            max_retries=settings.JOB_MAX_RETRIES,
            base_delay=settings.JOB_RETRY_BASE_DELAY,
            max_delay=settings.JOB_RETRY_MAX_DELAY,
        )
    else:
        driver = BackgroundDriver(
            orchestrator,
            max_retries=settings.JOB_MAX_RETRIES,
            base_delay=settings.JOB_RETRY_BASE_DELAY,
            max_delay=settings.JOB_RETRY_MAX_DELAY,
            time_budget=settings.job_time_budget_seconds,
            watchdog_interval=settings.WATCHDOG_INTERVAL_SECONDS,
        )

    return AnalyticsServices(
        executor=executor,
        registry=registry,
        router=router,
        jobs=jobs,
        orchestrator=orchestrator,
        driver=driver,
        notifier=notifier,
    )


# The "bridge" that gives routes access to the engine; overridden in tests
def get_services(request: Request) -> AnalyticsServices:
    return request.app.state.services
