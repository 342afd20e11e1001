import logging
from typing import Any, Dict, Optional, Protocol

import httpx

from analytics_engine.core import models

logger = logging.getLogger(__name__)


def job_summary(job: models.AnalyticsJob) -> Dict[str, Any]:
    """Small, result-free description of a finished job."""
    summary: Dict[str, Any] = {
        "jobId": job.job_id,
        "operation": job.operation,
        "status": job.status,
        "attempts": job.attempts,
    }
    if job.result:
        summary["recordCount"] = job.result.get("recordCount")
        summary["resultKind"] = (job.result.get("payload") or {}).get("kind")
    if job.error:
        summary["error"] = job.error
    return summary


class Notifier(Protocol):
    async def notify(self, job: models.AnalyticsJob) -> None: ...

    async def aclose(self) -> None: ...


class LogNotifier:
    """Default notifier: one log line per finished job."""

    async def notify(self, job: models.AnalyticsJob) -> None:
        logger.info(f"Job {job.job_id} finished: {job_summary(job)}")

    async def aclose(self) -> None:
        return None


class WebhookNotifier:
    """
    POST a job summary to a webhook.

    Delivery is best effort: HTTP failures are logged and never re-raised, so
    a broken webhook can't touch the job's status.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def notify(self, job: models.AnalyticsJob) -> None:
        try:
            response = await self.client.post(self.url, json=job_summary(job))
            response.raise_for_status()
        except httpx.HTTPError as error:
            logger.warning(f"Notification for job {job.job_id} failed: {error}")

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
