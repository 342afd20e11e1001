import httpx
import pytest

from analytics_engine.core.engine.notifications import WebhookNotifier, job_summary
from analytics_engine.core.engine.store import JobStore
from analytics_engine.core.schemas import JobStatus


async def finished_job(job_store: JobStore):
    job = await job_store.create("simple_demo", {})
    await job_store.update_status(job.job_id, JobStatus.RUNNING, attempts=1)
    await job_store.update_status(
        job.job_id,
        JobStatus.COMPLETED,
        result={"operation": "simple_demo", "recordCount": 3, "payload": {"kind": "inline", "records": []}},
    )
    return await job_store.get(job.job_id)


@pytest.mark.asyncio
async def test_job_summary_has_no_rows(job_store: JobStore):
    job = await finished_job(job_store)
    summary = job_summary(job)

    assert summary == {
        "jobId": job.job_id,
        "operation": "simple_demo",
        "status": "completed",
        "attempts": 1,
        "recordCount": 3,
        "resultKind": "inline",
    }


@pytest.mark.asyncio
async def test_webhook_posts_summary(job_store: JobStore):
    received = []

    def handler(request: httpx.Request):
        received.append(request)
        return httpx.Response(204)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        notifier = WebhookNotifier("http://hooks.test/jobs", client=http)
        job = await finished_job(job_store)
        await notifier.notify(job)

    assert len(received) == 1
    assert received[0].url == "http://hooks.test/jobs"
    assert b'"status":"completed"' in received[0].content.replace(b" ", b"")


@pytest.mark.asyncio
async def test_webhook_failure_is_swallowed(job_store: JobStore):
    def handler(request: httpx.Request):
        return httpx.Response(500)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        notifier = WebhookNotifier("http://hooks.test/jobs", client=http)
        job = await finished_job(job_store)
        # Must not raise
        await notifier.notify(job)
