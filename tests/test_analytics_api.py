import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_sync_operation_success(client: AsyncClient):
    """simple_demo answers inline with operation metadata"""
    response = await client.post("/analytics", json={"operation": "simple_demo"})

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["operation"] == "simple_demo"
    assert data["operationId"].startswith("analytics-")
    assert data["executionTime"].endswith("ms")
    assert data["result"]["recordCount"] == 3
    assert data["result"]["payload"]["kind"] == "inline"
    assert data["result"]["payload"]["records"][0]["industry"] == "Technology"


@pytest.mark.asyncio
async def test_sync_unknown_operation(client: AsyncClient):
    response = await client.post(
        "/analytics", json={"operation": "invalid_operation_x", "parameters": {}}
    )

    assert response.status_code == 400
    data = response.json()
    assert data["success"] is False
    assert data["error"] == {
        "message": "Unknown analytics operation: invalid_operation_x",
        "type": "UnknownOperationError",
    }
    assert "List available operations with GET /analytics/operations" in data["suggestions"]


@pytest.mark.asyncio
async def test_sync_forbidden_custom_query(client: AsyncClient):
    response = await client.post(
        "/analytics",
        json={"operation": "custom_complex_query", "parameters": {"query": "DROP TABLE entities"}},
    )

    assert response.status_code == 403
    data = response.json()
    assert data["error"]["type"] == "ForbiddenQueryError"
    assert data["error"]["message"] == "Query contains forbidden operations: DROP"


@pytest.mark.asyncio
async def test_sync_missing_required_parameter(client: AsyncClient):
    response = await client.post("/analytics", json={"operation": "custom_complex_query"})

    assert response.status_code == 400
    data = response.json()
    assert data["error"]["type"] == "ValidationError"
    assert "Provide every required parameter for this operation" in data["suggestions"]


@pytest.mark.asyncio
async def test_sync_custom_query(client: AsyncClient):
    response = await client.post(
        "/analytics",
        json={"operation": "custom_complex_query", "parameters": {"query": "SELECT 1 AS one"}},
    )

    assert response.status_code == 200
    assert response.json()["result"]["payload"]["records"] == [{"one": 1}]


@pytest.mark.asyncio
async def test_sync_database_failure_is_502(client: AsyncClient):
    """Report SQL is PostgreSQL-only, so SQLite can't run it"""
    response = await client.post("/analytics", json={"operation": "data_integrity_analysis"})

    assert response.status_code == 502
    data = response.json()
    assert data["success"] is False
    assert data["error"]["type"] == "ExecutionError"


@pytest.mark.asyncio
async def test_submit_and_poll_job(client: AsyncClient):
    response = await client.post("/analytics/jobs", json={"operation": "simple_demo"})

    assert response.status_code == 202
    submitted = response.json()
    assert submitted["status"] == "submitted"
    assert submitted["checkStatusUrl"] == f"/analytics/jobs/{submitted['jobId']}"

    # The inline driver has already finished the job
    status_response = await client.get(submitted["checkStatusUrl"])
    assert status_response.status_code == 200
    job = status_response.json()
    assert job["status"] == "completed"
    assert job["attempts"] == 1
    assert job["result"]["recordCount"] == 3
    assert job["error"] is None


@pytest.mark.asyncio
async def test_submitted_unknown_operation_fails(client: AsyncClient, notifier):
    response = await client.post("/analytics/jobs", json={"operation": "invalid_operation_x"})
    assert response.status_code == 202

    job = (await client.get(response.json()["checkStatusUrl"])).json()
    assert job["status"] == "failed"
    assert job["error"]["type"] == "UnknownOperationError"
    assert job["result"] is None
    assert notifier.notified[-1]["status"] == "failed"


@pytest.mark.asyncio
async def test_unknown_job_is_404(client: AsyncClient):
    response = await client.get("/analytics/jobs/job_does_not_exist")

    assert response.status_code == 404
    assert response.json()["type"] == "NotFoundError"


@pytest.mark.asyncio
async def test_spilled_result_can_be_retrieved(client: AsyncClient, services):
    services.router.row_threshold = 1

    response = await client.post("/analytics/jobs", json={"operation": "simple_demo"})
    job = (await client.get(response.json()["checkStatusUrl"])).json()

    payload = job["result"]["payload"]
    assert payload["kind"] == "blob"
    assert "records" not in payload

    result_response = await client.get(payload["retrievalPath"])
    assert result_response.status_code == 200
    stored = result_response.json()
    assert stored["recordCount"] == 3
    assert len(stored["payload"]["records"]) == 3


@pytest.mark.asyncio
async def test_missing_result_is_404(client: AsyncClient):
    response = await client.get("/analytics/results/results/simple_demo/missing.json")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_operation_catalog(client: AsyncClient):
    response = await client.get("/analytics/operations")

    assert response.status_code == 200
    catalog = {item["name"]: item for item in response.json()}
    assert len(catalog) == 10
    assert catalog["custom_complex_query"]["requiredParams"] == ["query"]
    assert catalog["multi_dimensional_analytics"]["defaultParams"] == {"timeframe": "3 months"}


@pytest.mark.asyncio
async def test_scheduled_batch(client: AsyncClient):
    response = await client.post("/analytics/scheduled")

    assert response.status_code == 200
    summary = response.json()
    assert summary["total"] == 2
    assert summary["successful"] + summary["failed"] == 2
    assert [item["operation"] for item in summary["results"]] == [
        "multi_dimensional_analytics",
        "data_integrity_analysis",
    ]


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    response = await client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["database"] == "connected"
    assert data["details"]["operations"] == 10
