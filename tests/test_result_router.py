import json

import pytest

from analytics_engine.core.engine.blobs import LocalBlobStore
from analytics_engine.core.engine.routing import ResultRouter, serialize_rows
from analytics_engine.core.errors import NotFoundError, StorageError
from analytics_engine.core.schemas import BlobHandle, InlineData


def rows(count):
    return [{"id": i, "name": f"entity-{i}"} for i in range(count)]


@pytest.mark.asyncio
async def test_small_result_stays_inline(result_router: ResultRouter):
    envelope = await result_router.route(rows(3), "simple_demo")

    assert isinstance(envelope.payload, InlineData)
    assert envelope.record_count == 3
    assert envelope.payload.records == rows(3)
    assert not envelope.is_spilled


@pytest.mark.asyncio
async def test_exactly_threshold_rows_stays_inline(result_router: ResultRouter):
    """The row rule is strictly greater than the threshold"""
    envelope = await result_router.route(rows(5), "simple_demo")
    assert envelope.payload.kind == "inline"


@pytest.mark.asyncio
async def test_row_threshold_spills(result_router: ResultRouter):
    envelope = await result_router.route(rows(6), "count_analysis", job_id="job_abc")

    assert isinstance(envelope.payload, BlobHandle)
    assert envelope.record_count == 6
    assert envelope.payload.storage_key.startswith("results/count_analysis/")
    assert "job_abc-" in envelope.payload.storage_key
    assert envelope.payload.retrieval_path == f"/analytics/results/{envelope.payload.storage_key}"


@pytest.mark.asyncio
async def test_byte_threshold_spills(tmp_path):
    router = ResultRouter(LocalBlobStore(tmp_path), row_threshold=1000, byte_threshold=100)
    big = [{"blob": "x" * 200}]
    assert len(serialize_rows(big)) > 100

    envelope = await router.route(big, "custom_complex_query")
    assert envelope.payload.kind == "blob"


@pytest.mark.asyncio
async def test_spilled_blob_is_readable_when_route_returns(result_router: ResultRouter):
    envelope = await result_router.route(rows(10), "revenue_analysis")

    stored = await result_router.resolve(envelope.payload.retrieval_path)
    assert stored.record_count == 10
    assert stored.payload.records == rows(10)
    assert await result_router.load_records(envelope) == rows(10)


@pytest.mark.asyncio
async def test_stored_document_is_camel_case_json(result_router: ResultRouter):
    envelope = await result_router.route(rows(6), "simple_demo")
    data = await result_router.blob_store.get(envelope.payload.storage_key)

    document = json.loads(data)
    assert document["recordCount"] == 6
    assert document["payload"]["kind"] == "inline"


@pytest.mark.asyncio
async def test_every_spill_gets_a_fresh_key(result_router: ResultRouter):
    first = await result_router.route(rows(6), "simple_demo", job_id="job_same")
    second = await result_router.route(rows(6), "simple_demo", job_id="job_same")
    assert first.payload.storage_key != second.payload.storage_key


@pytest.mark.asyncio
async def test_blob_keys_are_write_once(tmp_path):
    store = LocalBlobStore(tmp_path)
    await store.put("results/a/1.json", b"{}")

    with pytest.raises(StorageError):
        await store.put("results/a/1.json", b"{\"changed\": true}")
    assert await store.get("results/a/1.json") == b"{}"


@pytest.mark.asyncio
async def test_missing_or_invalid_key_is_not_found(result_router: ResultRouter):
    with pytest.raises(NotFoundError):
        await result_router.resolve("/analytics/results/results/simple_demo/nope.json")
    with pytest.raises(NotFoundError):
        await result_router.resolve("/analytics/results/../../etc/passwd")


@pytest.mark.asyncio
async def test_corrupted_blob_is_storage_error(tmp_path):
    store = LocalBlobStore(tmp_path)
    router = ResultRouter(store)
    await store.put("results/simple_demo/bad.json", b"not json")

    with pytest.raises(StorageError):
        await router.resolve("results/simple_demo/bad.json")


@pytest.mark.asyncio
async def test_default_row_boundaries(tmp_path):
    router = ResultRouter(LocalBlobStore(tmp_path))

    assert (await router.route(rows(1000), "count_analysis")).payload.kind == "inline"
    assert (await router.route(rows(1001), "count_analysis")).payload.kind == "blob"
