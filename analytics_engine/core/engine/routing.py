import json
import logging
import re
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as SchemaError

from analytics_engine.core.engine.blobs import LocalBlobStore
from analytics_engine.core.errors import StorageError
from analytics_engine.core.schemas import (
    BlobHandle,
    InlineData,
    ResultEnvelope,
    StoredResult,
)

# -----------------------------------------------------------------------------
# ROUTING MODULE
# Purpose: decide whether a result goes back inline or spills to blob storage.
# Both the synchronous call and async jobs route through here.
# -----------------------------------------------------------------------------

logger = logging.getLogger(__name__)

ROW_THRESHOLD = 1000
BYTE_THRESHOLD = 5_000_000
RETRIEVAL_PREFIX = "/analytics/results/"

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_\-]")


def serialize_rows(rows: List[Dict[str, Any]]) -> bytes:
    """Compact UTF-8 JSON; this is the size the byte threshold is measured on."""
    return json.dumps(rows, separators=(",", ":"), ensure_ascii=False, default=str).encode(
        "utf-8"
    )


class ResultRouter:
    """
    Wraps a RowSet into a ResultEnvelope.

    Rule: more than `row_threshold` rows OR more than `byte_threshold`
    serialized bytes -> persist and return a BlobHandle; otherwise inline.
    The blob is fully written before route() returns.

    Example:
        router = ResultRouter(LocalBlobStore(Path("var/results")))
        envelope = await router.route(rows, "count_analysis", job_id="job_123")
        envelope.payload.kind   # "inline" or "blob"
    """

    def __init__(
        self,
        blob_store: LocalBlobStore,
        row_threshold: int = ROW_THRESHOLD,
        byte_threshold: int = BYTE_THRESHOLD,
        retrieval_prefix: str = RETRIEVAL_PREFIX,
    ):
        self.blob_store = blob_store
        self.row_threshold = row_threshold
        self.byte_threshold = byte_threshold
        self.retrieval_prefix = retrieval_prefix

    def should_spill(self, row_count: int, byte_size: int) -> bool:
        return row_count > self.row_threshold or byte_size > self.byte_threshold

    async def route(
        self,
        rows: List[Dict[str, Any]],
        operation: str,
        job_id: Optional[str] = None,
    ) -> ResultEnvelope:
        generated_at = datetime.now(timezone.utc)
        row_count = len(rows)

        # Row count alone decides most spills, so skip serializing huge sets twice
        if row_count > self.row_threshold:
            spill = True
        else:
            spill = self.should_spill(row_count, len(serialize_rows(rows)))

        if not spill:
            return ResultEnvelope(
                operation=operation,
                generated_at=generated_at,
                record_count=row_count,
                payload=InlineData(records=rows),
            )

        storage_key = self.storage_key(operation, generated_at, job_id)
        document = StoredResult(
            operation=operation,
            generated_at=generated_at,
            record_count=row_count,
            payload=InlineData(records=rows),
        )
        await self.blob_store.put(
            storage_key, document.model_dump_json(by_alias=True).encode("utf-8")
        )
        logger.info(f"Spilled {row_count} rows of {operation} to {storage_key}")

        return ResultEnvelope(
            operation=operation,
            generated_at=generated_at,
            record_count=row_count,
            payload=BlobHandle(
                storage_key=storage_key,
                retrieval_path=self.retrieval_path(storage_key),
            ),
        )

    def storage_key(
        self, operation: str, generated_at: datetime, job_id: Optional[str] = None
    ) -> str:
        """results/<operation>/<YYYY>/<MM>/<DD>/<job id or uuid>-<ns>.json, never reused."""
        safe_operation = _UNSAFE_KEY_CHARS.sub("_", operation) or "unknown"
        suffix = _UNSAFE_KEY_CHARS.sub("_", job_id) if job_id else uuid.uuid4().hex
        return (
            f"results/{safe_operation}/{generated_at:%Y/%m/%d}/"
            f"{suffix}-{time.time_ns()}.json"
        )

    def retrieval_path(self, storage_key: str) -> str:
        return f"{self.retrieval_prefix}{storage_key}"

    def key_from_path(self, retrieval_path: str) -> str:
        if retrieval_path.startswith(self.retrieval_prefix):
            return retrieval_path[len(self.retrieval_prefix):]
        return retrieval_path.lstrip("/")

    async def resolve(self, retrieval_path: str) -> StoredResult:
        """Read a spilled result back by its handle."""
        key = self.key_from_path(retrieval_path)
        data = await self.blob_store.get(key)
        try:
            return StoredResult.model_validate_json(data)
        except SchemaError as error:
            raise StorageError(f"Stored result {key} is corrupted: {error}") from error

    async def load_records(self, envelope: ResultEnvelope) -> List[Dict[str, Any]]:
        """Rows of an envelope regardless of where they live."""
        if isinstance(envelope.payload, InlineData):
            return envelope.payload.records
        stored = await self.resolve(envelope.payload.retrieval_path)
        return stored.payload.records
