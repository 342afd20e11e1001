from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# =========================
# Enums
# =========================
class JobStatus(str, Enum):
    SUBMITTED = "submitted"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class CamelModel(BaseModel):
    """API models speak camelCase on the wire and snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =========================
# RESULT ENVELOPE
# =========================
class InlineData(CamelModel):
    kind: Literal["inline"] = "inline"
    records: List[Dict[str, Any]]


class BlobHandle(CamelModel):
    kind: Literal["blob"] = "blob"
    storage_key: str
    retrieval_path: str


ResultPayload = Annotated[Union[InlineData, BlobHandle], Field(discriminator="kind")]


class ResultEnvelope(CamelModel):
    operation: str
    generated_at: datetime
    record_count: int
    payload: ResultPayload

    @property
    def is_spilled(self) -> bool:
        return isinstance(self.payload, BlobHandle)


class StoredResult(CamelModel):
    """What a blob handle resolves to."""

    operation: str
    generated_at: datetime
    record_count: int
    payload: InlineData


# =========================
# REQUESTS
# =========================
class OperationRequest(BaseModel):
    # Unknown names are rejected by the registry, not here
    operation: str
    parameters: Optional[Dict[str, Any]] = None


# =========================
# RESPONSES
# =========================
class ErrorInfo(BaseModel):
    message: str
    type: str


class OperationSuccess(CamelModel):
    success: Literal[True] = True
    operation: str
    operation_id: str
    execution_time: str
    result: ResultEnvelope


class OperationFailure(CamelModel):
    success: Literal[False] = False
    operation: str
    operation_id: str
    execution_time: str
    error: ErrorInfo
    suggestions: List[str] = []


class JobSubmitted(CamelModel):
    job_id: str
    status: JobStatus
    check_status_url: str


class JobStatusResponse(CamelModel):
    job_id: str
    operation: str
    status: JobStatus
    attempts: int
    submitted_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result: Optional[ResultEnvelope] = None
    error: Optional[ErrorInfo] = None


class OperationInfo(CamelModel):
    name: str
    description: str
    required_params: List[str]
    default_params: Dict[str, Any]


class ScheduledRunResult(CamelModel):
    operation: str
    description: str
    success: bool
    execution_time: Optional[str] = None
    result_count: int = 0
    error: Optional[str] = None


class ScheduledRunSummary(CamelModel):
    timestamp: datetime
    results: List[ScheduledRunResult]
    total: int
    successful: int
    failed: int


class HealthResponse(BaseModel):
    status: Literal["healthy", "unhealthy"]
    database: Literal["connected", "disconnected"]
    timestamp: datetime
    details: Dict[str, Any] = {}
    error: Optional[str] = None
