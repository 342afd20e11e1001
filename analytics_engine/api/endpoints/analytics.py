from typing import Annotated, List

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from analytics_engine.core import schemas
from analytics_engine.core.engine.orchestrator import JobLogger, new_operation_id
from analytics_engine.core.errors import AnalyticsError, suggestions_for
from analytics_engine.core.services import AnalyticsServices, get_services

router = APIRouter(prefix="/analytics", tags=["Analytics"])

services_dep = Annotated[AnalyticsServices, Depends(get_services)]


@router.post(
    "",
    response_model=schemas.OperationSuccess,
    responses={
        400: {"model": schemas.OperationFailure},
        403: {"model": schemas.OperationFailure},
        502: {"model": schemas.OperationFailure},
        503: {"model": schemas.OperationFailure},
    },
)
async def run_operation(request: schemas.OperationRequest, services: services_dep):
    """
    Run one operation synchronously.

    Failures come back as {success: false, error, suggestions} with the
    status code of the error class.
    """
    operation_id = new_operation_id()
    op_log = JobLogger(operation_id)
    op_log.log("execute", f"Running {request.operation}")

    try:
        envelope = await services.orchestrator.execute_now(
            request.operation, request.parameters
        )
    except AnalyticsError as error:
        op_log.log("execute", f"{error.kind}: {error.message}", "error")
        failure = schemas.OperationFailure(
            operation=request.operation,
            operation_id=operation_id,
            execution_time=op_log.execution_time(),
            error=schemas.ErrorInfo(**error.to_dict()),
            suggestions=suggestions_for(error, request.operation),
        )
        return JSONResponse(
            status_code=error.status_code,
            content=failure.model_dump(mode="json", by_alias=True),
        )

    op_log.log("execute", f"Completed with {envelope.record_count} records")
    return schemas.OperationSuccess(
        operation=request.operation,
        operation_id=operation_id,
        execution_time=op_log.execution_time(),
        result=envelope,
    )


@router.post(
    "/jobs",
    response_model=schemas.JobSubmitted,
    status_code=status.HTTP_202_ACCEPTED,
)
async def submit_job(request: schemas.OperationRequest, services: services_dep):
    """Accept an operation for asynchronous execution and return its job id."""
    job = await services.orchestrator.submit(request.operation, request.parameters)
    await services.driver.dispatch(job.job_id)

    return schemas.JobSubmitted(
        job_id=job.job_id,
        status=schemas.JobStatus.SUBMITTED,
        check_status_url=f"/analytics/jobs/{job.job_id}",
    )


@router.get("/jobs/{job_id}", response_model=schemas.JobStatusResponse)
async def get_job(job_id: str, services: services_dep):
    job = await services.jobs.get(job_id)
    return schemas.JobStatusResponse(
        job_id=job.job_id,
        operation=job.operation,
        status=job.status,
        attempts=job.attempts,
        submitted_at=job.submitted_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
        result=job.result,
        error=job.error,
    )


@router.get("/results/{storage_key:path}", response_model=schemas.StoredResult)
async def get_result(storage_key: str, services: services_dep):
    """Resolve a blob handle's retrieval path to the stored rows."""
    return await services.router.resolve(storage_key)


@router.get("/operations", response_model=List[schemas.OperationInfo])
async def list_operations(services: services_dep):
    return [
        schemas.OperationInfo(
            name=descriptor.name.value,
            description=descriptor.description,
            required_params=sorted(descriptor.required_params),
            default_params=dict(descriptor.default_params),
        )
        for descriptor in services.registry.descriptors()
    ]


@router.post("/scheduled", response_model=schemas.ScheduledRunSummary)
async def run_scheduled(services: services_dep):
    """Run the predefined batch (monthly analytics + integrity check)."""
    return await services.orchestrator.run_scheduled()
