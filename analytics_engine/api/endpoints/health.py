from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from analytics_engine.core import schemas
from analytics_engine.core.errors import AnalyticsError
from analytics_engine.core.services import AnalyticsServices, get_services

router = APIRouter(tags=["Health"])

services_dep = Annotated[AnalyticsServices, Depends(get_services)]


@router.get("/health", response_model=schemas.HealthResponse)
async def health(services: services_dep):
    """Probe the relational store; 503 when it can't answer SELECT 1."""
    try:
        ping = await services.executor.ping()
    except AnalyticsError as error:
        unhealthy = schemas.HealthResponse(
            status="unhealthy",
            database="disconnected",
            timestamp=datetime.now(timezone.utc),
            error=error.message,
        )
        return JSONResponse(status_code=503, content=unhealthy.model_dump(mode="json"))

    return schemas.HealthResponse(
        status="healthy",
        database="connected",
        timestamp=datetime.now(timezone.utc),
        details={
            "dialect": services.executor.dialect_name,
            "databaseTime": ping.get("timestamp"),
            "operations": len(services.registry.names()),
        },
    )
