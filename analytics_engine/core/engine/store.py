import logging
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from analytics_engine.core import models
from analytics_engine.core.errors import (
    ExecutionError,
    JobConflictError,
    NotFoundError,
    StaleTransitionError,
)
from analytics_engine.core.schemas import JobStatus

# -----------------------------------------------------------------------------
# JOB STORE MODULE
# Purpose: persist one record per async job and guard its status transitions.
# Every status write is a conditional UPDATE, so two attempts racing on the
# same job can't move it backwards.
# -----------------------------------------------------------------------------

logger = logging.getLogger(__name__)

DEFAULT_JOB_TTL = timedelta(days=30)

# Statuses a job may be in for a write of the target status to apply
ALLOWED_PREDECESSORS = {
    JobStatus.RUNNING: (JobStatus.SUBMITTED, JobStatus.RUNNING),
    JobStatus.COMPLETED: (JobStatus.RUNNING,),
    JobStatus.FAILED: (JobStatus.SUBMITTED, JobStatus.RUNNING),
}


class TransitionOutcome(Enum):
    APPLIED = "applied"
    # Already terminal in the requested status; nothing was written
    UNCHANGED = "unchanged"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_job_id() -> str:
    return f"job_{uuid.uuid4().hex}"


class JobStore:
    """
    Job records on the relational store (table `analytics_jobs`).

    Example:
        store = JobStore(session_factory)
        job = await store.create("count_analysis", {"group_by": "industry"})
        await store.update_status(job.job_id, JobStatus.RUNNING, attempts=1)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ttl: timedelta = DEFAULT_JOB_TTL,
    ):
        self.session_factory = session_factory
        self.ttl = ttl

    async def create(
        self,
        operation: str,
        parameters: Optional[Dict[str, Any]] = None,
        job_id: Optional[str] = None,
    ) -> models.AnalyticsJob:
        now = utcnow()
        job = models.AnalyticsJob(
            job_id=job_id or new_job_id(),
            operation=operation,
            parameters=dict(parameters or {}),
            status=JobStatus.SUBMITTED.value,
            attempts=0,
            submitted_at=now,
            updated_at=now,
            expire_at=now + self.ttl,
        )

        async with self.session_factory() as session:
            session.add(job)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise JobConflictError(f"Job {job.job_id} already exists") from None
            except SQLAlchemyError as error:
                await session.rollback()
                raise ExecutionError(f"Failed to create job record: {error}") from error

        return job

    async def get(self, job_id: str) -> models.AnalyticsJob:
        query = select(models.AnalyticsJob).where(
            models.AnalyticsJob.job_id == job_id,
            models.AnalyticsJob.expire_at > utcnow(),
        )
        async with self.session_factory() as session:
            try:
                result = await session.execute(query)
            except SQLAlchemyError as error:
                raise ExecutionError(f"Failed to read job {job_id}: {error}") from error
            job = result.scalars().first()

        if job is None:
            raise NotFoundError(f"Job not found: {job_id}")
        return job

    async def update_status(
        self,
        job_id: str,
        new_status: JobStatus,
        attempts: Optional[int] = None,
        result: Optional[Dict[str, Any]] = None,
        error: Optional[Dict[str, Any]] = None,
    ) -> TransitionOutcome:
        """
        Compare-and-set the job's status.

        Returns APPLIED when the row changed and UNCHANGED when the job is
        already terminal in `new_status`. Raises StaleTransitionError for a
        backwards move and NotFoundError for an unknown or expired job.
        """
        new_status = JobStatus(new_status)
        if new_status not in ALLOWED_PREDECESSORS:
            raise ValueError(f"'{new_status.value}' is not a valid transition target")

        now = utcnow()
        values: Dict[str, Any] = {"status": new_status.value, "updated_at": now}

        if new_status == JobStatus.RUNNING:
            values.update(started_at=now, result=None, error=None)
            if attempts is not None:
                values["attempts"] = attempts
        elif new_status == JobStatus.COMPLETED:
            if result is None:
                raise ValueError("A completed job needs a result")
            values.update(completed_at=now, result=result, error=None)
        else:
            if error is None:
                raise ValueError("A failed job needs an error")
            values.update(completed_at=now, error=error, result=None)

        allowed = [status.value for status in ALLOWED_PREDECESSORS[new_status]]
        stmt = (
            update(models.AnalyticsJob)
            .where(
                models.AnalyticsJob.job_id == job_id,
                models.AnalyticsJob.status.in_(allowed),
                models.AnalyticsJob.expire_at > now,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        async with self.session_factory() as session:
            try:
                outcome = await session.execute(stmt)
                await session.commit()
            except SQLAlchemyError as db_error:
                await session.rollback()
                raise ExecutionError(f"Failed to update job {job_id}: {db_error}") from db_error

        if outcome.rowcount == 1:
            return TransitionOutcome.APPLIED

        current = await self.get(job_id)
        if current.status == new_status.value and new_status.is_terminal:
            return TransitionOutcome.UNCHANGED

        raise StaleTransitionError(job_id, current.status, new_status.value)

    async def list_by_status(
        self,
        status: JobStatus,
        started_before: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[models.AnalyticsJob]:
        query = (
            select(models.AnalyticsJob)
            .where(
                models.AnalyticsJob.status == JobStatus(status).value,
                models.AnalyticsJob.expire_at > utcnow(),
            )
            .order_by(models.AnalyticsJob.submitted_at)
            .limit(limit)
        )
        if started_before is not None:
            query = query.where(models.AnalyticsJob.started_at < started_before)

        async with self.session_factory() as session:
            try:
                result = await session.execute(query)
            except SQLAlchemyError as error:
                raise ExecutionError(f"Failed to list {JobStatus(status).value} jobs: {error}") from error
            return list(result.scalars().all())

    async def purge_expired(self) -> int:
        """Delete records past their TTL; for stores without native expiry."""
        stmt = (
            delete(models.AnalyticsJob)
            .where(models.AnalyticsJob.expire_at <= utcnow())
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()

        if result.rowcount:
            logger.info(f"Purged {result.rowcount} expired job records")
        return result.rowcount or 0
