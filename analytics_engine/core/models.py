from sqlalchemy import JSON, TIMESTAMP, Column, Integer, String

from analytics_engine.core.database import Base


# =========================
# Analytics job record
# =========================
class AnalyticsJob(Base):
    """
    One asynchronous execution of an analytics operation.

    Lifecycle:
    submitted -> running -> completed | failed

    Only the orchestrator writes these rows. `result` is set only once the
    job is completed and `error` only once it failed. Rows past `expire_at`
    are treated as gone.
    """

    __tablename__ = "analytics_jobs"

    job_id = Column(String(64), primary_key=True)

    operation = Column(String(100), nullable=False, index=True)
    parameters = Column(JSON(none_as_null=True), nullable=False, default=dict)

    status = Column(String(20), nullable=False, index=True, default="submitted")
    attempts = Column(Integer, nullable=False, default=0)

    # ResultEnvelope as JSON (inline rows or a blob handle)
    result = Column(JSON(none_as_null=True), nullable=True)
    # {"message": ..., "type": ...}
    error = Column(JSON(none_as_null=True), nullable=True)

    submitted_at = Column(TIMESTAMP(timezone=True), nullable=False)
    started_at = Column(TIMESTAMP(timezone=True), nullable=True)
    completed_at = Column(TIMESTAMP(timezone=True), nullable=True)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False)

    # Set once at creation; reaped by TTL
    expire_at = Column(TIMESTAMP(timezone=True), nullable=False, index=True)
