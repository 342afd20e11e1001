"""
Error taxonomy for the analytics engine.

Every failure that crosses the Registry boundary is one of these classes.
`retryable` tells the workflow driver whether a bounded retry is allowed;
`status_code` is what the HTTP layer answers with.
"""

from typing import Any, Dict, List, Optional


class AnalyticsError(Exception):
    """Base exception for all engine errors."""

    retryable = False
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "type": self.kind}


# =========================
# Terminal, caller-fixable
# =========================
class ValidationError(AnalyticsError):
    """Missing or malformed operation parameters."""

    status_code = 400


class UnknownOperationError(AnalyticsError):
    status_code = 400

    def __init__(self, operation: Any):
        self.operation = operation
        super().__init__(f"Unknown analytics operation: {operation}")


class ForbiddenQueryError(AnalyticsError):
    """Ad-hoc SQL rejected by the sandbox."""

    status_code = 403


class NotFoundError(AnalyticsError):
    """Unknown (or expired) job id or result handle."""

    status_code = 404


# =========================
# Retryable, bounded
# =========================
class ExecutionError(AnalyticsError):
    """The relational store failed to run a statement."""

    retryable = True
    status_code = 502


class StorageError(AnalyticsError):
    """The blob store failed to write or read a result."""

    retryable = True
    status_code = 503


# =========================
# Job store concurrency
# =========================
class JobConflictError(AnalyticsError):
    status_code = 409


class StaleTransitionError(AnalyticsError):
    """A status write that would move a job backwards."""

    status_code = 409

    def __init__(self, job_id: str, current: str, target: str):
        self.job_id = job_id
        self.current = current
        self.target = target
        super().__init__(
            f"Job {job_id} cannot move from '{current}' to '{target}'"
        )


OPERATION_HINTS = {
    "relationship_network": "Try specifying a rootEntityId to limit the graph traversal",
    "multi_dimensional_analytics": "Try using a shorter timeframe for initial analysis",
    "custom_complex_query": "Only a single read-only SELECT statement is accepted",
}


def suggestions_for(error: Exception, operation: Optional[str]) -> List[str]:
    """
    Build remediation hints for a failed operation.

    Example:
        suggestions_for(ExecutionError("statement timeout"), "count_analysis")
        -> ["Try reducing the analysis timeframe", "Consider using smaller data subsets"]
    """
    message = str(error).lower()
    suggestions = []

    if "timeout" in message:
        suggestions.append("Try reducing the analysis timeframe")
        suggestions.append("Consider using smaller data subsets")

    if "memory" in message:
        suggestions.append("Try using more specific filters")
        suggestions.append("Consider implementing pagination")

    if "syntax" in message:
        suggestions.append("Check query syntax and parameter types")

    if isinstance(error, UnknownOperationError):
        suggestions.append("List available operations with GET /analytics/operations")

    if isinstance(error, ValidationError) and "missing" in message:
        suggestions.append("Provide every required parameter for this operation")

    hint = OPERATION_HINTS.get(operation or "")
    if hint:
        suggestions.append(hint)

    return suggestions or ["Check parameters and try again"]
