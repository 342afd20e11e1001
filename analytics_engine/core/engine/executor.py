import logging
import math
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.engine import Result
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine
from sqlalchemy.sql.elements import TextClause

from analytics_engine.core.errors import ExecutionError

# -----------------------------------------------------------------------------
# EXECUTOR MODULE
# Purpose: run one SQL statement against the relational store and hand back
# plain JSON-friendly rows.
# The engine (and its pool) is owned by the process entry point, not here.
# -----------------------------------------------------------------------------

logger = logging.getLogger(__name__)

RowSet = List[Dict[str, Any]]
Scalar = Union[str, int, float, bool, None]


def to_json_value(value: Any) -> Any:
    """
    Normalize driver values so a RowSet survives a JSON round-trip unchanged.

    JSON has no NaN or Infinity, so non-finite floats and Decimals become None.
    """
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, Decimal):
        return float(value) if value.is_finite() else None
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, (list, tuple)):
        return [to_json_value(item) for item in value]
    if isinstance(value, dict):
        return {str(key): to_json_value(val) for key, val in value.items()}
    return value


def rows_from_result(result: Result) -> RowSet:
    if not result.returns_rows:
        return []
    return [
        {key: to_json_value(val) for key, val in row._mapping.items()}
        for row in result
    ]


class QueryExecutor:
    """
    Runs parameterized statements on a shared AsyncEngine.

    Args:
        engine: Process-scoped engine; its pool bounds concurrent connections.
        statement_timeout_ms: Per-statement limit applied on PostgreSQL.

    Example:
        executor = QueryExecutor(engine)
        rows = await executor.execute(
            "SELECT entity_type, count(*) AS n FROM entities WHERE status = :status GROUP BY 1",
            {"status": "active"},
        )
    """

    def __init__(self, engine: AsyncEngine, statement_timeout_ms: Optional[int] = None):
        self.engine = engine
        self.statement_timeout_ms = statement_timeout_ms

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    async def execute(
        self,
        sql_template: Union[str, TextClause],
        params: Optional[Mapping[str, Any]] = None,
    ) -> RowSet:
        """Run a registry-defined statement with bound named parameters."""
        statement = text(sql_template) if isinstance(sql_template, str) else sql_template

        try:
            async with self.engine.connect() as conn:
                await self._apply_session_limits(conn)
                result = await conn.execute(statement, dict(params or {}))
                rows = rows_from_result(result)
                return rows
        except (SQLAlchemyError, OSError, TimeoutError) as error:
            raise self._wrap(error) from error

    async def execute_adhoc(
        self, sql_text: str, params: Optional[Sequence[Scalar]] = None
    ) -> RowSet:
        """
        Run sandbox-approved caller SQL.

        Parameters use the driver's own positional style ($1 on PostgreSQL,
        ? on SQLite). The transaction is never committed.
        """
        try:
            async with self.engine.connect() as conn:
                if self.dialect_name == "postgresql":
                    await conn.exec_driver_sql("SET TRANSACTION READ ONLY")
                await self._apply_session_limits(conn)
                if params:
                    result = await conn.exec_driver_sql(sql_text, tuple(params))
                else:
                    result = await conn.exec_driver_sql(sql_text)
                rows = rows_from_result(result)
                await conn.rollback()
                return rows
        except (SQLAlchemyError, OSError, TimeoutError) as error:
            raise self._wrap(error) from error

    async def ping(self) -> Dict[str, Any]:
        """Round-trip to the database for the health endpoint."""
        rows = await self.execute("SELECT 1 AS status, CURRENT_TIMESTAMP AS timestamp")
        return rows[0] if rows else {}

    async def _apply_session_limits(self, conn: AsyncConnection) -> None:
        if self.statement_timeout_ms and self.dialect_name == "postgresql":
            # SET doesn't accept bind parameters; the value is an int from settings
            await conn.exec_driver_sql(
                f"SET LOCAL statement_timeout = {int(self.statement_timeout_ms)}"
            )

    @staticmethod
    def _wrap(error: Exception) -> ExecutionError:
        original = getattr(error, "orig", None) or error
        message = str(original).strip() or type(original).__name__
        if isinstance(error, TimeoutError) and "timeout" not in message.lower():
            message = f"Statement timeout: {message}"
        logger.error(f"Query execution failed: {message}")
        return ExecutionError(message, details={"driver_error": type(original).__name__})
