from datetime import date, datetime, timedelta
from decimal import Decimal
from uuid import UUID

import pytest

from analytics_engine.core.engine.executor import QueryExecutor, to_json_value
from analytics_engine.core.engine.reports import simple_demo
from analytics_engine.core.errors import ExecutionError


def test_to_json_value_normalizes_driver_types():
    assert to_json_value(Decimal("12.50")) == 12.5
    assert to_json_value(Decimal("NaN")) is None
    assert to_json_value(datetime(2026, 1, 2, 3, 4, 5)) == "2026-01-02T03:04:05"
    assert to_json_value(date(2026, 1, 2)) == "2026-01-02"
    assert to_json_value(timedelta(minutes=1)) == 60.0
    assert to_json_value(UUID("6f9619ff-8b86-d011-b42d-00c04fc964ff")) == "6f9619ff-8b86-d011-b42d-00c04fc964ff"
    assert to_json_value({"values": (Decimal("1"), 2)}) == {"values": [1.0, 2]}


def test_to_json_value_drops_non_finite_floats():
    assert to_json_value(float("nan")) is None
    assert to_json_value(float("inf")) is None
    assert to_json_value(float("-inf")) is None
    assert to_json_value(0.25) == 0.25
    assert to_json_value([1.5, float("nan")]) == [1.5, None]


@pytest.mark.asyncio
async def test_execute_binds_named_parameters(db_engine):
    executor = QueryExecutor(db_engine)
    rows = await executor.execute("SELECT :name AS name, :n + 1 AS next_value", {"name": "Acme", "n": 41})
    assert rows == [{"name": "Acme", "next_value": 42}]


@pytest.mark.asyncio
async def test_simple_demo_runs_on_any_database(db_engine):
    rows = await simple_demo(QueryExecutor(db_engine), {})
    assert len(rows) == 3
    assert rows[0] == {"industry": "Technology", "avg_revenue": 58000, "customer_count": 3}


@pytest.mark.asyncio
async def test_adhoc_uses_driver_positional_parameters(db_engine):
    executor = QueryExecutor(db_engine)
    rows = await executor.execute_adhoc("SELECT ? AS a, ? AS b", [1, "two"])
    assert rows == [{"a": 1, "b": "two"}]


@pytest.mark.asyncio
async def test_database_errors_become_execution_errors(db_engine):
    executor = QueryExecutor(db_engine)
    with pytest.raises(ExecutionError) as exc_info:
        await executor.execute("SELECT * FROM table_that_does_not_exist")

    assert exc_info.value.retryable
    assert "table_that_does_not_exist" in exc_info.value.message


@pytest.mark.asyncio
async def test_ping(db_engine):
    ping = await QueryExecutor(db_engine).ping()
    assert ping["status"] == 1
