from typing import Any, Dict, List, Optional

from analytics_engine.core import models


class RecordingNotifier:
    """Keeps every finished job it is told about."""

    def __init__(self):
        self.notified: List[Dict[str, Any]] = []

    async def notify(self, job: models.AnalyticsJob) -> None:
        self.notified.append({"job_id": job.job_id, "status": job.status})

    async def aclose(self) -> None:
        return None


class ExplodingNotifier(RecordingNotifier):
    async def notify(self, job: models.AnalyticsJob) -> None:
        await super().notify(job)
        raise RuntimeError("webhook down")


class FakeExecutor:
    """Stands in for QueryExecutor; records calls and returns canned rows."""

    dialect_name = "postgresql"

    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None):
        self.rows = rows if rows is not None else [{"value": 1}]
        self.calls: List[Dict[str, Any]] = []

    async def execute(self, sql_template, params=None):
        self.calls.append({"kind": "execute", "sql": str(sql_template), "params": dict(params or {})})
        return list(self.rows)

    async def execute_adhoc(self, sql_text, params=None):
        self.calls.append({"kind": "adhoc", "sql": sql_text, "params": list(params or [])})
        return list(self.rows)
