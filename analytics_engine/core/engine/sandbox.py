import re
from dataclasses import dataclass
from typing import Optional

import sqlglot
from sqlglot import exp
from sqlglot.errors import ParseError

from analytics_engine.core.errors import ForbiddenQueryError


# -----------------------------------------------------------------------------
# SANDBOX MODULE
# Purpose: screen caller-supplied ad-hoc SQL before it reaches the executor.
# Two layers: a keyword blocklist for mutating statements, then a parse that
# only accepts a single read-only SELECT.
# -----------------------------------------------------------------------------


DEFAULT_MAX_QUERY_LENGTH = 10_000

FORBIDDEN_PATTERNS = [
    (re.compile(r"\bDROP\s+", re.IGNORECASE), "DROP"),
    (re.compile(r"\bDELETE\s+FROM\b", re.IGNORECASE), "DELETE FROM"),
    (re.compile(r"\bTRUNCATE\s+", re.IGNORECASE), "TRUNCATE"),
    (re.compile(r"\bINSERT\s+INTO\b", re.IGNORECASE), "INSERT INTO"),
    (re.compile(r"\bUPDATE\s+[\w.\"]+\s+SET\b", re.IGNORECASE), "UPDATE ... SET"),
    (re.compile(r"\bCREATE\s+", re.IGNORECASE), "CREATE"),
    (re.compile(r"\bALTER\s+", re.IGNORECASE), "ALTER"),
    (re.compile(r"\bGRANT\s+", re.IGNORECASE), "GRANT"),
    (re.compile(r"\bREVOKE\s+", re.IGNORECASE), "REVOKE"),
]

# Top-level expression types that only read
READ_ONLY_STATEMENTS = (exp.Select, exp.Union, exp.Intersect, exp.Except)

# Nodes that write or lock even when nested inside a SELECT (CTEs, subqueries)
WRITE_NODES = (
    exp.Insert,
    exp.Update,
    exp.Delete,
    exp.Drop,
    exp.Create,
    exp.Alter,
    exp.Merge,
    exp.Into,
    exp.Lock,
)

# Admin and side-effect functions a read-only query must never call
FORBIDDEN_FUNCTIONS = frozenset(
    {
        "pg_terminate_backend",
        "pg_cancel_backend",
        "pg_reload_conf",
        "pg_rotate_logfile",
        "pg_promote",
        "pg_sleep",
        "set_config",
        "pg_read_file",
        "pg_read_binary_file",
        "pg_ls_dir",
        "pg_stat_file",
        "lo_import",
        "lo_export",
    }
)
FORBIDDEN_FUNCTION_PREFIXES = ("dblink",)


def _function_name(node: exp.Func) -> str:
    if isinstance(node, (exp.Anonymous, exp.AnonymousAggFunc)):
        return str(node.name).lower()
    return node.sql_name().lower()


def is_forbidden_function(name: str) -> bool:
    return name in FORBIDDEN_FUNCTIONS or name.startswith(FORBIDDEN_FUNCTION_PREFIXES)


@dataclass(frozen=True)
class SandboxVerdict:
    allowed: bool
    reason: Optional[str] = None


ALLOWED = SandboxVerdict(allowed=True)


class SqlSandbox:
    """
    Gatekeeper for ad-hoc queries.

    Never used for the registry's own report SQL, only for text a caller
    sends through the custom query operation.

    Example:
        sandbox = SqlSandbox()
        sandbox.validate("SELECT 1").allowed   # True
        sandbox.validate("DROP TABLE entities").reason
        # "Query contains forbidden operations: DROP"
    """

    def __init__(self, max_length: int = DEFAULT_MAX_QUERY_LENGTH, dialect: str = "postgres"):
        self.max_length = max_length
        self.dialect = dialect

    def validate(self, sql_text: str) -> SandboxVerdict:
        if not isinstance(sql_text, str) or not sql_text.strip():
            return SandboxVerdict(False, "Query must be a non-empty string")

        if len(sql_text) > self.max_length:
            return SandboxVerdict(
                False,
                f"Query too complex. Maximum length of {self.max_length} characters exceeded.",
            )

        for pattern, label in FORBIDDEN_PATTERNS:
            if pattern.search(sql_text):
                return SandboxVerdict(False, f"Query contains forbidden operations: {label}")

        return self._check_structure(sql_text)

    def ensure_allowed(self, sql_text: str) -> None:
        verdict = self.validate(sql_text)
        if not verdict.allowed:
            raise ForbiddenQueryError(verdict.reason or "Query rejected by sandbox")

    def _check_structure(self, sql_text: str) -> SandboxVerdict:
        """Only one statement, and it has to be a read-only SELECT."""
        try:
            statements = [
                statement
                for statement in sqlglot.parse(sql_text, read=self.dialect)
                if statement is not None
            ]
        except ParseError as error:
            return SandboxVerdict(False, f"Query could not be parsed (syntax): {error}")

        if not statements:
            return SandboxVerdict(False, "Query is empty")

        if len(statements) > 1:
            return SandboxVerdict(False, "Multi-statement queries are forbidden")

        statement = statements[0]
        if not isinstance(statement, READ_ONLY_STATEMENTS):
            return SandboxVerdict(
                False, f"Only SELECT statements are allowed, got {statement.key.upper()}"
            )

        for node in statement.find_all(*WRITE_NODES):
            return SandboxVerdict(
                False, f"Query contains forbidden operations: {node.key.upper()}"
            )

        for node in statement.find_all(exp.Func):
            name = _function_name(node)
            if is_forbidden_function(name):
                return SandboxVerdict(False, f"Query calls a forbidden function: {name}")

        return ALLOWED
