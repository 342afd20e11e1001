import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional

from analytics_engine.core.engine.executor import QueryExecutor, RowSet
from analytics_engine.core.engine.sandbox import SqlSandbox
from analytics_engine.core.errors import (
    AnalyticsError,
    ExecutionError,
    UnknownOperationError,
    ValidationError,
)

# -----------------------------------------------------------------------------
# REGISTRY MODULE
# Purpose: one lookup table from operation name to handler + parameter rules.
# Why: adding a report is a new descriptor, not another branch in a switch.
# -----------------------------------------------------------------------------

logger = logging.getLogger(__name__)


class Operation(str, Enum):
    """Every analytics operation the engine knows how to run."""

    DATABASE_INFO = "database_info"
    MULTI_DIMENSIONAL_ANALYTICS = "multi_dimensional_analytics"
    RELATIONSHIP_NETWORK = "relationship_network"
    TIME_SERIES_PATTERNS = "time_series_patterns"
    DATA_INTEGRITY_ANALYSIS = "data_integrity_analysis"
    CUSTOMER_ANALYSIS = "customer_analysis"
    REVENUE_ANALYSIS = "revenue_analysis"
    COUNT_ANALYSIS = "count_analysis"
    CUSTOM_COMPLEX_QUERY = "custom_complex_query"
    SIMPLE_DEMO = "simple_demo"


Handler = Callable[[QueryExecutor, Dict[str, Any]], Awaitable[RowSet]]
ParamValidator = Callable[[Dict[str, Any]], Dict[str, Any]]


@dataclass(frozen=True)
class OperationDescriptor:
    name: Operation
    handler: Handler
    description: str = ""
    required_params: frozenset = frozenset()
    default_params: Mapping[str, Any] = field(default_factory=dict)
    # Coerces/validates merged params; raises ValidationError
    param_validator: Optional[ParamValidator] = None
    # Routes params["query"] through the sandbox before execution
    sandboxed: bool = False

    def __post_init__(self):
        # Freeze the defaults so a descriptor can't be mutated after startup
        object.__setattr__(self, "default_params", MappingProxyType(dict(self.default_params)))
        object.__setattr__(self, "required_params", frozenset(self.required_params))


@dataclass(frozen=True)
class PreparedCall:
    descriptor: OperationDescriptor
    params: Dict[str, Any]

    @property
    def operation(self) -> str:
        return self.descriptor.name.value


class OperationRegistry:
    """
    Resolves operation names to descriptors and runs them.

    Example:
        registry = OperationRegistry(executor, SqlSandbox())
        registry.register(OperationDescriptor(Operation.SIMPLE_DEMO, simple_demo))
        rows = await registry.invoke("simple_demo", {})
    """

    def __init__(
        self,
        executor: QueryExecutor,
        sandbox: SqlSandbox,
        descriptors: Iterable[OperationDescriptor] = (),
    ):
        self.executor = executor
        self.sandbox = sandbox
        self._descriptors: Dict[Operation, OperationDescriptor] = {}
        for descriptor in descriptors:
            self.register(descriptor)

    def register(self, descriptor: OperationDescriptor) -> None:
        if descriptor.name in self._descriptors:
            raise ValueError(f"Operation '{descriptor.name.value}' is already registered")
        self._descriptors[descriptor.name] = descriptor

    def names(self) -> List[str]:
        return [operation.value for operation in self._descriptors]

    def descriptors(self) -> List[OperationDescriptor]:
        return list(self._descriptors.values())

    def resolve(self, name: Any) -> OperationDescriptor:
        """Exact match only; anything else is an unknown operation."""
        if not isinstance(name, str):
            raise UnknownOperationError(name)
        try:
            operation = Operation(name)
        except ValueError:
            raise UnknownOperationError(name) from None

        descriptor = self._descriptors.get(operation)
        if descriptor is None:
            raise UnknownOperationError(name)
        return descriptor

    def prepare(self, name: Any, params: Optional[Mapping[str, Any]] = None) -> PreparedCall:
        """
        Resolve the operation and build the final parameter set.

        Caller values win over defaults. Everything here happens before any
        SQL runs, so errors raised are always terminal.
        """
        descriptor = self.resolve(name)

        if params is None:
            params = {}
        if not isinstance(params, Mapping):
            raise ValidationError("Operation parameters must be an object")

        merged = dict(descriptor.default_params)
        merged.update({key: value for key, value in params.items() if value is not None})

        missing = sorted(key for key in descriptor.required_params if merged.get(key) is None)
        if missing:
            raise ValidationError(
                f"Missing required parameter: {missing[0]}",
                details={"missing": missing},
            )

        if descriptor.param_validator is not None:
            merged = descriptor.param_validator(merged)

        if descriptor.sandboxed:
            self.sandbox.ensure_allowed(merged.get("query"))

        return PreparedCall(descriptor=descriptor, params=merged)

    async def run(self, call: PreparedCall) -> RowSet:
        """Execute a prepared call, classifying handler failures."""
        try:
            rows = await call.descriptor.handler(self.executor, call.params)
        except AnalyticsError:
            raise
        except (ValueError, TypeError, KeyError) as error:
            raise ValidationError(f"Invalid parameters for {call.operation}: {error}") from error
        except Exception as error:
            logger.exception(f"Unexpected failure in operation {call.operation}")
            raise ExecutionError(str(error) or type(error).__name__) from error

        if rows is None:
            return []
        return list(rows)

    async def invoke(self, name: Any, params: Optional[Mapping[str, Any]] = None) -> RowSet:
        return await self.run(self.prepare(name, params))
