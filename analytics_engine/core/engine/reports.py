import re
import uuid
from typing import Any, Dict, List

from sqlalchemy import text

from analytics_engine.core.engine.executor import QueryExecutor, RowSet
from analytics_engine.core.engine.registry import Operation, OperationDescriptor
from analytics_engine.core.errors import ValidationError

# -----------------------------------------------------------------------------
# REPORTS MODULE
# Purpose: the fixed analytics reports and their parameter rules.
# All caller values are bound parameters; JSONB keys and intervals included.
# These statements target PostgreSQL (JSONB, window functions, pg_trgm).
# -----------------------------------------------------------------------------


INTERVAL_PATTERN = re.compile(r"^\s*\d{1,4}\s+(day|week|month|year)s?\s*$", re.IGNORECASE)
IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")
MAX_ADHOC_PARAMS = 100


# =========================
# Parameter rules
# =========================
def _interval(params: Dict[str, Any], key: str) -> str:
    value = params.get(key)
    if not isinstance(value, str) or not INTERVAL_PATTERN.match(value):
        raise ValidationError(
            f"Parameter '{key}' must look like '3 months' or '14 days', got {value!r}"
        )
    return value.strip()


def _identifier(params: Dict[str, Any], key: str) -> str:
    value = params.get(key)
    if not isinstance(value, str) or not IDENTIFIER_PATTERN.match(value):
        raise ValidationError(f"Parameter '{key}' must be an attribute name, got {value!r}")
    return value


def timeframe_params(params: Dict[str, Any]) -> Dict[str, Any]:
    return {**params, "timeframe": _interval(params, "timeframe")}


def analysis_period_params(params: Dict[str, Any]) -> Dict[str, Any]:
    return {**params, "analysisPeriod": _interval(params, "analysisPeriod")}


def metric_group_params(params: Dict[str, Any]) -> Dict[str, Any]:
    return {
        **params,
        "metric": _identifier(params, "metric"),
        "group_by": _identifier(params, "group_by"),
    }


def root_entity_params(params: Dict[str, Any]) -> Dict[str, Any]:
    root = params.get("rootEntityId")
    if root is None:
        return params
    try:
        return {**params, "rootEntityId": str(uuid.UUID(str(root)))}
    except ValueError:
        raise ValidationError(f"Parameter 'rootEntityId' must be a UUID, got {root!r}") from None


def adhoc_params(params: Dict[str, Any]) -> Dict[str, Any]:
    """The custom query's positional params must be a flat list of scalars."""
    if not isinstance(params.get("query"), str):
        raise ValidationError("Parameter 'query' must be a SQL string")

    positional = params.get("params") or []
    if not isinstance(positional, list):
        raise ValidationError("Parameter 'params' must be a list")
    if len(positional) > MAX_ADHOC_PARAMS:
        raise ValidationError(f"At most {MAX_ADHOC_PARAMS} query parameters are allowed")
    for value in positional:
        if value is not None and not isinstance(value, (str, int, float, bool)):
            raise ValidationError("Query parameters must be strings, numbers, booleans or null")
    return {**params, "params": positional}


# =========================
# SQL
# =========================
DATABASE_INFO_SQL = text(
    """
    SELECT table_name, column_name, data_type
    FROM information_schema.columns
    WHERE table_schema = 'public'
    ORDER BY table_name, ordinal_position
    """
)

MULTI_DIMENSIONAL_SQL = text(
    """
    WITH time_periods AS (
        SELECT
            date_bin('1 month'::interval, created_at, '2024-01-01'::timestamp) AS period_start,
            date_bin('1 month'::interval, created_at, '2024-01-01'::timestamp)
                + '1 month'::interval AS period_end
        FROM entities
        WHERE created_at >= NOW() - CAST(CAST(:timeframe AS TEXT) AS INTERVAL)
        GROUP BY 1, 2
    ),
    entity_metrics AS (
        SELECT
            e.entity_id,
            e.entity_type,
            (e.attributes->>'revenue')::numeric AS revenue,
            (e.attributes->>'employees')::integer AS employees,
            tp.period_start,
            COALESCE(
                e.attributes->>'industry',
                e.attributes->>'industry_code',
                e.attributes->>'sector',
                'unknown'
            ) AS industry,
            CASE
                WHEN (e.attributes->>'revenue')::numeric > 0
                     AND (e.attributes->>'employees')::integer > 0
                THEN (e.attributes->>'revenue')::numeric / (e.attributes->>'employees')::integer
            END AS revenue_per_employee
        FROM entities e
        JOIN time_periods tp
          ON e.created_at >= tp.period_start AND e.created_at < tp.period_end
        WHERE e.status = 'active'
    ),
    windowed_metrics AS (
        SELECT
            period_start,
            entity_type,
            industry,
            COUNT(*) AS entity_count,
            AVG(revenue) AS avg_revenue,
            AVG(employees) AS avg_employees,
            AVG(revenue_per_employee) AS avg_revenue_per_employee,
            RANK() OVER (
                PARTITION BY period_start, entity_type ORDER BY AVG(revenue) DESC
            ) AS revenue_rank_by_type,
            PERCENTILE_CONT(0.5) WITHIN GROUP (ORDER BY revenue) AS median_revenue,
            PERCENTILE_CONT(0.8) WITHIN GROUP (ORDER BY revenue) AS p80_revenue,
            LAG(AVG(revenue)) OVER (
                PARTITION BY entity_type, industry ORDER BY period_start
            ) AS prev_period_avg_revenue,
            SUM(CASE WHEN revenue > 1000000 THEN 1 ELSE 0 END) AS enterprise_count,
            SUM(CASE WHEN revenue BETWEEN 500000 AND 1000000 THEN 1 ELSE 0 END) AS medium_business_count
        FROM entity_metrics
        GROUP BY period_start, entity_type, industry
    )
    SELECT
        period_start,
        entity_type,
        industry,
        entity_count,
        avg_revenue,
        avg_employees,
        avg_revenue_per_employee,
        revenue_rank_by_type,
        median_revenue,
        p80_revenue,
        CASE
            WHEN prev_period_avg_revenue > 0
            THEN ((avg_revenue - prev_period_avg_revenue) / prev_period_avg_revenue) * 100
        END AS revenue_growth_pct,
        entity_count::decimal / SUM(entity_count) OVER (PARTITION BY period_start) AS overall_market_share,
        enterprise_count,
        medium_business_count,
        CASE
            WHEN avg_revenue > 5000000 THEN 'Tier 1'
            WHEN avg_revenue > 1000000 THEN 'Tier 2'
            WHEN avg_revenue > 500000 THEN 'Tier 3'
            ELSE 'Tier 4'
        END AS business_tier
    FROM windowed_metrics
    ORDER BY period_start DESC, revenue_rank_by_type
    """
)

RELATIONSHIP_NETWORK_SQL = text(
    """
    WITH RECURSIVE entity_graph AS (
        SELECT
            e.entity_id,
            e.canonical_id,
            e.entity_type,
            e.attributes->>'name' AS entity_name,
            (e.attributes->>'revenue')::numeric AS revenue,
            0 AS depth,
            ARRAY[e.entity_id] AS path,
            FALSE AS cycle
        FROM entities e
        WHERE (
            CAST(:root_entity_id AS TEXT) IS NULL
            AND NOT EXISTS (
                SELECT 1 FROM entity_relationships er WHERE er.child_entity_id = e.entity_id
            )
        ) OR e.entity_id = CAST(CAST(:root_entity_id AS TEXT) AS UUID)

        UNION ALL

        SELECT
            e.entity_id,
            e.canonical_id,
            e.entity_type,
            e.attributes->>'name' AS entity_name,
            (e.attributes->>'revenue')::numeric AS revenue,
            eg.depth + 1,
            eg.path || e.entity_id,
            e.entity_id = ANY(eg.path) AS cycle
        FROM entities e
        JOIN entity_relationships er ON e.entity_id = er.child_entity_id
        JOIN entity_graph eg ON er.parent_entity_id = eg.entity_id
        WHERE NOT eg.cycle AND eg.depth < 5
    ),
    graph_metrics AS (
        SELECT
            eg.entity_id,
            eg.canonical_id,
            eg.entity_type,
            eg.entity_name,
            eg.revenue,
            eg.depth,
            eg.path,
            (SELECT COUNT(*) FROM entity_graph d
              WHERE eg.entity_id = ANY(d.path) AND d.depth > eg.depth) AS downstream_count,
            CASE
                WHEN eg.depth = 0 THEN 'Root'
                WHEN eg.depth = 1 THEN 'Direct Child'
                ELSE 'Indirect Child'
            END AS relationship_type,
            (SELECT SUM(a.revenue) FROM entity_graph a
              WHERE a.entity_id = ANY(eg.path)) AS total_hierarchy_revenue
        FROM entity_graph eg
        WHERE NOT eg.cycle
    )
    SELECT
        *,
        array_length(path, 1) AS path_length,
        CASE
            WHEN total_hierarchy_revenue > 10000000 THEN 'Strategic'
            WHEN total_hierarchy_revenue > 1000000 THEN 'Important'
            ELSE 'Standard'
        END AS business_impact,
        downstream_count::float
            / NULLIF(MAX(downstream_count) OVER (), 0) AS normalized_centrality
    FROM graph_metrics
    ORDER BY depth, total_hierarchy_revenue DESC NULLS LAST
    """
)

TIME_SERIES_SQL = text(
    """
    WITH time_series_base AS (
        SELECT
            e.entity_id,
            e.entity_type,
            e.source_system,
            (e.attributes->>'revenue')::numeric AS current_revenue,
            (e.attributes->>'employees')::integer AS employees,
            COALESCE(e.attributes->>'industry', 'unknown') AS industry,
            e.created_at,
            generate_series(
                date_trunc('month', e.created_at),
                date_trunc('month', NOW()),
                '1 month'::interval
            ) AS period
        FROM entities e
        WHERE e.created_at >= NOW() - CAST(CAST(:analysis_period AS TEXT) AS INTERVAL)
          AND e.status = 'active'
    ),
    monthly_metrics AS (
        SELECT
            entity_id,
            entity_type,
            industry,
            source_system,
            period,
            CASE WHEN period = date_trunc('month', created_at) THEN current_revenue END AS revenue,
            employees,
            (current_revenue - LAG(current_revenue) OVER w)
                / NULLIF(LAG(current_revenue) OVER w, 0) * 100 AS revenue_growth_pct
        FROM time_series_base
        WINDOW w AS (PARTITION BY entity_id ORDER BY period)
    ),
    pattern_analysis AS (
        SELECT
            period,
            entity_type,
            industry,
            source_system,
            COUNT(DISTINCT entity_id) AS active_entities,
            AVG(revenue) AS avg_revenue,
            AVG(employees) AS avg_employees,
            AVG(revenue_growth_pct) AS avg_growth_rate,
            CORR(revenue, employees) AS revenue_employee_correlation,
            SUM(CASE WHEN revenue_growth_pct > 20 THEN 1 ELSE 0 END) AS high_growth_count,
            SUM(CASE WHEN revenue_growth_pct < -10 THEN 1 ELSE 0 END) AS declining_count,
            STDDEV(revenue) AS revenue_stddev,
            PERCENTILE_CONT(0.25) WITHIN GROUP (ORDER BY revenue) AS revenue_p25,
            PERCENTILE_CONT(0.75) WITHIN GROUP (ORDER BY revenue) AS revenue_p75,
            CASE
                WHEN AVG(revenue_growth_pct) > 15 AND COUNT(*) > 10 THEN 'Emerging Hot'
                WHEN AVG(revenue_growth_pct) < -5 THEN 'Declining'
                WHEN STDDEV(revenue_growth_pct) > 25 THEN 'Volatile'
                ELSE 'Stable'
            END AS segment_trend
        FROM monthly_metrics
        WHERE revenue IS NOT NULL
        GROUP BY period, entity_type, industry, source_system
    )
    SELECT
        *,
        high_growth_count::float / NULLIF(active_entities, 0) * 100 AS high_growth_percentage,
        revenue_stddev / NULLIF(avg_revenue, 0) * 100 AS revenue_coefficient_variation,
        LAG(avg_growth_rate) OVER (
            PARTITION BY entity_type, industry ORDER BY period
        ) AS prev_growth_rate
    FROM pattern_analysis
    ORDER BY period DESC, avg_growth_rate DESC NULLS LAST
    """
)

DATA_INTEGRITY_SQL = text(
    """
    WITH cross_system_matches AS (
        SELECT
            e1.canonical_id AS canonical_1,
            e2.canonical_id AS canonical_2,
            e1.attributes->>'name' AS name_1,
            e2.attributes->>'name' AS name_2,
            e1.source_system AS system_1,
            e2.source_system AS system_2,
            similarity(lower(e1.attributes->>'name'), lower(e2.attributes->>'name')) AS name_similarity,
            ABS(
                COALESCE((e1.attributes->>'revenue')::numeric, 0)
                - COALESCE((e2.attributes->>'revenue')::numeric, 0)
            ) AS revenue_discrepancy,
            ABS(
                COALESCE((e1.attributes->>'employees')::integer, 0)
                - COALESCE((e2.attributes->>'employees')::integer, 0)
            ) AS employee_discrepancy
        FROM entities e1
        JOIN entities e2
          ON e1.entity_id <> e2.entity_id
         AND e1.source_system <> e2.source_system
        WHERE e1.attributes->>'name' IS NOT NULL
          AND e2.attributes->>'name' IS NOT NULL
          AND similarity(lower(e1.attributes->>'name'), lower(e2.attributes->>'name')) > 0.6
    ),
    scored AS (
        SELECT
            *,
            25
            + CASE WHEN revenue_discrepancy < 1000 THEN 25 ELSE 0 END
            + CASE WHEN employee_discrepancy < 5 THEN 25 ELSE 0 END
            + CASE WHEN name_similarity > 0.8 THEN 25 ELSE 0 END AS data_quality_score
        FROM cross_system_matches
    )
    SELECT
        canonical_1,
        canonical_2,
        name_1,
        name_2,
        system_1,
        system_2,
        name_similarity,
        revenue_discrepancy,
        data_quality_score,
        CASE
            WHEN data_quality_score >= 90 THEN 'High Confidence'
            WHEN data_quality_score >= 70 THEN 'Medium Confidence'
            WHEN data_quality_score >= 50 THEN 'Low Confidence'
            ELSE 'Poor Match'
        END AS match_confidence,
        CASE
            WHEN revenue_discrepancy > 10000 THEN 'Major Revenue Discrepancy'
            WHEN revenue_discrepancy > 1000 THEN 'Moderate Revenue Discrepancy'
            ELSE 'Minor Revenue Discrepancy'
        END AS discrepancy_level,
        CASE
            WHEN data_quality_score >= 80 THEN 'Auto-merge Recommended'
            WHEN data_quality_score >= 60 THEN 'Manual Review Required'
            ELSE 'Investigate Data Quality'
        END AS recommended_action
    FROM scored
    ORDER BY data_quality_score DESC, name_similarity DESC
    """
)

CUSTOMER_ANALYSIS_SQL = text(
    """
    WITH customer_metrics AS (
        SELECT
            COALESCE(attributes->>CAST(:group_by AS TEXT), 'unknown') AS group_value,
            (attributes->>CAST(:metric AS TEXT))::numeric AS metric_value
        FROM entities
        WHERE status = 'active'
          AND attributes->>CAST(:metric AS TEXT) IS NOT NULL
    )
    SELECT
        group_value,
        COUNT(*) AS customer_count,
        AVG(metric_value) AS avg_metric,
        SUM(metric_value) AS total_metric,
        PERCENTILE_CONT(0.5) WITHIN GROUP (ORDER BY metric_value) AS median_metric
    FROM customer_metrics
    GROUP BY group_value
    HAVING COUNT(*) > 5 AND AVG(metric_value) > 0
    ORDER BY avg_metric DESC
    """
)

REVENUE_ANALYSIS_SQL = text(
    """
    WITH revenue_data AS (
        SELECT
            COALESCE(attributes->>CAST(:group_by AS TEXT), 'unknown') AS group_value,
            (attributes->>CAST(:metric AS TEXT))::numeric AS revenue,
            (attributes->>'employees')::integer AS employees
        FROM entities
        WHERE status = 'active'
          AND attributes->>CAST(:metric AS TEXT) IS NOT NULL
    ),
    ranked_revenue AS (
        SELECT
            *,
            RANK() OVER (PARTITION BY group_value ORDER BY revenue DESC) AS revenue_rank
        FROM revenue_data
    )
    SELECT
        group_value,
        COUNT(*) AS company_count,
        AVG(revenue) AS avg_revenue,
        SUM(revenue) AS total_revenue,
        AVG(employees) AS avg_employees,
        MAX(revenue) AS max_revenue,
        MIN(revenue) AS min_revenue
    FROM ranked_revenue
    WHERE revenue_rank <= 100
    GROUP BY group_value
    HAVING COUNT(*) > 3
    ORDER BY total_revenue DESC
    """
)

COUNT_ANALYSIS_SQL = text(
    """
    WITH base_counts AS (
        SELECT
            COALESCE(attributes->>CAST(:group_by AS TEXT), 'unknown') AS category,
            COUNT(*) AS record_count,
            AVG((attributes->>'employees')::integer) AS avg_employees
        FROM entities
        WHERE status = 'active'
        GROUP BY 1
    ),
    enriched_counts AS (
        SELECT
            *,
            RANK() OVER (ORDER BY record_count DESC) AS count_rank,
            (SELECT PERCENTILE_CONT(0.8) WITHIN GROUP (ORDER BY record_count) FROM base_counts) AS p80_count
        FROM base_counts
    )
    SELECT
        category,
        record_count,
        avg_employees,
        count_rank,
        CASE
            WHEN record_count > p80_count THEN 'High Density'
            WHEN record_count > p80_count * 0.5 THEN 'Medium Density'
            ELSE 'Low Density'
        END AS density_category
    FROM enriched_counts
    ORDER BY count_rank
    """
)

SIMPLE_DEMO_SQL = text(
    """
    SELECT 'Technology' AS industry, 58000 AS avg_revenue, 3 AS customer_count
    UNION ALL
    SELECT 'Retail', 25000, 1
    UNION ALL
    SELECT 'Manufacturing', 120000, 1
    """
)


# =========================
# Handlers
# =========================
async def database_info(executor: QueryExecutor, params: Dict[str, Any]) -> RowSet:
    return await executor.execute(DATABASE_INFO_SQL)


async def multi_dimensional_analytics(executor: QueryExecutor, params: Dict[str, Any]) -> RowSet:
    return await executor.execute(MULTI_DIMENSIONAL_SQL, {"timeframe": params["timeframe"]})


async def relationship_network(executor: QueryExecutor, params: Dict[str, Any]) -> RowSet:
    return await executor.execute(
        RELATIONSHIP_NETWORK_SQL, {"root_entity_id": params.get("rootEntityId")}
    )


async def time_series_patterns(executor: QueryExecutor, params: Dict[str, Any]) -> RowSet:
    return await executor.execute(
        TIME_SERIES_SQL, {"analysis_period": params["analysisPeriod"]}
    )


async def data_integrity_analysis(executor: QueryExecutor, params: Dict[str, Any]) -> RowSet:
    return await executor.execute(DATA_INTEGRITY_SQL)


async def customer_analysis(executor: QueryExecutor, params: Dict[str, Any]) -> RowSet:
    return await executor.execute(
        CUSTOMER_ANALYSIS_SQL, {"metric": params["metric"], "group_by": params["group_by"]}
    )


async def revenue_analysis(executor: QueryExecutor, params: Dict[str, Any]) -> RowSet:
    return await executor.execute(
        REVENUE_ANALYSIS_SQL, {"metric": params["metric"], "group_by": params["group_by"]}
    )


async def count_analysis(executor: QueryExecutor, params: Dict[str, Any]) -> RowSet:
    # `metric` is accepted for API compatibility; the report always counts records
    return await executor.execute(COUNT_ANALYSIS_SQL, {"group_by": params["group_by"]})


async def custom_complex_query(executor: QueryExecutor, params: Dict[str, Any]) -> RowSet:
    # The registry has already passed params["query"] through the sandbox
    return await executor.execute_adhoc(params["query"], params.get("params") or [])


async def simple_demo(executor: QueryExecutor, params: Dict[str, Any]) -> RowSet:
    return await executor.execute(SIMPLE_DEMO_SQL)


DEFAULT_OPERATIONS: List[OperationDescriptor] = [
    OperationDescriptor(
        name=Operation.DATABASE_INFO,
        handler=database_info,
        description="Columns and types of every table in the public schema",
    ),
    OperationDescriptor(
        name=Operation.MULTI_DIMENSIONAL_ANALYTICS,
        handler=multi_dimensional_analytics,
        description="Monthly revenue metrics by entity type and industry",
        default_params={"timeframe": "3 months"},
        param_validator=timeframe_params,
    ),
    OperationDescriptor(
        name=Operation.RELATIONSHIP_NETWORK,
        handler=relationship_network,
        description="Entity hierarchy traversal with revenue roll-ups",
        default_params={"rootEntityId": None},
        param_validator=root_entity_params,
    ),
    OperationDescriptor(
        name=Operation.TIME_SERIES_PATTERNS,
        handler=time_series_patterns,
        description="Growth, volatility and trend segments over time",
        default_params={"analysisPeriod": "6 months"},
        param_validator=analysis_period_params,
    ),
    OperationDescriptor(
        name=Operation.DATA_INTEGRITY_ANALYSIS,
        handler=data_integrity_analysis,
        description="Cross-system duplicate candidates with quality scores",
    ),
    OperationDescriptor(
        name=Operation.CUSTOMER_ANALYSIS,
        handler=customer_analysis,
        description="Customer metric distribution per group",
        default_params={"metric": "lifetime_value", "group_by": "industry"},
        param_validator=metric_group_params,
    ),
    OperationDescriptor(
        name=Operation.REVENUE_ANALYSIS,
        handler=revenue_analysis,
        description="Top-100 revenue statistics per group",
        default_params={"metric": "annual_revenue", "group_by": "region"},
        param_validator=metric_group_params,
    ),
    OperationDescriptor(
        name=Operation.COUNT_ANALYSIS,
        handler=count_analysis,
        description="Record counts and density bands per group",
        default_params={"metric": "customer_count", "group_by": "industry"},
        param_validator=metric_group_params,
    ),
    OperationDescriptor(
        name=Operation.CUSTOM_COMPLEX_QUERY,
        handler=custom_complex_query,
        description="Sandboxed read-only ad-hoc SQL",
        required_params=frozenset({"query"}),
        default_params={"params": []},
        param_validator=adhoc_params,
        sandboxed=True,
    ),
    OperationDescriptor(
        name=Operation.SIMPLE_DEMO,
        handler=simple_demo,
        description="Static demo rows; works on any database",
    ),
]
