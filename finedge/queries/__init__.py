"""Query, pagination and aggregation engines."""

from finedge.queries.aggregation import (
    AggregationEngine,
    MonthWindow,
    category_summary,
    month_window,
    recent_months,
    summarize,
    summary_from_rows,
    summary_pipeline,
)
from finedge.queries.engine import (
    QueryError,
    filter_records,
    matches,
    run_pipeline,
    sort_records,
)

__all__ = [
    "AggregationEngine",
    "MonthWindow",
    "QueryError",
    "category_summary",
    "filter_records",
    "matches",
    "month_window",
    "recent_months",
    "run_pipeline",
    "sort_records",
    "summarize",
    "summary_from_rows",
    "summary_pipeline",
]
