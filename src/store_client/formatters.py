"""Formatters for query results and exploration-UI links.

This module contains the text rendering used when results leave the engine:
- KibanaQueryFormatter: ES|QL statements and Discover URLs for a metric or trace
- StoreResultFormatter: plain-text summaries of search, metric and operation results
"""

from typing import Any, List
from urllib.parse import quote_plus

from core.config import DEFAULT_KIBANA_URL, SPANS_PER_TRACE_LIMIT
from core.error_handling import pretty_query as _pretty_query
from core.esql_utils import escape_esql_string, quote_esql_field
from core.filters import TIMESTAMP_FIELD
from core.models import Lookback, MetricsAggResult, SearchResult, TransactionNamesResult

# Time-series types ES|QL can filter on but not aggregate
NON_AGGREGATABLE_METRIC_TYPES = frozenset(["counter", "histogram"])


class KibanaQueryFormatter:
    """Builds ES|QL text and Kibana Discover links for drill-down."""

    @staticmethod
    def metric_esql_query(index: str, metric: str, metric_type: str, lookback: Lookback) -> str:
        """
        Time-series query for one metric.

        Gauges chart their average per bucket; counters and histograms can
        only be counted, so they chart document counts of non-null values.
        """
        field = quote_esql_field(metric)
        where = f"{TIMESTAMP_FIELD} >= NOW() - {lookback.esql_interval()}"
        stats = ["    doc_count = COUNT(*)"]
        if metric_type in NON_AGGREGATABLE_METRIC_TYPES:
            where += f" AND {field} IS NOT NULL"
        else:
            stats = ["    doc_count = COUNT(*),", f"    avg_val = AVG({field})"]

        return "\n".join([
            f"FROM {index}",
            f"| WHERE {where}",
            "| STATS",
            *stats,
            f"  BY bucket = DATE_TRUNC({lookback.esql_bucket_interval()}, {TIMESTAMP_FIELD})",
            "| SORT bucket",
        ])

    @staticmethod
    def trace_esql_query(index: str, trace_id: str, lookback: Lookback) -> str:
        """All events of one trace, matching both trace ID spellings."""
        quoted = f'"{escape_esql_string(trace_id)}"'
        return "\n".join([
            f"FROM {index}",
            f"| WHERE {TIMESTAMP_FIELD} >= NOW() - {lookback.esql_interval()}"
            f" AND (trace.id == {quoted} OR trace_id == {quoted})",
            f"| SORT {TIMESTAMP_FIELD} ASC",
            f"| LIMIT {SPANS_PER_TRACE_LIMIT}",
        ])

    @staticmethod
    def discover_url(base_url: str, space: str, esql: str, lookback: Lookback) -> str:
        """Discover URL that opens in ES|QL mode with the query pre-filled."""
        base = (base_url or DEFAULT_KIBANA_URL).rstrip("/")
        app_path = f"/s/{space}/app/discover" if space else "/app/discover"
        global_state = (
            "(filters:!(),refreshInterval:(pause:!t,value:60000),"
            f"time:(from:{lookback.kibana_time_from()},to:now))"
        )
        app_state = (
            "(columns:!('@timestamp'),dataSource:(type:esql),filters:!(),interval:auto,"
            f"query:(esql:'{quote_plus(esql)}'),sort:!())"
        )
        return f"{base}{app_path}#/?_g={global_state}&_a={app_state}"

    @staticmethod
    def simple_url(base_url: str, space: str = "") -> str:
        base = base_url or DEFAULT_KIBANA_URL
        if space:
            return f"{base.rstrip('/')}/s/{space}"
        return base


class StoreResultFormatter:
    """Plain-text summaries of engine results."""

    MAX_SUMMARY_ROWS = 10

    @staticmethod
    def pretty_query(query: Any) -> str:
        return _pretty_query(query)

    @staticmethod
    def format_search_summary(result: SearchResult) -> str:
        """Short listing of the newest documents in a search result."""
        lines = [f"Found {result.total} documents (showing {len(result.logs)})"]
        for entry in result.logs[:StoreResultFormatter.MAX_SUMMARY_ROWS]:
            timestamp = entry.timestamp.strftime("%Y-%m-%d %H:%M:%S")
            service = entry.service_name or "-"
            lines.append(f"{timestamp} {entry.get_level():<5} {service}: {entry.get_message()}")

        remaining = len(result.logs) - StoreResultFormatter.MAX_SUMMARY_ROWS
        if remaining > 0:
            lines.append(f"... and {remaining} more")
        return "\n".join(lines)

    @staticmethod
    def format_metrics_summary(result: MetricsAggResult) -> str:
        if not result.metrics:
            return "No metrics found."

        lines = [f"{len(result.metrics)} metrics (bucket size {result.bucket_size})"]
        for metric in result.metrics:
            kind = f" [{metric.type}]" if metric.type else ""
            lines.append(
                f"{metric.short_name}{kind}: latest={metric.latest:.2f} "
                f"min={metric.min:.2f} avg={metric.avg:.2f} max={metric.max:.2f} "
                f"buckets={len(metric.buckets)}"
            )
        return "\n".join(lines)

    @staticmethod
    def format_operation_names(result: TransactionNamesResult) -> str:
        """One line per operation, in the order returned by the store."""
        if not result.names:
            return "No operations found."

        lines: List[str] = []
        for agg in result.names:
            lines.append(
                f"{agg.name}: count={agg.count} avg={agg.avg_duration:.1f}ms "
                f"min={agg.min_duration:.1f}ms max={agg.max_duration:.1f}ms "
                f"traces={agg.trace_count} spans/trace={agg.avg_spans:.1f} "
                f"errors={agg.error_rate:.1f}%"
            )
        return "\n".join(lines)
