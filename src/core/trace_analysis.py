"""
Operation-name statistics for trace data.

Assembles per-transaction statistics from store responses. The ES|QL path
needs three result sets (stats per name, trace-to-name mapping, span counts
per trace) that are joined client-side; the Query DSL path reads one nested
aggregation response.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List

from common.pylogger import get_python_logger
from .models import ESQLResult, TransactionNameAgg
from .normalizer import parse_iso_timestamp

logger = get_python_logger(__name__)

MICROS_PER_MS = 1_000
NANOS_PER_MS = 1_000_000

# Columns produced by the ES|QL stats query
STATS_COLUMNS = [
    "tx_count", "unique_traces", "min_duration", "avg_duration", "max_duration",
    "error_count", "last_seen", "transaction.name", "error_rate",
]


@dataclass
class SpanCorrelation:
    """Client-side join inputs for average spans per trace."""
    trace_to_name: Dict[str, str] = field(default_factory=dict)
    spans_per_trace: Dict[str, int] = field(default_factory=dict)

    def total_spans_by_name(self) -> Dict[str, int]:
        totals: Dict[str, int] = {}
        for trace_id, name in self.trace_to_name.items():
            totals[name] = totals.get(name, 0) + self.spans_per_trace.get(trace_id, 0)
        return totals


class OperationStatsAnalyzer:
    """Builds TransactionNameAgg lists from ES|QL and Query DSL responses."""

    @staticmethod
    def parse_stats_rows(result: ESQLResult) -> List[TransactionNameAgg]:
        """
        Parse the per-name stats query.

        Args:
            result: ES|QL result whose columns include STATS_COLUMNS

        Returns:
            List of TransactionNameAgg in row order; durations in milliseconds
        """
        names = result.column_names()
        stats = []
        for row in result.values:
            if len(row) < len(STATS_COLUMNS) or len(row) < len(names):
                continue
            values = dict(zip(names, row))

            agg = TransactionNameAgg(name=_as_str(values.get("transaction.name")))
            agg.count = int(_as_float(values.get("tx_count")))
            agg.trace_count = int(_as_float(values.get("unique_traces")))
            agg.min_duration = _as_float(values.get("min_duration")) / MICROS_PER_MS
            agg.avg_duration = _as_float(values.get("avg_duration")) / MICROS_PER_MS
            agg.max_duration = _as_float(values.get("max_duration")) / MICROS_PER_MS
            agg.error_rate = _as_float(values.get("error_rate"))

            last_seen = values.get("last_seen")
            if isinstance(last_seen, str):
                agg.last_seen = parse_iso_timestamp(last_seen)
            stats.append(agg)
        return stats

    @staticmethod
    def build_span_correlation(mapping: ESQLResult, span_counts: ESQLResult) -> SpanCorrelation:
        """Index the trace-to-name mapping and per-trace span counts by trace ID."""
        correlation = SpanCorrelation()

        mapping_names = mapping.column_names()
        for row in mapping.values:
            values = dict(zip(mapping_names, row))
            name = _as_str(values.get("transaction.name"))
            trace_id = _as_str(values.get("trace.id"))
            if name and trace_id:
                correlation.trace_to_name[trace_id] = name

        count_names = span_counts.column_names()
        for row in span_counts.values:
            values = dict(zip(count_names, row))
            trace_id = _as_str(values.get("trace.id"))
            if trace_id:
                correlation.spans_per_trace[trace_id] = int(_as_float(values.get("span_count")))
        return correlation

    @staticmethod
    def apply_span_averages(stats: List[TransactionNameAgg], correlation: SpanCorrelation) -> None:
        """Set avg_spans = spans in the name's traces / distinct traces."""
        totals = correlation.total_spans_by_name()
        for agg in stats:
            if agg.trace_count > 0:
                agg.avg_spans = totals.get(agg.name, 0) / agg.trace_count

    @staticmethod
    def parse_dsl_aggregations(aggregations: Dict[str, Any]) -> List[TransactionNameAgg]:
        """
        Parse the Query DSL terms aggregation over transaction names.

        Durations there are span ``duration`` values in nanoseconds. The
        average span count is global (spans / distinct traces) because the
        aggregation cannot join spans to transaction names.
        """
        global_avg_spans = 0.0
        span_count = _nested_float(aggregations, "total_spans", "doc_count")
        trace_count = _nested_float(aggregations, "total_unique_traces", "value")
        if trace_count > 0:
            global_avg_spans = span_count / trace_count

        transactions = aggregations.get("transactions")
        tx_names = transactions.get("tx_names") if isinstance(transactions, dict) else None
        buckets = tx_names.get("buckets") if isinstance(tx_names, dict) else None
        if not isinstance(buckets, list):
            return []

        results = []
        for bucket in buckets:
            if not isinstance(bucket, dict):
                continue

            agg = TransactionNameAgg(name=_as_str(bucket.get("key")))
            agg.count = int(_as_float(bucket.get("doc_count")))
            agg.avg_duration = _nested_float(bucket, "avg_duration", "value") / NANOS_PER_MS
            agg.min_duration = _nested_float(bucket, "min_duration", "value") / NANOS_PER_MS
            agg.max_duration = _nested_float(bucket, "max_duration", "value") / NANOS_PER_MS
            agg.trace_count = int(_nested_float(bucket, "unique_traces", "value"))
            agg.avg_spans = global_avg_spans

            last_seen_ms = _nested_float(bucket, "last_seen", "value")
            if last_seen_ms:
                agg.last_seen = datetime.fromtimestamp(last_seen_ms / 1000.0, tz=timezone.utc)

            error_count = _nested_float(bucket, "errors", "doc_count")
            if agg.count > 0:
                agg.error_rate = error_count / agg.count * 100
            results.append(agg)

        logger.debug(f"Parsed {len(results)} transaction name buckets")
        return results


def _as_float(value: Any) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return 0.0


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _nested_float(container: Dict[str, Any], key: str, inner: str) -> float:
    value = container.get(key)
    if isinstance(value, dict):
        return _as_float(value.get(inner))
    return 0.0
