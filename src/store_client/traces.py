"""Operation-name (transaction) statistics for the traces view."""

from typing import Any, Dict, List, Optional

from common.pylogger import get_python_logger
from core.config import OPERATION_NAMES_LIMIT, TRACE_ID_SCAN_LIMIT
from core.error_handling import StoreError, StoreErrorClassifier
from core.filters import ENVIRONMENT_FIELD, PROCESSOR_EVENT_FIELD, TIMESTAMP_FIELD, FilterBuilder, where_clause
from core.models import QueryOptions, TransactionNameAgg, TransactionNamesResult
from core.trace_analysis import OperationStatsAnalyzer
from .store_query import StoreQueryService

logger = get_python_logger(__name__)

DURATION_FIELD_US = "transaction.duration.us"


class TraceService:
    """Transaction statistics on top of a store query client."""

    def __init__(self, client: StoreQueryService):
        self.client = client

    def _predicates(self, processor_event: str, opts: QueryOptions, with_service: bool = True) -> List[str]:
        builder = FilterBuilder().add_processor_event_filter(processor_event).add_lookback(opts.lookback)
        if with_service:
            builder.add_service_filter(opts.service, opts.negate_service)
            builder.add_resource_filter(opts.resource, opts.negate_resource)
        return builder.build_predicates()

    def build_queries(self, opts: QueryOptions) -> List[str]:
        """
        Render the three ES|QL statements used for operation statistics.

        Returns:
            [stats per name, trace-to-name mapping, span count per trace]
        """
        index = self.client.get_index()
        tx_where = where_clause(self._predicates("transaction", opts))
        span_where = where_clause(self._predicates("span", opts, with_service=False))

        stats_query = "\n".join([
            f"FROM {index}",
            f"| {tx_where}",
            "| STATS",
            "    tx_count = COUNT(*),",
            "    unique_traces = COUNT_DISTINCT(trace.id),",
            f"    min_duration = MIN({DURATION_FIELD_US}),",
            f"    avg_duration = AVG({DURATION_FIELD_US}),",
            f"    max_duration = MAX({DURATION_FIELD_US}),",
            '    error_count = COUNT(CASE(event.outcome == "failure", 1, null)),',
            f"    last_seen = MAX({TIMESTAMP_FIELD})",
            "  BY transaction.name",
            "| EVAL error_rate = TO_DOUBLE(error_count) / tx_count * 100",
            "| SORT tx_count DESC",
            f"| LIMIT {OPERATION_NAMES_LIMIT}",
        ])
        mapping_query = "\n".join([
            f"FROM {index}",
            f"| {tx_where}",
            "| KEEP transaction.name, trace.id",
            f"| LIMIT {TRACE_ID_SCAN_LIMIT}",
        ])
        span_query = "\n".join([
            f"FROM {index}",
            f"| {span_where}",
            "| STATS span_count = COUNT(*) BY trace.id",
        ])
        return [stats_query, mapping_query, span_query]

    async def list_operation_names(self, opts: Optional[QueryOptions] = None) -> TransactionNamesResult:
        """
        Per-operation statistics using ES|QL.

        Average spans per trace needs a join ES|QL cannot do, so the trace to
        name mapping and the span counts are fetched separately and correlated
        here. A store without trace data yet yields an empty result.
        """
        opts = opts or QueryOptions()
        stats_query, mapping_query, span_query = self.build_queries(opts)

        try:
            stats_result = await self.client.execute_esql(stats_query)
            stats = OperationStatsAnalyzer.parse_stats_rows(stats_result)

            mapping_result = await self.client.execute_esql(mapping_query)
            span_result = await self.client.execute_esql(span_query)
        except StoreError as e:
            if StoreErrorClassifier.is_empty_state(e):
                logger.info(f"No trace data yet for operation names: {e}")
                return TransactionNamesResult(query=stats_query)
            raise

        correlation = OperationStatsAnalyzer.build_span_correlation(mapping_result, span_result)
        OperationStatsAnalyzer.apply_span_averages(stats, correlation)

        logger.info(f"Found {len(stats)} operation names in {self.client.get_index()}")
        return TransactionNamesResult(names=stats, query=stats_query)

    async def list_operation_names_dsl(self, opts: Optional[QueryOptions] = None) -> List[TransactionNameAgg]:
        """Per-operation statistics through a Query DSL aggregation (no ES|QL needed)."""
        body = build_operation_names_query(opts or QueryOptions())
        data = await self.client.search_raw(body, size=0, operation="aggregation")

        aggregations = data.get("aggregations")
        if not isinstance(aggregations, dict):
            return []
        return OperationStatsAnalyzer.parse_dsl_aggregations(aggregations)


def build_operation_names_query(opts: QueryOptions) -> Dict[str, Any]:
    """Terms aggregation over transaction names with duration, trace and error sub-aggregations."""
    filters: List[Dict[str, Any]] = []
    must_not: List[Dict[str, Any]] = []
    if opts.lookback:
        filters.append({"range": {TIMESTAMP_FIELD: {"gte": opts.lookback}}})
    if opts.service:
        clause = {"term": {"service.name": opts.service}}
        (must_not if opts.negate_service else filters).append(clause)
    if opts.resource:
        clause = {"term": {ENVIRONMENT_FIELD: opts.resource}}
        (must_not if opts.negate_resource else filters).append(clause)

    bool_query: Dict[str, Any] = {"filter": filters}
    if must_not:
        bool_query["must_not"] = must_not

    error_filter = {
        "bool": {
            "should": [
                {"term": {"status.code": "Error"}},
                {"term": {"status.code": "STATUS_CODE_ERROR"}},
                {"range": {"status.code": {"gte": 2}}},
            ],
            "minimum_should_match": 1,
        }
    }

    return {
        "size": 0,
        "query": {"bool": bool_query},
        "aggs": {
            "total_spans": {"filter": {"term": {PROCESSOR_EVENT_FIELD: "span"}}},
            "total_unique_traces": {"cardinality": {"field": "trace.id"}},
            "transactions": {
                "filter": {"term": {PROCESSOR_EVENT_FIELD: "transaction"}},
                "aggs": {
                    "tx_names": {
                        "terms": {
                            "field": "name",
                            "size": OPERATION_NAMES_LIMIT,
                            "order": {"_count": "desc"},
                        },
                        "aggs": {
                            "avg_duration": {"avg": {"field": "duration"}},
                            "min_duration": {"min": {"field": "duration"}},
                            "max_duration": {"max": {"field": "duration"}},
                            "last_seen": {"max": {"field": TIMESTAMP_FIELD}},
                            "unique_traces": {"cardinality": {"field": "trace.id"}},
                            "errors": {"filter": error_filter},
                        },
                    }
                },
            },
        },
    }
