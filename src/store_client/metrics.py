"""Metric discovery and dashboard aggregation.

Metric documents carry their values under ``metrics.*``. The dashboard needs
summary statistics, a sparkline and the latest value per metric, which only
the Query DSL can compute in one request (percentiles over histogram-typed
fields in particular), so aggregation always goes through ``_search``.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from common.pylogger import get_python_logger
from core.config import (
    HISTOGRAM_PERCENTS,
    MAX_AGGREGATED_METRICS,
    METRIC_DETAIL_DOC_LIMIT,
    METRIC_FIELD_TYPES,
    METRICS_FIELD_PREFIX,
)
from core.filters import ENVIRONMENT_FIELD, TIMESTAMP_FIELD
from core.models import (
    AggregatedMetric,
    AggregateMetricsOptions,
    MetricBucket,
    MetricFieldInfo,
    MetricsAggResult,
    QueryOptions,
    SearchResult,
)
from core.normalizer import from_epoch_millis, get_nested_path
from .store_query import StoreQueryService

logger = get_python_logger(__name__)

HISTOGRAM_TYPE = "histogram"


def _percent_key(percent: float) -> str:
    return f"{float(percent)}"


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return None


class MetricsService:
    """Metric operations on top of a store query client."""

    def __init__(self, client: StoreQueryService):
        self.client = client

    async def get_metric_fields(self, index: Optional[str] = None) -> List[MetricFieldInfo]:
        """
        Discover aggregatable numeric fields under ``metrics.*``.

        Args:
            index: Index pattern, defaults to the client's index

        Returns:
            Metric fields sorted by short name
        """
        caps = await self.client.field_caps(index or self.client.get_index(), f"{METRICS_FIELD_PREFIX}*")

        fields = []
        for name, type_map in caps.fields.items():
            if not type_map:
                continue
            # Only the first mapping type is considered
            info = next(iter(type_map.values()))
            if info.type == "object" or not info.aggregatable:
                continue
            if info.type not in METRIC_FIELD_TYPES:
                continue

            short_name = name[len(METRICS_FIELD_PREFIX):] if name.startswith(METRICS_FIELD_PREFIX) else name
            fields.append(MetricFieldInfo(
                name=name,
                short_name=short_name,
                type=info.type,
                time_series_type=info.time_series_metric or "",
            ))

        fields.sort(key=lambda f: f.short_name)
        return fields

    async def aggregate_metrics(self, opts: Optional[AggregateMetricsOptions] = None) -> MetricsAggResult:
        """Summary statistics, sparkline buckets and latest value for each discovered metric."""
        opts = opts or AggregateMetricsOptions()
        metric_fields = await self.get_metric_fields()
        if not metric_fields:
            logger.info(f"No metric fields found in {self.client.get_index()}")
            return MetricsAggResult(bucket_size=opts.bucket_size)

        if len(metric_fields) > MAX_AGGREGATED_METRICS:
            logger.debug(f"Limiting aggregation to {MAX_AGGREGATED_METRICS} of {len(metric_fields)} metrics")
            metric_fields = metric_fields[:MAX_AGGREGATED_METRICS]

        body = build_aggregation_query(metric_fields, opts)
        data = await self.client.search_raw(body, size=0, operation="aggregation")
        result = parse_aggregation_response(data, metric_fields, opts.bucket_size)
        logger.info(f"Aggregated {len(result.metrics)} metrics (bucket size {opts.bucket_size})")
        return result

    async def metric_detail_docs(self, metric: str, metric_type: str = "",
                                 opts: Optional[QueryOptions] = None) -> SearchResult:
        """
        Latest documents that contain one metric.

        ES|QL cannot evaluate ``IS NOT NULL`` on histogram fields, so those go
        through the Query DSL ``exists`` filter instead.
        """
        base = opts or QueryOptions()
        detail_opts = QueryOptions(
            size=METRIC_DETAIL_DOC_LIMIT,
            lookback=base.lookback,
            service=base.service,
            negate_service=base.negate_service,
            resource=base.resource,
            negate_resource=base.negate_resource,
            metric_field=metric,
            sort_asc=False,
        )
        if metric_type == HISTOGRAM_TYPE:
            return await self.client.tail(detail_opts)
        return await self.client.tail_esql(detail_opts)


def _metric_aggregations(metric: MetricFieldInfo, bucket_size: str) -> Dict[str, Any]:
    if metric.type == HISTOGRAM_TYPE:
        stats = {"percentiles": {"field": metric.name, "percents": list(HISTOGRAM_PERCENTS)}}
        bucket_value = {"percentiles": {"field": metric.name, "percents": [50]}}
    else:
        stats = {"extended_stats": {"field": metric.name}}
        bucket_value = {"avg": {"field": metric.name}}

    return {
        "filter": {"exists": {"field": metric.name}},
        "aggs": {
            "stats": stats,
            "over_time": {
                "date_histogram": {"field": TIMESTAMP_FIELD, "fixed_interval": bucket_size},
                "aggs": {"value": bucket_value},
            },
            "latest": {
                "top_hits": {
                    "size": 1,
                    "sort": [{TIMESTAMP_FIELD: "desc"}],
                    "_source": [metric.name],
                }
            },
            "last_seen": {"max": {"field": TIMESTAMP_FIELD}},
        },
    }


def build_aggregation_query(metric_fields: List[MetricFieldInfo],
                            opts: AggregateMetricsOptions) -> Dict[str, Any]:
    """Build the ``size: 0`` request with one ``m{i}`` aggregation per metric."""
    query: Dict[str, Any] = {
        "size": 0,
        "aggs": {f"m{i}": _metric_aggregations(metric, opts.bucket_size)
                 for i, metric in enumerate(metric_fields)},
    }

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

    if filters or must_not:
        bool_query: Dict[str, Any] = {}
        if filters:
            bool_query["filter"] = filters
        if must_not:
            bool_query["must_not"] = must_not
        query["query"] = {"bool": bool_query}
    return query


def _percentile(agg: Any, percent: float) -> Optional[float]:
    if not isinstance(agg, dict):
        return None
    values = agg.get("values")
    if not isinstance(values, dict):
        return None
    return _as_float(values.get(_percent_key(percent)))


def _epoch_millis(value: Any) -> Optional[datetime]:
    millis = _as_float(value)
    if millis is None:
        return None
    return from_epoch_millis(millis)


def _parse_buckets(over_time: Any, histogram: bool) -> List[MetricBucket]:
    if not isinstance(over_time, dict) or not isinstance(over_time.get("buckets"), list):
        return []

    buckets = []
    for raw in over_time["buckets"]:
        if not isinstance(raw, dict):
            continue
        bucket = MetricBucket(timestamp=_epoch_millis(raw.get("key")) or datetime.fromtimestamp(0, tz=timezone.utc))
        bucket.count = int(_as_float(raw.get("doc_count")) or 0)
        value_agg = raw.get("value")
        if histogram:
            bucket.value = _percentile(value_agg, 50) or 0.0
        elif isinstance(value_agg, dict):
            bucket.value = _as_float(value_agg.get("value")) or 0.0
        buckets.append(bucket)
    return buckets


def _latest_from_top_hit(latest: Any, field_name: str) -> float:
    hits = latest.get("hits") if isinstance(latest, dict) else None
    hit_list = hits.get("hits") if isinstance(hits, dict) else None
    if not hit_list or not isinstance(hit_list[0], dict):
        return 0.0
    source = hit_list[0].get("_source")
    if not isinstance(source, dict):
        return 0.0
    # Sources may hold the value nested or under a flattened dotted key
    value = get_nested_path(source, field_name)
    if value is None:
        value = source.get(field_name)
    return _as_float(value) or 0.0


def parse_aggregation_response(data: Dict[str, Any], metric_fields: List[MetricFieldInfo],
                               bucket_size: str) -> MetricsAggResult:
    """
    Read the ``m{i}`` aggregations back into AggregatedMetric values.

    Histogram fields report min/avg/max as the 0th/50th/100th percentiles and
    use the median as their latest value.
    """
    result = MetricsAggResult(bucket_size=bucket_size)
    aggregations = data.get("aggregations")
    if not isinstance(aggregations, dict):
        return result

    for i, metric in enumerate(metric_fields):
        metric_agg = aggregations.get(f"m{i}")
        if not isinstance(metric_agg, dict):
            continue

        histogram = metric.type == HISTOGRAM_TYPE
        aggregated = AggregatedMetric(
            name=metric.name,
            short_name=metric.short_name,
            type=metric.time_series_type,
        )

        stats = metric_agg.get("stats")
        if histogram:
            aggregated.min = _percentile(stats, 0) or 0.0
            aggregated.avg = _percentile(stats, 50) or 0.0
            aggregated.max = _percentile(stats, 100) or 0.0
            aggregated.latest = aggregated.avg
        else:
            if isinstance(stats, dict):
                aggregated.min = _as_float(stats.get("min")) or 0.0
                aggregated.max = _as_float(stats.get("max")) or 0.0
                aggregated.avg = _as_float(stats.get("avg")) or 0.0
            aggregated.latest = _latest_from_top_hit(metric_agg.get("latest"), metric.name)

        aggregated.buckets = _parse_buckets(metric_agg.get("over_time"), histogram)

        last_seen = metric_agg.get("last_seen")
        if isinstance(last_seen, dict):
            aggregated.last_seen = _epoch_millis(last_seen.get("value"))

        result.metrics.append(aggregated)
    return result
