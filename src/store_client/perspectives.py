"""Per-service and per-environment document counts across all signals."""

from typing import Any, Dict, List

from common.pylogger import get_python_logger
from core.config import ALL_INDEX, PERSPECTIVE_TERMS_LIMIT
from core.error_handling import StoreError
from core.filters import ENVIRONMENT_FIELD, FilterBuilder
from core.models import PerspectiveAgg
from .store_query import StoreQueryService

logger = get_python_logger(__name__)

SERVICE_PERSPECTIVE_FIELD = "service.name"
RESOURCE_PERSPECTIVE_FIELD = ENVIRONMENT_FIELD

EVENT_FIELD = "processor.event"
METRICS_FIELD = "metrics"


class PerspectiveQueryError(StoreError):
    """A perspective count query could not be completed."""


class PerspectiveService:
    """Groups log, trace and metric counts by a resource field."""

    def __init__(self, client: StoreQueryService, index: str = ALL_INDEX):
        self.client = client
        self.index = index

    def build_query(self, lookback: str, field: str) -> Dict[str, Any]:
        """
        Terms aggregation over ``field`` with one filter sub-aggregation per signal.

        Traces count transactions only, logs count documents that are neither
        transactions nor spans, and metrics count documents carrying a
        ``metrics`` object.
        """
        body: Dict[str, Any] = FilterBuilder().add_lookback(lookback).build()
        body["aggs"] = {
            "items": {
                "terms": {"field": field, "size": PERSPECTIVE_TERMS_LIMIT},
                "aggs": {
                    "logs": {"filter": {"bool": {"must_not": [
                        {"term": {EVENT_FIELD: "transaction"}},
                        {"term": {EVENT_FIELD: "span"}},
                    ]}}},
                    "traces": {"filter": {"term": {EVENT_FIELD: "transaction"}}},
                    "metrics": {"filter": {"exists": {"field": METRICS_FIELD}}},
                },
            },
        }
        return body

    async def perspective_counts(self, lookback: str, field: str) -> List[PerspectiveAgg]:
        """
        Count documents per signal for each value of a field.

        Args:
            lookback: Store date math such as ``now-1h``; empty means all time
            field: Grouping field, e.g. ``service.name``

        Returns:
            One PerspectiveAgg per non-empty field value, busiest first
        """
        body = self.build_query(lookback, field)
        try:
            data = await self.client.search_raw(body, index=self.index, size=0, operation="perspective")
        except StoreError as e:
            raise PerspectiveQueryError(f"perspective query failed: {e}") from e

        aggs = parse_perspective_buckets(data)
        logger.info(f"Perspective {field}: {len(aggs)} values")
        return aggs

    async def get_services(self, lookback: str) -> List[PerspectiveAgg]:
        return await self.perspective_counts(lookback, SERVICE_PERSPECTIVE_FIELD)

    async def get_resources(self, lookback: str) -> List[PerspectiveAgg]:
        return await self.perspective_counts(lookback, RESOURCE_PERSPECTIVE_FIELD)


def _doc_count(bucket: Dict[str, Any], name: str) -> int:
    sub = bucket.get(name)
    if not isinstance(sub, dict):
        return 0
    value = sub.get("doc_count")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    return 0


def parse_perspective_buckets(data: Dict[str, Any]) -> List[PerspectiveAgg]:
    """Turn ``aggregations.items.buckets`` into PerspectiveAgg values."""
    aggregations = data.get("aggregations")
    items = aggregations.get("items") if isinstance(aggregations, dict) else None
    buckets = items.get("buckets") if isinstance(items, dict) else None
    if not isinstance(buckets, list):
        return []

    aggs = []
    for bucket in buckets:
        if not isinstance(bucket, dict):
            continue
        name = bucket.get("key")
        if not isinstance(name, str) or not name:
            continue
        aggs.append(PerspectiveAgg(
            name=name,
            log_count=_doc_count(bucket, "logs"),
            trace_count=_doc_count(bucket, "traces"),
            metric_count=_doc_count(bucket, "metrics"),
        ))
    return aggs
