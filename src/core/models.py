"""
Data models for the telemetry query engine.

This module holds the typed shapes passed between the engine's layers:
- Lookback: relative time windows and their per-language spellings
- StoreConfig: connection options handed to the store client
- LogEntry: the canonical record every raw document is normalized into
- QueryOptions / AggregateMetricsOptions: retrieval parameters
- Result types for search, ES|QL, field caps, metrics, operations and perspectives
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .config import (
    DEFAULT_ES_URL,
    DEFAULT_INDEX,
    REQUEST_TIMEOUT_SECONDS,
    PING_TIMEOUT_SECONDS,
)


class Lookback(Enum):
    """Relative time windows offered by the browsing views."""
    FIVE_MINUTES = "5m"
    ONE_HOUR = "1h"
    ONE_DAY = "24h"
    ONE_WEEK = "1w"
    ALL = "all"

    def es_range(self) -> str:
        """Store date-math start for this window; empty means no time filter."""
        return _ES_RANGES[self]

    def esql_interval(self) -> str:
        """ES|QL interval literal used by exploration-UI queries."""
        return _ESQL_INTERVALS[self]

    def esql_bucket_interval(self) -> str:
        """DATE_TRUNC bucket giving roughly 30-60 buckets over the window."""
        return _ESQL_BUCKETS[self]

    def dsl_bucket_interval(self) -> str:
        """fixed_interval for date_histogram aggregations over the window."""
        return _DSL_BUCKETS[self]

    def kibana_time_from(self) -> str:
        return _KIBANA_FROM[self]

    @classmethod
    def from_value(cls, value: str) -> "Lookback":
        """Parse a window label, defaulting to 24h for unknown input."""
        for lookback in cls:
            if lookback.value == value:
                return lookback
        return cls.ONE_DAY


_ES_RANGES = {
    Lookback.FIVE_MINUTES: "now-5m",
    Lookback.ONE_HOUR: "now-1h",
    Lookback.ONE_DAY: "now-24h",
    Lookback.ONE_WEEK: "now-1w",
    Lookback.ALL: "",
}

_ESQL_INTERVALS = {
    Lookback.FIVE_MINUTES: "5 minutes",
    Lookback.ONE_HOUR: "1 hour",
    Lookback.ONE_DAY: "24 hours",
    Lookback.ONE_WEEK: "7 days",
    Lookback.ALL: "30 days",
}

_ESQL_BUCKETS = {
    Lookback.FIVE_MINUTES: "10 seconds",
    Lookback.ONE_HOUR: "1 minute",
    Lookback.ONE_DAY: "30 minutes",
    Lookback.ONE_WEEK: "6 hours",
    Lookback.ALL: "1 day",
}

_DSL_BUCKETS = {
    Lookback.FIVE_MINUTES: "10s",
    Lookback.ONE_HOUR: "1m",
    Lookback.ONE_DAY: "5m",
    Lookback.ONE_WEEK: "30m",
    Lookback.ALL: "1h",
}

_KIBANA_FROM = {
    Lookback.FIVE_MINUTES: "now-5m",
    Lookback.ONE_HOUR: "now-1h",
    Lookback.ONE_DAY: "now-24h",
    Lookback.ONE_WEEK: "now-7d",
    Lookback.ALL: "now-30d",
}

# Ascending windows tried by the auto-range detector
LOOKBACK_CANDIDATES = (
    Lookback.FIVE_MINUTES,
    Lookback.ONE_HOUR,
    Lookback.ONE_DAY,
    Lookback.ONE_WEEK,
    Lookback.ALL,
)


@dataclass
class StoreConfig:
    """Connection options for the telemetry store."""
    url: str = DEFAULT_ES_URL
    index: str = DEFAULT_INDEX
    api_key: str = ""
    username: str = ""
    password: str = ""
    verify_ssl: bool = True
    timeout: float = REQUEST_TIMEOUT_SECONDS
    ping_timeout: float = PING_TIMEOUT_SECONDS


@dataclass
class LogEntry:
    """Canonical record for one log, span or metric document."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    body: str = ""
    message: str = ""
    level: str = ""
    event_name: str = ""
    service_name: str = ""
    container_id: str = ""
    resource: Dict[str, Any] = field(default_factory=dict)
    attributes: Dict[str, Any] = field(default_factory=dict)

    # Trace fields
    trace_id: str = ""
    span_id: str = ""
    name: str = ""
    kind: str = ""
    duration: int = 0  # nanoseconds
    status: Dict[str, Any] = field(default_factory=dict)

    # Metric fields
    metrics: Dict[str, Any] = field(default_factory=dict)
    scope: Dict[str, Any] = field(default_factory=dict)

    raw: Dict[str, Any] = field(default_factory=dict)
    raw_json: str = ""

    def get_message(self) -> str:
        """Best display message: body, message, event name, then span name."""
        for candidate in (self.body, self.message, self.event_name, self.name):
            if candidate:
                return candidate
        return ""

    def get_level(self) -> str:
        return self.level or "INFO"

    def resource_attributes(self) -> Dict[str, Any]:
        attrs = self.resource.get("attributes")
        return attrs if isinstance(attrs, dict) else {}

    def get_resource(self) -> str:
        """
        Return a short label describing where the record came from.

        Prefers the namespace / environment / host style resource attributes,
        then any other string resource attribute, then flat resource keys.
        """
        attrs = self.resource_attributes()
        for key in ("service.namespace", "deployment.environment", "host.name",
                    "k8s.namespace.name", "cloud.region"):
            value = attrs.get(key)
            if isinstance(value, str) and value:
                return value

        for key in sorted(attrs):
            value = attrs[key]
            if key != "service.name" and isinstance(value, str) and value:
                return value

        for key in ("service.namespace", "deployment.environment", "host.name"):
            value = self.resource.get(key)
            if isinstance(value, str) and value:
                return value
        return ""

    def get_field(self, path: str) -> str:
        """Look up a display value by field path; unknown paths yield ''."""
        from .normalizer import get_field_value
        return get_field_value(self, path)


@dataclass
class QueryOptions:
    """Parameters for document retrieval (tail, search and count)."""
    size: int = 0
    service: str = ""
    negate_service: bool = False
    resource: str = ""
    negate_resource: bool = False
    level: str = ""
    container_id: str = ""
    sort_asc: bool = False
    lookback: str = ""  # store date math such as "now-1h"; empty means no time filter
    from_time: Optional[datetime] = None
    to_time: Optional[datetime] = None
    processor_event: str = ""
    transaction_name: str = ""
    trace_id: str = ""
    metric_field: str = ""
    search_fields: List[str] = field(default_factory=list)


@dataclass
class AggregateMetricsOptions:
    """Parameters for the metrics dashboard aggregation."""
    lookback: str = ""
    bucket_size: str = "1m"
    service: str = ""
    negate_service: bool = False
    resource: str = ""
    negate_resource: bool = False


@dataclass
class SearchResult:
    """Normalized documents plus the query text that produced them."""
    logs: List[LogEntry] = field(default_factory=list)
    total: int = 0
    query: str = ""
    scroll_id: str = ""


class ESQLColumn(BaseModel):
    """Column descriptor in an ES|QL response."""
    name: str
    type: str = ""


class ESQLResult(BaseModel):
    """Tabular result of an ES|QL query."""
    columns: List[ESQLColumn] = Field(default_factory=list)
    values: List[List[Any]] = Field(default_factory=list)
    took: Optional[int] = None
    is_partial: bool = False

    def column_names(self) -> List[str]:
        return [column.name for column in self.columns]


class FieldCapsInfo(BaseModel):
    """Capabilities of one field for one mapping type."""
    type: str = ""
    searchable: bool = False
    aggregatable: bool = False
    time_series_metric: Optional[str] = None


class FieldCapsResponse(BaseModel):
    """Response of the field capabilities endpoint."""
    indices: List[str] = Field(default_factory=list)
    fields: Dict[str, Dict[str, FieldCapsInfo]] = Field(default_factory=dict)


@dataclass
class FieldInfo:
    """A discovered field with an optional populated-document count."""
    name: str
    type: str = ""
    searchable: bool = False
    aggregatable: bool = False
    doc_count: int = 0


@dataclass
class MetricFieldInfo:
    """A metric field discovered through field caps."""
    name: str
    short_name: str
    type: str
    time_series_type: str = ""


@dataclass
class MetricBucket:
    timestamp: datetime
    value: float = 0.0
    count: int = 0


@dataclass
class AggregatedMetric:
    """Summary statistics and sparkline buckets for one metric."""
    name: str
    short_name: str
    type: str = ""
    min: float = 0.0
    max: float = 0.0
    avg: float = 0.0
    latest: float = 0.0
    buckets: List[MetricBucket] = field(default_factory=list)
    last_seen: Optional[datetime] = None


@dataclass
class MetricsAggResult:
    metrics: List[AggregatedMetric] = field(default_factory=list)
    bucket_size: str = ""


@dataclass
class TransactionNameAgg:
    """Per-operation statistics; durations are in milliseconds."""
    name: str
    count: int = 0
    avg_duration: float = 0.0
    min_duration: float = 0.0
    max_duration: float = 0.0
    trace_count: int = 0
    avg_spans: float = 0.0
    error_rate: float = 0.0
    last_seen: Optional[datetime] = None


@dataclass
class TransactionNamesResult:
    names: List[TransactionNameAgg] = field(default_factory=list)
    query: str = ""


@dataclass
class PerspectiveAgg:
    """Document counts per signal for one service or environment."""
    name: str
    log_count: int = 0
    trace_count: int = 0
    metric_count: int = 0
