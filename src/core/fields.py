"""Display field configuration per signal type.

Each view shows a list of columns; a column may also contribute the store
fields that free-text search runs against.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .config import LOGS_INDEX, METRICS_INDEX, TRACES_INDEX


class SignalType(Enum):
    """Telemetry signal shown by a view."""
    LOGS = "Logs"
    TRACES = "Traces"
    METRICS = "Metrics"

    def index_pattern(self) -> str:
        if self is SignalType.TRACES:
            return TRACES_INDEX
        if self is SignalType.METRICS:
            return METRICS_INDEX
        return LOGS_INDEX


@dataclass
class DisplayField:
    """
    A column in a list view.

    ``search_fields`` of None marks the column as not searchable; an empty
    list means "search the column's own field".
    """
    name: str
    label: str
    width: int = 0  # 0 takes the remaining width
    selected: bool = True
    search_fields: Optional[List[str]] = field(default=None)

    def get_search_fields(self) -> Optional[List[str]]:
        if self.search_fields is None:
            return None
        if not self.search_fields:
            return [self.name]
        return list(self.search_fields)


def default_fields(signal: SignalType) -> List[DisplayField]:
    """Default columns for a signal."""
    if signal is SignalType.TRACES:
        return [
            DisplayField("@timestamp", "TIME", 8),
            DisplayField("service.name", "SERVICE", 15, search_fields=["service.name"]),
            DisplayField("name", "NAME", 25, search_fields=["name"]),
            DisplayField("duration_ms", "DUR(ms)", 9),
            DisplayField("status.code", "STATUS", 6, search_fields=["status.code"]),
            DisplayField("kind", "KIND", 8, search_fields=["kind"]),
            DisplayField("trace_id", "TRACE", 0, search_fields=["trace_id"]),
        ]
    if signal is SignalType.METRICS:
        return [
            DisplayField("@timestamp", "TIME", 8),
            DisplayField("service.name", "SERVICE", 15, search_fields=["service.name"]),
            DisplayField("scope.name", "SCOPE", 20, search_fields=["scope.name"]),
            DisplayField("attributes.span.name", "SPAN", 25, search_fields=["attributes.span.name"]),
            DisplayField("_metrics", "METRICS", 0),
        ]
    # "level" and plain "body" are not populated in OTel log indices
    return [
        DisplayField("@timestamp", "TIME", 8),
        DisplayField("severity_text", "LEVEL", 7, search_fields=["severity_text", "log.level"]),
        DisplayField("_resource", "RESOURCE", 12, search_fields=["resource.attributes.deployment.environment"]),
        DisplayField("service.name", "SERVICE", 15, search_fields=["service.name"]),
        DisplayField("body.text", "MESSAGE", 0, search_fields=["body.text", "message", "event_name"]),
    ]


def collect_search_fields(fields: List[DisplayField]) -> List[str]:
    """Gather the unique search fields of the given columns, in order."""
    seen = set()
    result = []
    for display_field in fields:
        for name in display_field.get_search_fields() or []:
            if name not in seen:
                seen.add(name)
                result.append(name)
    return result
