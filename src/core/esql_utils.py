"""ES|QL helpers: literal escaping, field quoting, interval conversion and row shaping."""

from datetime import datetime, timezone
from typing import Any, Dict, List

from .models import ESQLResult

DEFAULT_ESQL_INTERVAL = "24 hours"
DEFAULT_BUCKET_INTERVAL = "1h"

_ESQL_INTERVALS = {
    "now-5m": "5 minutes",
    "now-10m": "10 minutes",
    "now-15m": "15 minutes",
    "now-30m": "30 minutes",
    "now-1h": "1 hour",
    "now-3h": "3 hours",
    "now-6h": "6 hours",
    "now-12h": "12 hours",
    "now-24h": "24 hours",
    "now-1d": "24 hours",
    "now-1w": "7 days",
}

_BUCKET_INTERVALS = {
    "now-5m": "10s",
    "now-1h": "1m",
    "now-24h": "5m",
    "now-1w": "30m",
}

# ES|QL exposes these dotted names as plain columns
_COMPATIBILITY_COPIES = [
    ("trace.id", "trace_id"),
    ("span.id", "span_id"),
    ("transaction.name", "name"),
]


def lookback_to_esql_interval(lookback: str) -> str:
    """Convert store date math ("now-1h") into an ES|QL interval ("1 hour")."""
    return _ESQL_INTERVALS.get(lookback, DEFAULT_ESQL_INTERVAL)


def lookback_to_bucket_interval(lookback: str) -> str:
    """Pick a date_histogram fixed_interval for a lookback."""
    return _BUCKET_INTERVALS.get(lookback, DEFAULT_BUCKET_INTERVAL)


def escape_esql_string(value: str) -> str:
    """Escape double quotes for an ES|QL string literal; nothing else is escaped."""
    return value.replace('"', '\\"')


def quote_esql_field(field: str) -> str:
    """
    Back-tick quote a field whose name contains literal dots.

    Metric fields such as ``system.cpu.usage`` are single keys in the mapping,
    so the reference must be quoted rather than read as a nested path.
    """
    if field.startswith("`") and field.endswith("`") and len(field) > 1:
        return field
    if "." in field:
        return f"`{field}`"
    return field


def format_rfc3339(value: datetime) -> str:
    """Render a datetime as RFC3339 in UTC; naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def format_esql_timestamp(value: datetime) -> str:
    """Render an absolute time as an ES|QL ``TIMESTAMP("...")`` literal."""
    return f'TIMESTAMP("{format_rfc3339(value)}")'


def set_path_value(target: Dict[str, Any], path: str, value: Any) -> None:
    """Set ``value`` at a dotted path, creating intermediate dicts."""
    parts = [part for part in path.split(".") if part]
    if not parts:
        return

    current = target
    for part in parts[:-1]:
        child = current.get(part)
        if not isinstance(child, dict):
            child = {}
            current[part] = child
        current = child
    current[parts[-1]] = value


def normalize_esql_compatibility(doc: Dict[str, Any]) -> None:
    """Copy ES|QL dotted identifiers to the flat keys the normalizer reads."""
    for source, target in _COMPATIBILITY_COPIES:
        if target in doc and doc[target] not in (None, ""):
            continue
        head, _, tail = source.partition(".")
        nested = doc.get(head)
        if isinstance(nested, dict) and nested.get(tail) not in (None, ""):
            doc[target] = nested[tail]


def esql_rows_to_documents(result: ESQLResult) -> List[Dict[str, Any]]:
    """
    Rebuild nested documents from an ES|QL column/row result.

    Null cells are dropped so that partially populated rows normalize the same
    way as sparse ``_source`` documents.
    """
    names = result.column_names()
    documents = []
    for row in result.values:
        doc: Dict[str, Any] = {}
        for name, value in zip(names, row):
            if value is None:
                continue
            set_path_value(doc, name, value)
        normalize_esql_compatibility(doc)
        documents.append(doc)
    return documents


def empty_esql_result() -> ESQLResult:
    return ESQLResult(columns=[], values=[])
