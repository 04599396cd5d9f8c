"""
Schema normalization for telemetry documents.

Documents arrive in several shapes: OTel semantic conventions (nested
``resource.attributes``), flattened data streams with literal dotted keys,
ECS-style ``log.level`` objects and ad-hoc JSON logs. ``normalize`` turns any
of them into a ``LogEntry``. Each field family is resolved independently by
walking a priority list of known locations, and extraction never raises: a
document with nothing recognizable still yields a record with a timestamp and
the raw payload for later attribute lookups.
"""

import json
import math
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .config import MS_DURATION_DECIMALS, SUB_MS_DURATION_DECIMALS
from .models import LogEntry

# Epoch values above this are milliseconds, below it the string is treated as a date
EPOCH_MILLIS_THRESHOLD = 1e12

_ISO_PATTERN = re.compile(r"^(\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:?\d{2})?$")

_FALLBACK_FORMATS = [
    "%Y-%m-%dT%H:%M:%S.%fZ",
    "%Y-%m-%dT%H:%M:%SZ",
]

_SEVERITY_BUCKETS = [
    (4, "TRACE"),
    (8, "DEBUG"),
    (12, "INFO"),
    (16, "WARN"),
    (20, "ERROR"),
]

_SERVICE_NAME_KEY = "service.name"


def normalize(raw: Any, raw_json: str = "") -> LogEntry:
    """
    Convert one raw telemetry document into a LogEntry.

    Args:
        raw: Parsed ``_source`` document (anything that is not a dict is treated as empty)
        raw_json: Compact JSON text of the document, kept for NDJSON output

    Returns:
        LogEntry with every recognizable field populated
    """
    doc = raw if isinstance(raw, dict) else {}

    entry = LogEntry(
        timestamp=parse_timestamp(doc.get("@timestamp")),
        raw=doc,
        raw_json=raw_json,
    )

    _extract_message(doc, entry)
    entry.level = _extract_level(doc)
    entry.service_name = _extract_service_name(doc)
    entry.container_id = _first_string(doc.get("container_id"), get_nested_path(doc, "container.id"))

    resource = doc.get("resource")
    if isinstance(resource, dict):
        entry.resource = resource

    for key in ("attributes", "status", "metrics", "scope"):
        value = doc.get(key)
        if isinstance(value, dict):
            setattr(entry, key, value)

    for key in ("trace_id", "span_id", "name", "kind"):
        value = doc.get(key)
        if isinstance(value, str):
            setattr(entry, key, value)

    entry.duration = _extract_duration(doc.get("duration"))
    return entry


def parse_timestamp(value: Any) -> datetime:
    """Parse epoch millis (number or numeric string) or an ISO date; default to now."""
    parsed = None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        parsed = from_epoch_millis(float(value))
    elif isinstance(value, str) and value:
        try:
            numeric = float(value)
        except ValueError:
            numeric = None
        if numeric is not None and numeric > EPOCH_MILLIS_THRESHOLD:
            parsed = from_epoch_millis(numeric)
        else:
            parsed = parse_iso_timestamp(value)

    return parsed or datetime.now(timezone.utc)


def from_epoch_millis(millis: float) -> Optional[datetime]:
    if not math.isfinite(millis):
        return None
    try:
        return datetime.fromtimestamp(millis / 1000.0, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def parse_iso_timestamp(value: str) -> Optional[datetime]:
    match = _ISO_PATTERN.match(value.strip())
    if match:
        base, fraction, offset = match.groups()
        # fromisoformat takes at most microseconds; nanosecond precision is truncated
        micros = (fraction or "").ljust(6, "0")[:6]
        if not offset or offset == "Z":
            offset = "+00:00"
        elif ":" not in offset:
            offset = f"{offset[:3]}:{offset[3:]}"
        try:
            parsed = datetime.fromisoformat(f"{base.replace(' ', 'T')}.{micros}{offset}")
            return parsed.astimezone(timezone.utc)
        except ValueError:
            pass

    for fmt in _FALLBACK_FORMATS:
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def _extract_message(doc: Dict[str, Any], entry: LogEntry) -> None:
    body = doc.get("body")
    if isinstance(body, dict):
        text = body.get("text")
        if isinstance(text, str):
            entry.body = text
    elif isinstance(body, str):
        entry.body = body

    message = doc.get("message")
    if isinstance(message, str):
        entry.message = message
        if not entry.body:
            entry.body = message

    event_name = doc.get("event_name")
    if isinstance(event_name, str):
        entry.event_name = event_name
        if not entry.body:
            entry.body = event_name


def _extract_level(doc: Dict[str, Any]) -> str:
    level = _first_string(
        doc.get("severity_text"),
        doc.get("log.level"),
        get_nested_path(doc, "log.level"),
        doc.get("level"),
    )
    if level:
        return level

    severity = doc.get("severity_number")
    if isinstance(severity, (int, float)) and not isinstance(severity, bool) and math.isfinite(severity):
        return severity_number_to_level(int(severity))
    return ""


def severity_number_to_level(severity: int) -> str:
    """Map an OTel severity number (1-24) onto a level name."""
    if severity < 1:
        return ""
    for upper, level in _SEVERITY_BUCKETS:
        if severity <= upper:
            return level
    return "FATAL"


def _extract_service_name(doc: Dict[str, Any]) -> str:
    resource = _as_dict(doc.get("resource"))
    resource_attrs = _as_dict(resource.get("attributes"))
    attrs = _as_dict(doc.get("attributes"))

    # Most format-correct location first
    return _first_string(
        resource_attrs.get(_SERVICE_NAME_KEY),
        get_nested_path(resource_attrs, _SERVICE_NAME_KEY),
        resource.get(_SERVICE_NAME_KEY),
        attrs.get(_SERVICE_NAME_KEY),
        get_nested_path(attrs, _SERVICE_NAME_KEY),
        doc.get(_SERVICE_NAME_KEY),
        get_nested_path(doc, _SERVICE_NAME_KEY),
    )


def _extract_duration(value: Any) -> int:
    if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
        return int(value)
    return 0


def get_nested_path(data: Any, path: str) -> Any:
    """Walk ``data`` along a dotted path, skipping empty segments; None if absent."""
    current = data
    for part in path.split("."):
        if not part:
            continue
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return current


def format_duration_ms(duration_ns: int) -> str:
    """Render nanoseconds as milliseconds: 3 decimals below 1ms, otherwise 1."""
    if not duration_ns:
        return ""
    millis = duration_ns / 1e6
    decimals = SUB_MS_DURATION_DECIMALS if millis < 1 else MS_DURATION_DECIMALS
    return f"{millis:.{decimals}f}"


def stringify(value: Any) -> str:
    """Render an attribute value for display."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, float):
        if value.is_integer() and abs(value) < 1e15:
            return str(int(value))
        return repr(value)
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


def format_metrics(metrics: Dict[str, Any]) -> str:
    """Render a metrics bag as sorted ``k=v`` pairs."""
    return ", ".join(f"{key}={stringify(metrics[key])}" for key in sorted(metrics))


_BUILTIN_FIELDS: Dict[str, Callable[[LogEntry], str]] = {
    "@timestamp": lambda e: e.timestamp.astimezone().strftime("%H:%M:%S"),
    "level": LogEntry.get_level,
    "severity_text": LogEntry.get_level,
    "service.name": lambda e: e.service_name,
    "resource.attributes.service.name": lambda e: e.service_name,
    "body": LogEntry.get_message,
    "body.text": LogEntry.get_message,
    "message": LogEntry.get_message,
    "event_name": lambda e: e.event_name,
    "container_id": lambda e: e.container_id,
    "container.id": lambda e: e.container_id,
    "trace_id": lambda e: e.trace_id,
    "span_id": lambda e: e.span_id,
    "name": lambda e: e.name or e.get_message(),
    "duration": lambda e: str(e.duration) if e.duration else "",
    "duration_ms": lambda e: format_duration_ms(e.duration),
    "kind": lambda e: e.kind,
    "status.code": lambda e: stringify(e.status.get("code")),
    "scope.name": lambda e: stringify(e.scope.get("name")),
    "_metrics": lambda e: format_metrics(e.metrics),
    "_resource": LogEntry.get_resource,
}


def get_field_value(entry: LogEntry, path: str) -> str:
    """
    Resolve a display field for a record.

    Lookup order: synthetic fields, direct attribute key, ``attributes.``
    prefixed path, nested attribute path, ``resource.attributes.`` prefixed
    path, direct resource attribute, flat resource key, raw document path.

    Args:
        entry: Normalized record
        path: Field path as shown in the field picker

    Returns:
        str: Rendered value, or an empty string when nothing matches
    """
    if not path:
        return ""

    builtin = _BUILTIN_FIELDS.get(path)
    if builtin is not None:
        return builtin(entry)

    attrs = entry.attributes
    resource_attrs = entry.resource_attributes()

    candidates: List[Callable[[], Any]] = [lambda: attrs.get(path)]

    if path.startswith("attributes."):
        sub = path[len("attributes."):]
        candidates.append(lambda: attrs.get(sub))
        candidates.append(lambda: get_nested_path(attrs, sub))

    candidates.append(lambda: get_nested_path(attrs, path))

    if path.startswith("resource.attributes."):
        sub_resource = path[len("resource.attributes."):]
        candidates.append(lambda: resource_attrs.get(sub_resource))
        candidates.append(lambda: get_nested_path(resource_attrs, sub_resource))

    candidates.append(lambda: resource_attrs.get(path))
    candidates.append(lambda: entry.resource.get(path))
    candidates.append(lambda: entry.raw.get(path))
    candidates.append(lambda: get_nested_path(entry.raw, path))

    for candidate in candidates:
        value = candidate()
        if value is not None:
            return stringify(value)
    return ""


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _first_string(*values: Any) -> str:
    for value in values:
        if isinstance(value, str) and value:
            return value
    return ""
