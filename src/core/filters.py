"""
Filter intents and their two renderings.

A ``FilterBuilder`` accumulates semantic filter intents (time range, service,
environment, level, trace correlation, free text, ...) into a
``FilterIntentSet``. The same set is rendered by two pure functions:

- ``render_structured``: a Query DSL ``bool`` tree with ``must``/``must_not``
- ``render_piped``: ES|QL ``WHERE`` predicates joined with ``AND``

Fields that live in different places depending on the ingest convention
(service name, level, transaction name) render as or-groups so that the
query matches OTel, ECS and flat documents alike.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from common.pylogger import get_python_logger
from .config import DEFAULT_QUERY_SIZE, DSL_SEARCH_FIELDS, ESQL_SEARCH_FIELDS
from .esql_utils import (
    escape_esql_string,
    format_esql_timestamp,
    format_rfc3339,
    lookback_to_esql_interval,
    quote_esql_field,
)
from .models import QueryOptions

logger = get_python_logger(__name__)

# Where each convention-dependent field may live
SERVICE_FIELDS = ["resource.attributes.service.name", "resource.service.name"]
LEVEL_FIELDS = ["severity_text", "level"]
TRANSACTION_NAME_FIELDS = ["transaction.name", "name"]
ENVIRONMENT_FIELD = "resource.attributes.deployment.environment"
PROCESSOR_EVENT_FIELD = "attributes.processor.event"
CONTAINER_ID_FIELD = "container_id"
TRACE_ID_FIELD = "trace_id"
TIMESTAMP_FIELD = "@timestamp"


class IntentKind(Enum):
    """Filter vocabulary understood by both renderers."""
    TIME_RANGE = "time_range"
    SERVICE = "service"
    RESOURCE = "resource"
    LEVEL = "level"
    CONTAINER_PREFIX = "container_prefix"
    PREFIX = "prefix"
    PROCESSOR_EVENT = "processor_event"
    TRANSACTION_NAME = "transaction_name"
    TRACE_ID = "trace_id"
    EXISTS = "exists"
    QUERY_STRING = "query_string"
    CLAUSE = "clause"


@dataclass
class FilterIntent:
    """One filter request; only the attributes relevant to ``kind`` are set."""
    kind: IntentKind
    value: str = ""
    negate: bool = False
    field_name: str = ""
    fields: List[str] = field(default_factory=list)
    lookback: str = ""
    time_from: Optional[datetime] = None
    time_to: Optional[datetime] = None
    clause: Optional[Dict[str, Any]] = None


@dataclass
class FilterIntentSet:
    """Ordered collection of filter intents for one query."""
    intents: List[FilterIntent] = field(default_factory=list)

    def add(self, intent: FilterIntent) -> None:
        self.intents.append(intent)

    def __iter__(self) -> Iterator[FilterIntent]:
        return iter(self.intents)

    def __len__(self) -> int:
        return len(self.intents)


@dataclass
class StructuredQuery:
    """Clause lists produced by the structured renderer."""
    must: List[Dict[str, Any]] = field(default_factory=list)
    must_not: List[Dict[str, Any]] = field(default_factory=list)

    def to_query(self) -> Dict[str, Any]:
        bool_query: Dict[str, Any] = {"must": self.must}
        if self.must_not:
            bool_query["must_not"] = self.must_not
        return {"query": {"bool": bool_query}}


class FilterBuilder:
    """Accumulates filter intents; every ``add_*`` ignores empty input and returns self."""

    def __init__(self):
        self.intents = FilterIntentSet()

    # Raw structured clauses

    def add_must(self, clause: Optional[Dict[str, Any]]) -> "FilterBuilder":
        return self.add_clause(clause, negate=False)

    def add_must_not(self, clause: Optional[Dict[str, Any]]) -> "FilterBuilder":
        return self.add_clause(clause, negate=True)

    def add_clause(self, clause: Optional[Dict[str, Any]], negate: bool = False) -> "FilterBuilder":
        """Route a ready-made Query DSL clause to must or must_not."""
        if clause:
            self.intents.add(FilterIntent(IntentKind.CLAUSE, clause=clause, negate=negate))
        return self

    # Semantic filters

    def add_service_filter(self, service: str, negate: bool = False) -> "FilterBuilder":
        if service:
            self.intents.add(FilterIntent(IntentKind.SERVICE, value=service, negate=negate))
        return self

    def add_resource_filter(self, resource: str, negate: bool = False) -> "FilterBuilder":
        if resource:
            self.intents.add(FilterIntent(IntentKind.RESOURCE, value=resource, negate=negate))
        return self

    def add_level_filter(self, level: str) -> "FilterBuilder":
        if level:
            self.intents.add(FilterIntent(IntentKind.LEVEL, value=level))
        return self

    def add_container_filter(self, container_prefix: str) -> "FilterBuilder":
        if container_prefix:
            self.intents.add(FilterIntent(IntentKind.CONTAINER_PREFIX, value=container_prefix))
        return self

    def add_processor_event_filter(self, event: str) -> "FilterBuilder":
        if event:
            self.intents.add(FilterIntent(IntentKind.PROCESSOR_EVENT, value=event))
        return self

    def add_transaction_name_filter(self, name: str) -> "FilterBuilder":
        if name:
            self.intents.add(FilterIntent(IntentKind.TRANSACTION_NAME, value=name))
        return self

    def add_trace_id_filter(self, trace_id: str) -> "FilterBuilder":
        if trace_id:
            self.intents.add(FilterIntent(IntentKind.TRACE_ID, value=trace_id))
        return self

    def add_lookback(self, lookback: str) -> "FilterBuilder":
        """Relative time window in store date math, e.g. ``now-1h``."""
        if lookback:
            self.intents.add(FilterIntent(IntentKind.TIME_RANGE, lookback=lookback))
        return self

    def add_time_range_filter(self, gte: Optional[datetime] = None,
                              lte: Optional[datetime] = None) -> "FilterBuilder":
        """Absolute time range; either bound may be omitted."""
        if gte is not None or lte is not None:
            self.intents.add(FilterIntent(IntentKind.TIME_RANGE, time_from=gte, time_to=lte))
        return self

    def add_exists_filter(self, field_name: str) -> "FilterBuilder":
        if field_name:
            self.intents.add(FilterIntent(IntentKind.EXISTS, field_name=field_name))
        return self

    def add_prefix_filter(self, field_name: str, prefix: str) -> "FilterBuilder":
        if field_name and prefix:
            self.intents.add(FilterIntent(IntentKind.PREFIX, field_name=field_name, value=prefix))
        return self

    def add_query_string(self, query: str, fields: Optional[List[str]] = None) -> "FilterBuilder":
        """Free-text search; each renderer supplies its own default fields."""
        if query:
            self.intents.add(FilterIntent(IntentKind.QUERY_STRING, value=query, fields=list(fields or [])))
        return self

    # Rendering

    def render(self) -> StructuredQuery:
        return render_structured(self.intents)

    @property
    def must_clauses(self) -> List[Dict[str, Any]]:
        return self.render().must

    @property
    def must_not_clauses(self) -> List[Dict[str, Any]]:
        return self.render().must_not

    def build(self) -> Dict[str, Any]:
        """Render the Query DSL body ``{"query": {"bool": ...}}``."""
        return self.render().to_query()

    def build_predicates(self) -> List[str]:
        """Render the ES|QL WHERE predicates."""
        return render_piped(self.intents)

    @classmethod
    def from_options(cls, opts: QueryOptions, query_text: str = "") -> "FilterBuilder":
        """
        Build the standard retrieval filters for a set of query options.

        Intents are added in a fixed order so that both renderings are stable:
        time, service, environment, level, container, processor event,
        transaction name, trace ID, metric field, free text.
        """
        builder = cls()
        if opts.lookback:
            builder.add_lookback(opts.lookback)
            builder.add_time_range_filter(lte=opts.to_time)
        else:
            builder.add_time_range_filter(opts.from_time, opts.to_time)
        builder.add_service_filter(opts.service, opts.negate_service)
        builder.add_resource_filter(opts.resource, opts.negate_resource)
        builder.add_level_filter(opts.level)
        builder.add_container_filter(opts.container_id)
        builder.add_processor_event_filter(opts.processor_event)
        builder.add_transaction_name_filter(opts.transaction_name)
        builder.add_trace_id_filter(opts.trace_id)
        builder.add_exists_filter(opts.metric_field)
        builder.add_query_string(query_text, opts.search_fields)
        return builder


def _or_group(fields: List[str], value: str) -> Dict[str, Any]:
    return {
        "bool": {
            "should": [{"term": {name: value}} for name in fields],
            "minimum_should_match": 1,
        }
    }


def _structured_clause(intent: FilterIntent) -> Optional[Dict[str, Any]]:
    kind = intent.kind
    if kind == IntentKind.CLAUSE:
        return intent.clause
    if kind == IntentKind.TIME_RANGE:
        time_range: Dict[str, Any] = {}
        if intent.lookback:
            time_range["gte"] = intent.lookback
        elif intent.time_from is not None:
            time_range["gte"] = format_rfc3339(intent.time_from)
        if intent.time_to is not None:
            time_range["lte"] = format_rfc3339(intent.time_to)
        return {"range": {TIMESTAMP_FIELD: time_range}} if time_range else None
    if kind == IntentKind.SERVICE:
        return _or_group(SERVICE_FIELDS, intent.value)
    if kind == IntentKind.RESOURCE:
        return {"term": {ENVIRONMENT_FIELD: intent.value}}
    if kind == IntentKind.LEVEL:
        return _or_group(LEVEL_FIELDS, intent.value)
    if kind == IntentKind.CONTAINER_PREFIX:
        return {"prefix": {CONTAINER_ID_FIELD: intent.value}}
    if kind == IntentKind.PREFIX:
        return {"prefix": {intent.field_name: intent.value}}
    if kind == IntentKind.PROCESSOR_EVENT:
        return {"term": {PROCESSOR_EVENT_FIELD: intent.value}}
    if kind == IntentKind.TRANSACTION_NAME:
        return _or_group(TRANSACTION_NAME_FIELDS, intent.value)
    if kind == IntentKind.TRACE_ID:
        return {"term": {TRACE_ID_FIELD: intent.value}}
    if kind == IntentKind.EXISTS:
        return {"exists": {"field": intent.field_name}}
    if kind == IntentKind.QUERY_STRING:
        # Wildcards give partial matches on keyword fields as well as text
        return {
            "query_string": {
                "query": f"*{intent.value}*",
                "fields": intent.fields or list(DSL_SEARCH_FIELDS),
                "default_operator": "AND",
                "analyze_wildcard": True,
            }
        }
    return None


def render_structured(intents: FilterIntentSet) -> StructuredQuery:
    """Render intents as Query DSL ``must`` / ``must_not`` clause lists."""
    query = StructuredQuery()
    for intent in intents:
        clause = _structured_clause(intent)
        if clause is None:
            continue
        if intent.negate:
            query.must_not.append(clause)
        else:
            query.must.append(clause)
    return query


def _quoted(value: str) -> str:
    return f'"{escape_esql_string(value)}"'


def _piped_predicates(intent: FilterIntent) -> List[str]:
    kind = intent.kind
    operator = "!=" if intent.negate else "=="

    if kind == IntentKind.TIME_RANGE:
        predicates = []
        if intent.lookback:
            predicates.append(f"{TIMESTAMP_FIELD} >= NOW() - {lookback_to_esql_interval(intent.lookback)}")
        elif intent.time_from is not None:
            predicates.append(f"{TIMESTAMP_FIELD} >= {format_esql_timestamp(intent.time_from)}")
        if intent.time_to is not None:
            predicates.append(f"{TIMESTAMP_FIELD} <= {format_esql_timestamp(intent.time_to)}")
        return predicates
    if kind == IntentKind.SERVICE:
        return [f"service.name {operator} {_quoted(intent.value)}"]
    if kind == IntentKind.RESOURCE:
        return [f"{ENVIRONMENT_FIELD} {operator} {_quoted(intent.value)}"]
    if kind == IntentKind.LEVEL:
        level = _quoted(intent.value)
        return [f'(COALESCE(severity_text, "") == {level} OR COALESCE(log.level, "") == {level})']
    if kind == IntentKind.CONTAINER_PREFIX:
        return [f'COALESCE({CONTAINER_ID_FIELD}, "") LIKE {_quoted(intent.value + "*")}']
    if kind == IntentKind.PREFIX:
        return [f'COALESCE({quote_esql_field(intent.field_name)}, "") LIKE {_quoted(intent.value + "*")}']
    if kind == IntentKind.PROCESSOR_EVENT:
        return [f"processor.event == {_quoted(intent.value)}"]
    if kind == IntentKind.TRANSACTION_NAME:
        name = _quoted(intent.value)
        return [f"(transaction.name == {name} OR name == {name})"]
    if kind == IntentKind.TRACE_ID:
        trace_id = _quoted(intent.value)
        return [f"(trace.id == {trace_id} OR trace_id == {trace_id})"]
    if kind == IntentKind.EXISTS:
        return [f"{quote_esql_field(intent.field_name)} IS NOT NULL"]
    if kind == IntentKind.QUERY_STRING:
        pattern = _quoted(f"*{intent.value}*")
        fields = intent.fields or ESQL_SEARCH_FIELDS
        matches = [f'COALESCE({name}, "") LIKE {pattern}' for name in fields]
        return [f"({' OR '.join(matches)})"]
    if kind == IntentKind.CLAUSE:
        logger.debug("Raw Query DSL clause has no ES|QL form; skipping it in piped rendering")
    return []


def render_piped(intents: FilterIntentSet) -> List[str]:
    """Render intents as ES|QL predicates in insertion order."""
    predicates: List[str] = []
    for intent in intents:
        predicates.extend(_piped_predicates(intent))
    return predicates


def where_clause(predicates: List[str]) -> str:
    if not predicates:
        return "WHERE true"
    return "WHERE " + " AND ".join(predicates)


def build_esql_docs_query(index: str, predicates: List[str], sort_asc: bool = False,
                          size: int = 0) -> str:
    """``FROM | WHERE | SORT | LIMIT | KEEP *`` document retrieval statement."""
    order = "ASC" if sort_asc else "DESC"
    limit = size or DEFAULT_QUERY_SIZE
    return "\n".join([
        f"FROM {index}",
        f"| {where_clause(predicates)}",
        f"| SORT {TIMESTAMP_FIELD} {order}",
        f"| LIMIT {limit}",
        "| KEEP *",
    ])


def build_esql_count_query(index: str, predicates: List[str]) -> str:
    """``FROM | WHERE | STATS total = COUNT(*)`` statement."""
    return "\n".join([
        f"FROM {index}",
        f"| {where_clause(predicates)}",
        "| STATS total = COUNT(*)",
    ])
