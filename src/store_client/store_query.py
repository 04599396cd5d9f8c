"""Document retrieval for logs, spans and metric documents.

This module handles tail, search and count in both query languages, trace
span lookup, and field discovery.
"""

import json
from typing import Any, Dict, List, Optional

from common.pylogger import get_python_logger
from core.config import (
    DEFAULT_QUERY_SIZE,
    MAX_FIELD_COUNT_ENRICHMENT,
    SPANS_PER_TRACE_LIMIT,
)
from core.error_handling import StoreDecodeError, StoreError, StoreErrorClassifier, pretty_query
from core.esql_utils import esql_rows_to_documents
from core.filters import FilterBuilder, build_esql_count_query, build_esql_docs_query
from core.models import ESQLResult, FieldInfo, QueryOptions, SearchResult
from core.normalizer import normalize
from .store_base import StoreClient

logger = get_python_logger(__name__)


def _compact_json(doc: Any) -> str:
    return json.dumps(doc, separators=(",", ":"), default=str)


class StoreQueryService(StoreClient):
    """Service for retrieving normalized documents from the store."""

    @staticmethod
    def _sort_param(opts: QueryOptions) -> str:
        return "@timestamp:asc" if opts.sort_asc else "@timestamp:desc"

    @staticmethod
    def parse_search_response(data: Dict[str, Any], query: str = "") -> SearchResult:
        """Normalize the hits of a Query DSL search response."""
        hits = data.get("hits") if isinstance(data.get("hits"), dict) else {}

        total = hits.get("total", 0)
        if isinstance(total, dict):
            total = total.get("value", 0)

        logs = []
        for hit in hits.get("hits") or []:
            if not isinstance(hit, dict):
                continue
            source = hit.get("_source")
            if not isinstance(source, dict):
                source = {}
            logs.append(normalize(source, _compact_json(source)))

        return SearchResult(
            logs=logs,
            total=int(total) if isinstance(total, (int, float)) else len(logs),
            query=query,
            scroll_id=data.get("_scroll_id") or "",
        )

    async def _dsl_search(self, opts: QueryOptions, query_text: str = "",
                          operation: str = "search") -> SearchResult:
        body = FilterBuilder.from_options(opts, query_text).build()
        size = opts.size or DEFAULT_QUERY_SIZE
        logger.info(f"Running {operation} on {self.index} (size={size}, sort={self._sort_param(opts)})")

        data = await self.search_raw(body, size=size, sort=self._sort_param(opts), operation=operation)
        result = self.parse_search_response(data, pretty_query(body))
        logger.info(f"{operation.capitalize()} returned {len(result.logs)} of {result.total} documents")
        return result

    async def tail(self, opts: Optional[QueryOptions] = None) -> SearchResult:
        """Fetch the most recent documents matching the filters."""
        return await self._dsl_search(opts or QueryOptions(), operation="tail")

    async def search(self, query_text: str, opts: Optional[QueryOptions] = None) -> SearchResult:
        """Free-text search combined with the browsing filters."""
        return await self._dsl_search(opts or QueryOptions(), query_text, operation="search")

    async def count(self, opts: Optional[QueryOptions] = None) -> int:
        """Count matching documents without fetching them."""
        body = FilterBuilder.from_options(opts or QueryOptions()).build()
        body["track_total_hits"] = True
        data = await self.search_raw(body, size=0, operation="count")
        return self.parse_search_response(data).total

    async def spans_for_trace(self, trace_id: str, use_esql: bool = False) -> SearchResult:
        """All spans of one trace in chronological order."""
        opts = QueryOptions(
            size=SPANS_PER_TRACE_LIMIT,
            trace_id=trace_id,
            processor_event="span",
            sort_asc=True,
        )
        if use_esql:
            return await self.tail_esql(opts)
        return await self.tail(opts)

    def get_tail_query_json(self, opts: Optional[QueryOptions] = None) -> str:
        return pretty_query(FilterBuilder.from_options(opts or QueryOptions()).build())

    def get_search_query_json(self, query_text: str, opts: Optional[QueryOptions] = None) -> str:
        return pretty_query(FilterBuilder.from_options(opts or QueryOptions(), query_text).build())

    # ES|QL retrieval

    async def _esql_search(self, opts: QueryOptions, query_text: str = "") -> SearchResult:
        predicates = FilterBuilder.from_options(opts, query_text).build_predicates()
        query = build_esql_docs_query(self.index, predicates, opts.sort_asc, opts.size)

        try:
            result = await self.execute_esql(query)
        except StoreError as e:
            if StoreErrorClassifier.is_empty_state(e):
                logger.info(f"No data yet for {self.index}: {e}")
                return SearchResult(query=query)
            raise

        logs = [normalize(doc, _compact_json(doc)) for doc in esql_rows_to_documents(result)]

        total = len(logs)
        count_query = build_esql_count_query(self.index, predicates)
        try:
            total = await self._execute_esql_count(count_query)
        except StoreError as e:
            logger.debug(f"ES|QL count failed, using row count {total}: {e}")

        return SearchResult(logs=logs, total=total, query=query)

    async def _execute_esql_count(self, query: str) -> int:
        result = await self.execute_esql(query)
        return first_count(result)

    async def tail_esql(self, opts: Optional[QueryOptions] = None) -> SearchResult:
        """ES|QL equivalent of ``tail``; ``SearchResult.query`` holds the statement."""
        return await self._esql_search(opts or QueryOptions())

    async def search_esql(self, query_text: str, opts: Optional[QueryOptions] = None) -> SearchResult:
        """ES|QL equivalent of ``search``."""
        return await self._esql_search(opts or QueryOptions(), query_text)

    async def count_esql(self, opts: Optional[QueryOptions] = None) -> int:
        """
        Count matching documents with ES|QL.

        Used by lookback auto-detection; an index that does not exist yet
        counts as zero.
        """
        predicates = FilterBuilder.from_options(opts or QueryOptions()).build_predicates()
        query = build_esql_count_query(self.index, predicates)
        try:
            return await self._execute_esql_count(query)
        except StoreError as e:
            if StoreErrorClassifier.is_empty_state(e):
                return 0
            raise

    # Field discovery

    async def discover_fields(self) -> List[FieldInfo]:
        """
        List the searchable fields of the current index.

        Returns:
            Fields sorted by name; the first fields carry document counts
            when the count query succeeds
        """
        caps = await self.field_caps(self.index, "*")

        fields = []
        for name, type_map in caps.fields.items():
            if name.startswith("_") or not type_map:
                continue
            # Fields can have several types across indices; the first one wins
            info = next(iter(type_map.values()))
            fields.append(FieldInfo(
                name=name,
                type=info.type,
                searchable=info.searchable,
                aggregatable=info.aggregatable,
            ))
        fields.sort(key=lambda f: f.name)

        await self._enrich_field_counts(fields)
        logger.info(f"Discovered {len(fields)} fields in {self.index}")
        return fields

    async def _enrich_field_counts(self, fields: List[FieldInfo]) -> None:
        """Fill doc_count for the leading fields; failures leave counts at 0."""
        enriched = fields[:MAX_FIELD_COUNT_ENRICHMENT]
        if not enriched:
            return

        aggs = {}
        for i, info in enumerate(enriched):
            if info.aggregatable:
                aggs[f"f{i}"] = {"value_count": {"field": info.name}}
            else:
                aggs[f"f{i}"] = {"filter": {"exists": {"field": info.name}}}

        try:
            data = await self.search_raw({"size": 0, "aggs": aggs}, size=0, operation="field counts")
        except StoreError as e:
            logger.debug(f"Field count enrichment skipped: {e}")
            return

        aggregations = data.get("aggregations") or {}
        for i, info in enumerate(enriched):
            agg = aggregations.get(f"f{i}")
            if not isinstance(agg, dict):
                continue
            value = agg.get("value") or 0
            info.doc_count = int(value if value > 0 else agg.get("doc_count") or 0)


def first_count(result: ESQLResult) -> int:
    """Read the single numeric cell of a ``STATS total = COUNT(*)`` result."""
    if not result.values or not result.values[0]:
        return 0
    value = result.values[0][0]
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    raise StoreDecodeError(f"unexpected ES|QL count result shape: {result.values[0]!r}")
