"""
Tests for document retrieval.

This module tests:
- Query DSL tail, search and count
- ES|QL tail and search with the row-count fallback
- Empty-state handling for indices without data
- Field discovery with count enrichment
"""

import json

import pytest

from core.error_handling import StoreDecodeError, StoreRequestError
from core.models import ESQLColumn, ESQLResult, QueryOptions
from store_client.store_query import StoreQueryService, first_count

UNKNOWN_INDEX_BODY = json.dumps({
    "error": {"root_cause": [{"reason": "Unknown index [logs-*]"}], "reason": "Found 1 problem"},
})

SEARCH_RESPONSE = {
    "_scroll_id": "scroll-1",
    "hits": {
        "total": {"value": 42, "relation": "eq"},
        "hits": [
            {"_source": {
                "@timestamp": "2024-05-01T10:00:00Z",
                "severity_text": "ERROR",
                "body": {"text": "payment declined"},
                "resource": {"attributes": {"service.name": "payment"}},
            }},
            {"_source": {"@timestamp": "2024-05-01T09:59:00Z", "message": "retrying"}},
        ],
    },
}


def _body(request):
    return json.loads(request.content)


class TestParseSearchResponse:

    def test_hits_are_normalized(self):
        result = StoreQueryService.parse_search_response(SEARCH_RESPONSE, "q")

        assert result.total == 42
        assert result.query == "q"
        assert result.scroll_id == "scroll-1"
        assert [e.get_message() for e in result.logs] == ["payment declined", "retrying"]
        assert result.logs[0].service_name == "payment"
        assert json.loads(result.logs[1].raw_json) == {"@timestamp": "2024-05-01T09:59:00Z", "message": "retrying"}

    def test_integer_total(self):
        result = StoreQueryService.parse_search_response({"hits": {"total": 3, "hits": []}})
        assert result.total == 3

    def test_missing_hits(self):
        result = StoreQueryService.parse_search_response({})
        assert result.total == 0
        assert result.logs == []


class TestDslRetrieval:

    @pytest.mark.asyncio
    async def test_tail(self, store_stub, query_service):
        store_stub.on("POST", "/logs-*/_search", json_body=SEARCH_RESPONSE)

        result = await query_service.tail(QueryOptions(service="payment", lookback="now-1h"))

        request = store_stub.requests[0]
        assert request.url.params["size"] == "100"
        assert request.url.params["sort"] == "@timestamp:desc"
        must = _body(request)["query"]["bool"]["must"]
        assert must[0] == {"range": {"@timestamp": {"gte": "now-1h"}}}
        assert len(result.logs) == 2
        assert '"now-1h"' in result.query

    @pytest.mark.asyncio
    async def test_search_ascending(self, store_stub, query_service):
        store_stub.on("POST", "/logs-*/_search", json_body=SEARCH_RESPONSE)

        await query_service.search("declined", QueryOptions(size=5, sort_asc=True))

        request = store_stub.requests[0]
        assert request.url.params["size"] == "5"
        assert request.url.params["sort"] == "@timestamp:asc"
        clause = _body(request)["query"]["bool"]["must"][0]
        assert clause["query_string"]["query"] == "*declined*"

    @pytest.mark.asyncio
    async def test_count(self, store_stub, query_service):
        store_stub.on("POST", "/logs-*/_search", json_body={"hits": {"total": {"value": 1234}, "hits": []}})

        assert await query_service.count(QueryOptions(level="ERROR")) == 1234

        request = store_stub.requests[0]
        assert request.url.params["size"] == "0"
        assert _body(request)["track_total_hits"] is True

    @pytest.mark.asyncio
    async def test_rejection_propagates(self, store_stub, query_service):
        store_stub.on("POST", "/logs-*/_search", status=500, text="shard failure")
        with pytest.raises(StoreRequestError):
            await query_service.tail()

    @pytest.mark.asyncio
    async def test_spans_for_trace(self, store_stub, query_service):
        store_stub.on("POST", "/logs-*/_search", json_body={"hits": {"total": 0, "hits": []}})

        await query_service.spans_for_trace("abc")

        request = store_stub.requests[0]
        assert request.url.params["size"] == "1000"
        assert request.url.params["sort"] == "@timestamp:asc"
        must = _body(request)["query"]["bool"]["must"]
        assert {"term": {"attributes.processor.event": "span"}} in must
        assert {"term": {"trace_id": "abc"}} in must

    def test_query_json_helpers(self, query_service):
        rendered = json.loads(query_service.get_search_query_json("boom", QueryOptions(level="WARN")))
        assert len(rendered["query"]["bool"]["must"]) == 2
        assert json.loads(query_service.get_tail_query_json()) == {"query": {"bool": {"must": []}}}


class TestEsqlRetrieval:

    @pytest.mark.asyncio
    async def test_tail_esql_uses_count_query(self, store_stub, query_service):
        store_stub.on_esql("STATS total = COUNT(*)", ["total"], [[250]])
        store_stub.on_esql("KEEP *", ["@timestamp", "body.text", "service.name"], [
            ["2024-05-01T10:00:00Z", "hello", "cart"],
            ["2024-05-01T09:00:00Z", None, "cart"],
        ])

        result = await query_service.tail_esql(QueryOptions(service="cart", size=2))

        assert result.total == 250
        assert [e.get_message() for e in result.logs] == ["hello", ""]
        assert result.logs[0].service_name == "cart"
        assert result.query.startswith("FROM logs-*\n| WHERE service.name == \"cart\"")
        assert "| LIMIT 2" in result.query

    @pytest.mark.asyncio
    async def test_count_failure_falls_back_to_row_count(self, store_stub, query_service):
        store_stub.on_esql("STATS total = COUNT(*)", status=500, error="boom")
        store_stub.on_esql("KEEP *", ["message"], [["a"], ["b"], ["c"]])

        result = await query_service.search_esql("a")

        assert result.total == 3

    @pytest.mark.asyncio
    async def test_unknown_index_is_empty(self, store_stub, query_service):
        store_stub.on_esql("FROM logs-*", status=400, error=UNKNOWN_INDEX_BODY)

        result = await query_service.tail_esql()

        assert result.logs == []
        assert result.total == 0
        assert result.query.startswith("FROM logs-*")
        assert len(store_stub.requests) == 1

    @pytest.mark.asyncio
    async def test_genuine_error_propagates(self, store_stub, query_service):
        store_stub.on_esql("FROM logs-*", status=400, error='{"error":{"reason":"line 1:1: syntax"}}')
        with pytest.raises(StoreRequestError):
            await query_service.tail_esql()

    @pytest.mark.asyncio
    async def test_count_esql(self, store_stub, query_service):
        store_stub.on_esql("NOW() - 1 hour", ["total"], [[17]])
        assert await query_service.count_esql(QueryOptions(lookback="now-1h")) == 17

    @pytest.mark.asyncio
    async def test_count_esql_unknown_index(self, store_stub, query_service):
        store_stub.on_esql("FROM logs-*", status=400, error=UNKNOWN_INDEX_BODY)
        assert await query_service.count_esql() == 0


class TestFirstCount:

    def test_empty_result(self):
        assert first_count(ESQLResult()) == 0

    def test_numeric_cell(self):
        result = ESQLResult(columns=[ESQLColumn(name="total")], values=[[9.0]])
        assert first_count(result) == 9

    def test_unexpected_cell(self):
        result = ESQLResult(columns=[ESQLColumn(name="total")], values=[["nine"]])
        with pytest.raises(StoreDecodeError):
            first_count(result)


class TestDiscoverFields:

    @pytest.mark.asyncio
    async def test_fields_sorted_with_counts(self, store_stub, query_service):
        store_stub.on("GET", "/logs-*/_field_caps", json_body={
            "indices": ["logs-a"],
            "fields": {
                "severity_text": {"keyword": {"type": "keyword", "searchable": True, "aggregatable": True}},
                "_id": {"_id": {"type": "_id", "searchable": True, "aggregatable": True}},
                "body.text": {"text": {"type": "text", "searchable": True, "aggregatable": False}},
            },
        })
        store_stub.on("POST", "/logs-*/_search", json_body={
            "aggregations": {
                "f0": {"doc_count": 80},
                "f1": {"value": 120},
            },
        })

        fields = await query_service.discover_fields()

        assert [f.name for f in fields] == ["body.text", "severity_text"]
        assert [f.doc_count for f in fields] == [80, 120]
        aggs = _body(store_stub.requests[1])["aggs"]
        assert aggs["f0"] == {"filter": {"exists": {"field": "body.text"}}}
        assert aggs["f1"] == {"value_count": {"field": "severity_text"}}

    @pytest.mark.asyncio
    async def test_enrichment_failure_is_ignored(self, store_stub, query_service):
        store_stub.on("GET", "/logs-*/_field_caps", json_body={
            "fields": {"message": {"text": {"type": "text", "searchable": True}}},
        })
        store_stub.on("POST", "/logs-*/_search", status=500, text="too many buckets")

        fields = await query_service.discover_fields()

        assert len(fields) == 1
        assert fields[0].doc_count == 0
