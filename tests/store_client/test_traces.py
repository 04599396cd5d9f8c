"""
Tests for operation-name statistics.

This module tests:
- The three ES|QL statements and their filters
- Client-side correlation of span counts
- Empty-state handling when no trace index exists
- The Query DSL aggregation variant
"""

import json

import pytest

from core.error_handling import StoreRequestError
from core.models import QueryOptions
from store_client.traces import TraceService, build_operation_names_query
from core.trace_analysis import STATS_COLUMNS


@pytest.fixture
def trace_service(query_service):
    return TraceService(query_service.with_index("traces-*"))


def _stats_row(name, count, traces, error_rate=0.0):
    values = {
        "tx_count": count,
        "unique_traces": traces,
        "min_duration": 1000.0,
        "avg_duration": 4000.0,
        "max_duration": 9000.0,
        "error_count": 0,
        "last_seen": "2024-05-01T10:00:00.000Z",
        "transaction.name": name,
        "error_rate": error_rate,
    }
    return [values[c] for c in STATS_COLUMNS]


class TestBuildQueries:

    def test_filters(self, trace_service):
        opts = QueryOptions(lookback="now-1h", service="cart", negate_service=True, resource="prod")
        stats_query, mapping_query, span_query = trace_service.build_queries(opts)

        assert stats_query.startswith(
            'FROM traces-*\n| WHERE processor.event == "transaction" AND @timestamp >= NOW() - 1 hour'
            ' AND service.name != "cart"'
        )
        assert "BY transaction.name" in stats_query
        assert "EVAL error_rate = TO_DOUBLE(error_count) / tx_count * 100" in stats_query
        assert "| LIMIT 100" in stats_query

        assert "KEEP transaction.name, trace.id" in mapping_query
        assert 'service.name != "cart"' in mapping_query

        # Span counts cover every service taking part in a trace
        assert 'processor.event == "span"' in span_query
        assert "service.name" not in span_query
        assert "STATS span_count = COUNT(*) BY trace.id" in span_query


class TestListOperationNames:

    @pytest.mark.asyncio
    async def test_correlates_span_counts(self, store_stub, trace_service):
        store_stub.on_esql("BY transaction.name", STATS_COLUMNS, [
            _stats_row("GET /cart", 10, 2, 10.0),
            _stats_row("POST /pay", 4, 1),
        ])
        store_stub.on_esql("KEEP transaction.name, trace.id", ["transaction.name", "trace.id"], [
            ["GET /cart", "t1"], ["GET /cart", "t2"], ["POST /pay", "t3"],
        ])
        store_stub.on_esql("span_count", ["span_count", "trace.id"], [[5, "t1"], [7, "t2"], [2, "t3"]])

        result = await trace_service.list_operation_names(QueryOptions(lookback="now-24h"))

        cart, pay = result.names
        assert cart.name == "GET /cart"
        assert cart.avg_spans == 6.0
        assert cart.avg_duration == 4.0
        assert cart.error_rate == 10.0
        assert pay.avg_spans == 2.0
        assert result.query == store_stub.esql_queries()[0]

    @pytest.mark.asyncio
    async def test_unknown_index_is_empty(self, store_stub, trace_service):
        body = json.dumps({"error": {"reason": "Unknown index [traces-*]"}})
        store_stub.on_esql("FROM traces-*", status=400, error=body)

        result = await trace_service.list_operation_names()

        assert result.names == []
        assert "BY transaction.name" in result.query

    @pytest.mark.asyncio
    async def test_genuine_error_propagates(self, store_stub, trace_service):
        store_stub.on_esql("FROM traces-*", status=500, error="internal")
        with pytest.raises(StoreRequestError):
            await trace_service.list_operation_names()


class TestOperationNamesDsl:

    def test_query_shape(self):
        body = build_operation_names_query(QueryOptions(lookback="now-1h", resource="prod", negate_resource=True))

        bool_query = body["query"]["bool"]
        assert bool_query["filter"] == [{"range": {"@timestamp": {"gte": "now-1h"}}}]
        assert bool_query["must_not"] == [{"term": {"resource.attributes.deployment.environment": "prod"}}]
        terms = body["aggs"]["transactions"]["aggs"]["tx_names"]["terms"]
        assert terms["field"] == "name"
        assert body["aggs"]["total_unique_traces"] == {"cardinality": {"field": "trace.id"}}

    @pytest.mark.asyncio
    async def test_parses_response(self, store_stub, trace_service):
        store_stub.on("POST", "/traces-*/_search", json_body={"aggregations": {
            "total_spans": {"doc_count": 12},
            "total_unique_traces": {"value": 4},
            "transactions": {"tx_names": {"buckets": [
                {"key": "GET /", "doc_count": 4, "avg_duration": {"value": 3_000_000},
                 "errors": {"doc_count": 1}},
            ]}},
        }})

        [agg] = await trace_service.list_operation_names_dsl()

        assert agg.name == "GET /"
        assert agg.avg_duration == 3.0
        assert agg.avg_spans == 3.0
        assert agg.error_rate == 25.0
