"""
Tests for filter intents and their structured and piped renderings.

This module tests:
- Empty input never adds clauses
- Negation routing to must_not and != predicates
- Rendering of each intent kind in both query languages
- Standard option-to-filter mapping
"""

from datetime import datetime, timezone

import pytest

from core.filters import (
    ENVIRONMENT_FIELD,
    FilterBuilder,
    build_esql_count_query,
    build_esql_docs_query,
    where_clause,
)
from core.models import QueryOptions


class TestEmptyInput:
    """Every add_* method ignores empty input."""

    def test_no_clauses_for_empty_values(self):
        builder = (
            FilterBuilder()
            .add_must(None)
            .add_must({})
            .add_must_not(None)
            .add_service_filter("")
            .add_resource_filter("", negate=True)
            .add_level_filter("")
            .add_container_filter("")
            .add_processor_event_filter("")
            .add_transaction_name_filter("")
            .add_trace_id_filter("")
            .add_lookback("")
            .add_time_range_filter()
            .add_exists_filter("")
            .add_prefix_filter("field", "")
            .add_query_string("")
        )

        assert len(builder.intents) == 0
        assert builder.build() == {"query": {"bool": {"must": []}}}
        assert builder.build_predicates() == []

    def test_default_options_render_nothing(self):
        builder = FilterBuilder.from_options(QueryOptions())
        assert builder.must_clauses == []
        assert builder.must_not_clauses == []


class TestNegation:

    def test_negated_service_goes_to_must_not(self):
        body = FilterBuilder().add_service_filter("checkout", negate=True).build()

        bool_query = body["query"]["bool"]
        assert bool_query["must"] == []
        assert bool_query["must_not"] == [{
            "bool": {
                "should": [
                    {"term": {"resource.attributes.service.name": "checkout"}},
                    {"term": {"resource.service.name": "checkout"}},
                ],
                "minimum_should_match": 1,
            }
        }]

    def test_negated_resource_piped(self):
        predicates = FilterBuilder().add_resource_filter("prod", negate=True).build_predicates()
        assert predicates == [f'{ENVIRONMENT_FIELD} != "prod"']

    def test_must_not_raw_clause(self):
        clause = {"term": {"kind": "Internal"}}
        body = FilterBuilder().add_must_not(clause).build()
        assert body["query"]["bool"]["must_not"] == [clause]

    def test_raw_clause_has_no_piped_form(self):
        builder = FilterBuilder().add_must({"term": {"a": "b"}})
        assert builder.build_predicates() == []


class TestStructuredRendering:

    def test_lookback_range(self):
        body = FilterBuilder().add_lookback("now-1h").build()
        assert body["query"]["bool"]["must"] == [{"range": {"@timestamp": {"gte": "now-1h"}}}]

    def test_absolute_range(self):
        gte = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
        lte = datetime(2024, 5, 1, 11, 0, tzinfo=timezone.utc)
        body = FilterBuilder().add_time_range_filter(gte, lte).build()
        assert body["query"]["bool"]["must"] == [{
            "range": {"@timestamp": {"gte": "2024-05-01T10:00:00Z", "lte": "2024-05-01T11:00:00Z"}}
        }]

    def test_trace_and_processor_event(self):
        must = (
            FilterBuilder()
            .add_processor_event_filter("span")
            .add_trace_id_filter("abc123")
            .must_clauses
        )
        assert must == [
            {"term": {"attributes.processor.event": "span"}},
            {"term": {"trace_id": "abc123"}},
        ]

    def test_container_prefix_and_exists(self):
        must = FilterBuilder().add_container_filter("c0f").add_exists_filter("metrics.cpu").must_clauses
        assert must == [{"prefix": {"container_id": "c0f"}}, {"exists": {"field": "metrics.cpu"}}]

    def test_query_string_defaults(self):
        clause = FilterBuilder().add_query_string("timeout").must_clauses[0]["query_string"]
        assert clause["query"] == "*timeout*"
        assert clause["default_operator"] == "AND"
        assert "body.text" in clause["fields"]

    def test_query_string_custom_fields(self):
        clause = FilterBuilder().add_query_string("x", ["name"]).must_clauses[0]["query_string"]
        assert clause["fields"] == ["name"]


class TestPipedRendering:

    def test_lookback_predicate(self):
        assert FilterBuilder().add_lookback("now-1h").build_predicates() == [
            "@timestamp >= NOW() - 1 hour"
        ]

    def test_service_and_level(self):
        predicates = FilterBuilder().add_service_filter("cart").add_level_filter("ERROR").build_predicates()
        assert predicates == [
            'service.name == "cart"',
            '(COALESCE(severity_text, "") == "ERROR" OR COALESCE(log.level, "") == "ERROR")',
        ]

    def test_exists_backticks_dotted_field(self):
        predicates = FilterBuilder().add_exists_filter("system.cpu.usage").build_predicates()
        assert predicates == ["`system.cpu.usage` IS NOT NULL"]

    def test_values_are_escaped(self):
        predicates = FilterBuilder().add_transaction_name_filter('GET "/"').build_predicates()
        assert predicates == ['(transaction.name == "GET \\"/\\"" OR name == "GET \\"/\\"")']

    def test_query_string_or_group(self):
        predicate = FilterBuilder().add_query_string("oops", ["message", "body.text"]).build_predicates()[0]
        assert predicate == '(COALESCE(message, "") LIKE "*oops*" OR COALESCE(body.text, "") LIKE "*oops*")'

    def test_absolute_range_predicates(self):
        gte = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
        predicates = FilterBuilder().add_time_range_filter(gte=gte).build_predicates()
        assert predicates == ['@timestamp >= TIMESTAMP("2024-05-01T10:00:00Z")']


class TestFromOptions:

    def test_fixed_intent_order(self):
        opts = QueryOptions(
            lookback="now-5m",
            service="cart",
            level="WARN",
            processor_event="transaction",
            trace_id="t1",
        )
        predicates = FilterBuilder.from_options(opts, "boom").build_predicates()

        assert predicates[0] == "@timestamp >= NOW() - 5 minutes"
        assert predicates[1] == 'service.name == "cart"'
        assert predicates[3] == 'processor.event == "transaction"'
        assert predicates[4] == '(trace.id == "t1" OR trace_id == "t1")'
        assert predicates[5].startswith("(COALESCE(")

    def test_lookback_keeps_upper_bound(self):
        lte = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
        opts = QueryOptions(lookback="now-1h", to_time=lte)
        must = FilterBuilder.from_options(opts).must_clauses
        assert must == [
            {"range": {"@timestamp": {"gte": "now-1h"}}},
            {"range": {"@timestamp": {"lte": "2024-05-01T10:00:00Z"}}},
        ]


class TestStatements:

    def test_where_clause_empty(self):
        assert where_clause([]) == "WHERE true"

    @pytest.mark.parametrize("sort_asc,order", [(True, "ASC"), (False, "DESC")])
    def test_docs_query(self, sort_asc, order):
        query = build_esql_docs_query("logs-*", ['a == "b"'], sort_asc=sort_asc, size=5)
        assert query == (
            "FROM logs-*\n"
            '| WHERE a == "b"\n'
            f"| SORT @timestamp {order}\n"
            "| LIMIT 5\n"
            "| KEEP *"
        )

    def test_count_query(self):
        query = build_esql_count_query("traces-*", ["x", "y"])
        assert query == "FROM traces-*\n| WHERE x AND y\n| STATS total = COUNT(*)"
