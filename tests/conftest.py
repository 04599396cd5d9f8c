"""Shared fixtures: an in-process stand-in for the store HTTP API."""

import json

import httpx
import pytest

from core.models import StoreConfig
from store_client.store_query import StoreQueryService

STORE_URL = "http://es.test:9200"


def esql_body(columns, values):
    """ES|QL response payload with keyword-typed columns."""
    return {
        "columns": [{"name": name, "type": "keyword"} for name in columns],
        "values": values,
    }


def request_json(request: httpx.Request):
    return json.loads(request.content) if request.content else None


class StoreStub:
    """
    Routes requests to canned responses and records them.

    Routes match on method and path; ``contains`` narrows a route to requests
    whose body (for ES|QL, the statement text) includes the given string.
    Routes are tried in registration order.
    """

    def __init__(self):
        self.requests = []
        self._routes = []

    def on(self, method, path, json_body=None, status=200, text=None, contains=None):
        self._routes.append((method, path, contains, status, json_body, text))
        return self

    def on_esql(self, contains, columns=None, values=None, status=200, error=None):
        if error is not None:
            return self.on("POST", "/_query", status=status, text=error, contains=contains)
        return self.on("POST", "/_query", json_body=esql_body(columns or [], values or []),
                       status=status, contains=contains)

    def _body_text(self, request):
        payload = request_json(request)
        if isinstance(payload, dict) and isinstance(payload.get("query"), str):
            return payload["query"]
        return request.content.decode() if request.content else ""

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        body = self._body_text(request)
        for method, path, contains, status, json_body, text in self._routes:
            if request.method != method or request.url.path != path:
                continue
            if contains is not None and contains not in body:
                continue
            if text is not None:
                return httpx.Response(status, text=text)
            return httpx.Response(status, json=json_body if json_body is not None else {})
        raise AssertionError(f"unexpected request: {request.method} {request.url.path}\n{body}")

    def transport(self):
        return httpx.MockTransport(self.handler)

    def esql_queries(self):
        return [request_json(r)["query"] for r in self.requests if r.url.path == "/_query"]


@pytest.fixture
def store_stub():
    return StoreStub()


@pytest.fixture
def store_config():
    return StoreConfig(url=STORE_URL, index="logs-*")


@pytest.fixture
def query_service(store_stub, store_config):
    return StoreQueryService(store_config, transport=store_stub.transport())
