"""Telemetry store client package.

This package talks to the Elasticsearch-compatible store over HTTP:
- Base client: transport, authentication and raw endpoints
- Query service: tail, search, count and field discovery
- Metrics, traces and perspectives: aggregation-backed views
- Formatters: exploration-UI queries and text summaries
- Query tool: per-kind request facade used by the views
"""

from .formatters import KibanaQueryFormatter, StoreResultFormatter
from .metrics import MetricsService
from .perspectives import PerspectiveQueryError, PerspectiveService
from .query_tool import QueryOutcome, TelemetryQueryTool
from .settings import Settings, settings
from .store_base import StoreClient
from .store_query import StoreQueryService
from .traces import TraceService

__all__ = [
    # Clients
    "StoreClient",
    "StoreQueryService",
    # Services
    "MetricsService",
    "TraceService",
    "PerspectiveService",
    "PerspectiveQueryError",
    # Facade
    "QueryOutcome",
    "TelemetryQueryTool",
    # Formatting
    "KibanaQueryFormatter",
    "StoreResultFormatter",
    # Settings
    "Settings",
    "settings",
]
