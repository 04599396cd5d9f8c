"""Query facade used by the browsing views.

Every fetch runs as a request of one kind under the RequestManager, so a
newer request of the same kind supersedes the older one. Outcomes never
raise for store failures: superseded requests come back marked stale,
"no data yet" conditions come back as empty results, and timeouts or genuine
failures come back in ``QueryOutcome.error``.
"""

import asyncio
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from common.pylogger import configure_logging, get_python_logger
from core.auto_range import AutoRangeDetector
from core.config import (
    ALL_INDEX,
    AUTO_DETECT_TARGET,
    AUTO_DETECT_TIMEOUT_SECONDS,
    FIELD_CAPS_TIMEOUT_SECONDS,
    LOGS_TIMEOUT_SECONDS,
    METRICS_TIMEOUT_SECONDS,
    TRACES_TIMEOUT_SECONDS,
)
from core.error_handling import ErrorType, StoreError, StoreErrorClassifier
from core.fields import DisplayField, collect_search_fields
from core.models import (
    AggregateMetricsOptions,
    Lookback,
    MetricsAggResult,
    QueryOptions,
    SearchResult,
    StoreConfig,
    TransactionNamesResult,
)
from core.request_manager import RequestContext, RequestKind, RequestManager
from .metrics import MetricsService
from .perspectives import SERVICE_PERSPECTIVE_FIELD, PerspectiveService
from .settings import Settings
from .store_query import StoreQueryService
from .traces import TraceService

logger = get_python_logger(__name__)

DEFAULT_TIMEOUTS: Dict[RequestKind, float] = {
    RequestKind.LOGS: LOGS_TIMEOUT_SECONDS,
    RequestKind.METRICS_AGG: METRICS_TIMEOUT_SECONDS,
    RequestKind.METRIC_DETAIL_DOCS: METRICS_TIMEOUT_SECONDS,
    RequestKind.TRANSACTION_NAMES: TRACES_TIMEOUT_SECONDS,
    RequestKind.SPANS: TRACES_TIMEOUT_SECONDS,
    RequestKind.PERSPECTIVE: LOGS_TIMEOUT_SECONDS,
    RequestKind.FIELD_CAPS: FIELD_CAPS_TIMEOUT_SECONDS,
    RequestKind.AUTO_DETECT: AUTO_DETECT_TIMEOUT_SECONDS,
}


@dataclass
class QueryOutcome:
    """Result of one facade call."""
    kind: RequestKind
    seq: int
    result: Any = None
    error: Optional[BaseException] = None
    error_type: Optional[ErrorType] = None
    stale: bool = False
    empty_state: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.stale

    def user_message(self, base_url: str = "") -> str:
        if self.error_type is None:
            return ""
        return StoreErrorClassifier.get_user_friendly_message(self.error_type, base_url)


class TelemetryQueryTool:
    """Entry point for log, metric and trace browsing queries."""

    def __init__(self, config: Optional[StoreConfig] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 request_manager: Optional[RequestManager] = None,
                 timeouts: Optional[Dict[RequestKind, float]] = None,
                 use_esql: bool = True):
        """
        Args:
            config: Store connection options
            transport: httpx transport override, used by tests
            request_manager: Shared manager when several tools drive one view
            timeouts: Per-kind overrides of DEFAULT_TIMEOUTS
            use_esql: Retrieve documents with ES|QL rather than Query DSL
        """
        self.client = StoreQueryService(config, transport=transport)
        self.requests = request_manager or RequestManager()
        self.timeouts = {**DEFAULT_TIMEOUTS, **(timeouts or {})}
        self.use_esql = use_esql
        self.auto_detect_target = AUTO_DETECT_TARGET
        self._build_services()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **kwargs) -> "TelemetryQueryTool":
        settings = settings or Settings()
        configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)
        timeouts = {
            RequestKind.LOGS: settings.LOGS_TIMEOUT,
            RequestKind.METRICS_AGG: settings.METRICS_TIMEOUT,
            RequestKind.METRIC_DETAIL_DOCS: settings.METRICS_TIMEOUT,
            RequestKind.TRANSACTION_NAMES: settings.TRACES_TIMEOUT,
            RequestKind.SPANS: settings.TRACES_TIMEOUT,
            RequestKind.PERSPECTIVE: settings.LOGS_TIMEOUT,
            RequestKind.FIELD_CAPS: settings.FIELD_CAPS_TIMEOUT,
            RequestKind.AUTO_DETECT: settings.AUTO_DETECT_TIMEOUT,
        }
        timeouts.update(kwargs.pop("timeouts", None) or {})
        return cls(settings.to_store_config(), timeouts=timeouts, **kwargs)

    def _build_services(self) -> None:
        self.metrics = MetricsService(self.client)
        self.traces = TraceService(self.client)
        self.perspectives = PerspectiveService(self.client.with_index(ALL_INDEX))

    @property
    def index(self) -> str:
        return self.client.get_index()

    def set_index(self, index: str) -> None:
        """Switch the signal index; in-flight requests keep their old client."""
        self.client = self.client.with_index(index)
        self._build_services()

    async def _execute(self, kind: RequestKind, factory: Callable[[], Awaitable[Any]],
                       empty_result: Callable[[], Any]) -> QueryOutcome:
        return await self._execute_in_context(kind, lambda ctx: ctx.run(factory()), empty_result)

    async def _execute_in_context(self, kind: RequestKind,
                                  factory: Callable[[RequestContext], Awaitable[Any]],
                                  empty_result: Callable[[], Any]) -> QueryOutcome:
        """Run ``factory(ctx)``; the factory decides which awaits the deadline bounds."""
        ctx, done = self.requests.start_request(kind, self.timeouts.get(kind))
        outcome = QueryOutcome(kind=kind, seq=ctx.seq)
        try:
            try:
                outcome.result = await factory(ctx)
            except asyncio.CancelledError:
                if not ctx.cancelled:
                    raise
                logger.debug(f"{kind.value} request #{ctx.seq} superseded")
                outcome.error_type = ErrorType.CANCELLED
            except asyncio.TimeoutError as e:
                logger.warning(f"{kind.value} request #{ctx.seq} timed out after {ctx.timeout}s")
                outcome.error = e
                outcome.error_type = ErrorType.TIMEOUT
            except StoreError as e:
                if StoreErrorClassifier.is_empty_state(e):
                    logger.debug(f"{kind.value} request #{ctx.seq} found no data yet: {e}")
                    outcome.result = empty_result()
                    outcome.empty_state = True
                else:
                    outcome.error = e
                    outcome.error_type = StoreErrorClassifier.classify(e)
                    logger.error(f"{kind.value} request #{ctx.seq} failed: {e}")

            # A result that arrives after supersession is discarded by the caller
            outcome.stale = ctx.cancelled
        finally:
            done()
        return outcome

    # Documents

    async def tail(self, opts: Optional[QueryOptions] = None) -> QueryOutcome:
        opts = opts or QueryOptions()
        fetch = self.client.tail_esql if self.use_esql else self.client.tail
        return await self._execute(RequestKind.LOGS, lambda: fetch(opts), SearchResult)

    async def search(self, query_text: str, opts: Optional[QueryOptions] = None,
                     columns: Optional[List[DisplayField]] = None) -> QueryOutcome:
        """
        Free-text search; an empty query falls back to tail.

        When ``opts.search_fields`` is empty, the searchable ``columns`` of the
        calling view supply the fields; without either the renderer defaults apply.
        """
        if not query_text:
            return await self.tail(opts)
        opts = opts or QueryOptions()
        if columns and not opts.search_fields:
            opts = replace(opts, search_fields=collect_search_fields(columns))
        fetch = self.client.search_esql if self.use_esql else self.client.search
        return await self._execute(RequestKind.LOGS, lambda: fetch(query_text, opts), SearchResult)

    async def spans_for_trace(self, trace_id: str) -> QueryOutcome:
        return await self._execute(
            RequestKind.SPANS,
            lambda: self.client.spans_for_trace(trace_id, use_esql=self.use_esql),
            SearchResult,
        )

    async def discover_fields(self) -> QueryOutcome:
        return await self._execute(RequestKind.FIELD_CAPS, self.client.discover_fields, list)

    # Metrics

    async def aggregate_metrics(self, opts: Optional[AggregateMetricsOptions] = None) -> QueryOutcome:
        opts = opts or AggregateMetricsOptions()
        return await self._execute(
            RequestKind.METRICS_AGG,
            lambda: self.metrics.aggregate_metrics(opts),
            lambda: MetricsAggResult(bucket_size=opts.bucket_size),
        )

    async def metric_detail_docs(self, metric: str, metric_type: str = "",
                                 opts: Optional[QueryOptions] = None) -> QueryOutcome:
        return await self._execute(
            RequestKind.METRIC_DETAIL_DOCS,
            lambda: self.metrics.metric_detail_docs(metric, metric_type, opts),
            SearchResult,
        )

    # Traces and perspectives

    async def list_operation_names(self, opts: Optional[QueryOptions] = None) -> QueryOutcome:
        return await self._execute(
            RequestKind.TRANSACTION_NAMES,
            lambda: self.traces.list_operation_names(opts),
            TransactionNamesResult,
        )

    async def perspective_counts(self, field: str = SERVICE_PERSPECTIVE_FIELD,
                                 lookback: str = "") -> QueryOutcome:
        return await self._execute(
            RequestKind.PERSPECTIVE,
            lambda: self.perspectives.perspective_counts(lookback, field),
            list,
        )

    async def detect_lookback(self, processor_event: str = "") -> QueryOutcome:
        """
        Pick the initial lookback window for the current index.

        The outcome result is a ``(Lookback, count)`` tuple. The deadline
        bounds each count rather than the whole search, so once it passes the
        remaining windows fail fast and the best window found so far wins.
        """
        def detect(ctx: RequestContext):
            async def count(lookback: Lookback) -> int:
                opts = QueryOptions(lookback=lookback.es_range(), processor_event=processor_event)
                return await ctx.run(self.client.count_esql(opts))

            return AutoRangeDetector(count, target=self.auto_detect_target).detect()

        return await self._execute_in_context(
            RequestKind.AUTO_DETECT,
            detect,
            lambda: (Lookback.FIVE_MINUTES, 0),
        )

    # Administrative calls, not tracked per kind

    async def ping(self) -> Dict[str, Any]:
        return await self.client.ping()

    async def clear(self) -> int:
        """Delete all documents in the current index."""
        return await self.client.clear()

    def cancel_all(self) -> None:
        self.requests.cancel_all()
