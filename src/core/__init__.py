"""Core query engine for telemetry browsing.

This package holds the parts that do no I/O:
- Models: canonical record, options and result types
- Normalizer: raw document to canonical record
- Filters: filter intents with Query DSL and ES|QL renderers
- Error handling: store exceptions and empty-state classification
- Request manager: one cancellable request per kind
- Auto range: lookback detection heuristic
- Fields: default view columns and the store fields they search
"""

from .auto_range import AutoRangeDetector
from .error_handling import (
    ErrorType,
    ESQLUnknownIndexError,
    ESQLUnsupportedFieldTypeError,
    StoreDecodeError,
    StoreError,
    StoreErrorClassifier,
    StoreRequestError,
    StoreTransportError,
)
from .fields import DisplayField, SignalType, collect_search_fields, default_fields
from .filters import FilterBuilder, FilterIntentSet, render_piped, render_structured
from .models import (
    LOOKBACK_CANDIDATES,
    AggregateMetricsOptions,
    LogEntry,
    Lookback,
    QueryOptions,
    SearchResult,
    StoreConfig,
)
from .normalizer import normalize
from .request_manager import RequestContext, RequestKind, RequestManager

__all__ = [
    # Models
    "LOOKBACK_CANDIDATES",
    "AggregateMetricsOptions",
    "LogEntry",
    "Lookback",
    "QueryOptions",
    "SearchResult",
    "StoreConfig",
    # Normalization
    "normalize",
    # Fields
    "DisplayField",
    "SignalType",
    "collect_search_fields",
    "default_fields",
    # Filters
    "FilterBuilder",
    "FilterIntentSet",
    "render_piped",
    "render_structured",
    # Error handling
    "ErrorType",
    "ESQLUnknownIndexError",
    "ESQLUnsupportedFieldTypeError",
    "StoreDecodeError",
    "StoreError",
    "StoreErrorClassifier",
    "StoreRequestError",
    "StoreTransportError",
    # Lifecycle
    "RequestContext",
    "RequestKind",
    "RequestManager",
    "AutoRangeDetector",
]
