"""
Configuration constants for the telemetry query engine.

These are plain values. The engine never reads the environment or the file
system itself; ``store_client.settings`` is the layer that turns environment
variables into a ``StoreConfig`` passed into the client.
"""

# Store connection defaults
DEFAULT_ES_URL = "http://localhost:9200"
DEFAULT_KIBANA_URL = "http://localhost:5601"
DEFAULT_KIBANA_SPACE = ""

# Index patterns per signal
LOGS_INDEX = "logs-*"
TRACES_INDEX = "traces-*"
METRICS_INDEX = "metrics-*"
ALL_INDEX = ",".join([LOGS_INDEX, TRACES_INDEX, METRICS_INDEX])
DEFAULT_INDEX = LOGS_INDEX

# Timeouts (seconds)
REQUEST_TIMEOUT_SECONDS = 30.0
PING_TIMEOUT_SECONDS = 5.0
TICK_INTERVAL_SECONDS = 2.0

LOGS_TIMEOUT_SECONDS = 10.0
METRICS_TIMEOUT_SECONDS = 30.0
TRACES_TIMEOUT_SECONDS = 30.0
FIELD_CAPS_TIMEOUT_SECONDS = 10.0
AUTO_DETECT_TIMEOUT_SECONDS = 30.0

# Query sizing
DEFAULT_QUERY_SIZE = 100
SPANS_PER_TRACE_LIMIT = 1000
METRIC_DETAIL_DOC_LIMIT = 10
TRACE_ID_SCAN_LIMIT = 100000
PERSPECTIVE_TERMS_LIMIT = 100
OPERATION_NAMES_LIMIT = 100

# Tuning constants carried over as-is; adjust here rather than at call sites
AUTO_DETECT_TARGET = 10000
MAX_AGGREGATED_METRICS = 50
MAX_FIELD_COUNT_ENRICHMENT = 50
SUB_MS_DURATION_DECIMALS = 3
MS_DURATION_DECIMALS = 1

# Default free-text search targets
DSL_SEARCH_FIELDS = ["body.text", "body", "message", "event_name"]
ESQL_SEARCH_FIELDS = ["body.text", "message", "event_name"]

# Metric field discovery
METRICS_FIELD_PREFIX = "metrics."
METRIC_FIELD_TYPES = frozenset([
    "long", "double", "float", "half_float", "scaled_float",
    "histogram", "aggregate_metric_double",
])
HISTOGRAM_PERCENTS = [0, 50, 100]
