"""
Error taxonomy and classification for telemetry store queries.

Backend rejections are inspected for two expected steady states that should
render as empty results rather than error banners:
- an index pattern that matches nothing yet (``Unknown index [traces-*]``)
- a field whose mapping type the query mode cannot aggregate
  (``Cannot use field [x] with unsupported type [histogram]``)

Everything else is a genuine failure and propagates with the backend status
and body attached.
"""

import asyncio
import json
import re
from enum import Enum
from typing import Any, List, Optional

import httpx


class StoreError(Exception):
    """Base class for telemetry store failures."""


class StoreRequestError(StoreError):
    """The store rejected a request with a non-2xx status."""

    def __init__(self, operation: str, status: int, body: str, query: str = ""):
        self.operation = operation
        self.status = status
        self.body = body
        self.query = query
        message = f"{operation} failed: {status}\nError: {body}"
        if query:
            message += f"\n\nQuery:\n{query}"
        super().__init__(message)


class StoreTransportError(StoreError):
    """Network failure or timeout talking to the store."""


class StoreDecodeError(StoreError):
    """The store answered with a body of unexpected shape."""


class ESQLUnknownIndexError(StoreRequestError):
    """ES|QL query referenced an index pattern matching no indices."""

    def __init__(self, index: str, status: int, body: str):
        super().__init__("ES|QL query", status, body)
        self.index = index
        self.args = (f"ES|QL unknown index: {index} ({status})",)

    def __str__(self) -> str:
        return self.args[0]


class ESQLUnsupportedFieldTypeError(StoreRequestError):
    """ES|QL query used a field whose type ES|QL cannot process."""

    def __init__(self, field: str, field_type: str, status: int, body: str):
        super().__init__("ES|QL query", status, body)
        self.field = field
        self.field_type = field_type
        self.args = (f"ES|QL unsupported field type: {field} ({field_type})",)

    def __str__(self) -> str:
        return self.args[0]


class ErrorType(Enum):
    """Classification outcomes for store errors."""
    GENUINE = "genuine"
    UNKNOWN_INDEX = "unknown_index"
    UNSUPPORTED_FIELD_TYPE = "unsupported_field_type"
    TRANSPORT = "transport"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    DECODE = "decode"


EMPTY_STATE_TYPES = frozenset([ErrorType.UNKNOWN_INDEX, ErrorType.UNSUPPORTED_FIELD_TYPE])

# Most specific first; a transport error raised from a timeout is a timeout
_CHAIN_PRIORITY = [
    (ErrorType.UNKNOWN_INDEX, (ESQLUnknownIndexError,)),
    (ErrorType.UNSUPPORTED_FIELD_TYPE, (ESQLUnsupportedFieldTypeError,)),
    (ErrorType.CANCELLED, (asyncio.CancelledError,)),
    (ErrorType.TIMEOUT, (asyncio.TimeoutError, httpx.TimeoutException)),
    (ErrorType.DECODE, (StoreDecodeError,)),
    (ErrorType.TRANSPORT, (httpx.TransportError, StoreTransportError)),
]


class StoreErrorClassifier:
    """Classifies store errors into empty-state conditions and genuine failures."""

    UNKNOWN_INDEX_PATTERN = re.compile(r"Unknown index \[([^\]]+)\]")
    UNSUPPORTED_TYPE_PATTERN = re.compile(r"Cannot use field \[([^\]]+)\] with unsupported type \[([^\]]+)\]")

    USER_MESSAGES = {
        ErrorType.UNKNOWN_INDEX: "No data has been ingested for this signal yet.",
        ErrorType.UNSUPPORTED_FIELD_TYPE: "This field type cannot be charted in this query mode.",
        ErrorType.TRANSPORT: "Could not reach the telemetry store at {base_url}. Is it running?",
        ErrorType.TIMEOUT: "The query to {base_url} timed out.",
        ErrorType.CANCELLED: "The query was superseded by a newer request.",
        ErrorType.DECODE: "The store at {base_url} returned an unexpected response.",
        ErrorType.GENUINE: "The telemetry store at {base_url} rejected the query.",
    }

    @classmethod
    def extract_reasons(cls, body: str) -> List[str]:
        """
        Collect reason strings from a structured error body.

        Args:
            body: Raw response body text

        Returns:
            List of the top-level reason followed by each root-cause reason;
            the raw body itself when it is not a structured error
        """
        try:
            payload = json.loads(body)
        except (TypeError, ValueError):
            return [body] if body else []

        reasons = []
        error = payload.get("error") if isinstance(payload, dict) else None
        if isinstance(error, dict):
            reason = error.get("reason")
            if isinstance(reason, str):
                reasons.append(reason)
            root_causes = error.get("root_cause")
            if isinstance(root_causes, list):
                for cause in root_causes:
                    if isinstance(cause, dict) and isinstance(cause.get("reason"), str):
                        reasons.append(cause["reason"])
        elif isinstance(error, str):
            reasons.append(error)

        return reasons or [body]

    @classmethod
    def classify_esql_error(cls, status: int, body: str, query: str = "") -> StoreRequestError:
        """
        Turn a rejected ES|QL response into the most specific exception.

        Args:
            status: HTTP status code
            body: Raw response body text
            query: ES|QL text, attached to genuine failures for display

        Returns:
            ESQLUnknownIndexError, ESQLUnsupportedFieldTypeError or StoreRequestError
        """
        for reason in cls.extract_reasons(body):
            match = cls.UNKNOWN_INDEX_PATTERN.search(reason)
            if match:
                return ESQLUnknownIndexError(match.group(1), status, body)
            match = cls.UNSUPPORTED_TYPE_PATTERN.search(reason)
            if match:
                return ESQLUnsupportedFieldTypeError(match.group(1), match.group(2), status, body)
        return StoreRequestError("ES|QL query", status, body, query)

    @classmethod
    def classify(cls, error: BaseException) -> ErrorType:
        """Classify an exception, looking through chained causes."""
        chain = list(_error_chain(error))
        for error_type, exception_types in _CHAIN_PRIORITY:
            if any(isinstance(current, exception_types) for current in chain):
                return error_type
        return ErrorType.GENUINE

    @classmethod
    def is_empty_state(cls, error: Optional[BaseException]) -> bool:
        """True when the error means 'no data yet' rather than a failure."""
        if error is None:
            return False
        return cls.classify(error) in EMPTY_STATE_TYPES

    @classmethod
    def get_user_friendly_message(cls, error_type: ErrorType, base_url: str = "") -> str:
        template = cls.USER_MESSAGES.get(error_type, cls.USER_MESSAGES[ErrorType.GENUINE])
        return template.format(base_url=base_url or "the configured URL")


def _error_chain(error: BaseException):
    seen = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def pretty_query(query: Any) -> str:
    """Pretty-print a query body (dict, JSON text or bytes) for display."""
    if isinstance(query, (bytes, bytearray)):
        query = query.decode("utf-8", errors="replace")
    if isinstance(query, str):
        try:
            query = json.loads(query)
        except ValueError:
            return query
    return json.dumps(query, indent=2)


def format_query_error(status: int, body: str, query: Any, operation: str = "search") -> StoreRequestError:
    """Build the error raised when a structured query is rejected."""
    return StoreRequestError(operation, status, body, pretty_query(query))
