"""Base client for the telemetry store HTTP API.

This module provides the raw endpoints every higher-level operation uses:
- StoreClient: connection handling, authentication and error mapping
- ping, field capabilities, Query DSL search, ES|QL and delete-by-query
"""

import dataclasses
import json
from typing import Any, Dict, List, Optional, Union

import httpx
from pydantic import ValidationError

from common.pylogger import get_python_logger
from core.config import REQUEST_TIMEOUT_SECONDS
from core.error_handling import (
    StoreDecodeError,
    StoreErrorClassifier,
    StoreRequestError,
    StoreTransportError,
    format_query_error,
)
from core.models import ESQLResult, FieldCapsResponse, StoreConfig

logger = get_python_logger(__name__)


class StoreClient:
    """Async client for an Elasticsearch-compatible telemetry store."""

    REQUEST_TIMEOUT_SECONDS = REQUEST_TIMEOUT_SECONDS

    def __init__(self, config: Optional[StoreConfig] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or StoreConfig()
        self.base_url = self.config.url.rstrip("/")
        self.index = self.config.index
        self._transport = transport

    def get_index(self) -> str:
        return self.index

    def with_index(self, index: str) -> "StoreClient":
        """Return a client for another index pattern sharing this connection config."""
        return type(self)(dataclasses.replace(self.config, index=index), transport=self._transport)

    def _get_headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.config.api_key:
            headers["Authorization"] = f"ApiKey {self.config.api_key}"
        return headers

    def _get_auth(self) -> Optional[httpx.BasicAuth]:
        # API key wins over basic credentials
        if self.config.api_key or not self.config.username:
            return None
        return httpx.BasicAuth(self.config.username, self.config.password)

    def _build_client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or self.config.timeout or self.REQUEST_TIMEOUT_SECONDS,
            verify=self.config.verify_ssl,
            headers=self._get_headers(),
            auth=self._get_auth(),
            transport=self._transport,
        )

    async def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                       json_body: Optional[Any] = None, timeout: Optional[float] = None) -> httpx.Response:
        """Send one request; transport failures become StoreTransportError."""
        clean_params = {k: v for k, v in (params or {}).items() if v is not None}
        try:
            async with self._build_client(timeout) as client:
                logger.debug(f"{method} {self.base_url}{path} params={clean_params}")
                return await client.request(method, path, params=clean_params or None, json=json_body)
        except httpx.TimeoutException as e:
            raise StoreTransportError(f"Request to {self.base_url}{path} timed out: {e}") from e
        except httpx.HTTPError as e:
            raise StoreTransportError(f"Request to {self.base_url}{path} failed: {e}") from e

    @staticmethod
    def _decode(response: httpx.Response, operation: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise StoreDecodeError(f"failed to decode {operation} response: {e}") from e

    async def ping(self) -> Dict[str, Any]:
        """Check that the store is reachable; returns the cluster info document."""
        response = await self._request("GET", "/", timeout=self.config.ping_timeout)
        if response.status_code >= 400:
            raise StoreRequestError("ping", response.status_code, response.text)
        return self._decode(response, "ping")

    async def field_caps(self, index: Optional[str] = None,
                         fields: Union[str, List[str]] = "*") -> FieldCapsResponse:
        """Fetch field capabilities for an index pattern."""
        target = index or self.index
        field_param = fields if isinstance(fields, str) else ",".join(fields)
        response = await self._request(
            "GET",
            f"/{target}/_field_caps",
            params={"fields": field_param, "ignore_unavailable": "true", "allow_no_indices": "true"},
        )
        if response.status_code >= 400:
            raise StoreRequestError("field caps", response.status_code, response.text)

        data = self._decode(response, "field caps")
        try:
            return FieldCapsResponse.model_validate(data)
        except ValidationError as e:
            raise StoreDecodeError(f"unexpected field caps response: {e}") from e

    async def search_raw(self, body: Dict[str, Any], index: Optional[str] = None,
                         size: Optional[int] = None, sort: Optional[str] = None,
                         operation: str = "search") -> Dict[str, Any]:
        """
        Run a Query DSL search and return the decoded response.

        Args:
            body: Query DSL request body
            index: Index pattern, defaults to the client's index
            size: Number of hits to return
            sort: Sort parameter such as ``@timestamp:desc``
            operation: Name used in error messages

        Raises:
            StoreRequestError: the store rejected the query
        """
        target = index or self.index
        response = await self._request(
            "POST", f"/{target}/_search", params={"size": size, "sort": sort}, json_body=body,
        )
        if response.status_code >= 400:
            raise format_query_error(response.status_code, response.text, body, operation)

        data = self._decode(response, operation)
        if not isinstance(data, dict):
            raise StoreDecodeError(f"unexpected {operation} response type: {type(data).__name__}")
        return data

    async def execute_esql(self, query: str) -> ESQLResult:
        """
        Run an ES|QL statement.

        Raises:
            ESQLUnknownIndexError: the FROM pattern matches no index yet
            ESQLUnsupportedFieldTypeError: a field type ES|QL cannot process
            StoreRequestError: any other rejection
        """
        logger.debug(f"Executing ES|QL:\n{query}")
        response = await self._request("POST", "/_query", json_body={"query": query})
        if response.status_code >= 400:
            raise StoreErrorClassifier.classify_esql_error(response.status_code, response.text, query)

        data = self._decode(response, "ES|QL")
        try:
            return ESQLResult.model_validate(data)
        except ValidationError as e:
            raise StoreDecodeError(f"unexpected ES|QL response: {e}") from e

    async def clear(self, index: Optional[str] = None) -> int:
        """Delete every document in an index pattern; returns the deleted count."""
        target = index or self.index
        body = {"query": {"match_all": {}}}
        response = await self._request(
            "POST", f"/{target}/_delete_by_query", params={"refresh": "true"}, json_body=body,
        )
        if response.status_code >= 400:
            raise StoreRequestError("delete by query", response.status_code, response.text,
                                    json.dumps(body, indent=2))

        data = self._decode(response, "delete by query")
        deleted = data.get("deleted", 0) if isinstance(data, dict) else 0
        logger.info(f"Deleted {deleted} documents from {target}")
        return int(deleted)
