"""Authenticated Asana REST client with pagination and failure classification."""

import json
import logging
from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime
from decimal import Decimal
from email.utils import parsedate_to_datetime
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field

from boardsync.core.config import Constants, get_credential, settings
from boardsync.core.errors import (
    NetworkError,
    PermanentError,
    RateLimitedError,
    TransientError,
    UnauthorizedError,
)
from boardsync.core.retry_handler import RetryConfig, RetryHandler


logger = logging.getLogger(__name__)

QueryParams = dict[str, str | int | bool]


class PaginationCursor(BaseModel):
    """Continuation state for a paginated listing."""

    model_config = ConfigDict(frozen=True)

    offset: str | None = Field(default=None, description="Opaque offset token for the next page")
    has_more: bool = Field(default=False, description="Whether another page exists")


class Page(BaseModel):
    """One decoded page of a list endpoint."""

    model_config = ConfigDict(frozen=True)

    number: int = Field(..., description="Zero-based page index within the listing")
    items: list[dict[str, Any]] = Field(default_factory=list, description="Raw resources on this page")
    cursor: PaginationCursor = Field(default_factory=PaginationCursor, description="Cursor for the next page")


def _json_default(value: object) -> object:
    """Encode Decimal values as JSON numbers."""
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return int(value)
        return float(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_body(body: dict[str, Any]) -> bytes:
    """Serialize a request body, keeping Decimal numbers exact within double precision."""
    return json.dumps(body, default=_json_default).encode("utf-8")


def decode_body(text: str) -> Any:  # noqa: ANN401
    """Parse a response body with Decimal numbers so values round-trip without drift."""
    return json.loads(text, parse_float=Decimal)


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header in either delta-seconds or HTTP-date form."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.warning("retry_after_unparseable", extra={"value": value})
        return None
    return max((when - datetime.now(UTC)).total_seconds(), 0.0)


def _error_message(response: httpx.Response) -> str:
    """Extract Asana's error message, falling back to the raw body."""
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    errors = payload.get("errors") if isinstance(payload, dict) else None
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        return str(errors[0].get("message", response.reason_phrase))
    return response.reason_phrase


def classify_response(response: httpx.Response) -> dict[str, Any]:
    """Return the decoded envelope of a successful response or raise a classified ApiError."""
    status = response.status_code

    if status == Constants.HTTP_UNAUTHORIZED:
        raise UnauthorizedError(f"Unauthorized: {_error_message(response)}", status=status)

    if status == Constants.HTTP_TOO_MANY_REQUESTS:
        retry_after = parse_retry_after(response.headers.get("Retry-After"))
        raise RateLimitedError(
            f"Rate limited: {_error_message(response)}",
            status=status,
            retry_after=retry_after,
        )

    if status == Constants.HTTP_REQUEST_TIMEOUT or status >= Constants.HTTP_SERVER_ERROR:
        raise TransientError(f"Server error {status}: {_error_message(response)}", status=status)

    if not response.is_success:
        raise PermanentError(f"Request failed with status {status}: {_error_message(response)}", status=status)

    if not response.content:
        return {}

    try:
        payload = decode_body(response.text)
    except ValueError as e:
        raise PermanentError(f"Malformed response body: {e}", status=status) from e

    if not isinstance(payload, dict):
        raise PermanentError("Response body is not a JSON object", status=status)
    return payload


class AsanaClient:
    """Makes authenticated requests to Asana and classifies every failure.

    Each call carries a bounded timeout and runs through the retry handler. The
    credential is read from the provider on every attempt and never mutated.
    """

    def __init__(
        self,
        *,
        credential_provider: Callable[[], str] | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        retry_handler: RetryHandler | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._credential_provider = credential_provider or get_credential
        self.base_url = (base_url or settings.asana_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.request_timeout_seconds
        self.retry_handler = retry_handler or RetryHandler(RetryConfig.from_settings())
        self._http = httpx.AsyncClient(
            base_url=f"{self.base_url}/",
            timeout=self.timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "AsanaClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._http.aclose()

    def _auth_headers(self) -> dict[str, str]:
        try:
            token = self._credential_provider()
        except ValueError as e:
            raise UnauthorizedError(str(e)) from e
        return {"Authorization": f"Bearer {token}", "Accept": "application/json"}

    async def _send_once(
        self,
        method: str,
        path: str,
        params: QueryParams | None,
        body: dict[str, Any] | None,
    ) -> dict[str, Any]:
        headers = self._auth_headers()
        content = None
        if body is not None:
            content = encode_body(body)
            headers["Content-Type"] = "application/json"

        try:
            response = await self._http.request(
                method,
                path.lstrip("/"),
                params=params,
                content=content,
                headers=headers,
            )
        except httpx.TimeoutException as e:
            raise TransientError(f"{method} {path} timed out after {self.timeout}s") from e
        except httpx.TransportError as e:
            raise NetworkError(f"{method} {path} failed: {e!s}") from e

        logger.debug("api_response", extra={"method": method, "path": path, "status": response.status_code})
        return classify_response(response)

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: QueryParams | None = None,
        body: dict[str, Any] | None = None,
        idempotent: bool = True,
    ) -> dict[str, Any]:
        """Send a request with retry and return the decoded response envelope.

        Args:
            method: HTTP method
            path: Resource path relative to the API base URL
            params: Query parameters
            body: JSON body
            idempotent: Whether the call is safe to repeat. Non-idempotent calls are
                attempted once and retryable failures surface as PermanentError.

        Raises:
            ApiError: Classified failure after retries are exhausted or skipped
        """
        return await self.retry_handler.execute_with_retry(
            lambda: self._send_once(method, path, params, body),
            idempotent=idempotent,
            operation=f"{method} {path}",
        )

    @staticmethod
    def _unwrap(envelope: dict[str, Any], path: str) -> Any:  # noqa: ANN401
        if "data" not in envelope:
            raise PermanentError(f"Response for {path} has no data field")
        return envelope["data"]

    async def get_data(self, path: str, params: QueryParams | None = None) -> Any:  # noqa: ANN401
        """GET a resource and return its data payload."""
        return self._unwrap(await self.request("GET", path, params=params), path)

    async def put_data(self, path: str, data: dict[str, Any], params: QueryParams | None = None) -> Any:  # noqa: ANN401
        """PUT a full-value update (naturally idempotent) and return the data payload."""
        return self._unwrap(await self.request("PUT", path, params=params, body={"data": data}), path)

    async def post_data(self, path: str, data: dict[str, Any], *, idempotent: bool) -> Any:  # noqa: ANN401
        """POST to an endpoint; callers must state whether the action is idempotent."""
        envelope = await self.request("POST", path, body={"data": data}, idempotent=idempotent)
        return envelope.get("data", {})

    async def paginate(
        self,
        path: str,
        params: QueryParams | None = None,
        *,
        limit: int | None = None,
    ) -> AsyncIterator[Page]:
        """Yield pages of a list endpoint, following offset tokens until exhausted.

        The sequence is lazy and finite. It cannot be restarted; start a new call
        without a cursor instead. Consumers may stop iterating at any point.
        """
        page_limit = min(limit or settings.page_limit, Constants.MAX_PAGE_LIMIT)
        offset: str | None = None
        number = 0

        while True:
            page_params: QueryParams = {**(params or {}), "limit": page_limit}
            if offset:
                page_params["offset"] = offset

            envelope = await self.request("GET", path, params=page_params)
            items = envelope.get("data")
            if not isinstance(items, list):
                raise PermanentError(f"List response for {path} has no data array")

            next_page = envelope.get("next_page")
            offset = next_page.get("offset") if isinstance(next_page, dict) else None
            # A token on an empty page ends the listing
            cursor = PaginationCursor(offset=offset, has_more=bool(offset) and bool(items))

            logger.debug(
                "page_fetched",
                extra={"path": path, "page": number, "items": len(items), "has_more": cursor.has_more},
            )
            yield Page(number=number, items=items, cursor=cursor)

            if not cursor.has_more:
                return
            number += 1


