"""Shared HTTP plumbing for REST-backed ticket providers.

HttpTicketProvider owns one pooled httpx.AsyncClient per provider instance
and wraps every request in the retry policy below. Concrete providers only
build URLs and parse payloads.

Resource Management:
    Use as an async context manager, or call close() when done:

        async with JiraTicketProvider() as provider:
            page = await provider.fetch_tickets(handle, None, 25)

Testability:
    Pass a no-op ``sleeper`` and ``jitter_generator=lambda _: 0.0`` to remove
    timing from retry tests, and an ``httpx.MockTransport`` as ``transport``
    to serve canned responses.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
from dataclasses import dataclass
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any, ClassVar, Literal

import httpx

from orchestra.config.fetch_config import (
    MAX_RETRY_DELAY_SECONDS,
    FetchPerformanceConfig,
    TicketPalette,
)
from orchestra.integrations.providers.base import (
    PriorityLabel,
    ProviderHandle,
    StatusLabel,
    TicketProvider,
)
from orchestra.integrations.providers.exceptions import (
    CredentialValidationError,
    ProviderPermanentError,
    ProviderTransientError,
)

logger = logging.getLogger(__name__)

HTTP_NOT_FOUND = 404
HTTP_TOO_MANY_REQUESTS = 429
# Authentication and permission failures mark the provider exhausted
PERMANENT_STATUS_CODES = frozenset({401, 403})

# Error bodies can carry PII or whole HTML pages
MAX_ERROR_BODY_LENGTH = 200

# Pages read by one offset-window call, bounds requests when most entries are filtered
MAX_PAGES_PER_WINDOW = 5

AsyncSleeper = Callable[[float], Awaitable[None]]


def _default_jitter_generator(max_jitter: float) -> float:
    return random.uniform(0, max_jitter)


def truncate_error_body(body: str) -> str:
    """Truncate an error response body for logs and exception messages."""
    if len(body) <= MAX_ERROR_BODY_LENGTH:
        return body
    return body[:MAX_ERROR_BODY_LENGTH] + "... [truncated]"


def parse_offset_cursor(cursor: str | None) -> int:
    """Parse a 0-based item offset. Missing or malformed cursors start at 0."""
    if not cursor:
        return 0
    try:
        return max(0, int(cursor))
    except ValueError:
        return 0


@dataclass(frozen=True)
class OffsetWindow:
    """Entries read from a page-numbered listing, starting at an item offset.

    Attributes:
        entries: Kept raw entries, at most the requested number
        next_offset: Offset of the first entry not yet consumed
        is_last: True when the listing has nothing after next_offset
    """

    entries: tuple[Any, ...]
    next_offset: int
    is_last: bool


class HttpTicketProvider(TicketProvider):
    """Base class for providers that talk to a REST API over httpx.

    Retry Policy:
        - Retries on timeouts, network errors and server errors (5xx)
        - Retries on 429 Too Many Requests (respects Retry-After header)
        - 401/403 raise ProviderPermanentError immediately
        - Other 4xx raise ProviderTransientError without retrying
        - 404 returns None when the caller asked for not-found tolerance

    Backoff is exponential from ``retry_delay_seconds``, capped at
    MAX_RETRY_DELAY_SECONDS, plus up to 10% jitter.

    Class Attributes:
        REQUIRED_SETTINGS: Setting keys a handle must carry for this provider
    """

    REQUIRED_SETTINGS: ClassVar[frozenset[str]] = frozenset()

    def __init__(
        self,
        performance: FetchPerformanceConfig | None = None,
        palette: TicketPalette | None = None,
        *,
        sleeper: AsyncSleeper | None = None,
        jitter_generator: Callable[[float], float] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            performance: Timeout and retry settings (defaults if omitted)
            palette: Status/priority presentation values (defaults if omitted)
            sleeper: Async sleep callable (defaults to asyncio.sleep)
            jitter_generator: Jitter callable (defaults to random.uniform)
            transport: Optional httpx transport for the shared client
        """
        self._performance = performance or FetchPerformanceConfig()
        self._palette = palette or TicketPalette()
        self._sleeper: AsyncSleeper = sleeper if sleeper is not None else asyncio.sleep
        self._jitter_generator = (
            jitter_generator if jitter_generator is not None else _default_jitter_generator
        )
        self._transport = transport

        # Shared HTTP client (created lazily on first request)
        self._http_client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    @property
    def palette(self) -> TicketPalette:
        return self._palette

    async def __aenter__(self) -> HttpTicketProvider:
        await self._get_http_client()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the shared HTTP client. Safe to call multiple times."""
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client (double-checked under a lock)."""
        if self._http_client is None:
            async with self._client_lock:
                if self._http_client is None:
                    self._http_client = httpx.AsyncClient(
                        timeout=httpx.Timeout(self._performance.timeout_seconds),
                        transport=self._transport,
                        follow_redirects=True,
                    )
        return self._http_client

    # ------------------------------------------------------------------
    # Settings helpers
    # ------------------------------------------------------------------

    def _validate_settings(self, handle: ProviderHandle) -> None:
        """Check that the handle carries every required, non-empty setting.

        Raises:
            CredentialValidationError: If any required keys are missing
        """
        missing = {key for key in self.REQUIRED_SETTINGS if not handle.settings.get(key)}
        if missing:
            raise CredentialValidationError(
                provider_name=self.name,
                missing_keys=missing,
                provider_id=handle.id,
            )

    @staticmethod
    def _base_url(handle: ProviderHandle, default: str = "") -> str:
        return (handle.settings.get("url") or default).rstrip("/")

    def _status(self, name: str) -> StatusLabel:
        return StatusLabel(name=name, color=self._palette.status_color(name))

    def _priority(self, name: str | None) -> PriorityLabel:
        name = name or self._palette.default_priority_name
        return PriorityLabel(
            name=name,
            color=self._palette.priority_color(name),
            value=self._palette.priority_value(name),
        )

    # ------------------------------------------------------------------
    # Request execution
    # ------------------------------------------------------------------

    async def _request(
        self,
        handle: ProviderHandle,
        method: Literal["GET", "POST"],
        url: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        auth: httpx.Auth | None = None,
        json_data: dict[str, Any] | None = None,
        allow_not_found: bool = False,
    ) -> httpx.Response | None:
        """Execute a request with retry and map failures to provider errors.

        Args:
            handle: Integration the request belongs to (for error context)
            method: HTTP method
            url: Absolute request URL
            params: Optional query parameters
            headers: Optional request headers
            auth: Optional httpx authentication
            json_data: Optional JSON body for POST requests
            allow_not_found: Return None on 404 instead of raising

        Returns:
            The successful response, or None for a tolerated 404

        Raises:
            ProviderPermanentError: On 401/403
            ProviderTransientError: On other failures once retries are spent
        """
        http_client = await self._get_http_client()
        max_attempts = self._performance.max_retries + 1
        log_context = {"provider": self.name, "provider_id": handle.id}
        last_error: Exception | None = None

        kwargs: dict[str, Any] = {}
        if params is not None:
            kwargs["params"] = params
        if headers is not None:
            kwargs["headers"] = headers
        if auth is not None:
            kwargs["auth"] = auth
        if json_data is not None:
            kwargs["json"] = json_data

        for attempt in range(max_attempts):
            try:
                response = await http_client.request(method, url, **kwargs)
                if allow_not_found and response.status_code == HTTP_NOT_FOUND:
                    return None
                response.raise_for_status()
                return response
            except httpx.TimeoutException as e:
                last_error = e
                logger.warning(
                    "Timeout calling %s (attempt %d/%d): %s",
                    self.name,
                    attempt + 1,
                    max_attempts,
                    e,
                    extra=log_context,
                )
            except httpx.HTTPStatusError as e:
                status_code = e.response.status_code

                if status_code == HTTP_TOO_MANY_REQUESTS:
                    last_error = e
                    retry_delay = self._get_retry_after_delay(e.response, attempt)
                    logger.warning(
                        "Rate limited by %s (attempt %d/%d), waiting %.1fs",
                        self.name,
                        attempt + 1,
                        max_attempts,
                        retry_delay,
                        extra=log_context,
                    )
                    if attempt < self._performance.max_retries:
                        await self._sleeper(retry_delay)
                    continue

                if status_code in PERMANENT_STATUS_CODES:
                    raise ProviderPermanentError(
                        provider_name=self.name,
                        message=(
                            f"{self.name} rejected the credentials for integration "
                            f"'{handle.id}' ({status_code})"
                        ),
                        provider_id=handle.id,
                        status_code=status_code,
                    ) from e

                if 400 <= status_code < 500:
                    body = truncate_error_body(e.response.text)
                    raise ProviderTransientError(
                        provider_name=self.name,
                        message=f"{self.name} API request failed: {status_code} {body}",
                        provider_id=handle.id,
                        status_code=status_code,
                    ) from e

                last_error = e
                logger.warning(
                    "HTTP error from %s (attempt %d/%d): status=%d",
                    self.name,
                    attempt + 1,
                    max_attempts,
                    status_code,
                    extra=log_context,
                )
            except httpx.HTTPError as e:
                last_error = e
                logger.warning(
                    "Network error calling %s (attempt %d/%d): %s",
                    self.name,
                    attempt + 1,
                    max_attempts,
                    e,
                    extra=log_context,
                )

            if attempt < self._performance.max_retries:
                capped_delay = min(
                    self._performance.retry_delay_seconds * (2**attempt),
                    MAX_RETRY_DELAY_SECONDS,
                )
                jitter = self._jitter_generator(capped_delay * 0.1)
                await self._sleeper(capped_delay + jitter)

        status_code = None
        if isinstance(last_error, httpx.HTTPStatusError):
            status_code = last_error.response.status_code
        raise ProviderTransientError(
            provider_name=self.name,
            message=f"{self.name} API request failed after {max_attempts} attempts: {last_error}",
            provider_id=handle.id,
            status_code=status_code,
        ) from last_error

    async def _get_json(
        self,
        handle: ProviderHandle,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        auth: httpx.Auth | None = None,
    ) -> tuple[Any, httpx.Response]:
        """GET a JSON document. A 404 is an error like any other 4xx.

        Returns:
            (parsed body, response)

        Raises:
            ProviderTransientError: If the body is not valid JSON
        """
        response = await self._request(
            handle, "GET", url, params=params, headers=headers, auth=auth
        )
        if response is None:
            raise ProviderTransientError(
                provider_name=self.name,
                message=f"{self.name} API returned no response for {url}",
                provider_id=handle.id,
            )
        return self._parse_json(handle, response), response

    async def _find_json(
        self,
        handle: ProviderHandle,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        auth: httpx.Auth | None = None,
    ) -> Any | None:
        """GET a JSON document that may not exist.

        Returns:
            The parsed body, or None on 404
        """
        response = await self._request(
            handle,
            "GET",
            url,
            params=params,
            headers=headers,
            auth=auth,
            allow_not_found=True,
        )
        if response is None:
            return None
        return self._parse_json(handle, response)

    def _parse_json(self, handle: ProviderHandle, response: httpx.Response) -> Any:
        try:
            return response.json()
        except json.JSONDecodeError as e:
            raise ProviderTransientError(
                provider_name=self.name,
                message=f"Failed to parse {self.name} API response",
                provider_id=handle.id,
            ) from e

    async def _read_offset_window(
        self,
        handle: ProviderHandle,
        url: str,
        *,
        offset: int,
        max_items: int,
        per_page: int,
        has_next_page: Callable[[httpx.Response, int], bool],
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        keep: Callable[[Any], bool] | None = None,
    ) -> OffsetWindow:
        """Read up to max_items entries from a page/per_page listing.

        Page-numbered APIs only address whole pages, so the item offset is
        mapped onto a fixed ``per_page`` and pages are sliced locally. The
        offset counts every raw entry, including ones ``keep`` rejects, so
        it stays valid whatever ``max_items`` the next call asks for.

        Args:
            handle: Integration being listed
            url: Listing URL
            offset: Number of raw entries already consumed
            max_items: Maximum number of kept entries to return
            per_page: Page size sent to the API, constant across calls
            has_next_page: Tells from a response and its entry count whether
                another page follows
            params: Extra query parameters
            headers: Request headers
            keep: Filter for raw entries (all kept when omitted)

        Returns:
            The kept entries, the offset to resume from and whether the
            listing is finished
        """
        kept: list[Any] = []
        for _ in range(MAX_PAGES_PER_WINDOW):
            page_index, skip = divmod(offset, per_page)
            data, response = await self._get_json(
                handle,
                url,
                params={**(params or {}), "per_page": per_page, "page": page_index + 1},
                headers=headers,
            )
            entries = list(data or [])
            more_pages = bool(entries) and has_next_page(response, len(entries))

            for entry in entries[skip:]:
                if len(kept) >= max_items:
                    break
                offset += 1
                if keep is None or keep(entry):
                    kept.append(entry)

            page_done = offset >= page_index * per_page + len(entries)
            if page_done and not more_pages:
                return OffsetWindow(tuple(kept), offset, is_last=True)
            if len(kept) >= max_items:
                return OffsetWindow(tuple(kept), offset, is_last=False)
            # Short page with a successor; resume at the next page boundary
            offset = (page_index + 1) * per_page

        return OffsetWindow(tuple(kept), offset, is_last=False)

    def _get_retry_after_delay(self, response: httpx.Response, attempt: int) -> float:
        """Extract Retry-After delay from response, or calculate default.

        Supports both delay-seconds ("120") and HTTP-date formats. All delays
        are capped at MAX_RETRY_DELAY_SECONDS.

        Args:
            response: HTTP response with 429 status
            attempt: Current attempt number (0-based)

        Returns:
            Number of seconds to wait before retrying
        """
        retry_after = response.headers.get("Retry-After")
        if retry_after:
            try:
                return min(max(0.0, float(retry_after)), MAX_RETRY_DELAY_SECONDS)
            except ValueError:
                pass

            try:
                retry_date = parsedate_to_datetime(retry_after)
                delay = (retry_date - datetime.now(UTC)).total_seconds()
                return min(max(0.0, delay), MAX_RETRY_DELAY_SECONDS)
            except (ValueError, TypeError) as e:
                logger.warning(
                    "Failed to parse Retry-After header '%s': %s. "
                    "Falling back to exponential backoff.",
                    retry_after,
                    e,
                )

        default_delay: float = self._performance.retry_delay_seconds * (2**attempt)
        return min(default_delay, MAX_RETRY_DELAY_SECONDS)


__all__ = [
    "HttpTicketProvider",
    "MAX_ERROR_BODY_LENGTH",
    "OffsetWindow",
    "parse_offset_cursor",
    "truncate_error_body",
]
