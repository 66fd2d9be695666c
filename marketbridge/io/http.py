"""HTTP client helper."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Optional, Union

import aiohttp

from ..core.enums import Venue
from ..core.exceptions import (
    AuthError,
    DrmError,
    ExchangeRejected,
    MarketNotFound,
    NetworkError,
    RateLimitExceeded,
    Timeout,
    ValidationError,
)

logger = logging.getLogger(__name__)

ResponseHook = Callable[[Any], Union[Optional[float], Awaitable[Optional[float]]]]


@dataclass(frozen=True)
class RawResponse:
    """Status, headers and decoded body of one HTTP exchange.

    ``body`` is the parsed JSON document, or the raw text when the venue
    answered with something that is not JSON.
    """

    status: int
    body: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)
    url: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def retry_after(self) -> float | None:
        value = self.headers.get("Retry-After") or self.headers.get("retry-after")
        try:
            return float(value) if value is not None else None
        except ValueError:
            return None


def _message(response: RawResponse) -> str:
    body = response.body
    if isinstance(body, Mapping):
        for key in ("message", "error", "errmsg", "detail"):
            if body.get(key):
                return str(body[key])
    if isinstance(body, str) and body:
        return body[:200]
    return f"HTTP {response.status}"


def error_for_response(response: RawResponse, venue: Venue | None = None) -> DrmError | None:
    """Map an HTTP status to the canonical error, or None on success."""
    status = response.status
    if response.ok:
        return None
    message = _message(response)
    if status in (401, 403):
        return AuthError(message, venue=venue, status_code=status)
    if status == 429:
        return RateLimitExceeded(message, retry_after=response.retry_after, venue=venue, status_code=status)
    if status == 404:
        return MarketNotFound(message, venue=venue, status_code=status)
    if status in (400, 422):
        return ValidationError(message, venue=venue, status_code=status)
    if status >= 500:
        return NetworkError(message, venue=venue, status_code=status)
    return ExchangeRejected(message, venue=venue, status_code=status)


class HTTPClient:
    """Async HTTP client wrapper.

    Response hooks see every raw aiohttp response and may return a delay in
    seconds; the client then holds back subsequent requests until that
    throttle window has passed. A 429 with ``Retry-After`` opens the same
    window automatically.
    """

    def __init__(self, base_url: Optional[str] = None, timeout: float = 30.0) -> None:
        self.base_url = base_url
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None
        self._response_hooks: list[ResponseHook] = []
        self._throttle_until: Optional[float] = None

    @property
    def session(self) -> aiohttp.ClientSession:
        """Get or create session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    def add_response_hook(self, hook: ResponseHook) -> None:
        self._response_hooks.append(hook)

    def set_throttle(self, seconds: float) -> None:
        """Hold requests for ``seconds``; never shortens an existing window."""
        if seconds <= 0:
            return
        until = time.monotonic() + seconds
        if self._throttle_until is None or until > self._throttle_until:
            self._throttle_until = until

    async def _wait_throttle(self) -> None:
        if self._throttle_until is None:
            return
        delay = self._throttle_until - time.monotonic()
        self._throttle_until = None
        if delay > 0:
            await asyncio.sleep(delay)

    async def _run_hooks(self, response: Any) -> None:
        for hook in self._response_hooks:
            try:
                result = hook(response)
                if inspect.isawaitable(result):
                    result = await result
            except Exception as e:  # noqa: BLE001
                logger.warning(f"Response hook failed: {e}")
                continue
            if result:
                self.set_throttle(float(result))

    def _url(self, url: str) -> str:
        # If base_url is set and url is relative, combine them
        if self.base_url and not url.startswith("http"):
            return f"{self.base_url}{url}"
        return url

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json_body: Any = None,
        headers: Optional[dict[str, str]] = None,
    ) -> RawResponse:
        """Send one request and return the raw response (no status checks).

        Raises:
            NetworkError: connection-level failure
            Timeout: the client timeout elapsed
        """
        await self._wait_throttle()
        full_url = self._url(url)
        try:
            async with self.session.request(
                method.upper(), full_url, params=params, json=json_body, headers=headers
            ) as response:
                await self._run_hooks(response)
                text = await response.text()
                resp_headers = dict(response.headers or {})
                status = response.status
        except asyncio.TimeoutError as e:
            raise Timeout(f"{method.upper()} {full_url} timed out") from e
        except aiohttp.ClientError as e:
            raise NetworkError(f"{method.upper()} {full_url} failed: {e}") from e

        raw = RawResponse(status=status, body=_decode(text), headers=resp_headers, url=full_url)
        if status == 429 and raw.retry_after:
            self.set_throttle(raw.retry_after)
        return raw

    async def get(
        self,
        url: str,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        """GET request returning the decoded body; non-2xx raises."""
        response = await self.request("GET", url, params=params, headers=headers)
        error = error_for_response(response)
        if error is not None:
            raise error
        return response.body

    async def post(
        self,
        url: str,
        json_body: Any = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        """POST request returning the decoded body; non-2xx raises."""
        response = await self.request("POST", url, json_body=json_body, headers=headers)
        error = error_for_response(response)
        if error is not None:
            raise error
        return response.body

    async def close(self) -> None:
        """Close session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "HTTPClient":
        """Context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        await self.close()


def _decode(text: str) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text
