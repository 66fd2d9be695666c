"""Rate-limited, authenticated REST dispatch with bounded retries.

Architecture:
    ``dispatch`` runs one logical request as a sequence of attempts. Every
    attempt takes a permit from the venue's RateLimiter, attaches headers
    from the SigningScheme, and calls the transport under the caller's
    timeout. The raw response is classified into the canonical error
    hierarchy; transient errors are retried with exponential backoff and
    jitter, everything else surfaces immediately.

Retry Policy:
    - Transient (retried up to ``RetryPolicy.max_attempts``): NetworkError
      (including 5xx), Timeout, venue 429 RateLimitExceeded
    - Never retried: ValidationError, ExchangeRejected, SerializationError,
      local RateLimitExceeded
    - AuthError from the venue: the cached credential is dropped and the
      request is re-sent exactly once with a fresh one; the re-send does not
      consume a transient attempt
    - Local AuthError (e.g. clock skew): surfaces without dispatch

See Also:
    - RateLimiter: permit acquisition
    - SigningScheme: credential caching and per-request headers
    - error_for_response: default status-code classification
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from decimal import InvalidOperation
from typing import Any, Optional, Protocol, TypeVar

from ..core.config import ExchangeConfig, RetryPolicy
from ..core.enums import EndpointClass, Venue
from ..core.exceptions import (
    AuthError,
    DrmError,
    NetworkError,
    NotSupported,
    RateLimitExceeded,
    SerializationError,
    Timeout,
)
from ..io.http import RawResponse, error_for_response
from ..models.credential import SignedPayload
from ..signing.base import SigningScheme
from .rate_limit import RateLimiter
from .telemetry import log_dispatch_attempt, log_dispatch_retry, log_reauthentication

logger = logging.getLogger(__name__)

T = TypeVar("T")

ErrorMapper = Callable[[RawResponse, Optional[Venue]], Optional[DrmError]]


class Transport(Protocol):
    """Anything that can send one HTTP request (HTTPClient in production)."""

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json_body: Any = None,
        headers: Optional[dict[str, str]] = None,
    ) -> RawResponse:
        ...


class RequestDispatcher:
    """Dispatch REST calls for one venue."""

    def __init__(
        self,
        venue: Venue,
        transport: Transport,
        limiter: RateLimiter,
        signer: SigningScheme | None = None,
        *,
        retry: RetryPolicy | None = None,
        timeout: float = 30.0,
        error_mapper: ErrorMapper | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.venue = venue
        self.signer = signer
        self._transport = transport
        self._limiter = limiter
        self._retry = retry or RetryPolicy()
        self._timeout = timeout
        self._error_mapper = error_mapper or error_for_response
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        venue: Venue,
        transport: Transport,
        config: ExchangeConfig,
        signer: SigningScheme | None = None,
        **kwargs: Any,
    ) -> RequestDispatcher:
        limiter = kwargs.pop("limiter", None) or RateLimiter.from_config(venue, config)
        return cls(
            venue,
            transport,
            limiter,
            signer,
            retry=config.retry_policy(),
            timeout=config.timeout,
            **kwargs,
        )

    @property
    def limiter(self) -> RateLimiter:
        return self._limiter

    async def close(self) -> None:
        """Close the transport's session, if it has one."""
        close = getattr(self._transport, "close", None)
        if close is not None:
            await close()

    async def __aenter__(self) -> RequestDispatcher:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def dispatch(
        self,
        method: str,
        path: str,
        body: Any = None,
        endpoint_class: EndpointClass = EndpointClass.PUBLIC_READ,
        *,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> RawResponse:
        """Send a request and return the successful raw response.

        Raises:
            DrmError: the final canonical error once retries are exhausted
        """
        timeout = self._timeout if timeout is None else timeout
        attempt = 0
        reauthenticated = False

        while True:
            attempt += 1
            try:
                return await self._attempt(
                    method, path, body, endpoint_class, params, headers, timeout, attempt
                )
            except AuthError as e:
                if (
                    e.status_code is None
                    or reauthenticated
                    or self.signer is None
                    or not endpoint_class.requires_auth
                ):
                    raise
                reauthenticated = True
                attempt -= 1
                self.signer.invalidate()
                log_reauthentication(venue=self.venue, scheme=self.signer.kind, path=path)
            except DrmError as e:
                if not e.transient or attempt >= self._retry.max_attempts:
                    raise
                delay = self._retry.delay_for(attempt)
                if isinstance(e, RateLimitExceeded) and e.retry_after:
                    delay = max(delay, e.retry_after)
                log_dispatch_retry(
                    venue=self.venue, method=method, path=path, attempt=attempt, delay=delay, error=e
                )
                await self._sleep(delay)

    async def fetch(
        self,
        method: str,
        path: str,
        parse: Callable[[Any], T],
        body: Any = None,
        endpoint_class: EndpointClass = EndpointClass.PUBLIC_READ,
        **kwargs: Any,
    ) -> T:
        """Dispatch and map the body to a canonical value with ``parse``.

        Raises:
            SerializationError: if the body does not match what ``parse`` expects
        """
        response = await self.dispatch(method, path, body, endpoint_class, **kwargs)
        try:
            return parse(response.body)
        except DrmError:
            raise
        except (KeyError, IndexError, TypeError, ValueError, InvalidOperation) as e:
            raise SerializationError(
                f"Unexpected response for {method.upper()} {path}: {e}", venue=self.venue
            ) from e

    def sign(self, payload: dict[str, Any]) -> SignedPayload:
        """Sign a payload with the venue's scheme."""
        if self.signer is None:
            raise NotSupported(f"{self.venue.value} has no signing scheme configured", venue=self.venue)
        return self.signer.sign(payload)

    async def _attempt(
        self,
        method: str,
        path: str,
        body: Any,
        endpoint_class: EndpointClass,
        params: Optional[dict[str, Any]],
        headers: Optional[dict[str, str]],
        timeout: float,
        attempt: int,
    ) -> RawResponse:
        await self._limiter.acquire(endpoint_class)

        request_headers = dict(headers or {})
        if endpoint_class.requires_auth:
            if self.signer is None:
                raise AuthError(f"{endpoint_class.value} request needs credentials", venue=self.venue)
            credential = await self.signer.ensure_credential()
            request_headers.update(self.signer.request_headers(credential, method, path))

        started = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._transport.request(
                    method, path, params=params, json_body=body, headers=request_headers
                ),
                timeout,
            )
        except asyncio.TimeoutError as e:
            raise Timeout(
                f"{method.upper()} {path} timed out after {timeout}s", venue=self.venue
            ) from e
        except DrmError as e:
            if e.venue is None:
                e.venue = self.venue
            raise
        except OSError as e:
            raise NetworkError(f"{method.upper()} {path} failed: {e}", venue=self.venue) from e

        log_dispatch_attempt(
            venue=self.venue,
            method=method,
            path=path,
            endpoint_class=endpoint_class,
            attempt=attempt,
            status=response.status,
            latency_ms=(time.monotonic() - started) * 1000,
        )
        error = self._error_mapper(response, self.venue)
        if error is not None:
            raise error
        return response
