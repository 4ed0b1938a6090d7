"""
Shared HTTP plumbing for the provider clients.

Each logical call opens its own ``httpx.AsyncClient`` with the configured
deadline, normalises every failure into a ``ProviderError`` and retries the
transient ones (rate limits, dropped connections) with capped exponential
backoff. A timeout surfaces as ``network`` without a retry.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx

from trackprofit.config import get_settings
from trackprofit.errors import ErrorKind, ProviderError

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class RetryPolicy:
    """Capped exponential backoff with additive jitter (0-25% of the base delay)."""
    initial_delay: float = 0.5
    multiplier: float = 2.0
    max_attempts: int = 5
    max_delay: float = 30.0
    jitter: bool = True

    def delay_for(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Delay before retry number ``attempt`` (1-indexed). Never below the base delay."""
        delay = min(self.initial_delay * (self.multiplier ** (attempt - 1)), self.max_delay)
        if retry_after:
            delay = max(delay, min(retry_after, self.max_delay))
        if self.jitter:
            delay = min(delay + delay * random.uniform(0, 0.25), self.max_delay)
        return delay


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _json_or_none(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


class ProviderClient:
    """Base class for the orders, ads and courier clients."""

    provider = "provider"

    def __init__(
        self,
        base_url: str,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry: Optional[RetryPolicy] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout if timeout is not None else get_settings().provider_timeout_seconds
        self.retry = retry or RetryPolicy()
        self._transport = transport
        self._sleep = sleep

    # ── Hooks ─────────────────────────────────────────────────────────
    def _headers(self) -> dict:
        return {"Accept": "application/json"}

    def _error_message(self, payload: Any) -> Optional[str]:
        """Pull a human-readable message out of an error body."""
        if isinstance(payload, dict):
            message = payload.get("message") or payload.get("error")
            if isinstance(message, str):
                return message
        return None

    def _classify(self, response: httpx.Response, payload: Any) -> Optional[ProviderError]:
        """Map an HTTP response to a ProviderError, or None when it is a success."""
        status = response.status_code
        if status < 400:
            return None
        message = self._error_message(payload) or f"HTTP {status}"
        if status == 429:
            return self._error(ErrorKind.RATE_LIMITED, message, retry_after=_retry_after(response), status_code=status)
        if status in (401, 403):
            return self._error(ErrorKind.AUTH_EXPIRED, message, status_code=status)
        if status == 404:
            return self._error(ErrorKind.NOT_FOUND, message, status_code=status)
        if status in (400, 422):
            return self._error(ErrorKind.INVALID_INPUT, message, status_code=status)
        return self._error(ErrorKind.UPSTREAM_BAD_RESPONSE, message, status_code=status)

    # ── Helpers ───────────────────────────────────────────────────────
    def _error(self, kind: ErrorKind, message: str, **kwargs) -> ProviderError:
        return ProviderError(self.provider, kind, message, **kwargs)

    def _should_retry(self, error: ProviderError) -> bool:
        if error.kind is ErrorKind.RATE_LIMITED:
            return True
        return error.kind is ErrorKind.NETWORK and error.reason == "connection"

    async def _send_once(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        json: Any = None,
        data: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> Any:
        request_headers = {**self._headers(), **(headers or {})}
        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self._transport
        ) as client:
            try:
                # httpx times each phase separately; the deadline covers the whole call
                response = await asyncio.wait_for(
                    client.request(method, path, params=params, json=json, data=data, headers=request_headers),
                    self.timeout,
                )
            except (httpx.TimeoutException, asyncio.TimeoutError) as e:
                raise self._error(
                    ErrorKind.NETWORK, f"{method} {path} timed out after {self.timeout}s", reason="timeout"
                ) from e
            except httpx.TransportError as e:
                raise self._error(ErrorKind.NETWORK, f"{method} {path} failed: {e}", reason="connection") from e

        payload = _json_or_none(response)
        error = self._classify(response, payload)
        if error is not None:
            raise error
        if payload is None and response.content:
            raise self._error(
                ErrorKind.UPSTREAM_BAD_RESPONSE,
                f"{method} {path} returned a non-JSON body",
                status_code=response.status_code,
            )
        return payload

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        """Send a request, retrying rate limits and dropped connections."""
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._send_once(method, path, **kwargs)
            except ProviderError as e:
                if not self._should_retry(e) or attempt >= self.retry.max_attempts:
                    if attempt > 1:
                        logger.warning(f"{self.provider}: {method} {path} gave up after {attempt} attempts ({e.kind.value})")
                    raise
                delay = self.retry.delay_for(attempt, e.retry_after)
                logger.info(
                    f"{self.provider}: {e.kind.value} on {method} {path}, "
                    f"retry {attempt}/{self.retry.max_attempts - 1} in {delay:.2f}s"
                )
                await self._sleep(delay)
