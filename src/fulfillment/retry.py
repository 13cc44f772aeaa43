"""Bounded exponential-backoff retry for a single provider HTTP call.

Transport failures and the configured retryable statuses (408, 429, 5xx
gateway errors) are retried; anything else, including non-retryable 4xx,
comes back to the caller untouched. After ``max_retries + 1`` attempts the
last error is raised.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from src.fulfillment.config import RetryConfig
from src.fulfillment.errors import (
    ApiError,
    FulfillmentError,
    NetworkError,
    RateLimitedError,
)

logger = logging.getLogger(__name__)


def parse_retry_after(value: str | None) -> float | None:
    """Parse a ``Retry-After`` header given in seconds.

    Args:
        value: Raw header value.

    Returns:
        Positive number of seconds, or None when absent or not numeric
        (HTTP-date values are ignored).
    """
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return seconds if seconds > 0 else None


def _error_for_response(response: httpx.Response) -> ApiError:
    if response.status_code == 429:
        return RateLimitedError(
            "Rate limit exceeded",
            retry_after=parse_retry_after(response.headers.get("Retry-After")),
        )
    return ApiError(
        f"HTTP {response.status_code}: {response.reason_phrase}",
        status_code=response.status_code,
        reason=response.reason_phrase or None,
    )


async def fetch_with_retry(
    client: httpx.AsyncClient,
    request: httpx.Request,
    config: RetryConfig | None = None,
    *,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> httpx.Response:
    """Send ``request`` with bounded retries.

    Args:
        client: httpx client used to send the request.
        request: Fully built request; re-sent as-is on each attempt.
        config: Retry policy; defaults to RetryConfig().
        sleep: Async sleep used between attempts (injectable for tests).

    Returns:
        The first response that is a success or not retryable.

    Raises:
        RateLimitedError: Last attempt answered 429.
        ApiError: Last attempt answered another retryable status.
        NetworkError: Last attempt failed in the transport.
    """
    cfg = config or RetryConfig()
    total_attempts = cfg.max_retries + 1
    attempt = 0

    while True:
        delay = cfg.backoff_delay(attempt)
        error: FulfillmentError
        try:
            response = await client.send(request)
        except httpx.TransportError as e:
            error = NetworkError(str(e) or type(e).__name__, original=e)
        else:
            if response.is_success or response.status_code not in cfg.retryable_statuses:
                return response
            error = _error_for_response(response)
            if isinstance(error, RateLimitedError) and error.retry_after:
                delay = min(error.retry_after, cfg.max_delay)

        if attempt >= cfg.max_retries:
            logger.error(
                "provider_request %s %s failed after %d attempts: %s",
                request.method, request.url.path, total_attempts, error,
            )
            raise error

        logger.warning(
            "provider_request %s %s failed (attempt %d/%d), retrying in %.2fs: %s",
            request.method, request.url.path, attempt + 1, total_attempts,
            delay, error,
        )
        await sleep(delay)
        attempt += 1
