from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

import httpx
from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt, wait_exponential
from tenacity.wait import wait_base

from sales_tool_detector.config import Settings

logger = logging.getLogger(__name__)


def is_transient(exc: BaseException) -> bool:
    """Transport failures, rate limits and 5xx are worth another attempt."""
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return False


def retry_after_seconds(response: httpx.Response) -> float | None:
    """Seconds requested by a Retry-After header, given as seconds or an HTTP date."""
    raw = response.headers.get("Retry-After", "").strip()
    if not raw:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        pass
    try:
        retry_at = parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        logger.warning("could not parse Retry-After header: %r", raw)
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    return max(0.0, (retry_at - datetime.now(timezone.utc)).total_seconds())


class wait_retry_after(wait_base):
    """Wait what a 429/503 response asks for, else fall back to another strategy."""

    def __init__(self, fallback: wait_base, max_wait: float) -> None:
        self.fallback = fallback
        self.max_wait = max_wait

    def __call__(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code in (429, 503):
            requested = retry_after_seconds(exc.response)
            if requested is not None:
                logger.info("server asked to retry after %.1fs", requested)
                return min(requested, self.max_wait)
        return self.fallback(retry_state)


def build_retrying(settings: Settings, *, sleep: Callable[[float], None] = time.sleep) -> Retrying:
    backoff = wait_exponential(
        multiplier=settings.request_retry_delay_seconds,
        max=settings.request_retry_max_delay_seconds,
    )
    return Retrying(
        stop=stop_after_attempt(settings.request_retry_attempts),
        wait=wait_retry_after(backoff, settings.request_retry_max_delay_seconds),
        retry=retry_if_exception(is_transient),
        sleep=sleep,
        reraise=True,
    )


def build_client(settings: Settings, *, timeout_seconds: float, token: str = "") -> httpx.Client:
    headers = {"User-Agent": settings.user_agent}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return httpx.Client(timeout=timeout_seconds, headers=headers, follow_redirects=True)


def describe_http_error(exc: Exception, service: str) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        return f"{service} returned HTTP {exc.response.status_code}"
    if isinstance(exc, httpx.TimeoutException):
        return f"{service} timed out"
    return f"{service} request failed: {str(exc) or type(exc).__name__}"
