"""Retry policy for cloud drive HTTP calls: token exchange, listing and downloads."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, cast

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)
from tenacity.wait import wait_base

logger = logging.getLogger(__name__)

# Drive reports quota throttling as 403 with one of these reasons.
RATE_LIMIT_REASONS = frozenset({"rateLimitExceeded", "userRateLimitExceeded"})


class RetryableStatusError(Exception):
    """Carries a response whose status the retry policy treats as temporary."""

    def __init__(self, response: httpx.Response) -> None:
        super().__init__(f"Retryable HTTP status {response.status_code}")
        self.response = response


_RETRYABLE_EXCEPTIONS = (
    httpx.TimeoutException,
    httpx.TransportError,
    RetryableStatusError,
)


def _error_reason(response: httpx.Response) -> str | None:
    try:
        payload = response.json()
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if not isinstance(error, dict):
        return None
    for item in error.get("errors") or []:
        if isinstance(item, dict) and item.get("reason"):
            return str(item["reason"])
    return None


class RetryConfig(BaseModel):
    """How often and how patiently drive requests are retried."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = False
    max_attempts: int = Field(default=3, ge=1)
    backoff_factor: float = Field(default=0.5, gt=0)
    max_backoff: float | None = Field(default=10.0, gt=0)
    jitter: float = Field(default=0.0, ge=0)
    status_forcelist: list[int] = Field(default_factory=lambda: [429, 500, 502, 503, 504])
    retry_on_methods: list[str] = Field(default_factory=lambda: ["GET", "POST"])
    retry_rate_limited_403: bool = True
    respect_retry_after: bool = True

    @field_validator("retry_on_methods", mode="before")
    @classmethod
    def _coerce_methods(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        return [str(item).strip().upper() for item in value if str(item).strip()]

    def should_retry_method(self, method: str) -> bool:
        return method.upper() in self.retry_on_methods

    def should_retry_response(self, response: httpx.Response) -> bool:
        """True for listed statuses, and for a 403 that only signals drive quota throttling."""

        if response.status_code in self.status_forcelist:
            return True
        return (
            self.retry_rate_limited_403
            and response.status_code == 403
            and _error_reason(response) in RATE_LIMIT_REASONS
        )


def _parse_retry_after(value: str | None) -> float | None:
    """Seconds to wait according to a Retry-After header (delta-seconds or HTTP date)."""

    if value is None or not value.strip():
        return None
    trimmed = value.strip()
    if trimmed.isdigit():
        return float(trimmed)
    try:
        parsed = parsedate_to_datetime(trimmed)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return max((parsed - datetime.now(timezone.utc)).total_seconds(), 0.0)


class wait_retry_after(wait_base):
    """Wait at least as long as the server's Retry-After header asks, else ``fallback``."""

    def __init__(self, fallback: wait_base) -> None:
        self.fallback = fallback

    def __call__(self, retry_state: RetryCallState) -> float:
        delay = self.fallback(retry_state)
        outcome = retry_state.outcome
        if outcome is None or not outcome.failed:
            return delay
        exception = outcome.exception()
        if isinstance(exception, RetryableStatusError):
            requested = _parse_retry_after(exception.response.headers.get("retry-after"))
            if requested is not None:
                return max(delay, requested)
        return delay


def _wait_strategy(config: RetryConfig) -> wait_base:
    wait: wait_base = wait_exponential(
        multiplier=config.backoff_factor,
        max=config.max_backoff if config.max_backoff is not None else float("inf"),
    )
    if config.jitter > 0:
        wait = wait + wait_random(0, config.jitter)
    if config.respect_retry_after:
        wait = wait_retry_after(wait)
    return wait


async def execute_with_retry(
    send: Callable[[], Awaitable[httpx.Response]],
    *,
    method: str,
    retry_config: RetryConfig,
    log: logging.Logger | logging.LoggerAdapter | None = None,
) -> httpx.Response:
    """Send a request under ``retry_config``.

    Transport errors are re-raised once attempts run out. When attempts run
    out on a retryable status, the last response is returned so the caller
    can report the provider's error body.
    """

    if not (retry_config.enabled and retry_config.max_attempts > 1):
        return await send()
    if not retry_config.should_retry_method(method):
        return await send()

    sleep_logger = log or logger
    if isinstance(sleep_logger, logging.LoggerAdapter):
        sleep_logger = cast(logging.Logger, sleep_logger.logger)

    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(retry_config.max_attempts),
            wait=_wait_strategy(retry_config),
            retry=retry_if_exception_type(_RETRYABLE_EXCEPTIONS),
            before_sleep=before_sleep_log(sleep_logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                response = await send()
                if retry_config.should_retry_response(response):
                    raise RetryableStatusError(response)
                return response
    except RetryableStatusError as exc:
        return exc.response

    raise RuntimeError("Retry loop exited without producing a response")
