"""
DiaryFlow Backend — Resilience Helpers
========================================

What:  Circuit breaker and tenacity retry policy for third-party HTTP APIs.
Who:   WeatherService and TranscriptionService each own one breaker and
       build their retry policy here.

Resilience Strategy:
    1. Tenacity retry with exponential backoff + jitter for transient failures
       (connection errors, timeouts, 429 and 5xx responses)
    2. Circuit breaker so a provider outage fails fast instead of stacking
       up retries on every request
"""

import logging
import time
from typing import Optional

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from diaryflow.config import settings
from diaryflow.exceptions import CircuitBreakerOpenError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}


class CircuitBreaker:
    """
    Fail-fast guard around one provider.

        closed ──(threshold consecutive failures)──▶ open
        open ──(recovery_timeout elapsed, next call)──▶ half_open
        half_open ──success──▶ closed
        half_open ──failure──▶ open

    A success in any state clears the failure count. Only the event loop
    touches it, so there is no locking.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(
        self,
        service: str,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
    ):
        self.service = service
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None

    def can_execute(self) -> bool:
        """
        Check if a request is allowed through.

        Raises:
            CircuitBreakerOpenError if OPEN and the recovery timeout hasn't elapsed.
        """
        if self.state == self.CLOSED:
            return True

        if self.state == self.OPEN:
            elapsed = time.time() - (self.last_failure_time or 0)
            if elapsed >= self.recovery_timeout:
                logger.info(
                    "Circuit breaker for %s transitioning to HALF_OPEN after %.1fs",
                    self.service,
                    elapsed,
                )
                self.state = self.HALF_OPEN
                return True
            remaining = max(1, int(self.recovery_timeout - elapsed))
            raise CircuitBreakerOpenError(service=self.service, recovery_time=remaining)

        return True

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Circuit breaker for %s transitioning to CLOSED", self.service)
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()

        if self.state == self.HALF_OPEN:
            logger.warning(
                "Circuit breaker for %s returning to OPEN (test request failed)",
                self.service,
            )
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold:
            logger.warning(
                "Circuit breaker for %s OPENING after %d consecutive failures",
                self.service,
                self.failure_count,
            )
            self.state = self.OPEN


def is_transient_http_error(exc: BaseException) -> bool:
    """Network failures and throttling/server statuses are worth another attempt."""
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    return False


def http_retrying(log: logging.Logger) -> AsyncRetrying:
    """
    Retry policy for one outbound call.

    Built per call so the current settings apply (tests set the waits to 0).
    Backoff: wait = min(max_wait, min_wait * 2^attempt) + random(0, 1)
    """
    return AsyncRetrying(
        retry=retry_if_exception(is_transient_http_error),
        stop=stop_after_attempt(settings.retry_max_attempts),
        wait=wait_exponential_jitter(
            initial=settings.retry_min_wait,
            max=settings.retry_max_wait,
            jitter=1 if settings.retry_max_wait else 0,
        ),
        before_sleep=before_sleep_log(log, logging.WARNING),
        reraise=True,
    )
