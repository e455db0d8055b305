"""
LabelDesk Backend — Storage Resilience Primitives
===================================================

What:  Circuit breaker and tenacity retry policy shared by remote blob stores.
Why:   Storage outages must not turn every label save into a slow timeout.
How:   `storage_retry()` builds a tenacity decorator (exponential backoff with
       jitter) that only retries transport-level failures. `CircuitBreaker`
       stops calling a failing backend for a recovery period so thumbnail work
       degrades instantly instead of waiting on timeouts.
Who:   SupabaseBlobStore.

State Machine:
    CLOSED    → failures increment counter; at threshold → OPEN
    OPEN      → every call raises CircuitBreakerOpenError until the
                recovery timeout has elapsed → HALF_OPEN
    HALF_OPEN → one trial call; success → CLOSED, failure → OPEN
"""

import logging
import time
from typing import Optional, Tuple, Type

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from labeldesk.config import settings
from labeldesk.exceptions import CircuitBreakerOpenError

logger = logging.getLogger(__name__)


class CircuitBreaker:
    """
    Circuit breaker around a single remote dependency.

    Not thread-safe; one instance lives in one event loop.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 60, name: str = "storage"):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None

    def can_execute(self) -> bool:
        """
        Check if a call is allowed through.

        Raises:
            CircuitBreakerOpenError if OPEN and the recovery timeout hasn't elapsed.
        """
        if self.state == self.CLOSED:
            return True

        if self.state == self.OPEN:
            elapsed = time.time() - (self.last_failure_time or 0)
            if elapsed >= self.recovery_timeout:
                logger.info(
                    "Circuit breaker '%s' transitioning to HALF_OPEN after %.1fs",
                    self.name,
                    elapsed,
                )
                self.state = self.HALF_OPEN
                return True
            remaining = int(self.recovery_timeout - elapsed)
            raise CircuitBreakerOpenError(recovery_time=remaining, context={"breaker": self.name})

        return True

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Circuit breaker '%s' transitioning to CLOSED (backend recovered)", self.name)
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()

        if self.state == self.HALF_OPEN:
            logger.warning("Circuit breaker '%s' returning to OPEN (trial call failed)", self.name)
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold:
            logger.warning(
                "Circuit breaker '%s' OPENING after %d consecutive failures",
                self.name,
                self.failure_count,
            )
            self.state = self.OPEN


def storage_retry(
    retry_on: Tuple[Type[BaseException], ...],
    max_attempts: Optional[int] = None,
):
    """
    Tenacity decorator for a single storage HTTP call.

    Only `retry_on` exception types are retried; the last one is re-raised
    once attempts run out (reraise=True), so callers see the real error.
    """
    return retry(
        retry=retry_if_exception_type(retry_on),
        stop=stop_after_attempt(max_attempts or settings.retry_max_attempts),
        # min_wait * 2^n capped at max_wait, plus up to min_wait of jitter
        wait=wait_exponential(multiplier=settings.retry_min_wait, max=settings.retry_max_wait)
        + wait_random(0, settings.retry_min_wait),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
