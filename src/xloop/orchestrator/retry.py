"""Bounded exponential backoff around retryable operations."""

from __future__ import annotations

import errno
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from xloop.errors import AgentError, RetriesExhaustedError
from xloop.orchestrator.failure_classifier import classify_agent_failure
from xloop.orchestrator.models import ErrorKind

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryableOperation = Callable[[], T]
RetryPredicate = Callable[[BaseException], bool]


@dataclass(slots=True, frozen=True)
class BackoffPolicy:
    """Retry budget and delay ceiling for one retry loop."""

    max_attempts: int = 3
    initial_delay_seconds: float = 1.0
    max_delay_seconds: float = 10.0

    def delay_for(self, attempt: int) -> float:
        """Delay after failed ``attempt`` (counted from 0)."""

        return min(self.initial_delay_seconds * (2**attempt), self.max_delay_seconds)


def retry_with_backoff(
    operation: RetryableOperation[T],
    *,
    policy: BackoffPolicy | None = None,
    should_retry: RetryPredicate | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``operation`` until it succeeds or fails with a non-retryable error.

    Non-retryable errors propagate unchanged on first occurrence. A retryable error
    that survives every attempt is wrapped in `RetriesExhaustedError`.
    """

    policy = policy or BackoffPolicy()
    if policy.max_attempts < 1:
        raise ValueError("max_attempts must be >= 1.")
    retryable = should_retry or is_network_error

    attempt = 0
    while True:
        try:
            return operation()
        except Exception as error:
            if not retryable(error):
                raise
            if attempt + 1 >= policy.max_attempts:
                raise RetriesExhaustedError(error, attempts=attempt + 1) from error

            delay = policy.delay_for(attempt)
            logger.warning(
                "Transient failure, retrying in %.1fs (attempt %d/%d): %s",
                delay,
                attempt + 1,
                policy.max_attempts,
                error,
            )
            sleep(delay)
            attempt += 1


def is_network_error(error: BaseException) -> bool:
    """Return True for failures that look like transient network trouble."""

    if isinstance(error, AgentError):
        return error.kind is ErrorKind.NETWORK
    return _classify_exception(error) is ErrorKind.NETWORK


def is_transient_error(error: BaseException) -> bool:
    """Network failures plus agent timeouts."""

    if isinstance(error, AgentError):
        return error.transient
    return _classify_exception(error) is ErrorKind.NETWORK


def never_retry(_: BaseException) -> bool:
    return False


def _classify_exception(error: BaseException) -> ErrorKind:
    code = getattr(error, "errno", None)
    code_name = errno.errorcode.get(code, "") if isinstance(code, int) else ""
    text = f"{error} {code_name}"
    return classify_agent_failure(stderr=text, exit_code=1).kind
