"""Deterministic agent failure classification for retry policy."""

from __future__ import annotations

import functools
import re
from dataclasses import dataclass

from xloop.orchestrator.models import ErrorKind

COMMAND_NOT_FOUND_EXIT_CODE = 127

_NETWORK_PATTERNS: tuple[str, ...] = (
    "econnrefused",
    "econnreset",
    "etimedout",
    "enotfound",
    "enetunreach",
    "eai_again",
    "connection refused",
    "connection reset",
    "could not resolve host",
    "fetch failed",
    "socket hang up",
    "network",
    "timed out",
    "timeout",
    "dns",
)
_RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "rate limit",
    "rate_limit",
    "too many requests",
    "429",
    "quota exceeded",
    "rate exceeded",
)
_AGENT_NOT_FOUND_PATTERNS: tuple[str, ...] = (
    "enoent",
    "command not found",
    "no such file or directory",
)
_MODEL_PROBLEM_PATTERNS: tuple[str, ...] = (
    "not found",
    "unavailable",
    "not available",
    "does not exist",
    "invalid",
    "unknown",
    "unsupported",
)

_RETRY_AFTER = re.compile(r"retry[- ]after[:\s]+(\d+)", re.IGNORECASE)
_MODEL_WORD = re.compile(r"\bmodel\b")


@dataclass(slots=True, frozen=True)
class AgentFailureClassification:
    """Normalized failure classification result."""

    kind: ErrorKind
    matched_rule: str
    matched_pattern: str | None = None
    retry_after_seconds: int | None = None

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.NETWORK


def classify_agent_failure(
    *,
    stderr: str,
    exit_code: int | None,
    timed_out: bool = False,
) -> AgentFailureClassification:
    """Classify an agent failure from its stderr text and exit code."""

    if timed_out:
        return AgentFailureClassification(kind=ErrorKind.TIMEOUT, matched_rule="timed_out")

    haystack = stderr.lower()

    pattern = _first_match(haystack, _NETWORK_PATTERNS)
    if pattern is not None:
        return AgentFailureClassification(
            kind=ErrorKind.NETWORK,
            matched_rule="network",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _RATE_LIMIT_PATTERNS)
    if pattern is not None:
        retry_match = _RETRY_AFTER.search(stderr)
        return AgentFailureClassification(
            kind=ErrorKind.RATE_LIMIT,
            matched_rule="rate_limit",
            matched_pattern=pattern,
            retry_after_seconds=int(retry_match.group(1)) if retry_match else None,
        )

    pattern = _first_match(haystack, _AGENT_NOT_FOUND_PATTERNS)
    if pattern is not None or exit_code is None or exit_code == COMMAND_NOT_FOUND_EXIT_CODE:
        return AgentFailureClassification(
            kind=ErrorKind.AGENT_NOT_FOUND,
            matched_rule="agent_not_found" if pattern is not None else "agent_not_found_exit_code",
            matched_pattern=pattern,
        )

    if _MODEL_WORD.search(haystack):
        pattern = _first_match(haystack, _MODEL_PROBLEM_PATTERNS)
        if pattern is not None:
            return AgentFailureClassification(
                kind=ErrorKind.MODEL_UNAVAILABLE,
                matched_rule="model_unavailable",
                matched_pattern=pattern,
            )

    return AgentFailureClassification(kind=ErrorKind.UNCLASSIFIED, matched_rule="fallback")


def classify(stderr: str, exit_code: int | None) -> ErrorKind:
    """Return only the failure kind for ``stderr`` and ``exit_code``."""

    return classify_agent_failure(stderr=stderr, exit_code=exit_code).kind


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if _token_regex(pattern).search(haystack):
            return pattern
    return None


@functools.cache
def _token_regex(pattern: str) -> re.Pattern[str]:
    # Whole tokens only; "_" counts as a separator.
    return re.compile(rf"(?<![a-z0-9]){re.escape(pattern)}(?![a-z0-9])")
