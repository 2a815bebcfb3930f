"""Domain models for agent execution and phase iterations."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class AgentKind(str, Enum):
    """Supported agent CLIs."""

    OPENCODE = "opencode"
    CLAUDE = "claude"


class Phase(str, Enum):
    """Ordered phases of one iteration."""

    IMPLEMENT = "implement"
    REVIEW = "review"
    FINALIZE = "finalize"

    @property
    def label(self) -> str:
        return self.value.capitalize()


class ErrorKind(str, Enum):
    """Normalized failure kinds used by retry policy."""

    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    MODEL_UNAVAILABLE = "model_unavailable"
    TIMEOUT = "timeout"
    AGENT_NOT_FOUND = "agent_not_found"
    UNCLASSIFIED = "unclassified"


SUPPORTED_AGENTS = tuple(kind.value for kind in AgentKind)


def parse_agent_kind(value: str | AgentKind) -> AgentKind:
    """Normalize user-facing agent name into `AgentKind`."""

    if isinstance(value, AgentKind):
        return value
    normalized = value.strip().lower()
    try:
        return AgentKind(normalized)
    except ValueError as error:
        raise ValueError(
            f"Unsupported agent: {value!r}. Must be one of: {', '.join(SUPPORTED_AGENTS)}.",
        ) from error


@dataclass(slots=True, frozen=True)
class AgentRoute:
    """Agent and model resolved for one phase."""

    agent: AgentKind
    model: str | None = None


@dataclass(slots=True)
class IterationOutcome:
    """Result of one implement/review/finalize pass over a single task."""

    task_id: str | None
    phases_run: list[Phase] = field(default_factory=list)
    final_exit_code: int = 0
    aborted: bool = False
    failed_phase: Phase | None = None
    error_kind: ErrorKind | None = None
    stderr: str = ""
    all_tasks_complete: bool = False
    finalized_task_id: str | None = None
    warnings: list[str] = field(default_factory=list)
