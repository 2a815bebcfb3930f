"""Backend interface for agent execution."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from xloop.orchestrator.models import AgentKind


@dataclass(slots=True, frozen=True)
class SpawnRequest:
    """Inputs required to execute one agent invocation."""

    agent: AgentKind
    prompt: str
    working_dir: Path
    model: str | None = None
    timeout_seconds: float | None = None
    silent: bool = False


@dataclass(slots=True)
class SpawnResult:
    """Execution outcome from backend runner."""

    exit_code: int
    stdout: str
    stderr: str
    timed_out: bool = False


class AgentBackend(Protocol):
    """Protocol implemented by backend runners."""

    def run(self, request: SpawnRequest) -> SpawnResult:
        """Run an agent once and return its captured output."""
