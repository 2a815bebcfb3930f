"""Single-shot text completion through an agent CLI.

Document generators want one prompt in and one text out. `AgentClient` provides that
shape on top of the subprocess backend and retries transient failures with backoff.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from xloop.errors import AgentCommandError
from xloop.orchestrator.backend.base import AgentBackend, SpawnRequest, SpawnResult
from xloop.orchestrator.backend.cli_backend import CliAgentBackend
from xloop.orchestrator.failure_classifier import classify_agent_failure
from xloop.orchestrator.models import AgentKind
from xloop.orchestrator.retry import BackoffPolicy, is_transient_error, retry_with_backoff

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class AgentMessage:
    role: Literal["user", "assistant"]
    content: str


@dataclass(slots=True, frozen=True)
class AgentRequest:
    """One completion request."""

    prompt: str
    system: str | None = None
    model: str | None = None
    history: tuple[AgentMessage, ...] = ()


@dataclass(slots=True, frozen=True)
class AgentResponse:
    text: str


class AgentClient:
    """Request/response wrapper around one agent CLI."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        agent: AgentKind,
        model: str | None = None,
        working_dir: Path | None = None,
        backend: AgentBackend | None = None,
        timeout_seconds: float | None = None,
        policy: BackoffPolicy | None = None,
        stream_output: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.agent = agent
        self.model = model
        self.working_dir = working_dir
        self.backend = backend or CliAgentBackend()
        self.timeout_seconds = timeout_seconds
        self.policy = policy or BackoffPolicy()
        self.stream_output = stream_output
        self._sleep = sleep

    def complete(self, request: AgentRequest) -> AgentResponse:
        """Run the agent once per attempt and return its trimmed stdout."""

        spawn_request = SpawnRequest(
            agent=self.agent,
            prompt=build_prompt(request),
            working_dir=self.working_dir or Path.cwd(),
            model=request.model or self.model,
            timeout_seconds=self.timeout_seconds,
            silent=not self.stream_output,
        )

        def _attempt() -> SpawnResult:
            result = self.backend.run(spawn_request)
            if result.exit_code != 0:
                classification = classify_agent_failure(
                    stderr=result.stderr,
                    exit_code=result.exit_code,
                    timed_out=result.timed_out,
                )
                logger.debug(
                    "Agent call failed: exit_code=%d kind=%s",
                    result.exit_code,
                    classification.kind.value,
                )
                raise AgentCommandError(
                    agent=self.agent,
                    exit_code=result.exit_code,
                    stderr=result.stderr,
                    kind=classification.kind,
                    model=spawn_request.model,
                    retry_after_seconds=classification.retry_after_seconds,
                )
            return result

        result = retry_with_backoff(
            _attempt,
            policy=self.policy,
            should_retry=is_transient_error,
            sleep=self._sleep,
        )
        return AgentResponse(text=result.stdout.strip())

    def ask(self, prompt: str, *, system: str | None = None) -> str:
        return self.complete(AgentRequest(prompt=prompt, system=system)).text


def build_prompt(request: AgentRequest) -> str:
    """Flatten system text, prior turns and the prompt into one agent prompt."""

    parts: list[str] = []
    if request.system:
        parts.extend(["# System", request.system, ""])
    for message in request.history:
        if message.role == "user":
            parts.append(message.content)
        else:
            parts.append(f"Previous response: {message.content}")
    parts.append(request.prompt)
    return "\n".join(parts)
