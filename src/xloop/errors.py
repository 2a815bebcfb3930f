"""Error taxonomy for agent execution and CLI reporting."""

from __future__ import annotations

from xloop.orchestrator.models import AgentKind, ErrorKind, Phase

_INSTALL_HINTS = {
    AgentKind.CLAUDE: (
        "Please install Claude Code CLI:\n"
        "npm install -g @anthropic-ai/claude-code\n\n"
        "Or visit: https://docs.anthropic.com/en/docs/claude-code"
    ),
    AgentKind.OPENCODE: (
        "Please install OpenCode CLI:\n"
        "npm install -g opencode-ai\n\n"
        "Or visit: https://opencode.ai/docs"
    ),
}


class XloopError(RuntimeError):
    """Base error rendered to the user with optional guidance text."""

    cli_exit_code: int = 1

    def __init__(self, message: str, *, details: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class AgentError(XloopError):
    """Agent execution error carrying its failure kind."""

    def __init__(self, message: str, *, kind: ErrorKind, details: str | None = None) -> None:
        super().__init__(message, details=details)
        self.kind = kind

    @property
    def transient(self) -> bool:
        return self.kind in {ErrorKind.NETWORK, ErrorKind.TIMEOUT}


class SpawnFailure(AgentError):
    """The operating system could not start the agent process."""

    def __init__(self, agent: AgentKind, underlying_error: BaseException) -> None:
        super().__init__(
            f"Failed to start {agent.value}: {underlying_error}",
            kind=ErrorKind.AGENT_NOT_FOUND,
            details=(
                f"Could not spawn the {agent.value} agent process.\n\n"
                f"{_INSTALL_HINTS[agent]}"
            ),
        )
        self.agent = agent
        self.underlying_error = underlying_error


class AgentNotAvailableError(AgentError):
    """Agent executable is not on PATH."""

    def __init__(self, agent: AgentKind) -> None:
        super().__init__(
            f"{agent.value} command not found",
            kind=ErrorKind.AGENT_NOT_FOUND,
            details=_INSTALL_HINTS[agent],
        )
        self.agent = agent


class AgentCommandError(AgentError):
    """Agent exited with a non-zero code."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        agent: AgentKind,
        exit_code: int,
        stderr: str,
        kind: ErrorKind,
        model: str | None = None,
        retry_after_seconds: int | None = None,
    ) -> None:
        super().__init__(
            f"Agent exited with code {exit_code}: {stderr.strip()}",
            kind=kind,
            details=_command_error_details(
                agent=agent,
                exit_code=exit_code,
                stderr=stderr,
                kind=kind,
                model=model,
                retry_after_seconds=retry_after_seconds,
            ),
        )
        self.agent = agent
        self.exit_code = exit_code
        self.stderr = stderr
        self.retry_after_seconds = retry_after_seconds


class AgentInterrupted(AgentError):
    """Agent run was cancelled by SIGINT/SIGTERM."""

    cli_exit_code = 130

    def __init__(self, agent: AgentKind, signal_name: str) -> None:
        super().__init__(
            f"{agent.value} agent interrupted by {signal_name}",
            kind=ErrorKind.UNCLASSIFIED,
        )
        self.agent = agent
        self.signal_name = signal_name


class RetriesExhaustedError(XloopError):
    """Retryable failure persisted through every attempt."""

    def __init__(self, last_error: BaseException, *, attempts: int) -> None:
        if getattr(last_error, "kind", None) is ErrorKind.TIMEOUT:
            message = f"Agent timed out after {attempts} attempts"
            hint = "Try again later or raise XLOOP_TIMEOUT_SECONDS."
        else:
            message = f"Network request failed after {attempts} attempts"
            hint = "Please check your internet connection and try again."
        super().__init__(message, details=f"Error: {last_error}\n\n{hint}")
        self.last_error = last_error
        self.attempts = attempts


class PhaseFailedError(XloopError):
    """An iteration aborted in one of its phases."""

    def __init__(self, *, phase: Phase, exit_code: int, stderr: str) -> None:
        if phase is Phase.FINALIZE:
            guidance = (
                "The task may not have been properly committed or marked as completed.\n"
                "Review the git status and task file manually before continuing."
            )
        else:
            guidance = (
                "The task has NOT been marked as completed.\n"
                "When you run xloop again, it will retry the same task."
            )
        error_output = stderr.strip() or "(no error output)"
        super().__init__(
            f"{phase.label} phase failed with exit code {exit_code}",
            details=f"{guidance}\n\nError output:\n{error_output}",
        )
        self.phase = phase
        self.exit_code = exit_code
        self.stderr = stderr


def format_error(message: str, details: str | None = None) -> str:
    """Render an error the way the CLI prints it."""

    output = f"✗ {message}"
    if details:
        output += f"\n\n{details}"
    return output


def _command_error_details(  # noqa: PLR0913
    *,
    agent: AgentKind,
    exit_code: int,
    stderr: str,
    kind: ErrorKind,
    model: str | None,
    retry_after_seconds: int | None,
) -> str:
    if kind is ErrorKind.RATE_LIMIT:
        retry_hint = (
            f"Please retry after {retry_after_seconds} seconds."
            if retry_after_seconds
            else "Please wait a few minutes before retrying."
        )
        return f"The {agent.value} agent has exceeded its rate limit.\n\n{retry_hint}"
    if kind is ErrorKind.MODEL_UNAVAILABLE:
        return (
            f'The model "{model or "(default)"}" is not available for agent "{agent.value}".\n\n'
            f"Check the model name and that your {agent.value} CLI is up to date."
        )
    if kind is ErrorKind.AGENT_NOT_FOUND:
        return _INSTALL_HINTS[agent]
    return (
        f"The {agent.value} agent exited with code {exit_code}.\n\n"
        f"Error output:\n{stderr.strip() or '(no error output)'}"
    )
