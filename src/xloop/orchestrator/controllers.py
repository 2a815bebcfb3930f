"""Controllers for xloop CLI commands."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from xloop.agent_client import AgentClient, AgentRequest
from xloop.config import Settings
from xloop.orchestrator.backend import CliAgentBackend
from xloop.orchestrator.backend.cli_backend import (
    DEFAULT_AGENT_COMMANDS,
    is_agent_available,
)
from xloop.orchestrator.models import AgentKind, Phase
from xloop.orchestrator.routing import PhaseRouting
from xloop.orchestrator.runner import RunOptions, RunSummary, execute_tasks


@dataclass(slots=True)
class DoCommand:
    """CLI input for running task iterations."""

    tasks_file: Path
    iterations: int
    agent: AgentKind | None = None
    skip_review: bool = False
    timeout_seconds: float | None = None


@dataclass(slots=True)
class AgentsCommand:
    """CLI input for the agent availability check."""

    agent: AgentKind | None = None


@dataclass(slots=True)
class AskCommand:
    """CLI input for a one-off completion."""

    prompt: str
    system: str | None = None
    model: str | None = None
    agent: AgentKind | None = None


@dataclass(slots=True)
class AgentsCheckResult:
    """Availability report to render in CLI."""

    lines: list[str]
    success: bool


class OrchestratorCliController:
    """Coordinates run, availability and ask CLI operations."""

    def __init__(self, *, cwd: Path | None = None) -> None:
        self.cwd = cwd

    def run_tasks(self, command: DoCommand) -> list[str]:
        settings = Settings.from_env(self.cwd)
        summary = execute_tasks(
            RunOptions(
                tasks_file=command.tasks_file,
                iterations=command.iterations,
                agent=command.agent,
                skip_review=command.skip_review,
                timeout_seconds=command.timeout_seconds,
            ),
            settings=settings,
        )
        return _summary_lines(summary, requested=command.iterations)

    def check_agents(self, command: AgentsCommand) -> AgentsCheckResult:
        settings = Settings.from_env(self.cwd)
        routing = PhaseRouting.from_settings(settings, agent_override=command.agent)
        lines = [
            "Agent check:",
            f"default_agent={settings.default_agent.value}",
            f"config={settings.config_path}",
        ]
        for agent in AgentKind:
            override = settings.agent_commands.get(agent)
            executable = " ".join(override or DEFAULT_AGENT_COMMANDS[agent])
            available = is_agent_available(agent, override)
            lines.append(
                f"  agent={agent.value} available={'yes' if available else 'no'} "
                f"command={executable} model={settings.models.get(agent) or '(agent default)'}",
            )

        success = True
        for phase in Phase:
            route = routing.resolve(phase)
            available = is_agent_available(route.agent, settings.agent_commands.get(route.agent))
            lines.append(
                f"  phase={phase.value} agent={route.agent.value} "
                f"model={route.model or '(agent default)'}",
            )
            if not available:
                success = False

        lines.append(f"Agent status: {'ready' if success else 'missing'}")
        if not success:
            lines.append(
                "Hint: install the agent CLI or point XLOOP_{OPENCODE|CLAUDE}_BIN at it.",
            )
        return AgentsCheckResult(lines=lines, success=success)

    def ask(self, command: AskCommand) -> list[str]:
        settings = Settings.from_env(self.cwd)
        agent = command.agent or settings.default_agent
        client = AgentClient(
            agent=agent,
            model=command.model or settings.models.get(agent),
            working_dir=settings.project_root,
            backend=CliAgentBackend(agent_commands=settings.agent_commands),
            timeout_seconds=settings.timeout_seconds,
            policy=settings.retry.to_policy(),
        )
        response = client.complete(AgentRequest(prompt=command.prompt, system=command.system))
        return [response.text]


def _summary_lines(summary: RunSummary, *, requested: int) -> list[str]:
    if summary.all_tasks_complete:
        return [
            "All tasks completed!",
            f"Iterations run: {summary.iterations_run}/{requested}",
        ]
    lines = [f"Iterations run: {summary.iterations_run}/{requested}"]
    if summary.finalized_task_ids:
        lines.append(f"Tasks finalized: {', '.join(summary.finalized_task_ids)}")
    for index, outcome in enumerate(summary.outcomes, start=1):
        lines.extend(f"  iteration {index}: warning: {warning}" for warning in outcome.warnings)
    return lines
