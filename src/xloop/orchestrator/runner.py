"""Caller loop: run N independent iterations over one task file."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from xloop.config import Settings
from xloop.errors import AgentNotAvailableError, PhaseFailedError, XloopError
from xloop.orchestrator.backend.base import AgentBackend
from xloop.orchestrator.backend.cli_backend import CliAgentBackend, is_agent_available
from xloop.orchestrator.models import AgentKind, IterationOutcome, Phase
from xloop.orchestrator.phases import PhaseOrchestrator
from xloop.orchestrator.prompts import PlanContextProvider
from xloop.orchestrator.routing import PhaseRouting

logger = logging.getLogger(__name__)

_FEATURE_NAME = re.compile(r"^tasks-(.+)\.ya?ml$")


@dataclass(slots=True)
class RunOptions:
    """Inputs for one `xloop do` run."""

    tasks_file: Path
    iterations: int
    agent: AgentKind | None = None
    skip_review: bool = False
    timeout_seconds: float | None = None
    check_agents: bool = True


@dataclass(slots=True)
class RunSummary:
    """What a sequence of iterations achieved."""

    iterations_run: int = 0
    finalized_task_ids: list[str] = field(default_factory=list)
    all_tasks_complete: bool = False
    outcomes: list[IterationOutcome] = field(default_factory=list)


class IterationRunner:
    """Run iterations one at a time, stopping on the first aborted one."""

    def __init__(self, *, orchestrator: PhaseOrchestrator, iterations: int) -> None:
        if iterations < 1:
            raise ValueError("Iterations must be a positive integer")
        self.orchestrator = orchestrator
        self.iterations = iterations

    def run(self) -> RunSummary:
        summary = RunSummary()
        for index in range(1, self.iterations + 1):
            logger.info("ITERATION %d/%d", index, self.iterations)
            outcome = self.orchestrator.run_iteration()
            summary.iterations_run += 1
            summary.outcomes.append(outcome)

            if outcome.aborted:
                raise PhaseFailedError(
                    phase=outcome.failed_phase or Phase.IMPLEMENT,
                    exit_code=outcome.final_exit_code,
                    stderr=outcome.stderr,
                )
            if outcome.all_tasks_complete:
                summary.all_tasks_complete = True
                return summary

            completed = outcome.finalized_task_id or outcome.task_id
            if completed is not None:
                summary.finalized_task_ids.append(completed)
                logger.info("Iteration %d complete - task %s", index, completed)
            else:
                logger.info("Iteration %d complete", index)
        return summary


def extract_feature_name(tasks_file: Path) -> str | None:
    """Feature name from ``tasks-<feature>.yml``."""

    match = _FEATURE_NAME.match(tasks_file.name)
    return match.group(1) if match else None


def execute_tasks(
    options: RunOptions,
    *,
    settings: Settings,
    backend_factory: Callable[[Settings], AgentBackend] | None = None,
) -> RunSummary:
    """Validate inputs, wire collaborators and run the requested iterations."""

    tasks_path = options.tasks_file.resolve()
    if not tasks_path.exists():
        raise XloopError(
            "File not found",
            details=f"Could not find file: {tasks_path}\n\nPlease check the path and try again.",
        )
    if options.iterations < 1:
        raise ValueError("Iterations must be a positive integer")

    routing = PhaseRouting.from_settings(settings, agent_override=options.agent)
    if options.check_agents:
        _ensure_agents_available(settings=settings, routing=routing, skip_review=options.skip_review)

    feature_name = extract_feature_name(tasks_path)
    if feature_name is None:
        raise ValueError(f"Could not extract feature name from tasks file: {options.tasks_file}")

    backend = (
        backend_factory(settings)
        if backend_factory is not None
        else CliAgentBackend(agent_commands=settings.agent_commands)
    )
    context = PlanContextProvider(
        feature_name=feature_name,
        plans_dir=tasks_path.parent,
        project_root=settings.project_root,
        feedback_command=settings.feedback_command,
        lint_command=settings.lint_command,
        commit_prefix=settings.commit_prefix,
    )
    orchestrator = PhaseOrchestrator(
        backend=backend,
        context=context,
        routing=routing,
        working_dir=settings.project_root,
        timeout_seconds=(
            options.timeout_seconds
            if options.timeout_seconds is not None
            else settings.timeout_seconds
        ),
        skip_review=options.skip_review,
    )

    logger.info(
        "Tasks file: %s | feature: %s | iterations: %d%s",
        options.tasks_file,
        feature_name,
        options.iterations,
        " | skipping review" if options.skip_review else "",
    )
    return IterationRunner(orchestrator=orchestrator, iterations=options.iterations).run()


def _ensure_agents_available(
    *,
    settings: Settings,
    routing: PhaseRouting,
    skip_review: bool,
) -> None:
    phases = [phase for phase in Phase if not (skip_review and phase is Phase.REVIEW)]
    for agent in dict.fromkeys(routing.resolve(phase).agent for phase in phases):
        if not is_agent_available(agent, settings.agent_commands.get(agent)):
            raise AgentNotAvailableError(agent)
