"""Three-phase iteration: implement, optional review, finalize.

One `PhaseOrchestrator.run_iteration()` call drives exactly one task through the
phases in order, each phase being one agent subprocess:

- Implement picks and implements a task and reports ``TASK_COMPLETED: <id>``.
- Review inspects the change without touching files; its stdout becomes feedback.
- Finalize applies feedback, updates the tracking files, commits, and reports
  ``FINALIZED: <id>``.

A non-zero exit in any phase aborts the iteration and no later phase runs, so a
failed review never reaches finalize and the task stays pending for the next run.
Phase spawns run exactly once; only `xloop.agent_client` retries transient errors.

The orchestrator never reads or writes task files itself. Marker absence is a
warning, never a failure.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

from xloop.orchestrator.backend.base import AgentBackend, SpawnRequest, SpawnResult
from xloop.orchestrator.failure_classifier import classify_agent_failure
from xloop.orchestrator.markers import (
    FINALIZED_MARKER,
    TASK_COMPLETED_MARKER,
    extract_task_id,
    has_all_complete_marker,
)
from xloop.orchestrator.models import AgentRoute, IterationOutcome, Phase
from xloop.orchestrator.retry import BackoffPolicy, never_retry, retry_with_backoff

logger = logging.getLogger(__name__)

_SINGLE_ATTEMPT = BackoffPolicy(max_attempts=1)


class ContextProvider(Protocol):
    """Supplies ready-made prompt text for each phase."""

    def prompt_for(
        self,
        phase: Phase,
        *,
        task_id: str | None = None,
        review_feedback: str | None = None,
    ) -> str:
        """Return the prompt for ``phase``."""


class RouteResolver(Protocol):
    """Supplies the agent and model for each phase."""

    def resolve(self, phase: Phase) -> AgentRoute:
        """Return the route for ``phase``."""


class PhaseOrchestrator:
    """Runs one implement -> review -> finalize iteration per call."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        backend: AgentBackend,
        context: ContextProvider,
        routing: RouteResolver,
        working_dir: Path,
        timeout_seconds: float | None = None,
        skip_review: bool = False,
        silent: bool = False,
    ) -> None:
        self.backend = backend
        self.context = context
        self.routing = routing
        self.working_dir = working_dir
        self.timeout_seconds = timeout_seconds
        self.skip_review = skip_review
        self.silent = silent

    def run_iteration(self) -> IterationOutcome:
        outcome = IterationOutcome(task_id=None)

        implement = self._run_phase(
            Phase.IMPLEMENT,
            outcome,
            prompt=self.context.prompt_for(Phase.IMPLEMENT),
        )
        if implement is None:
            return outcome

        if has_all_complete_marker(implement.stdout):
            logger.info("All tasks completed!")
            outcome.all_tasks_complete = True
            return outcome

        task_id = extract_task_id(implement.stdout, TASK_COMPLETED_MARKER)
        outcome.task_id = task_id
        if task_id is not None:
            logger.info("Task %s implementation complete", task_id)
        else:
            _warn(outcome, f"No {TASK_COMPLETED_MARKER} marker found in implement output")

        review_feedback: str | None = None
        if self.skip_review:
            logger.info("Phase %s skipped", Phase.REVIEW.label)
        else:
            review = self._run_phase(
                Phase.REVIEW,
                outcome,
                prompt=self.context.prompt_for(Phase.REVIEW, task_id=task_id),
            )
            if review is None:
                return outcome
            review_feedback = review.stdout

        finalize = self._run_phase(
            Phase.FINALIZE,
            outcome,
            prompt=self.context.prompt_for(
                Phase.FINALIZE,
                task_id=task_id,
                review_feedback=review_feedback,
            ),
        )
        if finalize is None:
            return outcome

        finalized_id = extract_task_id(finalize.stdout, FINALIZED_MARKER)
        outcome.finalized_task_id = finalized_id
        if finalized_id is None:
            _warn(outcome, f"No {FINALIZED_MARKER} marker found in finalize output")
        elif task_id is not None and finalized_id.lower() != task_id.lower():
            _warn(
                outcome,
                f"Finalized task {finalized_id} differs from implemented task {task_id}",
            )
        else:
            logger.info("Task %s finalized", finalized_id)
        return outcome

    def _run_phase(
        self,
        phase: Phase,
        outcome: IterationOutcome,
        *,
        prompt: str,
    ) -> SpawnResult | None:
        """Spawn one phase; return its result on success, None when the iteration aborts."""

        route = self.routing.resolve(phase)
        logger.info(
            "Phase %s: agent=%s model=%s",
            phase.label,
            route.agent.value,
            route.model or "(agent default)",
        )
        request = SpawnRequest(
            agent=route.agent,
            prompt=prompt,
            working_dir=self.working_dir,
            model=route.model,
            timeout_seconds=self.timeout_seconds,
            silent=self.silent,
        )

        outcome.phases_run.append(phase)
        result = retry_with_backoff(
            lambda: self.backend.run(request),
            policy=_SINGLE_ATTEMPT,
            should_retry=never_retry,
        )
        outcome.final_exit_code = result.exit_code
        if result.exit_code == 0:
            return result

        classification = classify_agent_failure(
            stderr=result.stderr,
            exit_code=result.exit_code,
            timed_out=result.timed_out,
        )
        outcome.aborted = True
        outcome.failed_phase = phase
        outcome.error_kind = classification.kind
        outcome.stderr = result.stderr
        logger.error(
            "%s phase failed: exit_code=%d kind=%s",
            phase.label,
            result.exit_code,
            classification.kind.value,
        )
        return None


def _warn(outcome: IterationOutcome, message: str) -> None:
    logger.warning(message)
    outcome.warnings.append(message)
