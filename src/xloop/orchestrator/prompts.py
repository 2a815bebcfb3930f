"""Phase prompts that reference plan files by path instead of embedding them."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from xloop.orchestrator.markers import (
    ALL_COMPLETE_MARKER,
    FINALIZED_MARKER,
    TASK_COMPLETED_MARKER,
)
from xloop.orchestrator.models import Phase


@dataclass(slots=True)
class PlanContextProvider:
    """Build phase prompts for one feature's task list.

    Context files are referenced with ``@<path>`` so the agent reads them itself.
    Missing files are left out of the prompt.
    """

    feature_name: str
    plans_dir: Path
    project_root: Path
    feedback_command: str = "bun test"
    lint_command: str | None = None
    commit_prefix: str = "xloop"

    @property
    def tasks_path(self) -> Path:
        return self.plans_dir / f"tasks-{self.feature_name}.yml"

    @property
    def progress_path(self) -> Path:
        return self.plans_dir / f"progress-{self.feature_name}.txt"

    @property
    def knowledge_path(self) -> Path:
        return self.project_root / "AGENTS.md"

    def context_files(self) -> list[Path]:
        return [
            path
            for path in (self.tasks_path, self.progress_path, self.knowledge_path)
            if path.exists()
        ]

    def prompt_for(
        self,
        phase: Phase,
        *,
        task_id: str | None = None,
        review_feedback: str | None = None,
    ) -> str:
        parts = [f"# XLOOP: {phase.name} PHASE", ""]
        refs = self.context_files()
        if refs:
            parts.extend(["# CONTEXT FILES", "", " ".join(f"@{path}" for path in refs), ""])

        if phase is Phase.IMPLEMENT:
            parts.append(self._implement_instructions())
        elif phase is Phase.REVIEW:
            parts.append(_review_instructions(task_id))
        else:
            parts.append(self._finalize_instructions(task_id, review_feedback))
        return "\n".join(parts)

    def _feedback_steps(self, indent: str = "") -> str:
        steps = [f"{indent}- Run: {self.feedback_command}"]
        if self.lint_command:
            steps.append(f"{indent}- Run: {self.lint_command}")
        return "\n".join(steps)

    def _implement_instructions(self) -> str:
        return (
            "# TASK SELECTION\n\n"
            "Pick the next single pending task whose dependencies are all completed. "
            "Prefer dependencies and core abstractions over polish.\n\n"
            f"If no task has `status: pending`, output `{ALL_COMPLETE_MARKER}` and stop.\n\n"
            "# EXECUTION\n\n"
            "Explore the repository, then complete that one task. If it turns out larger "
            "than expected, do only a smaller self-contained chunk of it.\n\n"
            "# FEEDBACK LOOPS\n\n"
            f"{self._feedback_steps()}\n\n"
            "# OUTPUT\n\n"
            "At the end, output on a single line:\n"
            f"{TASK_COMPLETED_MARKER}: <task-id>"
        )

    def _finalize_instructions(self, task_id: str | None, review_feedback: str | None) -> str:
        feedback = (
            review_feedback.strip()
            if review_feedback and review_feedback.strip()
            else "No review feedback provided (review was skipped or approved)."
        )
        target = f"task {task_id}" if task_id else "the task just implemented"
        return (
            "# FINALIZE OBJECTIVE\n\n"
            f"Finalize {target}: apply review feedback and update the tracking files.\n\n"
            "# REVIEW FEEDBACK\n\n"
            f"{feedback}\n\n"
            "# ACTIONS\n\n"
            "1. Address critical and high priority feedback.\n"
            "2. Run the feedback loops:\n"
            f"{self._feedback_steps(indent='   ')}\n"
            "3. In the task file set `status: completed` and `completed_at: <ISO-8601>`, "
            "unless feedback is still unresolved.\n"
            f"4. Append a summary entry to {self.progress_path.name}.\n"
            "5. Add genuinely useful learnings to AGENTS.md.\n"
            "6. Commit all changes with message "
            f"`{self.commit_prefix}-<task-id>: <description>`. Do not push.\n\n"
            "# OUTPUT\n\n"
            "At the end, output on a single line:\n"
            f"{FINALIZED_MARKER}: <task-id>"
        )


def _review_instructions(task_id: str | None) -> str:
    target = f" for task {task_id}" if task_id else ""
    return (
        "# REVIEW OBJECTIVE\n\n"
        f"Review the changes just made{target}. Do not modify any files.\n\n"
        "Check correctness, tests, security, performance, code quality and edge cases. "
        "Use `git diff HEAD`, `git diff --staged` or `git log -1 -p` to see the changes.\n\n"
        "# OUTPUT\n\n"
        'Give specific, actionable feedback as Issue / Suggestion / Priority entries, '
        'or say "LGTM" if nothing needs to change.'
    )
