"""CLI entrypoint for xloop."""

from pathlib import Path

import rich_click as click

from xloop import __version__
from xloop.errors import XloopError, format_error
from xloop.logging_setup import configure_logging
from xloop.orchestrator.controllers import (
    AgentsCommand,
    AskCommand,
    DoCommand,
    OrchestratorCliController,
)
from xloop.orchestrator.models import SUPPORTED_AGENTS, AgentKind, parse_agent_kind

click.rich_click.USE_MARKDOWN = True
ORCHESTRATOR_CONTROLLER = OrchestratorCliController()


@click.group()
@click.version_option(version=__version__, prog_name="xloop")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
@click.option(
    "--agent",
    type=click.Choice(SUPPORTED_AGENTS, case_sensitive=False),
    default=None,
    help="Agent for every phase; overrides XLOOP_AGENT and the config file.",
)
@click.pass_context
def xloop(ctx: click.Context, verbose: bool, agent: str | None) -> None:
    """Run coding agents through implement, review and finalize phases."""

    configure_logging(verbose=verbose)
    ctx.obj = {"agent": parse_agent_kind(agent) if agent else None}


@xloop.command("do")
@click.argument("tasks_file", type=click.Path(path_type=Path))
@click.option(
    "--iterations",
    "-i",
    type=int,
    default=1,
    show_default=True,
    help="Number of tasks to work through, one per iteration.",
)
@click.option(
    "--skip",
    "skipped",
    multiple=True,
    type=click.Choice(["review"], case_sensitive=False),
    help="Skip a phase. Only `review` can be skipped.",
)
@click.option(
    "--timeout-seconds",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Kill an agent phase that runs longer than this.",
)
@click.pass_context
def do_tasks(
    ctx: click.Context,
    tasks_file: Path,
    iterations: int,
    skipped: tuple[str, ...],
    timeout_seconds: float | None,
) -> None:
    """Run implement/review/finalize iterations over TASKS_FILE (`tasks-<feature>.yml`)."""

    command = DoCommand(
        tasks_file=tasks_file,
        iterations=iterations,
        agent=_agent_override(ctx),
        skip_review="review" in {phase.lower() for phase in skipped},
        timeout_seconds=timeout_seconds,
    )
    _emit_lines(_guarded(ORCHESTRATOR_CONTROLLER.run_tasks, command))


@xloop.command("agents")
@click.pass_context
def agents(ctx: click.Context) -> None:
    """Check which agent CLIs are installed and how each phase is routed."""

    result = _guarded(
        ORCHESTRATOR_CONTROLLER.check_agents,
        AgentsCommand(agent=_agent_override(ctx)),
    )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Agent check failed.")


@xloop.command("ask")
@click.argument("prompt")
@click.option("--system", default=None, help="System instructions prepended to the prompt.")
@click.option("--model", default=None, help="Model id override.")
@click.pass_context
def ask(ctx: click.Context, prompt: str, system: str | None, model: str | None) -> None:
    """Send one prompt to the agent and print its reply, retrying transient failures."""

    _emit_lines(
        _guarded(
            ORCHESTRATOR_CONTROLLER.ask,
            AskCommand(prompt=prompt, system=system, model=model, agent=_agent_override(ctx)),
        ),
    )


def _agent_override(ctx: click.Context) -> AgentKind | None:
    return (ctx.obj or {}).get("agent")


def _guarded(handler, command):  # noqa: ANN001, ANN202
    """Run a controller call, printing domain errors with their guidance."""

    try:
        return handler(command)
    except XloopError as error:
        click.echo(format_error(error.message, error.details), err=True)
        click.get_current_context().exit(error.cli_exit_code)
    except ValueError as error:
        click.echo(format_error(str(error)), err=True)
        click.get_current_context().exit(1)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    xloop()
