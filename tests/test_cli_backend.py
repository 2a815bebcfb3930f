from __future__ import annotations

import json
import os
import signal
import sys
import threading
import time
from io import StringIO
from pathlib import Path

import allure
import pytest

from xloop.errors import AgentInterrupted, SpawnFailure
from xloop.orchestrator.backend import CliAgentBackend, SpawnRequest, build_agent_args
from xloop.orchestrator.backend.cli_backend import (
    TIMEOUT_EXIT_CODE,
    TIMEOUT_STDERR_NOTE,
    describe_command,
    is_agent_available,
)
from xloop.orchestrator.models import AgentKind, ErrorKind

pytestmark = [
    allure.epic("Agent Runtime"),
    allure.feature("Process Spawning"),
]

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="process groups are POSIX-only")


def _request(tmp_path: Path, prompt: object, **overrides) -> SpawnRequest:
    text = prompt if isinstance(prompt, str) else json.dumps(prompt)
    return SpawnRequest(
        agent=overrides.pop("agent", AgentKind.CLAUDE),
        prompt=text,
        working_dir=tmp_path,
        **overrides,
    )


def _process_gone(pid: int) -> bool:
    """True once ``pid`` has exited; an unreaped zombie counts as gone."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return True
    try:
        stat = Path(f"/proc/{pid}/stat").read_text("utf-8")
    except FileNotFoundError:
        return False
    return stat.rsplit(")", 1)[1].split()[0] in {"Z", "X"}


def _wait_until(predicate, *, timeout: float = 10.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


def test_build_agent_args_for_claude_dialect() -> None:
    assert build_agent_args(agent=AgentKind.CLAUDE, prompt="do it", model="m-1") == [
        "claude",
        "-p",
        "do it",
        "--model",
        "m-1",
    ]
    assert build_agent_args(agent=AgentKind.CLAUDE, prompt="do it") == ["claude", "-p", "do it"]


def test_build_agent_args_for_opencode_dialect_prefixes_provider() -> None:
    assert build_agent_args(agent=AgentKind.OPENCODE, prompt="do it", model="m-1") == [
        "opencode",
        "run",
        "--model",
        "anthropic/m-1",
        "do it",
    ]
    assert build_agent_args(
        agent=AgentKind.OPENCODE,
        prompt="do it",
        model="openai/gpt-5",
    ) == ["opencode", "run", "--model", "openai/gpt-5", "do it"]
    assert build_agent_args(agent=AgentKind.OPENCODE, prompt="do it") == [
        "opencode",
        "run",
        "do it",
    ]


def test_build_agent_args_uses_command_override_prefix() -> None:
    argv = build_agent_args(
        agent=AgentKind.CLAUDE,
        prompt="x",
        command=("node", "/opt/claude/cli.js"),
    )
    assert argv == ["node", "/opt/claude/cli.js", "-p", "x"]


def test_describe_command_elides_prompt() -> None:
    argv = build_agent_args(agent=AgentKind.CLAUDE, prompt="secret plan", model="m")
    assert describe_command(argv, prompt="secret plan") == 'claude -p "<prompt>" --model m'


def test_is_agent_available_checks_command_head(tmp_path: Path) -> None:
    assert is_agent_available(AgentKind.CLAUDE, (sys.executable, "-m", "anything"))
    assert not is_agent_available(AgentKind.CLAUDE, (str(tmp_path / "missing-claude"),))


def test_run_captures_stdout_and_zero_exit(tmp_path: Path, echo_backend: CliAgentBackend) -> None:
    result = echo_backend.run(_request(tmp_path, {"stdout": "TASK_COMPLETED: t-1\n"}, silent=True))

    assert result.exit_code == 0
    assert result.stdout == "TASK_COMPLETED: t-1\n"
    assert result.stderr == ""
    assert result.timed_out is False


def test_run_passes_shell_metacharacters_literally(
    tmp_path: Path,
    echo_backend: CliAgentBackend,
) -> None:
    prompt = "fix `ls`; rm -rf $HOME && echo \"$(whoami)\" | tee out > /dev/null"
    for agent in AgentKind:
        result = echo_backend.run(_request(tmp_path, prompt, agent=agent, silent=True))
        assert result.exit_code == 0
        assert result.stdout == prompt
    assert not (tmp_path / "out").exists()


def test_run_returns_child_exit_code_and_stderr(
    tmp_path: Path,
    echo_backend: CliAgentBackend,
) -> None:
    result = echo_backend.run(
        _request(tmp_path, {"stderr": "model not found", "exit_code": 3}, silent=True),
    )

    assert result.exit_code == 3
    assert result.stderr == "model not found"


@posix_only
def test_run_reports_signal_killed_child_as_exit_code_one(
    tmp_path: Path,
    echo_backend: CliAgentBackend,
) -> None:
    result = echo_backend.run(_request(tmp_path, {"kill_self_signal": "SIGKILL"}, silent=True))

    assert result.exit_code == 1
    assert result.timed_out is False


def test_run_kills_child_after_timeout(tmp_path: Path, echo_backend: CliAgentBackend) -> None:
    started = time.monotonic()
    result = echo_backend.run(
        _request(
            tmp_path,
            {"stdout": "partial output", "sleep_seconds": 30},
            timeout_seconds=2.0,
            silent=True,
        ),
    )

    assert time.monotonic() - started < 15
    assert result.exit_code == TIMEOUT_EXIT_CODE
    assert result.timed_out is True
    assert result.stdout == "partial output"
    assert result.stderr.endswith(TIMEOUT_STDERR_NOTE)


def test_run_streams_output_unless_silent(
    tmp_path: Path,
    echo_backend: CliAgentBackend,
    capsys,
) -> None:
    echo_backend.run(_request(tmp_path, {"stdout": "visible", "stderr": "warned"}))
    captured = capsys.readouterr()
    assert "visible" in captured.out
    assert "warned" in captured.err

    echo_backend.run(_request(tmp_path, {"stdout": "hidden"}, silent=True))
    assert "hidden" not in capsys.readouterr().out


def test_run_streams_to_injected_sinks(
    tmp_path: Path,
    echo_agent_command: tuple[str, ...],
) -> None:
    out, err = StringIO(), StringIO()
    backend = CliAgentBackend(
        agent_commands={AgentKind.CLAUDE: echo_agent_command},
        stdout=out,
        stderr=err,
    )
    result = backend.run(_request(tmp_path, {"stdout": "hello", "stderr": "oops"}))

    assert result.stdout == "hello"
    assert out.getvalue() == "hello"
    assert err.getvalue() == "oops"


def test_run_raises_spawn_failure_for_missing_executable(tmp_path: Path) -> None:
    backend = CliAgentBackend(agent_commands={AgentKind.CLAUDE: (str(tmp_path / "no-claude"),)})

    with pytest.raises(SpawnFailure) as error_info:
        backend.run(_request(tmp_path, "hello", silent=True))

    assert error_info.value.kind is ErrorKind.AGENT_NOT_FOUND
    assert error_info.value.agent is AgentKind.CLAUDE
    assert isinstance(error_info.value.underlying_error, OSError)


@posix_only
def test_timeout_kills_whole_process_group(tmp_path: Path, echo_backend: CliAgentBackend) -> None:
    pid_file = tmp_path / "grandchild.pid"
    result = echo_backend.run(
        _request(
            tmp_path,
            {"grandchild_pid_file": str(pid_file), "sleep_seconds": 30},
            timeout_seconds=3.0,
            silent=True,
        ),
    )

    assert result.timed_out is True
    grandchild_pid = int(pid_file.read_text("utf-8"))
    assert _wait_until(lambda: _process_gone(grandchild_pid))


@posix_only
def test_sigterm_is_forwarded_to_process_group(
    tmp_path: Path,
    echo_backend: CliAgentBackend,
) -> None:
    pid_file = tmp_path / "grandchild.pid"
    ready_file = tmp_path / "ready"
    original_handler = signal.getsignal(signal.SIGTERM)

    def _send_sigterm_when_ready() -> None:
        if _wait_until(ready_file.exists):
            os.kill(os.getpid(), signal.SIGTERM)

    sender = threading.Thread(target=_send_sigterm_when_ready, daemon=True)
    sender.start()
    with pytest.raises(AgentInterrupted) as error_info:
        echo_backend.run(
            _request(
                tmp_path,
                {
                    "grandchild_pid_file": str(pid_file),
                    "ready_file": str(ready_file),
                    "sleep_seconds": 30,
                },
                silent=True,
            ),
        )
    sender.join(timeout=5)

    assert error_info.value.signal_name == "SIGTERM"
    assert error_info.value.cli_exit_code == 130
    grandchild_pid = int(pid_file.read_text("utf-8"))
    assert _wait_until(lambda: _process_gone(grandchild_pid))
    assert signal.getsignal(signal.SIGTERM) == original_handler


@posix_only
def test_sigint_interrupts_agent_and_restores_handler(
    tmp_path: Path,
    echo_backend: CliAgentBackend,
) -> None:
    ready_file = tmp_path / "ready"
    original_handler = signal.getsignal(signal.SIGINT)

    def _send_sigint_when_ready() -> None:
        if _wait_until(ready_file.exists):
            os.kill(os.getpid(), signal.SIGINT)

    sender = threading.Thread(target=_send_sigint_when_ready, daemon=True)
    sender.start()
    with pytest.raises(AgentInterrupted) as error_info:
        echo_backend.run(
            _request(
                tmp_path,
                {"ready_file": str(ready_file), "sleep_seconds": 30},
                silent=True,
            ),
        )
    sender.join(timeout=5)

    assert error_info.value.signal_name == "SIGINT"
    assert signal.getsignal(signal.SIGINT) == original_handler


def test_handlers_untouched_after_normal_exit(
    tmp_path: Path,
    echo_backend: CliAgentBackend,
) -> None:
    before = {signum: signal.getsignal(signum) for signum in (signal.SIGINT, signal.SIGTERM)}

    echo_backend.run(_request(tmp_path, "ping", silent=True))

    assert {signum: signal.getsignal(signum) for signum in before} == before
