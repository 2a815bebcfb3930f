"""Subprocess-based backend runner for CLI agents."""

from __future__ import annotations

import codecs
import logging
import os
import shutil
import signal
import subprocess
import sys
import threading
import time
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from typing import IO

from xloop.errors import AgentInterrupted, SpawnFailure
from xloop.orchestrator.backend.base import SpawnRequest, SpawnResult
from xloop.orchestrator.models import AgentKind

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
TIMEOUT_STDERR_NOTE = "Process timed out"

DEFAULT_AGENT_COMMANDS: dict[AgentKind, tuple[str, ...]] = {
    AgentKind.OPENCODE: ("opencode",),
    AgentKind.CLAUDE: ("claude",),
}

_FORWARDED_SIGNALS = (signal.SIGINT, signal.SIGTERM)
_POLL_INTERVAL_SECONDS = 0.1
_READ_CHUNK_BYTES = 4096
_DRAIN_TIMEOUT_SECONDS = 5.0


class CliAgentBackend:
    """Run one agent CLI invocation, streaming its output while capturing it."""

    def __init__(
        self,
        *,
        agent_commands: Mapping[AgentKind, Sequence[str]] | None = None,
        terminate_grace_seconds: float = 2.0,
        stdout: IO[str] | None = None,
        stderr: IO[str] | None = None,
    ) -> None:
        self.agent_commands = {
            **DEFAULT_AGENT_COMMANDS,
            **{kind: tuple(command) for kind, command in (agent_commands or {}).items()},
        }
        self.terminate_grace_seconds = terminate_grace_seconds
        self._stdout = stdout
        self._stderr = stderr

    def run(self, request: SpawnRequest) -> SpawnResult:
        argv = build_agent_args(
            agent=request.agent,
            prompt=request.prompt,
            model=request.model,
            command=self.agent_commands[request.agent],
        )
        logger.debug(
            "Spawning %s agent%s in %s",
            request.agent.value,
            f" with model {request.model}" if request.model else "",
            request.working_dir,
        )
        logger.debug("Command: %s", describe_command(argv, prompt=request.prompt))

        try:
            process = subprocess.Popen(  # noqa: S603
                argv,
                cwd=str(request.working_dir),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as error:
            logger.debug("Spawn error for %s: %s", request.agent.value, error)
            raise SpawnFailure(request.agent, error) from error

        assert process.stdout is not None
        assert process.stderr is not None
        stdout_pump = _StreamPump(process.stdout, sink=_sink(request, self._stdout, sys.stdout))
        stderr_pump = _StreamPump(process.stderr, sink=_sink(request, self._stderr, sys.stderr))
        stdout_pump.start()
        stderr_pump.start()

        with _forward_signals(process) as received_signals:
            timed_out = _wait_for_exit(
                process,
                timeout_seconds=request.timeout_seconds,
                grace_seconds=self.terminate_grace_seconds,
                received_signals=received_signals,
            )

        for pump in (stdout_pump, stderr_pump):
            pump.join(timeout=_DRAIN_TIMEOUT_SECONDS)
            if pump.is_alive():
                logger.warning(
                    "Agent output pipe still open after exit; a child process may hold it.",
                )

        if received_signals:
            raise AgentInterrupted(request.agent, received_signals[0])

        stdout = stdout_pump.text
        stderr = stderr_pump.text
        if timed_out:
            logger.error(
                "%s agent terminated after timeout of %ss",
                request.agent.value,
                request.timeout_seconds,
            )
            return SpawnResult(
                exit_code=TIMEOUT_EXIT_CODE,
                stdout=stdout,
                stderr=f"{stderr}\n{TIMEOUT_STDERR_NOTE}",
                timed_out=True,
            )

        exit_code = _normalize_returncode(process.returncode)
        if exit_code == 0:
            logger.debug("%s agent completed successfully", request.agent.value)
        else:
            logger.debug("%s agent exited with code %d", request.agent.value, exit_code)
        return SpawnResult(exit_code=exit_code, stdout=stdout, stderr=stderr)


def build_agent_args(
    *,
    agent: AgentKind,
    prompt: str,
    model: str | None = None,
    command: Sequence[str] | None = None,
) -> list[str]:
    """Build the argument vector for one agent dialect.

    opencode: ``opencode run [--model anthropic/<model>] <prompt>``
    claude:   ``claude -p <prompt> [--model <model>]``
    """

    argv = list(command or DEFAULT_AGENT_COMMANDS[agent])
    if agent is AgentKind.OPENCODE:
        argv.append("run")
        if model:
            argv.extend(["--model", _opencode_model(model)])
        argv.append(prompt)
        return argv

    argv.extend(["-p", prompt])
    if model:
        argv.extend(["--model", model])
    return argv


def describe_command(argv: Sequence[str], *, prompt: str) -> str:
    """Render argv for logs with the prompt elided."""

    return " ".join('"<prompt>"' if arg == prompt else arg for arg in argv)


def is_agent_available(agent: AgentKind, command: Sequence[str] | None = None) -> bool:
    """Check whether the agent executable resolves on PATH."""

    head = (command or DEFAULT_AGENT_COMMANDS[agent])[0]
    return shutil.which(head) is not None


def _sink(
    request: SpawnRequest,
    override: IO[str] | None,
    default: IO[str],
) -> IO[str] | None:
    if request.silent:
        return None
    return override if override is not None else default


def _opencode_model(model: str) -> str:
    if "/" in model:
        return model
    return f"anthropic/{model}"


def _normalize_returncode(returncode: int | None) -> int:
    # Negative return codes mean the child was killed by a signal.
    if returncode is None or returncode < 0:
        return 1
    return returncode


class _StreamPump(threading.Thread):
    """Drain one pipe, echoing decoded text to a sink as it arrives."""

    def __init__(self, stream: IO[bytes], *, sink: IO[str] | None) -> None:
        super().__init__(daemon=True)
        self._stream = stream
        self._sink = sink
        self._chunks: list[str] = []
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def run(self) -> None:
        try:
            while chunk := self._stream.read1(_READ_CHUNK_BYTES):  # type: ignore[attr-defined]
                self._emit(self._decoder.decode(chunk))
            self._emit(self._decoder.decode(b"", final=True))
        finally:
            self._stream.close()

    @property
    def text(self) -> str:
        return "".join(self._chunks)

    def _emit(self, text: str) -> None:
        if not text:
            return
        self._chunks.append(text)
        if self._sink is not None:
            self._sink.write(text)
            self._sink.flush()


def _wait_for_exit(
    process: subprocess.Popen[bytes],
    *,
    timeout_seconds: float | None,
    grace_seconds: float,
    received_signals: list[str],
) -> bool:
    """Poll until the child exits; return True when it was killed for timing out."""

    deadline = (
        time.monotonic() + timeout_seconds
        if timeout_seconds is not None and timeout_seconds > 0
        else None
    )
    kill_deadline: float | None = None

    while True:
        if process.poll() is not None:
            return False

        now = time.monotonic()
        if received_signals:
            if kill_deadline is None:
                kill_deadline = now + grace_seconds
            elif now >= kill_deadline:
                _signal_process_group(process, signal.SIGKILL)
        elif deadline is not None and now >= deadline:
            _terminate_process_group(process, grace_seconds=grace_seconds)
            return True

        time.sleep(_POLL_INTERVAL_SECONDS)


def _terminate_process_group(process: subprocess.Popen[bytes], *, grace_seconds: float) -> None:
    _signal_process_group(process, signal.SIGTERM)
    try:
        process.wait(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        _signal_process_group(process, signal.SIGKILL)
        process.wait(timeout=grace_seconds)


def _signal_process_group(process: subprocess.Popen[bytes], signum: int) -> None:
    try:
        os.killpg(process.pid, signum)
    except ProcessLookupError:
        return
    except (AttributeError, PermissionError):
        try:
            process.send_signal(signum)
        except OSError:
            return


@contextmanager
def _forward_signals(process: subprocess.Popen[bytes]) -> Iterator[list[str]]:
    """Forward SIGINT/SIGTERM to the child's process group while the block runs."""

    received: list[str] = []
    if threading.current_thread() is not threading.main_thread():
        # Signal handlers can only be installed in main thread.
        yield received
        return

    def _handler(signum: int, _: object | None) -> None:
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        if not received:
            logger.warning("Received %s, terminating agent process group %d", name, process.pid)
        received.append(name)
        _signal_process_group(process, signum)

    originals = {signum: signal.getsignal(signum) for signum in _FORWARDED_SIGNALS}
    try:
        for signum in _FORWARDED_SIGNALS:
            signal.signal(signum, _handler)
        yield received
    finally:
        for signum, original in originals.items():
            signal.signal(signum, original if original is not None else signal.SIG_DFL)
