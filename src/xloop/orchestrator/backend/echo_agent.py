"""Local stand-in agent for CLI backend integration tests.

Accepts both agent dialects (``run [--model M] PROMPT`` and ``-p PROMPT [--model M]``).
Behaviour comes from a JSON directive: either the prompt itself, or the entry for the
current phase in the file named by ``XLOOP_ECHO_SCRIPT``. Without a directive the
prompt is echoed back. Every invocation is appended to ``XLOOP_ECHO_LOG`` when set.
"""

from __future__ import annotations

import argparse
import json
import os
import re
import signal
import subprocess
import sys
import time
from pathlib import Path
from typing import Any

_PHASE_HEADER = re.compile(r"#\s*XLOOP:\s*(\w+)\s+PHASE", re.IGNORECASE)


def main(argv: list[str] | None = None) -> int:
    """Run one scripted agent invocation."""

    parser = argparse.ArgumentParser(prog="echo-agent")
    parser.add_argument("-p", "--print", dest="print_prompt", default=None)
    parser.add_argument("--model", default=None)
    parser.add_argument("positional", nargs="*")
    args = parser.parse_intermixed_args(argv)

    if args.print_prompt is not None:
        dialect = "claude"
        prompt = args.print_prompt
    elif len(args.positional) >= 2 and args.positional[0] == "run":  # noqa: PLR2004
        dialect = "opencode"
        prompt = args.positional[-1]
    else:
        parser.error("expected 'run <prompt>' or '-p <prompt>'")

    phase = _detect_phase(prompt)
    _record_invocation(dialect=dialect, model=args.model, phase=phase, prompt=prompt)

    directive = _load_directive(prompt=prompt, phase=phase)
    if directive is None:
        sys.stdout.write(prompt)
        sys.stdout.flush()
        return 0
    return _execute(directive)


def _detect_phase(prompt: str) -> str | None:
    match = _PHASE_HEADER.search(prompt)
    return match.group(1).lower() if match else None


def _load_directive(*, prompt: str, phase: str | None) -> dict[str, Any] | None:
    script_path = os.getenv("XLOOP_ECHO_SCRIPT")
    if script_path and phase is not None:
        script = json.loads(Path(script_path).read_text("utf-8"))
        entry = script.get(phase)
        if isinstance(entry, dict):
            return entry

    try:
        payload = json.loads(prompt)
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None


def _execute(directive: dict[str, Any]) -> int:
    pid_file = directive.get("grandchild_pid_file")
    if pid_file:
        grandchild = subprocess.Popen(  # noqa: S603
            [sys.executable, "-c", "import time; time.sleep(60)"],
        )
        Path(pid_file).write_text(str(grandchild.pid), "utf-8")

    stdout = directive.get("stdout", "")
    if stdout:
        sys.stdout.write(stdout)
        sys.stdout.flush()
    stderr = directive.get("stderr", "")
    if stderr:
        sys.stderr.write(stderr)
        sys.stderr.flush()

    ready_file = directive.get("ready_file")
    if ready_file:
        Path(ready_file).write_text("ready", "utf-8")

    sleep_seconds = float(directive.get("sleep_seconds", 0))
    if sleep_seconds > 0:
        time.sleep(sleep_seconds)

    kill_signal = directive.get("kill_self_signal")
    if kill_signal:
        os.kill(os.getpid(), getattr(signal, kill_signal))
        time.sleep(5)

    return int(directive.get("exit_code", 0))


def _record_invocation(
    *,
    dialect: str,
    model: str | None,
    phase: str | None,
    prompt: str,
) -> None:
    log_path = os.getenv("XLOOP_ECHO_LOG")
    if not log_path:
        return
    record = {"dialect": dialect, "model": model, "phase": phase, "prompt": prompt}
    with Path(log_path).open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(record) + "\n")


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
