"""Shared test fixtures."""

from __future__ import annotations

import json
import os
import shlex
import sys
from pathlib import Path
from typing import Any

import pytest

from xloop.orchestrator.backend import CliAgentBackend
from xloop.orchestrator.models import AgentKind

ECHO_AGENT_COMMAND: tuple[str, ...] = (
    sys.executable,
    "-m",
    "xloop.orchestrator.backend.echo_agent",
)


@pytest.fixture(autouse=True)
def _isolate_xloop_env(monkeypatch):
    """Drop XLOOP_* variables inherited from the developer shell."""
    for name in list(os.environ):
        if name.startswith("XLOOP_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def echo_agent_command() -> tuple[str, ...]:
    return ECHO_AGENT_COMMAND


@pytest.fixture()
def echo_backend() -> CliAgentBackend:
    return CliAgentBackend(
        agent_commands={kind: ECHO_AGENT_COMMAND for kind in AgentKind},
        terminate_grace_seconds=1.0,
    )


@pytest.fixture()
def echo_agent(monkeypatch, tmp_path: Path) -> EchoAgent:
    """Point both agent CLIs at the echo agent and record its invocations."""
    command = shlex.join(ECHO_AGENT_COMMAND)
    monkeypatch.setenv("XLOOP_CLAUDE_BIN", command)
    monkeypatch.setenv("XLOOP_OPENCODE_BIN", command)
    agent = EchoAgent(log_path=tmp_path / "echo-log.jsonl", script_path=tmp_path / "echo.json")
    monkeypatch.setenv("XLOOP_ECHO_LOG", str(agent.log_path))
    monkeypatch.setenv("XLOOP_ECHO_SCRIPT", str(agent.script_path))
    agent.script({})
    return agent


class EchoAgent:
    """Handle on the scripted echo agent used by integration tests."""

    def __init__(self, *, log_path: Path, script_path: Path) -> None:
        self.log_path = log_path
        self.script_path = script_path

    def script(self, phases: dict[str, dict[str, Any]]) -> None:
        self.script_path.write_text(json.dumps(phases), "utf-8")

    def invocations(self) -> list[dict[str, Any]]:
        if not self.log_path.exists():
            return []
        return [
            json.loads(line)
            for line in self.log_path.read_text("utf-8").splitlines()
            if line.strip()
        ]

    def phases(self) -> list[str | None]:
        return [record["phase"] for record in self.invocations()]
