"""Runtime configuration: defaults, then `.plans/xloop.config.json`, then environment."""

from __future__ import annotations

import json
import logging
import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from xloop.orchestrator.models import AgentKind, Phase, parse_agent_kind
from xloop.orchestrator.retry import BackoffPolicy

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "xloop.config.json"
DEFAULT_MODEL = "claude-sonnet-4-20250514"


@dataclass(slots=True)
class PhaseSettings:
    """Optional per-phase agent/model pinning."""

    agent: AgentKind | None = None
    model: str | None = None


@dataclass(slots=True)
class RetrySettings:
    """Backoff settings for single-shot agent calls."""

    max_attempts: int = 3
    initial_delay_seconds: float = 1.0
    max_delay_seconds: float = 10.0

    def to_policy(self) -> BackoffPolicy:
        return BackoffPolicy(
            max_attempts=self.max_attempts,
            initial_delay_seconds=self.initial_delay_seconds,
            max_delay_seconds=self.max_delay_seconds,
        )


def _default_models() -> dict[AgentKind, str]:
    return {AgentKind.OPENCODE: DEFAULT_MODEL, AgentKind.CLAUDE: DEFAULT_MODEL}


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    project_root: Path = Path()
    plans_dir: Path = Path(".plans")
    default_agent: AgentKind = AgentKind.CLAUDE
    models: dict[AgentKind, str] = field(default_factory=_default_models)
    phases: dict[Phase, PhaseSettings] = field(default_factory=dict)
    agent_commands: dict[AgentKind, tuple[str, ...]] = field(default_factory=dict)
    timeout_seconds: float | None = None
    retry: RetrySettings = field(default_factory=RetrySettings)
    commit_prefix: str = "xloop"
    feedback_command: str = "bun test"
    lint_command: str | None = None

    @property
    def config_path(self) -> Path:
        return self.plans_dir / CONFIG_FILENAME

    @classmethod
    def from_env(cls, cwd: Path | None = None) -> Settings:
        """Load settings from the config file and environment with local defaults."""

        project_root = (cwd or Path.cwd()).resolve()
        plans_dir = project_root / os.getenv("XLOOP_PLANS_DIR", ".plans")
        file_values = _load_config_file(plans_dir / CONFIG_FILENAME)

        models = _default_models()
        for agent_name, model in _config_section(file_values, "models").items():
            models[parse_agent_kind(agent_name)] = str(model)
        env_model = os.getenv("XLOOP_MODEL", "").strip()
        if env_model:
            models = {agent: env_model for agent in models}

        default_agent = parse_agent_kind(
            os.getenv("XLOOP_AGENT") or file_values.get("defaultAgent") or AgentKind.CLAUDE,
        )

        timeout_raw = os.getenv("XLOOP_TIMEOUT_SECONDS", file_values.get("timeoutSeconds"))
        settings = cls(
            project_root=project_root,
            plans_dir=plans_dir,
            default_agent=default_agent,
            models=models,
            phases=_collect_phase_settings(_config_section(file_values, "phases")),
            agent_commands=_collect_agent_commands(),
            timeout_seconds=float(timeout_raw) if timeout_raw not in (None, "") else None,
            retry=RetrySettings(
                max_attempts=int(os.getenv("XLOOP_RETRY_MAX_ATTEMPTS", "3")),
                initial_delay_seconds=float(
                    os.getenv("XLOOP_RETRY_INITIAL_DELAY_SECONDS", "1.0"),
                ),
                max_delay_seconds=float(os.getenv("XLOOP_RETRY_MAX_DELAY_SECONDS", "10.0")),
            ),
            commit_prefix=str(file_values.get("commitPrefix", "xloop")),
            feedback_command=str(file_values.get("feedbackCommand") or "bun test"),
            lint_command=file_values.get("lintCommand") or None,
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """Raise configuration error for out-of-range values."""

        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError("XLOOP_TIMEOUT_SECONDS must be > 0.")
        if self.retry.max_attempts < 1:
            raise ValueError("XLOOP_RETRY_MAX_ATTEMPTS must be >= 1.")
        if self.retry.initial_delay_seconds < 0 or self.retry.max_delay_seconds < 0:
            raise ValueError("Retry delays must be >= 0.")
        for agent, command in self.agent_commands.items():
            if not command:
                raise ValueError(f"Empty command override for agent={agent.value!r}")


def _load_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        payload = json.loads(path.read_text("utf-8"))
    except (OSError, json.JSONDecodeError) as error:
        logger.warning("Error reading config %s, using defaults: %s", path, error)
        return {}
    if not isinstance(payload, dict):
        logger.warning("Config %s is not a JSON object, using defaults", path)
        return {}
    return payload


def _config_section(file_values: dict[str, Any], key: str) -> dict[str, Any]:
    section = file_values.get(key) or {}
    if not isinstance(section, dict):
        raise ValueError(f"Invalid {key} config section, expected an object: {section!r}")
    return section


def _collect_phase_settings(raw: dict[str, Any]) -> dict[Phase, PhaseSettings]:
    phases: dict[Phase, PhaseSettings] = {}
    for phase in Phase:
        entry = raw.get(phase.value) or {}
        if not isinstance(entry, dict):
            raise ValueError(f"Invalid phases.{phase.value} config entry: {entry!r}")
        prefix = f"XLOOP_{phase.name}_"
        agent_raw = os.getenv(f"{prefix}AGENT") or entry.get("agent")
        model_raw = os.getenv(f"{prefix}MODEL") or entry.get("model")
        model = str(model_raw).strip() if model_raw else ""
        if not agent_raw and not model:
            continue
        phases[phase] = PhaseSettings(
            agent=parse_agent_kind(agent_raw) if agent_raw else None,
            model=model or None,
        )
    return phases


def _collect_agent_commands() -> dict[AgentKind, tuple[str, ...]]:
    commands: dict[AgentKind, tuple[str, ...]] = {}
    for agent in AgentKind:
        raw = os.getenv(f"XLOOP_{agent.name}_BIN", "").strip()
        if raw:
            commands[agent] = tuple(shlex.split(raw))
    return commands
