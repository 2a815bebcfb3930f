"""Routing resolution helpers for per-phase agent execution."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from xloop.config import PhaseSettings, Settings
from xloop.orchestrator.models import AgentKind, AgentRoute, Phase


@dataclass(slots=True, frozen=True)
class PhaseRouting:
    """Settings snapshot that resolves (agent, model) for each phase."""

    default_agent: AgentKind
    models: Mapping[AgentKind, str]
    phases: Mapping[Phase, PhaseSettings] = field(default_factory=dict)
    agent_override: AgentKind | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        agent_override: AgentKind | None = None,
    ) -> PhaseRouting:
        return cls(
            default_agent=settings.default_agent,
            models=dict(settings.models),
            phases=dict(settings.phases),
            agent_override=agent_override,
        )

    def resolve(self, phase: Phase) -> AgentRoute:
        """Resolve agent and model: CLI override > phase setting > default agent."""

        pinned = self.phases.get(phase)
        if self.agent_override is not None:
            agent = self.agent_override
        elif pinned is not None and pinned.agent is not None:
            agent = pinned.agent
        else:
            agent = self.default_agent

        # A phase model only applies to the agent it was configured for.
        if (
            pinned is not None
            and pinned.model
            and (pinned.agent is None or pinned.agent is agent)
        ):
            model: str | None = pinned.model
        else:
            model = self.models.get(agent)
        return AgentRoute(agent=agent, model=model or None)
