from __future__ import annotations

from pathlib import Path

import allure

from xloop.config import PhaseSettings, Settings
from xloop.orchestrator.models import AgentKind, AgentRoute, Phase
from xloop.orchestrator.routing import PhaseRouting

pytestmark = [
    allure.epic("Phase Orchestration"),
    allure.feature("Agent Routing"),
]


def _routing(**overrides) -> PhaseRouting:
    values = {
        "default_agent": AgentKind.CLAUDE,
        "models": {AgentKind.CLAUDE: "claude-m", AgentKind.OPENCODE: "opencode-m"},
    }
    values.update(overrides)
    return PhaseRouting(**values)


def test_default_agent_and_model_apply_to_every_phase() -> None:
    routing = _routing()
    assert {routing.resolve(phase) for phase in Phase} == {
        AgentRoute(agent=AgentKind.CLAUDE, model="claude-m"),
    }


def test_phase_pin_selects_agent_and_model() -> None:
    routing = _routing(
        phases={Phase.REVIEW: PhaseSettings(agent=AgentKind.OPENCODE, model="reviewer")},
    )
    assert routing.resolve(Phase.REVIEW) == AgentRoute(AgentKind.OPENCODE, "reviewer")
    assert routing.resolve(Phase.IMPLEMENT) == AgentRoute(AgentKind.CLAUDE, "claude-m")


def test_phase_agent_without_model_uses_that_agents_model() -> None:
    routing = _routing(phases={Phase.FINALIZE: PhaseSettings(agent=AgentKind.OPENCODE)})
    assert routing.resolve(Phase.FINALIZE) == AgentRoute(AgentKind.OPENCODE, "opencode-m")


def test_agent_override_wins_over_phase_agent() -> None:
    routing = _routing(
        phases={
            Phase.REVIEW: PhaseSettings(agent=AgentKind.OPENCODE, model="reviewer"),
            Phase.FINALIZE: PhaseSettings(model="finisher"),
        },
        agent_override=AgentKind.CLAUDE,
    )
    # The review model was chosen for opencode, so it no longer applies.
    assert routing.resolve(Phase.REVIEW) == AgentRoute(AgentKind.CLAUDE, "claude-m")
    assert routing.resolve(Phase.FINALIZE) == AgentRoute(AgentKind.CLAUDE, "finisher")


def test_missing_model_resolves_to_agent_default() -> None:
    routing = _routing(models={})
    assert routing.resolve(Phase.IMPLEMENT) == AgentRoute(AgentKind.CLAUDE, None)


def test_from_settings_snapshots_settings() -> None:
    settings = Settings(project_root=Path("/p"), default_agent=AgentKind.OPENCODE)
    routing = PhaseRouting.from_settings(settings)
    settings.default_agent = AgentKind.CLAUDE

    assert routing.resolve(Phase.IMPLEMENT).agent is AgentKind.OPENCODE
