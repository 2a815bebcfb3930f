"""Agent backend implementations."""

from xloop.orchestrator.backend.base import AgentBackend, SpawnRequest, SpawnResult
from xloop.orchestrator.backend.cli_backend import (
    CliAgentBackend,
    build_agent_args,
    is_agent_available,
)

__all__ = [
    "AgentBackend",
    "CliAgentBackend",
    "SpawnRequest",
    "SpawnResult",
    "build_agent_args",
    "is_agent_available",
]
