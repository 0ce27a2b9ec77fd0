"""
Agent Registry — static agent id -> (channel, callback URL) table.
Loaded from a JSON file once at process start; never reloaded at request time.
"""

import json
import os
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, List, Optional
import structlog
from pydantic import ValidationError

from schemas.agents import AgentMapping

logger = structlog.get_logger()

AGENT_MAP_FILE = os.getenv(
    "GATEWAY_AGENT_MAP_FILE",
    os.getenv("AGENT_MAP_FILE", "data/agents.json"),
)


class AgentMapError(Exception):
    """Agent mapping configuration could not be loaded."""


class AgentRegistry:
    """Read-only lookup of agent mappings keyed by agent id."""

    def __init__(self, mappings: Iterable[AgentMapping] = ()):
        table = {}
        for mapping in mappings:
            if mapping.agent_id in table:
                raise AgentMapError(f"duplicate agent id: {mapping.agent_id}")
            table[mapping.agent_id] = mapping
        self._table = MappingProxyType(table)

    @classmethod
    def load(cls, path: str | Path) -> "AgentRegistry":
        """Load the mapping table from a JSON array of entries."""
        path = Path(path)
        if not path.exists():
            logger.warning("agent_map_missing", path=str(path))
            return cls()

        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise AgentMapError(f"cannot read agent map {path}: {e}") from e

        if not isinstance(raw, list):
            raise AgentMapError(f"agent map {path} must be a JSON array")

        try:
            registry = cls(AgentMapping.model_validate(row) for row in raw)
        except ValidationError as e:
            raise AgentMapError(f"invalid agent map entry in {path}: {e}") from e

        logger.info("agent_map_loaded", path=str(path), agents=len(registry))
        return registry

    def get(self, agent_id: str) -> Optional[AgentMapping]:
        return self._table.get(agent_id)

    def list(self) -> List[AgentMapping]:
        return list(self._table.values())

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._table

    def __len__(self) -> int:
        return len(self._table)


_agent_registry: Optional[AgentRegistry] = None


async def get_agent_registry() -> AgentRegistry:
    """Get or load the singleton AgentRegistry (resolved on the event loop)."""
    global _agent_registry
    if _agent_registry is None:
        _agent_registry = AgentRegistry.load(AGENT_MAP_FILE)
    return _agent_registry
