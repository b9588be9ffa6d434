"""Resource type registry and document models."""

from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Literal

Environment = Literal["dev", "staging", "prod"]

VALID_ENVIRONMENTS: tuple[str, ...] = ("dev", "staging", "prod")

PLATFORM_DEFAULT_KEY = "_platformDefault"


class ResourceType(StrEnum):
    """Resource types in apply order.

    Base resources come first, then the types that reference them.
    """

    TOOLS = "tools"
    STRUCTURED_OUTPUTS = "structuredOutputs"
    ASSISTANTS = "assistants"
    SQUADS = "squads"
    PERSONALITIES = "personalities"
    SCENARIOS = "scenarios"
    SIMULATIONS = "simulations"
    SIMULATION_SUITES = "simulationSuites"


APPLY_ORDER: tuple[ResourceType, ...] = tuple(ResourceType)


@dataclass(frozen=True)
class ResourceTypeInfo:
    """Static facts about how a resource type maps onto the API and disk."""

    endpoint: str
    folder: str
    label: str
    title: str
    update_query: str = ""


RESOURCE_TYPES: dict[ResourceType, ResourceTypeInfo] = {
    ResourceType.TOOLS: ResourceTypeInfo("/tool", "tools", "tool", "Tools"),
    ResourceType.STRUCTURED_OUTPUTS: ResourceTypeInfo(
        "/structured-output",
        "structuredOutputs",
        "structured output",
        "Structured Outputs",
        update_query="?schemaOverride=true",
    ),
    ResourceType.ASSISTANTS: ResourceTypeInfo(
        "/assistant", "assistants", "assistant", "Assistants"
    ),
    ResourceType.SQUADS: ResourceTypeInfo("/squad", "squads", "squad", "Squads"),
    ResourceType.PERSONALITIES: ResourceTypeInfo(
        "/eval/simulation/personality", "simulations/personalities", "personality", "Personalities"
    ),
    ResourceType.SCENARIOS: ResourceTypeInfo(
        "/eval/simulation/scenario", "simulations/scenarios", "scenario", "Scenarios"
    ),
    ResourceType.SIMULATIONS: ResourceTypeInfo(
        "/eval/simulation", "simulations/tests", "simulation", "Simulations"
    ),
    ResourceType.SIMULATION_SUITES: ResourceTypeInfo(
        "/eval/simulation/suite", "simulations/suites", "simulation suite", "Simulation Suites"
    ),
}


@dataclass(frozen=True)
class ResourceDocument:
    """A resource as loaded from the local file tree."""

    local_id: str
    file_path: str
    payload: dict[str, Any]

    @property
    def is_platform_default(self) -> bool:
        """Platform defaults are read-only and never pushed."""
        return self.payload.get(PLATFORM_DEFAULT_KEY) is True


@dataclass(frozen=True)
class OrphanedResource:
    """A state entry with no matching local document."""

    local_id: str
    remote_id: str


def strip_local_metadata(payload: dict[str, Any]) -> dict[str, Any]:
    """Drop top-level keys that only have meaning locally (``_`` prefix)."""
    return {k: v for k, v in payload.items() if not k.startswith("_")}
