"""Port interface for loading local resource documents."""

from typing import Protocol

from vapi_gitops.models.resources import ResourceDocument, ResourceType


class ResourceLoaderPort(Protocol):
    """Protocol for anything that yields the local documents of a type."""

    def load_resources(self, resource_type: ResourceType) -> list[ResourceDocument]:
        """Load every local document of one type. Side-effect free."""
        ...
