"""Data models for Vapi GitOps."""

from vapi_gitops.models.resources import (
    APPLY_ORDER,
    PLATFORM_DEFAULT_KEY,
    RESOURCE_TYPES,
    VALID_ENVIRONMENTS,
    Environment,
    OrphanedResource,
    ResourceDocument,
    ResourceType,
    ResourceTypeInfo,
    strip_local_metadata,
)

__all__ = [
    "APPLY_ORDER",
    "PLATFORM_DEFAULT_KEY",
    "RESOURCE_TYPES",
    "VALID_ENVIRONMENTS",
    "Environment",
    "OrphanedResource",
    "ResourceDocument",
    "ResourceType",
    "ResourceTypeInfo",
    "strip_local_metadata",
]
