"""Vapi GitOps services layer.

Services coordinate between the local resource tree, the
identifier store, and the platform API.
"""

from vapi_gitops.services.api_client import ClientStats, VapiClient
from vapi_gitops.services.apply import ApplyEngine, ApplyResult, ApplyScope
from vapi_gitops.services.loader import FileSystemLoader
from vapi_gitops.services.orphans import DeletionResult, OrphanDetector
from vapi_gitops.services.resolver import ReferenceResolver, UnresolvedReferenceWarning

__all__ = [
    "ApplyEngine",
    "ApplyResult",
    "ApplyScope",
    "ClientStats",
    "DeletionResult",
    "FileSystemLoader",
    "OrphanDetector",
    "ReferenceResolver",
    "UnresolvedReferenceWarning",
    "VapiClient",
]
