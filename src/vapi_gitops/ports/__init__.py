"""Port interfaces for Vapi GitOps collaborators."""

from vapi_gitops.ports.loader import ResourceLoaderPort

__all__ = ["ResourceLoaderPort"]
