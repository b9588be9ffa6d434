"""Storage layer for Vapi GitOps."""

from vapi_gitops.storage.state_store import IdentifierStore

__all__ = ["IdentifierStore"]
