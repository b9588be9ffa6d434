"""Vapi GitOps utility modules."""

from vapi_gitops.utils.logging import configure_logging
from vapi_gitops.utils.retry import retry_rate_limited

__all__ = ["configure_logging", "retry_rate_limited"]
