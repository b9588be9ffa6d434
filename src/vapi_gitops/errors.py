"""Vapi GitOps error types.

All custom exceptions inherit from GitOpsError to allow
catching any project-specific error.
"""


class GitOpsError(Exception):
    """Base exception for all Vapi GitOps errors."""

    pass


class ConfigurationError(GitOpsError):
    """Invalid configuration or resource tree."""

    pass


class StateError(GitOpsError):
    """State file could not be read or written."""

    pass


class ApiError(GitOpsError):
    """Non-2xx response from the platform API."""

    def __init__(
        self,
        method: str,
        path: str,
        status_code: int,
        message: str,
        raw_body: str = "",
    ) -> None:
        super().__init__(f"API {method} {path} failed ({status_code}): {message}")
        self.method = method
        self.path = path
        self.status_code = status_code
        self.message = message
        self.raw_body = raw_body


class TransportError(ApiError):
    """Network failure that outlived the retry policy."""

    def __init__(self, method: str, path: str, message: str) -> None:
        super().__init__(method, path, 0, message)


class RateLimitedError(GitOpsError):
    """Platform answered 429. Raised inside the client to drive backoff."""

    def __init__(self, method: str, path: str, raw_body: str = "") -> None:
        super().__init__(f"Rate limited: {method} {path}")
        self.method = method
        self.path = path
        self.raw_body = raw_body


class FatalApplyError(GitOpsError):
    """A resource could not be applied; the run must stop."""

    def __init__(self, resource_type: str, local_id: str) -> None:
        super().__init__(f"Failed to apply {resource_type}: {local_id}")
        self.resource_type = resource_type
        self.local_id = local_id


class DependencyCycleError(GitOpsError):
    """Resources depend on each other through non-linkable reference fields."""

    def __init__(self, chain: list[str]) -> None:
        super().__init__("Dependency cycle: " + " -> ".join(chain))
        self.chain = chain


def format_api_error(local_id: str, error: BaseException) -> str:
    """Render a failure for a single resource."""
    if isinstance(error, ApiError):
        return "\n".join(
            [
                f"Failed: {local_id}",
                f"  {error.method} {error.path} -> {error.status_code}",
                f"  {error.message}",
            ]
        )
    return f"Failed: {local_id}\n  {error}"
