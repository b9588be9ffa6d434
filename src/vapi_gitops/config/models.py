"""Pydantic configuration models for Vapi GitOps."""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

from vapi_gitops.models.resources import ResourceType

# Fields the platform rejects on PATCH for every resource type
COMMON_UPDATE_EXCLUSIONS: list[str] = ["id", "orgId", "createdAt", "updatedAt"]


def _default_update_exclusions() -> dict[str, list[str]]:
    exclusions = {rt.value: list(COMMON_UPDATE_EXCLUSIONS) for rt in ResourceType}
    exclusions[ResourceType.TOOLS.value].append("type")
    return exclusions


class ApiConfig(BaseModel):
    """HTTP transport behaviour: throttling and retry."""

    timeout_seconds: float = Field(default=30.0, ge=1.0, le=300.0)
    request_delay_seconds: float = Field(default=0.7, ge=0.0, le=60.0)
    max_retries: int = Field(default=5, ge=0, le=20)
    initial_backoff_seconds: float = Field(default=2.0, gt=0.0, le=120.0)


class PathsConfig(BaseModel):
    """Where resources and state live on disk."""

    resources_dir: Path = Path("resources")
    state_dir: Path = Path(".")

    @field_validator("resources_dir", "state_dir", mode="before")
    @classmethod
    def expand_path(cls, v: Path | str) -> Path:
        """Expand user home in configured paths."""
        if isinstance(v, str):
            v = Path(v)
        return v.expanduser()

    def state_file(self, env: str) -> Path:
        """State file for one environment."""
        return self.state_dir / f".vapi-state.{env}.json"


class LoggingConfig(BaseModel):
    """Logging configuration for loguru."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["console", "json"] = "console"
    file: Path | None = None
    rotation: str = "10 MB"
    retention: str = "7 days"


class Config(BaseSettings):
    """Root configuration for Vapi GitOps."""

    token: str = ""
    base_url: str = "https://api.vapi.ai"
    api: ApiConfig = Field(default_factory=ApiConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    update_exclusions: dict[str, list[str]] = Field(default_factory=_default_update_exclusions)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {
        "env_prefix": "VAPI_",
        "env_nested_delimiter": "__",
        "extra": "ignore",
    }

    @field_validator("base_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate URL format and strip trailing slash."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("update_exclusions")
    @classmethod
    def validate_exclusion_types(cls, v: dict[str, list[str]]) -> dict[str, list[str]]:
        """Reject exclusion lists for unknown resource types."""
        known = {rt.value for rt in ResourceType}
        unknown = sorted(set(v) - known)
        if unknown:
            raise ValueError(f"Unknown resource types in update_exclusions: {', '.join(unknown)}")
        return v

    def exclusions_for(self, resource_type: ResourceType) -> frozenset[str]:
        """Keys stripped from update payloads of the given type."""
        return frozenset(self.update_exclusions.get(resource_type.value, COMMON_UPDATE_EXCLUSIONS))
