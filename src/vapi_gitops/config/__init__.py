"""Configuration management for Vapi GitOps."""

from vapi_gitops.config.loader import load_config
from vapi_gitops.config.models import ApiConfig, Config, LoggingConfig, PathsConfig

__all__ = ["ApiConfig", "Config", "LoggingConfig", "PathsConfig", "load_config"]
