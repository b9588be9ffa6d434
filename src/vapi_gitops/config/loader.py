"""Configuration loading utilities."""

from pathlib import Path

import yaml

from vapi_gitops.config.models import Config


def load_config(config_path: Path | None, env: str | None = None) -> Config:
    """
    Load configuration from YAML file, dotenv file and environment.

    Values from the YAML file take precedence; ``VAPI_*`` variables from
    the process environment and from ``.env.<env>`` (when present in the
    working directory) fill in the rest.

    Args:
        config_path: Path to YAML config file, or None for defaults.
        env: Target environment name used to pick the dotenv file.

    Returns:
        Validated Config object.

    Raises:
        FileNotFoundError: If config_path doesn't exist.
        ValueError: If YAML is invalid.
    """
    data: dict = {}

    if config_path is not None:
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        try:
            with config_path.open() as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in config file: {e}") from e

        if loaded is None:
            loaded = {}

        if not isinstance(loaded, dict):
            raise ValueError(f"YAML root must be a mapping, not {type(loaded).__name__}")

        data = loaded

    if env is not None:
        env_file = Path(f".env.{env}")
        if env_file.exists():
            return Config(_env_file=env_file, **data)  # type: ignore[call-arg]

    return Config(**data)
