"""Load resource documents from the local file tree.

Each resource type has its own folder. A resource's local id is
its path relative to that folder without the extension, so
``assistants/healthcare/booking.md`` becomes ``healthcare/booking``.
"""

import re
from pathlib import Path
from typing import Any

import yaml
from loguru import logger

from vapi_gitops.errors import ConfigurationError
from vapi_gitops.models.resources import RESOURCE_TYPES, ResourceDocument, ResourceType

YAML_EXTENSIONS = frozenset({".yml", ".yaml"})
MARKDOWN_EXTENSIONS = frozenset({".md"})

_FRONT_MATTER = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)(.*)\Z", re.DOTALL)


def parse_yaml(content: str, path: Path) -> dict[str, Any]:
    """Parse a YAML resource file; the root must be a mapping."""
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"YAML root must be a mapping in {path}, not {type(data).__name__}")
    return data


def parse_markdown(content: str, path: Path) -> dict[str, Any]:
    """
    Parse a Markdown resource: YAML front matter plus a prompt body.

    The body becomes the system message at the head of
    ``model.messages``.
    """
    match = _FRONT_MATTER.match(content)
    if match is None:
        raise ConfigurationError(f"Missing YAML front matter in {path}")

    data = parse_yaml(match.group(1), path)
    body = match.group(2).strip()
    if not body:
        return data

    model = data.setdefault("model", {})
    if not isinstance(model, dict):
        raise ConfigurationError(f"'model' must be a mapping in {path}")
    messages = model.setdefault("messages", [])
    if not isinstance(messages, list):
        raise ConfigurationError(f"'model.messages' must be a list in {path}")
    messages.insert(0, {"role": "system", "content": body})
    return data


class FileSystemLoader:
    """Reads resource documents from ``<resources_dir>/<type folder>``."""

    def __init__(self, resources_dir: Path | str) -> None:
        self.resources_dir = Path(resources_dir)

    def folder_for(self, resource_type: ResourceType) -> Path:
        return self.resources_dir / RESOURCE_TYPES[resource_type].folder

    def load_resources(self, resource_type: ResourceType) -> list[ResourceDocument]:
        """
        Load every document of one type, sorted by path.

        Raises:
            ConfigurationError: On unparsable files or duplicate local ids.
        """
        folder = self.folder_for(resource_type)
        if not folder.is_dir():
            return []

        documents: list[ResourceDocument] = []
        seen: dict[str, Path] = {}

        for path in sorted(folder.rglob("*")):
            suffix = path.suffix.lower()
            if not path.is_file() or suffix not in YAML_EXTENSIONS | MARKDOWN_EXTENSIONS:
                continue

            local_id = path.relative_to(folder).with_suffix("").as_posix()
            if local_id in seen:
                raise ConfigurationError(
                    f"Duplicate {resource_type.value} id '{local_id}': {seen[local_id]} and {path}"
                )
            seen[local_id] = path

            content = path.read_text(encoding="utf-8")
            if suffix in MARKDOWN_EXTENSIONS:
                payload = parse_markdown(content, path)
            else:
                payload = parse_yaml(content, path)

            documents.append(ResourceDocument(local_id=local_id, file_path=str(path), payload=payload))

        logger.debug("Loaded {} {} from {}", len(documents), resource_type.value, folder)
        return documents
