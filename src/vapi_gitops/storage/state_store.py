"""Identifier store: local resource names to platform ids.

One mapping per resource type, plus a read-only ``credentials``
mapping populated by pull. Persisted as a single JSON file.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from loguru import logger

from vapi_gitops.errors import StateError
from vapi_gitops.models.resources import ResourceType

CREDENTIALS_KEY = "credentials"


class IdentifierStore:
    """
    Persisted ``local_id -> remote_id`` mapping per resource type.

    Nothing writes to the store implicitly: callers set an entry only
    after the platform has confirmed the resource exists.
    """

    def __init__(self, path: Path | str, data: dict[str, Any] | None = None) -> None:
        self.path = Path(path)
        self._data: dict[str, Any] = data or {}
        for rt in ResourceType:
            self._data.setdefault(rt.value, {})
        self._data.setdefault(CREDENTIALS_KEY, {})
        self._dirty = False

    @classmethod
    def load(cls, path: Path | str) -> "IdentifierStore":
        """
        Load the store from disk; a missing file yields an empty store.

        Raises:
            StateError: If the file exists but is not a JSON object of mappings.
        """
        path = Path(path)
        if not path.exists():
            logger.info("No state file at {}, starting empty", path)
            return cls(path)

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise StateError(f"Cannot read state file {path}: {e}") from e

        if not isinstance(data, dict):
            raise StateError(f"State file {path} must hold a JSON object")

        for key, mapping in data.items():
            if not isinstance(mapping, dict):
                raise StateError(f"State section '{key}' in {path} must be a mapping")

        return cls(path, data)

    @property
    def dirty(self) -> bool:
        """True when the store changed since load or the last persist."""
        return self._dirty

    @property
    def credentials(self) -> dict[str, str]:
        """Credential alias -> credential id (read-only copy)."""
        return dict(self._data[CREDENTIALS_KEY])

    def get(self, resource_type: ResourceType, local_id: str) -> str | None:
        """Remote id for a local resource, if it has been applied."""
        return self._data[resource_type.value].get(local_id)

    def set(self, resource_type: ResourceType, local_id: str, remote_id: str) -> None:
        """Record a confirmed remote id."""
        section = self._data[resource_type.value]
        if section.get(local_id) != remote_id:
            section[local_id] = remote_id
            self._dirty = True

    def remove(self, resource_type: ResourceType, local_id: str) -> None:
        """Forget a resource after it was deleted remotely."""
        if self._data[resource_type.value].pop(local_id, None) is not None:
            self._dirty = True

    def entries(self, resource_type: ResourceType) -> list[tuple[str, str]]:
        """All ``(local_id, remote_id)`` pairs for a type."""
        return list(self._data[resource_type.value].items())

    def counts(self) -> dict[ResourceType, int]:
        """Number of tracked resources per type."""
        return {rt: len(self._data[rt.value]) for rt in ResourceType}

    def persist(self) -> None:
        """
        Write the full store atomically.

        Writes to a temp file in the same directory, then replaces the
        target, so readers never observe a half-written file.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        content = json.dumps(self._data, indent=2, sort_keys=True) + "\n"

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise StateError(f"Cannot write state file {self.path}: {e}") from e

        self._dirty = False
        logger.debug("State saved to {}", self.path)
