"""Orphan detection and guarded deletion.

An orphan is a state entry whose local document no longer exists.
Orphans are only deleted remotely when deletion is explicitly
authorized; otherwise they are reported.
"""

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from loguru import logger

from vapi_gitops.errors import ApiError, ConfigurationError, FatalApplyError, format_api_error
from vapi_gitops.models.resources import (
    APPLY_ORDER,
    RESOURCE_TYPES,
    OrphanedResource,
    ResourceDocument,
    ResourceType,
)
from vapi_gitops.services.api_client import VapiClient
from vapi_gitops.storage.state_store import IdentifierStore


@dataclass
class DeletionResult:
    """Outcome of an orphan pass."""

    found: dict[ResourceType, list[OrphanedResource]] = field(default_factory=dict)
    deleted: dict[ResourceType, list[OrphanedResource]] = field(default_factory=dict)

    @property
    def total_found(self) -> int:
        return sum(len(v) for v in self.found.values())

    @property
    def total_deleted(self) -> int:
        return sum(len(v) for v in self.deleted.values())


class OrphanDetector:
    """
    Diffs the identifier store against the loaded local resources.

    Platform defaults count as present: they exist locally even though
    they are never pushed, so their state entries are never orphans.
    """

    def __init__(self, store: IdentifierStore, client: VapiClient | None = None) -> None:
        self.store = store
        self.client = client

    def find_orphans(
        self,
        loaded: Mapping[ResourceType, Sequence[ResourceDocument]],
        types: Iterable[ResourceType] | None = None,
    ) -> dict[ResourceType, list[OrphanedResource]]:
        """
        Orphan candidates per type.

        Args:
            loaded: Every local document per type, platform defaults included.
            types: Restrict the check to these types; None checks all.
        """
        scope = set(APPLY_ORDER if types is None else types)
        orphans: dict[ResourceType, list[OrphanedResource]] = {}

        for rt in APPLY_ORDER:
            if rt not in scope:
                continue
            local_ids = {doc.local_id for doc in loaded.get(rt, ())}
            candidates = [
                OrphanedResource(local_id=local_id, remote_id=remote_id)
                for local_id, remote_id in self.store.entries(rt)
                if local_id not in local_ids
            ]
            if candidates:
                orphans[rt] = candidates

        return orphans

    async def delete_orphans(
        self,
        loaded: Mapping[ResourceType, Sequence[ResourceDocument]],
        types: Iterable[ResourceType] | None = None,
        force: bool = False,
    ) -> DeletionResult:
        """
        Report orphans and, when ``force`` is set, delete them.

        Deletes dependents before their dependencies (reverse apply
        order). A failed delete propagates: the store entry is kept so
        the next run sees the orphan again.
        """
        result = DeletionResult(found=self.find_orphans(loaded, types))

        if not result.found:
            logger.info("No orphaned resources")
            return result

        for rt in reversed(APPLY_ORDER):
            candidates = result.found.get(rt)
            if not candidates:
                continue

            info = RESOURCE_TYPES[rt]
            for orphan in candidates:
                if not force:
                    logger.warning(
                        "Orphaned {}: {} ({}) - rerun with --force to delete",
                        info.label,
                        orphan.local_id,
                        orphan.remote_id,
                    )
                    continue

                if self.client is None:
                    raise ConfigurationError("Deleting orphans needs an API client")

                logger.info("Deleting {}: {} ({})", info.label, orphan.local_id, orphan.remote_id)
                try:
                    await self.client.delete(f"{info.endpoint}/{orphan.remote_id}")
                except ApiError as e:
                    logger.error(format_api_error(orphan.local_id, e))
                    raise FatalApplyError(rt.value, orphan.local_id) from e
                self.store.remove(rt, orphan.local_id)
                result.deleted.setdefault(rt, []).append(orphan)

        return result
