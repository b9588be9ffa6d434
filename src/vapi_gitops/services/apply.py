"""Apply engine: converge the platform to the local resource tree.

A run proceeds in four steps:

1. Load every local document and detect orphans against the
   pre-apply state (deleting them only when authorized).
2. Apply the selected resources type by type in dependency order.
   Before each resource, any dependency missing from state is
   applied first, recursively.
3. Link cyclic references (tool destinations, structured-output
   assistant lists) with a narrow PATCH once every side has an id.
4. Persist the identifier store, even when a step failed.
"""

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from vapi_gitops.config.models import Config
from vapi_gitops.errors import (
    ApiError,
    DependencyCycleError,
    FatalApplyError,
    format_api_error,
)
from vapi_gitops.models.resources import (
    APPLY_ORDER,
    RESOURCE_TYPES,
    ResourceDocument,
    ResourceType,
    strip_local_metadata,
)
from vapi_gitops.ports.loader import ResourceLoaderPort
from vapi_gitops.services.api_client import VapiClient
from vapi_gitops.services.orphans import DeletionResult, OrphanDetector
from vapi_gitops.services.resolver import (
    REFERENCE_FIELDS,
    ReferenceResolver,
    UnresolvedReferenceWarning,
    cyclic_sections,
    strip_unresolved_cyclic,
)
from vapi_gitops.storage.state_store import IdentifierStore

_RESOURCE_SUFFIX = re.compile(r"\.(yml|yaml|md)$")

ResourceKey = tuple[ResourceType, str]


_TYPE_FOLDERS: tuple[str, ...] = tuple(info.folder for info in RESOURCE_TYPES.values())


def _ends_with_segments(path: str, tail: str) -> bool:
    return path == tail or path.endswith(f"/{tail}")


def _names_type_folder(path: str) -> bool:
    wrapped = f"/{path}/"
    return any(f"/{folder}/" in wrapped for folder in _TYPE_FOLDERS)


def matches_path(document: ResourceDocument, file_path: str, folder: str) -> bool:
    """
    True if a user-supplied file path designates this document.

    ``folder`` is the document's type folder. A path that names any
    type folder only matches documents of that type; a bare local id
    (``support/booking``) matches across types. Comparisons are made
    on whole ``/`` segments.
    """
    wanted = file_path.replace("\\", "/").removeprefix("./")
    if _ends_with_segments(document.file_path.replace("\\", "/"), wanted):
        return True

    stem = _RESOURCE_SUFFIX.sub("", wanted)
    if _ends_with_segments(stem, f"{folder}/{document.local_id}"):
        return True
    if _names_type_folder(stem):
        return False
    return _ends_with_segments(stem, document.local_id)


@dataclass(frozen=True)
class ApplyScope:
    """Restricts a run to some resource types or some files."""

    resource_types: tuple[ResourceType, ...] = ()
    file_paths: tuple[str, ...] = ()

    @property
    def is_partial(self) -> bool:
        return bool(self.resource_types or self.file_paths)

    def select(
        self, resource_type: ResourceType, documents: Sequence[ResourceDocument]
    ) -> list[ResourceDocument]:
        """Documents of one type that this scope applies."""
        if self.file_paths:
            folder = RESOURCE_TYPES[resource_type].folder
            return [
                d for d in documents if any(matches_path(d, p, folder) for p in self.file_paths)
            ]
        if self.resource_types and resource_type not in self.resource_types:
            return []
        return list(documents)


@dataclass
class ApplyResult:
    """What a run did, per resource type."""

    created: dict[ResourceType, list[str]] = field(default_factory=dict)
    updated: dict[ResourceType, list[str]] = field(default_factory=dict)
    linked: dict[ResourceType, list[str]] = field(default_factory=dict)
    auto_applied: list[ResourceKey] = field(default_factory=list)
    warnings: list[UnresolvedReferenceWarning] = field(default_factory=list)
    deletion: DeletionResult = field(default_factory=DeletionResult)

    def applied(self, resource_type: ResourceType) -> int:
        """Creates plus updates for one type."""
        return len(self.created.get(resource_type, [])) + len(self.updated.get(resource_type, []))

    @property
    def total_applied(self) -> int:
        return sum(self.applied(rt) for rt in APPLY_ORDER)

    def summary_lines(self, store: IdentifierStore, partial: bool) -> list[str]:
        """Human-readable run summary."""
        if partial:
            lines = [f"Applied {self.total_applied} resource(s):"]
            for rt in APPLY_ORDER:
                count = self.applied(rt)
                if count:
                    lines.append(f"  {RESOURCE_TYPES[rt].title}: {count}")
            return lines

        counts = store.counts()
        lines = ["Summary:"]
        lines.extend(f"  {RESOURCE_TYPES[rt].title}: {counts[rt]}" for rt in APPLY_ORDER)
        return lines


@dataclass
class _RunState:
    """Mutable bookkeeping owned by a single run."""

    documents: dict[ResourceType, dict[str, ResourceDocument]]
    result: ApplyResult
    visited: set[ResourceKey] = field(default_factory=set)
    in_progress: list[ResourceKey] = field(default_factory=list)
    sent: dict[ResourceKey, dict[str, Any]] = field(default_factory=dict)
    linkable: list[tuple[ResourceType, ResourceDocument]] = field(default_factory=list)

    def find(self, resource_type: ResourceType, local_id: str) -> ResourceDocument | None:
        return self.documents[resource_type].get(local_id)


def _cyclic_keys(resource_type: ResourceType) -> frozenset[str]:
    return frozenset(f.output_key for f in REFERENCE_FIELDS[resource_type] if f.cyclic)


class ApplyEngine:
    """
    Orchestrates resolver, client, orphan detector and store for one push.

    The engine owns the identifier store for the duration of a run.
    Any API failure aborts the run after the store is persisted.
    """

    def __init__(
        self,
        client: VapiClient,
        store: IdentifierStore,
        loader: ResourceLoaderPort,
        config: Config,
        environment: str = "dev",
    ) -> None:
        self.client = client
        self.store = store
        self.loader = loader
        self.config = config
        self.environment = environment
        self.resolver = ReferenceResolver(store)
        self.orphans = OrphanDetector(store, client)

    async def run(self, scope: ApplyScope | None = None, force_delete: bool = False) -> ApplyResult:
        """
        Apply the scoped local resources and persist the store.

        Raises:
            FatalApplyError: A create, update, link or delete failed.
            DependencyCycleError: Resources require each other to exist first.
        """
        scope = scope or ApplyScope()
        self._log_banner(scope, force_delete)

        loaded = {rt: self.loader.load_resources(rt) for rt in APPLY_ORDER}
        pushable = {rt: self._without_defaults(rt, docs) for rt, docs in loaded.items()}
        selected = {rt: scope.select(rt, pushable[rt]) for rt in APPLY_ORDER}
        self._log_credentials()

        state = _RunState(
            documents={rt: {d.local_id: d for d in docs} for rt, docs in pushable.items()},
            result=ApplyResult(),
        )

        try:
            delete_types = self._deletion_types(scope, selected)
            state.result.deletion = await self.orphans.delete_orphans(
                loaded, delete_types, force=force_delete
            )

            for rt in APPLY_ORDER:
                documents = selected[rt]
                if not documents:
                    continue
                logger.info("Applying {}...", RESOURCE_TYPES[rt].title.lower())
                for document in documents:
                    await self._ensure_dependencies(rt, document, state)
                    if (rt, document.local_id) in state.visited:
                        continue
                    await self._apply_tracked(rt, document, state)

            await self._link_cycles(state)
        finally:
            if self.store.dirty:
                self.store.persist()

        for line in state.result.summary_lines(self.store, scope.is_partial):
            logger.info(line)
        return state.result

    async def apply_resource(
        self,
        resource_type: ResourceType,
        document: ResourceDocument,
        warnings: list[UnresolvedReferenceWarning] | None = None,
    ) -> tuple[str, bool, dict[str, Any]]:
        """
        Create or update one resource.

        Cyclic references that cannot be resolved yet are left out of
        the request; the link pass supplies them later.

        Returns:
            ``(remote_id, created, payload)`` where payload is the body
            before update exclusions were applied.
        """
        info = RESOURCE_TYPES[resource_type]
        resolved = self.resolver.resolve(resource_type, strip_local_metadata(document.payload))
        self._collect_unresolved(
            resource_type, document.local_id, resolved, warnings, skip=_cyclic_keys(resource_type)
        )
        payload = strip_unresolved_cyclic(resource_type, resolved)

        existing = self.store.get(resource_type, document.local_id)
        if existing:
            excluded = self.config.exclusions_for(resource_type)
            body = {k: v for k, v in payload.items() if k not in excluded}
            logger.info("Updating {}: {} ({})", info.label, document.local_id, existing)
            await self.client.patch(f"{info.endpoint}/{existing}{info.update_query}", body)
            return existing, False, payload

        logger.info("Creating {}: {}", info.label, document.local_id)
        response = await self.client.post(info.endpoint, payload)
        remote_id = response.get("id")
        if not isinstance(remote_id, str) or not remote_id:
            raise ApiError("POST", info.endpoint, 0, "Create response did not include an id")
        return remote_id, True, payload

    async def _apply_tracked(
        self,
        resource_type: ResourceType,
        document: ResourceDocument,
        state: _RunState,
    ) -> None:
        key = (resource_type, document.local_id)
        try:
            remote_id, created, payload = await self.apply_resource(
                resource_type, document, state.result.warnings
            )
        except ApiError as e:
            logger.error(format_api_error(document.local_id, e))
            raise FatalApplyError(resource_type.value, document.local_id) from e

        self.store.set(resource_type, document.local_id, remote_id)
        state.visited.add(key)
        state.sent[key] = payload
        if _cyclic_keys(resource_type):
            state.linkable.append((resource_type, document))

        bucket = state.result.created if created else state.result.updated
        bucket.setdefault(resource_type, []).append(document.local_id)

    async def _ensure_dependencies(
        self,
        resource_type: ResourceType,
        document: ResourceDocument,
        state: _RunState,
    ) -> None:
        """Apply, depth first, every non-cyclic dependency missing from state."""
        references = self.resolver.extract_references(
            resource_type, document.payload, include_cyclic=False
        )
        key = (resource_type, document.local_id)
        state.in_progress.append(key)
        try:
            for target in APPLY_ORDER:
                for local_id in sorted(references.get(target, ())):
                    await self._ensure_applied(target, local_id, state)
        finally:
            state.in_progress.pop()

    async def _ensure_applied(
        self, resource_type: ResourceType, local_id: str, state: _RunState
    ) -> None:
        key = (resource_type, local_id)
        if key in state.visited or self.store.get(resource_type, local_id):
            return

        if key in state.in_progress:
            start = state.in_progress.index(key)
            chain = [f"{rt.value}/{lid}" for rt, lid in state.in_progress[start:]]
            chain.append(f"{resource_type.value}/{local_id}")
            raise DependencyCycleError(chain)

        document = state.find(resource_type, local_id)
        if document is None:
            # Unknown name: left unresolved and reported by the resolver pass
            return

        await self._ensure_dependencies(resource_type, document, state)
        logger.info(
            "Auto-applying dependency -> {}: {}", RESOURCE_TYPES[resource_type].label, local_id
        )
        await self._apply_tracked(resource_type, document, state)
        state.result.auto_applied.append(key)

    async def _link_cycles(self, state: _RunState) -> None:
        """
        Second pass: PATCH cyclic fields now that every side has an id.

        Only sections that differ from what the first pass sent are
        patched; resources without cyclic fields cost nothing.
        """
        if not state.linkable:
            return

        logger.info("Linking cyclic references...")
        for resource_type, document in state.linkable:
            raw = strip_local_metadata(document.payload)
            sections = cyclic_sections(resource_type, raw)
            if not sections:
                continue

            key = (resource_type, document.local_id)
            resolved = self.resolver.resolve(resource_type, raw)
            cyclic = _cyclic_keys(resource_type)
            self._collect_unresolved(
                resource_type,
                document.local_id,
                {k: v for k, v in resolved.items() if k in sections},
                state.result.warnings,
                only=cyclic,
            )
            linked = strip_unresolved_cyclic(resource_type, resolved)
            previous = state.sent.get(key, {})
            body = {
                name: linked[name]
                for name in sections
                if name in linked and linked[name] != previous.get(name)
            }
            if not body:
                continue

            info = RESOURCE_TYPES[resource_type]
            remote_id = self.store.get(resource_type, document.local_id)
            logger.info("Linking {} {}: {}", info.label, document.local_id, ", ".join(body))
            try:
                await self.client.patch(f"{info.endpoint}/{remote_id}", body)
            except ApiError as e:
                logger.error(format_api_error(document.local_id, e))
                raise FatalApplyError(resource_type.value, document.local_id) from e
            state.result.linked.setdefault(resource_type, []).append(document.local_id)

    def _collect_unresolved(
        self,
        resource_type: ResourceType,
        local_id: str,
        resolved: dict[str, Any],
        warnings: list[UnresolvedReferenceWarning] | None,
        skip: Iterable[str] = (),
        only: Iterable[str] | None = None,
    ) -> None:
        skipped = set(skip)
        allowed = None if only is None else set(only)
        for field_name, value in self.resolver.find_unresolved(resource_type, resolved):
            if field_name in skipped or (allowed is not None and field_name not in allowed):
                continue
            warning = UnresolvedReferenceWarning(resource_type, local_id, field_name, value)
            logger.warning(str(warning))
            if warnings is not None:
                warnings.append(warning)

    @staticmethod
    def _without_defaults(
        resource_type: ResourceType, documents: Sequence[ResourceDocument]
    ) -> list[ResourceDocument]:
        kept: list[ResourceDocument] = []
        for document in documents:
            if document.is_platform_default:
                logger.info("Skipping platform default: {}/{}", resource_type.value, document.local_id)
            else:
                kept.append(document)
        return kept

    @staticmethod
    def _deletion_types(
        scope: ApplyScope, selected: dict[ResourceType, list[ResourceDocument]]
    ) -> list[ResourceType] | None:
        """Types whose orphans this run may touch; None means all."""
        if not scope.is_partial:
            return None
        if scope.file_paths:
            return [rt for rt in APPLY_ORDER if selected[rt]]
        return [rt for rt in APPLY_ORDER if rt in scope.resource_types]

    def _log_banner(self, scope: ApplyScope, force_delete: bool) -> None:
        logger.info("Vapi GitOps apply - environment: {}", self.environment)
        logger.info("API: {}", self.client.base_url)
        logger.info("Deletions: {}", "ENABLED (--force)" if force_delete else "disabled (dry-run)")
        if scope.resource_types:
            logger.info("Filter: {}", ", ".join(rt.value for rt in scope.resource_types))
        if scope.file_paths:
            logger.info("Files: {}", ", ".join(scope.file_paths))

    def _log_credentials(self) -> None:
        count = len(self.store.credentials)
        if count:
            logger.info("Resolving credentials ({} mapped)", count)
        else:
            logger.info("No credentials in state - run pull first to populate credential mappings")
