"""Reference resolver for cross-resource references.

Resource files name each other by local id. Before a payload is
sent, every recognised reference field is rewritten to the remote
id recorded in the identifier store. Fields are recognised by key
name at any depth, per owning resource type.
"""

import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from vapi_gitops.models.resources import ResourceType
from vapi_gitops.storage.state_store import IdentifierStore

REMOTE_ID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

# Text after the marker is local-only metadata: "booking##transfer note"
OVERRIDE_MARKER = "##"


@dataclass(frozen=True)
class ReferenceField:
    """
    A payload key that names another resource.

    ``target`` None means the credential alias map. Cyclic fields point
    "backwards" in apply order and are linked in a second pass.
    """

    key: str
    target: ResourceType | None
    many: bool = False
    cyclic: bool = False
    emit_as: str | None = None

    @property
    def output_key(self) -> str:
        return self.emit_as or self.key


_TOOL_IDS = ReferenceField("toolIds", ResourceType.TOOLS, many=True)
_OUTPUT_IDS = ReferenceField("structuredOutputIds", ResourceType.STRUCTURED_OUTPUTS, many=True)

CREDENTIAL_FIELDS: tuple[ReferenceField, ...] = (
    ReferenceField("credentialId", None),
    ReferenceField("credentialIds", None, many=True),
)

REFERENCE_FIELDS: dict[ResourceType, tuple[ReferenceField, ...]] = {
    ResourceType.TOOLS: (
        ReferenceField("assistantId", ResourceType.ASSISTANTS, cyclic=True),
    ),
    ResourceType.STRUCTURED_OUTPUTS: (
        ReferenceField("assistantIds", ResourceType.ASSISTANTS, many=True, cyclic=True),
        ReferenceField(
            "assistant_ids",
            ResourceType.ASSISTANTS,
            many=True,
            cyclic=True,
            emit_as="assistantIds",
        ),
    ),
    ResourceType.ASSISTANTS: (_TOOL_IDS, _OUTPUT_IDS),
    ResourceType.SQUADS: (
        ReferenceField("assistantId", ResourceType.ASSISTANTS),
        _TOOL_IDS,
        _OUTPUT_IDS,
    ),
    ResourceType.PERSONALITIES: (),
    ResourceType.SCENARIOS: (
        ReferenceField("structuredOutputId", ResourceType.STRUCTURED_OUTPUTS),
    ),
    ResourceType.SIMULATIONS: (
        ReferenceField("personalityId", ResourceType.PERSONALITIES),
        ReferenceField("scenarioId", ResourceType.SCENARIOS),
    ),
    ResourceType.SIMULATION_SUITES: (
        ReferenceField("simulationIds", ResourceType.SIMULATIONS, many=True),
    ),
}


def is_remote_id(value: object) -> bool:
    """True if value already looks like a platform id."""
    return isinstance(value, str) and REMOTE_ID_PATTERN.match(value) is not None


def strip_override(value: str) -> str:
    """Drop the local-only override suffix from a reference value."""
    return value.split(OVERRIDE_MARKER, 1)[0].strip()


def fields_for(resource_type: ResourceType) -> dict[str, ReferenceField]:
    """Reference fields recognised in payloads of the given type, by key."""
    fields = {f.key: f for f in REFERENCE_FIELDS[resource_type]}
    for f in CREDENTIAL_FIELDS:
        fields.setdefault(f.key, f)
    return fields


@dataclass(frozen=True)
class UnresolvedReferenceWarning:
    """A reference still holding a local name after resolution. Never fatal."""

    resource_type: ResourceType
    local_id: str
    field: str
    value: str

    def __str__(self) -> str:
        hint = ""
        if self.field.startswith("credential"):
            hint = " (run pull to populate credentials in state)"
        return (
            f"Unresolved reference in {self.resource_type.value}/{self.local_id}: "
            f'{self.field}="{self.value}"{hint}'
        )


FieldVisitor = Callable[[ReferenceField, Any], Any]


def _walk(value: Any, fields: dict[str, ReferenceField], visit: FieldVisitor) -> Any:
    """Copy a nested document, handing reference-shaped fields to ``visit``."""
    if isinstance(value, dict):
        out: dict[str, Any] = {}
        for key, item in value.items():
            field = fields.get(key)
            if field is not None and _has_reference_shape(field, item):
                out[field.output_key] = visit(field, item)
            else:
                out[key] = _walk(item, fields, visit)
        return out
    if isinstance(value, list):
        return [_walk(item, fields, visit) for item in value]
    return value


def _has_reference_shape(field: ReferenceField, value: Any) -> bool:
    if field.many:
        return isinstance(value, list)
    return isinstance(value, str)


class ReferenceResolver:
    """
    Rewrites local-name references to remote ids.

    Unknown names are left in place (minus any override suffix), so
    forward references survive until their target has been applied.
    """

    def __init__(self, store: IdentifierStore) -> None:
        self.store = store

    def resolve_value(self, target: ResourceType | None, value: str) -> str:
        """Resolve a single reference value."""
        if is_remote_id(value):
            return value
        name = strip_override(value)
        if target is None:
            return self.store.credentials.get(name, name)
        return self.store.get(target, name) or name

    def resolve(self, resource_type: ResourceType, payload: dict[str, Any]) -> dict[str, Any]:
        """Deep copy of payload with every known reference replaced by its remote id."""

        def visit(field: ReferenceField, value: Any) -> Any:
            if field.many:
                return [
                    self.resolve_value(field.target, v) if isinstance(v, str) else v
                    for v in value
                ]
            return self.resolve_value(field.target, value)

        return _walk(payload, fields_for(resource_type), visit)

    def extract_references(
        self,
        resource_type: ResourceType,
        payload: dict[str, Any],
        include_cyclic: bool = True,
    ) -> dict[ResourceType, set[str]]:
        """
        Statically list referenced local ids per target type.

        Already-resolved remote ids and credential aliases are not
        reported. The payload is not modified.
        """
        found: dict[ResourceType, set[str]] = {}

        def visit(field: ReferenceField, value: Any) -> Any:
            if field.target is None or (field.cyclic and not include_cyclic):
                return value
            values = value if field.many else [value]
            for v in values:
                if isinstance(v, str) and not is_remote_id(v):
                    found.setdefault(field.target, set()).add(strip_override(v))
            return value

        _walk(payload, fields_for(resource_type), visit)
        return found

    def find_unresolved(
        self, resource_type: ResourceType, payload: dict[str, Any]
    ) -> list[tuple[str, str]]:
        """``(field, value)`` pairs whose value is not a remote id."""
        unresolved: list[tuple[str, str]] = []

        def visit(field: ReferenceField, value: Any) -> Any:
            values = value if field.many else [value]
            for v in values:
                if isinstance(v, str) and not is_remote_id(v):
                    unresolved.append((field.output_key, v))
            return value

        _walk(payload, fields_for(resource_type), visit)
        return unresolved


def cyclic_sections(resource_type: ResourceType, payload: dict[str, Any]) -> list[str]:
    """
    Top-level keys whose subtree holds a cyclic reference field.

    These are the keys sent in the second-pass link PATCH, named as
    they appear in a resolved payload.
    """
    cyclic = {f.key: f for f in REFERENCE_FIELDS[resource_type] if f.cyclic}
    if not cyclic:
        return []

    def contains(value: Any) -> bool:
        if isinstance(value, dict):
            return any(
                (k in cyclic and _has_reference_shape(cyclic[k], v)) or contains(v)
                for k, v in value.items()
            )
        if isinstance(value, list):
            return any(contains(item) for item in value)
        return False

    sections: list[str] = []
    for key, value in payload.items():
        field = cyclic.get(key)
        if field is not None and _has_reference_shape(field, value):
            name = field.output_key
        elif contains(value):
            name = key
        else:
            continue
        if name not in sections:
            sections.append(name)
    return sections


def strip_unresolved_cyclic(resource_type: ResourceType, payload: dict[str, Any]) -> dict[str, Any]:
    """
    Remove cyclic references that are still local names.

    List fields keep only their remote ids (and are dropped when
    empty). A mapping inside a list whose cyclic scalar is unresolved
    is dropped whole, e.g. a handoff destination whose assistant does
    not exist yet.
    """
    cyclic = {f.output_key: f for f in REFERENCE_FIELDS[resource_type] if f.cyclic}
    if not cyclic:
        return payload

    def dangling(item: Any) -> bool:
        return isinstance(item, dict) and any(
            not cyclic[k].many and isinstance(v, str) and not is_remote_id(v)
            for k, v in item.items()
            if k in cyclic
        )

    def clean(value: Any) -> Any:
        if isinstance(value, dict):
            out: dict[str, Any] = {}
            for key, item in value.items():
                field = cyclic.get(key)
                if field is not None and field.many and isinstance(item, list):
                    kept = [v for v in item if is_remote_id(v)]
                    if kept:
                        out[key] = kept
                elif field is not None and isinstance(item, str):
                    if is_remote_id(item):
                        out[key] = item
                else:
                    out[key] = clean(item)
            return out
        if isinstance(value, list):
            return [clean(item) for item in value if not dangling(item)]
        return value

    return clean(payload)
