"""Tests for the apply engine."""

import json

import httpx
import pytest

from vapi_gitops.errors import DependencyCycleError, FatalApplyError
from vapi_gitops.models.resources import PLATFORM_DEFAULT_KEY, ResourceType
from vapi_gitops.services import resolver as resolver_module
from vapi_gitops.services.apply import ApplyEngine, ApplyScope, matches_path
from vapi_gitops.services.resolver import ReferenceField

TOOLS = ResourceType.TOOLS
OUTPUTS = ResourceType.STRUCTURED_OUTPUTS
ASSISTANTS = ResourceType.ASSISTANTS
SQUADS = ResourceType.SQUADS


@pytest.fixture
def build_engine(client, config, store_factory, loader_factory):
    """Build an engine over fixed documents and a temp-file store."""

    def build(documents, store=None):
        store = store if store is not None else store_factory()
        return ApplyEngine(client, store, loader_factory(documents), config)

    return build


def paths(platform, method):
    return [path for _, path, _ in platform.calls(method)]


class TestMatchesPath:
    """Test file path scoping."""

    def test_matches_full_and_relative_paths(self, make_doc) -> None:
        doc = make_doc("support/booking", folder="assistants")

        assert matches_path(doc, "resources/assistants/support/booking.yml", "assistants")
        assert matches_path(doc, "./assistants/support/booking.yml", "assistants")
        assert matches_path(doc, "assistants/support/booking.md", "assistants")
        assert matches_path(doc, "support/booking.md", "assistants")
        assert matches_path(doc, "support/booking", "assistants")

    def test_rejects_other_files(self, make_doc) -> None:
        doc = make_doc("support/booking", folder="assistants")

        assert not matches_path(doc, "assistants/billing.yml", "assistants")

    def test_type_folder_in_path_restricts_type(self, make_doc) -> None:
        tool = make_doc("billing", folder="tools")

        assert not matches_path(tool, "resources/assistants/billing.yml", "tools")
        assert not matches_path(tool, "assistants/billing", "tools")
        assert matches_path(tool, "tools/billing.yml", "tools")

    def test_matches_whole_segments_only(self, make_doc) -> None:
        doc = make_doc("booking", folder="assistants")

        assert not matches_path(doc, "ing.yml", "assistants")
        assert not matches_path(doc, "assistants/ing.yml", "assistants")
        assert not matches_path(doc, "rebooking", "assistants")


class TestApplyCycle:
    """Test create-then-update across runs."""

    @pytest.mark.asyncio
    async def test_second_run_updates_instead_of_creating(self, build_engine, make_doc, platform) -> None:
        tool = make_doc("lookup-order", {"type": "function", "function": {"name": "lookup_order"}})
        engine = build_engine({TOOLS: [tool]})

        async with engine.client:
            first = await engine.run()
            remote_id = engine.store.get(TOOLS, "lookup-order")
            second = await engine.run()

        assert first.created == {TOOLS: ["lookup-order"]}
        assert second.updated == {TOOLS: ["lookup-order"]}
        assert second.created == {}
        assert [r[:2] for r in platform.requests] == [
            ("POST", "/tool"),
            ("PATCH", f"/tool/{remote_id}"),
        ]
        # "type" cannot be changed on an existing tool
        assert platform.requests[1][2] == {"function": {"name": "lookup_order"}}

    @pytest.mark.asyncio
    async def test_state_is_persisted(self, build_engine, make_doc) -> None:
        engine = build_engine({TOOLS: [make_doc("lookup-order", {"type": "function"})]})

        async with engine.client:
            await engine.run()

        saved = json.loads(engine.store.path.read_text())
        assert saved["tools"] == {"lookup-order": engine.store.get(TOOLS, "lookup-order")}
        assert saved["credentials"] == {}

    @pytest.mark.asyncio
    async def test_run_without_changes_writes_no_state(self, build_engine, platform) -> None:
        engine = build_engine({})

        async with engine.client:
            await engine.run()

        assert platform.requests == []
        assert not engine.store.path.exists()

    @pytest.mark.asyncio
    async def test_unchanged_second_run_leaves_state_file_alone(self, build_engine, make_doc) -> None:
        engine = build_engine({TOOLS: [make_doc("lookup-order", {"type": "function"})]})

        async with engine.client:
            await engine.run()
            # Compact rewrite: a second persist would reformat it
            saved = json.loads(engine.store.path.read_text())
            engine.store.path.write_text(json.dumps(saved))
            await engine.run()

        assert engine.store.path.read_text() == json.dumps(saved)
        assert not engine.store.dirty

    @pytest.mark.asyncio
    async def test_local_metadata_is_not_sent(self, build_engine, make_doc, platform) -> None:
        engine = build_engine({TOOLS: [make_doc("lookup-order", {"type": "function", "_notes": "wip"})]})

        async with engine.client:
            await engine.run()

        assert platform.requests[0][2] == {"type": "function"}

    @pytest.mark.asyncio
    async def test_update_exclusions_and_schema_override(
        self, build_engine, make_doc, store_factory, platform, unique_id
    ) -> None:
        store = store_factory({"structuredOutputs": {"call-summary": unique_id}})
        doc = make_doc(
            "call-summary",
            {
                "id": "stale",
                "createdAt": "2024-01-01",
                "name": "call_summary",
                "schema": {"type": "object"},
            },
        )
        engine = build_engine({OUTPUTS: [doc]}, store=store)

        async with engine.client:
            await engine.run()

        assert platform.requests == [
            (
                "PATCH",
                f"/structured-output/{unique_id}?schemaOverride=true",
                {"name": "call_summary", "schema": {"type": "object"}},
            )
        ]

    @pytest.mark.asyncio
    async def test_platform_defaults_are_skipped(
        self, build_engine, make_doc, store_factory, platform, unique_id
    ) -> None:
        store = store_factory({"tools": {"end-call": unique_id}})
        default = make_doc("end-call", {PLATFORM_DEFAULT_KEY: True, "type": "endCall"})
        engine = build_engine({TOOLS: [default]}, store=store)

        async with engine.client:
            result = await engine.run(force_delete=True)

        assert platform.requests == []
        assert result.deletion.total_found == 0
        assert store.get(TOOLS, "end-call") == unique_id


class TestDependencies:
    """Test automatic dependency application."""

    @pytest.fixture
    def chain(self, make_doc):
        return {
            TOOLS: [make_doc("lookup-order", {"type": "function"})],
            ASSISTANTS: [make_doc("booking", {"name": "Booking", "model": {"toolIds": ["lookup-order"]}})],
            SQUADS: [make_doc("front-desk", {"members": [{"assistantId": "booking"}]})],
        }

    @pytest.mark.asyncio
    async def test_type_filter_applies_missing_dependencies_first(
        self, build_engine, chain, platform, log_capture
    ) -> None:
        engine = build_engine(chain)

        async with engine.client:
            result = await engine.run(ApplyScope(resource_types=(SQUADS,)))

        assert paths(platform, "POST") == ["/tool", "/assistant", "/squad"]
        tool_id = engine.store.get(TOOLS, "lookup-order")
        assistant_id = engine.store.get(ASSISTANTS, "booking")
        assert platform.requests[1][2]["model"]["toolIds"] == [tool_id]
        assert platform.requests[2][2] == {"members": [{"assistantId": assistant_id}]}
        assert result.auto_applied == [(TOOLS, "lookup-order"), (ASSISTANTS, "booking")]
        assert "Auto-applying dependency -> assistant: booking" in log_capture.getvalue()

    @pytest.mark.asyncio
    async def test_existing_dependencies_are_not_reapplied(
        self, build_engine, chain, store_factory, platform, unique_id
    ) -> None:
        store = store_factory({"assistants": {"booking": unique_id}})
        engine = build_engine(chain, store=store)

        async with engine.client:
            result = await engine.run(ApplyScope(resource_types=(SQUADS,)))

        assert [r[:2] for r in platform.requests] == [("POST", "/squad")]
        assert result.auto_applied == []

    @pytest.mark.asyncio
    async def test_shared_dependency_is_applied_once(
        self, build_engine, chain, make_doc, platform
    ) -> None:
        chain[ASSISTANTS].insert(0, make_doc("billing", {"model": {"toolIds": ["lookup-order"]}}))
        engine = build_engine(chain)

        async with engine.client:
            result = await engine.run(ApplyScope(resource_types=(ASSISTANTS,)))

        assert paths(platform, "POST") == ["/tool", "/assistant", "/assistant"]
        assert result.auto_applied == [(TOOLS, "lookup-order")]
        assert result.created[ASSISTANTS] == ["billing", "booking"]

    @pytest.mark.asyncio
    async def test_cycle_without_linkable_field_is_rejected(
        self, build_engine, make_doc, monkeypatch, platform
    ) -> None:
        monkeypatch.setitem(
            resolver_module.REFERENCE_FIELDS,
            TOOLS,
            (ReferenceField("assistantId", ASSISTANTS),),
        )
        engine = build_engine(
            {
                TOOLS: [make_doc("escalate", {"assistantId": "supervisor"})],
                ASSISTANTS: [make_doc("supervisor", {"model": {"toolIds": ["escalate"]}})],
            }
        )

        async with engine.client:
            with pytest.raises(DependencyCycleError) as exc_info:
                await engine.run()

        assert exc_info.value.chain == ["tools/escalate", "assistants/supervisor", "tools/escalate"]
        assert platform.requests == []


class TestCyclicLinking:
    """Test the second pass that closes reference cycles."""

    @pytest.mark.asyncio
    async def test_handoff_tool_is_linked_after_assistant_exists(
        self, build_engine, make_doc, platform
    ) -> None:
        tool = make_doc(
            "transfer-to-billing",
            {
                "type": "handoff",
                "destinations": [{"type": "assistant", "assistantId": "billing##disputes"}],
            },
        )
        assistant = make_doc("billing", {"name": "Billing", "model": {"toolIds": ["transfer-to-billing"]}})
        engine = build_engine({TOOLS: [tool], ASSISTANTS: [assistant]})

        async with engine.client:
            result = await engine.run()

        tool_id = engine.store.get(TOOLS, "transfer-to-billing")
        assistant_id = engine.store.get(ASSISTANTS, "billing")
        assert platform.requests == [
            ("POST", "/tool", {"type": "handoff", "destinations": []}),
            ("POST", "/assistant", {"name": "Billing", "model": {"toolIds": [tool_id]}}),
            (
                "PATCH",
                f"/tool/{tool_id}",
                {"destinations": [{"type": "assistant", "assistantId": assistant_id}]},
            ),
        ]
        assert result.linked == {TOOLS: ["transfer-to-billing"]}
        assert result.warnings == []

    @pytest.mark.asyncio
    async def test_linked_resources_need_no_second_link(self, build_engine, make_doc, platform) -> None:
        tool = make_doc("transfer", {"type": "handoff", "destinations": [{"assistantId": "billing"}]})
        assistant = make_doc("billing", {"model": {"toolIds": ["transfer"]}})
        engine = build_engine({TOOLS: [tool], ASSISTANTS: [assistant]})

        async with engine.client:
            await engine.run()
            platform.requests.clear()
            result = await engine.run()

        assert [r[0] for r in platform.requests] == ["PATCH", "PATCH"]
        assert result.linked == {}

    @pytest.mark.asyncio
    async def test_structured_output_assistant_ids_are_linked(
        self, build_engine, make_doc, platform
    ) -> None:
        output = make_doc("call-summary", {"name": "call_summary", "assistant_ids": ["billing"]})
        assistant = make_doc("billing", {"artifactPlan": {"structuredOutputIds": ["call-summary"]}})
        engine = build_engine({OUTPUTS: [output], ASSISTANTS: [assistant]})

        async with engine.client:
            result = await engine.run()

        output_id = engine.store.get(OUTPUTS, "call-summary")
        assistant_id = engine.store.get(ASSISTANTS, "billing")
        assert platform.requests[0] == ("POST", "/structured-output", {"name": "call_summary"})
        assert platform.requests[1][2] == {"artifactPlan": {"structuredOutputIds": [output_id]}}
        assert platform.requests[2] == (
            "PATCH",
            f"/structured-output/{output_id}",
            {"assistantIds": [assistant_id]},
        )
        assert result.linked == {OUTPUTS: ["call-summary"]}

    @pytest.mark.asyncio
    async def test_missing_cyclic_target_warns(self, build_engine, make_doc, platform) -> None:
        tool = make_doc("transfer", {"type": "handoff", "destinations": [{"assistantId": "ghost"}]})
        engine = build_engine({TOOLS: [tool]})

        async with engine.client:
            result = await engine.run()

        assert len(platform.requests) == 1
        assert [(w.field, w.value) for w in result.warnings] == [("assistantId", "ghost")]


class TestScopeAndDeletion:
    """Test partial runs and orphan handling during apply."""

    @pytest.mark.asyncio
    async def test_file_scope_never_deletes_other_types(
        self, build_engine, make_doc, store_factory, platform
    ) -> None:
        store = store_factory(
            {"tools": {"old-tool": "uuid-1"}, "structuredOutputs": {"old-output": "uuid-2"}}
        )
        assistant = make_doc("billing", {"name": "Billing"}, folder="assistants")
        engine = build_engine({ASSISTANTS: [assistant]}, store=store)

        async with engine.client:
            result = await engine.run(
                ApplyScope(file_paths=("assistants/billing.yml",)), force_delete=True
            )

        assert paths(platform, "DELETE") == []
        assert paths(platform, "POST") == ["/assistant"]
        assert result.deletion.total_found == 0
        assert store.get(TOOLS, "old-tool") == "uuid-1"

    @pytest.mark.asyncio
    async def test_file_scope_ignores_same_named_resource_of_other_type(
        self, build_engine, make_doc, store_factory, platform
    ) -> None:
        store = store_factory({"tools": {"old-tool": "uuid-1"}})
        engine = build_engine(
            {
                TOOLS: [make_doc("billing", {"type": "function"}, folder="tools")],
                ASSISTANTS: [make_doc("billing", {"name": "Billing"}, folder="assistants")],
            },
            store=store,
        )

        async with engine.client:
            result = await engine.run(
                ApplyScope(file_paths=("resources/assistants/billing.yml",)), force_delete=True
            )

        assert [r[:2] for r in platform.requests] == [("POST", "/assistant")]
        assert result.created == {ASSISTANTS: ["billing"]}
        assert store.get(TOOLS, "old-tool") == "uuid-1"

    @pytest.mark.asyncio
    async def test_full_run_deletes_orphans_with_force(
        self, build_engine, make_doc, store_factory, platform
    ) -> None:
        store = store_factory({"tools": {"old-tool": "uuid-123"}})
        engine = build_engine({TOOLS: [make_doc("lookup-order", {"type": "function"})]}, store=store)

        async with engine.client:
            result = await engine.run(force_delete=True)

        assert platform.requests[0] == ("DELETE", "/tool/uuid-123", None)
        assert result.deletion.total_deleted == 1
        assert "old-tool" not in json.loads(store.path.read_text())["tools"]

    @pytest.mark.asyncio
    async def test_full_run_without_force_keeps_orphans(
        self, build_engine, make_doc, store_factory, platform
    ) -> None:
        store = store_factory({"tools": {"old-tool": "uuid-123"}})
        engine = build_engine({TOOLS: [make_doc("lookup-order", {"type": "function"})]}, store=store)

        async with engine.client:
            result = await engine.run()

        assert paths(platform, "DELETE") == []
        assert result.deletion.total_found == 1
        assert store.get(TOOLS, "old-tool") == "uuid-123"


class TestFailures:
    """Test that failures abort the run without losing progress."""

    @pytest.mark.asyncio
    async def test_failure_aborts_and_persists_progress(
        self, build_engine, make_doc, platform, unique_id
    ) -> None:
        platform.script(
            "POST",
            "/tool",
            httpx.Response(201, json={"id": unique_id}),
            httpx.Response(400, json={"message": "function.name is required"}),
        )
        engine = build_engine(
            {
                TOOLS: [make_doc("a-tool", {"type": "function"}), make_doc("b-tool", {"type": "function"})],
                ASSISTANTS: [make_doc("billing", {"name": "Billing"})],
            }
        )

        async with engine.client:
            with pytest.raises(FatalApplyError) as exc_info:
                await engine.run()

        assert exc_info.value.local_id == "b-tool"
        assert exc_info.value.__cause__.message == "function.name is required"
        assert paths(platform, "POST") == ["/tool", "/tool"]
        saved = json.loads(engine.store.path.read_text())
        assert saved["tools"] == {"a-tool": unique_id}

    @pytest.mark.asyncio
    async def test_create_without_id_is_fatal(self, build_engine, make_doc, platform) -> None:
        platform.script("POST", "/tool", httpx.Response(201, json={"name": "x"}))
        engine = build_engine({TOOLS: [make_doc("lookup-order", {"type": "function"})]})

        async with engine.client:
            with pytest.raises(FatalApplyError) as exc_info:
                await engine.run()

        assert exc_info.value.__cause__.status_code == 0
        assert engine.store.get(TOOLS, "lookup-order") is None


class TestResult:
    """Test warnings and summaries."""

    @pytest.mark.asyncio
    async def test_unresolved_references_are_warnings(
        self, build_engine, make_doc, platform, log_capture
    ) -> None:
        assistant = make_doc("billing", {"model": {"toolIds": ["missing-tool"]}, "credentialId": "crm"})
        engine = build_engine({ASSISTANTS: [assistant]})

        async with engine.client:
            result = await engine.run()

        assert platform.requests[0][2]["model"]["toolIds"] == ["missing-tool"]
        assert [(w.field, w.value) for w in result.warnings] == [
            ("toolIds", "missing-tool"),
            ("credentialId", "crm"),
        ]
        assert "Unresolved reference in assistants/billing" in log_capture.getvalue()

    @pytest.mark.asyncio
    async def test_summary_lines(self, build_engine, make_doc) -> None:
        engine = build_engine({TOOLS: [make_doc("lookup-order", {"type": "function"})]})

        async with engine.client:
            result = await engine.run()

        full = result.summary_lines(engine.store, partial=False)
        assert full[0] == "Summary:"
        assert "  Tools: 1" in full
        assert "  Assistants: 0" in full
        assert result.summary_lines(engine.store, partial=True) == [
            "Applied 1 resource(s):",
            "  Tools: 1",
        ]
