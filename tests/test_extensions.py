"""Tests for extension providers exposed as tools and resources."""

import json
import sys
import types
from datetime import date

import pytest

from mcp_vault.config import VaultConfig
from mcp_vault.daily_notes import StaticDailyNoteProvider
from mcp_vault.engine import VaultEngine
from mcp_vault.errors import NotFound, UnsupportedScheme
from mcp_vault.extensions import (
    ExtensionSet,
    QueryResult,
    format_choices_markdown,
    load_extensions,
    resolve_block_date,
)
from mcp_vault.models import AddressScheme, CapabilityTier
from mcp_vault.repository import MemoryRepository
from mcp_vault.tools import Dispatcher, make_tools

from conftest import SAMPLE_DOCUMENTS, fixed_clock, make_token


class FakeQueryProvider:
    def __init__(self, enabled=True):
        self.enabled = enabled
        self.queries = []

    def is_enabled(self):
        return self.enabled

    def query_markdown(self, query):
        self.queries.append(query)
        if query.startswith("BAD"):
            return QueryResult(successful=False, error="Parsing failed")
        return QueryResult(successful=True, value="- [[a]]\n- [[b]]")


class FakeQuickCapture:
    def __init__(self):
        self.executed = []

    def is_enabled(self):
        return True

    def get_choices(self):
        return [
            {"id": "c1", "name": "Log", "type": "Capture"},
            {"id": "t1", "name": "Meeting", "type": "Template"},
        ]

    async def execute_choice(self, choice, variables=None):
        self.executed.append((choice, variables))


class FakeTaskTracker:
    def __init__(self):
        self.created = []
        self.updated = []
        self.filters = []

    def is_enabled(self):
        return True

    def query_tasks(self, task_filter):
        self.filters.append(task_filter)
        return [
            {"path": "tasks/open.md", "title": "Open"},
            {"path": "secret/hidden.md", "title": "Hidden"},
        ]

    def get_stats(self):
        return {"total": 2, "statuses": ["open", "done"]}

    def create_task(self, data):
        self.created.append(data)
        return {"path": "tasks/new.md", **data}

    def update_task(self, path, updates):
        self.updated.append((path, updates))
        return {"path": path, **updates}


class FakeTimeBlocks:
    def __init__(self):
        self.blocks = {}

    def is_enabled(self):
        return True

    def get_timeblocks(self, date):
        return self.blocks.get(date, [])

    def create_timeblock(self, date, block):
        block = {"id": f"b{len(self.blocks.get(date, [])) + 1}", **block}
        self.blocks.setdefault(date, []).append(block)
        return block

    def update_timeblock(self, date, block_id, updates):
        for block in self.blocks.get(date, []):
            if block["id"] == block_id:
                block.update(updates)
                return block
        raise KeyError(block_id)

    def delete_timeblock(self, date, block_id):
        self.blocks[date] = [b for b in self.blocks.get(date, []) if b["id"] != block_id]


@pytest.fixture
def providers():
    return ExtensionSet(
        structured_query=FakeQueryProvider(),
        task_tracking=FakeTaskTracker(),
        quick_capture=FakeQuickCapture(),
        time_blocks=FakeTimeBlocks(),
    )


@pytest.fixture
def ext_engine(providers, daily_provider):
    return VaultEngine(
        MemoryRepository(dict(SAMPLE_DOCUMENTS)),
        daily_notes=daily_provider,
        extensions=providers,
        clock=fixed_clock,
    )


@pytest.fixture
def dispatcher(ext_engine):
    return Dispatcher(make_tools(ext_engine))


class TestRegistration:
    """Extension tools and resources follow capability tiers."""

    def test_tools_by_tier(self, dispatcher):
        restricted = dispatcher.registry.names(make_token(CapabilityTier.RESTRICTED))
        read_only = dispatcher.registry.names(make_token(CapabilityTier.READ_ONLY))
        full = dispatcher.registry.names(make_token(CapabilityTier.FULL))

        assert "dataview_query" not in restricted
        assert {"dataview_query", "quickadd_list", "tasknotes_query", "timeblocks_query"} <= set(read_only)
        assert not {"quickadd_execute", "tasknotes", "timeblocks"} & set(read_only)
        assert {"quickadd_execute", "tasknotes", "timeblocks"} <= set(full)

    def test_disabled_provider_registers_nothing(self, daily_provider):
        engine = VaultEngine(
            MemoryRepository(),
            daily_notes=daily_provider,
            extensions=ExtensionSet(structured_query=FakeQueryProvider(enabled=False)),
            clock=fixed_clock,
        )
        assert "dataview_query" not in make_tools(engine)
        assert engine.resources.names(make_token(CapabilityTier.FULL)) == ["file", "daily"]

    def test_resource_schemes_by_tier(self, ext_engine):
        assert ext_engine.resources.names(make_token(CapabilityTier.RESTRICTED)) == ["file", "daily"]
        assert ext_engine.resources.names(make_token(CapabilityTier.READ_ONLY)) == [
            "file", "daily", "tasknotes", "quickadd", "timeblocks",
        ]


class TestResources:
    """Tests for extension resources."""

    @pytest.mark.asyncio
    async def test_tasknotes_stats(self, ext_engine, read_only_token):
        content = await ext_engine.resources.read("tasknotes:///stats", read_only_token)
        assert json.loads(content.text) == {"total": 2, "statuses": ["open", "done"]}

    @pytest.mark.asyncio
    async def test_gated_for_restricted(self, ext_engine, restricted_token):
        with pytest.raises(NotFound, match="Resource not found: tasknotes:///stats"):
            await ext_engine.resources.read("tasknotes:///stats", restricted_token)

    @pytest.mark.asyncio
    async def test_quickadd_choices(self, ext_engine, read_only_token):
        content = await ext_engine.resources.read("quickadd:///choices", read_only_token)
        assert "## Capture Choices" in content.text
        assert "`t1`" in content.text

    @pytest.mark.asyncio
    async def test_timeblocks_alias(self, ext_engine, providers, read_only_token):
        providers.time_blocks.blocks["2023-05-10"] = [{"id": "b1", "title": "Plan"}]
        content = await ext_engine.resources.read("timeblocks:///tomorrow", read_only_token)
        assert json.loads(content.text) == {"date": "2023-05-10", "timeblocks": [{"id": "b1", "title": "Plan"}]}

    @pytest.mark.asyncio
    async def test_get_contents_routes_extension_uri(self, ext_engine, read_only_token):
        content = await ext_engine.get_contents("tasknotes:///stats", read_only_token)
        assert json.loads(content.text)["total"] == 2

    @pytest.mark.asyncio
    async def test_gated_scheme_matches_unknown_scheme(self, dispatcher, restricted_token):
        """A scheme above the token's tier reads exactly like one never registered."""
        gated = await dispatcher.handle("get_contents", restricted_token, {"uri": "tasknotes:///stats"})
        unknown = await dispatcher.handle("get_contents", restricted_token, {"uri": "nosuch:///stats"})

        assert gated == {
            "success": False,
            "error": "Resource not found: tasknotes:///stats",
            "error_type": "not_found",
        }
        assert unknown == {
            "success": False,
            "error": "Resource not found: nosuch:///stats",
            "error_type": "not_found",
        }

    @pytest.mark.asyncio
    async def test_resolver_accepts_only_visible_schemes(self, ext_engine, restricted_token, read_only_token):
        resolved = await ext_engine.resolver.resolve("tasknotes:///stats", token=read_only_token)
        assert resolved.scheme == AddressScheme.EXTENSION
        with pytest.raises(UnsupportedScheme):
            await ext_engine.resolver.resolve("tasknotes:///stats", token=restricted_token)

    @pytest.mark.asyncio
    async def test_list_files_does_not_leak_schemes(self, dispatcher, restricted_token):
        gated = await dispatcher.handle("list_files", restricted_token, {"path": "tasknotes:///stats"})
        unknown = await dispatcher.handle("list_files", restricted_token, {"path": "nosuch:///stats"})

        assert gated["error_type"] == unknown["error_type"] == "unsupported_scheme"
        assert "tasknotes" not in unknown["error"]
        assert "quickadd" not in gated["error"]


class TestStructuredQuery:
    """Tests for dataview_query."""

    @pytest.mark.asyncio
    async def test_query(self, dispatcher, read_only_token):
        result = await dispatcher.handle("dataview_query", read_only_token, {"query": "LIST FROM #a"})
        assert result == {"success": True, "content": "- [[a]]\n- [[b]]"}

    @pytest.mark.asyncio
    async def test_failed_query(self, dispatcher, read_only_token):
        result = await dispatcher.handle("dataview_query", read_only_token, {"query": "BAD QUERY"})
        assert result["error_type"] == "extension_error"
        assert "Parsing failed" in result["error"]

    @pytest.mark.asyncio
    async def test_provider_disabled_later(self, dispatcher, providers, read_only_token):
        providers.structured_query.enabled = False
        result = await dispatcher.handle("dataview_query", read_only_token, {"query": "LIST"})
        assert result["error"] == "Dataview plugin is not enabled"


class TestQuickCapture:
    """Tests for quickadd tools."""

    @pytest.mark.asyncio
    async def test_list(self, dispatcher, read_only_token):
        result = await dispatcher.handle("quickadd_list", read_only_token, {})
        assert result["count"] == 2

    @pytest.mark.asyncio
    async def test_execute(self, dispatcher, providers, full_token):
        result = await dispatcher.handle(
            "quickadd_execute", full_token, {"choice": "Log", "variables": {"value": "x"}}
        )
        assert result["success"] is True
        assert providers.quick_capture.executed == [("Log", {"value": "x"})]

    @pytest.mark.asyncio
    async def test_execute_bad_variables(self, dispatcher, full_token):
        result = await dispatcher.handle("quickadd_execute", full_token, {"choice": "Log", "variables": "x"})
        assert result["error_type"] == "invalid_arguments"


class TestTaskTracking:
    """Tests for tasknotes tools."""

    @pytest.mark.asyncio
    async def test_query_filters_by_policy(self, dispatcher, providers, no_secret_token):
        result = await dispatcher.handle("tasknotes_query", no_secret_token, {"status": ["open"], "limit": 5})
        assert [t["path"] for t in result["tasks"]] == ["tasks/open.md"]
        assert providers.task_tracking.filters[0] == {"status": ["open"], "limit": 5, "offset": 0}

    @pytest.mark.asyncio
    async def test_due_range(self, dispatcher, providers, read_only_token):
        await dispatcher.handle("tasknotes_query", read_only_token, {"due_before": "2023-06-01"})
        assert providers.task_tracking.filters[0]["due"] == {"before": "2023-06-01", "after": None}

    @pytest.mark.asyncio
    async def test_create(self, dispatcher, providers, full_token):
        result = await dispatcher.handle("tasknotes", full_token, {"title": "Write tests", "priority": "high"})
        assert result["task"]["path"] == "tasks/new.md"
        assert providers.task_tracking.created == [{"title": "Write tests", "priority": "high"}]

    @pytest.mark.asyncio
    async def test_create_requires_title(self, dispatcher, full_token):
        result = await dispatcher.handle("tasknotes", full_token, {"priority": "high"})
        assert result["error_type"] == "invalid_arguments"

    @pytest.mark.asyncio
    async def test_update_denied_path(self, dispatcher, providers, no_secret_token):
        result = await dispatcher.handle("tasknotes", no_secret_token, {"path": "secret/hidden.md", "status": "done"})
        assert result["error_type"] == "access_denied"
        assert providers.task_tracking.updated == []

    @pytest.mark.asyncio
    async def test_update(self, dispatcher, providers, full_token):
        result = await dispatcher.handle("tasknotes", full_token, {"path": "tasks/open.md", "status": "done"})
        assert result["task"] == {"path": "tasks/open.md", "status": "done"}

    @pytest.mark.asyncio
    async def test_update_uri_path(self, dispatcher, providers, full_token):
        result = await dispatcher.handle("tasknotes", full_token, {"path": "file:///tasks/open.md", "status": "done"})
        assert result["message"] == "Task updated: tasks/open.md"
        assert providers.task_tracking.updated == [("tasks/open.md", {"status": "done"})]

    @pytest.mark.asyncio
    async def test_update_rejects_resource_uri(self, dispatcher, providers, full_token):
        result = await dispatcher.handle("tasknotes", full_token, {"path": "tasknotes:///stats", "status": "done"})
        assert result["error_type"] == "invalid_arguments"
        assert providers.task_tracking.updated == []

    @pytest.mark.asyncio
    async def test_update_uri_path_checked_against_policy(self, dispatcher, providers, no_secret_token):
        result = await dispatcher.handle(
            "tasknotes", no_secret_token, {"path": "file:///secret/hidden.md", "status": "done"}
        )
        assert result["error_type"] == "access_denied"
        assert providers.task_tracking.updated == []


class TestTimeBlocks:
    """Tests for timeblocks tools."""

    @pytest.mark.asyncio
    async def test_create_query_update_delete(self, dispatcher, full_token):
        created = await dispatcher.handle(
            "timeblocks",
            full_token,
            {"date": "today", "title": "Focus", "startTime": "09:00", "endTime": "10:00"},
        )
        block_id = created["timeblock"]["id"]

        listed = await dispatcher.handle("timeblocks_query", full_token, {"date": "2023-05-09"})
        assert listed["date"] == "2023-05-09"
        assert [b["title"] for b in listed["timeblocks"]] == ["Focus"]

        updated = await dispatcher.handle(
            "timeblocks", full_token, {"date": "today", "id": block_id, "title": "Deep work"}
        )
        assert updated["timeblock"]["title"] == "Deep work"

        deleted = await dispatcher.handle("timeblocks", full_token, {"date": "today", "id": block_id, "delete": True})
        assert deleted == {"success": True, "deleted": block_id}

    @pytest.mark.asyncio
    async def test_create_requires_times(self, dispatcher, full_token):
        result = await dispatcher.handle("timeblocks", full_token, {"date": "today", "title": "Focus"})
        assert "startTime" in result["error"]

    @pytest.mark.asyncio
    async def test_denied_daily_folder(self, dispatcher):
        token = make_token(CapabilityTier.FULL, rules=[("/", True), ("daily", False)])
        result = await dispatcher.handle(
            "timeblocks", token, {"date": "today", "title": "x", "startTime": "09:00", "endTime": "10:00"}
        )
        assert result["error_type"] == "access_denied"

    @pytest.mark.asyncio
    async def test_hidden_daily_folder_hides_blocks(self, dispatcher, providers):
        providers.time_blocks.blocks["2023-05-08"] = [{"id": "b1", "title": "Plan"}]
        token = make_token(CapabilityTier.READ_ONLY, rules=[("/", True), ("daily", False)])

        result = await dispatcher.handle("timeblocks_query", token, {"date": "yesterday"})

        assert result == {
            "success": False,
            "error": "No time blocks found for 2023-05-08",
            "error_type": "not_found",
        }

    @pytest.mark.asyncio
    async def test_hidden_daily_folder_hides_block_resource(self, ext_engine, providers):
        providers.time_blocks.blocks["2023-05-08"] = [{"id": "b1", "title": "Plan"}]
        token = make_token(CapabilityTier.READ_ONLY, rules=[("/", True), ("daily", False)])

        with pytest.raises(NotFound, match="No time blocks found for 2023-05-08"):
            await ext_engine.resources.read("timeblocks:///yesterday", token)

    def test_resolve_block_date_accepts_iso_with_other_format(self):
        engine = VaultEngine(
            MemoryRepository(),
            daily_notes=StaticDailyNoteProvider("DD.MM.YYYY"),
            clock=fixed_clock,
        )
        assert resolve_block_date(engine, "09.05.2023") == date(2023, 5, 9)
        assert resolve_block_date(engine, "2023-05-09") == date(2023, 5, 9)
        assert resolve_block_date(engine, None) == date(2023, 5, 9)


class TestLoadExtensions:
    """Tests for load_extensions."""

    def test_loads_factory(self, temp_vault):
        config = VaultConfig(vault_root=temp_vault, extensions={"structured_query": "tests_fake_ext:make"})
        module = types.ModuleType("tests_fake_ext")
        module.make = lambda cfg: FakeQueryProvider()
        sys.modules["tests_fake_ext"] = module
        try:
            extensions = load_extensions(config)
        finally:
            del sys.modules["tests_fake_ext"]

        assert isinstance(extensions.structured_query, FakeQueryProvider)
        assert extensions.task_tracking is None

    def test_unknown_kind(self, temp_vault):
        config = VaultConfig(vault_root=temp_vault, extensions={"calendar": "x:y"})
        with pytest.raises(ValueError, match="Unknown extension kind"):
            load_extensions(config)

    def test_bad_target(self, temp_vault):
        config = VaultConfig(vault_root=temp_vault, extensions={"structured_query": "no_colon"})
        with pytest.raises(ValueError, match="package.module:factory"):
            load_extensions(config)


def test_format_choices_empty():
    assert format_choices_markdown([]) == "No QuickAdd choices found"
