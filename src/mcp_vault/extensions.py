"""Third-party extension providers surfaced as tools and resources.

Four kinds of providers can be plugged in: a structured-query engine, a
task tracker, a quick-capture engine and a time-block planner. Their query
languages and storage are their own business; this module only adapts their
results into addressable resources and capability-tiered tools. Providers
may implement their methods synchronously or as coroutines.
"""

from __future__ import annotations

import importlib
import inspect
import json
import logging
from dataclasses import dataclass, fields
from datetime import date as _date
from typing import TYPE_CHECKING, Any, Callable, Optional, Protocol

from .addressing import daily_note_path
from .dates import DAILY_ALIASES, DEFAULT_DATE_FORMAT, alias_date
from .errors import DailyAliasInvalid, ExtensionError, InvalidArguments, NotFound
from .models import AddressScheme, CapabilityTier, CapabilityToken
from .resources import JSON_MIME, MARKDOWN_MIME, ResourceContent, ResourceDescriptor, ResourceEntry
from .tools import ToolDescriptor, mutating_annotations, read_only_annotations, require_arg

if TYPE_CHECKING:
    from .config import VaultConfig
    from .engine import VaultEngine

logger = logging.getLogger(__name__)


@dataclass
class QueryResult:
    """Outcome of a structured query."""
    successful: bool
    value: Optional[str] = None
    error: Optional[str] = None


class StructuredQueryProvider(Protocol):
    def is_enabled(self) -> bool: ...

    def query_markdown(self, query: str) -> QueryResult: ...


class QuickCaptureProvider(Protocol):
    def is_enabled(self) -> bool: ...

    def get_choices(self) -> list[dict[str, Any]]: ...

    def execute_choice(self, choice: str, variables: Optional[dict[str, str]] = None) -> None: ...


class TaskTrackingProvider(Protocol):
    def is_enabled(self) -> bool: ...

    def query_tasks(self, task_filter: dict[str, Any]) -> list[dict[str, Any]]: ...

    def get_stats(self) -> dict[str, Any]: ...

    def create_task(self, data: dict[str, Any]) -> dict[str, Any]: ...

    def update_task(self, path: str, updates: dict[str, Any]) -> dict[str, Any]: ...


class TimeBlockProvider(Protocol):
    def is_enabled(self) -> bool: ...

    def get_timeblocks(self, date: str) -> list[dict[str, Any]]: ...

    def create_timeblock(self, date: str, block: dict[str, Any]) -> dict[str, Any]: ...

    def update_timeblock(self, date: str, block_id: str, updates: dict[str, Any]) -> dict[str, Any]: ...

    def delete_timeblock(self, date: str, block_id: str) -> None: ...


@dataclass
class ExtensionSet:
    """Configured extension providers; absent ones are None."""
    structured_query: Optional[StructuredQueryProvider] = None
    task_tracking: Optional[TaskTrackingProvider] = None
    quick_capture: Optional[QuickCaptureProvider] = None
    time_blocks: Optional[TimeBlockProvider] = None

    def enabled(self, kind: str) -> bool:
        provider = getattr(self, kind)
        return provider is not None and provider.is_enabled()


EXTENSION_KINDS = tuple(f.name for f in fields(ExtensionSet))


async def _call(func: Callable, *args: Any) -> Any:
    result = func(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def _import_target(target: str) -> Callable:
    module_name, _, attr = target.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Extension target must look like 'package.module:factory', got '{target}'")
    module = importlib.import_module(module_name)
    return getattr(module, attr)


def load_extensions(config: "VaultConfig") -> ExtensionSet:
    """Instantiate providers named in `[extensions]` as `module:factory`.

    Each factory is called with the VaultConfig and returns the provider.
    """
    providers = {}
    for kind, target in config.extensions.items():
        if kind not in EXTENSION_KINDS:
            raise ValueError(f"Unknown extension kind '{kind}'. Valid: {list(EXTENSION_KINDS)}")
        factory = _import_target(target)
        providers[kind] = factory(config)
        logger.info("Loaded %s extension from %s", kind, target)
    return ExtensionSet(**providers)


def _provider(engine: "VaultEngine", kind: str, label: str) -> Any:
    extensions = engine.extensions
    if extensions is None or not extensions.enabled(kind):
        raise ExtensionError(f"{label} is not enabled")
    return getattr(extensions, kind)


def resolve_block_date(engine: "VaultEngine", date: Optional[str]) -> _date:
    """Turn an alias, a daily-format date or an ISO date into a date for time blocks."""
    token = date or "today"
    fmt = DEFAULT_DATE_FORMAT
    if engine.resolver.daily_enabled():
        fmt = engine.resolver.daily_config().date_format
    try:
        return alias_date(token, engine.clock(), fmt)
    except DailyAliasInvalid:
        if fmt == DEFAULT_DATE_FORMAT:
            raise
        return alias_date(token, engine.clock(), DEFAULT_DATE_FORMAT)


def _block_note_path(engine: "VaultEngine", day: _date) -> str:
    """Time blocks live in the day's daily note."""
    if not engine.resolver.daily_enabled():
        return ""
    return daily_note_path(engine.resolver.daily_config(), day)


async def _require_block_read(engine: "VaultEngine", day: _date, token: CapabilityToken) -> None:
    path = _block_note_path(engine, day)
    if path and not await engine.can_read(path, token):
        raise NotFound(f"No time blocks found for {day.isoformat()}")


async def _require_block_write(engine: "VaultEngine", day: _date, token: CapabilityToken) -> None:
    await engine.check_writable(_block_note_path(engine, day), token)


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, default=str)


def format_choices_markdown(choices: list[dict[str, Any]]) -> str:
    """Group quick-capture choices by type into a markdown overview."""
    if not choices:
        return "No QuickAdd choices found"

    by_type: dict[str, list[dict[str, Any]]] = {}
    for choice in choices:
        by_type.setdefault(choice.get("type") or "Unknown", []).append(choice)

    lines = ["# Available QuickAdd Choices", ""]
    for choice_type, typed in by_type.items():
        lines += [f"## {choice_type} Choices", ""]
        for choice in typed:
            lines.append(f"### {choice.get('name', '')}")
            lines.append(f"- **ID**: `{choice.get('id', '')}`")
            lines.append("")
    return "\n".join(lines).rstrip()


# ========== Resources ==========

def register_extension_resources(engine: "VaultEngine", extensions: ExtensionSet) -> None:
    """Register resource schemes for providers enabled at startup."""
    if extensions.enabled("task_tracking"):
        engine.resources.register(_tasknotes_resource(engine))
    if extensions.enabled("quick_capture"):
        engine.resources.register(_quickadd_resource(engine))
    if extensions.enabled("time_blocks"):
        engine.resources.register(_timeblocks_resource(engine))


async def _no_completions(value: str, token: CapabilityToken) -> list[str]:
    return []


def _tasknotes_resource(engine: "VaultEngine") -> ResourceDescriptor:
    uri = "tasknotes:///stats"

    async def lister(token: CapabilityToken) -> list[ResourceEntry]:
        return [ResourceEntry(uri=uri, name="TaskNotes statistics", mime_type=JSON_MIME)]

    async def handler(requested: str, token: CapabilityToken) -> ResourceContent:
        provider = _provider(engine, "task_tracking", "TaskNotes plugin")
        stats = await _call(provider.get_stats)
        return ResourceContent(requested, _dump(stats), JSON_MIME)

    return ResourceDescriptor(
        scheme="tasknotes",
        description="Task statistics and available filter options (statuses, priorities, contexts, projects)",
        uri_template=uri,
        lister=lister,
        completer=_no_completions,
        handler=handler,
        required_tier=CapabilityTier.READ_ONLY,
        mime_type=JSON_MIME,
    )


def _quickadd_resource(engine: "VaultEngine") -> ResourceDescriptor:
    uri = "quickadd:///choices"

    async def lister(token: CapabilityToken) -> list[ResourceEntry]:
        return [ResourceEntry(uri=uri, name="QuickAdd choices")]

    async def handler(requested: str, token: CapabilityToken) -> ResourceContent:
        provider = _provider(engine, "quick_capture", "QuickAdd plugin")
        choices = await _call(provider.get_choices)
        return ResourceContent(requested, format_choices_markdown(choices), MARKDOWN_MIME)

    return ResourceDescriptor(
        scheme="quickadd",
        description="QuickAdd choices available for execution",
        uri_template=uri,
        lister=lister,
        completer=_no_completions,
        handler=handler,
        required_tier=CapabilityTier.READ_ONLY,
    )


def _timeblocks_resource(engine: "VaultEngine") -> ResourceDescriptor:
    async def lister(token: CapabilityToken) -> list[ResourceEntry]:
        return [
            ResourceEntry(uri=f"timeblocks:///{alias}", name=f"Timeblocks {alias}", mime_type=JSON_MIME)
            for alias in DAILY_ALIASES
        ]

    async def completer(value: str, token: CapabilityToken) -> list[str]:
        return [alias for alias in DAILY_ALIASES if alias.startswith(value)]

    async def handler(requested: str, token: CapabilityToken) -> ResourceContent:
        provider = _provider(engine, "time_blocks", "Timeblocks feature")
        address = engine.resolver.canonicalize(requested, token)
        day = resolve_block_date(engine, address.path or "today")
        await _require_block_read(engine, day, token)
        blocks = await _call(provider.get_timeblocks, day.isoformat())
        return ResourceContent(requested, _dump({"date": day.isoformat(), "timeblocks": blocks}), JSON_MIME)

    return ResourceDescriptor(
        scheme="timeblocks",
        description="Time blocks scheduled for a day (alias or date)",
        uri_template="timeblocks:///{date}",
        lister=lister,
        completer=completer,
        handler=handler,
        required_tier=CapabilityTier.READ_ONLY,
        mime_type=JSON_MIME,
    )


# ========== Tools ==========

_TASK_FILTER_KEYS = (
    "status", "priority", "archived", "tags", "contexts", "projects", "sort_by", "sort_direction",
)


def extension_tools(engine: "VaultEngine") -> list[ToolDescriptor]:
    """Tool descriptors for providers enabled at startup."""
    extensions = engine.extensions
    if extensions is None:
        return []

    tools: list[ToolDescriptor] = []

    if extensions.enabled("structured_query"):
        async def dataview_query(token: CapabilityToken, arguments: dict[str, Any]) -> dict[str, Any]:
            provider = _provider(engine, "structured_query", "Dataview plugin")
            query = require_arg(arguments, "query")
            result = await _call(provider.query_markdown, query)
            if not result.successful:
                raise ExtensionError(f"Query execution failed: {result.error}")
            return {"success": True, "content": result.value or ""}

        tools.append(ToolDescriptor(
            name="dataview_query",
            description=(
                "Executes a Dataview query (LIST, TABLE or TASK, refined with FROM, WHERE, SORT, "
                "GROUP BY, LIMIT) and returns the results as markdown."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "Dataview query to execute"},
                },
                "required": ["query"],
            },
            required_tier=CapabilityTier.READ_ONLY,
            handler=dataview_query,
            annotations=read_only_annotations("Execute Dataview Query"),
        ))

    if extensions.enabled("quick_capture"):
        async def quickadd_list(token: CapabilityToken, arguments: dict[str, Any]) -> dict[str, Any]:
            provider = _provider(engine, "quick_capture", "QuickAdd plugin")
            choices = await _call(provider.get_choices)
            return {"success": True, "count": len(choices), "content": format_choices_markdown(choices)}

        async def quickadd_execute(token: CapabilityToken, arguments: dict[str, Any]) -> dict[str, Any]:
            provider = _provider(engine, "quick_capture", "QuickAdd plugin")
            choice = require_arg(arguments, "choice")
            variables = arguments.get("variables") or None
            if variables is not None and not isinstance(variables, dict):
                raise InvalidArguments("'variables' must be an object of string values")
            await _call(provider.execute_choice, choice, variables)
            return {"success": True, "message": f"QuickAdd choice executed: {choice}"}

        tools.append(ToolDescriptor(
            name="quickadd_list",
            description="Lists the QuickAdd choices that can be executed",
            input_schema={"type": "object", "properties": {}},
            required_tier=CapabilityTier.READ_ONLY,
            handler=quickadd_list,
            annotations=read_only_annotations("List QuickAdd Choices"),
        ))
        tools.append(ToolDescriptor(
            name="quickadd_execute",
            description="Executes a QuickAdd choice by name or ID, optionally with variables",
            input_schema={
                "type": "object",
                "properties": {
                    "choice": {"type": "string", "description": "Choice name or ID"},
                    "variables": {
                        "type": "object",
                        "additionalProperties": {"type": "string"},
                        "description": "Variables passed to the choice",
                    },
                },
                "required": ["choice"],
            },
            required_tier=CapabilityTier.FULL,
            handler=quickadd_execute,
            annotations=mutating_annotations("Execute QuickAdd Choice"),
        ))

    if extensions.enabled("task_tracking"):
        async def tasknotes_query(token: CapabilityToken, arguments: dict[str, Any]) -> dict[str, Any]:
            provider = _provider(engine, "task_tracking", "TaskNotes plugin")
            task_filter = {k: arguments[k] for k in _TASK_FILTER_KEYS if arguments.get(k) is not None}
            if arguments.get("due_before") or arguments.get("due_after"):
                task_filter["due"] = {"before": arguments.get("due_before"), "after": arguments.get("due_after")}
            task_filter["limit"] = int(arguments.get("limit", 50))
            task_filter["offset"] = int(arguments.get("offset", 0))
            tasks = await _call(provider.query_tasks, task_filter)
            visible = [t for t in tasks if await engine.can_read(str(t.get("path", "")), token)]
            return {"success": True, "count": len(visible), "tasks": visible}

        async def tasknotes(token: CapabilityToken, arguments: dict[str, Any]) -> dict[str, Any]:
            provider = _provider(engine, "task_tracking", "TaskNotes plugin")
            path = arguments.get("path")
            data = {k: v for k, v in arguments.items() if k != "path" and v is not None}
            if path:
                resolved = await engine.resolver.resolve(path, token=token)
                task_path = resolved.canonical_path
                if not task_path or resolved.scheme == AddressScheme.EXTENSION:
                    raise InvalidArguments(f"Not a task note path: {path}")
                await engine.check_writable(task_path, token)
                task = await _call(provider.update_task, task_path, data)
                return {"success": True, "task": task, "message": f"Task updated: {task_path}"}
            if not data.get("title"):
                raise InvalidArguments("'title' is required when creating a task")
            await engine.check_writable("", token)
            task = await _call(provider.create_task, data)
            return {"success": True, "task": task, "message": "Task created"}

        string_list = {"type": "array", "items": {"type": "string"}}
        tools.append(ToolDescriptor(
            name="tasknotes_query",
            description=(
                "Query tasks with filtering. See the tasknotes:///stats resource for available "
                "statuses, priorities, contexts and projects."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "status": {**string_list, "description": "Filter by task status(es)"},
                    "priority": {**string_list, "description": "Filter by priority level(s)"},
                    "due_before": {"type": "string", "description": "Due before this date (YYYY-MM-DD)"},
                    "due_after": {"type": "string", "description": "Due after this date (YYYY-MM-DD)"},
                    "archived": {"type": "boolean", "description": "Filter by archived status"},
                    "tags": {**string_list, "description": "Filter by tag(s)"},
                    "contexts": {**string_list, "description": "Filter by context(s)"},
                    "projects": {**string_list, "description": "Filter by project(s)"},
                    "limit": {"type": "integer", "default": 50, "description": "Maximum tasks to return"},
                    "offset": {"type": "integer", "default": 0, "description": "Tasks to skip"},
                    "sort_by": {"type": "string", "description": "Field to sort by"},
                    "sort_direction": {"type": "string", "enum": ["asc", "desc"]},
                },
            },
            required_tier=CapabilityTier.READ_ONLY,
            handler=tasknotes_query,
            annotations=read_only_annotations("TaskNotes Query"),
        ))
        tools.append(ToolDescriptor(
            name="tasknotes",
            description="Create a task (omit 'path', provide 'title') or update the task at 'path'",
            input_schema={
                "type": "object",
                "properties": {
                    "path": {"type": "string", "description": "Task note path (update only)"},
                    "title": {"type": "string"},
                    "status": {"type": "string"},
                    "priority": {"type": "string"},
                    "due": {"type": "string", "description": "Due date (YYYY-MM-DD)"},
                    "scheduled": {"type": "string", "description": "Scheduled date (YYYY-MM-DD)"},
                    "tags": string_list,
                    "contexts": string_list,
                    "projects": string_list,
                    "archived": {"type": "boolean"},
                },
            },
            required_tier=CapabilityTier.FULL,
            handler=tasknotes,
            annotations=mutating_annotations("TaskNotes"),
        ))

    if extensions.enabled("time_blocks"):
        async def timeblocks_query(token: CapabilityToken, arguments: dict[str, Any]) -> dict[str, Any]:
            provider = _provider(engine, "time_blocks", "Timeblocks feature")
            day = resolve_block_date(engine, arguments.get("date"))
            await _require_block_read(engine, day, token)
            iso_date = day.isoformat()
            blocks = await _call(provider.get_timeblocks, iso_date)
            return {"success": True, "date": iso_date, "timeblocks": blocks}

        async def timeblocks(token: CapabilityToken, arguments: dict[str, Any]) -> dict[str, Any]:
            provider = _provider(engine, "time_blocks", "Timeblocks feature")
            day = resolve_block_date(engine, require_arg(arguments, "date"))
            iso_date = day.isoformat()
            await _require_block_write(engine, day, token)
            block_id = arguments.get("id")
            fields_ = {
                k: arguments[k]
                for k in ("title", "startTime", "endTime", "attachments", "color", "description")
                if arguments.get(k) is not None
            }

            if arguments.get("delete"):
                if not block_id:
                    raise InvalidArguments("ID is required for delete")
                await _call(provider.delete_timeblock, iso_date, block_id)
                return {"success": True, "deleted": block_id}

            if block_id:
                block = await _call(provider.update_timeblock, iso_date, block_id, fields_)
                return {"success": True, "timeblock": block}

            if not all(fields_.get(k) for k in ("title", "startTime", "endTime")):
                raise InvalidArguments(
                    "title, startTime, and endTime are required when creating a new timeblock"
                )
            block = await _call(provider.create_timeblock, iso_date, fields_)
            return {"success": True, "timeblock": block}

        date_description = "Date in YYYY-MM-DD format or alias (today/yesterday/tomorrow)"
        tools.append(ToolDescriptor(
            name="timeblocks_query",
            description="Query the time blocks scheduled in a day's daily note",
            input_schema={
                "type": "object",
                "properties": {"date": {"type": "string", "description": date_description + ". Defaults to today."}},
            },
            required_tier=CapabilityTier.READ_ONLY,
            handler=timeblocks_query,
            annotations=read_only_annotations("Timeblocks Query"),
        ))
        tools.append(ToolDescriptor(
            name="timeblocks",
            description=(
                "Create, update, or delete a timeblock. Omit 'id' and provide 'title' to create. "
                "Provide 'id' with 'delete: true' to delete. Provide 'id' with other fields to update."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "date": {"type": "string", "description": date_description},
                    "id": {"type": "string", "description": "Timeblock ID (update/delete)"},
                    "delete": {"type": "boolean"},
                    "title": {"type": "string"},
                    "startTime": {"type": "string", "description": "HH:MM (24-hour)"},
                    "endTime": {"type": "string", "description": "HH:MM (24-hour)"},
                    "attachments": {"type": "array", "items": {"type": "string"}},
                    "color": {"type": "string", "description": "Hex color, e.g. #6366f1"},
                    "description": {"type": "string"},
                },
                "required": ["date"],
            },
            required_tier=CapabilityTier.FULL,
            handler=timeblocks,
            annotations=mutating_annotations("Timeblocks"),
        ))

    return tools
