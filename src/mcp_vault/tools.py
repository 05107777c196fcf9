"""MCP tool definitions and the capability-scoped dispatcher."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from .addressing import DAILY_SCHEME
from .dates import DAILY_ALIASES, is_daily_alias
from .errors import (
    AccessDenied,
    AmbiguousMatch,
    DailyNoteNotFound,
    DailyProviderUnavailable,
    InvalidArguments,
    UnknownTool,
    VaultError,
)
from .models import CapabilityTier, CapabilityToken

if TYPE_CHECKING:
    from .engine import VaultEngine

logger = logging.getLogger(__name__)

MAX_ERROR_CHARS = 500

ToolHandler = Callable[[CapabilityToken, dict[str, Any]], Awaitable[dict[str, Any]]]


@dataclass
class ToolDescriptor:
    """A tool and the minimum tier that may see or call it."""
    name: str
    description: str
    input_schema: dict[str, Any]
    required_tier: CapabilityTier
    handler: ToolHandler
    annotations: dict[str, Any] = field(default_factory=dict)

    def visible_to(self, token: CapabilityToken) -> bool:
        return token.tier >= self.required_tier

    def definition(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
            "annotations": self.annotations,
        }


def read_only_annotations(title: str) -> dict[str, Any]:
    return {
        "title": title,
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False,
    }


def mutating_annotations(title: str, destructive: bool = True) -> dict[str, Any]:
    return {
        "title": title,
        "readOnlyHint": False,
        "destructiveHint": destructive,
        "idempotentHint": False,
        "openWorldHint": False,
    }


def require_arg(arguments: dict[str, Any], name: str) -> Any:
    value = arguments.get(name)
    if value is None or value == "":
        raise InvalidArguments(f"Missing required argument: {name}")
    return value


def _optional_int(arguments: dict[str, Any], name: str) -> Optional[int]:
    value = arguments.get(name)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise InvalidArguments(f"'{name}' must be an integer")
    try:
        number = int(value)
    except ValueError:
        raise InvalidArguments(f"'{name}' must be an integer") from None
    if number < 0:
        raise InvalidArguments(f"'{name}' must not be negative")
    return number


class ToolRegistry:
    """Tool name -> descriptor, insertion order is advertise order."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolDescriptor] = {}

    def register(self, descriptor: ToolDescriptor) -> None:
        if descriptor.name in self._tools:
            raise ValueError(f"Tool already registered: {descriptor.name}")
        self._tools[descriptor.name] = descriptor

    def get(self, name: str) -> Optional[ToolDescriptor]:
        return self._tools.get(name)

    def visible(self, token: CapabilityToken) -> list[ToolDescriptor]:
        return [t for t in self._tools.values() if t.visible_to(token)]

    def names(self, token: CapabilityToken) -> list[str]:
        """Tool names advertised to a token."""
        return [t.name for t in self.visible(token)]

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


def _first_line(error: BaseException) -> str:
    text = str(error).strip().splitlines()
    line = text[0] if text else type(error).__name__
    if len(line) > MAX_ERROR_CHARS:
        line = line[:MAX_ERROR_CHARS] + "..."
    return line


class Dispatcher:
    """Routes tool calls for a token, hiding tools outside its tier."""

    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    def list_tools(self, token: CapabilityToken) -> list[dict[str, Any]]:
        return [t.definition() for t in self.registry.visible(token)]

    def lookup(self, name: str, token: CapabilityToken) -> ToolDescriptor:
        """Find a tool the token may call.

        Raises:
            UnknownTool: Both for unregistered names and for tools above the
                token's tier, with identical messages.
        """
        descriptor = self.registry.get(name)
        if descriptor is None or not descriptor.visible_to(token):
            raise UnknownTool(name)
        return descriptor

    async def handle(self, name: str, token: CapabilityToken, arguments: Optional[dict[str, Any]]) -> dict[str, Any]:
        """Execute a tool and translate failures into a structured result."""
        arguments = arguments or {}
        try:
            descriptor = self.lookup(name, token)
            logger.debug("Tool %s called by token %s", name, token.name)
            return await descriptor.handler(token, arguments)

        except UnknownTool as e:
            logger.info("Rejected unknown tool %s for token %s", name, token.name)
            return {
                "success": False,
                "error": str(e),
                "error_type": e.error_type,
            }

        except DailyNoteNotFound as e:
            return {
                "success": False,
                "error": str(e),
                "error_type": e.error_type,
                "expected_path": e.expected_path,
                "suggestion": "Use get_daily_note with create=true (or create_if_missing=true) to create it",
            }

        except AmbiguousMatch as e:
            return {
                "success": False,
                "error": str(e),
                "error_type": e.error_type,
                "match_count": e.count,
                "suggestion": "Use a 'find' string that occurs exactly once in the document",
            }

        except DailyProviderUnavailable as e:
            return {
                "success": False,
                "error": str(e),
                "error_type": e.error_type,
                "suggestion": "Enable daily notes in the server configuration",
            }

        except AccessDenied as e:
            logger.warning("Access denied for token %s on %s: %s", token.name, name, e)
            return {
                "success": False,
                "error": str(e),
                "error_type": e.error_type,
            }

        except VaultError as e:
            return {
                "success": False,
                "error": str(e),
                "error_type": e.error_type,
            }

        except Exception as e:
            logger.exception("Unexpected error in tool %s", name)
            return {
                "success": False,
                "error": _first_line(e),
                "error_type": "unexpected_error",
            }


def custom_tool_descriptor(name: str, func: Callable, engine: "VaultEngine") -> ToolDescriptor:
    """Wrap a `custom_tool_*` config function as a tool.

    The function is called as ``func(engine, token, params)``; its minimum
    tier comes from a ``required_tier`` attribute (default FULL).
    """
    doc = func.__doc__ or f"Custom tool: {name}"
    tier = getattr(func, "required_tier", CapabilityTier.FULL)
    if isinstance(tier, str):
        tier = CapabilityTier.parse(tier)

    async def handler(token: CapabilityToken, arguments: dict[str, Any]) -> dict[str, Any]:
        result = func(engine, token, arguments.get("params", arguments))
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, dict) and "success" in result:
            return result
        return {"success": True, "result": result}

    return ToolDescriptor(
        name=name,
        description=doc.strip().split("\n")[0],
        input_schema={
            "type": "object",
            "properties": {
                "params": {
                    "type": "object",
                    "description": "Parameters for the custom tool",
                }
            },
        },
        required_tier=tier,
        handler=handler,
        annotations=mutating_annotations(name) if tier >= CapabilityTier.FULL else read_only_annotations(name),
    )


def make_tools(engine: "VaultEngine", custom_tools: Optional[dict[str, Callable]] = None) -> ToolRegistry:
    """Create the tool registry for an engine.

    Returns:
        Registry with built-in, extension and custom tools.
    """
    from .extensions import extension_tools

    registry = ToolRegistry()

    # ========== get_contents ==========
    async def get_contents(token: CapabilityToken, arguments: dict[str, Any]) -> dict[str, Any]:
        uri = require_arg(arguments, "uri")
        content = await engine.get_contents(
            uri,
            token,
            depth=_optional_int(arguments, "depth"),
            start_offset=_optional_int(arguments, "startOffset"),
            end_offset=_optional_int(arguments, "endOffset"),
        )
        return {"success": True, "mime_type": content.mime_type, "content": content.text}

    registry.register(ToolDescriptor(
        name="get_contents",
        description="Gets the content of a file or directory from the vault, including daily notes",
        input_schema={
            "type": "object",
            "properties": {
                "uri": {
                    "type": "string",
                    "description": (
                        "URI to the file or directory (e.g., file:///path/to/file.md, "
                        "daily:///today, daily:///yesterday, daily:///tomorrow)"
                    ),
                },
                "depth": {
                    "type": "integer",
                    "minimum": 0,
                    "description": "Directory depth when listing (0=current dir only, 1=one level of subdirs). Default is 1.",
                },
                "startOffset": {"type": "integer", "minimum": 0, "description": "Start offset for file contents, defaults to 0"},
                "endOffset": {"type": "integer", "minimum": 0, "description": "End offset for file contents, defaults to file length"},
            },
            "required": ["uri"],
        },
        required_tier=CapabilityTier.RESTRICTED,
        handler=get_contents,
        annotations=read_only_annotations("Get File or Directory Contents"),
    ))

    # ========== list_files ==========
    async def list_files(token: CapabilityToken, arguments: dict[str, Any]) -> dict[str, Any]:
        raw = arguments.get("path") or ""
        depth = _optional_int(arguments, "depth")
        depth = 1 if depth is None else depth

        address = engine.resolver.canonicalize(raw, token)
        if address.scheme == DAILY_SCHEME:
            if address.path:
                raise InvalidArguments(
                    "Cannot list files within a specific daily note. "
                    "Use get_contents with the daily note URI instead."
                )
            if not engine.resolver.daily_enabled():
                return {"success": True, "count": 0, "files": []}
            return {"success": True, "count": len(DAILY_ALIASES), "files": list(DAILY_ALIASES)}

        resolved = await engine.resolver.resolve(raw, token=token)
        files = await engine.list_directory(resolved.canonical_path, token, depth)
        if resolved.canonical_path == "" and engine.resolver.daily_enabled():
            files.append(f"{DAILY_SCHEME}://")
        return {"success": True, "count": len(files), "files": files}

    registry.register(ToolDescriptor(
        name="list_files",
        description=(
            "Lists all files and directories in a specific vault directory (relative to vault root) "
            "or the daily note aliases ('daily://')"
        ),
        input_schema={
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Path to list files from (relative to vault root or 'daily://'), empty for root",
                },
                "depth": {
                    "type": "integer",
                    "minimum": 0,
                    "description": "Directory depth to show (0=current dir only, 1=one level of subdirs). Default is 1.",
                },
            },
        },
        required_tier=CapabilityTier.RESTRICTED,
        handler=list_files,
        annotations=read_only_annotations("List Files in Vault"),
    ))

    # ========== get_daily_note ==========
    async def get_daily_note(token: CapabilityToken, arguments: dict[str, Any]) -> dict[str, Any]:
        date = arguments.get("date") or "today"
        info = await engine.daily_note(date, token, create=bool(arguments.get("create", False)))
        created = "Yes (just now)" if info["created"] else "No (already existed)"
        summary = "\n".join([
            "# Daily Note Information",
            f"- Path: `{info['path']}`",
            f"- Filename: `{info['filename']}`",
            f"- Created: {created}",
            f"- Date: {info['date']}",
        ])
        return {"success": True, **info, "content": summary}

    registry.register(ToolDescriptor(
        name="get_daily_note",
        description="Gets the daily note for today or a specific date, optionally creating it",
        input_schema={
            "type": "object",
            "properties": {
                "date": {
                    "type": "string",
                    "default": "today",
                    "description": "today, yesterday, tomorrow, or a date in the daily note format",
                },
                "create": {
                    "type": "boolean",
                    "default": False,
                    "description": "Create the daily note if it doesn't exist (requires a full-access token)",
                },
            },
        },
        required_tier=CapabilityTier.RESTRICTED,
        handler=get_daily_note,
        annotations=read_only_annotations("Get Daily Note"),
    ))

    # ========== search ==========
    async def search(token: CapabilityToken, arguments: dict[str, Any]) -> dict[str, Any]:
        query = require_arg(arguments, "query")
        results = await engine.search(query, token, folder=arguments.get("folder"))
        return {"success": True, "count": len(results), "results": results}

    registry.register(ToolDescriptor(
        name="search",
        description="Searches vault files for documents containing every word of the query",
        input_schema={
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Search query"},
                "folder": {"type": "string", "description": "Only search below this folder"},
            },
            "required": ["query"],
        },
        required_tier=CapabilityTier.READ_ONLY,
        handler=search,
        annotations=read_only_annotations("Search Vault"),
    ))

    # ========== get_file_metadata ==========
    async def get_file_metadata(token: CapabilityToken, arguments: dict[str, Any]) -> dict[str, Any]:
        path = require_arg(arguments, "path")
        return {"success": True, "content": await engine.file_metadata(path, token)}

    registry.register(ToolDescriptor(
        name="get_file_metadata",
        description="Retrieve size, timestamps, frontmatter and headings for a file",
        input_schema={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Path or URI of the file"},
            },
            "required": ["path"],
        },
        required_tier=CapabilityTier.READ_ONLY,
        handler=get_file_metadata,
        annotations=read_only_annotations("Get File Metadata"),
    ))

    # ========== update_content ==========
    async def update_content(token: CapabilityToken, arguments: dict[str, Any]) -> dict[str, Any]:
        path = require_arg(arguments, "path")
        mode = require_arg(arguments, "mode")
        content = arguments.get("content")
        if not isinstance(content, str):
            raise InvalidArguments("Missing required argument: content")

        if mode == "append":
            message = await engine.append_content(
                path, content, token, create_if_missing=bool(arguments.get("create_if_missing", False))
            )
        elif mode == "replace":
            find = require_arg(arguments, "find")
            message = await engine.replace_content(path, find, content, token)
        else:
            raise InvalidArguments(f"Unknown mode '{mode}'. Expected 'append' or 'replace'")
        return {"success": True, "message": message}

    registry.register(ToolDescriptor(
        name="update_content",
        description="Updates file content by either appending or replacing content",
        input_schema={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Path or URI of the file (daily:///today works too)"},
                "mode": {
                    "type": "string",
                    "enum": ["append", "replace"],
                    "description": "'append' to add content to the end, 'replace' to find and replace content",
                },
                "content": {"type": "string", "description": "Content to append, or the replacement content"},
                "find": {"type": "string", "description": "Content to find (replace mode, must match exactly once)"},
                "create_if_missing": {
                    "type": "boolean",
                    "default": False,
                    "description": "Create the file if it doesn't exist (append mode only)",
                },
            },
            "required": ["path", "mode", "content"],
        },
        required_tier=CapabilityTier.FULL,
        handler=update_content,
        annotations=mutating_annotations("Update File Content"),
    ))

    # ========== create_document ==========
    async def create_document(token: CapabilityToken, arguments: dict[str, Any]) -> dict[str, Any]:
        path = require_arg(arguments, "path")
        if is_daily_alias(path):
            raise InvalidArguments("Use get_daily_note with create=true to create daily notes")
        created = await engine.create_document(path, arguments.get("content") or "", token)
        return {"success": True, "path": created, "message": f"Created {created}"}

    registry.register(ToolDescriptor(
        name="create_document",
        description="Creates a new document; fails if it already exists",
        input_schema={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Path of the new document"},
                "content": {"type": "string", "description": "Initial content"},
            },
            "required": ["path"],
        },
        required_tier=CapabilityTier.FULL,
        handler=create_document,
        annotations=mutating_annotations("Create Document", destructive=False),
    ))

    for descriptor in extension_tools(engine):
        registry.register(descriptor)

    for name, func in (custom_tools or {}).items():
        registry.register(custom_tool_descriptor(name, func, engine))

    return registry
