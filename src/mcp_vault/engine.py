"""Core vault engine - resolves addresses, enforces policy, touches storage."""

from __future__ import annotations

import logging
import posixpath
import re
from typing import TYPE_CHECKING, Any, Optional

from .addressing import DAILY_SCHEME, DIRECT_SCHEME, UriResolver
from .dates import DAILY_ALIASES
from .errors import (
    AmbiguousMatch,
    DailyNoteNotFound,
    DocumentExists,
    InvalidAddress,
    NotFound,
    UnsupportedScheme,
)
from .models import AddressScheme, CapabilityToken, Clock, format_timestamp, local_now
from .notes import AccessFlags, access_flags, format_value, is_markdown, parse_frontmatter
from .policy import is_allowed, require_writable
from .repository import Repository
from .resources import (
    DIRECTORY_MIME,
    MARKDOWN_MIME,
    ResourceContent,
    ResourceDescriptor,
    ResourceEntry,
    ResourceRegistry,
    group_directory_paths,
)

if TYPE_CHECKING:
    from .config import VaultConfig
    from .daily_notes import DailyNoteConfigProvider
    from .extensions import ExtensionSet

logger = logging.getLogger(__name__)

_HEADING_RE = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")


def _parse_int(value: Any, name: str, default: Optional[int]) -> Optional[int]:
    if value is None or value == "":
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise InvalidAddress(f"Invalid {name}: {value!r}") from None
    if number < 0:
        raise InvalidAddress(f"Invalid {name}: must not be negative")
    return number


def count_occurrences(content: str, needle: str) -> int:
    """Count non-overlapping occurrences, as a find/replace would see them."""
    if not needle:
        return 0
    return content.count(needle)


class VaultEngine:
    """Operations on the document repository on behalf of a token."""

    def __init__(
        self,
        repository: Repository,
        daily_notes: Optional["DailyNoteConfigProvider"] = None,
        extensions: Optional["ExtensionSet"] = None,
        clock: Clock = local_now,
    ):
        self.repository = repository
        self.resources = ResourceRegistry()
        self.resolver = UriResolver(repository, daily_notes, self.resources, clock)
        self.extensions = extensions
        self.clock = clock

        self.resources.register(self._file_resource())
        self.resources.register(self._daily_resource())

        if extensions is not None:
            from .extensions import register_extension_resources
            register_extension_resources(self, extensions)

    @classmethod
    def from_config(cls, config: "VaultConfig") -> "VaultEngine":
        """Build an engine over a filesystem vault described by `config`."""
        from .extensions import load_extensions
        from .repository import FilesystemRepository

        return cls(
            FilesystemRepository(config.vault_root),
            daily_notes=config.daily_note_provider(),
            extensions=load_extensions(config),
        )

    # ========== Reading ==========

    async def read_text(self, path: str) -> Optional[str]:
        """Read a document as text, or None if it is not UTF-8 (images, PDFs...)."""
        try:
            return await self.repository.read(path)
        except UnicodeDecodeError:
            logger.debug("Skipping non-text document %s", path)
            return None

    async def access_flags(self, path: str) -> AccessFlags:
        """Frontmatter access overrides of a note (none for other paths)."""
        if not is_markdown(path) or not await self.repository.is_document(path):
            return AccessFlags()
        content = await self.read_text(path)
        if content is None:
            return AccessFlags()
        return access_flags(parse_frontmatter(content))

    async def can_read(self, path: str, token: CapabilityToken) -> bool:
        return is_allowed(path, token, (await self.access_flags(path)).access)

    async def check_writable(self, path: str, token: CapabilityToken) -> None:
        """Raise AccessDenied unless the token may modify the path."""
        flags = await self.access_flags(path) if token.can_write else AccessFlags()
        require_writable(path, token, flags)

    async def visible_documents(self, token: CapabilityToken) -> list[str]:
        return [p for p in await self.repository.list_all_paths() if await self.can_read(p, token)]

    async def list_directory(self, directory: str, token: CapabilityToken, depth: int = 1) -> list[str]:
        """List a directory as seen by a token.

        Raises:
            NotFound: If nothing visible lives below the directory.
        """
        paths = await self.visible_documents(token)
        entries = group_directory_paths(paths, directory, depth)
        if not entries:
            raise NotFound(f"No documents found in path: {directory or '/'}")
        return entries

    async def get_contents(
        self,
        address: str,
        token: CapabilityToken,
        depth: Optional[int] = None,
        start_offset: Optional[int] = None,
        end_offset: Optional[int] = None,
    ) -> ResourceContent:
        """Read a document, or list a directory, for any file/daily address.

        Policy-hidden documents are reported exactly like absent ones, and
        schemes above the token's tier exactly like unknown ones.
        """
        try:
            resolved = await self.resolver.resolve(address, token=token)
        except UnsupportedScheme:
            raise NotFound(f"Resource not found: {address}") from None
        if resolved.scheme == AddressScheme.EXTENSION:
            return await self.resources.read(address, token)

        query = resolved.query
        depth = depth if depth is not None else _parse_int(query.get("depth"), "depth", 1)
        if start_offset is None:
            start_offset = _parse_int(query.get("startOffset"), "startOffset", 0)
        if end_offset is None:
            end_offset = _parse_int(query.get("endOffset"), "endOffset", None)

        path = resolved.canonical_path
        if resolved.scheme == AddressScheme.DAILY_ALIAS and not await self.can_read(path, token):
            raise DailyNoteNotFound(resolved.alias_label or "today", path)
        if path and await self.repository.is_document(path) and await self.can_read(path, token):
            content = await self.read_text(path)
            if content is None:
                raise InvalidAddress(f"Not a text document: {path}")
            return ResourceContent(address, content[start_offset:end_offset], MARKDOWN_MIME)

        entries = await self.list_directory(path, token, depth)
        return ResourceContent(address, "\n".join(entries), DIRECTORY_MIME)

    async def search(self, query: str, token: CapabilityToken, folder: Optional[str] = None) -> list[str]:
        """Find visible text documents containing every term of `query` (case-insensitive).

        Raises:
            NotFound: If nothing matches.
        """
        terms = query.lower().split()
        if not terms:
            raise InvalidAddress("Search query must not be empty")

        prefix = ""
        if folder:
            prefix = (await self.resolver.resolve(folder, token=token)).canonical_path

        matches = []
        for path in await self.visible_documents(token):
            if prefix and not path.startswith(prefix + "/"):
                continue
            content = await self.read_text(path)
            if content is None:
                continue
            if all(term in content.lower() for term in terms):
                matches.append(path)

        if not matches:
            raise NotFound(f"No results found for query: {query}")
        return matches

    async def file_metadata(self, address: str, token: CapabilityToken) -> str:
        """Render size, timestamps, frontmatter and headings of a document."""
        path = (await self.resolver.resolve(address, token=token)).canonical_path
        if not path or not await self.repository.is_document(path) or not await self.can_read(path, token):
            raise NotFound(f"File not found: {path or '/'}")

        stat = await self.repository.stat(path)
        content = await self.read_text(path) or ""

        lines = [
            f"# File Metadata: {path}",
            "",
            f"- **path**: {path}",
            f"- **size**: {stat.size} bytes",
            f"- **created**: {format_timestamp(stat.created)}",
            f"- **modified**: {format_timestamp(stat.modified)}",
        ]

        metadata = parse_frontmatter(content)
        if metadata:
            lines += ["", "## Frontmatter", ""]
            lines += [f"- **{key}**: {format_value(value)}" for key, value in metadata.items()]

        headings = _headings(content)
        if headings:
            lines += ["", "## Headings", ""]
            lines += [
                f"- (offset: {offset}, line: {line_no}): {'#' * level} {text}"
                for offset, line_no, level, text in headings
            ]

        return "\n".join(lines)

    # ========== Daily notes ==========

    async def daily_note(self, date: str, token: CapabilityToken, create: bool = False) -> dict[str, Any]:
        """Locate (and optionally create) the daily note for an alias or date.

        Raises:
            DailyNoteNotFound: If missing (or hidden) and `create` is False.
            AccessDenied: If `create` is requested without write access.
        """
        alias = date or "today"
        expected = self.resolver.daily_path_for(alias)
        if create:
            await self.check_writable(expected, token)

        existed = await self.repository.is_document(expected)
        if not existed and not create:
            raise DailyNoteNotFound(alias, expected)

        resolved = await self.resolver.resolve(
            f"{DAILY_SCHEME}:///{alias}", create_if_missing=create, token=token
        )
        path = resolved.canonical_path
        if not await self.can_read(path, token):
            raise DailyNoteNotFound(alias, path)

        return {
            "path": path,
            "filename": posixpath.splitext(posixpath.basename(path))[0],
            "created": not existed,
            "date": alias,
        }

    # ========== Writing ==========

    async def _writable_path(
        self, address: str, token: CapabilityToken, create_if_missing: bool = False
    ) -> str:
        resolved = await self.resolver.resolve(address, create_if_missing=create_if_missing, token=token)
        path = resolved.canonical_path
        if not path or resolved.scheme == AddressScheme.EXTENSION:
            raise InvalidAddress(f"Not a document address: {address}")
        await self.check_writable(path, token)
        return path

    async def append_content(
        self, address: str, content: str, token: CapabilityToken, create_if_missing: bool = False
    ) -> str:
        """Append to a document, separating with a newline. Returns a status message."""
        path = await self._writable_path(address, token, create_if_missing)

        if not await self.repository.is_document(path):
            if not create_if_missing:
                raise NotFound(f"File not found: {path}")
            try:
                await self.repository.create(path, content)
                return f"File created with content: {path}"
            except FileExistsError:
                logger.debug("%s appeared while appending; appending instead", path)

        def _append(existing: str) -> str:
            if existing and not existing.endswith("\n"):
                existing += "\n"
            return existing + content

        await self.repository.modify(path, _append)
        return f"Content appended successfully: {path}"

    async def replace_content(self, address: str, find: str, replace: str, token: CapabilityToken) -> str:
        """Replace exactly one occurrence of `find`.

        The match count is taken under the repository's document lock, so a
        concurrent edit that changes it makes this fail instead of writing.

        Raises:
            AmbiguousMatch: If `find` occurs zero or several times.
        """
        if not find:
            raise InvalidAddress("'find' must be a non-empty string")
        path = await self._writable_path(address, token)
        if not await self.repository.is_document(path):
            raise NotFound(f"File not found: {path}")

        def _replace(existing: str) -> str:
            matches = count_occurrences(existing, find)
            if matches != 1:
                raise AmbiguousMatch(path, matches)
            return existing.replace(find, replace, 1)

        await self.repository.modify(path, _replace)
        return f"Content successfully replaced in {path}"

    async def create_document(self, address: str, content: str, token: CapabilityToken) -> str:
        path = await self._writable_path(address, token)
        folder = posixpath.dirname(path)
        if folder and not await self.repository.exists(folder):
            await self.repository.create_directory(folder)
        try:
            await self.repository.create(path, content)
        except FileExistsError:
            raise DocumentExists(f"Document already exists: {path}") from None
        return path

    # ========== Built-in resources ==========

    def _file_resource(self) -> ResourceDescriptor:
        async def lister(token: CapabilityToken) -> list[ResourceEntry]:
            return [
                ResourceEntry(uri=f"{DIRECT_SCHEME}:///{path}", name=path)
                for path in await self.visible_documents(token)
            ]

        async def completer(value: str, token: CapabilityToken) -> list[str]:
            return [p for p in await self.visible_documents(token) if p.startswith(value)]

        async def handler(uri: str, token: CapabilityToken) -> ResourceContent:
            return await self.get_contents(uri, token)

        return ResourceDescriptor(
            scheme=DIRECT_SCHEME,
            description="Provides access to documents and directories in the vault",
            uri_template=f"{DIRECT_SCHEME}:///{{+path}}{{?depth,startOffset,endOffset}}",
            lister=lister,
            completer=completer,
            handler=handler,
        )

    def _daily_resource(self) -> ResourceDescriptor:
        async def lister(token: CapabilityToken) -> list[ResourceEntry]:
            if not self.resolver.daily_enabled():
                return []
            return [ResourceEntry(uri=f"{DAILY_SCHEME}:///{alias}", name=alias) for alias in DAILY_ALIASES]

        async def completer(value: str, token: CapabilityToken) -> list[str]:
            return [alias for alias in DAILY_ALIASES if alias.startswith(value)]

        async def handler(uri: str, token: CapabilityToken) -> ResourceContent:
            return await self.get_contents(uri, token)

        return ResourceDescriptor(
            scheme=DAILY_SCHEME,
            description="Provides access to daily notes (today, yesterday, tomorrow or a date)",
            uri_template=f"{DAILY_SCHEME}:///{{date}}{{?startOffset,endOffset}}",
            lister=lister,
            completer=completer,
            handler=handler,
        )


def _headings(content: str) -> list[tuple[int, int, int, str]]:
    """(offset, line, level, text) for each markdown heading outside code fences."""
    headings = []
    offset = 0
    in_fence = False
    for line_no, line in enumerate(content.splitlines(keepends=True)):
        stripped = line.rstrip("\r\n")
        if stripped.lstrip().startswith("```"):
            in_fence = not in_fence
        elif not in_fence:
            match = _HEADING_RE.match(stripped)
            if match:
                headings.append((offset, line_no, len(match.group(1)), match.group(2)))
        offset += len(line)
    return headings
