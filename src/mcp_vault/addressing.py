"""Address canonicalization and resolution.

Addresses arrive as bare paths (``notes/todo.md``), direct URIs
(``file:///notes/todo.md``), daily aliases (``daily:///today``,
``daily://2023-05-09``) or extension URIs (``tasknotes:///stats``). Both
the two-slash and the three-slash URI forms are accepted.
"""

from __future__ import annotations

import logging
import posixpath
import re
from typing import TYPE_CHECKING, Iterable, NamedTuple, Optional
from urllib.parse import parse_qsl, unquote

from .dates import alias_date, render_date
from .errors import (
    DailyNoteNotFound,
    DailyProviderUnavailable,
    InvalidAddress,
    UnsupportedScheme,
)
from .models import (
    AddressScheme,
    CapabilityToken,
    Clock,
    DailyNoteConfig,
    ResolvedAddress,
    local_now,
)
from .policy import require_writable

if TYPE_CHECKING:
    from .daily_notes import DailyNoteConfigProvider
    from .repository import Repository
    from .resources import ResourceRegistry

logger = logging.getLogger(__name__)

DIRECT_SCHEME = "file"
DAILY_SCHEME = "daily"
OWNED_SCHEMES = (DIRECT_SCHEME, DAILY_SCHEME)

# A scheme only counts when followed by "/" or the end of input, so
# "meeting:notes.md" stays a plain path.
_SCHEME_RE = re.compile(r"^([A-Za-z][A-Za-z0-9+.\-]*):(?=/|$)")
_HOST_PORT_RE = re.compile(r"^[^/]*:\d*$")


class CanonicalAddress(NamedTuple):
    path: str
    scheme: Optional[str]
    query: dict[str, str]
    directory_hint: bool


def clean_path(path: str) -> str:
    """Collapse slashes, strip leading/trailing slashes and drop `.` segments.

    Raises:
        InvalidAddress: If the path tries to climb out with `..`.
    """
    segments = []
    for segment in path.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            raise InvalidAddress(f"Parent directory references are not allowed: '{path}'")
        segments.append(segment)
    return "/".join(segments)


def _checked(cleaned: str, raw: str) -> str:
    # a cleaned path must not read as a URI on the next pass
    if _SCHEME_RE.match(cleaned):
        raise InvalidAddress(f"Path must not start with a URI scheme: '{raw}'")
    return cleaned


def canonicalize(raw: str, extension_schemes: Iterable[str] = ()) -> CanonicalAddress:
    """Normalize a path or URI string into a canonical relative path.

    Args:
        raw: Bare path or `scheme:` URI.
        extension_schemes: Extra schemes accepted besides `file` and `daily`.

    Raises:
        UnsupportedScheme: For a scheme that is neither owned nor registered.
        InvalidAddress: For a URI with a host/authority, or `..` segments.
    """
    match = _SCHEME_RE.match(raw)

    if match is None:
        cleaned = _checked(clean_path(raw), raw)
        return CanonicalAddress(cleaned, None, {}, raw.endswith("/") or cleaned == "")

    scheme = match.group(1).lower()
    supported = set(OWNED_SCHEMES) | {s.lower() for s in extension_schemes}
    if scheme not in supported:
        raise UnsupportedScheme(
            f"Unsupported URI scheme: '{scheme}:'. Use file:///, daily:/// or a plain path. "
            f"Input: '{raw}'"
        )

    rest = raw[match.end():]
    rest, _, _fragment = rest.partition("#")
    rest, _, query_string = rest.partition("?")

    if rest.startswith("//") and not rest.startswith("///"):
        # Two-slash form: what follows is the path, unless it looks like an
        # authority, which usually means a third slash is missing and the
        # first path segment would be silently lost.
        authority = rest[2:].split("/", 1)[0]
        if "@" in authority or _HOST_PORT_RE.match(authority):
            raise InvalidAddress(
                f"Unexpected host in URI: '{authority}'. Use three slashes "
                f"(e.g. '{scheme}:///path/to/file'). Input: '{raw}'"
            )

    decoded = unquote(rest)
    cleaned = _checked(clean_path(decoded), raw)
    query = dict(parse_qsl(query_string, keep_blank_values=True))
    return CanonicalAddress(cleaned, scheme, query, decoded.endswith("/") or cleaned == "")


def daily_note_path(config: DailyNoteConfig, day) -> str:
    """Compute `folder/<rendered date>.md` for a daily note."""
    filename = render_date(day, config.date_format)
    folder = clean_path(config.folder)
    return clean_path(f"{folder}/{filename}.md" if folder else f"{filename}.md")


class UriResolver:
    """Turns addresses into canonical repository paths.

    Owns the direct and daily schemes; extension schemes are delegated to the
    resource registry.
    """

    def __init__(
        self,
        repository: "Repository",
        daily_notes: Optional["DailyNoteConfigProvider"] = None,
        registry: Optional["ResourceRegistry"] = None,
        clock: Clock = local_now,
    ):
        self.repository = repository
        self.daily_notes = daily_notes
        self.registry = registry
        self.clock = clock

    def extension_schemes(self, token: Optional[CapabilityToken] = None) -> list[str]:
        """Extension schemes accepted for a token (all registered ones without a token)."""
        if self.registry is None:
            return []
        schemes = self.registry.schemes() if token is None else self.registry.names(token)
        return [s for s in schemes if s not in OWNED_SCHEMES]

    def canonicalize(self, raw: str, token: Optional[CapabilityToken] = None) -> CanonicalAddress:
        return canonicalize(raw, self.extension_schemes(token))

    def daily_config(self) -> DailyNoteConfig:
        """Read the live daily-note configuration.

        Raises:
            DailyProviderUnavailable: If no daily-note provider is enabled.
        """
        provider = self.daily_notes
        if provider is None or not provider.is_enabled():
            raise DailyProviderUnavailable(
                "Cannot access daily notes: no daily-note provider is enabled "
                "(configure [daily_notes] or a daily-notes settings file)"
            )
        return DailyNoteConfig(
            date_format=provider.current_format(),
            folder=provider.current_folder(),
        )

    def daily_enabled(self) -> bool:
        return self.daily_notes is not None and self.daily_notes.is_enabled()

    def daily_path_for(self, alias: str) -> str:
        """Compute the daily note path for an alias without touching storage."""
        config = self.daily_config()
        day = alias_date(alias or "today", self.clock(), config.date_format)
        return daily_note_path(config, day)

    async def resolve(
        self,
        raw: str,
        create_if_missing: bool = False,
        token: Optional[CapabilityToken] = None,
    ) -> ResolvedAddress:
        """Resolve an address to a canonical repository location.

        Args:
            raw: Address string.
            create_if_missing: Create a missing daily note as an empty document.
            token: When given, only extension schemes visible to it are accepted
                and creation is refused outside its writable area.

        Raises:
            InvalidAddress, UnsupportedScheme, DailyProviderUnavailable,
            DailyAliasInvalid, DailyNoteNotFound, AccessDenied
        """
        address = self.canonicalize(raw, token)

        if address.scheme == DAILY_SCHEME:
            return await self._resolve_daily(raw, address, create_if_missing, token)

        if address.scheme in (None, DIRECT_SCHEME):
            return ResolvedAddress(
                canonical_path=address.path,
                scheme=AddressScheme.DIRECT,
                is_directory_hint=address.directory_hint,
                query=address.query,
            )

        descriptor = self.registry.resolve_handler(address.scheme) if self.registry else None
        if descriptor is None:
            raise UnsupportedScheme(f"Unsupported URI scheme: '{address.scheme}:'. Input: '{raw}'")
        if descriptor.resolve is not None:
            return descriptor.resolve(address)
        return ResolvedAddress(
            canonical_path=address.path,
            scheme=AddressScheme.EXTENSION,
            is_directory_hint=address.directory_hint,
            alias_label=address.scheme,
            query=address.query,
        )

    async def _resolve_daily(
        self,
        raw: str,
        address: CanonicalAddress,
        create_if_missing: bool,
        token: Optional[CapabilityToken],
    ) -> ResolvedAddress:
        config = self.daily_config()
        alias = address.path or "today"
        day = alias_date(alias, self.clock(), config.date_format)
        path = daily_note_path(config, day)
        resolved = ResolvedAddress(
            canonical_path=path,
            scheme=AddressScheme.DAILY_ALIAS,
            alias_label=alias,
            query=address.query,
        )

        if await self.repository.is_document(path):
            return resolved

        if not create_if_missing:
            raise DailyNoteNotFound(alias, path)

        if token is not None:
            require_writable(path, token)

        await self._create_daily_note(path)
        logger.info("Created daily note %s for '%s'", path, alias)
        return resolved

    async def _create_daily_note(self, path: str) -> None:
        folder = posixpath.dirname(path)
        if folder and not await self.repository.exists(folder):
            await self.repository.create_directory(folder)
        try:
            await self.repository.create(path, "")
        except FileExistsError:
            # Lost a creation race; the first creator's document stands.
            logger.debug("Daily note %s was created concurrently", path)
