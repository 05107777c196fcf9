"""Resource registry: addressable resource types keyed by URI scheme.

Each resource type registers a scheme with a lister (resources visible to a
token), a completer (prefix autocomplete) and a handler (read one URI).
Insertion order is advertise order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional

from .addressing import DIRECT_SCHEME, CanonicalAddress, canonicalize
from .errors import NotFound, UnsupportedScheme
from .models import CapabilityTier, CapabilityToken, ResolvedAddress

logger = logging.getLogger(__name__)

MARKDOWN_MIME = "text/markdown"
DIRECTORY_MIME = "text/directory"
JSON_MIME = "application/json"


@dataclass
class ResourceEntry:
    """One concrete resource advertised by a lister."""
    uri: str
    name: str
    mime_type: str = MARKDOWN_MIME
    description: Optional[str] = None


@dataclass
class ResourceContent:
    """Content returned by a resource handler."""
    uri: str
    text: str
    mime_type: str = MARKDOWN_MIME


Lister = Callable[[CapabilityToken], Awaitable[list[ResourceEntry]]]
Completer = Callable[[str, CapabilityToken], Awaitable[list[str]]]
Handler = Callable[[str, CapabilityToken], Awaitable[ResourceContent]]


@dataclass
class ResourceDescriptor:
    """Registered behaviour for one addressing scheme."""
    scheme: str
    description: str
    uri_template: str
    lister: Lister
    completer: Completer
    handler: Handler
    required_tier: CapabilityTier = CapabilityTier.RESTRICTED
    mime_type: str = MARKDOWN_MIME
    resolve: Optional[Callable[[CanonicalAddress], ResolvedAddress]] = None

    def visible_to(self, token: CapabilityToken) -> bool:
        return token.tier >= self.required_tier


class ResourceRegistry:
    """Scheme name -> descriptor mapping, filtered per token."""

    def __init__(self) -> None:
        self._descriptors: dict[str, ResourceDescriptor] = {}

    def register(self, descriptor: ResourceDescriptor) -> None:
        scheme = descriptor.scheme.lower()
        if scheme in self._descriptors:
            raise ValueError(f"Resource scheme already registered: {scheme}")
        self._descriptors[scheme] = descriptor
        logger.debug("Registered resource scheme %s (tier %s)", scheme, descriptor.required_tier.value)

    def unregister(self, scheme: str) -> None:
        self._descriptors.pop(scheme.lower(), None)

    def schemes(self) -> list[str]:
        return list(self._descriptors)

    def resolve_handler(self, scheme: str) -> Optional[ResourceDescriptor]:
        return self._descriptors.get(scheme.lower())

    def visible(self, token: CapabilityToken) -> list[ResourceDescriptor]:
        return [d for d in self._descriptors.values() if d.visible_to(token)]

    def names(self, token: CapabilityToken) -> list[str]:
        """Scheme names advertised to a token."""
        return [d.scheme for d in self.visible(token)]

    async def list_resources(self, token: CapabilityToken) -> list[ResourceEntry]:
        entries: list[ResourceEntry] = []
        for descriptor in self.visible(token):
            entries.extend(await descriptor.lister(token))
        return entries

    async def complete(self, scheme: str, value: str, token: CapabilityToken) -> list[str]:
        descriptor = self.resolve_handler(scheme)
        if descriptor is None or not descriptor.visible_to(token):
            return []
        return await descriptor.completer(value, token)

    def _descriptor_for(self, uri: str, token: CapabilityToken) -> ResourceDescriptor:
        visible_schemes = self.names(token)
        try:
            address = canonicalize(uri, visible_schemes)
        except UnsupportedScheme:
            raise NotFound(f"Resource not found: {uri}") from None

        descriptor = self.resolve_handler(address.scheme or DIRECT_SCHEME)
        if descriptor is None or not descriptor.visible_to(token):
            raise NotFound(f"Resource not found: {uri}")
        return descriptor

    async def read(self, uri: str, token: CapabilityToken) -> ResourceContent:
        """Read a resource URI on behalf of a token.

        Unregistered schemes and schemes above the token's tier both raise the
        same NotFound.
        """
        descriptor = self._descriptor_for(uri, token)
        return await descriptor.handler(uri, token)


def group_directory_paths(paths: Iterable[str], directory: str, depth: int = 1) -> list[str]:
    """Collapse document paths below `directory` into a listing.

    `depth=0` lists only the directory's own level; each extra level expands
    one more layer of subdirectories. Collapsed subtrees end with "/".
    """
    prefix = f"{directory}/" if directory else ""
    keep = max(depth, 0) + 1
    grouped = set()
    for path in paths:
        if not path.startswith(prefix):
            continue
        parts = path[len(prefix):].split("/")
        head = "/".join(parts[:keep])
        grouped.add(head + "/" if len(parts) > keep else head)
    return sorted(grouped)
