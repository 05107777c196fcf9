"""Data models for tokens, addresses and daily-note settings."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional


class CapabilityTier(Enum):
    """Capability tier carried by a token.

    Tiers are ordered: RESTRICTED < READ_ONLY < FULL. A tool or resource
    registered with a minimum tier is visible to every token at or above it.
    """
    RESTRICTED = "restricted"
    READ_ONLY = "read_only"
    FULL = "full"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, CapabilityTier):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, CapabilityTier):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, CapabilityTier):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, CapabilityTier):
            return NotImplemented
        return self.rank >= other.rank

    @classmethod
    def parse(cls, value: str) -> "CapabilityTier":
        """Parse a tier name, accepting `read-only`, `readonly` and `read_only`."""
        normalized = value.strip().lower().replace("-", "_")
        if normalized == "readonly":
            normalized = "read_only"
        try:
            return cls(normalized)
        except ValueError:
            valid = [t.value for t in cls]
            raise ValueError(f"Unknown capability tier '{value}'. Valid: {valid}") from None


_TIER_RANK = {
    CapabilityTier.RESTRICTED: 0,
    CapabilityTier.READ_ONLY: 1,
    CapabilityTier.FULL: 2,
}


class AddressScheme(Enum):
    """Addressing scheme an address resolved through."""
    DIRECT = "direct"
    DAILY_ALIAS = "daily"
    EXTENSION = "extension"


@dataclass(frozen=True)
class DirectoryRule:
    """Allow/deny rule for a directory prefix."""
    prefix: str
    allowed: bool


@dataclass(frozen=True)
class CapabilityToken:
    """An issued bearer token. Immutable for the process lifetime."""
    name: str
    value: str = field(repr=False)
    tier: CapabilityTier = CapabilityTier.READ_ONLY
    allowed_directories: tuple[DirectoryRule, ...] = ()
    root_permission: bool = True  # decision when rules exist but none matches

    @property
    def can_write(self) -> bool:
        return self.tier >= CapabilityTier.FULL


@dataclass(frozen=True)
class ResolvedAddress:
    """A canonical repository location produced by the resolver."""
    canonical_path: str
    scheme: AddressScheme
    is_directory_hint: bool = False
    alias_label: Optional[str] = None
    query: dict[str, str] = field(default_factory=dict, compare=False, hash=False)


@dataclass(frozen=True)
class DailyNoteConfig:
    """Snapshot of the daily-note format and folder, taken per resolution."""
    date_format: str = "YYYY-MM-DD"
    folder: str = ""


Clock = Callable[[], datetime]


def local_now() -> datetime:
    """Get the current local time. Daily notes follow the user's calendar day."""
    return datetime.now()


def format_timestamp(dt: datetime) -> str:
    """Format datetime as ISO 8601."""
    return dt.isoformat(timespec="seconds")
