"""Daily-note configuration providers.

Daily-note format and folder are read on every resolution so that edits to
the underlying settings apply without a restart.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional, Protocol, Sequence

from .dates import DEFAULT_DATE_FORMAT

logger = logging.getLogger(__name__)


class DailyNoteConfigProvider(Protocol):
    """Source of the live daily-note format and folder."""

    def is_enabled(self) -> bool: ...

    def current_format(self) -> str: ...

    def current_folder(self) -> str: ...


class StaticDailyNoteProvider:
    """Daily-note settings fixed at construction (from the server config)."""

    def __init__(self, date_format: str = DEFAULT_DATE_FORMAT, folder: str = "", enabled: bool = True):
        self.date_format = date_format
        self.folder = folder
        self.enabled = enabled

    def is_enabled(self) -> bool:
        return self.enabled

    def current_format(self) -> str:
        return self.date_format or DEFAULT_DATE_FORMAT

    def current_folder(self) -> str:
        return self.folder


class SettingsFileDailyNoteProvider:
    """Daily-note settings read from a JSON file on every call.

    The file holds ``{"format": ..., "folder": ...}``, optionally nested under
    `section` (e.g. ``{"daily": {"format": ..., "enabled": true}}``). The
    provider is enabled while the file exists, parses, and does not set
    ``"enabled": false``.
    """

    def __init__(self, path: Path, section: Optional[str] = None):
        self.path = Path(path)
        self.section = section

    def _settings(self) -> Optional[dict[str, Any]]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable daily-note settings %s: %s", self.path, e)
            return None

        if self.section is not None:
            data = data.get(self.section) if isinstance(data, dict) else None
        return data if isinstance(data, dict) else None

    def is_enabled(self) -> bool:
        settings = self._settings()
        return settings is not None and settings.get("enabled", True) is not False

    def current_format(self) -> str:
        settings = self._settings() or {}
        return settings.get("format") or DEFAULT_DATE_FORMAT

    def current_folder(self) -> str:
        settings = self._settings() or {}
        return settings.get("folder") or ""


class ChainedDailyNoteProvider:
    """Delegates to the first enabled provider."""

    def __init__(self, providers: Sequence[DailyNoteConfigProvider]):
        self.providers = list(providers)

    def _active(self) -> Optional[DailyNoteConfigProvider]:
        for provider in self.providers:
            if provider.is_enabled():
                return provider
        return None

    def is_enabled(self) -> bool:
        return self._active() is not None

    def current_format(self) -> str:
        active = self._active()
        return active.current_format() if active else DEFAULT_DATE_FORMAT

    def current_folder(self) -> str:
        active = self._active()
        return active.current_folder() if active else ""
