"""Exception hierarchy for vault addressing, access and dispatch."""

from __future__ import annotations


class VaultError(Exception):
    """Base exception for vault operations."""
    error_type = "vault_error"


class InvalidAddress(VaultError):
    """Raised when an address is malformed (bad authority, traversal, empty)."""
    error_type = "invalid_address"


class UnsupportedScheme(VaultError):
    """Raised when an address carries a scheme nobody handles."""
    error_type = "unsupported_scheme"


class DailyProviderUnavailable(VaultError):
    """Raised when a daily address is used but no daily-note provider is enabled."""
    error_type = "daily_provider_unavailable"


class DailyAliasInvalid(VaultError):
    """Raised when a daily date token cannot be parsed with the configured format."""
    error_type = "daily_alias_invalid"


class NotFound(VaultError):
    """Raised when a document or directory is absent or hidden by policy."""
    error_type = "not_found"


class DailyNoteNotFound(NotFound):
    """Raised when the daily note for an alias does not exist yet."""
    error_type = "daily_note_not_found"

    def __init__(self, alias: str, expected_path: str):
        self.alias = alias
        self.expected_path = expected_path
        super().__init__(
            f"Daily note not found for '{alias}' (expected path: {expected_path}). "
            "Retry with create_if_missing=true to create it."
        )


class DocumentExists(VaultError):
    """Raised when creating a document that already exists."""
    error_type = "document_exists"


class AmbiguousMatch(VaultError):
    """Raised when a find/replace does not match exactly once."""
    error_type = "ambiguous_match"

    def __init__(self, path: str, count: int):
        self.path = path
        self.count = count
        if count == 0:
            message = f"Content not found in file: {path}"
        else:
            message = (
                f"Multiple matches ({count}) found in file: {path}. "
                "Please use a more specific search string."
            )
        super().__init__(message)


class AccessDenied(VaultError):
    """Raised for explicit write attempts on policy-denied paths."""
    error_type = "access_denied"


class UnknownTool(VaultError):
    """Raised for unregistered tools and tools outside the caller's tier."""
    error_type = "unknown_tool"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown tool: {name}")


class InvalidArguments(VaultError):
    """Raised when tool arguments are missing or malformed."""
    error_type = "invalid_arguments"


class ExtensionError(VaultError):
    """Raised when an extension provider fails or is unavailable."""
    error_type = "extension_error"


class AuthenticationError(VaultError):
    """Raised when a bearer token is missing or unknown."""
    error_type = "authentication_error"
