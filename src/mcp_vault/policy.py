"""Directory access policy for capability tokens.

Rules are evaluated longest-prefix-first: among the rules whose prefix is the
path itself or one of its ancestors, the most specific one decides. Two rules
with the same prefix and opposite decisions resolve to deny. A note's own
`mcp_access` flag, when set, wins over every rule.
"""

from __future__ import annotations

from typing import Optional

from .errors import AccessDenied
from .models import CapabilityToken, DirectoryRule
from .notes import AccessFlags


def _normalize(path: str) -> str:
    return "/".join(segment for segment in path.split("/") if segment)


def rule_matches(rule: DirectoryRule, path: str) -> bool:
    prefix = _normalize(rule.prefix)
    if prefix == "":
        return True
    return path == prefix or path.startswith(prefix + "/")


def matching_rule(path: str, token: CapabilityToken) -> Optional[DirectoryRule]:
    """Return the deciding rule for a path, or None if no rule applies."""
    path = _normalize(path)
    best: Optional[DirectoryRule] = None
    best_len = -1
    for rule in token.allowed_directories:
        if not rule_matches(rule, path):
            continue
        length = len(_normalize(rule.prefix))
        if length > best_len:
            best, best_len = rule, length
        elif length == best_len and not rule.allowed:
            best = rule
    return best


def is_allowed(path: str, token: CapabilityToken, access: Optional[bool] = None) -> bool:
    """Decide whether a token may see the given canonical path.

    Args:
        path: Canonical path
        token: Requesting token
        access: The note's `mcp_access` flag, if it has one
    """
    if access is not None:
        return access
    if not token.allowed_directories:
        return True
    rule = matching_rule(path, token)
    if rule is None:
        return token.root_permission
    return rule.allowed


def require_writable(path: str, token: CapabilityToken, flags: AccessFlags = AccessFlags()) -> None:
    """Raise AccessDenied unless the token may modify the path."""
    if not token.can_write:
        raise AccessDenied(f"Token '{token.name}' is not permitted to modify documents: {path}")
    if flags.read_only:
        raise AccessDenied(f"Document is marked read-only: {path}")
    if not is_allowed(path, token, flags.access):
        raise AccessDenied(f"Access denied: {path}")
