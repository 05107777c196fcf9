"""Markdown note helpers: YAML frontmatter and per-note access flags.

A note can override the directory rules of every token through its
frontmatter:

    mcp_access: false     # hidden from every token
    mcp_access: true      # visible even inside a denied directory
    mcp_readonly: true    # never modified through the server
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

import frontmatter
import yaml

logger = logging.getLogger(__name__)

MARKDOWN_SUFFIX = ".md"


def is_markdown(path: str) -> bool:
    return path.lower().endswith(MARKDOWN_SUFFIX)


def split_frontmatter(content: str) -> tuple[dict[str, Any], str]:
    """Split a note into (metadata, body).

    Malformed frontmatter is logged and treated as absent.
    """
    try:
        post = frontmatter.loads(content)
    except (yaml.YAMLError, ValueError) as e:
        logger.warning("Ignoring malformed frontmatter: %s", e)
        return {}, content
    return dict(post.metadata), post.content


def parse_frontmatter(content: str) -> dict[str, Any]:
    return split_frontmatter(content)[0]


def format_value(value: Any) -> str:
    """Render a frontmatter value on one line."""
    if isinstance(value, (list, tuple)):
        return ", ".join(format_value(v) for v in value)
    if isinstance(value, dict):
        return json.dumps(value, default=str)
    return str(value)


@dataclass(frozen=True)
class AccessFlags:
    """Per-note overrides read from frontmatter."""
    access: Optional[bool] = None
    read_only: bool = False


def access_flags(metadata: dict[str, Any]) -> AccessFlags:
    access = metadata.get("mcp_access")
    return AccessFlags(
        access=access if isinstance(access, bool) else None,
        read_only=metadata.get("mcp_readonly") is True,
    )
