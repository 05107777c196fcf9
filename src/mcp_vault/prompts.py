"""Vault notes exposed as MCP prompts.

Every markdown note below the prompts folder is a prompt. Its frontmatter
may set `name` (default: the file name), `description` and `args`, either a
list of argument names or a JSON string holding one. `{{arg}}` placeholders
in the body are replaced with the supplied values.
"""

from __future__ import annotations

import json
import logging
import posixpath
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from .addressing import clean_path
from .errors import InvalidArguments, NotFound
from .models import CapabilityTier, CapabilityToken
from .notes import is_markdown, split_frontmatter

if TYPE_CHECKING:
    from .engine import VaultEngine

logger = logging.getLogger(__name__)

DEFAULT_PROMPTS_FOLDER = "prompts"


@dataclass
class VaultPrompt:
    """A prompt read from a note."""
    path: str
    name: str
    description: str = ""
    arguments: list[str] = field(default_factory=list)
    body: str = ""

    def render(self, values: Optional[dict[str, str]] = None) -> str:
        """Substitute `{{arg}}` placeholders.

        Raises:
            InvalidArguments: If a declared argument has no value.
        """
        values = values or {}
        for name in self.arguments:
            if name not in values:
                raise InvalidArguments(f"Missing required argument: {name}")
        text = self.body
        for key, value in values.items():
            text = text.replace("{{" + key + "}}", str(value))
        return text


def parse_prompt_args(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            logger.warning("Invalid prompt args: %s", value)
            return []
    if isinstance(value, list):
        return [str(arg) for arg in value]
    logger.warning("Invalid prompt args: %r", value)
    return []


def prompt_from_note(path: str, content: str) -> VaultPrompt:
    metadata, body = split_frontmatter(content)
    name = metadata.get("name") or posixpath.splitext(posixpath.basename(path))[0]
    return VaultPrompt(
        path=path,
        name=str(name),
        description=str(metadata.get("description") or ""),
        arguments=parse_prompt_args(metadata.get("args")),
        body=body,
    )


class PromptLibrary:
    """Prompts read from the vault on every request, filtered per token.

    Notes the token may not see are not prompts for it. When two notes
    declare the same name, the first path in sort order wins.
    """

    def __init__(
        self,
        engine: "VaultEngine",
        folder: str = DEFAULT_PROMPTS_FOLDER,
        required_tier: CapabilityTier = CapabilityTier.RESTRICTED,
    ):
        self.engine = engine
        self.folder = clean_path(folder)
        self.required_tier = required_tier

    def visible_to(self, token: CapabilityToken) -> bool:
        return token.tier >= self.required_tier

    async def list_prompts(self, token: CapabilityToken) -> list[VaultPrompt]:
        if not self.visible_to(token):
            return []

        prefix = f"{self.folder}/" if self.folder else ""
        prompts: dict[str, VaultPrompt] = {}
        for path in await self.engine.visible_documents(token):
            if not path.startswith(prefix) or not is_markdown(path):
                continue
            content = await self.engine.read_text(path)
            if content is None:
                continue
            prompt = prompt_from_note(path, content)
            if prompt.name in prompts:
                logger.warning("Prompt %s in %s shadowed by %s", prompt.name, path, prompts[prompt.name].path)
                continue
            prompts[prompt.name] = prompt
        return list(prompts.values())

    async def get_prompt(self, name: str, token: CapabilityToken) -> VaultPrompt:
        """Find a prompt by name.

        Raises:
            NotFound: For unknown names and prompts the token may not see alike.
        """
        for prompt in await self.list_prompts(token):
            if prompt.name == name:
                return prompt
        raise NotFound(f"Prompt not found: {name}")
