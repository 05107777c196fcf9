"""Configuration loading for MCP Vault.

Supports three tiers:
1. Simple config via .toml or .json - most users
2. Python config via .py - power users with custom tools
3. Full override via VaultEngine/ToolRegistry composition - rare cases
"""

from __future__ import annotations

import importlib.util
import json
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

from .daily_notes import (
    ChainedDailyNoteProvider,
    DailyNoteConfigProvider,
    SettingsFileDailyNoteProvider,
    StaticDailyNoteProvider,
)
from .dates import DEFAULT_DATE_FORMAT
from .models import CapabilityTier, CapabilityToken, DirectoryRule
from .prompts import DEFAULT_PROMPTS_FOLDER

# Python 3.11+ has tomllib in stdlib; fall back to tomli for older versions
try:
    import tomllib  # Python 3.11+
except ImportError:
    try:
        import tomli as tomllib  # Python <3.11
    except ImportError:  # pragma: no cover
        tomllib = None

DEFAULT_INSTRUCTIONS = (
    "This server gives access to a markdown vault. Use file:/// URIs (or bare "
    "paths) for documents and directories, and daily:///today, "
    "daily:///yesterday, daily:///tomorrow or daily:///<date> for daily notes."
)


@dataclass
class VaultConfig:
    """Configuration for a served vault."""

    server_name: str = "mcp-vault"
    instructions: str = DEFAULT_INSTRUCTIONS
    vault_root: Path = field(default_factory=Path.cwd)
    verbose: bool = False

    # Daily notes
    daily_notes_enabled: bool = True
    daily_notes_format: str = DEFAULT_DATE_FORMAT
    daily_notes_folder: str = ""
    daily_settings_files: list[Path] = field(default_factory=list)

    # Prompts (notes below prompts_folder)
    prompts_enabled: bool = True
    prompts_folder: str = DEFAULT_PROMPTS_FOLDER
    prompts_tier: CapabilityTier = CapabilityTier.RESTRICTED

    tokens: list[CapabilityToken] = field(default_factory=list)

    # Extension kind -> "package.module:factory"
    extensions: dict[str, str] = field(default_factory=dict)

    # Custom tools (populated from Python config)
    custom_tools: dict[str, Callable] = field(default_factory=dict)

    def daily_note_provider(self) -> DailyNoteConfigProvider:
        """Settings files win over the static [daily_notes] values while they exist."""
        providers: list[DailyNoteConfigProvider] = [
            SettingsFileDailyNoteProvider(path) for path in self.daily_settings_files
        ]
        providers.append(StaticDailyNoteProvider(
            date_format=self.daily_notes_format,
            folder=self.daily_notes_folder,
            enabled=self.daily_notes_enabled,
        ))
        return ChainedDailyNoteProvider(providers)

    def get_token(self, name: str) -> Optional[CapabilityToken]:
        for token in self.tokens:
            if token.name == name:
                return token
        return None


def load_toml_config(path: Path) -> dict[str, Any]:
    """Load configuration from TOML file."""
    if tomllib is None:
        raise ImportError("tomli required for TOML config: pip install tomli")
    with open(path, "rb") as f:
        return tomllib.load(f)


def load_json_config(path: Path) -> dict[str, Any]:
    """Load configuration from JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def load_python_config(path: Path) -> tuple[dict[str, Any], dict[str, Callable]]:
    """Load configuration from Python file.

    Returns:
        Tuple of (config_dict, custom_tools_dict)

    Convention:
        - CONFIG dict or config dict for static configuration
        - Functions named custom_tool_* become MCP tools; set a
          `required_tier` attribute on them to lower the default FULL tier
    """
    spec = importlib.util.spec_from_file_location("vault_config", path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot load Python config from {path}")

    module = importlib.util.module_from_spec(spec)
    sys.modules["vault_config"] = module
    spec.loader.exec_module(module)

    config_dict = {}
    if hasattr(module, "CONFIG"):
        config_dict = module.CONFIG
    elif hasattr(module, "config"):
        config_dict = module.config

    custom_tools = {}
    for name in dir(module):
        if name.startswith("custom_tool_"):
            tool_name = name[12:]  # Remove "custom_tool_" prefix
            custom_tools[tool_name] = getattr(module, name)

    return config_dict, custom_tools


def parse_token(data: dict[str, Any]) -> CapabilityToken:
    """Build a CapabilityToken from a `[[tokens]]` table.

    Raises:
        ValueError: If the entry has no name or no secret.
    """
    name = data.get("name")
    if not name:
        raise ValueError("Token entry is missing 'name'")

    value = data.get("token")
    if not value and data.get("token_env"):
        value = os.environ.get(data["token_env"])
        if not value:
            raise ValueError(f"Token '{name}': environment variable {data['token_env']} is not set")
    if not value:
        raise ValueError(f"Token '{name}' has neither 'token' nor 'token_env'")

    rules = []
    for rule in data.get("directories", []):
        if isinstance(rule, str):
            rules.append(DirectoryRule(prefix=rule, allowed=True))
        else:
            rules.append(DirectoryRule(prefix=rule["path"], allowed=bool(rule.get("allowed", True))))

    return CapabilityToken(
        name=name,
        value=value,
        tier=CapabilityTier.parse(data.get("tier", CapabilityTier.READ_ONLY.value)),
        allowed_directories=tuple(rules),
        root_permission=bool(data.get("root_permission", True)),
    )


def dict_to_config(data: dict[str, Any], vault_root: Path) -> VaultConfig:
    """Convert dictionary to VaultConfig."""
    config = VaultConfig(vault_root=vault_root)

    if "server" in data:
        server = data["server"]
        if "name" in server:
            config.server_name = server["name"]
        if "instructions" in server:
            config.instructions = server["instructions"]
        if "verbose" in server:
            config.verbose = bool(server["verbose"])

    if "daily_notes" in data:
        daily = data["daily_notes"]
        if "enabled" in daily:
            config.daily_notes_enabled = bool(daily["enabled"])
        if "format" in daily:
            config.daily_notes_format = daily["format"]
        if "folder" in daily:
            config.daily_notes_folder = daily["folder"]
        for settings in daily.get("settings_files", []):
            path = Path(settings)
            config.daily_settings_files.append(path if path.is_absolute() else vault_root / path)

    if "prompts" in data:
        prompts = data["prompts"]
        if "enabled" in prompts:
            config.prompts_enabled = bool(prompts["enabled"])
        if "folder" in prompts:
            config.prompts_folder = prompts["folder"]
        if "tier" in prompts:
            config.prompts_tier = CapabilityTier.parse(prompts["tier"])

    for token_data in data.get("tokens", []):
        config.tokens.append(parse_token(token_data))

    names = [t.name for t in config.tokens]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ValueError(f"Duplicate token names: {duplicates}")

    if "extensions" in data:
        config.extensions = dict(data["extensions"])

    return config


def find_config_file(vault_root: Path) -> Optional[Path]:
    """Find configuration file in vault root.

    Search order:
    1. vault_config.py (most flexible)
    2. vault_config.toml
    3. vault_config.json
    4. .vault.toml
    5. .vault.json
    """
    candidates = [
        "vault_config.py",
        "vault_config.toml",
        "vault_config.json",
        ".vault.toml",
        ".vault.json",
    ]

    for name in candidates:
        path = vault_root / name
        if path.exists():
            return path

    return None


def load_config(vault_root: Path, config_path: Optional[Path] = None) -> VaultConfig:
    """Load vault configuration.

    Args:
        vault_root: Root directory of the vault
        config_path: Optional explicit path to config file

    Returns:
        VaultConfig instance
    """
    if config_path is None:
        config_path = find_config_file(vault_root)

    if config_path is None:
        # No config file - use defaults
        return VaultConfig(vault_root=vault_root)

    suffix = config_path.suffix.lower()

    if suffix == ".py":
        config_dict, custom_tools = load_python_config(config_path)
        config = dict_to_config(config_dict, vault_root)
        config.custom_tools = custom_tools
        return config

    elif suffix == ".toml":
        config_dict = load_toml_config(config_path)
        return dict_to_config(config_dict, vault_root)

    elif suffix == ".json":
        config_dict = load_json_config(config_path)
        return dict_to_config(config_dict, vault_root)

    else:
        raise ValueError(f"Unsupported config file type: {suffix}")
