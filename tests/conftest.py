"""Shared pytest fixtures for mcp-vault tests."""

import tempfile
from datetime import datetime
from pathlib import Path

import pytest

from mcp_vault.daily_notes import StaticDailyNoteProvider
from mcp_vault.engine import VaultEngine
from mcp_vault.models import CapabilityTier, CapabilityToken, DirectoryRule
from mcp_vault.repository import FilesystemRepository, MemoryRepository


FIXED_NOW = datetime(2023, 5, 9, 14, 30)


def fixed_clock() -> datetime:
    return FIXED_NOW


def make_token(tier=CapabilityTier.FULL, rules=(), root_permission=True, name=None):
    """Build a token with (prefix, allowed) rule pairs."""
    return CapabilityToken(
        name=name or tier.value,
        value=f"secret-{name or tier.value}",
        tier=tier,
        allowed_directories=tuple(DirectoryRule(prefix, allowed) for prefix, allowed in rules),
        root_permission=root_permission,
    )


SAMPLE_DOCUMENTS = {
    "README.md": "# Vault\n\nWelcome to the vault.\n",
    "dir1/file1.md": "alpha beta\n",
    "dir1/file2.md": "beta gamma\n",
    "dir2/file5.md": "# Five\n\nfive contents\n",
    "dir2/subdir/file6.md": "six contents\n",
    "secret/plans.md": "top secret beta\n",
    "daily/2023-05-08.md": "yesterday's note\n",
}


@pytest.fixture
def temp_vault():
    """Create a temporary vault directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def daily_provider():
    return StaticDailyNoteProvider(date_format="YYYY-MM-DD", folder="daily")


@pytest.fixture
def repository():
    return MemoryRepository(dict(SAMPLE_DOCUMENTS))


@pytest.fixture
def fs_repository(temp_vault):
    return FilesystemRepository(temp_vault)


@pytest.fixture
def engine(repository, daily_provider):
    """Engine over the in-memory sample vault with a fixed clock."""
    return VaultEngine(repository, daily_notes=daily_provider, clock=fixed_clock)


@pytest.fixture
def full_token():
    return make_token(CapabilityTier.FULL)


@pytest.fixture
def read_only_token():
    return make_token(CapabilityTier.READ_ONLY)


@pytest.fixture
def restricted_token():
    return make_token(CapabilityTier.RESTRICTED)


@pytest.fixture
def no_secret_token():
    """Full token that may not see secret/."""
    return make_token(CapabilityTier.FULL, rules=[("/", True), ("/secret", False)], name="no-secret")
