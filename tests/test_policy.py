"""Tests for the directory access policy."""

import pytest
from hypothesis import given, strategies as st

from mcp_vault.errors import AccessDenied
from mcp_vault.models import CapabilityTier
from mcp_vault.notes import AccessFlags
from mcp_vault.policy import is_allowed, matching_rule, require_writable

from conftest import make_token


class TestIsAllowed:
    """Tests for longest-prefix evaluation."""

    def test_no_rules_allows_everything(self):
        token = make_token(CapabilityTier.RESTRICTED)
        assert is_allowed("anything/at/all.md", token)
        assert is_allowed("", token)

    def test_root_allow_with_secret_deny(self):
        token = make_token(rules=[("/", True), ("/secret", False)])
        assert is_allowed("dir1/file1.md", token)
        assert is_allowed("README.md", token)
        assert not is_allowed("secret/plans.md", token)
        assert not is_allowed("secret", token)

    def test_prefix_matches_whole_segments(self):
        token = make_token(rules=[("/", True), ("secret", False)])
        assert is_allowed("secretive/notes.md", token)

    def test_longest_prefix_wins(self):
        token = make_token(rules=[("a", False), ("a/b", True)])
        assert is_allowed("a/b/c.md", token)
        assert not is_allowed("a/x.md", token)

    def test_rule_order_does_not_matter(self):
        forward = make_token(rules=[("a", False), ("a/b", True)])
        backward = make_token(rules=[("a/b", True), ("a", False)])
        for path in ("a/b/c.md", "a/x.md", "z.md"):
            assert is_allowed(path, forward) == is_allowed(path, backward)

    def test_tie_breaks_toward_deny(self):
        token = make_token(rules=[("docs", True), ("/docs/", False)])
        assert not is_allowed("docs/readme.md", token)
        assert matching_rule("docs/readme.md", token).allowed is False

    def test_no_matching_rule_uses_root_permission(self):
        open_token = make_token(rules=[("daily", True)], root_permission=True)
        closed_token = make_token(rules=[("daily", True)], root_permission=False)
        assert is_allowed("other.md", open_token)
        assert not is_allowed("other.md", closed_token)
        assert is_allowed("daily/2023-05-09.md", closed_token)

    def test_note_access_flag_overrides_rules(self):
        token = make_token(rules=[("/", True), ("secret", False)])
        assert is_allowed("secret/b.md", token, access=True)
        assert not is_allowed("a.md", token, access=False)
        assert not is_allowed("a.md", make_token(), access=False)

    @given(st.lists(st.sampled_from(["secret", "secretive", "notes", "a", "b.md"]), min_size=1, max_size=4))
    def test_deny_covers_exactly_the_subtree(self, segments):
        token = make_token(rules=[("/", True), ("secret", False)])
        path = "/".join(segments)
        assert is_allowed(path, token) == (segments[0] != "secret")


class TestRequireWritable:
    """Tests for require_writable."""

    def test_full_token_allowed(self):
        require_writable("notes/a.md", make_token(CapabilityTier.FULL))

    @pytest.mark.parametrize("tier", [CapabilityTier.RESTRICTED, CapabilityTier.READ_ONLY])
    def test_lower_tiers_denied(self, tier):
        with pytest.raises(AccessDenied, match="not permitted to modify"):
            require_writable("notes/a.md", make_token(tier))

    def test_denied_directory(self):
        token = make_token(rules=[("/", True), ("secret", False)])
        with pytest.raises(AccessDenied, match="Access denied: secret/a.md"):
            require_writable("secret/a.md", token)

    def test_read_only_note(self):
        with pytest.raises(AccessDenied, match="marked read-only"):
            require_writable("notes/a.md", make_token(CapabilityTier.FULL), AccessFlags(read_only=True))

    def test_note_access_flag_opens_denied_directory(self):
        token = make_token(rules=[("/", True), ("secret", False)])
        require_writable("secret/a.md", token, AccessFlags(access=True))
