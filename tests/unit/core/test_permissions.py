"""Tests for permission strings and pattern matching."""

import pytest

from scopeguard.core.authz.permissions import (
    Permission,
    invalid_patterns,
    is_concrete_permission,
    is_valid_pattern,
    pattern_matches,
    permission_matches,
    validate_permission_patterns,
)
from scopeguard.core.errors import ValidationError


class TestPermissionModel:
    """Test permission parsing."""

    def test_permission_string_format(self):
        perm = Permission("devices", "read", "own")
        assert str(perm) == "devices.read.own"

    def test_permission_from_string(self):
        perm = Permission.from_string("energy.settings.read")
        assert perm.domain == "energy"
        assert perm.function == "settings"
        assert perm.action == "read"
        assert not perm.is_pattern

    def test_pattern_from_string(self):
        assert Permission.from_string("devices.*.*").is_pattern

    def test_invalid_permission_format(self):
        with pytest.raises(ValueError):
            Permission.from_string("devices.read")

        with pytest.raises(ValueError):
            Permission.from_string("a.b.c.d")


class TestPatternGrammar:

    @pytest.mark.parametrize("pattern", [
        "devices.read.own",
        "devices.*.*",
        "*.*.read",
        "*.*.*",
    ])
    def test_valid_patterns(self, pattern):
        assert is_valid_pattern(pattern)

    @pytest.mark.parametrize("pattern", [
        "devices.read",
        "devices.read.own.extra",
        "Devices.read.own",
        "devices.re*.own",
        "devices..own",
        "devices.read.own\n",
        "",
    ])
    def test_invalid_patterns(self, pattern):
        assert not is_valid_pattern(pattern)

    def test_concrete_permission_rejects_wildcards(self):
        assert is_concrete_permission("devices.read.own")
        assert not is_concrete_permission("devices.*.own")

    def test_invalid_patterns_lists_all(self):
        assert invalid_patterns(["devices.read.own", "bad", "also.bad"]) == ["bad", "also.bad"]

    def test_validate_raises_with_details(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_permission_patterns(["devices.*.*", "nope", "x.y"])

        assert exc_info.value.details == {"permissions": ["nope", "x.y"]}
        assert "nope" in exc_info.value.message
        assert exc_info.value.status_code == 400

    def test_validate_accepts_empty(self):
        validate_permission_patterns([])


class TestMatching:

    def test_exact_match(self):
        assert pattern_matches("devices.read.own", "devices.read.own")
        assert not pattern_matches("devices.read.own", "devices.read.any")

    def test_wildcard_segments(self):
        assert pattern_matches("devices.*.*", "devices.delete.any")
        assert pattern_matches("*.*.read", "energy.settings.read")
        assert not pattern_matches("*.*.read", "energy.settings.write")

    def test_segment_count_must_match(self):
        assert not pattern_matches("devices.*", "devices.read.own")
        assert not pattern_matches("devices.*.*", "devices.read")
        assert not pattern_matches("*.*.*", "a.b.c.d")

    def test_any_pattern_in_list(self):
        patterns = ["energy.*.*", "devices.read.*"]
        assert permission_matches(patterns, "devices.read.own")
        assert not permission_matches(patterns, "devices.write.own")

    def test_empty_list_never_matches(self):
        assert not permission_matches([], "devices.read.own")
