"""Permission strings and pattern matching.

Permission string format: "domain.function.action"
Examples:
  - devices.read.own
  - energy.settings.read

A pattern may replace any whole segment with the wildcard "*":
  - devices.*.*      every function and action in the devices domain
  - *.*.read         read in every domain and function
"""

import re
from typing import Iterable, List, NamedTuple

from scopeguard.core.errors import ValidationError

WILDCARD = "*"
SEGMENT_COUNT = 3

CONCRETE_PERMISSION_REGEX = r"^[a-z]+\.[a-z]+\.[a-z]+$"
PERMISSION_PATTERN_REGEX = r"^(?:[a-z]+|\*)\.(?:[a-z]+|\*)\.(?:[a-z]+|\*)$"

_PATTERN_RE = re.compile(PERMISSION_PATTERN_REGEX)
_CONCRETE_RE = re.compile(CONCRETE_PERMISSION_REGEX)


class Permission(NamedTuple):
    """A permission split into its three segments."""
    domain: str
    function: str
    action: str

    def __str__(self) -> str:
        return f"{self.domain}.{self.function}.{self.action}"

    @classmethod
    def from_string(cls, perm_str: str) -> "Permission":
        """Parse a permission or pattern string like 'devices.read.own'."""
        parts = perm_str.split(".")
        if len(parts) != SEGMENT_COUNT:
            raise ValueError(f"Invalid permission format: {perm_str}")
        return cls(*parts)

    @property
    def is_pattern(self) -> bool:
        return WILDCARD in self


def is_valid_pattern(pattern: str) -> bool:
    """Check a policy allow/deny entry against the pattern grammar."""
    return bool(_PATTERN_RE.fullmatch(pattern))


def is_concrete_permission(permission: str) -> bool:
    """Check that a permission has three lowercase segments and no wildcard."""
    return bool(_CONCRETE_RE.fullmatch(permission))


def invalid_patterns(patterns: Iterable[str]) -> List[str]:
    """Return every entry that does not follow the pattern grammar."""
    return [p for p in patterns if not is_valid_pattern(p)]


def validate_permission_patterns(patterns: Iterable[str]) -> None:
    """Raise ValidationError naming all malformed patterns."""
    bad = invalid_patterns(patterns)
    if bad:
        raise ValidationError(
            f"Invalid permission format: {', '.join(bad)}. "
            f"Expected format: domain.function.action (e.g., energy.settings.read)",
            details={"permissions": bad},
        )


def pattern_matches(pattern: str, target: str) -> bool:
    """Check one pattern against one permission, segment by segment."""
    try:
        expected = Permission.from_string(pattern)
        actual = Permission.from_string(target)
    except ValueError:
        return False

    if not expected.is_pattern:
        return expected == actual
    return all(e == WILDCARD or e == a for e, a in zip(expected, actual))


def permission_matches(patterns: Iterable[str], target: str) -> bool:
    """True if any of the patterns matches the target permission."""
    return any(pattern_matches(pattern, target) for pattern in patterns)
