"""Allow/deny resolution over a user's policies.

Deny has absolute precedence: if any policy denies the permission the
decision is a denial no matter which other policies allow it or in which
order the policies are visited.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from scopeguard.core.authz.permissions import permission_matches
from scopeguard.core.authz.scopes import scope_matches
from scopeguard.schemas.entities import Policy, RoleAssignment
from scopeguard.schemas.results import Decision, EffectivePermission

REASON_DENIED_BY_POLICY = "Explicitly denied by policy: {key}"
REASON_GRANTED = "Permission granted by policy"
REASON_NOT_FOUND = "Permission not found in any assigned policies"
REASON_NO_ASSIGNMENTS = "No active role assignments found for this scope"
REASON_NO_ROLES = "No roles found for assignments"


def decide(
    policies: Sequence[Policy],
    permission: str,
    evaluated_at: Optional[datetime] = None,
) -> Decision:
    """Resolve a permission against the policies reachable from a user's roles."""
    denying = [p.key for p in policies if permission_matches(p.deny, permission)]
    if denying:
        return Decision(
            allowed=False,
            reason=REASON_DENIED_BY_POLICY.format(key=denying[0]),
            matched_policies=denying,
            evaluated_at=evaluated_at,
        )

    allowing = [p.key for p in policies if permission_matches(p.allow, permission)]
    if allowing:
        return Decision(
            allowed=True,
            reason=REASON_GRANTED,
            matched_policies=allowing,
            evaluated_at=evaluated_at,
        )

    return Decision(
        allowed=False,
        reason=REASON_NOT_FOUND,
        matched_policies=[],
        evaluated_at=evaluated_at,
    )


def denied(reason: str, evaluated_at: Optional[datetime] = None) -> Decision:
    """A denial that never reached policy evaluation."""
    return Decision(allowed=False, reason=reason, matched_policies=[], evaluated_at=evaluated_at)


def filter_assignments_by_scope(
    assignments: Iterable[RoleAssignment],
    resource_scope: str,
) -> List[RoleAssignment]:
    """Keep the assignments whose scope covers the resource scope."""
    return [a for a in assignments if scope_matches(a.scope, resource_scope)]


def unique_keys(keys: Iterable[str]) -> List[str]:
    """De-duplicate keys, keeping first-seen order."""
    return list(dict.fromkeys(keys))


def build_effective_permissions(policies: Iterable[Policy]) -> List[EffectivePermission]:
    """Aggregate allow/deny entries by their literal pattern string.

    Within each policy allow entries are applied first and never replace an
    existing deny for the same literal; deny entries then always overwrite.
    Wildcards are not expanded, so "devices.*.*" and "devices.read.own" stay
    separate entries even though they overlap.
    """
    entries: Dict[str, EffectivePermission] = {}

    for policy in policies:
        for pattern in policy.allow:
            existing = entries.get(pattern)
            if existing is not None and not existing.allowed:
                continue
            entries[pattern] = EffectivePermission(
                permission=pattern,
                allowed=True,
                source=policy.key,
                conditions=policy.conditions,
            )

        for pattern in policy.deny:
            entries[pattern] = EffectivePermission(
                permission=pattern,
                allowed=False,
                source=policy.key,
                conditions=policy.conditions,
            )

    return list(entries.values())
