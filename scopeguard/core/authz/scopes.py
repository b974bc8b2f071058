"""Resource scope matching.

Scopes are slash-delimited hierarchical paths of ``type:id`` segments,
for example ``customer:123/asset:456``. ``*`` is the global scope and a
trailing ``*`` turns a scope into a prefix (``customer:*``).
"""

from scopeguard.core.errors import ValidationError

GLOBAL_SCOPE = "*"
SEPARATOR = "/"


def scope_matches(assignment_scope: str, resource_scope: str) -> bool:
    """Check whether an assignment's scope covers a resource scope.

    Rules, in order:
      1. identical strings
      2. the global scope "*"
      3. a trailing "*" matches any resource scope starting with the prefix
      4. a scope covers all of its nested sub-scopes
    """
    if assignment_scope == resource_scope:
        return True

    if assignment_scope == GLOBAL_SCOPE:
        return True

    if assignment_scope.endswith(GLOBAL_SCOPE):
        return resource_scope.startswith(assignment_scope[:-1])

    return resource_scope.startswith(assignment_scope + SEPARATOR)


def validate_scope(scope: str) -> None:
    """Raise ValidationError if a scope is not a well-formed path.

    Every segment must be ``type:id`` with a non-empty type and id. The last
    segment may instead end in "*" to act as a prefix wildcard.
    """
    if not scope:
        raise ValidationError("Scope is required", details={"scope": ["required"]})
    if scope == GLOBAL_SCOPE:
        return

    segments = scope.split(SEPARATOR)
    for index, segment in enumerate(segments):
        is_last = index == len(segments) - 1
        if is_last and segment.endswith(GLOBAL_SCOPE):
            continue

        entity_type, sep, entity_id = segment.partition(":")
        if not entity_type or not sep:
            raise ValidationError(
                f"Invalid scope segment '{segment}' in '{scope}': expected type:id",
                details={"scope": [segment]},
            )
        if not entity_id:
            raise ValidationError(
                f"Scope segment '{segment}' in '{scope}' is missing an entity id",
                details={"scope": [segment]},
            )
