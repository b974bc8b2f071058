"""scopeguard - tenant-scoped access-control evaluation engine.

Roles bundle policies, policies bundle allow/deny permission patterns, and
role assignments grant a role to a user within a resource scope.
"""

__version__ = "0.1.0"
