"""Persistence for roles, policies and role assignments."""

from scopeguard.stores.base import AssignmentStore, KeyedStore, PolicyStore, RoleStore
from scopeguard.stores.memory import InMemoryAssignmentStore, InMemoryPolicyStore, InMemoryRoleStore
from scopeguard.stores.sql import SqlAssignmentStore, SqlPolicyStore, SqlRoleStore

__all__ = [
    "KeyedStore",
    "RoleStore",
    "PolicyStore",
    "AssignmentStore",
    "InMemoryRoleStore",
    "InMemoryPolicyStore",
    "InMemoryAssignmentStore",
    "SqlRoleStore",
    "SqlPolicyStore",
    "SqlAssignmentStore",
]
