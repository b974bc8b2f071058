"""Tests for the in-memory stores."""

import threading
from datetime import timedelta

import pytest

from scopeguard.core.authz.states import AssignmentStatus
from scopeguard.core.errors import ConflictError, NotFoundError, VersionConflictError
from scopeguard.core.timeutil import utcnow
from scopeguard.schemas.requests import UpdateAssignmentDTO, UpdateRoleDTO
from tests.factories import assignment_dto, policy_dto, role_dto


class TestKeyedStore:

    def test_create_and_get(self, role_store, tenant_id):
        role = role_store.create(tenant_id, role_dto(key="viewer", policies=["p"]), "admin")

        assert role.version == 1
        assert role_store.get_by_id(tenant_id, role.id) == role
        assert role_store.get_by_key(tenant_id, "viewer") == role
        assert role_store.get_by_id("other", role.id) is None

    def test_duplicate_key(self, policy_store, tenant_id):
        policy_store.create(tenant_id, policy_dto(key="reader"), "admin")

        with pytest.raises(ConflictError, match="Policy with key 'reader' already exists"):
            policy_store.create(tenant_id, policy_dto(key="reader"), "admin")

    def test_get_by_keys(self, policy_store, tenant_id):
        for key in ("a", "b", "c"):
            policy_store.create(tenant_id, policy_dto(key=key), "admin")

        assert [p.key for p in policy_store.get_by_keys(tenant_id, ["c", "missing", "a"])] == ["c", "a"]
        assert policy_store.get_by_keys(tenant_id, []) == []

    def test_returned_entities_are_copies(self, role_store, tenant_id):
        role = role_store.create(tenant_id, role_dto(policies=["p"]), "admin")
        role.policies.append("tampered")

        assert role_store.get_by_id(tenant_id, role.id).policies == ["p"]

    def test_update_versioning(self, role_store, tenant_id):
        role = role_store.create(tenant_id, role_dto(policies=["p"]), "admin")

        updated = role_store.update(tenant_id, role.id, UpdateRoleDTO(display_name="New"), "editor", expected_version=1)
        assert updated.version == 2
        assert updated.display_name == "New"

        with pytest.raises(VersionConflictError):
            role_store.update(tenant_id, role.id, UpdateRoleDTO(display_name="Old"), "editor", expected_version=1)
        assert role_store.get_by_id(tenant_id, role.id).version == 2

    def test_concurrent_writers_one_wins(self, role_store, tenant_id):
        role = role_store.create(tenant_id, role_dto(policies=["p"]), "admin")
        outcomes = []
        errors = []

        def writer(name):
            try:
                role_store.update(tenant_id, role.id, UpdateRoleDTO(display_name=name), name, expected_version=1)
                outcomes.append("ok")
            except VersionConflictError:
                outcomes.append("conflict")

        def creator(i):
            try:
                role_store.create(tenant_id, role_dto(key=f"extra-{i}", policies=["p"]), "admin")
            except Exception as exc:
                errors.append(exc)

        def reader():
            try:
                for _ in range(50):
                    role_store.list(tenant_id, limit=100)
                    role_store.get_by_keys(tenant_id, [role.key, "extra-0"])
                    assert role_store.get_by_id(tenant_id, role.id) is not None
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=writer, args=(f"w{i}",)) for i in range(8)]
        threads += [threading.Thread(target=creator, args=(i,)) for i in range(8)]
        threads += [threading.Thread(target=reader) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert outcomes.count("ok") == 1
        assert outcomes.count("conflict") == 7
        assert role_store.get_by_id(tenant_id, role.id).version == 2
        assert len(role_store.list(tenant_id, limit=100).items) == 9

    def test_update_missing(self, role_store, tenant_id):
        with pytest.raises(NotFoundError):
            role_store.update(tenant_id, "nope", UpdateRoleDTO(display_name="x"), "admin")

    def test_delete(self, role_store, tenant_id):
        role = role_store.create(tenant_id, role_dto(policies=["p"]), "admin")
        role_store.delete(tenant_id, role.id)

        assert role_store.get_by_id(tenant_id, role.id) is None
        with pytest.raises(NotFoundError):
            role_store.delete(tenant_id, role.id)

    def test_list_pages(self, policy_store, tenant_id):
        for _ in range(5):
            policy_store.create(tenant_id, policy_dto(), "admin")

        first = policy_store.list(tenant_id, limit=3)
        second = policy_store.list(tenant_id, limit=3, cursor=first.next_cursor)

        assert len(first.items) == 3 and first.has_more
        assert len(second.items) == 2 and not second.has_more
        assert {p.id for p in first.items}.isdisjoint(p.id for p in second.items)


class TestAssignmentStore:

    def test_one_active_grant(self, assignment_store, tenant_id):
        assignment_store.create(tenant_id, assignment_dto(role_key="r1"), "admin")

        with pytest.raises(ConflictError):
            assignment_store.create(tenant_id, assignment_dto(role_key="r1"), "admin")

    def test_concurrent_grants_one_wins(self, assignment_store, tenant_id):
        outcomes = []
        errors = []

        def granter():
            try:
                assignment_store.create(tenant_id, assignment_dto(user_id="u1", role_key="r1"), "admin")
                outcomes.append("ok")
            except ConflictError:
                outcomes.append("conflict")

        def reader():
            try:
                for _ in range(50):
                    assignment_store.get_by_user_id(tenant_id, "u1")
                    assignment_store.get_active_by_user_id(tenant_id, "u1", utcnow())
                    assignment_store.list(tenant_id)
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=granter) for _ in range(8)]
        threads += [threading.Thread(target=reader) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert outcomes.count("ok") == 1
        assert len(assignment_store.get_by_user_id(tenant_id, "u1")) == 1

    def test_update_status(self, assignment_store, tenant_id):
        assignment = assignment_store.create(tenant_id, assignment_dto(role_key="r1"), "admin")

        updated = assignment_store.update(
            tenant_id, assignment.id, UpdateAssignmentDTO(status=AssignmentStatus.INACTIVE), "admin"
        )
        assert updated.status == AssignmentStatus.INACTIVE
        assert updated.version == 2

    def test_active_lookup_excludes_expired(self, assignment_store, tenant_id):
        now = utcnow()
        assignment_store.create(tenant_id, assignment_dto(role_key="live"), "admin")
        assignment_store.create(
            tenant_id, assignment_dto(role_key="future", expires_at=now + timedelta(hours=1)), "admin"
        )
        assignment_store.create(
            tenant_id, assignment_dto(role_key="past", expires_at=now - timedelta(hours=1)), "admin"
        )

        active = assignment_store.get_active_by_user_id(tenant_id, "u1", now)
        assert sorted(a.role_key for a in active) == ["future", "live"]

        candidates = assignment_store.list_expired_candidates(tenant_id, now)
        assert [a.role_key for a in candidates] == ["past"]

    def test_lookups(self, assignment_store, tenant_id):
        assignment_store.create(tenant_id, assignment_dto(user_id="u1", role_key="r1", scope="customer:1"), "admin")
        assignment_store.create(tenant_id, assignment_dto(user_id="u1", role_key="r1", scope="customer:2"), "admin")
        assignment_store.create(tenant_id, assignment_dto(user_id="u2", role_key="r2", scope="customer:1"), "admin")

        assert len(assignment_store.get_by_user_id(tenant_id, "u1")) == 2
        assert len(assignment_store.get_by_user_and_scope(tenant_id, "u1", "customer:2")) == 1
        assert len(assignment_store.get_by_role_key(tenant_id, "r2")) == 1
        assert assignment_store.get_by_user_id("other", "u1") == []
