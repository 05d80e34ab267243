from datetime import timedelta

import pytest

from app.features.permissions.catalog import CATALOG, is_legal
from app.features.permissions.grants import (
    GLOBAL,
    ClassScope,
    CustomerScope,
    PermissionKind,
    ScopeKind,
)
from app.features.permissions.lifecycle import GrantLifecycle, GrantValidationError
from app.features.permissions.resolution import GrantResolver
from app.features.permissions.store import GrantStore


def test_grant_stamps_actor_and_time(lifecycle: GrantLifecycle, store: GrantStore, clock) -> None:
    lifecycle.grant_for_customer("bob", 42, [PermissionKind.EDIT_CUSTOMER], "admin-1")

    record = store.get("bob", PermissionKind.EDIT_CUSTOMER, CustomerScope(id=42))
    assert record.granted_by == "admin-1"
    assert record.granted_at == clock.now
    assert record.expires_at is None


def test_grant_is_idempotent(lifecycle: GrantLifecycle, store: GrantStore) -> None:
    first = lifecycle.grant_global("alice", [PermissionKind.VIEW_CUSTOMER_PHONE], "root")
    before = store.records()
    second = lifecycle.grant_global("alice", [PermissionKind.VIEW_CUSTOMER_PHONE], "root")

    assert first.added == [PermissionKind.VIEW_CUSTOMER_PHONE]
    assert second.added == []
    assert second.unchanged == [PermissionKind.VIEW_CUSTOMER_PHONE]
    assert store.records() == before


def test_revoke_absent_is_noop(lifecycle: GrantLifecycle, store: GrantStore) -> None:
    lifecycle.grant_global("alice", [PermissionKind.VIEW_CUSTOMER], "root")

    change = lifecycle.revoke_for_class("alice", 9, [PermissionKind.EDIT_CLASS], "root")

    assert change.removed == []
    assert change.unchanged == [PermissionKind.EDIT_CLASS]
    assert len(store) == 1


def test_grant_then_revoke_restores_store(lifecycle: GrantLifecycle, store: GrantStore) -> None:
    lifecycle.grant_global("alice", [PermissionKind.VIEW_CUSTOMER], "root")
    before = store.records()

    lifecycle.grant_for_customer("alice", 5, [PermissionKind.VIEW_CUSTOMER_PHONE], "root")
    lifecycle.revoke_for_customer("alice", 5, [PermissionKind.VIEW_CUSTOMER_PHONE], "root")

    assert store.records() == before


def test_partial_revoke_keeps_remaining_kinds(lifecycle: GrantLifecycle, store: GrantStore) -> None:
    kinds = [PermissionKind.EDIT_CLASS, PermissionKind.VIEW_CLASS_STUDENT_NAME, PermissionKind.EDIT_CLASS_STUDENT]
    lifecycle.grant_for_class("tina", 3, kinds, "root")

    change = lifecycle.revoke_for_class("tina", 3, [PermissionKind.EDIT_CLASS_STUDENT], "root")

    assert change.removed == [PermissionKind.EDIT_CLASS_STUDENT]
    remaining = {r.permission_kind for r in store.query_by_user("tina")}
    assert remaining == {PermissionKind.EDIT_CLASS, PermissionKind.VIEW_CLASS_STUDENT_NAME}


def test_duplicate_kinds_in_one_call_are_collapsed(lifecycle: GrantLifecycle, store: GrantStore) -> None:
    change = lifecycle.grant_global(
        "alice", [PermissionKind.VIEW_CUSTOMER, "view_customer"], "root"
    )

    assert change.added == [PermissionKind.VIEW_CUSTOMER]
    assert len(store) == 1


@pytest.mark.parametrize(
    "call",
    [
        lambda lc: lc.grant_global("alice", [], "root"),
        lambda lc: lc.revoke_for_customer("alice", 1, [], "root"),
        lambda lc: lc.grant_global("", [PermissionKind.VIEW_CUSTOMER], "root"),
        lambda lc: lc.grant_global("alice", [PermissionKind.VIEW_CUSTOMER], "  "),
        lambda lc: lc.grant_global("alice", ["launch_rockets"], "root"),
    ],
)
def test_invalid_input_is_rejected(lifecycle: GrantLifecycle, store: GrantStore, call) -> None:
    with pytest.raises(GrantValidationError):
        call(lifecycle)
    assert len(store) == 0


def test_kind_must_be_legal_for_scope(lifecycle: GrantLifecycle, store: GrantStore) -> None:
    with pytest.raises(GrantValidationError) as exc_info:
        lifecycle.grant_for_customer("alice", 1, [PermissionKind.VIEW_CUSTOMER, PermissionKind.EDIT_CLASS], "root")

    assert exc_info.value.field == "permission_kinds"
    assert len(store) == 0

    with pytest.raises(GrantValidationError):
        lifecycle.grant_for_class("alice", 1, [PermissionKind.EDIT_CUSTOMER], "root")
    with pytest.raises(GrantValidationError):
        lifecycle.grant_for_customer("alice", 1, [PermissionKind.ASSIGN_CUSTOMER], "root")


def test_every_kind_is_legal_globally() -> None:
    assert set(CATALOG) == set(PermissionKind)
    for kind in PermissionKind:
        assert is_legal(kind, ScopeKind.GLOBAL)


def test_expiry_must_be_in_future(lifecycle: GrantLifecycle, clock) -> None:
    with pytest.raises(GrantValidationError) as exc_info:
        lifecycle.grant_global("alice", [PermissionKind.VIEW_CUSTOMER], "root", expires_at=clock.now)

    assert exc_info.value.field == "expires_at"


def test_regrant_replaces_expired_grant(lifecycle: GrantLifecycle, store: GrantStore, clock) -> None:
    lifecycle.grant_global("alice", [PermissionKind.VIEW_CUSTOMER], "root", expires_at=clock.now + timedelta(days=1))
    clock.advance(days=2)

    change = lifecycle.grant_global("alice", [PermissionKind.VIEW_CUSTOMER], "admin-2")

    assert change.added == [PermissionKind.VIEW_CUSTOMER]
    record = store.get("alice", PermissionKind.VIEW_CUSTOMER, GLOBAL)
    assert record.granted_by == "admin-2"
    assert record.expires_at is None


def test_set_global_syncs_checklist(lifecycle: GrantLifecycle, store: GrantStore) -> None:
    lifecycle.grant_global("alice", [PermissionKind.VIEW_CUSTOMER, PermissionKind.EDIT_CUSTOMER], "root")
    lifecycle.grant_for_customer("alice", 5, [PermissionKind.VIEW_CUSTOMER_PHONE], "root")

    change = lifecycle.set_global(
        "alice", [PermissionKind.VIEW_CUSTOMER, PermissionKind.ASSIGN_CUSTOMER], "root"
    )

    assert change.added == [PermissionKind.ASSIGN_CUSTOMER]
    assert change.removed == [PermissionKind.EDIT_CUSTOMER]
    assert change.unchanged == [PermissionKind.VIEW_CUSTOMER]
    assert store.get("alice", PermissionKind.VIEW_CUSTOMER_PHONE, CustomerScope(id=5)) is not None


def test_set_global_with_empty_list_clears_global_grants(lifecycle: GrantLifecycle, store: GrantStore) -> None:
    lifecycle.grant_global("alice", [PermissionKind.VIEW_CUSTOMER], "root")
    lifecycle.grant_for_class("alice", 2, [PermissionKind.EDIT_CLASS], "root")

    change = lifecycle.set_global("alice", [], "root")

    assert change.removed == [PermissionKind.VIEW_CUSTOMER]
    assert [r.scope for r in store.query_by_user("alice")] == [ClassScope(id=2)]


def test_reset_and_purge(lifecycle: GrantLifecycle, store: GrantStore, clock) -> None:
    lifecycle.grant_global("alice", [PermissionKind.VIEW_CUSTOMER], "root", expires_at=clock.now + timedelta(minutes=5))
    lifecycle.grant_global("bob", [PermissionKind.VIEW_CUSTOMER], "root")
    clock.advance(minutes=5)

    assert lifecycle.purge_expired() == 1
    assert lifecycle.reset("root") == 1
    assert len(store) == 0

    with pytest.raises(GrantValidationError):
        lifecycle.reset("")


def test_set_global_regrants_expired_kind(lifecycle: GrantLifecycle, store: GrantStore, clock) -> None:
    lifecycle.grant_global("alice", [PermissionKind.VIEW_CUSTOMER], "root", expires_at=clock.now + timedelta(hours=1))
    clock.advance(hours=2)

    change = lifecycle.set_global("alice", [PermissionKind.VIEW_CUSTOMER], "admin-2")

    assert change.added == [PermissionKind.VIEW_CUSTOMER]
    assert change.unchanged == []
    record = store.get("alice", PermissionKind.VIEW_CUSTOMER)
    assert record.granted_by == "admin-2"
    assert record.expires_at is None
    assert GrantResolver(store, clock=clock).has_permission("alice", PermissionKind.VIEW_CUSTOMER)


def test_set_global_leaves_unlisted_expired_kind_alone(lifecycle: GrantLifecycle, store: GrantStore, clock) -> None:
    lifecycle.grant_global("alice", [PermissionKind.EDIT_CUSTOMER], "root", expires_at=clock.now + timedelta(hours=1))
    clock.advance(hours=2)

    change = lifecycle.set_global("alice", [PermissionKind.VIEW_CUSTOMER], "root")

    assert change.added == [PermissionKind.VIEW_CUSTOMER]
    assert change.removed == []
    assert not GrantResolver(store, clock=clock).has_permission("alice", PermissionKind.EDIT_CUSTOMER)
