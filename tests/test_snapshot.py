import json
from datetime import timedelta
from pathlib import Path

import pytest

from app.features.permissions.grants import ClassScope, CustomerScope, PermissionKind
from app.features.permissions.lifecycle import GrantLifecycle
from app.features.permissions.snapshot import (
    SCHEMA_VERSION,
    SnapshotError,
    load_snapshot,
    restore_snapshot,
    save_snapshot,
)
from app.features.permissions.store import GrantStore


def test_save_and_restore(tmp_path: Path, lifecycle: GrantLifecycle, store: GrantStore, clock) -> None:
    lifecycle.grant_global("alice", [PermissionKind.VIEW_CUSTOMER_PHONE], "root")
    lifecycle.grant_for_customer("bob", 42, [PermissionKind.EDIT_CUSTOMER], "root")
    lifecycle.grant_for_class(
        "carol", 3, [PermissionKind.VIEW_CLASS_STUDENT_NAME], "root", expires_at=clock.now + timedelta(days=7)
    )
    path = tmp_path / "grants.json"

    assert save_snapshot(store, path) == 3

    restored = GrantStore()
    assert restore_snapshot(restored, path) == 3
    assert sorted(restored.records(), key=lambda r: r.user_id) == sorted(store.records(), key=lambda r: r.user_id)
    assert restored.get("bob", PermissionKind.EDIT_CUSTOMER, CustomerScope(id=42)) is not None
    assert restored.get("carol", PermissionKind.VIEW_CLASS_STUDENT_NAME, ClassScope(id=3)).expires_at is not None


def test_document_layout(tmp_path: Path, lifecycle: GrantLifecycle, store: GrantStore) -> None:
    lifecycle.grant_for_customer("bob", 42, [PermissionKind.EDIT_CUSTOMER], "root")
    path = tmp_path / "nested" / "grants.json"

    save_snapshot(store, path)
    document = json.loads(path.read_text(encoding="utf-8"))

    assert document["schema_version"] == SCHEMA_VERSION
    [grant] = document["grants"]
    assert grant["user_id"] == "bob"
    assert grant["permission_kind"] == "edit_customer"
    assert grant["scope"] == {"kind": "customer", "id": 42}
    assert grant["granted_by"] == "root"
    assert list(tmp_path.joinpath("nested").iterdir()) == [path]


def test_missing_file_is_empty(tmp_path: Path) -> None:
    assert load_snapshot(tmp_path / "absent.json") == []


def test_unsupported_version_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "grants.json"
    path.write_text(json.dumps({"schema_version": 99, "grants": []}), encoding="utf-8")

    with pytest.raises(SnapshotError, match="version 99"):
        load_snapshot(path)


def test_malformed_snapshot_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "grants.json"
    path.write_text(
        json.dumps({
            "schema_version": SCHEMA_VERSION,
            "grants": [{"user_id": "a", "permission_kind": "edit_customer",
                        "scope": {"kind": "planet", "id": 1}, "granted_by": "root"}],
        }),
        encoding="utf-8",
    )

    with pytest.raises(SnapshotError, match="Malformed"):
        load_snapshot(path)

    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(SnapshotError):
        load_snapshot(path)


def test_illegal_scope_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "grants.json"
    path.write_text(
        json.dumps({
            "schema_version": SCHEMA_VERSION,
            "grants": [{"user_id": "a", "permission_kind": "assign_customer",
                        "scope": {"kind": "customer", "id": 1}, "granted_by": "root"}],
        }),
        encoding="utf-8",
    )
    store = GrantStore()

    with pytest.raises(SnapshotError, match="Illegal grant"):
        restore_snapshot(store, path)
    assert len(store) == 0
