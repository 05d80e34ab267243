"""
Versioned JSON snapshots of the grant store.

Document layout:
    {
        "schema_version": 1,
        "saved_at": "2026-01-01T00:00:00Z",
        "grants": [
            {"user_id": "...", "permission_kind": "edit_customer",
             "scope": {"kind": "customer", "id": 42},
             "granted_by": "...", "granted_at": "...", "expires_at": null}
        ]
    }
"""
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import List, Union

from pydantic import BaseModel, Field, ValidationError

from app.features.permissions.catalog import is_legal
from app.features.permissions.grants import GrantRecord, utcnow
from app.features.permissions.store import GrantStore
from app.utils import get_logger


log = get_logger(__name__)

SCHEMA_VERSION = 1


class SnapshotError(Exception):
    """A snapshot could not be read or written."""


class GrantSnapshot(BaseModel):
    schema_version: int = SCHEMA_VERSION
    saved_at: datetime = Field(default_factory=utcnow)
    grants: List[GrantRecord] = Field(default_factory=list)


def save_snapshot(store: GrantStore, path: Union[str, Path]) -> int:
    """
    Write every grant to `path`, replacing the file atomically.

    Returns:
        Number of grants written
    """
    path = Path(path)
    snapshot = GrantSnapshot(grants=store.records())
    payload = snapshot.model_dump_json(indent=2)

    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(payload)
        os.replace(tmp_name, path)
    except OSError as e:
        if tmp_name and os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise SnapshotError(f"Failed to write grant snapshot {path}: {e}") from e

    log.debug(f"Saved {len(snapshot.grants)} grants to {path}")
    return len(snapshot.grants)


def load_snapshot(path: Union[str, Path]) -> List[GrantRecord]:
    """
    Read grants from `path`. A missing file is an empty snapshot.

    Raises:
        SnapshotError: unreadable file, malformed content, unsupported version,
            or a permission kind at a scope it is not legal for
    """
    path = Path(path)
    if not path.exists():
        log.info(f"No grant snapshot at {path}")
        return []

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SnapshotError(f"Failed to read grant snapshot {path}: {e}") from e

    try:
        snapshot = GrantSnapshot.model_validate_json(raw)
    except ValidationError as e:
        raise SnapshotError(f"Malformed grant snapshot {path}: {e}") from e

    if snapshot.schema_version != SCHEMA_VERSION:
        raise SnapshotError(
            f"Unsupported grant snapshot version {snapshot.schema_version} in {path} "
            f"(expected {SCHEMA_VERSION})"
        )

    for record in snapshot.grants:
        if not is_legal(record.permission_kind, record.scope.kind):
            raise SnapshotError(
                f"Illegal grant in snapshot {path}: {record.permission_kind.value} at {record.scope}"
            )
    return snapshot.grants


def restore_snapshot(store: GrantStore, path: Union[str, Path]) -> int:
    """Load `path` into `store`. Returns the number of grants added."""
    added = store.insert_batch(load_snapshot(path))
    log.info(f"Restored {added} grants from {path}")
    return added
