"""
In-memory grant store.

Holds every GrantRecord and is the only place authorization state changes.
Records are indexed by key, by user and by (kind, scope), so lookups used
on every rendered row never scan the whole store.

One re-entrant lock guards every operation.
"""
import threading
from collections import defaultdict
from datetime import datetime
from typing import DefaultDict, Dict, Iterable, List, Optional, Set, Tuple

from app.features.permissions.grants import (
    GLOBAL,
    GrantKey,
    GrantRecord,
    PermissionKind,
    Scope,
)
from app.utils import get_logger


log = get_logger(__name__)


class GrantStore:
    """Insert/remove-only collection of grant records."""

    def __init__(self, records: Optional[Iterable[GrantRecord]] = None):
        self._lock = threading.RLock()
        self._records: Dict[GrantKey, GrantRecord] = {}
        self._by_user: DefaultDict[str, Set[GrantKey]] = defaultdict(set)
        self._by_subject: DefaultDict[Tuple[PermissionKind, Scope], Set[str]] = defaultdict(set)
        if records:
            self.insert_batch(records)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def insert(self, record: GrantRecord, now: Optional[datetime] = None) -> bool:
        """
        Add a record unless one with the same (user, kind, scope) exists.

        Duplicates are ignored, not errors. When `now` is given, a held
        record that has expired by then is replaced.

        Returns:
            True if the record was added
        """
        key = record.key
        with self._lock:
            held = self._records.get(key)
            if held is not None:
                if now is None or not held.is_expired(now):
                    return False
                self._discard(key)
            self._records[key] = record
            self._by_user[record.user_id].add(key)
            self._by_subject[(record.permission_kind, record.scope)].add(record.user_id)
        return True

    def insert_batch(self, records: Iterable[GrantRecord], now: Optional[datetime] = None) -> int:
        """Insert each record; held keys don't block the rest. Returns the count added."""
        added = 0
        with self._lock:
            for record in records:
                if self.insert(record, now=now):
                    added += 1
        return added

    def remove(self, user_id: str, permission_kind: PermissionKind, scope: Scope = GLOBAL) -> bool:
        """Delete the record under this key. Absent records are a no-op."""
        key = GrantKey(user_id, PermissionKind(permission_kind), scope)
        with self._lock:
            if key not in self._records:
                return False
            self._discard(key)
        return True

    def purge_expired(self, now: datetime) -> int:
        """Remove every record expired at `now`. Returns the count removed."""
        with self._lock:
            expired = [key for key, record in self._records.items() if record.is_expired(now)]
            for key in expired:
                self._discard(key)
        if expired:
            log.info(f"Purged {len(expired)} expired grants")
        return len(expired)

    def reset(self) -> None:
        """Clear the whole store."""
        with self._lock:
            count = len(self._records)
            self._records.clear()
            self._by_user.clear()
            self._by_subject.clear()
        log.warning(f"Grant store reset, {count} grants dropped")

    def _discard(self, key: GrantKey) -> None:
        record = self._records.pop(key)
        user_keys = self._by_user[record.user_id]
        user_keys.discard(key)
        if not user_keys:
            del self._by_user[record.user_id]
        subject = (record.permission_kind, record.scope)
        holders = self._by_subject[subject]
        holders.discard(record.user_id)
        if not holders:
            del self._by_subject[subject]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, user_id: str, permission_kind: PermissionKind, scope: Scope = GLOBAL) -> Optional[GrantRecord]:
        with self._lock:
            return self._records.get(GrantKey(user_id, PermissionKind(permission_kind), scope))

    def query_by_user(self, user_id: str) -> List[GrantRecord]:
        """Every record held by `user_id`, in no guaranteed order."""
        with self._lock:
            return [self._records[key] for key in self._by_user.get(user_id, ())]

    def query_by_subject(
        self,
        permission_kind: PermissionKind,
        scope: Optional[Scope] = None,
        now: Optional[datetime] = None,
    ) -> Set[str]:
        """
        Distinct users holding `permission_kind` at a scope satisfying a lookup for `scope`.

        Global holders always satisfy; with a customer or class scope, holders of
        exactly that scope do too. Expired records are skipped when `now` is given.
        """
        permission_kind = PermissionKind(permission_kind)
        subjects = [GLOBAL]
        if scope is not None and scope != GLOBAL:
            subjects.append(scope)

        users: Set[str] = set()
        with self._lock:
            for subject in subjects:
                for user_id in self._by_subject.get((permission_kind, subject), ()):
                    if now is not None:
                        record = self._records[GrantKey(user_id, permission_kind, subject)]
                        if record.is_expired(now):
                            continue
                    users.add(user_id)
        return users

    def records(self) -> List[GrantRecord]:
        """All records in insertion order."""
        with self._lock:
            return list(self._records.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._records

    def __repr__(self) -> str:
        return f"<GrantStore(grants={len(self)})>"
