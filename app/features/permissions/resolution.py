"""
Permission resolution.

Answers "does user U hold permission P, optionally for customer C or class K".
Precedence, first match wins:
1. Global grant for (U, P)
2. Customer grant for (U, P, C) when C is given
3. Class grant for (U, P, K) when K is given

Scopes never imply one another; only a global grant escalates.
"""
from datetime import datetime
from typing import Callable, Optional, Set

from app.features.permissions.grants import (
    GLOBAL,
    ClassScope,
    CustomerScope,
    PermissionKind,
    Scope,
    utcnow,
)
from app.features.permissions.store import GrantStore
from app.utils import get_logger


log = get_logger(__name__)


class GrantResolver:
    """Read side of the grant store. Never raises."""

    def __init__(self, store: GrantStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    def _holds(self, user_id: str, kind: PermissionKind, scope: Scope, now: datetime) -> bool:
        record = self.store.get(user_id, kind, scope)
        return record is not None and not record.is_expired(now)

    def has_permission(
        self,
        user_id: str,
        permission_kind: PermissionKind,
        customer_id: Optional[int] = None,
        class_id: Optional[int] = None,
    ) -> bool:
        """
        Check if a user holds a permission.

        Args:
            user_id: Subject being authorized
            permission_kind: Permission to check
            customer_id: Optional customer the check is about
            class_id: Optional class the check is about

        Returns:
            True if a live grant matches, False otherwise (including unknown
            users and unknown permission kinds)
        """
        try:
            kind = PermissionKind(permission_kind)
        except ValueError:
            log.debug(f"Unknown permission kind {permission_kind!r} for user {user_id}")
            return False

        try:
            now = self.clock()
            if self._holds(user_id, kind, GLOBAL, now):
                log.debug(f"User {user_id} granted {kind.value} via global grant")
                return True

            if customer_id is not None and self._holds(user_id, kind, CustomerScope(id=customer_id), now):
                log.debug(f"User {user_id} granted {kind.value} on customer {customer_id}")
                return True

            if class_id is not None and self._holds(user_id, kind, ClassScope(id=class_id), now):
                log.debug(f"User {user_id} granted {kind.value} on class {class_id}")
                return True
        except Exception:
            log.exception(f"Permission check failed for user {user_id} kind {kind.value}")
            return False

        log.debug(
            f"User {user_id} denied {kind.value} (customer={customer_id}, class={class_id})"
        )
        return False

    def holders(
        self,
        permission_kind: PermissionKind,
        customer_id: Optional[int] = None,
        class_id: Optional[int] = None,
    ) -> Set[str]:
        """
        Users who would pass `has_permission` for this kind and resource.

        With both ids given, holders for either resource are returned.
        """
        kind = PermissionKind(permission_kind)
        now = self.clock()
        users = self.store.query_by_subject(kind, now=now)
        if customer_id is not None:
            users |= self.store.query_by_subject(kind, CustomerScope(id=customer_id), now=now)
        if class_id is not None:
            users |= self.store.query_by_subject(kind, ClassScope(id=class_id), now=now)
        return users
