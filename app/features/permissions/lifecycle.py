"""
Grant lifecycle: the write side of the grant store.

Every call expands a list of permission kinds into individual grant records
at one scope and applies them one by one. Granting a held kind or revoking
an absent one is a no-op. Callers check their own authority first; nothing
here decides who may grant.
"""
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Sequence

from pydantic import BaseModel, Field

from app.features.permissions.catalog import is_legal
from app.features.permissions.grants import (
    GLOBAL,
    ClassScope,
    CustomerScope,
    GrantRecord,
    PermissionKind,
    Scope,
    ScopeKind,
    as_utc,
    scope_id,
    utcnow,
)
from app.features.permissions.store import GrantStore
from app.utils import get_logger


log = get_logger(__name__)


class GrantValidationError(ValueError):
    """A lifecycle call was rejected because of caller input."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class GrantChange(BaseModel):
    """Outcome of one lifecycle call."""
    user_id: str
    scope: Scope
    added: List[PermissionKind] = Field(default_factory=list)
    removed: List[PermissionKind] = Field(default_factory=list)
    unchanged: List[PermissionKind] = Field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)


class GrantLifecycle:
    """Grant and revoke permissions at global, customer and class scope."""

    def __init__(self, store: GrantStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _check_identity(self, user_id: str, actor: str) -> None:
        if not user_id or not str(user_id).strip():
            raise GrantValidationError("User id is required", field="user_id")
        if not actor or not str(actor).strip():
            raise GrantValidationError("Acting user id is required", field="granted_by")

    def _check_kinds(self, permission_kinds: Iterable[PermissionKind], scope: Scope) -> List[PermissionKind]:
        kinds: List[PermissionKind] = []
        for raw in permission_kinds:
            try:
                kind = PermissionKind(raw)
            except ValueError:
                raise GrantValidationError(f"Unknown permission kind: {raw}", field="permission_kinds")
            if not is_legal(kind, ScopeKind(scope.kind)):
                raise GrantValidationError(
                    f"Permission {kind.value} cannot be granted at {scope.kind} scope",
                    field="permission_kinds",
                )
            if kind not in kinds:
                kinds.append(kind)

        if not kinds:
            raise GrantValidationError("At least one permission kind is required", field="permission_kinds")
        return kinds

    def _validate(
        self,
        user_id: str,
        permission_kinds: Iterable[PermissionKind],
        actor: str,
        scope: Scope,
    ) -> List[PermissionKind]:
        self._check_identity(user_id, actor)
        return self._check_kinds(permission_kinds, scope)

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def _grant(
        self,
        user_id: str,
        scope: Scope,
        permission_kinds: Sequence[PermissionKind],
        granted_by: str,
        expires_at: Optional[datetime] = None,
    ) -> GrantChange:
        kinds = self._validate(user_id, permission_kinds, granted_by, scope)
        now = self.clock()
        if expires_at is not None and as_utc(expires_at) <= as_utc(now):
            raise GrantValidationError("Expiry must be in the future", field="expires_at")

        change = GrantChange(user_id=user_id, scope=scope)
        for kind in kinds:
            record = GrantRecord(
                user_id=user_id,
                permission_kind=kind,
                scope=scope,
                granted_by=granted_by,
                granted_at=now,
                expires_at=expires_at,
            )
            if self.store.insert(record, now=now):
                change.added.append(kind)
            else:
                change.unchanged.append(kind)

        if change.added:
            log.info(
                f"{granted_by} granted {[k.value for k in change.added]} to {user_id} at {scope}"
            )
        return change

    def _revoke(
        self,
        user_id: str,
        scope: Scope,
        permission_kinds: Sequence[PermissionKind],
        revoked_by: str,
    ) -> GrantChange:
        kinds = self._validate(user_id, permission_kinds, revoked_by, scope)

        change = GrantChange(user_id=user_id, scope=scope)
        for kind in kinds:
            if self.store.remove(user_id, kind, scope):
                change.removed.append(kind)
            else:
                change.unchanged.append(kind)

        if change.removed:
            log.info(
                f"{revoked_by} revoked {[k.value for k in change.removed]} from {user_id} at {scope}"
            )
        return change

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def grant_global(
        self,
        user_id: str,
        permission_kinds: Sequence[PermissionKind],
        granted_by: str,
        expires_at: Optional[datetime] = None,
    ) -> GrantChange:
        return self._grant(user_id, GLOBAL, permission_kinds, granted_by, expires_at)

    def grant_for_customer(
        self,
        user_id: str,
        customer_id: int,
        permission_kinds: Sequence[PermissionKind],
        granted_by: str,
        expires_at: Optional[datetime] = None,
    ) -> GrantChange:
        return self._grant(user_id, CustomerScope(id=customer_id), permission_kinds, granted_by, expires_at)

    def grant_for_class(
        self,
        user_id: str,
        class_id: int,
        permission_kinds: Sequence[PermissionKind],
        granted_by: str,
        expires_at: Optional[datetime] = None,
    ) -> GrantChange:
        return self._grant(user_id, ClassScope(id=class_id), permission_kinds, granted_by, expires_at)

    def revoke_global(
        self,
        user_id: str,
        permission_kinds: Sequence[PermissionKind],
        granted_by: str,
    ) -> GrantChange:
        return self._revoke(user_id, GLOBAL, permission_kinds, granted_by)

    def revoke_for_customer(
        self,
        user_id: str,
        customer_id: int,
        permission_kinds: Sequence[PermissionKind],
        granted_by: str,
    ) -> GrantChange:
        return self._revoke(user_id, CustomerScope(id=customer_id), permission_kinds, granted_by)

    def revoke_for_class(
        self,
        user_id: str,
        class_id: int,
        permission_kinds: Sequence[PermissionKind],
        granted_by: str,
    ) -> GrantChange:
        return self._revoke(user_id, ClassScope(id=class_id), permission_kinds, granted_by)

    def set_global(
        self,
        user_id: str,
        permission_kinds: Sequence[PermissionKind],
        granted_by: str,
    ) -> GrantChange:
        """
        Make the user's global permissions exactly `permission_kinds`.

        Missing kinds are granted, extra kinds revoked, the rest left alone
        (keeping their original grant time). An empty list revokes every
        global permission the user holds.
        """
        self._check_identity(user_id, granted_by)
        wanted = self._check_kinds(permission_kinds, GLOBAL) if permission_kinds else []

        now = self.clock()
        held = [
            record.permission_kind
            for record in self.store.query_by_user(user_id)
            if record.scope == GLOBAL and not record.is_expired(now)
        ]
        to_add = [kind for kind in wanted if kind not in held]
        to_remove = [kind for kind in held if kind not in wanted]

        change = GrantChange(user_id=user_id, scope=GLOBAL)
        if to_add:
            change.added = self._grant(user_id, GLOBAL, to_add, granted_by).added
        if to_remove:
            change.removed = self._revoke(user_id, GLOBAL, to_remove, granted_by).removed
        change.unchanged = [kind for kind in wanted if kind not in change.added]
        return change

    def purge_expired(self) -> int:
        """Drop every grant that has expired."""
        return self.store.purge_expired(self.clock())

    def reset(self, reset_by: str) -> int:
        """Clear every grant. Returns how many were dropped."""
        if not reset_by or not str(reset_by).strip():
            raise GrantValidationError("Acting user id is required", field="granted_by")
        count = len(self.store)
        self.store.reset()
        log.warning(f"{reset_by} reset all grants ({count} dropped)")
        return count


def describe_scope(scope: Scope) -> dict:
    """Flat form of a scope for logs and audit entries."""
    return {"scope_kind": scope.kind, "scope_id": scope_id(scope)}
