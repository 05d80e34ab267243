"""
Grant engine wiring and dependencies.

Implements:
- Access to the per-process grant store, resolver and lifecycle
- FastAPI dependencies for route protection
- Snapshot persistence after mutations
- Audit logging helpers
"""
from typing import Dict, Any, Optional, List
from fastapi import Depends, HTTPException, status, Request
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from app.core import config
from app.features.users.dependencies import CurrentUser, get_current_user
from app.features.permissions.grants import PermissionKind
from app.features.permissions.lifecycle import GrantChange, GrantLifecycle, describe_scope
from app.features.permissions.models import AuditLog
from app.features.permissions.resolution import GrantResolver
from app.features.permissions.snapshot import SnapshotError, save_snapshot
from app.features.permissions.store import GrantStore
from app.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Engine Access
# ============================================================================

def get_grant_store(request: Request) -> GrantStore:
    """The grant store built on startup (see app.main)."""
    return request.app.state.grant_store


def get_resolver(store: GrantStore = Depends(get_grant_store)) -> GrantResolver:
    return GrantResolver(store)


def get_lifecycle(store: GrantStore = Depends(get_grant_store)) -> GrantLifecycle:
    return GrantLifecycle(store)


async def persist_grants(store: GrantStore) -> Optional[SnapshotError]:
    """
    Write the snapshot if one is configured.

    The write runs in the threadpool. A failed write is logged and returned
    so the caller can still audit the change before reporting it.
    """
    if not config.GRANT_SNAPSHOT_PATH:
        return None
    try:
        await run_in_threadpool(save_snapshot, store, config.GRANT_SNAPSHOT_PATH)
    except SnapshotError as e:
        log.error(f"Grant change applied in memory but not saved: {e}")
        return e
    return None


# ============================================================================
# FastAPI Dependencies
# ============================================================================

def require_permission(permission_kind: PermissionKind):
    """
    FastAPI dependency to require a specific permission.

    Resource ids are read from the `customer_id` and `class_id` path
    parameters when the route declares them.

    Usage:
        @router.put("/customers/{customer_id}")
        async def update_customer(
            customer_id: int,
            user: CurrentUser = Depends(require_permission(PermissionKind.EDIT_CUSTOMER))
        ):
            # User may edit this customer
            pass

    Raises:
        HTTPException: 403 if user doesn't have permission
    """
    async def permission_dependency(
        request: Request,
        resolver: GrantResolver = Depends(get_resolver),
        current_user: CurrentUser = Depends(get_current_user)
    ) -> CurrentUser:
        customer_id = _int_param(request, "customer_id")
        class_id = _int_param(request, "class_id")

        if not resolver.has_permission(current_user.id, permission_kind, customer_id, class_id):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: {PermissionKind(permission_kind).value}"
            )

        return current_user

    return permission_dependency


def _int_param(request: Request, name: str) -> Optional[int]:
    value = request.path_params.get(name)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


# ============================================================================
# Audit Logging
# ============================================================================

async def create_audit_log(
    db: AsyncSession,
    actor_id: str,
    action: str,
    user_id: Optional[str] = None,
    scope_kind: Optional[str] = None,
    scope_id: Optional[int] = None,
    permission_kinds: Optional[List[str]] = None,
    details: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None
) -> AuditLog:
    """
    Create an audit log entry.

    Args:
        db: Database session
        actor_id: Administrator performing the action
        action: Action performed (e.g., "grant", "revoke", "reset")
        user_id: User whose grants changed
        scope_kind: "global", "customer" or "class"
        scope_id: Customer or class id
        permission_kinds: Permission kinds involved
        details: Additional details
        ip_address: Client IP address
        user_agent: Client user agent

    Returns:
        Created AuditLog object
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        action=action,
        user_id=user_id,
        scope_kind=scope_kind,
        scope_id=scope_id,
        permission_kinds=permission_kinds,
        details=details,
        ip_address=ip_address,
        user_agent=user_agent
    )

    db.add(audit_log)
    await db.commit()
    await db.refresh(audit_log)

    log.info(
        f"Audit: actor={actor_id} action={action} user={user_id} scope={scope_kind}:{scope_id} kinds={permission_kinds}"
    )

    return audit_log


async def audit_change(
    db: AsyncSession,
    request: Request,
    actor: CurrentUser,
    action: str,
    change: GrantChange,
    requested: List[PermissionKind],
    snapshot_error: Optional[SnapshotError] = None,
) -> AuditLog:
    """Record a lifecycle call and its outcome."""
    details = {
        "added": [k.value for k in change.added],
        "removed": [k.value for k in change.removed],
        "unchanged": [k.value for k in change.unchanged],
    }
    if snapshot_error is not None:
        details["snapshot_error"] = str(snapshot_error)
    return await create_audit_log(
        db=db,
        actor_id=actor.id,
        action=action,
        user_id=change.user_id,
        permission_kinds=[PermissionKind(k).value for k in requested],
        details=details,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        **describe_scope(change.scope),
    )
