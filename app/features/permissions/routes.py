"""
Grant management API routes.

Provides endpoints for checking permissions and for granting and revoking
them at global, customer and class scope.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.users.dependencies import CurrentUser, get_current_user, get_current_admin_user
from app.features.permissions.catalog import CATALOG, label_for
from app.features.permissions.grants import (
    GrantRecord,
    PermissionKind,
    Scope,
    scope_id,
    utcnow,
)
from app.features.permissions.lifecycle import GrantChange, GrantLifecycle
from app.features.permissions.models import AuditLog
from app.features.permissions.resolution import GrantResolver
from app.features.permissions.schemas import (
    PermissionKindResponse,
    GrantRequest,
    RevokeRequest,
    SetGlobalRequest,
    ScopeResponse,
    GrantResponse,
    UserGrantsResponse,
    GrantChangeResponse,
    StoreActionResponse,
    PermissionCheckRequest,
    PermissionCheckResponse,
    HoldersResponse,
    AuditLogResponse,
    AuditLogListResponse,
)
from app.features.permissions.dependencies import (
    audit_change,
    create_audit_log,
    get_lifecycle,
    get_resolver,
    persist_grants,
)
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


def _scope_response(scope: Scope) -> ScopeResponse:
    return ScopeResponse(kind=scope.kind, id=scope_id(scope))


def _grant_response(record: GrantRecord) -> GrantResponse:
    return GrantResponse(
        user_id=record.user_id,
        permission_kind=record.permission_kind,
        label=label_for(record.permission_kind),
        scope=_scope_response(record.scope),
        granted_by=record.granted_by,
        granted_at=record.granted_at,
        expires_at=record.expires_at,
        expired=record.is_expired(utcnow()),
    )


def _change_response(change: GrantChange) -> GrantChangeResponse:
    return GrantChangeResponse(
        user_id=change.user_id,
        scope=_scope_response(change.scope),
        added=change.added,
        removed=change.removed,
        unchanged=change.unchanged,
    )


async def _finish_change(
    db: AsyncSession,
    request: Request,
    lifecycle: GrantLifecycle,
    admin: CurrentUser,
    action: str,
    change: GrantChange,
    requested: List[PermissionKind],
) -> GrantChangeResponse:
    snapshot_error = await persist_grants(lifecycle.store) if change.changed else None
    await audit_change(db, request, admin, action, change, requested, snapshot_error)
    if snapshot_error is not None:
        raise snapshot_error
    return _change_response(change)


# ============================================================================
# Catalog Routes
# ============================================================================

@router.get("/kinds", response_model=List[PermissionKindResponse])
async def list_permission_kinds(
    current_user: CurrentUser = Depends(get_current_user)
):
    """List every permission kind with its label and legal scopes."""
    return [
        PermissionKindResponse(kind=kind, label=info.label, scopes=sorted(info.scopes, key=lambda s: s.value))
        for kind, info in CATALOG.items()
    ]


# ============================================================================
# Permission Check Routes
# ============================================================================

@router.post("/check", response_model=PermissionCheckResponse)
async def check_permission(
    check_request: PermissionCheckRequest,
    resolver: GrantResolver = Depends(get_resolver),
    current_user: CurrentUser = Depends(get_current_user)
):
    """Check if the current user (or, for admins, any user) has a permission."""
    user_id = check_request.user_id or current_user.id
    if user_id != current_user.id and not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized to check other users' permissions"
        )

    has_perm = resolver.has_permission(
        user_id,
        check_request.permission_kind,
        customer_id=check_request.customer_id,
        class_id=check_request.class_id,
    )

    return PermissionCheckResponse(
        has_permission=has_perm,
        reason=None if has_perm else "Permission denied"
    )


@router.get("/holders", response_model=HoldersResponse)
async def list_permission_holders(
    permission_kind: PermissionKind,
    customer_id: Optional[int] = None,
    class_id: Optional[int] = None,
    resolver: GrantResolver = Depends(get_resolver),
    current_user: CurrentUser = Depends(get_current_admin_user)
):
    """List users who hold a permission, optionally for one customer or class (admin only)."""
    users = resolver.holders(permission_kind, customer_id=customer_id, class_id=class_id)
    return HoldersResponse(
        permission_kind=permission_kind,
        customer_id=customer_id,
        class_id=class_id,
        user_ids=sorted(users),
    )


@router.get("/users/{user_id}/grants", response_model=UserGrantsResponse)
async def get_user_grants(
    user_id: str,
    lifecycle: GrantLifecycle = Depends(get_lifecycle),
    current_user: CurrentUser = Depends(get_current_user)
):
    """Get all grants held by a user."""
    # Can only view own grants unless admin
    if user_id != current_user.id and not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized to view other users' grants"
        )

    records = sorted(
        lifecycle.store.query_by_user(user_id),
        key=lambda r: (r.granted_at, r.permission_kind.value),
    )
    return UserGrantsResponse(
        user_id=user_id,
        grants=[_grant_response(record) for record in records],
    )


# ============================================================================
# Global Grant Routes
# ============================================================================

@router.post("/users/{user_id}/grants/global", response_model=GrantChangeResponse)
async def grant_global(
    user_id: str,
    grant: GrantRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    lifecycle: GrantLifecycle = Depends(get_lifecycle),
    current_user: CurrentUser = Depends(get_current_admin_user)  # Only admins can grant
):
    """Grant permissions on every resource (admin only)."""
    change = lifecycle.grant_global(user_id, grant.permission_kinds, current_user.id, grant.expires_at)
    return await _finish_change(db, request, lifecycle, current_user, "grant", change, grant.permission_kinds)


@router.put("/users/{user_id}/grants/global", response_model=GrantChangeResponse)
async def set_global(
    user_id: str,
    body: SetGlobalRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    lifecycle: GrantLifecycle = Depends(get_lifecycle),
    current_user: CurrentUser = Depends(get_current_admin_user)
):
    """Replace a user's global permissions with the given set (admin only)."""
    change = lifecycle.set_global(user_id, body.permission_kinds, current_user.id)
    return await _finish_change(db, request, lifecycle, current_user, "set_global", change, body.permission_kinds)


@router.delete("/users/{user_id}/grants/global", response_model=GrantChangeResponse)
async def revoke_global(
    user_id: str,
    revoke: RevokeRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    lifecycle: GrantLifecycle = Depends(get_lifecycle),
    current_user: CurrentUser = Depends(get_current_admin_user)
):
    """Revoke global permissions (admin only)."""
    change = lifecycle.revoke_global(user_id, revoke.permission_kinds, current_user.id)
    return await _finish_change(db, request, lifecycle, current_user, "revoke", change, revoke.permission_kinds)


# ============================================================================
# Customer Grant Routes
# ============================================================================

@router.post("/users/{user_id}/grants/customers/{customer_id}", response_model=GrantChangeResponse)
async def grant_for_customer(
    user_id: str,
    customer_id: int,
    grant: GrantRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    lifecycle: GrantLifecycle = Depends(get_lifecycle),
    current_user: CurrentUser = Depends(get_current_admin_user)
):
    """Grant permissions on one customer (admin only)."""
    change = lifecycle.grant_for_customer(
        user_id, customer_id, grant.permission_kinds, current_user.id, grant.expires_at
    )
    return await _finish_change(db, request, lifecycle, current_user, "grant", change, grant.permission_kinds)


@router.delete("/users/{user_id}/grants/customers/{customer_id}", response_model=GrantChangeResponse)
async def revoke_for_customer(
    user_id: str,
    customer_id: int,
    revoke: RevokeRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    lifecycle: GrantLifecycle = Depends(get_lifecycle),
    current_user: CurrentUser = Depends(get_current_admin_user)
):
    """Revoke permissions on one customer (admin only)."""
    change = lifecycle.revoke_for_customer(user_id, customer_id, revoke.permission_kinds, current_user.id)
    return await _finish_change(db, request, lifecycle, current_user, "revoke", change, revoke.permission_kinds)


# ============================================================================
# Class Grant Routes
# ============================================================================

@router.post("/users/{user_id}/grants/classes/{class_id}", response_model=GrantChangeResponse)
async def grant_for_class(
    user_id: str,
    class_id: int,
    grant: GrantRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    lifecycle: GrantLifecycle = Depends(get_lifecycle),
    current_user: CurrentUser = Depends(get_current_admin_user)
):
    """Grant permissions on one class (admin only)."""
    change = lifecycle.grant_for_class(
        user_id, class_id, grant.permission_kinds, current_user.id, grant.expires_at
    )
    return await _finish_change(db, request, lifecycle, current_user, "grant", change, grant.permission_kinds)


@router.delete("/users/{user_id}/grants/classes/{class_id}", response_model=GrantChangeResponse)
async def revoke_for_class(
    user_id: str,
    class_id: int,
    revoke: RevokeRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    lifecycle: GrantLifecycle = Depends(get_lifecycle),
    current_user: CurrentUser = Depends(get_current_admin_user)
):
    """Revoke permissions on one class (admin only)."""
    change = lifecycle.revoke_for_class(user_id, class_id, revoke.permission_kinds, current_user.id)
    return await _finish_change(db, request, lifecycle, current_user, "revoke", change, revoke.permission_kinds)


# ============================================================================
# Store-wide Routes
# ============================================================================

@router.post("/purge-expired", response_model=StoreActionResponse)
async def purge_expired_grants(
    request: Request,
    db: AsyncSession = Depends(get_db),
    lifecycle: GrantLifecycle = Depends(get_lifecycle),
    current_user: CurrentUser = Depends(get_current_admin_user)
):
    """Remove every expired grant (admin only)."""
    purged = lifecycle.purge_expired()
    snapshot_error = await persist_grants(lifecycle.store) if purged else None

    details = {"purged": purged}
    if snapshot_error is not None:
        details["snapshot_error"] = str(snapshot_error)
    await create_audit_log(
        db=db,
        actor_id=current_user.id,
        action="purge_expired",
        details=details,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent")
    )
    if snapshot_error is not None:
        raise snapshot_error
    return StoreActionResponse(affected=purged)


@router.post("/reset", response_model=StoreActionResponse)
async def reset_grants(
    request: Request,
    db: AsyncSession = Depends(get_db),
    lifecycle: GrantLifecycle = Depends(get_lifecycle),
    current_user: CurrentUser = Depends(get_current_admin_user)
):
    """Drop every grant (admin only)."""
    dropped = lifecycle.reset(current_user.id)
    snapshot_error = await persist_grants(lifecycle.store)

    details = {"dropped": dropped}
    if snapshot_error is not None:
        details["snapshot_error"] = str(snapshot_error)
    await create_audit_log(
        db=db,
        actor_id=current_user.id,
        action="reset",
        details=details,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent")
    )
    if snapshot_error is not None:
        raise snapshot_error
    return StoreActionResponse(affected=dropped)


# ============================================================================
# Audit Log Routes
# ============================================================================

@router.get("/audit-logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    skip: int = 0,
    limit: int = 50,
    actor_id: Optional[str] = None,
    user_id: Optional[str] = None,
    action: Optional[str] = None,
    scope_kind: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_admin_user)  # Admin only
):
    """List audit logs with optional filtering."""
    stmt = select(AuditLog)

    if actor_id:
        stmt = stmt.where(AuditLog.actor_id == actor_id)
    if user_id:
        stmt = stmt.where(AuditLog.user_id == user_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if scope_kind:
        stmt = stmt.where(AuditLog.scope_kind == scope_kind)

    # Get total count
    count_stmt = select(func.count()).select_from(stmt.subquery())
    total_result = await db.execute(count_stmt)
    total = total_result.scalar() or 0

    # Get paginated results
    stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset(skip).limit(limit)
    result = await db.execute(stmt)
    logs = result.scalars().all()

    pages = (total + limit - 1) // limit if limit > 0 else 0
    page = (skip // limit) + 1 if limit > 0 else 1

    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(entry) for entry in logs],
        total=total,
        page=page,
        page_size=limit,
        pages=pages
    )
