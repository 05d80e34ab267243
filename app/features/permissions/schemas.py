"""
Pydantic schemas for grant management.

Request and response models for grants, permission checks and audit logs.
"""
from datetime import datetime
from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field, ConfigDict

from app.features.permissions.grants import PermissionKind, ScopeKind


# ============================================================================
# Catalog Schemas
# ============================================================================

class PermissionKindResponse(BaseModel):
    """One entry of the permission catalog."""
    kind: PermissionKind
    label: str
    scopes: List[ScopeKind]


# ============================================================================
# Grant Schemas
# ============================================================================

class GrantRequest(BaseModel):
    """Schema for granting permissions at one scope."""
    permission_kinds: List[PermissionKind] = Field(..., description="Permissions to grant")
    expires_at: Optional[datetime] = Field(None, description="Optional expiry; the grant is inert afterwards")


class RevokeRequest(BaseModel):
    """Schema for revoking permissions at one scope."""
    permission_kinds: List[PermissionKind] = Field(..., description="Permissions to revoke")


class SetGlobalRequest(BaseModel):
    """Schema for replacing a user's global permissions."""
    permission_kinds: List[PermissionKind] = Field(default_factory=list, description="Complete set of global permissions")


class ScopeResponse(BaseModel):
    kind: ScopeKind
    id: Optional[int] = None


class GrantResponse(BaseModel):
    """Schema for a single grant record."""
    user_id: str
    permission_kind: PermissionKind
    label: str
    scope: ScopeResponse
    granted_by: str
    granted_at: datetime
    expires_at: Optional[datetime] = None
    expired: bool = False


class UserGrantsResponse(BaseModel):
    """Schema for all grants held by a user."""
    user_id: str
    grants: List[GrantResponse] = []


class GrantChangeResponse(BaseModel):
    """Schema for the outcome of a grant or revoke call."""
    user_id: str
    scope: ScopeResponse
    added: List[PermissionKind] = []
    removed: List[PermissionKind] = []
    unchanged: List[PermissionKind] = []


class StoreActionResponse(BaseModel):
    """Schema for store-wide actions (reset, purge)."""
    affected: int


# ============================================================================
# Permission Check Schemas
# ============================================================================

class PermissionCheckRequest(BaseModel):
    """Schema for checking if a user has a permission."""
    permission_kind: str = Field(..., description="Permission kind")
    user_id: Optional[str] = Field(None, description="User to check (admins only; defaults to the caller)")
    customer_id: Optional[int] = Field(None, description="Customer the check is about")
    class_id: Optional[int] = Field(None, description="Class the check is about")


class PermissionCheckResponse(BaseModel):
    """Schema for permission check response."""
    has_permission: bool
    reason: Optional[str] = None


class HoldersResponse(BaseModel):
    """Schema for users holding a permission."""
    permission_kind: PermissionKind
    customer_id: Optional[int] = None
    class_id: Optional[int] = None
    user_ids: List[str] = []


# ============================================================================
# Audit Log Schemas
# ============================================================================

class AuditLogResponse(BaseModel):
    """Schema for audit log response."""
    id: str
    actor_id: str
    action: str
    user_id: Optional[str]
    scope_kind: Optional[str]
    scope_id: Optional[int]
    permission_kinds: Optional[List[str]]
    details: Optional[Dict[str, Any]]
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogListResponse(BaseModel):
    """Schema for paginated audit log list."""
    items: List[AuditLogResponse]
    total: int
    page: int
    page_size: int
    pages: int
