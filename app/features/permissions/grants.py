"""
Grant records: the atomic unit of authorization state.

A grant ties a user to one permission kind at exactly one scope:
- Global: every resource
- Customer(id): one customer
- Class(id): one class
"""
import enum
from datetime import datetime, timezone
from typing import Annotated, Literal, NamedTuple, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PermissionKind(str, enum.Enum):
    """Closed set of permission kinds."""
    VIEW_CUSTOMER_NAME = "view_customer_name"
    VIEW_CUSTOMER_PHONE = "view_customer_phone"
    VIEW_CUSTOMER_MOBILE = "view_customer_mobile"
    VIEW_CUSTOMER = "view_customer"
    EDIT_CUSTOMER = "edit_customer"
    ASSIGN_CUSTOMER = "assign_customer"
    EDIT_CLASS = "edit_class"
    VIEW_CLASS_STUDENT_NAME = "view_class_student_name"
    VIEW_CLASS_STUDENT_PHONE = "view_class_student_phone"
    EDIT_CLASS_STUDENT = "edit_class_student"


class ScopeKind(str, enum.Enum):
    GLOBAL = "global"
    CUSTOMER = "customer"
    CLASS = "class"


# ============================================================================
# Scopes
# ============================================================================

class GlobalScope(BaseModel):
    """Grant applies to every resource."""
    kind: Literal["global"] = "global"

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return "global"


class CustomerScope(BaseModel):
    """Grant applies to a single customer."""
    kind: Literal["customer"] = "customer"
    id: int

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return f"customer:{self.id}"


class ClassScope(BaseModel):
    """Grant applies to a single class."""
    kind: Literal["class"] = "class"
    id: int

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return f"class:{self.id}"


Scope = Annotated[Union[GlobalScope, CustomerScope, ClassScope], Field(discriminator="kind")]

GLOBAL = GlobalScope()


def scope_id(scope: Scope) -> Optional[int]:
    """Resource id of a scope, None for global."""
    return getattr(scope, "id", None)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Read naive timestamps as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ============================================================================
# Grant Record
# ============================================================================

class GrantKey(NamedTuple):
    user_id: str
    permission_kind: PermissionKind
    scope: Scope


class GrantRecord(BaseModel):
    """
    One authorization fact.

    `granted_by` and `granted_at` are audit data and never affect resolution.
    A record whose `expires_at` has passed is inert.
    """
    user_id: str = Field(..., min_length=1)
    permission_kind: PermissionKind
    scope: Scope = GLOBAL
    granted_by: str = Field(..., min_length=1)
    granted_at: datetime = Field(default_factory=utcnow)
    expires_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)

    @field_validator("granted_at", "expires_at")
    @classmethod
    def normalize_timezone(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is None:
            return v
        return as_utc(v)

    @property
    def key(self) -> GrantKey:
        return GrantKey(self.user_id, self.permission_kind, self.scope)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= as_utc(now)

    def __repr__(self) -> str:
        return f"<GrantRecord(user_id={self.user_id!r}, kind={self.permission_kind.value}, scope={self.scope})>"
