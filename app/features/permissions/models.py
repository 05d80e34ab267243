"""
Audit log model for grant lifecycle calls.

Grants themselves live in the in-memory grant store; this table only records
who changed them, when, and from where.
"""
from typing import Any, Dict, List
from sqlalchemy import String, JSON, Integer
from sqlalchemy.orm import Mapped, mapped_column
from ulid import ULID

from app.core.database.base import Base, TimestampMixin


def generate_ulid() -> str:
    """Generate a new ULID string."""
    return str(ULID())


class AuditLog(Base, TimestampMixin):
    """
    Audit log for tracking grant changes.

    Tracks who did what to whose grants, at which scope, and from where.
    """
    __tablename__ = "audit_logs"

    # Primary key using ULID
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # Actor (the administrator issuing the call)
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    # Action details: grant, revoke, set_global, reset, purge_expired
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # Target user and scope (null for store-wide actions)
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    scope_kind: Mapped[str | None] = mapped_column(String(20), nullable=True, index=True)
    scope_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    permission_kinds: Mapped[List[str] | None] = mapped_column(JSON, nullable=True)

    # Context
    details: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, actor_id={self.actor_id}, action={self.action}, user_id={self.user_id})>"
