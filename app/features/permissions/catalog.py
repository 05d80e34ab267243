"""
Permission catalog: display labels and legal scopes for every permission kind.
"""
from typing import Dict, FrozenSet, NamedTuple

from app.features.permissions.grants import PermissionKind, ScopeKind


class KindInfo(NamedTuple):
    label: str
    scopes: FrozenSet[ScopeKind]


_CUSTOMER = frozenset({ScopeKind.GLOBAL, ScopeKind.CUSTOMER})
_CLASS = frozenset({ScopeKind.GLOBAL, ScopeKind.CLASS})

CATALOG: Dict[PermissionKind, KindInfo] = {
    PermissionKind.VIEW_CUSTOMER_NAME: KindInfo("View customer name", _CUSTOMER),
    PermissionKind.VIEW_CUSTOMER_PHONE: KindInfo("View customer phone", _CUSTOMER),
    PermissionKind.VIEW_CUSTOMER_MOBILE: KindInfo("View customer mobile", _CUSTOMER),
    PermissionKind.VIEW_CUSTOMER: KindInfo("View customer details", _CUSTOMER),
    PermissionKind.EDIT_CUSTOMER: KindInfo("Edit customer details", _CUSTOMER),
    PermissionKind.ASSIGN_CUSTOMER: KindInfo("Assign customers", frozenset({ScopeKind.GLOBAL})),
    PermissionKind.EDIT_CLASS: KindInfo("Edit class details", _CLASS),
    PermissionKind.VIEW_CLASS_STUDENT_NAME: KindInfo("View class student names", _CLASS),
    PermissionKind.VIEW_CLASS_STUDENT_PHONE: KindInfo("View class student phones", _CLASS),
    PermissionKind.EDIT_CLASS_STUDENT: KindInfo("Edit class students", _CLASS),
}


def label_for(kind: PermissionKind) -> str:
    return CATALOG[kind].label


def is_legal(kind: PermissionKind, scope_kind: ScopeKind) -> bool:
    """Whether `kind` may be granted at a scope of `scope_kind`."""
    return ScopeKind(scope_kind) in CATALOG[kind].scopes
