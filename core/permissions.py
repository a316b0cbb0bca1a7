"""
core/permissions.py -- The closed catalog of organization permissions.

Permissions are flat strings. A role either holds the literal string or it
does not: there is no hierarchy and no wildcard. The catalog is grouped by
category only so role-authoring UIs can render it in sections.
"""

from __future__ import annotations

from collections.abc import Iterable
from types import MappingProxyType

from core.errors import AppError, ErrorKind

EVENT_CREATE = "create_event"
EVENT_UPDATE = "update_event"
EVENT_DELETE = "delete_event"

MEMBER_ADD = "add_member"
MEMBER_REMOVE = "remove_member"
MEMBER_ROLE_UPDATE = "update_member_role"

ROLE_CREATE = "create_role"
ROLE_UPDATE = "update_role"
ROLE_DELETE = "delete_role"

ORG_UPDATE = "update_org"
ORG_DEACTIVATE = "deactivate_org"
ORG_DELETE = "delete_org"

PERMISSIONS_BY_CATEGORY = MappingProxyType(
    {
        "events": (EVENT_CREATE, EVENT_UPDATE, EVENT_DELETE),
        "members": (MEMBER_ADD, MEMBER_REMOVE, MEMBER_ROLE_UPDATE),
        "roles": (ROLE_CREATE, ROLE_UPDATE, ROLE_DELETE),
        "organizations": (ORG_UPDATE, ORG_DEACTIVATE, ORG_DELETE),
    }
)

PERMISSIONS: tuple[str, ...] = tuple(p for perms in PERMISSIONS_BY_CATEGORY.values() for p in perms)

_PERMISSION_SET = frozenset(PERMISSIONS)


def is_permission(value: str) -> bool:
    return value in _PERMISSION_SET


def normalize_permissions(values: Iterable[str]) -> list[str]:
    """Deduplicate permissions (first occurrence wins) and reject unknown ones.

    Raises AppError(VALIDATION) naming the unknown values so the API can
    return a field-level message for "permissions".
    """
    seen: set[str] = set()
    result: list[str] = []
    unknown: list[str] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        if value not in _PERMISSION_SET:
            unknown.append(value)
            continue
        result.append(value)
    if unknown:
        raise AppError(
            ErrorKind.VALIDATION,
            fields={"permissions": f"unknown permission(s): {', '.join(sorted(unknown))}"},
        )
    if not result:
        raise AppError(ErrorKind.VALIDATION, fields={"permissions": "at least one permission is required"})
    return result
