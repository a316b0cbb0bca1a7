"""
api/routes/v1/roles.py -- Organization-scoped role management.

Routes (under /api/v1/organizations/{org_id}; registration order matters so
/roles/permissions is not captured by /roles/{role_id}):
  GET    /roles               -- any of update_role, delete_role, add_member, update_member_role
  POST   /roles               -- create_role
  GET    /roles/permissions   -- any of create_role, update_role
  GET    /roles/{role_id}     -- any of create_role, update_role, delete_role
  PUT    /roles/{role_id}     -- update_role
  DELETE /roles/{role_id}     -- delete_role; refused while a member holds the role

Read endpoints accept any one of several permissions because every role
editor needs to see the roles they are editing.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from fastapi import APIRouter, Depends, Request

from api.models import MessageResponse, PermissionCatalogResponse, RoleCreate, RoleResponse, RoleUpdate
from auth.dependencies import get_authorizer, get_org_role, get_org_role_for_write, require_org_permission
from authz.context import OrgContext
from authz.core import Authorizer
from core.errors import AppError, ErrorKind
from core.permissions import (
    MEMBER_ADD,
    MEMBER_ROLE_UPDATE,
    PERMISSIONS_BY_CATEGORY,
    ROLE_CREATE,
    ROLE_DELETE,
    ROLE_UPDATE,
    normalize_permissions,
)
from orgs.models import Role
from orgs.store import OrganizationStore

logger = logging.getLogger("meetup.api.roles")

router = APIRouter(prefix="/organizations/{org_id}/roles")


def _ensure_name_free(store: OrganizationStore, org_id: int, name: str, role_id: int | None = None) -> None:
    existing = store.get_role_by_name(org_id, name)
    if existing is not None and existing.id != role_id:
        raise AppError(
            ErrorKind.DUPLICATE,
            fields={"name": "a role with this name already exists"},
            reason=f"role name {name!r} taken in org {org_id}",
        )


@router.get("", response_model=list[RoleResponse])
def list_roles(
    request: Request,
    ctx: OrgContext = Depends(
        require_org_permission(ROLE_UPDATE, ROLE_DELETE, MEMBER_ADD, MEMBER_ROLE_UPDATE, match="any")
    ),
) -> list[RoleResponse]:
    store: OrganizationStore = request.app.state.org_store
    return [RoleResponse.from_role(r) for r in store.list_roles(ctx.organization.id)]


@router.post("", response_model=RoleResponse, status_code=201)
def create_role(
    request: Request,
    body: RoleCreate,
    ctx: OrgContext = Depends(require_org_permission(ROLE_CREATE)),
) -> RoleResponse:
    store: OrganizationStore = request.app.state.org_store
    org_id = ctx.organization.id
    _ensure_name_free(store, org_id, body.name)
    role = Role(
        name=body.name,
        organization_id=org_id,
        description=body.description,
        permissions=normalize_permissions(body.permissions),
    )
    store.create_role(role)
    logger.info("Role %d created in org %d by user %d", role.id, org_id, ctx.user.id)
    return RoleResponse.from_role(role)


@router.get("/permissions", response_model=PermissionCatalogResponse)
def list_permissions(
    ctx: OrgContext = Depends(require_org_permission(ROLE_CREATE, ROLE_UPDATE, match="any")),
) -> PermissionCatalogResponse:
    return PermissionCatalogResponse(permissions={k: list(v) for k, v in PERMISSIONS_BY_CATEGORY.items()})


@router.get("/{role_id}", response_model=RoleResponse)
def get_role(
    ctx: OrgContext = Depends(require_org_permission(ROLE_CREATE, ROLE_UPDATE, ROLE_DELETE, match="any")),
    role: Role = Depends(get_org_role),
) -> RoleResponse:
    return RoleResponse.from_role(role)


@router.put("/{role_id}", response_model=RoleResponse)
def update_role(
    request: Request,
    body: RoleUpdate,
    ctx: OrgContext = Depends(require_org_permission(ROLE_UPDATE)),
    role: Role = Depends(get_org_role_for_write),
    authorizer: Authorizer = Depends(get_authorizer),
) -> RoleResponse:
    store: OrganizationStore = request.app.state.org_store
    changes = body.model_dump(exclude_none=True)
    if "name" in changes:
        _ensure_name_free(store, role.organization_id, changes["name"], role.id)
    if "permissions" in changes:
        changes["permissions"] = normalize_permissions(changes["permissions"])
    updated = replace(role, **changes)
    store.update_role(updated)
    authorizer.invalidate_role(updated.id)
    return RoleResponse.from_role(updated)


@router.delete("/{role_id}", response_model=MessageResponse)
def delete_role(
    request: Request,
    ctx: OrgContext = Depends(require_org_permission(ROLE_DELETE)),
    role: Role = Depends(get_org_role_for_write),
    authorizer: Authorizer = Depends(get_authorizer),
) -> MessageResponse:
    store: OrganizationStore = request.app.state.org_store
    store.soft_delete_role(role)
    authorizer.invalidate_role(role.id)
    logger.info("Role %d deleted from org %d by user %d", role.id, role.organization_id, ctx.user.id)
    return MessageResponse(message="Role deleted.")
