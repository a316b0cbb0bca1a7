"""
api/routes/v1/organizations.py -- Organization lifecycle endpoints.

Routes:
  POST   /api/v1/organizations                       -- create; caller becomes its first member
  GET    /api/v1/organizations                       -- organizations the caller belongs to
  GET    /api/v1/organizations/{org_id}              -- any member
  PUT    /api/v1/organizations/{org_id}              -- update_org
  PATCH  /api/v1/organizations/{org_id}/deactivate   -- global admin only
  DELETE /api/v1/organizations/{org_id}              -- delete_org

Creating an organization writes the organization, a "sudo" role holding
every permission and the founder's membership in one transaction.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from fastapi import APIRouter, Depends, Request

from api.models import MessageResponse, OrganizationCreate, OrganizationResponse, OrganizationUpdate
from auth.dependencies import get_authorizer, get_current_user, get_org_context, require_admin, require_org_permission
from auth.models import User
from authz.context import OrgContext
from authz.core import Authorizer
from core.errors import AppError, ErrorKind
from core.permissions import ORG_DELETE, ORG_UPDATE, PERMISSIONS
from orgs.models import DEFAULT_ROLE_NAME, Organization, OrganizationMember, Role
from orgs.store import OrganizationStore

logger = logging.getLogger("meetup.api.organizations")

router = APIRouter()


@router.post("/organizations", response_model=OrganizationResponse, status_code=201)
def create_organization(
    request: Request,
    body: OrganizationCreate,
    user: User = Depends(get_current_user),
) -> OrganizationResponse:
    store: OrganizationStore = request.app.state.org_store
    if user.profile is None:
        raise AppError(ErrorKind.VALIDATION, "Create a profile first.", reason=f"user {user.id} has no profile")

    org = Organization(name=body.name, description=body.description, profile_pic=body.profile_pic)
    role = Role(
        name=DEFAULT_ROLE_NAME,
        description="Full control of the organization.",
        permissions=list(PERMISSIONS),
    )
    member = OrganizationMember(user_profile_id=user.profile.id)
    store.create_organization(org, role, member)
    logger.info("Organization %d created by user %d", org.id, user.id)
    return OrganizationResponse.from_org(org)


@router.get("/organizations", response_model=list[OrganizationResponse])
def list_organizations(request: Request, user: User = Depends(get_current_user)) -> list[OrganizationResponse]:
    if user.profile is None:
        return []
    store: OrganizationStore = request.app.state.org_store
    return [OrganizationResponse.from_org(o) for o in store.list_for_user(user.profile.id)]


@router.get("/organizations/{org_id}", response_model=OrganizationResponse)
def get_organization(ctx: OrgContext = Depends(get_org_context)) -> OrganizationResponse:
    return OrganizationResponse.from_org(ctx.organization)


@router.put("/organizations/{org_id}", response_model=OrganizationResponse)
def update_organization(
    request: Request,
    body: OrganizationUpdate,
    ctx: OrgContext = Depends(require_org_permission(ORG_UPDATE)),
    authorizer: Authorizer = Depends(get_authorizer),
) -> OrganizationResponse:
    store: OrganizationStore = request.app.state.org_store
    # Stage on a copy: a failed write must not leave the cached snapshot changed.
    org = replace(ctx.organization, **body.model_dump(exclude_none=True))
    store.update_organization(org)
    authorizer.invalidate_organization(org.id)
    return OrganizationResponse.from_org(org)


@router.patch("/organizations/{org_id}/deactivate", response_model=OrganizationResponse)
def deactivate_organization(
    org_id: int,
    request: Request,
    admin: User = Depends(require_admin),
    authorizer: Authorizer = Depends(get_authorizer),
) -> OrganizationResponse:
    store: OrganizationStore = request.app.state.org_store
    org = store.get_organization(org_id)
    if org is None:
        raise AppError(ErrorKind.NOT_FOUND, "Organization not found.", reason=f"organization {org_id} not found")
    if not org.is_active:
        raise AppError(ErrorKind.VALIDATION, "Organization is already deactivated.", reason=f"org {org_id} inactive")
    store.deactivate_organization(org)
    authorizer.invalidate_organization(org.id)
    logger.info("Organization %d deactivated by admin %d", org.id, admin.id)
    return OrganizationResponse.from_org(org)


@router.delete("/organizations/{org_id}", response_model=MessageResponse)
def delete_organization(
    request: Request,
    ctx: OrgContext = Depends(require_org_permission(ORG_DELETE)),
    authorizer: Authorizer = Depends(get_authorizer),
) -> MessageResponse:
    store: OrganizationStore = request.app.state.org_store
    org = replace(ctx.organization)
    store.soft_delete_organization(org)
    authorizer.invalidate_organization(org.id)
    logger.info("Organization %d deleted by user %d", org.id, ctx.user.id)
    return MessageResponse(message="Organization deleted.")
