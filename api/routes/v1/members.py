"""
api/routes/v1/members.py -- Inviting users into an organization.

Routes:
  POST /api/v1/organizations/{org_id}/members   -- add_member

The response is the same 201 whether the email belongs to nobody, to an
unverified account or to someone with a pending invite, so the endpoint
cannot be used to probe which emails are registered. Only "already a
member" is reported, because the caller can see members anyway.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from api.models import MemberInvite, MessageResponse
from auth.dependencies import require_org_permission
from auth.store import UserStore
from authz.context import OrgContext
from core.errors import AppError, ErrorKind
from core.permissions import MEMBER_ADD
from orgs.models import OrganizationInvite
from orgs.store import OrganizationStore

logger = logging.getLogger("meetup.api.members")

router = APIRouter()

_INVITE_SENT = "If the user exists, an invitation has been sent."


@router.post("/organizations/{org_id}/members", response_model=MessageResponse, status_code=201)
def invite_member(
    request: Request,
    body: MemberInvite,
    ctx: OrgContext = Depends(require_org_permission(MEMBER_ADD)),
) -> MessageResponse:
    org_store: OrganizationStore = request.app.state.org_store
    user_store: UserStore = request.app.state.user_store
    org_id = ctx.organization.id

    role = org_store.get_role(body.role_id)
    if role is None or role.organization_id != org_id:
        raise AppError(
            ErrorKind.VALIDATION,
            fields={"role_id": "role does not belong to this organization"},
            reason=f"role {body.role_id} not in org {org_id}",
        )

    invitee = user_store.get_active_by_email(body.email)
    if invitee is None or invitee.profile is None:
        return MessageResponse(message=_INVITE_SENT)

    if org_store.get_member(invitee.profile.id, org_id) is not None:
        raise AppError(ErrorKind.VALIDATION, "User is already a member.", reason=f"user {invitee.id} in org {org_id}")
    if org_store.get_invite(invitee.profile.id, org_id) is not None:
        return MessageResponse(message=_INVITE_SENT)

    invite = OrganizationInvite(organization_id=org_id, user_profile_id=invitee.profile.id, role_id=role.id)
    org_store.create_invite(invite)
    logger.info("User %d invited to org %d by user %d", invitee.id, org_id, ctx.user.id)
    return MessageResponse(message=_INVITE_SENT)
