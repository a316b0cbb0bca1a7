"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and
organization authorization.

Only one auth method exists: "Authorization: Bearer <session token>".

get_request_auth() is the soft variant (user None for anonymous requests, 401
for a header that is present but bad). get_current_user() additionally
requires a live (verified, not deactivated) account. require_org_permission()
builds a dependency that admits the caller to the {org_id} path parameter
through the Authorizer and hands the route a typed OrgContext.

All failures are raised as core.errors.AppError; api/main.py maps the kind
to the HTTP status.

Layer rule: may import fastapi (Depends/Request) because this module is part
of the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

from typing import Callable, Literal

from fastapi import Depends, Request

from auth.models import USER_ROLE_ADMIN, USER_ROLE_STAFF, User
from authz.context import OrgContext, RequestAuth
from authz.core import Authorizer
from core.errors import forbidden
from orgs.models import Role


def get_authorizer(request: Request) -> Authorizer:
    return request.app.state.authorizer


def get_request_auth(request: Request, authorizer: Authorizer = Depends(get_authorizer)) -> RequestAuth:
    """Resolve the principal once per request.

    The result is memoized on request.state so several dependencies in one
    route share a single token verification and user lookup.
    """
    cached = getattr(request.state, "auth", None)
    if cached is not None:
        return cached
    auth = RequestAuth(user=authorizer.resolve_principal(request.headers.get("Authorization")))
    request.state.auth = auth
    return auth


def get_current_user(
    auth: RequestAuth = Depends(get_request_auth),
    authorizer: Authorizer = Depends(get_authorizer),
) -> User:
    """Require a live account. Raises UNAUTHORIZED otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    return authorizer.ensure_live(auth.user)


def require_staff_or_admin(
    auth: RequestAuth = Depends(get_request_auth),
    authorizer: Authorizer = Depends(get_authorizer),
) -> User:
    return authorizer.require_global_role(auth.user, USER_ROLE_STAFF, USER_ROLE_ADMIN)


def require_admin(
    auth: RequestAuth = Depends(get_request_auth),
    authorizer: Authorizer = Depends(get_authorizer),
) -> User:
    return authorizer.require_global_role(auth.user, USER_ROLE_ADMIN)


def require_org_permission(*permissions: str, match: Literal["all", "any"] = "all") -> Callable[..., OrgContext]:
    """Build a dependency that admits the caller to the {org_id} organization.

    Use as a FastAPI dependency:
        @router.put("/organizations/{org_id}")
        def route(ctx: OrgContext = Depends(require_org_permission(ORG_UPDATE))): ...
    """

    def dependency(
        org_id: int,
        auth: RequestAuth = Depends(get_request_auth),
        authorizer: Authorizer = Depends(get_authorizer),
    ) -> OrgContext:
        return authorizer.authorize(auth.user, org_id, permissions, match=match)

    return dependency


# Any live member may read the organization itself.
get_org_context = require_org_permission()


def get_org_role(org_id: int, role_id: int, authorizer: Authorizer = Depends(get_authorizer)) -> Role:
    """Load the {role_id} path parameter through the role cache.

    Declare it after the permission dependency so the caller is admitted
    before the role is looked up. A missing, deleted or foreign role answers
    403 like every other role lookup made while authorizing.
    """
    role = authorizer.load_role(role_id)
    if role.organization_id != org_id:
        raise forbidden(f"role {role_id} does not belong to organization {org_id}")
    return role


def get_org_role_for_write(org_id: int, role_id: int, authorizer: Authorizer = Depends(get_authorizer)) -> Role:
    """Like get_org_role() but read from the store, so the version is current."""
    role = authorizer.orgs.get_role(role_id)
    if role is None or role.organization_id != org_id:
        raise forbidden(f"role {role_id} is missing, deleted or not in organization {org_id}")
    return role
