"""
authz/context.py -- Typed values attached to a request once authorization
has run. Route handlers receive these through Depends() instead of reading
untyped keys off request.state.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from auth.models import User
from orgs.models import Organization, OrganizationMember, Role


@dataclass(frozen=True)
class RequestAuth:
    """The principal for one request. user is None for anonymous requests."""

    user: Optional[User] = None


@dataclass(frozen=True)
class OrgContext:
    """Everything the authorizer loaded while admitting a request to an org."""

    user: User
    organization: Organization
    member: OrganizationMember
    role: Role

    def has(self, permission: str) -> bool:
        return permission in self.role.permissions
