"""
orgs/models.py -- Domain dataclasses for organizations and their roles,
members and invites.

Pattern: Data class (pure data container, zero business logic). The stores
and the authorizer do the work. to_dict()/from_dict() define the JSON
snapshot written to the look-aside cache.

Layer rule: no imports from api/, authz/, auth/, or cache/.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Optional

DEFAULT_ROLE_NAME = "sudo"


class _Snapshot:
    def to_dict(self) -> dict[str, Any]:
        return asdict(self)  # type: ignore[call-overload]

    @classmethod
    def from_dict(cls, data: dict[str, Any]):
        return cls(**data)  # type: ignore[call-arg]


@dataclass
class Organization(_Snapshot):
    """A tenant. name is globally unique.

    is_active=False means deactivated by an admin; deleted_at means soft
    deleted by a member holding delete_org. Either state hides the
    organization from everyone, including its members.
    """

    name: str
    description: str = ""
    profile_pic: str = ""
    is_active: bool = True
    id: Optional[int] = None
    version: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    deleted_at: Optional[str] = None

    @property
    def is_available(self) -> bool:
        return self.is_active and self.deleted_at is None


@dataclass
class Role(_Snapshot):
    """Organization-scoped bundle of permission strings. name is unique per org."""

    name: str
    organization_id: Optional[int] = None
    description: str = ""
    permissions: list[str] = field(default_factory=list)
    id: Optional[int] = None
    version: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    deleted_at: Optional[str] = None


@dataclass
class OrganizationMember(_Snapshot):
    """Binds a user profile to an organization through exactly one role."""

    organization_id: Optional[int] = None
    user_profile_id: Optional[int] = None
    role_id: Optional[int] = None
    id: Optional[int] = None
    version: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    deleted_at: Optional[str] = None


@dataclass
class OrganizationInvite(_Snapshot):
    """Pending membership grant. Accept/decline handling is not implemented."""

    organization_id: int
    user_profile_id: int
    role_id: int
    accepted_at: Optional[str] = None
    declined_at: Optional[str] = None
    id: Optional[int] = None
    version: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    deleted_at: Optional[str] = None
