"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, minimal logic). Mirrors the approach
in orgs/models.py -- dataclasses own domain shape; stores and routes do the
work. to_dict()/from_dict() are the cache snapshot format.

Layer rule: no imports from api/, authz/, orgs/, or cache/.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Optional

USER_ROLE_ADMIN = "admin"
USER_ROLE_STAFF = "staff"
USER_ROLE_CLIENT = "client"
USER_ROLES = (USER_ROLE_ADMIN, USER_ROLE_STAFF, USER_ROLE_CLIENT)


@dataclass
class UserProfile:
    """Public-facing profile. Exactly one per User.

    Organization memberships reference the profile id, not the user id.
    """

    username: str
    profile_pic: str = ""
    date_of_birth: str = ""  # mm/dd/yyyy
    user_id: Optional[int] = None
    id: Optional[int] = None
    version: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    deleted_at: Optional[str] = None


@dataclass
class User:
    """An identity that can log in.

    role is the global role (admin / staff / client), orthogonal to any
    organization role. is_active flips to True when the email is verified.
    deleted_at is the soft-deactivation marker: set by staff/admin
    deactivation or by the user deleting their own account. Users are never
    hard-deleted.
    """

    email: str
    password_hash: str = ""
    role: str = USER_ROLE_CLIENT
    is_active: bool = False
    activated_at: Optional[str] = None
    password_reset_token: str = ""
    id: Optional[int] = None
    version: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    deleted_at: Optional[str] = None
    profile: Optional[UserProfile] = field(default=None, compare=False)

    @property
    def is_deactivated(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_activated(self) -> bool:
        return self.is_active and self.activated_at is not None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "User":
        data = dict(data)
        profile = data.pop("profile", None)
        user = cls(**data)
        if profile is not None:
            user.profile = UserProfile(**profile)
        return user
