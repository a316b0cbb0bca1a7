"""
authz/core.py -- The per-organization authorization decision.

An operation inside an organization is admitted only when all of these hold,
checked in this order (first failure wins):

  1. the principal exists, is email-verified and not deactivated  -> else UNAUTHORIZED
  2. the organization exists, is active and not deleted           -> else FORBIDDEN
  3. the principal's profile has a live membership in it          -> else FORBIDDEN
  4. the membership's role exists and is not deleted              -> else FORBIDDEN
  5. the role grants the required permissions                     -> else FORBIDDEN

Global roles (admin / staff) are a separate gate and never substitute for
organization permissions.

Reads go through the look-aside cache when it is enabled. A cache failure is
logged and treated as a miss, so the decision is always the same one the
store alone would produce. Snapshots read from the cache are re-checked for
soft deletion exactly like rows read from the store.

Layer rule: no FastAPI imports. auth/dependencies.py adapts this to Depends().
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Callable, Literal, Optional, TypeVar

from auth.models import User
from auth.store import UserStore
from auth.tokens import SessionTokenIssuer
from authz.context import OrgContext
from cache.store import CacheStore, EntityCache, member_key, org_key, role_key, user_key
from core.errors import CacheError, TokenError, forbidden, unauthorized
from orgs.models import Organization, OrganizationMember, Role
from orgs.store import OrganizationStore

logger = logging.getLogger("meetup.authz")

T = TypeVar("T")

Match = Literal["all", "any"]


class Authorizer:
    """Resolve principals and admit them to organizations.

    Usage:
        authorizer = Authorizer(user_store, org_store, cache, session_tokens, cache_enabled=True)
        user = authorizer.resolve_principal(request.headers.get("Authorization"))
        ctx = authorizer.authorize(user, org_id, [ORG_UPDATE])
    """

    def __init__(
        self,
        users: UserStore,
        orgs: OrganizationStore,
        cache: Optional[CacheStore],
        session_tokens: SessionTokenIssuer,
        cache_enabled: bool = True,
    ) -> None:
        self.users = users
        self.orgs = orgs
        self.cache = cache
        self.session_tokens = session_tokens
        self.cache_enabled = cache_enabled and cache is not None

    # ------------------------------------------------------------------
    # Cache-aside plumbing
    # ------------------------------------------------------------------

    def _read_through(self, cache: Callable[[], EntityCache[T]], key: str, load: Callable[[], Optional[T]]) -> Optional[T]:
        if self.cache_enabled:
            try:
                hit = cache().get(key)
            except CacheError as exc:
                logger.warning("Cache read failed for %s, falling back to store: %s", key, exc.reason)
            else:
                if hit is not None:
                    return hit

        entity = load()
        if entity is not None and self.cache_enabled:
            try:
                cache().set(key, entity)
            except CacheError as exc:
                logger.warning("Cache populate failed for %s: %s", key, exc.reason)
        return entity

    def _evict(self, cache: Callable[[], EntityCache], key: str) -> None:
        if not self.cache_enabled:
            return
        try:
            cache().delete(key)
        except CacheError as exc:
            # The entry expires with its TTL; nothing else to do.
            logger.warning("Cache invalidation failed for %s: %s", key, exc.reason)

    # ------------------------------------------------------------------
    # Principal
    # ------------------------------------------------------------------

    def resolve_principal(self, authorization: Optional[str]) -> Optional[User]:
        """Turn an Authorization header into a User.

        No header means an anonymous request and returns None. A header that
        is present but not "Bearer <token>", a token that fails verification
        and a token whose subject no longer exists all raise UNAUTHORIZED.
        """
        if authorization is None or authorization == "":
            return None
        scheme, _, token = authorization.partition(" ")
        token = token.strip()
        if scheme != "Bearer" or not token or " " in token:
            raise unauthorized("malformed Authorization header")
        try:
            user_id = self.session_tokens.verify(token)
        except TokenError as exc:
            raise unauthorized(f"session token rejected: {exc.reason}") from exc
        user = self.get_user(user_id)
        if user is None:
            raise unauthorized(f"token subject {user_id} does not exist")
        return user

    def get_user(self, user_id: int) -> Optional[User]:
        user = self._read_through(lambda: self.cache.users, user_key(user_id), lambda: self.users.get_by_id(user_id))
        if user is None or user.is_deactivated:
            return None
        return user

    def ensure_live(self, user: Optional[User]) -> User:
        if user is None:
            raise unauthorized("anonymous request")
        if user.is_deactivated:
            raise unauthorized(f"user {user.id} is deactivated")
        if not user.is_activated:
            raise unauthorized(f"user {user.id} has not verified their email")
        return user

    def require_global_role(self, user: Optional[User], *roles: str) -> User:
        user = self.ensure_live(user)
        if user.role not in roles:
            raise forbidden(f"user {user.id} has global role {user.role!r}, needs one of {roles}")
        return user

    # ------------------------------------------------------------------
    # Organization side
    # ------------------------------------------------------------------

    def load_organization(self, org_id: int) -> Organization:
        org = self._read_through(
            lambda: self.cache.organizations, org_key(org_id), lambda: self.orgs.get_organization(org_id)
        )
        if org is None or not org.is_available:
            raise forbidden(f"organization {org_id} is missing, inactive or deleted")
        return org

    def load_member(self, user_profile_id: int, org_id: int) -> OrganizationMember:
        member = self._read_through(
            lambda: self.cache.members,
            member_key(user_profile_id, org_id),
            lambda: self.orgs.get_member(user_profile_id, org_id),
        )
        if member is None or member.deleted_at is not None:
            raise forbidden(f"profile {user_profile_id} is not a member of organization {org_id}")
        return member

    def load_role(self, role_id: int) -> Role:
        role = self._read_through(lambda: self.cache.roles, role_key(role_id), lambda: self.orgs.get_role(role_id))
        if role is None or role.deleted_at is not None:
            raise forbidden(f"role {role_id} is missing or deleted")
        return role

    def authorize(
        self,
        user: Optional[User],
        org_id: int,
        required: Iterable[str] = (),
        match: Match = "all",
    ) -> OrgContext:
        """Admit `user` to organization `org_id` or raise.

        match="all" requires every permission in `required` (an empty set
        admits any member). match="any" requires at least one of them.
        """
        user = self.ensure_live(user)
        org = self.load_organization(org_id)
        if user.profile is None or user.profile.id is None:
            raise forbidden(f"user {user.id} has no profile")
        member = self.load_member(user.profile.id, org_id)
        role = self.load_role(member.role_id)
        # A member row always points at a role of its own organization.
        if role.organization_id != org_id:
            raise forbidden(f"role {role.id} does not belong to organization {org_id}")

        needed = set(required)
        granted = set(role.permissions)
        if match == "any":
            allowed = not needed or bool(needed & granted)
        else:
            allowed = needed <= granted
        if not allowed:
            raise forbidden(f"role {role.id} lacks {sorted(needed - granted)} ({match}) in org {org_id}")
        return OrgContext(user=user, organization=org, member=member, role=role)

    # ------------------------------------------------------------------
    # Invalidation (call after the store write)
    # ------------------------------------------------------------------

    def invalidate_user(self, user_id: int) -> None:
        self._evict(lambda: self.cache.users, user_key(user_id))

    def invalidate_organization(self, org_id: int) -> None:
        self._evict(lambda: self.cache.organizations, org_key(org_id))

    def invalidate_role(self, role_id: int) -> None:
        self._evict(lambda: self.cache.roles, role_key(role_id))

    def invalidate_member(self, user_profile_id: int, org_id: int) -> None:
        self._evict(lambda: self.cache.members, member_key(user_profile_id, org_id))
