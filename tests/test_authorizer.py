"""
tests/test_authorizer.py -- The per-organization authorization decision.

Covers:
  - every condition of the admit rule, and the kind of error each one raises
  - "all" vs "any" permission matching
  - principal resolution from the Authorization header
  - the same decisions with the cache on, off, and failing
  - cached snapshots are re-checked for soft deletion
  - invalidation makes writes visible immediately
"""

from __future__ import annotations

from dataclasses import replace

import pytest

from auth.models import USER_ROLE_ADMIN, USER_ROLE_STAFF
from cache.store import member_key, org_key, role_key, user_key
from core.errors import AppError, ErrorKind
from core.permissions import MEMBER_ADD, ORG_DELETE, ORG_UPDATE, ROLE_CREATE, ROLE_UPDATE
from orgs.models import Organization, OrganizationMember, Role
from tests.conftest import seed_member, seed_role, seed_user


@pytest.fixture
def world(stores):
    """One organization with a founder (sudo) and an editor limited to update_org."""
    users, orgs = stores
    founder = seed_user(users)
    org = Organization(name="acme")
    sudo = Role(name="sudo", permissions=[ORG_UPDATE, ORG_DELETE, ROLE_CREATE, ROLE_UPDATE, MEMBER_ADD])
    orgs.create_organization(org, sudo, OrganizationMember(user_profile_id=founder.profile.id))
    editor_role = seed_role(orgs, org.id, [ORG_UPDATE], name="editor")
    editor = seed_user(users)
    seed_member(orgs, org.id, editor, editor_role)
    return {"org": org, "founder": founder, "sudo": sudo, "editor": editor, "editor_role": editor_role}


def _kind(fn, *args, **kwargs):
    with pytest.raises(AppError) as exc_info:
        fn(*args, **kwargs)
    return exc_info.value.kind


# ---------------------------------------------------------------------------
# The admit rule
# ---------------------------------------------------------------------------


class TestAuthorize:
    def test_admits_member_with_permission(self, authorizer, world):
        ctx = authorizer.authorize(world["editor"], world["org"].id, [ORG_UPDATE])
        assert ctx.organization.id == world["org"].id
        assert ctx.role.id == world["editor_role"].id
        assert ctx.member.user_profile_id == world["editor"].profile.id
        assert ctx.has(ORG_UPDATE)

    def test_empty_requirement_admits_any_member(self, authorizer, world):
        assert authorizer.authorize(world["editor"], world["org"].id).role.name == "editor"

    def test_missing_permission_is_forbidden(self, authorizer, world):
        assert _kind(authorizer.authorize, world["editor"], world["org"].id, [ORG_DELETE]) is ErrorKind.FORBIDDEN

    def test_all_requires_every_permission(self, authorizer, world):
        kind = _kind(authorizer.authorize, world["editor"], world["org"].id, [ORG_UPDATE, ORG_DELETE])
        assert kind is ErrorKind.FORBIDDEN

    def test_any_accepts_one_of(self, authorizer, world):
        ctx = authorizer.authorize(world["editor"], world["org"].id, [ORG_DELETE, ORG_UPDATE], match="any")
        assert ctx.role.name == "editor"

    def test_any_with_none_granted_is_forbidden(self, authorizer, world):
        kind = _kind(authorizer.authorize, world["editor"], world["org"].id, [ORG_DELETE, ROLE_CREATE], match="any")
        assert kind is ErrorKind.FORBIDDEN

    def test_anonymous_is_unauthorized(self, authorizer, world):
        assert _kind(authorizer.authorize, None, world["org"].id) is ErrorKind.UNAUTHORIZED

    def test_unverified_user_is_unauthorized(self, authorizer, stores, world):
        users, _ = stores
        user = seed_user(users, activated=False)
        assert _kind(authorizer.authorize, user, world["org"].id) is ErrorKind.UNAUTHORIZED

    def test_deactivated_user_is_unauthorized_even_with_permission(self, authorizer, stores, world):
        users, _ = stores
        founder = world["founder"]
        users.deactivate(founder)
        assert _kind(authorizer.authorize, founder, world["org"].id, [ORG_UPDATE]) is ErrorKind.UNAUTHORIZED

    def test_non_member_is_forbidden(self, authorizer, stores, world):
        users, _ = stores
        assert _kind(authorizer.authorize, seed_user(users), world["org"].id) is ErrorKind.FORBIDDEN

    def test_unknown_org_is_forbidden(self, authorizer, world):
        assert _kind(authorizer.authorize, world["founder"], 424242) is ErrorKind.FORBIDDEN

    def test_inactive_org_is_forbidden(self, authorizer, stores, world):
        _, orgs = stores
        orgs.deactivate_organization(world["org"])
        authorizer.invalidate_organization(world["org"].id)
        assert _kind(authorizer.authorize, world["founder"], world["org"].id, [ORG_UPDATE]) is ErrorKind.FORBIDDEN

    def test_deleted_org_is_forbidden(self, authorizer, stores, world):
        _, orgs = stores
        orgs.soft_delete_organization(world["org"])
        authorizer.invalidate_organization(world["org"].id)
        assert _kind(authorizer.authorize, world["founder"], world["org"].id) is ErrorKind.FORBIDDEN

    def test_deleted_role_is_forbidden(self, authorizer, stores, world):
        _, orgs = stores
        role = world["editor_role"]
        member = orgs.get_member(world["editor"].profile.id, world["org"].id)
        orgs.remove_member(member)
        orgs.soft_delete_role(role)
        # Re-add the binding by hand to simulate a dangling role reference.
        orgs.add_member(OrganizationMember(organization_id=world["org"].id, user_profile_id=world["editor"].profile.id, role_id=role.id))
        authorizer.invalidate_member(world["editor"].profile.id, world["org"].id)
        authorizer.invalidate_role(role.id)
        assert _kind(authorizer.authorize, world["editor"], world["org"].id) is ErrorKind.FORBIDDEN

    def test_membership_in_other_org_does_not_leak(self, authorizer, stores, world):
        users, orgs = stores
        other = Organization(name="other")
        outsider = seed_user(users)
        orgs.create_organization(other, Role(name="sudo", permissions=[ORG_UPDATE]), OrganizationMember(user_profile_id=outsider.profile.id))
        assert _kind(authorizer.authorize, outsider, world["org"].id, [ORG_UPDATE]) is ErrorKind.FORBIDDEN


class TestGlobalRoles:
    def test_admin_passes_staff_gate(self, authorizer, stores):
        users, _ = stores
        admin = seed_user(users, role=USER_ROLE_ADMIN)
        assert authorizer.require_global_role(admin, USER_ROLE_STAFF, USER_ROLE_ADMIN) is admin

    def test_client_is_forbidden(self, authorizer, stores):
        users, _ = stores
        assert _kind(authorizer.require_global_role, seed_user(users), USER_ROLE_ADMIN) is ErrorKind.FORBIDDEN

    def test_global_admin_gets_no_org_permissions(self, authorizer, stores, world):
        users, _ = stores
        admin = seed_user(users, role=USER_ROLE_ADMIN)
        assert _kind(authorizer.authorize, admin, world["org"].id, [ORG_UPDATE]) is ErrorKind.FORBIDDEN


# ---------------------------------------------------------------------------
# Principal resolution
# ---------------------------------------------------------------------------


class TestResolvePrincipal:
    def test_no_header_is_anonymous(self, authorizer):
        assert authorizer.resolve_principal(None) is None
        assert authorizer.resolve_principal("") is None

    def test_bearer_token_resolves_user(self, authorizer, stores, session_tokens):
        users, _ = stores
        user = seed_user(users)
        resolved = authorizer.resolve_principal(f"Bearer {session_tokens.issue(user.id)}")
        assert resolved.id == user.id

    @pytest.mark.parametrize("header", ["Bearer", "Bearer ", "Basic abc", "Token abc", "Bearer a b", "bearer-abc"])
    def test_malformed_header_is_unauthorized(self, authorizer, header):
        assert _kind(authorizer.resolve_principal, header) is ErrorKind.UNAUTHORIZED

    def test_invalid_token_is_unauthorized(self, authorizer):
        assert _kind(authorizer.resolve_principal, "Bearer not.a.jwt") is ErrorKind.UNAUTHORIZED

    def test_token_for_missing_user_is_unauthorized(self, authorizer, session_tokens):
        assert _kind(authorizer.resolve_principal, f"Bearer {session_tokens.issue(999999)}") is ErrorKind.UNAUTHORIZED

    def test_token_for_deactivated_user_is_unauthorized(self, authorizer, stores, session_tokens):
        users, _ = stores
        user = seed_user(users)
        token = session_tokens.issue(user.id)
        users.deactivate(user)
        authorizer.invalidate_user(user.id)
        assert _kind(authorizer.resolve_principal, f"Bearer {token}") is ErrorKind.UNAUTHORIZED


# ---------------------------------------------------------------------------
# Cache behaviour
# ---------------------------------------------------------------------------


class TestCache:
    def test_authorize_populates_cache(self, authorizer, fake_redis, world):
        authorizer.authorize(world["editor"], world["org"].id, [ORG_UPDATE])
        assert org_key(world["org"].id) in fake_redis.data
        assert role_key(world["editor_role"].id) in fake_redis.data
        assert member_key(world["editor"].profile.id, world["org"].id) in fake_redis.data

    def test_second_call_is_served_from_cache(self, authorizer, stores, fake_redis, world):
        _, orgs = stores
        authorizer.authorize(world["editor"], world["org"].id, [ORG_UPDATE])
        # Change the store behind the cache's back: the cached role still answers.
        role = orgs.get_role(world["editor_role"].id)
        role.permissions = [ORG_DELETE]
        orgs.update_role(role)
        assert authorizer.authorize(world["editor"], world["org"].id, [ORG_UPDATE]).role.permissions == [ORG_UPDATE]

    def test_invalidation_makes_write_visible(self, authorizer, stores, world):
        _, orgs = stores
        authorizer.authorize(world["editor"], world["org"].id, [ORG_UPDATE])
        role = orgs.get_role(world["editor_role"].id)
        role.permissions = [ORG_DELETE]
        orgs.update_role(role)
        authorizer.invalidate_role(role.id)
        assert _kind(authorizer.authorize, world["editor"], world["org"].id, [ORG_UPDATE]) is ErrorKind.FORBIDDEN

    def test_cached_soft_deleted_org_is_rejected(self, authorizer, fake_redis, world):
        org = world["org"]
        authorizer.cache.organizations.set(org_key(org.id), replace(org, deleted_at="2026-01-01T00:00:00+00:00"))
        assert _kind(authorizer.authorize, world["founder"], org.id) is ErrorKind.FORBIDDEN

    def test_cached_deactivated_user_is_rejected(self, authorizer, session_tokens, world):
        founder = world["founder"]
        authorizer.cache.users.set(user_key(founder.id), replace(founder, deleted_at="2026-01-01T00:00:00+00:00"))
        kind = _kind(authorizer.resolve_principal, f"Bearer {session_tokens.issue(founder.id)}")
        assert kind is ErrorKind.UNAUTHORIZED

    def test_cache_failure_falls_back_to_store(self, authorizer, fake_redis, session_tokens, world):
        fake_redis.down = True
        user = authorizer.resolve_principal(f"Bearer {session_tokens.issue(world['editor'].id)}")
        ctx = authorizer.authorize(user, world["org"].id, [ORG_UPDATE])
        assert ctx.role.name == "editor"
        assert _kind(authorizer.authorize, user, world["org"].id, [ORG_DELETE]) is ErrorKind.FORBIDDEN

    def test_cache_failure_on_invalidate_does_not_raise(self, authorizer, fake_redis, world):
        fake_redis.down = True
        authorizer.invalidate_user(world["founder"].id)
        authorizer.invalidate_organization(world["org"].id)
        authorizer.invalidate_role(world["sudo"].id)
        authorizer.invalidate_member(world["founder"].profile.id, world["org"].id)

    def test_corrupt_cache_entry_is_a_miss(self, authorizer, fake_redis, world):
        fake_redis.data[org_key(world["org"].id)] = "{broken"
        assert authorizer.authorize(world["founder"], world["org"].id, [ORG_UPDATE]).organization.name == "acme"

    @pytest.mark.parametrize(
        "who,required,match",
        [
            ("founder", [ORG_UPDATE, ORG_DELETE], "all"),
            ("editor", [ORG_UPDATE], "all"),
            ("editor", [ORG_DELETE], "all"),
            ("editor", [ORG_DELETE, ORG_UPDATE], "any"),
            ("outsider", [], "all"),
        ],
    )
    def test_same_decision_with_and_without_cache(
        self, authorizer, uncached_authorizer, stores, world, who, required, match
    ):
        users, _ = stores
        world["outsider"] = seed_user(users)
        user = world[who]

        def decide(a):
            try:
                return ("ok", a.authorize(user, world["org"].id, required, match=match).role.id)
            except AppError as exc:
                return ("error", exc.kind)

        # Twice through the cached path: once cold, once warm.
        cold = decide(authorizer)
        warm = decide(authorizer)
        assert cold == warm == decide(uncached_authorizer)
