"""
orgs/store.py -- SQLAlchemy-backed persistence for organizations, roles,
members and invites.

Uses SQLAlchemy Core (not ORM) so the dataclasses in orgs/models.py remain
the authoritative domain representation.

Pattern: Repository + Data Mapper. OrganizationStore is the repository (one
typed method per lookup use case, no generic field/value filters). The
_row_to_* functions are the mappers.

Conventions shared by every table:
  version     -- optimistic concurrency counter; every UPDATE pins it and
                 bumps it by one (core.database.versioned_update).
  deleted_at  -- soft delete marker; lookups exclude these rows unless the
                 caller passes include_deleted=True.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = OrganizationStore(engine)
    store.create_organization(org, role, member)   # one transaction
    role = store.get_role(role_id)
    store.update_role(role)                        # raises StoreError(NOT_FOUND) on a stale version
"""

from __future__ import annotations

import json
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    select,
    true,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from core.database import metadata, utc_now_iso, versioned_update
from core.errors import ErrorKind, StoreError
from orgs.models import Organization, OrganizationInvite, OrganizationMember, Role

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

organizations = Table(
    "organizations",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("description", Text, nullable=False, server_default=""),
    Column("profile_pic", Text, nullable=False, server_default=""),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("version", Integer, nullable=False, server_default="0"),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40)),
    Column("deleted_at", String(40)),
)

roles = Table(
    "roles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("description", Text, nullable=False, server_default=""),
    Column("org_id", Integer, ForeignKey("organizations.id"), nullable=False),
    Column("permissions", Text, nullable=False),  # JSON array of permission strings
    Column("version", Integer, nullable=False, server_default="0"),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40)),
    Column("deleted_at", String(40)),
)

organization_members = Table(
    "organization_members",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("org_id", Integer, ForeignKey("organizations.id"), nullable=False),
    Column("user_id", Integer, ForeignKey("user_profiles.id"), nullable=False),
    Column("role_id", Integer, ForeignKey("roles.id"), nullable=False),
    Column("version", Integer, nullable=False, server_default="0"),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40)),
    Column("deleted_at", String(40)),
)

organization_invites = Table(
    "organization_invites",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("org_id", Integer, ForeignKey("organizations.id"), nullable=False),
    Column("user_id", Integer, ForeignKey("user_profiles.id"), nullable=False),
    Column("role_id", Integer, ForeignKey("roles.id"), nullable=False),
    Column("accepted_at", String(40)),
    Column("declined_at", String(40)),
    Column("version", Integer, nullable=False, server_default="0"),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40)),
    Column("deleted_at", String(40)),
    UniqueConstraint("org_id", "user_id", name="uq_invite_org_user"),
)


def _not_deleted(table: Table, include_deleted: bool):
    return true() if include_deleted else table.c.deleted_at.is_(None)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class OrganizationStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # ------------------------------------------------------------------
    # Organizations
    # ------------------------------------------------------------------

    def create_organization(self, org: Organization, role: Role, member: OrganizationMember) -> None:
        """Create an organization, its default role and founding member atomically.

        All three inserts share one transaction. Any failure rolls back the
        lot, so a partially created organization is never observable. A
        taken name raises StoreError(DUPLICATE).
        """
        now = utc_now_iso()
        try:
            with self.engine.begin() as conn:
                org_id = conn.execute(
                    organizations.insert().values(
                        name=org.name,
                        description=org.description,
                        profile_pic=org.profile_pic,
                        is_active=True,
                        created_at=now,
                    )
                ).inserted_primary_key[0]
                role_id = conn.execute(
                    roles.insert().values(
                        name=role.name,
                        description=role.description,
                        org_id=org_id,
                        permissions=json.dumps(role.permissions),
                        created_at=now,
                    )
                ).inserted_primary_key[0]
                member_id = conn.execute(
                    organization_members.insert().values(
                        org_id=org_id,
                        user_id=member.user_profile_id,
                        role_id=role_id,
                        created_at=now,
                    )
                ).inserted_primary_key[0]
        except IntegrityError as exc:
            if "name" in str(exc.orig):
                raise StoreError(
                    ErrorKind.DUPLICATE,
                    fields={"name": "organization name is already taken"},
                    reason=f"duplicate organization name {org.name!r}",
                ) from exc
            raise

        org.id, org.is_active, org.version, org.created_at = org_id, True, 0, now
        role.id, role.organization_id, role.version, role.created_at = role_id, org_id, 0, now
        member.id, member.organization_id, member.role_id = member_id, org_id, role_id
        member.version, member.created_at = 0, now

    def get_organization(self, org_id: int, include_deleted: bool = False) -> Optional[Organization]:
        """Fetch one organization by id. Deactivated rows are returned; callers decide."""
        with self.engine.connect() as conn:
            row = conn.execute(
                organizations.select().where(
                    (organizations.c.id == org_id) & _not_deleted(organizations, include_deleted)
                )
            ).fetchone()
        return _row_to_org(row) if row is not None else None

    def get_organization_by_name(self, name: str) -> Optional[Organization]:
        with self.engine.connect() as conn:
            row = conn.execute(organizations.select().where(organizations.c.name == name)).fetchone()
        return _row_to_org(row) if row is not None else None

    def list_for_user(self, user_profile_id: int) -> list[Organization]:
        """Active, non-deleted organizations where the profile has a live membership."""
        stmt = (
            select(organizations)
            .select_from(
                organizations.join(organization_members, organization_members.c.org_id == organizations.c.id)
            )
            .where(
                (organization_members.c.user_id == user_profile_id)
                & organizations.c.is_active.is_(True)
                & organizations.c.deleted_at.is_(None)
                & organization_members.c.deleted_at.is_(None)
            )
            .order_by(organizations.c.name, organizations.c.created_at)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_org(r) for r in rows]

    def update_organization(self, org: Organization) -> None:
        """Persist name, description and profile_pic. Version-checked."""
        try:
            with self.engine.begin() as conn:
                versioned_update(
                    conn,
                    organizations,
                    org,
                    name=org.name,
                    description=org.description,
                    profile_pic=org.profile_pic,
                )
        except IntegrityError as exc:
            raise StoreError(
                ErrorKind.DUPLICATE,
                fields={"name": "organization name is already taken"},
                reason=f"duplicate organization name {org.name!r}",
            ) from exc

    def deactivate_organization(self, org: Organization) -> None:
        with self.engine.begin() as conn:
            versioned_update(conn, organizations, org, is_active=False)

    def soft_delete_organization(self, org: Organization) -> None:
        with self.engine.begin() as conn:
            versioned_update(conn, organizations, org, deleted_at=utc_now_iso())

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def create_role(self, role: Role) -> int:
        now = utc_now_iso()
        with self.engine.begin() as conn:
            role.id = conn.execute(
                roles.insert().values(
                    name=role.name,
                    description=role.description,
                    org_id=role.organization_id,
                    permissions=json.dumps(role.permissions),
                    created_at=now,
                )
            ).inserted_primary_key[0]
        role.version, role.created_at = 0, now
        return role.id

    def get_role(self, role_id: int, include_deleted: bool = False) -> Optional[Role]:
        with self.engine.connect() as conn:
            row = conn.execute(
                roles.select().where((roles.c.id == role_id) & _not_deleted(roles, include_deleted))
            ).fetchone()
        return _row_to_role(row) if row is not None else None

    def get_role_by_name(self, org_id: int, name: str) -> Optional[Role]:
        """Live role with this exact name in the organization (names are unique per org)."""
        with self.engine.connect() as conn:
            row = conn.execute(
                roles.select().where(
                    (roles.c.org_id == org_id) & (roles.c.name == name) & roles.c.deleted_at.is_(None)
                )
            ).fetchone()
        return _row_to_role(row) if row is not None else None

    def list_roles(self, org_id: int) -> list[Role]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                roles.select()
                .where((roles.c.org_id == org_id) & roles.c.deleted_at.is_(None))
                .order_by(roles.c.name, roles.c.created_at)
            ).fetchall()
        return [_row_to_role(r) for r in rows]

    def update_role(self, role: Role) -> None:
        with self.engine.begin() as conn:
            versioned_update(
                conn,
                roles,
                role,
                name=role.name,
                description=role.description,
                permissions=json.dumps(role.permissions),
            )
        # versioned_update copied the JSON string onto the entity; restore the list.
        role.permissions = _load_permissions(role.permissions)

    def soft_delete_role(self, role: Role) -> None:
        """Soft delete a role unless a live member still holds it.

        The guard and the delete run in one transaction so a member added
        concurrently with role deletion cannot slip between the check and
        the write on databases with serializable writes (SQLite). Raises
        StoreError(CONFLICT) and leaves the role untouched when referenced.
        """
        with self.engine.begin() as conn:
            in_use = conn.execute(
                select(organization_members.c.id)
                .where(
                    (organization_members.c.role_id == role.id)
                    & (organization_members.c.org_id == role.organization_id)
                    & organization_members.c.deleted_at.is_(None)
                )
                .limit(1)
            ).first()
            if in_use is not None:
                raise StoreError(
                    ErrorKind.CONFLICT,
                    "Role is assigned to active users. Please reassign them before deleting.",
                    reason=f"role {role.id} has active members",
                    code="role_in_use",
                )
            versioned_update(conn, roles, role, deleted_at=utc_now_iso())

    # ------------------------------------------------------------------
    # Members
    # ------------------------------------------------------------------

    def add_member(self, member: OrganizationMember) -> int:
        now = utc_now_iso()
        with self.engine.begin() as conn:
            member.id = conn.execute(
                organization_members.insert().values(
                    org_id=member.organization_id,
                    user_id=member.user_profile_id,
                    role_id=member.role_id,
                    created_at=now,
                )
            ).inserted_primary_key[0]
        member.version, member.created_at = 0, now
        return member.id

    def get_member(
        self, user_profile_id: int, org_id: int, include_deleted: bool = False
    ) -> Optional[OrganizationMember]:
        """The (profile, organization) binding. At most one live row exists per pair."""
        with self.engine.connect() as conn:
            row = conn.execute(
                organization_members.select()
                .where(
                    (organization_members.c.user_id == user_profile_id)
                    & (organization_members.c.org_id == org_id)
                    & _not_deleted(organization_members, include_deleted)
                )
                .order_by(organization_members.c.id.desc())
            ).first()
        return _row_to_member(row) if row is not None else None

    def get_member_by_role(self, role_id: int, org_id: int) -> Optional[OrganizationMember]:
        with self.engine.connect() as conn:
            row = conn.execute(
                organization_members.select().where(
                    (organization_members.c.role_id == role_id)
                    & (organization_members.c.org_id == org_id)
                    & organization_members.c.deleted_at.is_(None)
                )
            ).first()
        return _row_to_member(row) if row is not None else None

    def remove_member(self, member: OrganizationMember) -> None:
        with self.engine.begin() as conn:
            versioned_update(conn, organization_members, member, deleted_at=utc_now_iso())

    # ------------------------------------------------------------------
    # Invites
    # ------------------------------------------------------------------

    def create_invite(self, invite: OrganizationInvite) -> int:
        now = utc_now_iso()
        try:
            with self.engine.begin() as conn:
                invite.id = conn.execute(
                    organization_invites.insert().values(
                        org_id=invite.organization_id,
                        user_id=invite.user_profile_id,
                        role_id=invite.role_id,
                        created_at=now,
                    )
                ).inserted_primary_key[0]
        except IntegrityError as exc:
            raise StoreError(ErrorKind.DUPLICATE, reason="invite already exists") from exc
        invite.version, invite.created_at = 0, now
        return invite.id

    def get_invite(self, user_profile_id: int, org_id: int) -> Optional[OrganizationInvite]:
        with self.engine.connect() as conn:
            row = conn.execute(
                organization_invites.select()
                .where(
                    (organization_invites.c.user_id == user_profile_id)
                    & (organization_invites.c.org_id == org_id)
                    & organization_invites.c.deleted_at.is_(None)
                )
                .order_by(organization_invites.c.created_at)
            ).first()
        return _row_to_invite(row) if row is not None else None


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _load_permissions(raw) -> list[str]:
    if isinstance(raw, list):
        return raw
    return json.loads(raw) if raw else []


def _row_to_org(row) -> Organization:
    return Organization(
        id=row.id,
        name=row.name,
        description=row.description,
        profile_pic=row.profile_pic,
        is_active=bool(row.is_active),
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at,
        deleted_at=row.deleted_at,
    )


def _row_to_role(row) -> Role:
    return Role(
        id=row.id,
        name=row.name,
        description=row.description,
        organization_id=row.org_id,
        permissions=_load_permissions(row.permissions),
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at,
        deleted_at=row.deleted_at,
    )


def _row_to_member(row) -> OrganizationMember:
    return OrganizationMember(
        id=row.id,
        organization_id=row.org_id,
        user_profile_id=row.user_id,
        role_id=row.role_id,
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at,
        deleted_at=row.deleted_at,
    )


def _row_to_invite(row) -> OrganizationInvite:
    return OrganizationInvite(
        id=row.id,
        organization_id=row.org_id,
        user_profile_id=row.user_id,
        role_id=row.role_id,
        accepted_at=row.accepted_at,
        declined_at=row.declined_at,
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at,
        deleted_at=row.deleted_at,
    )
