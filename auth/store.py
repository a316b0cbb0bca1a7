"""
auth/store.py -- SQLAlchemy Core persistence layer for users and profiles.

Pattern: Repository + Data Mapper (same as orgs/store.py).
UserStore is the repository; _row_to_user is the mapper. Route and
authorization code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Concurrency:
  Every mutation goes through core.database.versioned_update, so a stale
  in-memory User (version mismatch) fails with StoreError(NOT_FOUND) instead
  of overwriting a concurrent write.

Layer rule: no imports from api/, authz/, orgs/, or cache/.
"""

from __future__ import annotations

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, Table, Text, select, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from auth.models import User, UserProfile
from core.database import metadata, utc_now_iso, versioned_update
from core.errors import ErrorKind, StoreError

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password", Text, nullable=False),
    Column("role", String(20), nullable=False, server_default="client"),
    Column("is_active", Boolean, nullable=False, server_default="0"),
    Column("activated_at", String(40)),
    Column("password_reset_token", Text, nullable=False, server_default=""),
    Column("version", Integer, nullable=False, server_default="0"),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40)),
    Column("deleted_at", String(40)),
)

user_profiles = Table(
    "user_profiles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(100), nullable=False, unique=True),
    Column("profile_pic", Text, nullable=False, server_default=""),
    Column("date_of_birth", String(10), nullable=False, server_default=""),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, unique=True),
    Column("version", Integer, nullable=False, server_default="0"),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40)),
    Column("deleted_at", String(40)),
)

_PROFILE_COLUMNS = [
    user_profiles.c.id.label("profile_id"),
    user_profiles.c.username.label("profile_username"),
    user_profiles.c.profile_pic.label("profile_profile_pic"),
    user_profiles.c.date_of_birth.label("profile_date_of_birth"),
    user_profiles.c.version.label("profile_version"),
    user_profiles.c.created_at.label("profile_created_at"),
    user_profiles.c.updated_at.label("profile_updated_at"),
    user_profiles.c.deleted_at.label("profile_deleted_at"),
]


def _duplicate_field(exc: IntegrityError) -> str:
    """Name the unique column an IntegrityError tripped on.

    SQLite reports "UNIQUE constraint failed: users.email"; PostgreSQL
    reports the constraint name ("users_email_key"). Both contain the column.
    """
    message = str(exc.orig)
    for candidate in ("email", "username"):
        if candidate in message:
            return candidate
    return "unknown"


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and UserProfile entities.

    Usage:
        store = UserStore(engine)
        store.create_user(User(email="a@b.co", password_hash=hash_password("secret")), UserProfile(username="ab"))
        user = store.get_by_email("a@b.co")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_user(self, user: User, profile: UserProfile) -> int:
        """Insert a user and their profile in one transaction.

        Raises StoreError(DUPLICATE) with fields={"email" | "username": ...}
        when either unique column is taken. Nothing is written in that case.
        """
        now = utc_now_iso()
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    users.insert().values(
                        email=user.email,
                        password=user.password_hash,
                        role=user.role,
                        is_active=user.is_active,
                        activated_at=user.activated_at,
                        created_at=now,
                    )
                )
                user.id = result.inserted_primary_key[0]
                profile.user_id = user.id
                result = conn.execute(
                    user_profiles.insert().values(
                        username=profile.username,
                        profile_pic=profile.profile_pic,
                        date_of_birth=profile.date_of_birth,
                        user_id=user.id,
                        created_at=now,
                    )
                )
                profile.id = result.inserted_primary_key[0]
        except IntegrityError as exc:
            user.id = None
            profile.id = None
            profile.user_id = None
            field = _duplicate_field(exc)
            raise StoreError(
                ErrorKind.DUPLICATE,
                fields={field: f"{field} is already taken"},
                reason=f"duplicate {field} on user create",
            ) from exc
        user.created_at = profile.created_at = now
        user.version = profile.version = 0
        user.profile = profile
        return user.id

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _select(self, include_deleted: bool):
        stmt = select(users, *_PROFILE_COLUMNS).select_from(
            users.outerjoin(user_profiles, user_profiles.c.user_id == users.c.id)
        )
        if not include_deleted:
            stmt = stmt.where(users.c.deleted_at.is_(None))
        return stmt

    def get_by_id(self, user_id: int, include_deleted: bool = False) -> User | None:
        """Look up a user (with profile) by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(self._select(include_deleted).where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str, include_deleted: bool = False) -> User | None:
        """Look up a user by exact email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(self._select(include_deleted).where(users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_active_by_email(self, email: str) -> User | None:
        """Return the user only when the account is verified and not deactivated."""
        with self.engine.connect() as conn:
            row = conn.execute(
                self._select(False).where((users.c.email == email) & (users.c.is_active.is_(True)))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    # ------------------------------------------------------------------
    # Mutations (optimistic concurrency)
    # ------------------------------------------------------------------

    def _update(self, user: User, **values) -> None:
        with self.engine.begin() as conn:
            versioned_update(conn, users, user, **values)

    def activate(self, user: User) -> None:
        self._update(user, is_active=True, activated_at=utc_now_iso())

    def deactivate(self, user: User) -> None:
        """Soft-deactivate: stamp deleted_at. The row and profile are kept."""
        self._update(user, deleted_at=utc_now_iso())

    def soft_delete(self, user: User) -> None:
        """Self-service account deletion. Same marker as deactivation."""
        self._update(user, deleted_at=utc_now_iso())

    def set_password_reset_token(self, user: User, token: str) -> None:
        self._update(user, password_reset_token=token)

    def reset_password(self, user: User, password_hash: str) -> None:
        """Store a new hash and burn the reset token so it cannot be reused."""
        self._update(user, password=password_hash, password_reset_token="")
        user.password_hash = password_hash

    def update_details(self, user: User, email: str, profile_changes: dict) -> None:
        """Update email and profile fields together in one transaction.

        Both rows are version-checked. Raises StoreError(DUPLICATE) when the
        new email or username is taken by someone else.
        """
        profile = user.profile
        if profile is None:
            raise StoreError(ErrorKind.NOT_FOUND, reason=f"user {user.id} has no profile")
        try:
            with self.engine.begin() as conn:
                _update_pair(conn, user, email, profile, profile_changes)
        except IntegrityError as exc:
            field = _duplicate_field(exc)
            raise StoreError(
                ErrorKind.DUPLICATE,
                fields={field: f"{field} is already taken"},
                reason=f"duplicate {field} on user update",
            ) from exc
        user.email = email

    def close(self) -> None:
        self.engine.dispose()


def _update_pair(conn: Connection, user: User, email: str, profile: UserProfile, changes: dict) -> None:
    # Work on copies so a rollback leaves the caller's entities untouched.
    staged_user = User(email=user.email, id=user.id, version=user.version)
    staged_profile = UserProfile(username=profile.username, id=profile.id, version=profile.version)
    versioned_update(conn, users, staged_user, email=email)
    versioned_update(conn, user_profiles, staged_profile, **changes)
    user.version, user.updated_at = staged_user.version, staged_user.updated_at
    profile.version, profile.updated_at = staged_profile.version, staged_profile.updated_at
    for key, value in changes.items():
        setattr(profile, key, value)


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    user = User(
        id=row.id,
        email=row.email,
        password_hash=row.password,
        role=row.role,
        is_active=bool(row.is_active),
        activated_at=row.activated_at,
        password_reset_token=row.password_reset_token or "",
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at,
        deleted_at=row.deleted_at,
    )
    if row.profile_id is not None:
        user.profile = UserProfile(
            id=row.profile_id,
            username=row.profile_username,
            profile_pic=row.profile_profile_pic,
            date_of_birth=row.profile_date_of_birth,
            user_id=row.id,
            version=row.profile_version,
            created_at=row.profile_created_at,
            updated_at=row.profile_updated_at,
            deleted_at=row.profile_deleted_at,
        )
    return user
