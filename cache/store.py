"""
cache/store.py -- Redis look-aside cache for users, organizations, roles and
memberships.

The cache is advisory: the relational store is the source of truth. Entries
are JSON snapshots of the domain dataclasses (to_dict/from_dict) written with
a TTL. Callers read the cache first, fall back to the store on a miss and
populate the cache after a store hit. Every write to an entity deletes its
entry.

Every transport or decoding failure is raised as CacheError so the caller
can log it and treat it as a miss. A snapshot whose fields hold the wrong
types counts as undecodable. A failed cache never blocks a request.

Usage:
    cache = CacheStore.from_url("redis://localhost:6379/0", user_ttl=3600, org_ttl=3600)
    user = cache.users.get(user_key(42))     # User or None
    cache.users.set(user_key(42), user)
    cache.users.delete(user_key(42))         # idempotent

Layer rule: no imports from api/ or authz/.
"""

from __future__ import annotations

import dataclasses
import json
import typing
from typing import Any, Callable, Generic, Optional, TypeVar

import redis

from auth.models import User
from core.errors import CacheError
from orgs.models import Organization, OrganizationMember, Role

T = TypeVar("T")

_DEFAULT_TTL = 60 * 60  # 1 hour in seconds


# ---------------------------------------------------------------------------
# Key scheme
# ---------------------------------------------------------------------------


def user_key(user_id: int) -> str:
    return f"user:{user_id}"


def org_key(org_id: int) -> str:
    return f"org:{org_id}"


def role_key(role_id: int) -> str:
    return f"role:{role_id}"


def member_key(user_profile_id: int, org_id: int) -> str:
    return f"org_member:{user_profile_id},{org_id}"


# ---------------------------------------------------------------------------
# Snapshot type checks
# ---------------------------------------------------------------------------


def _matches(value: Any, hint: Any) -> bool:
    origin = typing.get_origin(hint)
    if origin is typing.Union:
        return any(_matches(value, arg) for arg in typing.get_args(hint))
    if hint is type(None):
        return value is None
    if origin is list:
        (item,) = typing.get_args(hint) or (Any,)
        return isinstance(value, list) and all(_matches(v, item) for v in value)
    if dataclasses.is_dataclass(hint):
        if not isinstance(value, hint):
            return False
        _check_fields(value)
        return True
    if hint is int:
        return isinstance(value, int) and not isinstance(value, bool)
    if isinstance(hint, type):
        return isinstance(value, hint)
    return True


def _check_fields(entity: Any) -> None:
    """Raise TypeError when a decoded snapshot field has the wrong type."""
    hints = typing.get_type_hints(type(entity))
    for f in dataclasses.fields(entity):
        value = getattr(entity, f.name)
        if not _matches(value, hints[f.name]):
            raise TypeError(f"field {f.name!r} holds {type(value).__name__}")


# ---------------------------------------------------------------------------
# Typed entity cache
# ---------------------------------------------------------------------------


class EntityCache(Generic[T]):
    """Get/set/delete JSON snapshots of one entity type."""

    def __init__(self, client: redis.Redis, ttl: int, loads: Callable[[dict[str, Any]], T]) -> None:
        self._client = client
        self.ttl = ttl
        self._loads = loads

    def get(self, key: str) -> Optional[T]:
        """Return the cached entity, or None on a miss."""
        try:
            raw = self._client.get(key)
        except redis.RedisError as exc:
            raise CacheError(f"GET {key} failed: {exc}") from exc
        if raw is None:
            return None
        try:
            entity = self._loads(json.loads(raw))
            _check_fields(entity)
            return entity
        except (ValueError, TypeError) as exc:
            raise CacheError(f"GET {key} returned an undecodable snapshot: {exc}") from exc

    def set(self, key: str, entity: Any) -> None:
        try:
            payload = json.dumps(entity.to_dict())
        except (ValueError, TypeError) as exc:
            raise CacheError(f"SET {key} could not encode snapshot: {exc}") from exc
        try:
            self._client.set(key, payload, ex=self.ttl)
        except redis.RedisError as exc:
            raise CacheError(f"SET {key} failed: {exc}") from exc

    def delete(self, key: str) -> None:
        """Remove the entry. Deleting an absent key is not an error."""
        try:
            self._client.delete(key)
        except redis.RedisError as exc:
            raise CacheError(f"DEL {key} failed: {exc}") from exc


class CacheStore:
    """One redis client shared by the four entity caches."""

    def __init__(self, client: redis.Redis, user_ttl: int = _DEFAULT_TTL, org_ttl: int = _DEFAULT_TTL) -> None:
        self.client = client
        self.users: EntityCache[User] = EntityCache(client, user_ttl, User.from_dict)
        self.organizations: EntityCache[Organization] = EntityCache(client, org_ttl, Organization.from_dict)
        self.roles: EntityCache[Role] = EntityCache(client, org_ttl, Role.from_dict)
        self.members: EntityCache[OrganizationMember] = EntityCache(client, org_ttl, OrganizationMember.from_dict)

    @classmethod
    def from_url(cls, url: str, user_ttl: int = _DEFAULT_TTL, org_ttl: int = _DEFAULT_TTL) -> "CacheStore":
        client = redis.Redis.from_url(url, decode_responses=True, socket_timeout=2, socket_connect_timeout=2)
        return cls(client, user_ttl=user_ttl, org_ttl=org_ttl)

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as exc:
            raise CacheError(f"PING failed: {exc}") from exc

    def close(self) -> None:
        self.client.close()
