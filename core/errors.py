"""
core/errors.py -- Tagged error type shared by every layer.

Callers branch on ``err.kind`` instead of comparing against package-level
sentinel instances. The API layer owns the single mapping from kind to HTTP
status (api/main.py); stores, token issuers and the authorizer never import
FastAPI.

Layer rule: core/ is the kernel -- no imports from other project packages.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "validation_error"
    NOT_FOUND = "not_found"
    DUPLICATE = "duplicate"
    CONFLICT = "conflict"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    EXPIRED = "expired_token"
    INVALID_TOKEN = "invalid_token"
    INTERNAL = "internal_error"


_DEFAULT_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.VALIDATION: "Request validation failed.",
    ErrorKind.NOT_FOUND: "Item not found.",
    ErrorKind.DUPLICATE: "Item already exists.",
    ErrorKind.CONFLICT: "Item was changed by another request. Try again later.",
    ErrorKind.UNAUTHORIZED: "Authentication required.",
    ErrorKind.FORBIDDEN: "You do not have permission to perform this action.",
    ErrorKind.EXPIRED: "Token has expired.",
    ErrorKind.INVALID_TOKEN: "Token is invalid.",
    ErrorKind.INTERNAL: "An unexpected error occurred.",
}


class AppError(Exception):
    """Base error carrying a machine-readable kind.

    message is safe to show to clients. reason is for logs only and may
    contain internal detail. fields holds per-field messages for
    validation-style failures (e.g. {"email": "already taken"}).
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str | None = None,
        *,
        reason: str | None = None,
        fields: dict[str, str] | None = None,
        code: str | None = None,
    ) -> None:
        self.kind = kind
        self.message = message or _DEFAULT_MESSAGES[kind]
        self.reason = reason or self.message
        self.fields = fields or {}
        self.code = code or kind.value
        super().__init__(self.reason)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.name}, reason={self.reason!r})"


class StoreError(AppError):
    """Persistence failure: missing row, version mismatch, unique violation."""


class CacheError(AppError):
    """Cache transport or deserialization failure. Never surfaced to clients."""

    def __init__(self, reason: str) -> None:
        super().__init__(ErrorKind.INTERNAL, reason=reason)


class TokenError(AppError):
    """Session or action token rejected."""


class ExpiredTokenError(TokenError):
    def __init__(self, reason: str = "token has expired") -> None:
        super().__init__(ErrorKind.EXPIRED, reason=reason)


def unauthorized(reason: str) -> AppError:
    return AppError(ErrorKind.UNAUTHORIZED, reason=reason)


def forbidden(reason: str) -> AppError:
    return AppError(ErrorKind.FORBIDDEN, reason=reason)
