"""
auth/tokens.py -- Session tokens (JWT) and password hashing.

Security design decisions:
  JWT: python-jose with HS256 only. Tokens carry the numeric user id as the
       subject plus iat/nbf/exp/iss/aud. Verification pins the algorithm
       list, so an "alg": "none" or RS256 header is rejected before the
       signature is even considered. Any failure raises
       TokenError(UNAUTHORIZED); the route layer turns that into a 401.

  Passwords: bcrypt directly (no passlib). The _DUMMY_HASH constant enables
       timing equalization in authenticate_user() so response time does not
       reveal whether an email is registered.

  Keys: the issuer receives its secret as a constructor argument. Settings
       validation (core/config.py) guarantees at least 32 characters.

Layer rule: no imports from api/, authz/, orgs/, or cache/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Optional

import bcrypt
from jose import JWTError, jwt

from core.errors import AppError, ErrorKind, TokenError

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("meetup.auth")

_ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only looks at the first 72 bytes. The API layer caps password
    length (Pydantic field) well below anything that matters in practice.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash.
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("meetup_timing_dummy")


def authenticate_user(store: UserStore, email: str, password: str) -> User:
    """Check email/password credentials with timing equalization.

    Always runs bcrypt whether or not the account exists:
    - Unknown or deactivated email: bcrypt runs against _DUMMY_HASH
    - Wrong password: bcrypt runs against the real hash

    Returns the User on success and raises AppError(UNAUTHORIZED) for bad
    credentials. Whether the email was verified is left to the caller, which
    answers that case with its own status.
    """
    user = store.get_by_email(email)
    if user is None or not user.password_hash:
        verify_password(password, _DUMMY_HASH)
        raise AppError(ErrorKind.UNAUTHORIZED, "Invalid email or password.", reason=f"unknown email {email!r}")
    if not verify_password(password, user.password_hash):
        raise AppError(ErrorKind.UNAUTHORIZED, "Invalid email or password.", reason=f"bad password for user {user.id}")
    return user


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------


class SessionTokenIssuer:
    """Issue and verify signed session tokens.

    Usage:
        issuer = SessionTokenIssuer(secret, issuer="meetup", audience="meetup", exp_hours=3)
        token = issuer.issue(user.id)
        user_id = issuer.verify(token)      # raises TokenError on any failure
    """

    def __init__(self, secret: str, issuer: str, audience: str, exp_hours: int = 3) -> None:
        self._secret = secret
        self.issuer = issuer
        self.audience = audience
        self.exp_hours = exp_hours

    @property
    def expires_in(self) -> int:
        return self.exp_hours * 3600

    def issue(self, user_id: int, now: Optional[datetime] = None) -> str:
        now = now or datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "iat": now,
            "nbf": now,
            "exp": now + timedelta(hours=self.exp_hours),
            "iss": self.issuer,
            "aud": self.audience,
        }
        return jwt.encode(payload, self._secret, algorithm=_ALGORITHM)

    def verify(self, token: str, now: Optional[datetime] = None) -> int:
        """Return the user id carried by a valid token.

        `now` lets tests pin the clock. python-jose checks exp and nbf against
        the wall clock whenever it is asked to require them, so when `now` is
        given both claims are required and compared here instead.
        """
        options = {
            "require_exp": True,
            "require_iat": True,
            "require_nbf": True,
            "require_sub": True,
            "require_iss": True,
            "require_aud": True,
        }
        if now is not None:
            options.update(require_exp=False, require_nbf=False, verify_exp=False, verify_nbf=False)
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[_ALGORITHM],
                audience=self.audience,
                issuer=self.issuer,
                options=options,
            )
        except JWTError as exc:
            logger.debug("Session token rejected: %s", exc)
            raise TokenError(ErrorKind.UNAUTHORIZED, "Invalid or missing authentication token.", reason=str(exc)) from exc

        if now is not None:
            for claim in ("exp", "nbf"):
                if claim not in payload:
                    raise TokenError(
                        ErrorKind.UNAUTHORIZED,
                        "Invalid or missing authentication token.",
                        reason=f"missing required claim {claim!r}",
                    )
            try:
                exp, nbf = int(payload["exp"]), int(payload["nbf"])
            except (TypeError, ValueError) as exc:
                raise TokenError(
                    ErrorKind.UNAUTHORIZED, "Invalid or missing authentication token.", reason="non-integer exp or nbf"
                ) from exc
            ts = int(now.timestamp())
            if ts >= exp:
                raise TokenError(ErrorKind.UNAUTHORIZED, "Invalid or missing authentication token.", reason="token expired")
            if ts < nbf:
                raise TokenError(ErrorKind.UNAUTHORIZED, "Invalid or missing authentication token.", reason="token not yet valid")

        try:
            return int(payload["sub"])
        except (TypeError, ValueError) as exc:
            raise TokenError(
                ErrorKind.UNAUTHORIZED,
                "Invalid or missing authentication token.",
                reason=f"non-integer subject {payload['sub']!r}",
            ) from exc
