"""
auth/action_tokens.py -- Single-purpose tokens for email verification and
password reset.

Fernet (AES-128-CBC + HMAC-SHA256) authenticates and encrypts the body and
embeds the creation timestamp, so the recipient can prove the token came
from us and bound its age without storing anything server-side. The Fernet
key is derived from SECRET_KEY by hashing, so it never equals the JWT
signing key even when JWT_SECRET_KEY falls back to SECRET_KEY. A Fernet
token and a JWT also differ in format, so neither verifier accepts the
other's tokens.

Layer rule: no imports from api/, authz/, orgs/, or cache/.
"""

from __future__ import annotations

import base64
import hashlib
import time
from dataclasses import dataclass
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from core.errors import ErrorKind, ExpiredTokenError, TokenError


@dataclass(frozen=True)
class ActionTokenPayload:
    body: str
    created_at: int  # unix seconds


def _derive_key(secret: str) -> bytes:
    return base64.urlsafe_b64encode(hashlib.sha256(secret.encode("utf-8")).digest())


class ActionTokenIssuer:
    """Issue and verify time-bounded action tokens.

    Usage:
        issuer = ActionTokenIssuer(settings.secret_key)
        token = issuer.issue(user.email)
        payload = issuer.verify(token, max_age_seconds=1800)
    """

    def __init__(self, secret: str) -> None:
        self._fernet = Fernet(_derive_key(secret))

    def issue(self, body: str, now: Optional[int] = None) -> str:
        created = int(time.time()) if now is None else int(now)
        return self._fernet.encrypt_at_time(body.encode("utf-8"), created).decode("ascii")

    def verify(self, token: str, max_age_seconds: int, now: Optional[int] = None) -> ActionTokenPayload:
        """Return the payload of an authentic token that is at most max_age old.

        Raises TokenError(INVALID_TOKEN) for anything tampered or malformed and
        ExpiredTokenError once now - created_at exceeds max_age_seconds.
        """
        try:
            raw = token.encode("ascii")
            body = self._fernet.decrypt(raw)
            created = self._fernet.extract_timestamp(raw)
        except (InvalidToken, UnicodeError) as exc:
            raise TokenError(ErrorKind.INVALID_TOKEN, reason="action token failed authentication") from exc

        current = int(time.time()) if now is None else int(now)
        if current - created > max_age_seconds:
            raise ExpiredTokenError(reason=f"action token is {current - created}s old (max {max_age_seconds}s)")
        return ActionTokenPayload(body=body.decode("utf-8"), created_at=created)
