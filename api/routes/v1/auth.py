"""
api/routes/v1/auth.py -- Registration, verification, login and password
recovery endpoints.

Routes:
  POST  /api/v1/auth/register                    -- create an unverified account; 201
  PATCH /api/v1/auth/activate                    -- verify email with an activation token
  POST  /api/v1/auth/resend-verification-email   -- always 200
  POST  /api/v1/auth/login                       -- email + password -> session token
  POST  /api/v1/auth/password-reset-request      -- always 200
  POST  /api/v1/auth/reset-password              -- set a new password with a reset token
  PATCH /api/v1/auth/users/{user_id}/deactivate  -- staff or admin only

Security:
  POST /login is rate-limited per client IP (LOGIN_RATE_LIMIT).
  authenticate_user() provides timing equalization -- use it, never inline.
  resend-verification-email and password-reset-request answer 200 whether
  or not the email exists, so they cannot be used to enumerate accounts.
  Cache-Control: no-store on login responses.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_limit
from api.models import (
    ActivateRequest,
    EmailRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RegisterRequest,
    ResetPasswordRequest,
    UserResponse,
)
from auth.action_tokens import ActionTokenIssuer
from auth.dependencies import get_authorizer, require_staff_or_admin
from auth.models import User, UserProfile
from auth.store import UserStore
from auth.tokens import authenticate_user, hash_password
from authz.core import Authorizer
from core.errors import AppError, ErrorKind
from core.notifier import ACTIVATION, PASSWORD_RESET

logger = logging.getLogger("meetup.api.auth")

router = APIRouter()

_INVALID_TOKEN_MESSAGE = "Invalid or expired token."


def _email_for(body: str, purpose: str) -> str:
    """Action token bodies are "<purpose>:<email>"; a token minted for another purpose is invalid."""
    prefix, _, email = body.partition(":")
    if prefix != purpose or not email:
        raise AppError(ErrorKind.INVALID_TOKEN, _INVALID_TOKEN_MESSAGE, reason=f"action token for {prefix!r}, wanted {purpose!r}")
    return email


# ---------------------------------------------------------------------------
# Registration and verification
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=UserResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> UserResponse:
    """Create an inactive client account and send its activation token."""
    store: UserStore = request.app.state.user_store
    action_tokens: ActionTokenIssuer = request.app.state.action_tokens

    user = User(email=body.email, password_hash=hash_password(body.password))
    profile = UserProfile(
        username=body.username,
        profile_pic=body.profile_pic,
        date_of_birth=body.date_of_birth,
    )
    store.create_user(user, profile)
    logger.info("Registered user %d", user.id)

    request.app.state.notifier.send(ACTIVATION, user.email, action_tokens.issue(f"{ACTIVATION}:{user.email}"))
    return UserResponse.from_user(user)


@router.patch("/auth/activate", response_model=UserResponse)
def activate(
    request: Request,
    body: ActivateRequest,
    authorizer: Authorizer = Depends(get_authorizer),
) -> UserResponse:
    """Verify the email address named inside an activation token.

    Expired tokens answer 422 and tampered ones 400 (AppError mapping).
    """
    store: UserStore = request.app.state.user_store
    settings = request.app.state.settings
    payload = request.app.state.action_tokens.verify(body.token, settings.activation_token_max_age_seconds)

    user = store.get_by_email(_email_for(payload.body, ACTIVATION))
    if user is None:
        raise AppError(ErrorKind.INVALID_TOKEN, _INVALID_TOKEN_MESSAGE, reason="activation token for unknown email")
    if user.is_activated:
        raise AppError(ErrorKind.VALIDATION, "Account is already activated.", reason=f"user {user.id} already active")
    store.activate(user)
    authorizer.invalidate_user(user.id)
    logger.info("Activated user %d", user.id)
    return UserResponse.from_user(user)


@router.post("/auth/resend-verification-email", response_model=MessageResponse)
def resend_verification_email(request: Request, body: EmailRequest) -> MessageResponse:
    store: UserStore = request.app.state.user_store
    user = store.get_by_email(body.email)
    if user is not None and not user.is_activated:
        token = request.app.state.action_tokens.issue(f"{ACTIVATION}:{user.email}")
        request.app.state.notifier.send(ACTIVATION, user.email, token)
    return MessageResponse(message="If the account exists and is unverified, a verification email has been sent.")


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(login_limit)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Exchange email and password for a session token.

    Uses authenticate_user() which includes timing equalization. Wrong email
    and wrong password produce the same 401 body. A correct password on an
    unverified account answers 422 so the client can offer to resend the
    verification email.
    """
    store: UserStore = request.app.state.user_store
    user = authenticate_user(store, body.email, body.password)
    if not user.is_activated:
        raise HTTPException(
            status_code=422,
            detail={"code": "email_not_verified", "message": "Please verify your email address before logging in."},
        )

    issuer = request.app.state.session_tokens
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(token=issuer.issue(user.id), expires_in=issuer.expires_in).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Password recovery
# ---------------------------------------------------------------------------


@router.post("/auth/password-reset-request", response_model=MessageResponse)
def password_reset_request(request: Request, body: EmailRequest) -> MessageResponse:
    """Issue a reset token and remember it on the account.

    Only the most recently issued token is accepted by reset-password.
    """
    store: UserStore = request.app.state.user_store
    user = store.get_by_email(body.email)
    if user is not None and user.is_activated:
        token = request.app.state.action_tokens.issue(f"{PASSWORD_RESET}:{user.email}")
        store.set_password_reset_token(user, token)
        request.app.state.notifier.send(PASSWORD_RESET, user.email, token)
    return MessageResponse(message="If the account exists, a password reset email has been sent.")


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(
    request: Request,
    body: ResetPasswordRequest,
    authorizer: Authorizer = Depends(get_authorizer),
) -> MessageResponse:
    store: UserStore = request.app.state.user_store
    settings = request.app.state.settings
    payload = request.app.state.action_tokens.verify(body.token, settings.password_reset_token_max_age_seconds)

    user = store.get_by_email(_email_for(payload.body, PASSWORD_RESET))
    if user is None or not user.password_reset_token or user.password_reset_token != body.token:
        raise AppError(ErrorKind.INVALID_TOKEN, _INVALID_TOKEN_MESSAGE, reason="reset token not on record")
    store.reset_password(user, hash_password(body.password))
    authorizer.invalidate_user(user.id)
    logger.info("Password reset for user %d", user.id)
    return MessageResponse(message="Password has been reset.")


# ---------------------------------------------------------------------------
# Account administration (staff / admin)
# ---------------------------------------------------------------------------


@router.patch("/auth/users/{user_id}/deactivate", response_model=UserResponse)
def deactivate_user(
    user_id: int,
    request: Request,
    actor: User = Depends(require_staff_or_admin),
    authorizer: Authorizer = Depends(get_authorizer),
) -> UserResponse:
    """Soft-deactivate an account. Its session tokens stop working immediately."""
    store: UserStore = request.app.state.user_store
    user = store.get_by_id(user_id, include_deleted=True)
    if user is None:
        raise AppError(ErrorKind.NOT_FOUND, "User not found.", reason=f"user {user_id} not found")
    if user.is_deactivated:
        raise AppError(ErrorKind.VALIDATION, "User is already deactivated.", reason=f"user {user_id} already deactivated")
    store.deactivate(user)
    authorizer.invalidate_user(user.id)
    logger.info("User %d deactivated by %d", user.id, actor.id)
    return UserResponse.from_user(user)
