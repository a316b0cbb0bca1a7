"""
api/routes/v1/profiles.py -- The caller's own account and profile.

Routes:
  GET    /api/v1/profiles/me   -- current user with profile
  PUT    /api/v1/profiles/me   -- change email and/or profile fields
  DELETE /api/v1/profiles/me   -- soft delete the account (same marker as deactivation)
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from api.models import MessageResponse, ProfileUpdate, UserResponse
from auth.dependencies import get_authorizer, get_current_user
from auth.models import User
from auth.store import UserStore
from authz.core import Authorizer
from core.errors import unauthorized

logger = logging.getLogger("meetup.api.profiles")

router = APIRouter()


@router.get("/profiles/me", response_model=UserResponse)
def get_me(user: User = Depends(get_current_user)) -> UserResponse:
    return UserResponse.from_user(user)


@router.put("/profiles/me", response_model=UserResponse)
def update_me(
    request: Request,
    body: ProfileUpdate,
    user: User = Depends(get_current_user),
    authorizer: Authorizer = Depends(get_authorizer),
) -> UserResponse:
    """Update email and profile fields in one transaction.

    The user may have been served from the cache, so the store copy is
    re-read first; its version is what the update is checked against.
    """
    store: UserStore = request.app.state.user_store
    current = store.get_by_id(user.id)
    if current is None:
        raise unauthorized(f"user {user.id} disappeared during the request")

    changes = body.model_dump(exclude_none=True, exclude={"email"})
    store.update_details(current, body.email or current.email, changes)
    authorizer.invalidate_user(current.id)
    return UserResponse.from_user(current)


@router.delete("/profiles/me", response_model=MessageResponse)
def delete_me(
    request: Request,
    user: User = Depends(get_current_user),
    authorizer: Authorizer = Depends(get_authorizer),
) -> MessageResponse:
    store: UserStore = request.app.state.user_store
    current = store.get_by_id(user.id)
    if current is not None:
        store.soft_delete(current)
    authorizer.invalidate_user(user.id)
    logger.info("User %d deleted their account", user.id)
    return MessageResponse(message="Account deleted.")
