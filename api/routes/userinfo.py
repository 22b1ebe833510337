"""
api/routes/userinfo.py -- Protected resource: the bearer token owner's profile.

Routes:
  GET /userinfo  -- requires Authorization: Bearer <access token>
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from api.models import UserInfoResponse
from auth.dependencies import get_current_user
from auth.models import UserAccount

router = APIRouter()


@router.get("/userinfo", response_model=UserInfoResponse)
def userinfo(user: UserAccount = Depends(get_current_user)) -> UserInfoResponse:
    """Return the subscriber id and country of the token's owner."""
    return UserInfoResponse.from_user(user)
