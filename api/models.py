"""
API request and response models for Tollgate HTTP endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Every JSON body carries a top-level `success` flag. Failures share the
ErrorResponse envelope so clients can parse errors uniformly.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict

from auth.grants import TokenResponse
from auth.models import UserAccount

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: ErrorDetail


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class LoginResponse(BaseModel):
    """Body of a successful POST /auth/login.

    The caller (the login page) sends the browser to redirect_uri with code
    and state appended as query parameters.
    """

    model_config = ConfigDict(frozen=True)

    success: bool = True
    redirect_uri: str
    state: Optional[str] = None
    code: str


class TokenGrantResponse(BaseModel):
    """Body of a successful POST /auth/token.

    expires_in and refresh_token_expires_in are remaining lifetimes in
    seconds, not absolute timestamps.
    """

    model_config = ConfigDict(frozen=True)

    success: bool = True
    token_type: str
    access_token: str
    expires_in: int
    refresh_token: str
    refresh_token_expires_in: int

    @classmethod
    def from_exchange(cls, result: TokenResponse) -> "TokenGrantResponse":
        return cls(**result.as_dict())


class UserInfoResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    subscriber_id: str
    country_code: str

    @classmethod
    def from_user(cls, user: UserAccount) -> "UserInfoResponse":
        return cls(subscriber_id=user.subscriber_id, country_code=user.country)


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str]
