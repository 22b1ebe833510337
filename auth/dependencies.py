"""
auth/dependencies.py -- FastAPI Depends() helpers for the grant engine.

The services live on app.state (wired by the lifespan in api/main.py, or by
the test fixture). These helpers hand them to route handlers so handlers
never reach into app.state themselves.

get_current_user() is the guard for protected resources: it reads the
Authorization: Bearer header and resolves it through TokenValidator,
raising Unauthorized (rendered as 401) on any failure.

Layer rule: no imports from web/. auth/dependencies.py may import from
fastapi because this module is part of the FastAPI dependency injection
system.
"""

from __future__ import annotations

from fastapi import Request

from auth.authentication import AuthenticationService
from auth.codes import AuthorizationCodeIssuer
from auth.errors import Unauthorized
from auth.grants import GrantProcessor
from auth.models import UserAccount
from auth.validator import TokenValidator, bearer_token_from_header


def get_authentication_service(request: Request) -> AuthenticationService:
    return request.app.state.authentication


def get_code_issuer(request: Request) -> AuthorizationCodeIssuer:
    return request.app.state.code_issuer


def get_grant_processor(request: Request) -> GrantProcessor:
    return request.app.state.grant_processor


def get_token_validator(request: Request) -> TokenValidator:
    return request.app.state.token_validator


def get_current_user(request: Request) -> UserAccount:
    """Require a valid bearer token. Raises Unauthorized otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: UserAccount = Depends(get_current_user)): ...
    """
    token = bearer_token_from_header(request.headers.get("Authorization"))
    if token is None:
        raise Unauthorized()
    return get_token_validator(request).resolve(token)
