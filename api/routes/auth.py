"""
api/routes/auth.py -- Authorization endpoints.

Routes:
  POST /auth/login  -- resource-owner login; issues an authorization code
  POST /auth/token  -- authorization_code and refresh_token grants

Both accept application/x-www-form-urlencoded bodies, as OAuth2 clients send
them. Failures are raised as auth.errors.OAuthError subclasses and rendered
by the handler in api/main.py, so handlers only describe the happy path.

Security:
  Both routes are rate-limited per client IP (LOGIN_RATE_LIMIT,
  TOKEN_RATE_LIMIT).
  Cache-Control: no-store on every response that may carry a credential.
  The login route checks the client and redirect_uri before running bcrypt
  on the password, so an unregistered redirect target never gets a code.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit, token_rate_limit
from api.models import LoginResponse, TokenGrantResponse
from auth.authentication import AuthenticationService
from auth.codes import AuthorizationCodeIssuer
from auth.dependencies import get_authentication_service, get_code_issuer, get_grant_processor
from auth.errors import InvalidRedirect, UnsupportedResponseType
from auth.grants import GrantProcessor, TokenRequest

# Auth policy:
# - POST /auth/login:  public -- the resource owner proves identity here
# - POST /auth/token:  client credentials in the body (client_secret_post)
router = APIRouter()


@limiter.limit(login_rate_limit)  # above @router so FastAPI introspects the undecorated handler
@router.post("/auth/login", response_model=LoginResponse)
def login(
    request: Request,
    username: Annotated[str, Form()],
    password: Annotated[str, Form()],
    client_id: Annotated[str, Form()],
    redirect_uri: Annotated[str, Form()],
    response_type: Annotated[str, Form()],
    state: Annotated[Optional[str], Form()] = None,
    country: Annotated[Optional[str], Form()] = None,
    authentication: AuthenticationService = Depends(get_authentication_service),
    issuer: AuthorizationCodeIssuer = Depends(get_code_issuer),
) -> JSONResponse:
    """Authenticate the resource owner and issue an authorization code.

    country is accepted for compatibility with existing login forms and is
    not used. The response tells the login page where to send the browser;
    it does not issue an HTTP redirect itself.
    """
    if response_type != "code":
        raise UnsupportedResponseType()

    client = authentication.get_client(client_id)
    if redirect_uri != client.redirect_uri:
        raise InvalidRedirect()

    user = authentication.authenticate(username, password)
    code = issuer.issue(client, user, redirect_uri)

    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(redirect_uri=code.redirect_uri, state=state, code=code.code).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@limiter.limit(token_rate_limit)
@router.post("/auth/token", response_model=TokenGrantResponse)
def token(
    request: Request,
    grant_type: Annotated[str, Form()],
    client_id: Annotated[Optional[str], Form()] = None,
    client_secret: Annotated[Optional[str], Form()] = None,
    code: Annotated[Optional[str], Form()] = None,
    redirect_uri: Annotated[Optional[str], Form()] = None,
    refresh_token: Annotated[Optional[str], Form()] = None,
    processor: GrantProcessor = Depends(get_grant_processor),
) -> JSONResponse:
    """Exchange an authorization code or refresh token for a bearer token."""
    result = processor.exchange(
        TokenRequest(
            grant_type=grant_type,
            client_id=client_id,
            client_secret=client_secret,
            code=code,
            redirect_uri=redirect_uri,
            refresh_token=refresh_token,
        )
    )
    resp = JSONResponse(status_code=200, content=TokenGrantResponse.from_exchange(result).model_dump())
    resp.headers["Cache-Control"] = "no-store"
    resp.headers["Pragma"] = "no-cache"
    return resp
