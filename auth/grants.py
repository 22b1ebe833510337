"""
auth/grants.py -- The token endpoint state machine.

GrantProcessor.exchange() is the single entry point. It:
  1. parses grant_type into the closed GrantType enum (anything else is
     UnsupportedGrantType),
  2. authenticates the client -- always, and before any code or refresh
     token is looked at, so credentials cannot be probed without a valid
     client secret,
  3. runs the variant:

  authorization_code
    lookup code -> same client? -> same redirect_uri? -> now < expires_at?
    -> consume code + insert token in one transaction

  refresh_token
    lookup token by refresh token -> same client? -> now < refresh expiry?
    -> rewrite access token and access expiry in place

Every check fails closed with InvalidGrant and leaves the store untouched.
The reason is logged, never returned.

`now` is sampled once per exchange and used for every comparison and for
the expiries written, so the checks inside one request cannot disagree.

Refresh tokens are NOT rotated: the refresh token string and its expiry stay
fixed for the life of the record, and only the access token is reissued.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, NoReturn

from sqlalchemy.exc import IntegrityError

from auth.authentication import AuthenticationService
from auth.errors import (
    CredentialCollision,
    InvalidClient,
    InvalidGrant,
    InvalidGrantReason,
    InvalidRequest,
    UnsupportedGrantType,
)
from auth.models import AuthorizationCode, Client, Token
from auth.store import CredentialStore
from auth.tokens import generate_random_string, now_plus_seconds
from core.config import Settings

logger = logging.getLogger("tollgate.auth.grants")

TOKEN_TYPE = "Bearer"


class GrantType(str, Enum):
    AUTHORIZATION_CODE = "authorization_code"
    REFRESH_TOKEN = "refresh_token"

    @classmethod
    def parse(cls, value: str | None) -> "GrantType":
        """Map a raw grant_type field onto the enum, or raise UnsupportedGrantType."""
        try:
            return cls(value)
        except ValueError:
            raise UnsupportedGrantType() from None


@dataclass
class TokenRequest:
    """Form fields of a token request. Which ones are required depends on grant_type."""

    grant_type: str
    client_id: str | None = None
    client_secret: str | None = None
    code: str | None = None
    redirect_uri: str | None = None
    refresh_token: str | None = None


@dataclass(frozen=True)
class TokenResponse:
    """A successful exchange.

    Lifetimes are derived from the stored absolute expiries relative to the
    request time each time they are read, so they always reflect the real
    time-to-live rather than the configured duration.
    """

    token: Token
    now: datetime
    token_type: str = TOKEN_TYPE

    @property
    def expires_in(self) -> int:
        return _remaining_seconds(self.token.access_token_expires_at, self.now)

    @property
    def refresh_token_expires_in(self) -> int:
        return _remaining_seconds(self.token.refresh_token_expires_at, self.now)

    def as_dict(self) -> dict:
        return {
            "token_type": self.token_type,
            "access_token": self.token.access_token,
            "expires_in": self.expires_in,
            "refresh_token": self.token.refresh_token,
            "refresh_token_expires_in": self.refresh_token_expires_in,
        }


def _remaining_seconds(expires_at: datetime, now: datetime) -> int:
    return max(0, math.ceil((expires_at - now).total_seconds()))


class GrantProcessor:
    def __init__(
        self,
        store: CredentialStore,
        authentication: AuthenticationService,
        settings: Settings,
        generator: Callable[[int], str] = generate_random_string,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._store = store
        self._authentication = authentication
        self._settings = settings
        self._generate = generator
        self._clock = clock

    def exchange(self, request: TokenRequest) -> TokenResponse:
        """Authenticate the client, validate the grant and issue or refresh a token.

        Raises UnsupportedGrantType, InvalidClient, InvalidRequest or
        InvalidGrant for caller errors, CredentialCollision if fresh token
        strings collide twice.
        """
        grant_type = GrantType.parse(request.grant_type)
        now = self._clock()

        if not request.client_id or not request.client_secret:
            raise InvalidClient()
        client = self._authentication.authenticate_client(request.client_id, request.client_secret)

        if grant_type is GrantType.AUTHORIZATION_CODE:
            token = self._redeem_authorization_code(client, request, now)
        else:
            token = self._refresh_access_token(client, request, now)
        return TokenResponse(token=token, now=now)

    # ------------------------------------------------------------------
    # authorization_code
    # ------------------------------------------------------------------

    def _redeem_authorization_code(self, client: Client, request: TokenRequest, now: datetime) -> Token:
        if not request.code or not request.redirect_uri:
            raise InvalidRequest("code and redirect_uri are required for the authorization_code grant.")

        code = self._store.get_authorization_code(request.code)
        if code is None:
            self._reject(client, InvalidGrantReason.NOT_FOUND)
        if code.client_id != client.id:
            self._reject(client, InvalidGrantReason.CLIENT_MISMATCH)
        if code.redirect_uri != request.redirect_uri:
            self._reject(client, InvalidGrantReason.REDIRECT_MISMATCH)
        if now >= code.expires_at:
            self._reject(client, InvalidGrantReason.EXPIRED)

        try:
            token = self._store.redeem_authorization_code(code, self._new_token(code, now))
        except IntegrityError:
            logger.warning("Token string collision during code redemption, regenerating")
            try:
                token = self._store.redeem_authorization_code(code, self._new_token(code, now))
            except IntegrityError as exc:
                raise CredentialCollision("token strings collided twice") from exc

        if token is None:
            # Lost the race against a concurrent redemption of the same code.
            self._reject(client, InvalidGrantReason.NOT_FOUND)

        logger.info(
            "Authorization code redeemed: client=%s user_account_id=%s token_id=%s",
            client.client_id,
            token.user_account_id,
            token.id,
        )
        return token

    def _new_token(self, code: AuthorizationCode, now: datetime) -> Token:
        return Token(
            client_id=code.client_id,
            user_account_id=code.user_account_id,
            access_token=self._generate(self._settings.token_length),
            refresh_token=self._generate(self._settings.token_length),
            access_token_expires_at=now_plus_seconds(now, self._settings.access_token_expiration),
            refresh_token_expires_at=now_plus_seconds(now, self._settings.refresh_token_expiration),
        )

    # ------------------------------------------------------------------
    # refresh_token
    # ------------------------------------------------------------------

    def _refresh_access_token(self, client: Client, request: TokenRequest, now: datetime) -> Token:
        if not request.refresh_token:
            raise InvalidRequest("refresh_token is required for the refresh_token grant.")

        token = self._store.get_token_by_refresh_token(request.refresh_token)
        if token is None:
            self._reject(client, InvalidGrantReason.NOT_FOUND)
        if token.client_id != client.id:
            self._reject(client, InvalidGrantReason.CLIENT_MISMATCH)
        if now >= token.refresh_token_expires_at:
            self._reject(client, InvalidGrantReason.EXPIRED)

        expires_at = now_plus_seconds(now, self._settings.access_token_expiration)
        try:
            updated = self._store.reissue_access_token(
                token, self._generate(self._settings.token_length), expires_at
            )
        except IntegrityError:
            logger.warning("Access token collision during refresh, regenerating")
            try:
                updated = self._store.reissue_access_token(
                    token, self._generate(self._settings.token_length), expires_at
                )
            except IntegrityError as exc:
                raise CredentialCollision("access token collided twice") from exc

        if updated is None:
            self._reject(client, InvalidGrantReason.NOT_FOUND)

        logger.info("Access token refreshed: client=%s token_id=%s", client.client_id, updated.id)
        return updated

    def _reject(self, client: Client, reason: InvalidGrantReason) -> NoReturn:
        logger.info("Grant rejected for client %s: %s", client.client_id, reason.value)
        raise InvalidGrant(reason)
