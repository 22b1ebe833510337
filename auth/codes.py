"""
auth/codes.py -- Authorization code issuance.

A code binds (client, user, redirect_uri) for a short window. The redirect
URI is checked byte-for-byte against the client's registered value -- no
trailing-slash folding, no case folding, no percent-decoding. Any
normalization here would reopen open-redirect bypasses.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy.exc import IntegrityError

from auth.errors import CredentialCollision, InvalidRedirect
from auth.models import AuthorizationCode, Client, UserAccount
from auth.store import CredentialStore
from auth.tokens import generate_random_string, now_plus_seconds
from core.config import Settings

logger = logging.getLogger("tollgate.auth.codes")


class AuthorizationCodeIssuer:
    def __init__(
        self,
        store: CredentialStore,
        settings: Settings,
        generator: Callable[[int], str] = generate_random_string,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._store = store
        self._settings = settings
        self._generate = generator
        self._clock = clock

    def issue(
        self,
        client: Client,
        user: UserAccount,
        redirect_uri: str,
        now: datetime | None = None,
    ) -> AuthorizationCode:
        """Create and persist a fresh single-use code.

        Raises InvalidRedirect if redirect_uri differs from the client's
        registered URI. A code string collision is retried once with a new
        string; a second collision raises CredentialCollision.
        """
        if redirect_uri != client.redirect_uri:
            logger.info("Code issuance refused: redirect_uri mismatch for client %s", client.client_id)
            raise InvalidRedirect()

        now = now or self._clock()
        expires_at = now_plus_seconds(now, self._settings.authorization_code_expiration)

        try:
            issued = self._store.create_authorization_code(self._new_code(client, user, redirect_uri, expires_at))
        except IntegrityError:
            logger.warning("Authorization code collision, regenerating")
            try:
                issued = self._store.create_authorization_code(self._new_code(client, user, redirect_uri, expires_at))
            except IntegrityError as exc:
                raise CredentialCollision("authorization code collided twice") from exc

        logger.info(
            "Issued authorization code id=%s client=%s user_account_id=%s",
            issued.id,
            client.client_id,
            user.id,
        )
        return issued

    def _new_code(
        self, client: Client, user: UserAccount, redirect_uri: str, expires_at: datetime
    ) -> AuthorizationCode:
        return AuthorizationCode(
            client_id=client.id,
            redirect_uri=redirect_uri,
            user_account_id=user.id,
            code=self._generate(self._settings.token_length),
            expires_at=expires_at,
        )
