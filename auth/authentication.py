"""
auth/authentication.py -- Resource-owner and client authentication.

Both checks follow the same shape: look the identifier up, then run bcrypt.
When the identifier is unknown, bcrypt still runs against a dummy hash so a
missing record and a wrong secret cost the same time. Do NOT short-circuit
before the verify call.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
from typing import Callable

from auth.errors import AuthFailure, AuthFailureReason, InvalidClient
from auth.models import Client, UserAccount
from auth.store import CredentialStore
from auth.tokens import burn_verification, verify_secret

logger = logging.getLogger("tollgate.auth")


class AuthenticationService:
    """Verifies user passwords and client credentials against the store.

    verifier is injectable so tests can swap bcrypt for something cheaper; it
    defaults to auth.tokens.verify_secret.
    """

    def __init__(
        self,
        store: CredentialStore,
        verifier: Callable[[str, str], bool] = verify_secret,
    ) -> None:
        self._store = store
        self._verify = verifier

    def authenticate(self, username: str, password: str) -> UserAccount:
        """Return the UserAccount for a correct username/password pair.

        Raises AuthFailure(NOT_FOUND) or AuthFailure(BAD_CREDENTIALS). The two
        are rendered identically to the caller; only the log line differs.
        """
        user = self._store.get_user_account_by_username(username)
        if user is None:
            burn_verification(password)
            logger.info("Login rejected: unknown username")
            raise AuthFailure(AuthFailureReason.NOT_FOUND)
        if not self._verify(password, user.password_hash):
            logger.info("Login rejected: bad password for user_account_id=%s", user.id)
            raise AuthFailure(AuthFailureReason.BAD_CREDENTIALS)
        return user

    def get_client(self, client_id: str) -> Client:
        """Return the registered Client for a public identifier, or raise InvalidClient."""
        client = self._store.get_client_by_client_id(client_id)
        if client is None:
            logger.info("Unknown client_id presented")
            raise InvalidClient()
        return client

    def authenticate_client(self, client_id: str, client_secret: str) -> Client:
        """Look up a client and verify its secret. Raises InvalidClient on either failure."""
        client = self._store.get_client_by_client_id(client_id)
        if client is None:
            burn_verification(client_secret)
            logger.info("Client authentication failed: unknown client_id")
            raise InvalidClient()
        if not self._verify(client_secret, client.client_secret_hash):
            logger.info("Client authentication failed: bad secret for client %s", client.client_id)
            raise InvalidClient()
        return client
