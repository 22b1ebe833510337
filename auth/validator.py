"""
auth/validator.py -- Bearer token resolution for protected resources.

Read-only: resolve() performs lookups and comparisons only, so it is safe to
call on every protected request in parallel. Expired tokens are rejected
lazily here; nothing is deleted.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from auth.errors import Unauthorized
from auth.models import UserAccount
from auth.store import CredentialStore

logger = logging.getLogger("tollgate.auth")


def bearer_token_from_header(value: str | None) -> str | None:
    """Extract the token from an `Authorization: Bearer <token>` header value.

    The scheme is matched case-insensitively. Returns None for a missing
    header, another scheme, or an empty token.
    """
    if not value:
        return None
    scheme, _, token = value.partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


class TokenValidator:
    def __init__(
        self,
        store: CredentialStore,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._store = store
        self._clock = clock

    def resolve(self, bearer_token: str, now: datetime | None = None) -> UserAccount:
        """Return the UserAccount owning an unexpired access token.

        Raises Unauthorized if the token is unknown, expired (now at or past
        its access expiry), or its owner no longer exists.
        """
        now = now or self._clock()
        token = self._store.get_token_by_access_token(bearer_token)
        if token is None:
            raise Unauthorized()
        if now >= token.access_token_expires_at:
            logger.info("Rejected expired access token id=%s", token.id)
            raise Unauthorized()
        user = self._store.get_user_account_by_id(token.user_account_id)
        if user is None:
            raise Unauthorized()
        return user
