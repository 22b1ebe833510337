"""
auth/models.py -- Domain dataclasses for credential-lifecycle entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own the
domain shape; the store persists them and the services do the work.

Every instance handed out by CredentialStore is freshly mapped from a row, so
callers hold value copies. Changing a field on a returned record never
touches persisted state -- mutation goes through store operations only.

Timestamps are timezone-aware UTC datetimes. The store converts them to and
from ISO 8601 text at rest.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class UserAccount:
    """A resource owner.

    username is the login identifier and is unique. subscriber_id is an opaque
    external identifier handed to resource servers via /userinfo. Accounts are
    read-only to the grant engine; they are created by the admin CLI.
    """

    username: str
    password_hash: str
    country: str  # ISO 3166-1 alpha-2, e.g. "AR"
    subscriber_id: str
    id: int | None = None
    created_at: datetime | None = None


@dataclass
class Client:
    """A registered application.

    client_id is the public identifier sent by the application; id is the
    surrogate key that codes and tokens reference. redirect_uri is compared
    byte-for-byte, with no normalization.
    """

    name: str
    client_id: str
    client_secret_hash: str
    redirect_uri: str
    id: int | None = None
    created_at: datetime | None = None


@dataclass
class AuthorizationCode:
    """A single-use proof that a user authorized a client for one redirect target.

    client_id and user_account_id are surrogate keys. redirect_uri is copied at
    issuance so later edits to the Client cannot invalidate codes in flight.
    """

    client_id: int
    redirect_uri: str
    user_account_id: int
    code: str
    expires_at: datetime
    id: int | None = None
    created_at: datetime | None = None


@dataclass
class Token:
    """An access/refresh token pair bound to a client and a user.

    The refresh grant rewrites access_token and access_token_expires_at in
    place; refresh_token and refresh_token_expires_at never change.
    """

    client_id: int
    user_account_id: int
    access_token: str
    refresh_token: str
    access_token_expires_at: datetime
    refresh_token_expires_at: datetime
    id: int | None = None
    created_at: datetime | None = None
