"""
auth/store.py -- SQLAlchemy Core persistence layer for credential entities.

Pattern: Repository + Data Mapper. CredentialStore is the repository; the
_row_to_* functions are the mappers. Services never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Generated strings (authorization codes, access tokens, refresh tokens) are
  UNIQUE at the schema level. A collision surfaces as
  sqlalchemy.exc.IntegrityError; the issuing service regenerates once and
  then gives up with an internal error.

Atomicity:
  redeem_authorization_code() deletes the code and inserts the token in one
  transaction. The DELETE is conditional on the row still existing, and the
  token is only written when exactly one row was removed. Two concurrent
  redemptions of the same code therefore produce at most one token -- the
  loser sees rowcount 0 and nothing is persisted for it.

Timestamps are stored as ISO 8601 UTC text with fixed microsecond precision,
so lexical comparison in SQL matches chronological order.

DB path: auth/tollgate.db by default (see core.config.Settings.database_url).

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone

from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine

from auth.models import AuthorizationCode, Client, Token, UserAccount

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_user_accounts = Table(
    "user_accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),  # bcrypt
    Column("country", String(2), nullable=False),
    Column("subscriber_id", String(255), nullable=False),
    Column("created_at", String(32), nullable=False),
)

_clients = Table(
    "clients",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("client_id", String(255), nullable=False, unique=True),
    Column("client_secret_hash", Text, nullable=False),  # bcrypt
    Column("redirect_uri", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
)

_authorization_codes = Table(
    "authorization_codes",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("client_id", Integer, ForeignKey("clients.id"), nullable=False),
    Column("redirect_uri", Text, nullable=False),
    Column("user_account_id", Integer, ForeignKey("user_accounts.id"), nullable=False),
    Column("code", String(255), nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
)

_tokens = Table(
    "tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("client_id", Integer, ForeignKey("clients.id"), nullable=False),
    Column("user_account_id", Integer, ForeignKey("user_accounts.id"), nullable=False),
    Column("access_token", String(255), nullable=False, unique=True),
    Column("refresh_token", String(255), nullable=False, unique=True),
    Column("access_token_expires_at", String(32), nullable=False),
    Column("refresh_token_expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _configure_sqlite(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. foreign_keys is off by default in SQLite.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for UserAccount, Client, AuthorizationCode and Token entities.

    Usage:
        store = CredentialStore("sqlite:///:memory:")
        user_id = store.create_user_account(UserAccount(...))
        code = store.get_authorization_code("abc...")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _configure_sqlite)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # User accounts
    # ------------------------------------------------------------------

    def create_user_account(self, user: UserAccount) -> int:
        """Insert a user account and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username already exists.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _user_accounts.insert().values(
                    username=user.username,
                    password_hash=user.password_hash,
                    country=user.country,
                    subscriber_id=user.subscriber_id,
                    created_at=_to_iso(_utcnow()),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_user_account_by_username(self, username: str) -> UserAccount | None:
        """Exact, case-sensitive lookup. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_user_accounts.select().where(_user_accounts.c.username == username)).fetchone()
        return _row_to_user_account(row) if row is not None else None

    def get_user_account_by_id(self, user_account_id: int) -> UserAccount | None:
        with self.engine.connect() as conn:
            row = conn.execute(_user_accounts.select().where(_user_accounts.c.id == user_account_id)).fetchone()
        return _row_to_user_account(row) if row is not None else None

    # ------------------------------------------------------------------
    # Clients
    # ------------------------------------------------------------------

    def create_client(self, client: Client) -> int:
        """Insert a client and return its surrogate ID.

        Raises sqlalchemy.exc.IntegrityError if client_id is already registered.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _clients.insert().values(
                    name=client.name,
                    client_id=client.client_id,
                    client_secret_hash=client.client_secret_hash,
                    redirect_uri=client.redirect_uri,
                    created_at=_to_iso(_utcnow()),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_client_by_client_id(self, client_id: str) -> Client | None:
        """Look up a client by its public identifier. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_clients.select().where(_clients.c.client_id == client_id)).fetchone()
        return _row_to_client(row) if row is not None else None

    # ------------------------------------------------------------------
    # Authorization codes
    # ------------------------------------------------------------------

    def create_authorization_code(self, code: AuthorizationCode) -> AuthorizationCode:
        """Persist a new code and return a copy carrying its assigned ID.

        Raises sqlalchemy.exc.IntegrityError if the code string collides.
        """
        created_at = _utcnow()
        with self.engine.connect() as conn:
            result = conn.execute(
                _authorization_codes.insert().values(
                    client_id=code.client_id,
                    redirect_uri=code.redirect_uri,
                    user_account_id=code.user_account_id,
                    code=code.code,
                    expires_at=_to_iso(code.expires_at),
                    created_at=_to_iso(created_at),
                )
            )
            conn.commit()
        return replace(code, id=result.inserted_primary_key[0], created_at=created_at)

    def get_authorization_code(self, code: str) -> AuthorizationCode | None:
        """Look up a code by its string. Expiry is not checked here."""
        with self.engine.connect() as conn:
            row = conn.execute(_authorization_codes.select().where(_authorization_codes.c.code == code)).fetchone()
        return _row_to_authorization_code(row) if row is not None else None

    def redeem_authorization_code(self, code: AuthorizationCode, token: Token) -> Token | None:
        """Consume a code and persist the token it was exchanged for, atomically.

        Returns the stored Token, or None if the code was already consumed (or
        purged) by the time the DELETE ran -- in which case nothing is written.
        An IntegrityError on the token insert rolls the DELETE back too, so the
        code stays redeemable for a retry with fresh token strings.
        """
        created_at = _utcnow()
        with self.engine.begin() as conn:
            deleted = conn.execute(
                _authorization_codes.delete().where(
                    (_authorization_codes.c.id == code.id) & (_authorization_codes.c.code == code.code)
                )
            )
            if deleted.rowcount != 1:
                return None
            result = conn.execute(_tokens.insert().values(**_token_values(token), created_at=_to_iso(created_at)))
        return replace(token, id=result.inserted_primary_key[0], created_at=created_at)

    def purge_expired_authorization_codes(self, now: datetime) -> int:
        """Delete codes whose expiry is at or before now. Returns the number removed."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _authorization_codes.delete().where(_authorization_codes.c.expires_at <= _to_iso(now))
            )
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def create_token(self, token: Token) -> Token:
        """Persist a token pair directly. Used by seeding tools and tests.

        Raises sqlalchemy.exc.IntegrityError if either token string collides.
        """
        created_at = _utcnow()
        with self.engine.connect() as conn:
            result = conn.execute(_tokens.insert().values(**_token_values(token), created_at=_to_iso(created_at)))
            conn.commit()
        return replace(token, id=result.inserted_primary_key[0], created_at=created_at)

    def get_token_by_access_token(self, access_token: str) -> Token | None:
        with self.engine.connect() as conn:
            row = conn.execute(_tokens.select().where(_tokens.c.access_token == access_token)).fetchone()
        return _row_to_token(row) if row is not None else None

    def get_token_by_refresh_token(self, refresh_token: str) -> Token | None:
        with self.engine.connect() as conn:
            row = conn.execute(_tokens.select().where(_tokens.c.refresh_token == refresh_token)).fetchone()
        return _row_to_token(row) if row is not None else None

    def reissue_access_token(self, token: Token, access_token: str, expires_at: datetime) -> Token | None:
        """Replace the access token of an existing record in place.

        The refresh token and its expiry are left untouched. The WHERE clause
        pins both the row id and the refresh token string, so a record whose
        refresh token no longer matches is not modified. Returns the updated
        copy, or None if no row matched.

        Raises sqlalchemy.exc.IntegrityError if the new access token collides.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _tokens.update()
                .where((_tokens.c.id == token.id) & (_tokens.c.refresh_token == token.refresh_token))
                .values(access_token=access_token, access_token_expires_at=_to_iso(expires_at))
            )
            conn.commit()
        if result.rowcount != 1:
            return None
        return replace(token, access_token=access_token, access_token_expires_at=expires_at)

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _token_values(token: Token) -> dict:
    return {
        "client_id": token.client_id,
        "user_account_id": token.user_account_id,
        "access_token": token.access_token,
        "refresh_token": token.refresh_token,
        "access_token_expires_at": _to_iso(token.access_token_expires_at),
        "refresh_token_expires_at": _to_iso(token.refresh_token_expires_at),
    }


def _row_to_user_account(row) -> UserAccount:
    return UserAccount(
        id=row.id,
        username=row.username,
        password_hash=row.password_hash,
        country=row.country,
        subscriber_id=row.subscriber_id,
        created_at=_from_iso(row.created_at),
    )


def _row_to_client(row) -> Client:
    return Client(
        id=row.id,
        name=row.name,
        client_id=row.client_id,
        client_secret_hash=row.client_secret_hash,
        redirect_uri=row.redirect_uri,
        created_at=_from_iso(row.created_at),
    )


def _row_to_authorization_code(row) -> AuthorizationCode:
    return AuthorizationCode(
        id=row.id,
        client_id=row.client_id,
        redirect_uri=row.redirect_uri,
        user_account_id=row.user_account_id,
        code=row.code,
        expires_at=_from_iso(row.expires_at),
        created_at=_from_iso(row.created_at),
    )


def _row_to_token(row) -> Token:
    return Token(
        id=row.id,
        client_id=row.client_id,
        user_account_id=row.user_account_id,
        access_token=row.access_token,
        refresh_token=row.refresh_token,
        access_token_expires_at=_from_iso(row.access_token_expires_at),
        refresh_token_expires_at=_from_iso(row.refresh_token_expires_at),
        created_at=_from_iso(row.created_at),
    )
