"""
tests/test_store.py -- Tests for auth/store.py (CredentialStore).

Uses an in-memory SQLite DB; no file I/O.

Coverage:
  - User account and client create / lookup, UNIQUE constraints
  - Returned records are value copies (mutating one does not touch the DB)
  - Authorization code create / lookup with tz-aware expiry round-trip
  - redeem_authorization_code: deletes code + inserts token once; second
    redemption returns None; token collision rolls the DELETE back
  - purge_expired_authorization_codes boundary (expires_at <= now)
  - Token lookup by access / refresh token and in-place access reissue
  - created_at comes back as a tz-aware datetime on every record
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import AuthorizationCode, Client, Token, UserAccount

USERNAME = "user1@example.com"
BASE = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def _code(client, user, value="code-1", expires_at=None) -> AuthorizationCode:
    return AuthorizationCode(
        client_id=client.id,
        redirect_uri=client.redirect_uri,
        user_account_id=user.id,
        code=value,
        expires_at=expires_at or BASE + timedelta(seconds=600),
    )


def _token(client, user, access="access-1", refresh="refresh-1") -> Token:
    now = BASE
    return Token(
        client_id=client.id,
        user_account_id=user.id,
        access_token=access,
        refresh_token=refresh,
        access_token_expires_at=now + timedelta(seconds=3600),
        refresh_token_expires_at=now + timedelta(seconds=7200),
    )


class TestUserAccounts:
    def test_lookup_by_username(self, store, user):
        found = store.get_user_account_by_username(USERNAME)
        assert found.id == user.id
        assert found.country == "AR"
        assert found.subscriber_id == "subscriber1"

    def test_lookup_is_case_sensitive(self, store, user):
        assert store.get_user_account_by_username(USERNAME.upper()) is None

    def test_lookup_missing(self, store):
        assert store.get_user_account_by_username("nobody@example.com") is None
        assert store.get_user_account_by_id(999) is None

    def test_duplicate_username_rejected(self, store, user):
        with pytest.raises(IntegrityError):
            store.create_user_account(
                UserAccount(username=USERNAME, password_hash=user.password_hash, country="US", subscriber_id="x")
            )

    def test_created_at_is_aware_datetime(self, store, user):
        assert isinstance(user.created_at, datetime)
        assert user.created_at.tzinfo is not None

    def test_returned_record_is_a_copy(self, store, user):
        found = store.get_user_account_by_username(USERNAME)
        found.subscriber_id = "tampered"
        assert store.get_user_account_by_username(USERNAME).subscriber_id == "subscriber1"


class TestClients:
    def test_lookup_by_client_id(self, store, client):
        found = store.get_client_by_client_id("client1")
        assert found.id == client.id
        assert found.redirect_uri == "https://example.org/cb"

    def test_lookup_missing(self, store):
        assert store.get_client_by_client_id("nope") is None

    def test_duplicate_client_id_rejected(self, store, client):
        with pytest.raises(IntegrityError):
            store.create_client(
                Client(
                    name="other",
                    client_id="client1",
                    client_secret_hash=client.client_secret_hash,
                    redirect_uri="https://x",
                )
            )


class TestAuthorizationCodes:
    def test_create_assigns_id(self, store, client, user):
        issued = store.create_authorization_code(_code(client, user))
        assert issued.id is not None
        assert issued.created_at is not None

    def test_created_at_is_aware_datetime(self, store, client, user):
        issued = store.create_authorization_code(_code(client, user))
        found = store.get_authorization_code("code-1")
        assert isinstance(found.created_at, datetime)
        assert found.created_at.tzinfo is not None
        assert found.created_at == issued.created_at

    def test_expiry_round_trips_as_aware_datetime(self, store, client, user):
        original = _code(client, user)
        store.create_authorization_code(original)
        found = store.get_authorization_code("code-1")
        assert found.expires_at == original.expires_at
        assert found.expires_at.tzinfo is not None

    def test_duplicate_code_rejected(self, store, client, user):
        store.create_authorization_code(_code(client, user))
        with pytest.raises(IntegrityError):
            store.create_authorization_code(_code(client, user))

    def test_unknown_code(self, store):
        assert store.get_authorization_code("missing") is None


class TestRedeem:
    def test_redeem_consumes_code_and_stores_token(self, store, client, user):
        issued = store.create_authorization_code(_code(client, user))
        token = store.redeem_authorization_code(issued, _token(client, user))
        assert token is not None
        assert token.id is not None
        assert store.get_authorization_code("code-1") is None
        assert store.get_token_by_access_token("access-1").id == token.id

    def test_second_redeem_returns_none(self, store, client, user):
        issued = store.create_authorization_code(_code(client, user))
        store.redeem_authorization_code(issued, _token(client, user))
        assert store.redeem_authorization_code(issued, _token(client, user, "access-2", "refresh-2")) is None
        assert store.get_token_by_access_token("access-2") is None

    def test_token_collision_rolls_back_delete(self, store, client, user):
        store.create_token(_token(client, user))
        issued = store.create_authorization_code(_code(client, user))
        with pytest.raises(IntegrityError):
            store.redeem_authorization_code(issued, _token(client, user, "access-1", "refresh-new"))
        assert store.get_authorization_code("code-1") is not None


class TestPurge:
    def test_purges_at_or_before_now(self, store, client, user):
        now = BASE
        store.create_authorization_code(_code(client, user, "past", now - timedelta(seconds=1)))
        store.create_authorization_code(_code(client, user, "boundary", now))
        store.create_authorization_code(_code(client, user, "future", now + timedelta(seconds=1)))

        assert store.purge_expired_authorization_codes(now) == 2
        assert store.get_authorization_code("past") is None
        assert store.get_authorization_code("boundary") is None
        assert store.get_authorization_code("future") is not None

    def test_purge_nothing(self, store):
        assert store.purge_expired_authorization_codes(BASE) == 0


class TestTokens:
    def test_created_at_is_aware_datetime(self, store, client, user):
        created = store.create_token(_token(client, user))
        stored = store.get_token_by_access_token("access-1")
        assert isinstance(stored.created_at, datetime)
        assert stored.created_at == created.created_at
        assert isinstance(client.created_at, datetime)

    def test_lookup_by_refresh_token(self, store, client, user):
        created = store.create_token(_token(client, user))
        assert store.get_token_by_refresh_token("refresh-1").id == created.id
        assert store.get_token_by_refresh_token("access-1") is None

    def test_duplicate_refresh_token_rejected(self, store, client, user):
        store.create_token(_token(client, user))
        with pytest.raises(IntegrityError):
            store.create_token(_token(client, user, "access-2", "refresh-1"))

    def test_reissue_replaces_access_only(self, store, client, user):
        created = store.create_token(_token(client, user))
        new_expiry = created.access_token_expires_at + timedelta(seconds=60)
        updated = store.reissue_access_token(created, "access-new", new_expiry)

        assert updated.access_token == "access-new"
        stored = store.get_token_by_refresh_token("refresh-1")
        assert stored.access_token == "access-new"
        assert stored.access_token_expires_at == new_expiry
        assert stored.refresh_token_expires_at == created.refresh_token_expires_at
        assert store.get_token_by_access_token("access-1") is None

    def test_reissue_stale_record_returns_none(self, store, client, user):
        created = store.create_token(_token(client, user))
        stale = replace(created, refresh_token="something-else")
        assert store.reissue_access_token(stale, "access-new", created.access_token_expires_at) is None
        assert store.get_token_by_access_token("access-1") is not None


class TestPing:
    def test_ping(self, store):
        assert store.ping() is True
