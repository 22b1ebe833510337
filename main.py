#!/usr/bin/env python3
"""
Tollgate admin CLI -- provision user accounts and clients, purge stale codes.

Works directly against DATABASE_URL (see core/config.py). Passwords and
client secrets are bcrypt-hashed before they reach the store; when not given
on the command line they are prompted for without echo.

Usage:
  python main.py create-user user1@example.com --country AR --subscriber-id subscriber1
  python main.py create-client client1 --name "Example app" --redirect-uri https://example.org/cb
  python main.py purge-codes
"""

import argparse
import getpass
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.models import Client, UserAccount
from auth.store import CredentialStore
from auth.tokens import MAX_SECRET_BYTES, SecretTooLong, hash_secret
from core.config import get_settings


def _read_secret(value: Optional[str], prompt: str) -> str:
    """Return value if given, otherwise prompt twice and require a match."""
    if value:
        return value
    first = getpass.getpass(f"{prompt}: ")
    second = getpass.getpass(f"{prompt} (again): ")
    if not first or first != second:
        print("  [!] Values were empty or did not match.")
        sys.exit(1)
    return first


def _hash_or_report(plain: str, label: str) -> Optional[str]:
    """bcrypt-hash a secret, or print why it was refused and return None."""
    try:
        return hash_secret(plain)
    except SecretTooLong:
        print(f"  [!] {label} is longer than {MAX_SECRET_BYTES} bytes (UTF-8). Choose a shorter one.")
        return None


def create_user(store: CredentialStore, args: argparse.Namespace) -> int:
    password_hash = _hash_or_report(_read_secret(args.password, "Password"), "Password")
    if password_hash is None:
        return 1
    user = UserAccount(
        username=args.username,
        password_hash=password_hash,
        country=args.country.upper(),
        subscriber_id=args.subscriber_id,
    )
    try:
        user_id = store.create_user_account(user)
    except IntegrityError:
        print(f"  [!] A user named '{args.username}' already exists.")
        return 1
    print(f"[OK] Created user '{args.username}' (id={user_id})")
    return 0


def create_client(store: CredentialStore, args: argparse.Namespace) -> int:
    secret_hash = _hash_or_report(_read_secret(args.secret, "Client secret"), "Client secret")
    if secret_hash is None:
        return 1
    client = Client(
        name=args.name,
        client_id=args.client_id,
        client_secret_hash=secret_hash,
        redirect_uri=args.redirect_uri,
    )
    try:
        client_pk = store.create_client(client)
    except IntegrityError:
        print(f"  [!] Client '{args.client_id}' is already registered.")
        return 1
    print(f"[OK] Registered client '{args.client_id}' (id={client_pk}) -> {args.redirect_uri}")
    return 0


def purge_codes(store: CredentialStore, args: argparse.Namespace) -> int:
    removed = store.purge_expired_authorization_codes(datetime.now(timezone.utc))
    print(f"[OK] Removed {removed} expired authorization code(s)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tollgate",
        description="Administer the Tollgate authorization server database.",
    )
    parser.add_argument(
        "--database-url",
        metavar="URL",
        default=None,
        help="SQLAlchemy database URL (default: DATABASE_URL from the environment)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    user_cmd = sub.add_parser("create-user", help="Create a resource-owner account")
    user_cmd.add_argument("username", help="Login identifier, usually an email address")
    user_cmd.add_argument("--country", required=True, help="Two-letter country code, e.g. AR")
    user_cmd.add_argument("--subscriber-id", required=True, help="Identifier returned by /userinfo")
    user_cmd.add_argument("--password", default=None, help="Plaintext password (prompted if omitted)")
    user_cmd.set_defaults(handler=create_user)

    client_cmd = sub.add_parser("create-client", help="Register a client application")
    client_cmd.add_argument("client_id", help="Public client identifier")
    client_cmd.add_argument("--name", required=True, help="Human-readable client name")
    client_cmd.add_argument("--redirect-uri", required=True, help="Registered redirect URI, matched exactly")
    client_cmd.add_argument("--secret", default=None, help="Plaintext client secret (prompted if omitted)")
    client_cmd.set_defaults(handler=create_client)

    purge_cmd = sub.add_parser("purge-codes", help="Delete expired authorization codes")
    purge_cmd.set_defaults(handler=purge_codes)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s %(message)s")

    store = CredentialStore(args.database_url or get_settings().database_url)
    try:
        return args.handler(store, args)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
