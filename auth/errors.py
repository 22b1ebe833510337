"""
auth/errors.py -- Error taxonomy for the grant engine.

Every caller-facing failure is an OAuthError subclass carrying:
  code         -- stable machine-readable identifier for the response envelope
  status_code  -- HTTP status the API layer maps it to
  message      -- generic, client-safe text

The *reason* on AuthFailure and InvalidGrant is for server logs only. The
API layer never puts it in a response: telling "no such user" apart from
"wrong password" (or "expired" apart from "unknown code") would hand an
attacker an oracle.

InternalError is deliberately NOT an OAuthError. It falls through to the
catch-all 500 handler, which returns no detail.

All of these are terminal for the current request. The engine never retries
on the caller's behalf.
"""

from __future__ import annotations

from enum import Enum


class AuthFailureReason(str, Enum):
    NOT_FOUND = "not_found"
    BAD_CREDENTIALS = "bad_credentials"


class InvalidGrantReason(str, Enum):
    NOT_FOUND = "not_found"
    CLIENT_MISMATCH = "client_mismatch"
    REDIRECT_MISMATCH = "redirect_mismatch"
    EXPIRED = "expired"


class OAuthError(Exception):
    """Base class for failures reported back to the caller as a 4xx."""

    code = "invalid_request"
    status_code = 400
    message = "The request could not be processed."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class AuthFailure(OAuthError):
    """Resource-owner credentials were rejected."""

    code = "bad_credentials"
    status_code = 401
    message = "Invalid username or password."

    def __init__(self, reason: AuthFailureReason) -> None:
        self.reason = reason
        super().__init__()


class InvalidClient(OAuthError):
    """Unknown client_id, or the client secret did not verify."""

    code = "invalid_client"
    status_code = 401
    message = "Client authentication failed."


class InvalidGrant(OAuthError):
    """The authorization code or refresh token cannot be redeemed."""

    code = "invalid_grant"
    status_code = 400
    message = "The provided authorization grant is invalid or expired."

    def __init__(self, reason: InvalidGrantReason) -> None:
        self.reason = reason
        super().__init__()


class InvalidRedirect(OAuthError):
    """redirect_uri does not match the client's registered value."""

    code = "invalid_redirect"
    status_code = 400
    message = "redirect_uri does not match the registered value."


class InvalidRequest(OAuthError):
    """A parameter required by the selected grant type is missing."""

    code = "invalid_request"
    status_code = 400


class UnsupportedGrantType(OAuthError):
    code = "unsupported_grant_type"
    status_code = 400
    message = "grant_type must be authorization_code or refresh_token."


class UnsupportedResponseType(OAuthError):
    code = "unsupported_response_type"
    status_code = 400
    message = "response_type must be code."


class Unauthorized(OAuthError):
    """Bearer token missing, unknown or expired."""

    code = "unauthorized"
    status_code = 401
    message = "A valid bearer token is required."


class InternalError(Exception):
    """Server-side failure. Never rendered with detail."""


class CredentialCollision(InternalError):
    """A freshly generated code or token string collided twice in a row."""
