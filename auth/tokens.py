"""
auth/tokens.py -- Token Codec: signed, expiring access and refresh tokens.

Security design decisions:
  JWT: python-jose with HS256. Access tokens carry {id, type="access"};
       refresh tokens carry {id, type="refresh", tokenFamily, version}. The two
       kinds are signed with DIFFERENT secrets, and the type claim must match
       the expected use -- a refresh token presented as an access token fails
       both checks.

  Errors: verification never returns None. It raises a TokenError whose kind
       is one of a closed set (EXPIRED, MALFORMED, SIGNING) so the orchestrator
       can switch on it explicitly. Expired vs malformed is a meaningful
       distinction: only expired-but-correctly-signed refresh tokens may enter
       the grace path.

  decode_without_verification(): best-effort claim extraction for EXPIRED
       tokens during grace handling and for reading the family id at sign-out.
       Never used to authorize on its own.

  hash_token(): SHA-256 of the raw token. The replay cache is keyed by this
       digest so raw refresh tokens are never stored as cache keys.

Layer rule: no imports from api/ or cache/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from jose import ExpiredSignatureError, JWTError, jwt

_ALGORITHM = "HS256"

ACCESS = "access"
REFRESH = "refresh"

# ---------------------------------------------------------------------------
# Error variant
# ---------------------------------------------------------------------------


class TokenErrorKind(str, Enum):
    EXPIRED = "expired"
    MALFORMED = "malformed"
    SIGNING = "signing"


class TokenError(Exception):
    """Codec-level failure. Callers branch on .kind, never on the subclass name."""

    kind: TokenErrorKind = TokenErrorKind.MALFORMED

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind.value)


class ExpiredTokenError(TokenError):
    kind = TokenErrorKind.EXPIRED


class MalformedTokenError(TokenError):
    kind = TokenErrorKind.MALFORMED


class SigningError(TokenError):
    kind = TokenErrorKind.SIGNING


# ---------------------------------------------------------------------------
# Encode / verify / decode
# ---------------------------------------------------------------------------


def create_token(
    claims: dict[str, Any],
    expires_in: int | timedelta,
    secret: str,
    issued_at: datetime | None = None,
) -> str:
    """Sign claims into a JWT that expires expires_in after issued_at.

    issued_at defaults to now. Passing an earlier value produces a token that
    is already expired, which is how the grace-period tests build fixtures.

    Raises:
        SigningError: if secret is empty.
    """
    if not secret:
        raise SigningError("signing secret is not configured")
    if isinstance(expires_in, int):
        expires_in = timedelta(seconds=expires_in)
    iat = issued_at or datetime.now(timezone.utc)
    payload = {**claims, "iat": iat, "exp": iat + expires_in}
    try:
        return jwt.encode(payload, secret, algorithm=_ALGORITHM)
    except JWTError as exc:
        raise SigningError(str(exc)) from exc


def verify_token(token: str, secret: str, expected_type: str | None = None) -> dict[str, Any]:
    """Verify signature and expiry, returning the claims.

    When expected_type is given, a token whose "type" claim differs is
    treated as malformed.

    Raises:
        ExpiredTokenError: signature is valid but the token has expired.
        MalformedTokenError: anything else (bad signature, garbage, wrong type).
        SigningError: if secret is empty.
    """
    if not secret:
        raise SigningError("verification secret is not configured")
    try:
        claims = jwt.decode(token, secret, algorithms=[_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise ExpiredTokenError(str(exc)) from exc
    except JWTError as exc:
        raise MalformedTokenError(str(exc)) from exc
    if expected_type is not None and claims.get("type") != expected_type:
        raise MalformedTokenError(f"expected a {expected_type} token")
    return claims


def decode_without_verification(token: str) -> dict[str, Any] | None:
    """Return the claims of token without checking signature or expiry.

    Returns None when the token cannot be parsed at all.
    """
    try:
        return jwt.get_unverified_claims(token)
    except JWTError:
        return None


# ---------------------------------------------------------------------------
# Token kinds
# ---------------------------------------------------------------------------


def generate_access_token(user_id: str, secret: str, expires_in: int) -> str:
    return create_token({"id": user_id, "type": ACCESS}, expires_in, secret)


def generate_refresh_token(
    user_id: str,
    token_family: str,
    version: int,
    secret: str,
    expires_in: int,
    issued_at: datetime | None = None,
) -> str:
    """Sign a refresh token bound to token_family at the given version."""
    claims = {"id": user_id, "type": REFRESH, "tokenFamily": token_family, "version": version}
    return create_token(claims, expires_in, secret, issued_at=issued_at)


def generate_family_id() -> str:
    """Return a new opaque token family identifier."""
    return uuid.uuid4().hex


def extract_token_family(refresh_token: str) -> str | None:
    """Read the tokenFamily claim of a refresh token without verifying it."""
    claims = decode_without_verification(refresh_token)
    if not claims:
        return None
    return claims.get("tokenFamily") or None


def hash_token(token: str) -> str:
    """Return the SHA-256 hex digest of a raw token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
