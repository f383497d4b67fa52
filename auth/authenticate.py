"""
auth/authenticate.py -- Authentication Orchestrator.

Given the credentials a request carried, decide whether to accept, rotate,
grace-renew or reject:

  1. No refresh token                     -> AuthRequired
  2. Access token present and valid       -> accept, rotated=False
     (invalid/expired access falls through to the refresh path)
  3. Refresh token verified:
       malformed / wrong type / no family -> InvalidRefreshToken
       expired                            -> grace path (4)
       valid                              -> rotation path (5)
  4. Grace path: family must still exist (else SessionRevoked); expired by
     more than the grace window -> family invalidated, SessionTooOld;
     otherwise a brand-new family at version 1 is issued.
  5. Rotation path: family must exist (else SessionRevoked); a replay cache
     hit returns the previously issued refresh token with a fresh access
     token; otherwise the same family is re-issued at version + 1.

Access validity is ALWAYS tried first. Reversing that order would rotate the
refresh token on every request.

The refresh token version is advisory: a stale version is accepted as long as
its family is alive. Only family existence gates validity.

Every user-resolving path applies the same gating: UserNotFound,
AccountSuspended, AccountDeleted, in that order.

Layer rule: no imports from api/. Dependencies are injected through the
constructor so tests can run against in-memory SQLite and fakeredis.
"""

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import SQLAlchemyError

from auth.families import TokenFamilyRepository
from auth.replay import ReplayCache
from auth.store import UserStore
from auth.tokens import (
    ACCESS,
    REFRESH,
    TokenError,
    TokenErrorKind,
    decode_without_verification,
    generate_access_token,
    generate_family_id,
    generate_refresh_token,
    hash_token,
    verify_token,
)
from core.config import Settings
from core.errors import (
    AccountDeleted,
    AccountSuspended,
    AppError,
    AuthRequired,
    InvalidRefreshToken,
    SessionExpired,
    SessionRevoked,
    SessionTooOld,
    UserNotFound,
)
from core.models import AuthResult, ClientType, TokenPair, User

logger = logging.getLogger("sessionkeep.auth")


class Authenticator:
    """Issues token pairs and resolves the caller of every authenticated request."""

    def __init__(
        self,
        users: UserStore,
        families: TokenFamilyRepository,
        replay: ReplayCache,
        settings: Settings,
    ) -> None:
        self.users = users
        self.families = families
        self.replay = replay
        self.settings = settings

    @property
    def grace_period_seconds(self) -> int:
        return self.settings.refresh_grace_period_days * 24 * 60 * 60

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    async def generate_token_pair(
        self, user_id: str, existing_family_id: str | None = None, version: int = 1
    ) -> TokenPair:
        """Mint an access + refresh pair.

        Without existing_family_id a new family is created. The durable write
        is best-effort: if it fails the error is logged and the pair is still
        issued with the generated family id. Such a session fails with
        SessionRevoked on its first refresh.
        """
        family_id = existing_family_id
        if not family_id:
            family_id = generate_family_id()
            try:
                await self.families.create(user_id, family_id)
            except SQLAlchemyError:
                logger.exception("Could not persist token family for user %s; continuing", user_id)

        access_token = generate_access_token(
            user_id, self.settings.access_token_secret, self.settings.access_token_ttl
        )
        refresh_token = generate_refresh_token(
            user_id,
            family_id,
            version,
            self.settings.refresh_token_secret,
            self.settings.refresh_token_ttl,
        )
        return TokenPair(access_token=access_token, refresh_token=refresh_token, token_family=family_id)

    def _fresh_access_token(self, user_id: str) -> str:
        return generate_access_token(user_id, self.settings.access_token_secret, self.settings.access_token_ttl)

    # ------------------------------------------------------------------
    # Revocation
    # ------------------------------------------------------------------

    async def invalidate_token_family(self, family_id: str) -> None:
        await self.families.invalidate_family(family_id)

    async def invalidate_user_token_families(self, user_id: str) -> int:
        return await self.families.invalidate_user_families(user_id)

    # ------------------------------------------------------------------
    # Request authentication
    # ------------------------------------------------------------------

    async def authenticate(
        self,
        access_token: str | None = None,
        refresh_token: str | None = None,
        client_type: ClientType = ClientType.browser,
    ) -> AuthResult:
        """Resolve the caller from its credentials.

        client_type only affects how the caller transports tokens; it never
        changes a trust decision here.

        Raises:
            AppError subclass from core.errors on every rejection.
        """
        if not refresh_token:
            raise AuthRequired()

        try:
            if access_token:
                try:
                    claims = verify_token(access_token, self.settings.access_token_secret, expected_type=ACCESS)
                except TokenError as exc:
                    logger.debug("Access token rejected (%s); trying refresh token", exc.kind.value)
                else:
                    user = await self._load_active_user(claims.get("id"))
                    return AuthResult(user=user, rotated=False)

            return await self._refresh(refresh_token, client_type)
        except AppError:
            raise
        except SQLAlchemyError:
            logger.exception("Durable store failure while authenticating a request")
            raise SessionExpired()

    async def _refresh(self, refresh_token: str, client_type: ClientType) -> AuthResult:
        try:
            claims = verify_token(refresh_token, self.settings.refresh_token_secret, expected_type=REFRESH)
        except TokenError as exc:
            if exc.kind is TokenErrorKind.EXPIRED:
                logger.info("Refresh token expired; checking grace period (%s client)", client_type.value)
                return await self._renew_within_grace(refresh_token)
            if exc.kind is TokenErrorKind.MALFORMED:
                raise InvalidRefreshToken()
            logger.error("Refresh token could not be verified: %s", exc)
            raise SessionExpired()

        if not claims.get("tokenFamily") or not claims.get("id"):
            raise InvalidRefreshToken()
        return await self._rotate(refresh_token, claims)

    # ------------------------------------------------------------------
    # Rotation path
    # ------------------------------------------------------------------

    async def _rotate(self, refresh_token: str, claims: dict) -> AuthResult:
        family_id = claims["tokenFamily"]
        if await self.families.find_active_family(family_id) is None:
            raise SessionRevoked()

        token_hash = hash_token(refresh_token)
        cached = await self.replay.get_cached_used_token(token_hash)
        if cached is not None:
            user = await self._load_active_user(cached.user_id)
            return AuthResult(
                user=user,
                rotated=True,
                access_token=self._fresh_access_token(user.id),
                new_refresh_token=cached.new_token,
            )

        user = await self._load_active_user(claims["id"])
        version = int(claims.get("version") or 0) + 1
        pair = await self.generate_token_pair(user.id, family_id, version)
        winner = await self.replay.cache_used_token(token_hash, pair.refresh_token, user.id)
        await self._touch_family(family_id)
        return AuthResult(
            user=user,
            rotated=True,
            access_token=pair.access_token,
            new_refresh_token=winner.new_token,
        )

    async def _touch_family(self, family_id: str) -> None:
        try:
            await self.users.touch_family(family_id)
        except SQLAlchemyError:
            logger.warning("Could not touch token family %s", family_id)

    # ------------------------------------------------------------------
    # Grace path
    # ------------------------------------------------------------------

    async def _renew_within_grace(self, expired_token: str) -> AuthResult:
        claims = decode_without_verification(expired_token)
        if not claims or not claims.get("exp") or not claims.get("id") or not claims.get("tokenFamily"):
            raise InvalidRefreshToken()

        family_id = claims["tokenFamily"]
        if await self.families.find_active_family(family_id) is None:
            raise SessionRevoked()

        expired_for = int(time.time()) - int(claims["exp"])
        if expired_for > self.grace_period_seconds:
            await self.families.invalidate_family(family_id)
            logger.info("Refresh token expired %ds ago, beyond grace; family %s revoked", expired_for, family_id)
            raise SessionTooOld()

        token_hash = hash_token(expired_token)
        cached = await self.replay.get_cached_used_token(token_hash)
        if cached is not None:
            user = await self._load_active_user(cached.user_id)
            return AuthResult(
                user=user,
                rotated=True,
                access_token=self._fresh_access_token(user.id),
                new_refresh_token=cached.new_token,
            )

        user = await self._load_active_user(claims["id"])
        # A fresh login, not a rotation: new family, version 1.
        pair = await self.generate_token_pair(user.id)
        winner = await self.replay.cache_used_token(token_hash, pair.refresh_token, user.id)
        if winner.new_token != pair.refresh_token:
            await self.families.invalidate_family(pair.token_family)
        return AuthResult(
            user=user,
            rotated=True,
            access_token=pair.access_token,
            new_refresh_token=winner.new_token,
        )

    # ------------------------------------------------------------------
    # User gating
    # ------------------------------------------------------------------

    async def _load_active_user(self, user_id: str | None) -> User:
        user = await self.users.get_by_id(user_id) if user_id else None
        if user is None:
            raise UserNotFound()
        if user.is_suspended:
            raise AccountSuspended()
        if user.is_deleted:
            raise AccountDeleted()
        return user
