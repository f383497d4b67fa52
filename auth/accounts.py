"""
auth/accounts.py -- Account flows: sign-up, OTP sign-in, Google sign-in, sign-out, profile.

These are the callers of the session protocol. Every flow that logs a user
in ends in Authenticator.generate_token_pair(); sign-out goes through
invalidate_token_family() / invalidate_user_token_families(). The flows
themselves never build HTTP responses -- they return domain objects and raise
core.errors.AppError subclasses.

OTP handling:
  Codes are 4 random digits from the secrets module. Only an HMAC-SHA256
  digest of (user id, code) is stored; verification uses hmac.compare_digest.
  A code expires after otp_expire_minutes. At most otp_max_requests codes may
  be requested within one hour; the counter resets when the hour has passed
  and on successful verification.

  Delivery is an injected OtpNotifier. The default LoggingOtpNotifier only
  records that a code was dispatched (never the code itself).

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from auth.authenticate import Authenticator
from auth.oauth import GoogleIdentityProvider
from auth.store import UserStore
from auth.tokens import extract_token_family
from core.config import Settings
from core.errors import (
    AccountDeleted,
    AccountSuspended,
    BadRequest,
    Conflict,
    InvalidOtp,
    OAuthFailed,
    TooManyRequests,
    UserNotFound,
)
from core.models import AuthProvider, Role, TokenPair, User

logger = logging.getLogger("sessionkeep.auth.accounts")

OTP_DIGITS = 4

# ---------------------------------------------------------------------------
# OTP delivery
# ---------------------------------------------------------------------------


class OtpNotifier:
    """Delivers one-time codes. Subclass for email/SMS transports."""

    async def send(self, user: User, code: str) -> None:
        raise NotImplementedError


class LoggingOtpNotifier(OtpNotifier):
    async def send(self, user: User, code: str) -> None:
        logger.info("OTP dispatched to user %s", user.id)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def generate_otp() -> str:
    return "".join(secrets.choice("0123456789") for _ in range(OTP_DIGITS))


def is_registration_complete(user: User) -> bool:
    return bool(user.email and user.phone and user.first_name and user.last_name)


def ensure_active(user: User | None) -> User:
    """Apply the account-state gating shared by every login flow."""
    if user is None:
        raise UserNotFound()
    if user.is_suspended:
        raise AccountSuspended()
    if user.is_deleted:
        raise AccountDeleted()
    return user


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class AccountService:
    def __init__(
        self,
        users: UserStore,
        authenticator: Authenticator,
        settings: Settings,
        notifier: OtpNotifier | None = None,
        identity_provider: GoogleIdentityProvider | None = None,
    ) -> None:
        self.users = users
        self.authenticator = authenticator
        self.settings = settings
        self.notifier = notifier or LoggingOtpNotifier()
        self.identity_provider = identity_provider or GoogleIdentityProvider(settings)

    def _otp_digest(self, user_id: str, code: str) -> str:
        key = self.settings.refresh_token_secret.encode("utf-8")
        return hmac.new(key, f"{user_id}:{code}".encode("utf-8"), hashlib.sha256).hexdigest()

    # ------------------------------------------------------------------
    # Registration and sign-in
    # ------------------------------------------------------------------

    async def sign_up(
        self,
        email: str | None = None,
        phone: str | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
        role: str | None = None,
    ) -> User:
        """Create a local account identified by email and/or phone.

        Raises:
            BadRequest: neither email nor phone given.
            Conflict:   email or phone already belongs to another account.
        """
        if not email and not phone:
            raise BadRequest("Either email or phone number is required.")
        if email and await self.users.get_by_email(email):
            raise Conflict("User with this email already exists.")
        if phone and await self.users.get_by_phone(phone):
            raise Conflict("User with this phone number already exists.")

        user = User(
            email=email,
            phone=phone,
            first_name=first_name,
            last_name=last_name,
            role=Role.admin.value if role == Role.admin.value else Role.user.value,
            auth_provider=AuthProvider.local.value,
        )
        user.is_registration_complete = is_registration_complete(user)
        user = await self.users.create_user(user)
        logger.info("User %s signed up", user.id)
        return user

    async def sign_in(self, email: str) -> tuple[User, str]:
        """Look up the account and tell the client what to do next."""
        user = ensure_active(await self.users.get_by_email(email))
        if not user.is_registration_complete:
            return user, "Please complete your registration to sign in."
        return user, "Please request OTP to complete sign in."

    # ------------------------------------------------------------------
    # OTP
    # ------------------------------------------------------------------

    async def send_otp(self, email: str, ip_address: str | None = None) -> None:
        user = ensure_active(await self.users.get_by_email(email))
        if not user.email:
            raise BadRequest("No email address associated with this user.")

        now = _now()
        last_request = _parse_iso(user.otp_requested_at)
        within_hour = last_request is not None and now - last_request < timedelta(hours=1)
        retries = user.otp_retries if within_hour else 0
        if retries >= self.settings.otp_max_requests:
            raise TooManyRequests("Too many OTP requests. Please try again in an hour.")

        code = generate_otp()
        await self.users.update_user(
            user.id,
            otp_hash=self._otp_digest(user.id, code),
            otp_expires=(now + timedelta(minutes=self.settings.otp_expire_minutes)).isoformat(),
            otp_retries=retries + 1,
            # The hour window starts at the first request in a burst.
            otp_requested_at=user.otp_requested_at if within_hour else now.isoformat(),
            ip_address=ip_address or user.ip_address,
        )
        await self.notifier.send(user, code)

    async def verify_otp(self, email: str, otp: str) -> tuple[User, TokenPair]:
        """Check the code and log the user in with a brand-new token family.

        Raises:
            InvalidOtp: no pending code, wrong code, or code expired.
        """
        user = ensure_active(await self.users.get_by_email(email))

        expires = _parse_iso(user.otp_expires)
        if not user.otp_hash or expires is None or expires < _now():
            raise InvalidOtp()
        if not hmac.compare_digest(user.otp_hash, self._otp_digest(user.id, otp)):
            raise InvalidOtp()

        user = await self.users.update_user(
            user.id,
            otp_hash=None,
            otp_expires=None,
            otp_retries=0,
            otp_requested_at=None,
            last_login=_now().isoformat(),
        )
        if user is None:
            raise UserNotFound()
        pair = await self.authenticator.generate_token_pair(user.id)
        logger.info("User %s signed in with OTP", user.id)
        return user, pair

    # ------------------------------------------------------------------
    # Google
    # ------------------------------------------------------------------

    def google_auth_url(self) -> dict:
        if not self.identity_provider.enabled:
            raise BadRequest("Google sign-in is not configured.")
        url, state = self.identity_provider.authorization_url()
        return {"authUrl": url, "state": state}

    async def google_sign_in(self, code: str) -> tuple[User, TokenPair]:
        """Exchange a Google authorization code and log the user in.

        First login creates the account; later logins refresh names and the
        linked google id.
        """
        if not code:
            raise BadRequest("Authorization code is required.")
        if not self.identity_provider.enabled:
            raise BadRequest("Google sign-in is not configured.")

        profile = await self.identity_provider.exchange_code(code)
        now = _now().isoformat()
        user = await self.users.get_by_email(profile.email)
        if user is None:
            linked = await self.users.get_by_google_id(profile.id)
            if linked is not None:
                raise OAuthFailed("This Google account is linked to a different email.")
            user = await self.users.create_user(
                User(
                    email=profile.email,
                    first_name=profile.given_name,
                    last_name=profile.family_name,
                    google_id=profile.id,
                    photo=profile.picture,
                    auth_provider=AuthProvider.google.value,
                    last_login=now,
                )
            )
            logger.info("User %s signed up with Google", user.id)
        else:
            ensure_active(user)
            user = await self.users.update_user(
                user.id,
                first_name=profile.given_name or user.first_name,
                last_name=profile.family_name or user.last_name,
                google_id=profile.id,
                last_login=now,
            )
            if user is None:
                raise UserNotFound()

        pair = await self.authenticator.generate_token_pair(user.id)
        return user, pair

    # ------------------------------------------------------------------
    # Sign-out
    # ------------------------------------------------------------------

    async def sign_out(self, user: User, *refresh_tokens: str | None) -> list[str]:
        """End the session(s) the given refresh tokens belong to.

        Callers pass the presented token and, when authentication just
        grace-renewed the session, the freshly issued one too. Families that
        belong to another user are left alone. Returns the family ids that
        were invalidated.
        """
        revoked: list[str] = []
        for token in refresh_tokens:
            family_id = extract_token_family(token) if token else None
            if not family_id or family_id in revoked:
                continue
            family = await self.authenticator.families.find_active_family(family_id)
            if family is None:
                continue
            if family.user_id != user.id:
                logger.warning("Sign-out by user %s skipped family %s it does not own", user.id, family_id)
                continue
            await self.authenticator.invalidate_token_family(family_id)
            revoked.append(family_id)
            logger.info("Invalidated token family %s for user %s", family_id, user.id)
        return revoked

    async def sign_out_all(self, user: User) -> int:
        return await self.authenticator.invalidate_user_token_families(user.id)

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    async def get_profile(self, user_id: str) -> User:
        user = await self.users.get_by_id(user_id)
        if user is None:
            raise UserNotFound()
        return user

    async def update_profile(self, user_id: str, **changes) -> tuple[User, bool]:
        """Apply a partial profile update.

        Only keys present in changes are written. Returns the fresh user and
        whether the update made the registration complete.
        """
        current = ensure_active(await self.users.get_by_id(user_id))

        email = changes.get("email")
        if email:
            changes["email"] = email = email.lower()
            if email != current.email:
                other = await self.users.get_by_email(email)
                if other is not None and other.id != current.id:
                    raise Conflict("User with this email already exists.")
        phone = changes.get("phone")
        if phone and phone != current.phone:
            other = await self.users.get_by_phone(phone)
            if other is not None and other.id != current.id:
                raise Conflict("User with this phone number already exists.")

        merged = replace(current, **changes)
        completed = is_registration_complete(merged)
        if completed:
            changes["is_registration_complete"] = True

        user = await self.users.update_user(current.id, **changes)
        if user is None:
            raise UserNotFound()
        return user, completed
