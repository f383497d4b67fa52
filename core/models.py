"""
core/models.py -- Domain dataclasses for users, sessions and token outcomes.

Pattern: Data class (pure data container, zero logic beyond serialization).
Stores and services do the work; these own the domain shape.

Layer rule: core/ is the kernel. No imports from api/, auth/, or cache/.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any


class Role(str, Enum):
    superuser = "superuser"
    user = "user"
    admin = "admin"


class AuthProvider(str, Enum):
    local = "local"
    google = "google"


class ClientType(str, Enum):
    """Where issued tokens travel: response body (mobile) or cookies (browser)."""

    mobile = "mobile"
    browser = "browser"


# Fields that never leave the service in a response body.
_PRIVATE_USER_FIELDS = frozenset(
    {
        "otp_hash",
        "otp_expires",
        "otp_retries",
        "otp_requested_at",
        "ip_address",
        "last_login",
        "updated_at",
        "google_id",
        "auth_provider",
        "is_registration_complete",
        "is_notification_enabled",
    }
)


@dataclass
class User:
    """An account row from the user directory.

    Either email or phone may be missing (sign-up accepts one or the other).
    The authentication orchestrator only reads id, is_suspended and is_deleted;
    everything else belongs to the account flows.
    """

    id: str | None = None
    email: str | None = None
    phone: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    role: str = Role.user.value
    auth_provider: str = AuthProvider.local.value
    google_id: str | None = None
    photo: str | None = None
    location: str | None = None
    otp_hash: str | None = None
    otp_expires: str | None = None
    otp_retries: int = 0
    otp_requested_at: str | None = None
    ip_address: str | None = None
    is_notification_enabled: bool = True
    is_registration_complete: bool = False
    is_suspended: bool = False
    is_deleted: bool = False
    last_login: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    def to_public_dict(self) -> dict[str, Any]:
        """Return the user as a JSON-safe dict with private fields stripped."""
        return {k: v for k, v in asdict(self).items() if k not in _PRIVATE_USER_FIELDS}


@dataclass
class TokenFamily:
    """One continuous login session.

    The family's existence is the sole liveness signal for every refresh token
    that carries its family_id. The refresh token version is tracked by the
    token itself, never here.
    """

    user_id: str
    family_id: str
    id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenFamily:
        return cls(
            user_id=data["user_id"],
            family_id=data["family_id"],
            id=data.get("id"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


@dataclass
class UsedToken:
    """Outcome of one refresh-token exchange, keyed by the consumed token's hash.

    timestamp is epoch milliseconds at the moment the outcome was recorded.
    """

    timestamp: int
    new_token: str
    user_id: str

    def to_dict(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp, "newToken": self.new_token, "userId": self.user_id}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UsedToken:
        return cls(timestamp=int(data["timestamp"]), new_token=data["newToken"], user_id=data["userId"])


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    token_family: str


@dataclass
class AuthResult:
    """What authenticate() resolved for one request.

    access_token/new_refresh_token are only set when rotated is True; the
    transport adapter re-attaches them to the response.
    """

    user: User
    rotated: bool = False
    access_token: str | None = None
    new_refresh_token: str | None = None
