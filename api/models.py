"""
API request and response models for SessionKeep REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in core/models.py, which
own the internal domain representation. Route handlers map between the two.

Request bodies accept camelCase (firstName) as sent by the web and mobile
clients, and snake_case for scripts.

Separation of concerns: core/ models = domain truth; api/ models = API contract.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
PHONE_PATTERN = r"^\+?[0-9]{7,15}$"
OTP_PATTERN = r"^[0-9]{4}$"


class _RequestModel(BaseModel):
    model_config = ConfigDict(
        str_strip_whitespace=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignUpRequest(_RequestModel):
    """Request body for POST /api/v1/sign-up. Email or phone (or both) is required."""

    email: Optional[str] = Field(default=None, max_length=255, pattern=EMAIL_PATTERN)
    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    role: Optional[str] = None

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: Optional[str]) -> Optional[str]:
        return v.lower() if v else v


class EmailRequest(_RequestModel):
    """Request body for POST /api/v1/sign-in and POST /api/v1/send-otp."""

    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)


class VerifyOtpRequest(_RequestModel):
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    otp: str = Field(pattern=OTP_PATTERN)


class GoogleAuthRequest(_RequestModel):
    code: str = Field(min_length=1)


class UpdateUserRequest(_RequestModel):
    """Request body for POST /api/v1/update-user. Only fields that are sent are changed."""

    email: Optional[str] = Field(default=None, max_length=255, pattern=EMAIL_PATTERN)
    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    location: Optional[str] = Field(default=None, max_length=255)
    is_notification_enabled: Optional[bool] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class SuccessResponse(BaseModel):
    """Success envelope. Mobile clients also receive newAccessToken / newRefreshToken."""

    status: str = "success"
    data: Any = None
    message: str = "Success"
    new_access_token: Optional[str] = Field(default=None, serialization_alias="newAccessToken")
    new_refresh_token: Optional[str] = Field(default=None, serialization_alias="newRefreshToken")


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
