"""
api/routes/v1/auth.py -- Account and session REST endpoints.

Routes:
  POST /api/v1/sign-up           -- create account by email and/or phone; 201
  POST /api/v1/sign-in           -- look up account, tell client next step
  POST /api/v1/send-otp          -- email a 4-digit sign-in code
  POST /api/v1/verify-otp        -- check code, start a new session
  GET  /api/v1/auth/google/url   -- Google consent URL + state
  POST /api/v1/auth/google       -- exchange Google code, start a new session
  POST /api/v1/sign-out          -- end the current session (requires auth)
  POST /api/v1/sign-out-all      -- end every session of the user (requires auth)
  GET  /api/v1/profile           -- current user (requires auth)
  POST /api/v1/update-user       -- partial profile update (requires auth)

Session delivery:
  Tokens issued here (login) or by get_current_user() (rotation, grace
  renewal) are parked with attach_tokens() and delivered by build_response():
  cookies for browsers, newAccessToken / newRefreshToken body fields for
  mobile clients. Every response carries Cache-Control: no-store.

Security:
  POST /send-otp and /verify-otp are rate-limited per IP (OTP_RATE_LIMIT) on
  top of the per-account hourly OTP quota in AccountService.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import OTP_RATE_LIMIT, limiter
from api.models import (
    EmailRequest,
    GoogleAuthRequest,
    SignUpRequest,
    SuccessResponse,
    UpdateUserRequest,
    VerifyOtpRequest,
)
from auth.accounts import AccountService
from auth.dependencies import get_current_user
from auth.transport import attach_tokens, build_response, clear_auth_cookies, extract_credentials
from core.models import User

# Auth policy:
# - sign-up, sign-in, send-otp, verify-otp, auth/google*: public -- they start sessions
# - sign-out, sign-out-all, profile, update-user:        requires auth (get_current_user)
router = APIRouter()


def _accounts(request: Request) -> AccountService:
    return request.app.state.accounts


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/sign-up", response_model=SuccessResponse, status_code=201)
async def sign_up(request: Request, body: SignUpRequest) -> JSONResponse:
    user = await _accounts(request).sign_up(
        email=body.email,
        phone=body.phone,
        first_name=body.first_name,
        last_name=body.last_name,
        role=body.role,
    )
    return build_response(request, user.to_public_dict(), "User created successfully", status_code=201)


@router.post("/sign-in", response_model=SuccessResponse)
async def sign_in(request: Request, body: EmailRequest) -> JSONResponse:
    """Step one of the OTP login. Never issues tokens."""
    user, message = await _accounts(request).sign_in(body.email)
    return build_response(request, user.to_public_dict(), message)


@router.post("/send-otp", response_model=SuccessResponse)
@limiter.limit(OTP_RATE_LIMIT)
async def send_otp(request: Request, body: EmailRequest) -> JSONResponse:
    ip_address = request.client.host if request.client else None
    await _accounts(request).send_otp(body.email, ip_address=ip_address)
    return build_response(request, None, "OTP sent. Please verify to continue.")


@router.post("/verify-otp", response_model=SuccessResponse)
@limiter.limit(OTP_RATE_LIMIT)
async def verify_otp(request: Request, body: VerifyOtpRequest) -> JSONResponse:
    user, pair = await _accounts(request).verify_otp(body.email, body.otp)
    attach_tokens(request, pair.access_token, pair.refresh_token)
    return build_response(request, user.to_public_dict(), "OTP verified successfully")


@router.get("/auth/google/url", response_model=SuccessResponse)
async def google_auth_url(request: Request) -> JSONResponse:
    return build_response(request, _accounts(request).google_auth_url(), "Google auth URL generated")


@router.post("/auth/google", response_model=SuccessResponse)
async def google_sign_in(request: Request, body: GoogleAuthRequest) -> JSONResponse:
    user, pair = await _accounts(request).google_sign_in(body.code)
    attach_tokens(request, pair.access_token, pair.refresh_token)
    return build_response(request, user.to_public_dict(), "Successfully authenticated with Google")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/sign-out", response_model=SuccessResponse)
async def sign_out(request: Request, current_user: User = Depends(get_current_user)) -> JSONResponse:
    """Invalidate the family of the presented refresh token and clear cookies.

    When get_current_user() grace-renewed the session on the way in, the
    renewed family is revoked as well.
    """
    _, presented = extract_credentials(request)
    renewed = getattr(request.state, "new_refresh_token", None)
    await _accounts(request).sign_out(current_user, presented, renewed)
    resp = build_response(request, None, "Logout successful", deliver_tokens=False)
    clear_auth_cookies(resp)
    return resp


@router.post("/sign-out-all", response_model=SuccessResponse)
async def sign_out_all(request: Request, current_user: User = Depends(get_current_user)) -> JSONResponse:
    await _accounts(request).sign_out_all(current_user)
    resp = build_response(request, None, "Logout from all devices successful", deliver_tokens=False)
    clear_auth_cookies(resp)
    return resp


@router.get("/profile", response_model=SuccessResponse)
async def profile(request: Request, current_user: User = Depends(get_current_user)) -> JSONResponse:
    user = await _accounts(request).get_profile(current_user.id)
    return build_response(request, user.to_public_dict(), "Profile retrieved successfully")


@router.post("/update-user", response_model=SuccessResponse)
async def update_user(
    request: Request,
    body: UpdateUserRequest,
    current_user: User = Depends(get_current_user),
) -> JSONResponse:
    changes = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None}
    user, completed = await _accounts(request).update_profile(current_user.id, **changes)
    message = "Profile completed successfully" if completed else "Profile updated successfully"
    return build_response(request, user.to_public_dict(), message)
