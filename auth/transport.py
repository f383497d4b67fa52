"""
auth/transport.py -- Session Transport Adapter.

Decides how tokens travel between server and client. Pure boundary glue: no
protocol state and no trust decisions live here.

  Inbound:  access token from the "access_token" cookie or an
            "Authorization: Bearer" header; refresh token from the
            "refresh_token" cookie or an "X-Refresh-Token" header.

  Outbound: tokens issued while handling a request are parked on
            request.state by attach_tokens(). build_response() then either
            adds them to the JSON body as newAccessToken / newRefreshToken
            (mobile) or sets them as cookies (browser).

Client type is signalled by the presence of the configured mobile header
(Settings.mobile_client_header). Anything else is a browser.

Cookie policy:
  httponly=True always; path="/"; max_age from the configured token lifetimes.
  Development: samesite="lax", secure per SECURE_COOKIES.
  Production:  samesite="none" + secure=True so a separately hosted frontend
               can still send them cross-site.

Layer rule: may import fastapi/starlette types. No imports from api/.
"""

from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.responses import Response

from core.config import Settings, get_settings
from core.models import ClientType

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"
REFRESH_HEADER = "X-Refresh-Token"


def detect_client_type(request: Request, settings: Settings | None = None) -> ClientType:
    settings = settings or get_settings()
    if request.headers.get(settings.mobile_client_header):
        return ClientType.mobile
    return ClientType.browser


def extract_credentials(request: Request) -> tuple[str | None, str | None]:
    """Return (access_token, refresh_token) as presented by the client.

    Cookies win over headers, matching the web UI flow where both may exist.
    """
    access_token: str | None = request.cookies.get(ACCESS_COOKIE)
    if not access_token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            access_token = auth_header[7:] or None

    refresh_token: str | None = request.cookies.get(REFRESH_COOKIE) or request.headers.get(REFRESH_HEADER)
    return access_token, refresh_token or None


# ---------------------------------------------------------------------------
# Outbound tokens
# ---------------------------------------------------------------------------


def attach_tokens(request: Request, access_token: str | None = None, refresh_token: str | None = None) -> None:
    """Park freshly issued tokens on the request until the response is built."""
    if access_token:
        request.state.new_access_token = access_token
    if refresh_token:
        request.state.new_refresh_token = refresh_token


def _issued_tokens(request: Request) -> tuple[str | None, str | None]:
    return (
        getattr(request.state, "new_access_token", None),
        getattr(request.state, "new_refresh_token", None),
    )


def set_auth_cookie(response: Response, name: str, token: str, max_age: int, settings: Settings | None = None) -> None:
    """Write one token as an httpOnly cookie whose lifetime matches the token's."""
    settings = settings or get_settings()
    response.set_cookie(
        name,
        value=token,
        max_age=max_age,
        path="/",
        httponly=True,
        secure=settings.secure_cookies or settings.is_production,
        samesite="none" if settings.is_production else "lax",
    )


def clear_auth_cookies(response: Response, settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    samesite = "none" if settings.is_production else "lax"
    secure = settings.secure_cookies or settings.is_production
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(name, path="/", httponly=True, secure=secure, samesite=samesite)


def build_response(
    request: Request,
    data: Any = None,
    message: str = "Success",
    status_code: int = 200,
    deliver_tokens: bool = True,
) -> JSONResponse:
    """Render the success envelope and deliver any tokens issued for this request.

    Body: {"status": "success", "data": ..., "message": ...} plus
    newAccessToken / newRefreshToken for mobile clients.

    deliver_tokens=False drops anything parked by attach_tokens(); sign-out
    uses it so a session rotated on the way in is not handed back.
    """
    settings = get_settings()
    access_token, refresh_token = _issued_tokens(request) if deliver_tokens else (None, None)
    client_type = detect_client_type(request, settings)

    body: dict[str, Any] = {"status": "success", "data": data}
    if client_type is ClientType.mobile:
        if access_token:
            body["newAccessToken"] = access_token
        if refresh_token:
            body["newRefreshToken"] = refresh_token
    body["message"] = message

    resp = JSONResponse(status_code=status_code, content=body)
    if client_type is ClientType.browser:
        if access_token:
            set_auth_cookie(resp, ACCESS_COOKIE, access_token, settings.access_token_ttl, settings)
        if refresh_token:
            set_auth_cookie(resp, REFRESH_COOKIE, refresh_token, settings.refresh_token_ttl, settings)
    resp.headers["Cache-Control"] = "no-store"
    return resp
