"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

get_current_user() is the single entry point for protected routes:
  1. The transport adapter extracts the access/refresh tokens (cookie first,
     then Authorization / X-Refresh-Token headers) and the client type.
  2. The Authenticator on app.state resolves the user, rotating or
     grace-renewing the session when the access token is no longer valid.
  3. Any tokens issued along the way are parked on request.state so the
     route's build_response() hands them back to the client.

Rejections are raised as core.errors.AppError subclasses and rendered by
the handlers registered in api/main.py.

Layer rule: may import from fastapi (Depends/Request) because
this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.authenticate import Authenticator
from auth.transport import attach_tokens, detect_client_type, extract_credentials
from core.models import User


async def get_current_user(request: Request) -> User:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    authenticator: Authenticator = request.app.state.authenticator
    access_token, refresh_token = extract_credentials(request)

    result = await authenticator.authenticate(
        access_token=access_token,
        refresh_token=refresh_token,
        client_type=detect_client_type(request),
    )
    if result.rotated:
        attach_tokens(request, result.access_token, result.new_refresh_token)
    request.state.user = result.user
    return result.user
