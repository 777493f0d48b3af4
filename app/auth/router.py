import uuid
from typing import Optional

import httpx
import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..models.models import User
from ..schemas.auth import CheckMicrosoftResponse, MeResponse
from ..services.microsoft_auth import MicrosoftAuthError, MicrosoftIdentityClient, upsert_microsoft_user
from .security import clear_session_cookie, get_current_user, set_session_cookie


router = APIRouter(prefix="/auth", tags=["auth"])

STATE_COOKIE = "oauth-state"


def _redirect_uri() -> str:
    return f"{settings.public_base_url.rstrip('/')}/api/auth/microsoft/callback"


def _error_redirect(code: str) -> RedirectResponse:
    response = RedirectResponse(url=f"/?error={code}", status_code=302)
    response.delete_cookie(STATE_COOKIE, path="/")
    return response


@router.get("/check-microsoft", response_model=CheckMicrosoftResponse)
def check_microsoft():
    return CheckMicrosoftResponse(microsoft_enabled=settings.microsoft_enabled)


@router.get("/microsoft/login")
def microsoft_login():
    try:
        client = MicrosoftIdentityClient()
    except MicrosoftAuthError:
        return _error_redirect("MicrosoftNotConfigured")
    state = uuid.uuid4().hex
    response = RedirectResponse(url=client.authorize_url(_redirect_uri(), state), status_code=302)
    response.set_cookie(STATE_COOKIE, state, max_age=600, httponly=True, samesite="lax", secure=settings.cookie_secure, path="/")
    return response


@router.get("/microsoft/callback")
def microsoft_callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    db: Session = Depends(get_db),
):
    if error or not code:
        structlog.get_logger().warning("microsoft_callback_rejected", error=error)
        return _error_redirect("Unauthorized")
    if not state or state != request.cookies.get(STATE_COOKIE):
        return _error_redirect("InvalidState")
    try:
        client = MicrosoftIdentityClient()
        tokens = client.exchange_code(code, _redirect_uri())
        profile = client.fetch_profile(tokens["access_token"])
        user = upsert_microsoft_user(db, profile, tokens)
    except (MicrosoftAuthError, httpx.HTTPError, KeyError) as e:
        db.rollback()
        structlog.get_logger().warning("microsoft_callback_failed", error=str(e))
        return _error_redirect("AuthError")

    structlog.get_logger().info("user_signed_in", user_id=str(user.id), provider="microsoft")
    response = RedirectResponse(url="/dashboard", status_code=302)
    response.delete_cookie(STATE_COOKIE, path="/")
    set_session_cookie(response, user)
    return response


@router.post("/logout")
def logout():
    response = JSONResponse({"success": True})
    clear_session_cookie(response)
    return response


@router.get("/me", response_model=MeResponse)
def me(user: User = Depends(get_current_user)):
    return MeResponse(
        id=str(user.id),
        email=user.email,
        name=user.name,
        role=user.role,
        provider=user.provider,
        image=user.image,
        token_error=user.token_error,
    )
