"""
Azure AD (Microsoft identity platform) sign-in helpers.
Authorization-code flow, refresh-token renewal and local user upsert.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx
import structlog
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import User


log = structlog.get_logger()

SCOPES = "openid profile email User.Read Files.ReadWrite.All Sites.ReadWrite.All offline_access"
REFRESH_ERROR = "RefreshAccessTokenError"


class MicrosoftAuthError(Exception):
    pass


class MicrosoftIdentityClient:
    """Thin client over the v2.0 authorize/token endpoints and Graph /me."""

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ):
        self.client_id = client_id or settings.azure_ad_client_id
        self.client_secret = client_secret or settings.azure_ad_client_secret
        self.tenant_id = tenant_id or settings.azure_ad_tenant_id
        if not (self.client_id and self.client_secret and self.tenant_id):
            raise MicrosoftAuthError("Microsoft SSO is not configured")
        self.authority = f"https://login.microsoftonline.com/{self.tenant_id}/oauth2/v2.0"

    @property
    def token_url(self) -> str:
        return f"{self.authority}/token"

    def authorize_url(self, redirect_uri: str, state: str) -> str:
        query = urlencode({
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": redirect_uri,
            "response_mode": "query",
            "scope": SCOPES,
            "state": state,
        })
        return f"{self.authority}/authorize?{query}"

    def _token_request(self, data: Dict[str, str]) -> Dict[str, Any]:
        form = {"client_id": self.client_id, "client_secret": self.client_secret, **data}
        with httpx.Client(timeout=30.0) as client:
            response = client.post(self.token_url, data=form)
        if response.status_code != 200:
            raise MicrosoftAuthError(f"Token endpoint returned {response.status_code}: {response.text}")
        return response.json()

    def exchange_code(self, code: str, redirect_uri: str) -> Dict[str, Any]:
        return self._token_request({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "scope": SCOPES,
        })

    def refresh(self, refresh_token: str) -> Dict[str, Any]:
        return self._token_request({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "scope": SCOPES,
        })

    def fetch_profile(self, access_token: str) -> Dict[str, Any]:
        with httpx.Client(timeout=30.0) as client:
            response = client.get(
                f"{settings.graph_base_url}/me",
                headers={"Authorization": f"Bearer {access_token}"},
            )
        if response.status_code != 200:
            raise MicrosoftAuthError(f"Graph /me returned {response.status_code}: {response.text}")
        return response.json()


def _expires_at(tokens: Dict[str, Any]) -> datetime:
    return datetime.utcnow() + timedelta(seconds=int(tokens.get("expires_in") or 3600))


def apply_initial_admin(user: User) -> None:
    """Promote the user named by INITIAL_ADMIN_EMAIL."""
    admin_email = (settings.initial_admin_email or "").strip().lower()
    if admin_email and user.email.lower() == admin_email and user.role != "admin":
        user.role = "admin"
        log.info("initial_admin_promoted", email=user.email)


def upsert_microsoft_user(db: Session, profile: Dict[str, Any], tokens: Dict[str, Any]) -> User:
    email = (profile.get("mail") or profile.get("userPrincipalName") or "").strip().lower()
    if not email:
        raise MicrosoftAuthError("Microsoft profile has no email")
    user = db.query(User).filter(User.email == email).first()
    if user is None:
        user = User(email=email, role="user")
        db.add(user)
    user.name = profile.get("displayName") or user.name
    user.provider = "microsoft"
    user.microsoft_id = profile.get("id")
    user.access_token = tokens.get("access_token")
    if tokens.get("refresh_token"):
        user.refresh_token = tokens["refresh_token"]
    user.token_expires_at = _expires_at(tokens)
    user.token_error = None
    apply_initial_admin(user)
    db.commit()
    db.refresh(user)
    return user


def ensure_access_token(db: Session, user: User, client: Optional[MicrosoftIdentityClient] = None) -> Optional[str]:
    """
    Return a usable access token for the user, refreshing it when the cached one has expired.
    A failed refresh marks the user with REFRESH_ERROR and returns the stale token; callers that
    need Graph will fail downstream instead of the session being terminated.
    """
    if not user.access_token:
        return None
    if user.token_expires_at is None or user.token_expires_at > datetime.utcnow():
        return user.access_token
    if not user.refresh_token:
        user.token_error = REFRESH_ERROR
        db.commit()
        return user.access_token
    try:
        client = client or MicrosoftIdentityClient()
        tokens = client.refresh(user.refresh_token)
    except (MicrosoftAuthError, httpx.HTTPError) as e:
        log.warning("microsoft_token_refresh_failed", user_id=str(user.id), error=str(e))
        user.token_error = REFRESH_ERROR
        db.commit()
        return user.access_token
    user.access_token = tokens.get("access_token")
    user.refresh_token = tokens.get("refresh_token") or user.refresh_token
    user.token_expires_at = _expires_at(tokens)
    user.token_error = None
    db.commit()
    return user.access_token
