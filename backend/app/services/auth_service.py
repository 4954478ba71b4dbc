"""Authentication service - primary (Google) login and application sessions"""
import logging
import secrets
from typing import Dict, Optional, Tuple

import httpx
import requests
from google_auth_oauthlib.flow import Flow
from oauthlib.oauth2 import OAuth2Error
from sqlalchemy.orm import Session

from app.core.config import GOOGLE_LOGIN_SCOPES, Settings
from app.core.errors import ConnectorError, CsrfMismatch, InvalidInput, UpstreamError
from app.core.metrics import login_attempts_counter
from app.db.helpers import get_or_create_user, get_user_by_id
from app.db.redis import delete_session, get_session, pop_oauth_state, put_oauth_state, set_session

logger = logging.getLogger(__name__)

GOOGLE_LOGIN_FLOW = "google_login"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"


def get_google_client_config(settings: Settings) -> Optional[Dict]:
    """Build Google OAuth client config from settings"""
    if not all([settings.GOOGLE_CLIENT_ID, settings.GOOGLE_CLIENT_SECRET, settings.GOOGLE_PROJECT_ID]):
        return None
    return {
        "web": {
            "client_id": settings.GOOGLE_CLIENT_ID,
            "project_id": settings.GOOGLE_PROJECT_ID,
            "auth_uri": "https://accounts.google.com/o/oauth2/auth",
            "token_uri": "https://oauth2.googleapis.com/token",
            "auth_provider_x509_cert_url": "https://www.googleapis.com/oauth2/v1/certs",
            "client_secret": settings.GOOGLE_CLIENT_SECRET,
            "redirect_uris": []
        }
    }


def _google_login_flow(settings: Settings) -> Flow:
    google_config = get_google_client_config(settings)
    if not google_config:
        raise InvalidInput(
            "Google OAuth credentials not configured. Set GOOGLE_CLIENT_ID, "
            "GOOGLE_CLIENT_SECRET, and GOOGLE_PROJECT_ID environment variables."
        )
    return Flow.from_client_config(
        google_config,
        scopes=GOOGLE_LOGIN_SCOPES,
        redirect_uri=f"{settings.BACKEND_URL.rstrip('/')}/api/auth/google/login/callback"
    )


def fetch_google_userinfo(access_token: str) -> Dict:
    """Fetch the signed-in Google user's profile"""
    try:
        response = httpx.get(
            GOOGLE_USERINFO_URL,
            headers={'Authorization': f'Bearer {access_token}'},
            timeout=10.0
        )
    except httpx.HTTPError as e:
        raise UpstreamError(f"Could not reach Google: {type(e).__name__}", payload={"stage": "userinfo"})

    if response.status_code != 200:
        raise UpstreamError("Failed to fetch user info from Google", payload={"stage": "userinfo"},
                            status_code=response.status_code)
    return response.json()


def create_session(user_id: int) -> str:
    """Create a new application session for a user

    Returns:
        str: Session ID (stored in the session_id cookie)
    """
    session_id = secrets.token_urlsafe(32)
    set_session(session_id, user_id)
    return session_id


def initiate_google_oauth_login(settings: Settings) -> Dict[str, str]:
    """Start Google OAuth login flow"""
    flow = _google_login_flow(settings)

    state = secrets.token_urlsafe(32)
    url, _ = flow.authorization_url(access_type='offline', state=state, prompt='select_account')

    # The state is its own key; the browser has no session yet
    put_oauth_state(GOOGLE_LOGIN_FLOW, state, "pending")
    return {"url": url}


def _verified_google_identity(code: Optional[str], state: Optional[str], settings: Settings) -> Dict:
    """Check the login state, redeem the code and return Google's userinfo"""
    if not state or not pop_oauth_state(GOOGLE_LOGIN_FLOW, state):
        raise CsrfMismatch("Invalid state parameter")
    if not code:
        raise InvalidInput("Missing authorization code")

    flow = _google_login_flow(settings)
    try:
        flow.fetch_token(code=code)
    except (OAuth2Error, requests.RequestException) as e:
        raise UpstreamError(f"Google token exchange failed: {type(e).__name__}",
                            payload={"stage": "google_token"}) from e
    user_info = fetch_google_userinfo(flow.credentials.token)
    if not user_info.get('email'):
        raise InvalidInput("Email not provided by Google")
    return user_info


def complete_google_oauth_login(code: str, state: str, settings: Settings, db: Session) -> Tuple[Dict[str, str], str, bool]:
    """
    Complete Google OAuth login - verify state, exchange code, get user info, create/login user, create session

    Returns:
        Tuple of (result_dict, session_id, is_new_user)
    """
    try:
        user_info = _verified_google_identity(code, state, settings)
    except ConnectorError:
        login_attempts_counter.labels(status="failure", method="google").inc()
        raise

    user, is_new = get_or_create_user(user_info['email'], name=user_info.get('name'), db=db)
    session_id = create_session(user.id)

    login_attempts_counter.labels(status="success", method="google").inc()
    action = "registered" if is_new else "logged in"
    logger.info(f"User {action} via Google OAuth: {user.email} (ID: {user.id})")

    return {"redirect_url": f"{settings.FRONTEND_URL}/dashboard?google_login=success"}, session_id, is_new


def logout_user(session_id: Optional[str]) -> dict:
    """Logout flow: delete session"""
    if session_id:
        delete_session(session_id)
        logger.info(f"User logged out (session: {session_id[:16]}...)")

    return {"message": "Logged out successfully"}


def get_current_user_from_session(session_id: Optional[str], db: Session) -> dict:
    """Get user from session ({"user": None} when not logged in)"""
    if not session_id:
        return {"user": None}

    user_id = get_session(session_id)
    if not user_id:
        return {"user": None}

    user = get_user_by_id(user_id, db=db)
    if not user:
        return {"user": None}

    return {
        "user": {
            "id": user.id,
            "email": user.email,
            "name": user.name,
            "created_at": user.created_at.isoformat(),
        }
    }
