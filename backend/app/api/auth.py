"""Auth API routes - Google login, logout, current user"""
import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.core.errors import ConnectorError
from app.core.security import clear_auth_cookie, get_session_id, set_auth_cookie
from app.db.session import get_db
from app.services.auth_service import (
    complete_google_oauth_login, get_current_user_from_session,
    initiate_google_oauth_login, logout_user
)

router = APIRouter(prefix="/api/auth", tags=["auth"])
logger = logging.getLogger(__name__)


@router.get("/google/login")
def auth_google_login(settings: Settings = Depends(get_settings)):
    """Start Google OAuth login flow (application sign-in)"""
    return initiate_google_oauth_login(settings)


@router.get("/google/login/callback")
def auth_google_login_callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db)
):
    """Google OAuth login callback - creates or logs in user"""
    if error:
        logger.warning(f"Google login denied by provider: {error}")
        params = urlencode({"error": "google_login_failed", "message": error})
        return RedirectResponse(url=f"{settings.FRONTEND_URL}/login?{params}")

    try:
        result, session_id, _ = complete_google_oauth_login(code, state, settings, db)
    except ConnectorError as e:
        logger.warning(f"Google login failed: {e.message}")
        params = urlencode({"error": e.code, "message": e.message})
        return RedirectResponse(url=f"{settings.FRONTEND_URL}/login?{params}")

    response = RedirectResponse(url=result["redirect_url"])
    set_auth_cookie(response, session_id, request, settings)
    return response


@router.post("/logout")
def logout(request: Request, response: Response):
    """Logout user"""
    session_id = get_session_id(request)
    result = logout_user(session_id)
    if session_id:
        clear_auth_cookie(response, request)
    return result


@router.get("/me")
def get_current_user(request: Request, db: Session = Depends(get_db)):
    """Get current logged-in user"""
    return get_current_user_from_session(get_session_id(request), db)
