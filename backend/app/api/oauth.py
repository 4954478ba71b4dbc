"""OAuth API routes for linking an Instagram Business account"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.core.errors import ConnectorError
from app.core.security import get_session_id, require_session_id
from app.db.redis import get_session
from app.db.session import get_db
from app.api.deps import get_instagram_client
from app.services.instagram_client import InstagramClient
from app.services.oauth_service import (
    complete_instagram_link, discard_instagram_link, link_failure_redirect, link_success_redirect,
    start_instagram_link
)

router = APIRouter(prefix="/api/auth", tags=["oauth"])
instagram_logger = logging.getLogger("instagram")


@router.get("/instagram/login")
def auth_instagram_login(
    session_id: str = Depends(require_session_id),
    client: InstagramClient = Depends(get_instagram_client)
):
    """Redirect a signed-in user to Instagram Business Login"""
    return RedirectResponse(url=start_instagram_link(session_id, client), status_code=302)


@router.get("/instagram/callback")
async def auth_instagram_callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    error_description: Optional[str] = None,
    settings: Settings = Depends(get_settings),
    client: InstagramClient = Depends(get_instagram_client),
    db: Session = Depends(get_db)
):
    """Handle the Instagram authorization redirect

    Always answers with a redirect to the frontend: the dashboard on
    success, the login page with an error code otherwise.
    """
    instagram_logger.info("Received Instagram callback")

    session_id = get_session_id(request)
    user_id = get_session(session_id) if session_id else None
    if not user_id:
        instagram_logger.warning("Instagram callback without a valid session")
        if session_id:
            discard_instagram_link(session_id)
        return RedirectResponse(
            url=link_failure_redirect(settings, "unauthenticated", "Session expired. Please log in again.")
        )

    if error:
        message = error_description or error
        instagram_logger.error(f"Instagram OAuth error: {error} - {message}")
        discard_instagram_link(session_id)
        return RedirectResponse(url=link_failure_redirect(settings, "instagram_auth_failed", message))

    try:
        account = await complete_instagram_link(user_id, session_id, code, state, client, db)
    except ConnectorError as e:
        instagram_logger.error(f"Instagram link failed for user {user_id}: {e.message}")
        return RedirectResponse(url=link_failure_redirect(settings, e.code, e.message))

    return RedirectResponse(url=link_success_redirect(settings, account["account_type"]))
