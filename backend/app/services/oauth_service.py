"""OAuth service - Instagram Business account linking

The application user is already signed in (Google login). Linking adds an
Instagram Business account to that user:

1. start_instagram_link() issues a single-use state bound to the session
   and returns the provider authorization URL
2. complete_instagram_link() consumes the state, exchanges the code for a
   long-lived token and stores the connection
"""
import logging
import secrets
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from sqlalchemy.orm import Session

from app.core.config import Settings
from app.core.errors import ConnectorError, CsrfMismatch, InvalidInput
from app.core.metrics import instagram_link_attempts_counter
from app.db.helpers import upsert_connection
from app.db.redis import clear_oauth_state, pop_oauth_state, put_oauth_state
from app.services.instagram_client import InstagramClient

instagram_logger = logging.getLogger("instagram")

INSTAGRAM_LINK_FLOW = "instagram_link"


def start_instagram_link(session_id: str, client: InstagramClient) -> str:
    """Issue a state for this session and build the authorization URL"""
    if not client.is_configured:
        raise InvalidInput(
            "Instagram OAuth not configured. Set INSTAGRAM_CLIENT_ID, "
            "INSTAGRAM_CLIENT_SECRET, and INSTAGRAM_REDIRECT_URI environment variables."
        )

    state = secrets.token_hex(16)
    put_oauth_state(INSTAGRAM_LINK_FLOW, session_id, state)

    instagram_logger.info(f"Initiating Instagram Business Login (session: {session_id[:16]}...)")
    instagram_logger.debug(f"Redirect URI: {client.settings.INSTAGRAM_REDIRECT_URI}")
    return client.build_authorization_url(state)


async def complete_instagram_link(
    user_id: int,
    session_id: str,
    code: Optional[str],
    state: Optional[str],
    client: InstagramClient,
    db: Session
) -> Dict[str, Any]:
    """Finish the link: verify state, exchange the code, store the connection

    The stored state is removed before anything else, so a callback can
    never be replayed whatever its outcome.

    Raises:
        InvalidInput: code or state missing
        CsrfMismatch: no stored state, or it differs from the returned one
        UpstreamError / UpstreamProtocolError: token exchange failed
    """
    expected_state = pop_oauth_state(INSTAGRAM_LINK_FLOW, session_id)

    try:
        if not code or not state:
            raise InvalidInput("Missing code or state parameter")

        if not expected_state or not secrets.compare_digest(expected_state.encode(), state.encode()):
            instagram_logger.warning(f"Instagram callback state mismatch for user {user_id}")
            raise CsrfMismatch("Invalid state parameter. Please try connecting again.")

        account = await client.exchange_code_for_long_lived_token(code)
    except ConnectorError:
        instagram_link_attempts_counter.labels(status="failure").inc()
        raise

    connection = upsert_connection(
        app_user_id=user_id,
        instagram_user_id=account.instagram_user_id,
        instagram_username=account.username,
        access_token=account.access_token,
        expires_at=account.expires_at,
        account_type=account.account_type,
        db=db
    )
    instagram_link_attempts_counter.labels(status="success").inc()
    instagram_logger.info(
        f"Linked Instagram account @{account.username} ({account.instagram_user_id}) to user {user_id}"
    )

    return {
        "instagram_user_id": connection.instagram_user_id,
        "instagram_username": connection.instagram_username,
        "account_type": connection.account_type,
    }


def discard_instagram_link(session_id: str) -> None:
    """Drop the pending state after the provider reported a denial"""
    clear_oauth_state(INSTAGRAM_LINK_FLOW, session_id)
    instagram_link_attempts_counter.labels(status="failure").inc()


def link_success_redirect(settings: Settings, account_type: Optional[str]) -> str:
    params = {"instagram_business_linked": "true", "account_type": account_type or "BUSINESS"}
    return f"{settings.FRONTEND_URL}/dashboard?{urlencode(params)}"


def link_failure_redirect(settings: Settings, error_code: str, message: str) -> str:
    params = {"error": error_code, "message": message}
    return f"{settings.FRONTEND_URL}/login?{urlencode(params)}"
