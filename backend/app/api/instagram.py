"""Instagram account API routes - connections, token status/refresh, publishing"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_publish_service, get_token_refresher
from app.core.errors import Forbidden, InvalidInput, NotConnected
from app.core.security import require_auth
from app.db.helpers import get_connection, get_user_connections
from app.db.session import get_db
from app.models.instagram_connection import InstagramConnection
from app.schemas.instagram import InstagramAccount, PublishRequest, RefreshTokenRequest
from app.services.publish_service import PublishService
from app.services.token_refresh_service import TokenRefreshService

router = APIRouter(prefix="/api/instagram", tags=["instagram"])
security_logger = logging.getLogger("security")


def get_owned_connection(instagram_user_id: str, user_id: int, db: Session) -> InstagramConnection:
    """Load a connection and make sure the caller owns it"""
    connection = get_connection(instagram_user_id, db=db)
    if not connection:
        raise NotConnected(
            "Instagram account is not connected",
            payload={"instagram_user_id": instagram_user_id}
        )
    if connection.app_user_id != user_id:
        security_logger.warning(
            f"User {user_id} tried to use Instagram account {instagram_user_id} owned by another user"
        )
        raise Forbidden("This Instagram account is linked to a different user")
    return connection


def require_instagram_user_id(instagram_user_id: Optional[str]) -> str:
    if not instagram_user_id:
        raise InvalidInput("Instagram User ID is required")
    return instagram_user_id


def resolve_publish_account(instagram_user_id: Optional[str], user_id: int, db: Session) -> str:
    """Pick the account to publish to; an omitted id means the caller's only account"""
    if instagram_user_id:
        return get_owned_connection(instagram_user_id, user_id, db).instagram_user_id

    connections = get_user_connections(user_id, db=db)
    if not connections:
        raise NotConnected("No Instagram account connected")
    if len(connections) > 1:
        raise InvalidInput(
            "Several Instagram accounts are connected; specify instagram_user_id",
            payload={"instagram_user_ids": [c.instagram_user_id for c in connections]}
        )
    return connections[0].instagram_user_id


@router.get("/accounts", response_model=List[InstagramAccount])
def list_accounts(
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db),
    refresher: TokenRefreshService = Depends(get_token_refresher)
):
    """List the caller's linked Instagram accounts with token expiry"""
    return [
        {**refresher.token_status(connection), "account_type": connection.account_type}
        for connection in get_user_connections(user_id, db=db)
    ]


@router.get("/refresh-token")
def get_token_status(
    instagram_user_id: Optional[str] = None,
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db),
    refresher: TokenRefreshService = Depends(get_token_refresher)
):
    """Report when an account's token expires and whether it should be refreshed"""
    instagram_user_id = require_instagram_user_id(instagram_user_id)
    connection = get_owned_connection(instagram_user_id, user_id, db)
    return refresher.token_status(connection)


@router.post("/refresh-token")
async def refresh_token(
    request_data: RefreshTokenRequest,
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db),
    refresher: TokenRefreshService = Depends(get_token_refresher)
):
    """Refresh an account's long-lived token now"""
    instagram_user_id = require_instagram_user_id(request_data.instagram_user_id)
    get_owned_connection(instagram_user_id, user_id, db)
    refreshed = await refresher.refresh(instagram_user_id)
    return {
        "success": True,
        "instagram_user_id": refreshed.instagram_user_id,
        "expires_at": refreshed.expires_at.isoformat() if refreshed.expires_at else None,
    }


@router.post("/post")
async def publish_post(
    request_data: PublishRequest,
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db),
    publisher: PublishService = Depends(get_publish_service)
):
    """Publish an image post to one of the caller's accounts"""
    instagram_user_id = resolve_publish_account(request_data.instagram_user_id, user_id, db)
    result = await publisher.publish(instagram_user_id, request_data.image_url, request_data.caption)
    return {
        "success": True,
        "instagram_user_id": instagram_user_id,
        "post_id": result.post_id,
        "creation_id": result.creation_id,
    }
