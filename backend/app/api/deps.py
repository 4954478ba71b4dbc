"""FastAPI dependencies wiring settings into the Instagram services"""
from fastapi import Depends
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.db.session import get_db
from app.services.instagram_client import InstagramClient
from app.services.publish_service import PublishService
from app.services.token_refresh_service import TokenRefreshService


def get_instagram_client(settings: Settings = Depends(get_settings)) -> InstagramClient:
    return InstagramClient(settings)


def get_token_refresher(
    settings: Settings = Depends(get_settings),
    client: InstagramClient = Depends(get_instagram_client),
    db: Session = Depends(get_db)
) -> TokenRefreshService:
    return TokenRefreshService(settings, client, db)


def get_publish_service(
    settings: Settings = Depends(get_settings),
    client: InstagramClient = Depends(get_instagram_client),
    refresher: TokenRefreshService = Depends(get_token_refresher)
) -> PublishService:
    return PublishService(settings, client, refresher)
