"""Publish an image post to a linked Instagram Business account

Two provider calls: create a media container from a public image URL,
then publish that container. Nothing is retried; a failure in the second
step reports the container id so the caller can see what was staged.
"""
import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

from app.core.config import INSTAGRAM_CAPTION_MAX_LENGTH, Settings
from app.core.errors import ConnectorError, InvalidInput
from app.core.metrics import publish_counter
from app.services.instagram_client import InstagramClient
from app.services.token_refresh_service import TokenRefreshService

instagram_logger = logging.getLogger("instagram")


@dataclass(frozen=True)
class PublishResult:
    post_id: str
    creation_id: str


def validate_image_url(image_url: Optional[str]) -> str:
    """Accept only absolute http(s) URLs with a host"""
    if not image_url or not isinstance(image_url, str):
        raise InvalidInput("image_url is required")

    parsed = urlparse(image_url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidInput("Invalid image URL format", payload={"image_url": image_url})
    return image_url.strip()


def validate_caption(caption: Optional[str]) -> Optional[str]:
    if caption is not None and len(caption) > INSTAGRAM_CAPTION_MAX_LENGTH:
        raise InvalidInput(
            f"Caption exceeds Instagram's {INSTAGRAM_CAPTION_MAX_LENGTH} character limit",
            payload={"caption_length": len(caption)}
        )
    return caption


class PublishService:
    def __init__(self, settings: Settings, client: InstagramClient, refresher: TokenRefreshService):
        self.settings = settings
        self.client = client
        self.refresher = refresher

    async def publish(self, instagram_user_id: str, image_url: str, caption: Optional[str] = None) -> PublishResult:
        """Create and publish a single-image post

        Raises:
            InvalidInput: Bad image URL or caption (no provider call is made)
            NotConnected / TokenExpired: From the token refresh engine or provider
            UpstreamError / UpstreamProtocolError: Provider failures
        """
        image_url = validate_image_url(image_url)
        caption = validate_caption(caption)

        access_token = await self.refresher.get_valid_token(instagram_user_id)

        try:
            creation_id = await self.client.create_media_container(
                instagram_user_id, access_token, image_url, caption
            )
        except ConnectorError as e:
            publish_counter.labels(status="failure").inc()
            instagram_logger.error(f"Media container creation failed for {instagram_user_id}: {e.message}")
            raise

        try:
            post_id = await self.client.publish_media_container(instagram_user_id, access_token, creation_id)
        except ConnectorError as e:
            publish_counter.labels(status="failure").inc()
            e.payload["creation_id"] = creation_id
            instagram_logger.error(
                f"Publishing container {creation_id} failed for {instagram_user_id}: {e.message}"
            )
            raise

        publish_counter.labels(status="success").inc()
        instagram_logger.info(f"Published Instagram post {post_id} for {instagram_user_id} (container {creation_id})")
        return PublishResult(post_id=post_id, creation_id=creation_id)
