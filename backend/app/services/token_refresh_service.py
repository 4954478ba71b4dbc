"""Token refresh engine for long-lived Instagram tokens

Tokens are refreshed lazily, when someone asks for a usable token:

- expired           -> TokenExpired, the account has to be linked again
- expiring soon     -> one refresh attempt, falling back to the stored token
- healthy / no expiry recorded -> stored token as is
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.core.config import Settings
from app.core.errors import ConnectorError, NotConnected, TokenExpired
from app.core.logging import mask_token
from app.core.metrics import token_refresh_counter
from app.db.helpers import as_utc, get_connection, get_connection_access_token, update_connection_token
from app.models.instagram_connection import InstagramConnection
from app.services.instagram_client import InstagramClient

instagram_logger = logging.getLogger("instagram")

HEALTHY = "healthy"
EXPIRING_SOON = "expiring_soon"
EXPIRED = "expired"


@dataclass(frozen=True)
class RefreshedToken:
    instagram_user_id: str
    access_token: str
    expires_at: Optional[datetime]


class TokenRefreshService:
    """Hands out usable tokens for stored Instagram connections"""

    def __init__(self, settings: Settings, client: InstagramClient, db: Session):
        self.settings = settings
        self.client = client
        self.db = db

    @property
    def refresh_window(self) -> timedelta:
        return timedelta(days=self.settings.INSTAGRAM_REFRESH_WINDOW_DAYS)

    def token_health(self, connection: InstagramConnection, now: Optional[datetime] = None) -> str:
        """Classify a connection's token as healthy, expiring_soon or expired"""
        expires_at = as_utc(connection.token_expires_at)
        if expires_at is None:
            return HEALTHY

        now = now or datetime.now(timezone.utc)
        if expires_at <= now:
            return EXPIRED
        if expires_at <= now + self.refresh_window:
            return EXPIRING_SOON
        return HEALTHY

    def _load(self, instagram_user_id: str) -> InstagramConnection:
        connection = get_connection(instagram_user_id, db=self.db)
        if not connection:
            raise NotConnected(
                "Instagram account is not connected",
                payload={"instagram_user_id": instagram_user_id}
            )
        return connection

    def _stored_token(self, connection: InstagramConnection) -> str:
        try:
            token = get_connection_access_token(connection)
        except ValueError as e:
            instagram_logger.error(f"Stored token for {connection.instagram_user_id} could not be decrypted: {e}")
            token = None
        if not token:
            raise TokenExpired(
                "Stored Instagram token is unusable. Please reconnect your account.",
                payload={"instagram_user_id": connection.instagram_user_id}
            )
        return token

    def _expired_error(self, connection: InstagramConnection) -> TokenExpired:
        return TokenExpired(
            "Instagram token has expired. Please reconnect your account.",
            payload={
                "instagram_user_id": connection.instagram_user_id,
                "expired_at": as_utc(connection.token_expires_at).isoformat(),
            }
        )

    async def get_valid_token(self, instagram_user_id: str) -> str:
        """Return a token that can be used right now for this account

        Raises:
            NotConnected: No connection row for the account
            TokenExpired: Token already expired (no provider call is made)
        """
        connection = self._load(instagram_user_id)
        health = self.token_health(connection)

        if health == EXPIRED:
            instagram_logger.warning(f"Token for Instagram account {instagram_user_id} has expired")
            raise self._expired_error(connection)

        stored_token = self._stored_token(connection)
        if health == HEALTHY:
            return stored_token

        instagram_logger.info(
            f"Token for Instagram account {instagram_user_id} expires at "
            f"{as_utc(connection.token_expires_at).isoformat()}, refreshing"
        )
        try:
            refreshed = await self.refresh(instagram_user_id)
        except ConnectorError as e:
            # Still valid for now; the next read tries again
            instagram_logger.warning(
                f"Token refresh failed for Instagram account {instagram_user_id}, "
                f"using current token: {e.message}"
            )
            return stored_token
        return refreshed.access_token

    async def refresh(self, instagram_user_id: str) -> RefreshedToken:
        """Exchange the stored long-lived token for a new one and persist it

        Raises:
            NotConnected: No connection row for the account
            TokenExpired: Token already expired (no provider call is made)
            UpstreamError: Provider rejected the refresh; stored row is untouched
        """
        connection = self._load(instagram_user_id)
        if self.token_health(connection) == EXPIRED:
            token_refresh_counter.labels(result="expired").inc()
            raise self._expired_error(connection)

        current_token = self._stored_token(connection)
        try:
            new_token = await self.client.refresh_long_lived_token(current_token)
        except ConnectorError:
            token_refresh_counter.labels(result="failure").inc()
            raise

        update_connection_token(
            instagram_user_id,
            access_token=new_token.access_token,
            expires_at=new_token.expires_at,
            db=self.db
        )
        token_refresh_counter.labels(result="success").inc()

        instagram_logger.info(
            f"Refreshed token for Instagram account {instagram_user_id}: {mask_token(new_token.access_token)}, "
            f"expires at {new_token.expires_at.isoformat() if new_token.expires_at else 'unknown'}"
        )
        return RefreshedToken(
            instagram_user_id=instagram_user_id,
            access_token=new_token.access_token,
            expires_at=new_token.expires_at
        )

    def token_status(self, connection: InstagramConnection, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Expiry summary for a connection (no provider call)"""
        now = now or datetime.now(timezone.utc)
        expires_at = as_utc(connection.token_expires_at)

        days_until_expiry = None
        if expires_at is not None:
            days_until_expiry = math.ceil((expires_at - now) / timedelta(days=1))

        return {
            "instagram_user_id": connection.instagram_user_id,
            "instagram_username": connection.instagram_username,
            "expires_at": expires_at.isoformat() if expires_at else None,
            "is_expired": self.token_health(connection, now) == EXPIRED,
            "days_until_expiry": days_until_expiry,
            "needs_refresh": days_until_expiry is not None and days_until_expiry <= self.settings.INSTAGRAM_REFRESH_WINDOW_DAYS,
        }
