"""Pydantic schemas for Instagram account operations"""
from typing import Optional

from pydantic import BaseModel


class RefreshTokenRequest(BaseModel):
    """Manual token refresh request"""
    instagram_user_id: Optional[str] = None


class PublishRequest(BaseModel):
    """Image post request

    image_url is checked by the publish service so a malformed value
    produces the same invalid_input error as any other bad input.
    """
    instagram_user_id: Optional[str] = None
    image_url: Optional[str] = None
    caption: Optional[str] = None


class InstagramAccount(BaseModel):
    instagram_user_id: str
    instagram_username: str
    account_type: Optional[str] = None
    expires_at: Optional[str] = None
    is_expired: bool
    days_until_expiry: Optional[int] = None
    needs_refresh: bool
