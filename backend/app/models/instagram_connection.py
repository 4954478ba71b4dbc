"""InstagramConnection model"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from app.models.base import Base


def _new_connection_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InstagramConnection(Base):
    """One linked Instagram Business account and its current long-lived token (encrypted)"""
    __tablename__ = "instagram_connections"

    id = Column(String(36), primary_key=True, default=_new_connection_id)
    app_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # Provider-assigned account id; re-linking under another user takes the row over
    instagram_user_id = Column(String(255), nullable=False, unique=True, index=True)
    instagram_username = Column(String(255), nullable=False)
    account_type = Column(String(32), nullable=True)  # BUSINESS, CREATOR
    access_token = Column(Text, nullable=False)  # Encrypted
    token_expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    # Relationship
    user = relationship("User", back_populates="instagram_connections")
