"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from app.models.base import Base
from app.models.user import User
from app.models.instagram_connection import InstagramConnection

# Export all for convenience
__all__ = ["Base", "User", "InstagramConnection"]
