"""Database helper functions for Instagram connections (the credential store)"""
import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.db.session import SessionLocal
from app.models.instagram_connection import InstagramConnection
from app.models.user import User
from app.utils.encryption import decrypt, encrypt

logger = logging.getLogger(__name__)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a stored timestamp to an aware UTC datetime

    SQLite hands DateTime(timezone=True) columns back naive; everything we
    write is UTC, so a naive value is read as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _dialect_insert(db: Session):
    """Pick the INSERT construct that supports ON CONFLICT for the bound dialect"""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise RuntimeError(f"Unsupported database dialect for upsert: {dialect}")
    return insert


def get_user_by_id(user_id: int, db: Session) -> Optional[User]:
    """Get user by ID"""
    return db.query(User).filter(User.id == user_id).first()


def get_or_create_user(email: str, name: Optional[str] = None, db: Session = None) -> tuple[User, bool]:
    """Get or create an application user by email (primary login)

    Returns:
        Tuple of (user, is_new)
    """
    user = db.query(User).filter(User.email == email).first()
    if user:
        if name and user.name != name:
            user.name = name
            db.commit()
        return user, False

    user = User(email=email, name=name)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user, True


def get_connection(instagram_user_id: str, db: Session = None) -> Optional[InstagramConnection]:
    """Get the connection row for an Instagram account

    Args:
        instagram_user_id: Provider-assigned Instagram account ID
        db: Database session (if None, creates its own)
    """
    should_close = False
    if db is None:
        db = SessionLocal()
        should_close = True

    try:
        return db.query(InstagramConnection).filter(
            InstagramConnection.instagram_user_id == instagram_user_id
        ).first()
    finally:
        if should_close:
            db.close()


def get_user_connections(user_id: int, db: Session = None) -> List[InstagramConnection]:
    """Get all Instagram connections owned by an application user, oldest first"""
    should_close = False
    if db is None:
        db = SessionLocal()
        should_close = True

    try:
        return db.query(InstagramConnection).filter(
            InstagramConnection.app_user_id == user_id
        ).order_by(InstagramConnection.created_at).all()
    finally:
        if should_close:
            db.close()


def get_connection_access_token(connection: InstagramConnection) -> str:
    """Decrypt the stored access token of a connection

    Raises:
        ValueError: If the stored value cannot be decrypted
    """
    return decrypt(connection.access_token)


def upsert_connection(
    app_user_id: int,
    instagram_user_id: str,
    instagram_username: str,
    access_token: str,
    expires_at: Optional[datetime],
    account_type: Optional[str] = None,
    db: Session = None
) -> InstagramConnection:
    """Insert or take over the connection row for an Instagram account

    A single INSERT ... ON CONFLICT (instagram_user_id) DO UPDATE, so a
    re-link by any application user rewrites the existing row instead of
    adding a second one.
    """
    should_close = False
    if db is None:
        db = SessionLocal()
        should_close = True

    try:
        insert = _dialect_insert(db)
        now = datetime.now(timezone.utc)
        encrypted_access = encrypt(access_token)

        stmt = insert(InstagramConnection).values(
            id=str(uuid.uuid4()),
            app_user_id=app_user_id,
            instagram_user_id=instagram_user_id,
            instagram_username=instagram_username,
            account_type=account_type,
            access_token=encrypted_access,
            token_expires_at=expires_at,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["instagram_user_id"],
            set_={
                "app_user_id": stmt.excluded.app_user_id,
                "instagram_username": stmt.excluded.instagram_username,
                "account_type": stmt.excluded.account_type,
                "access_token": stmt.excluded.access_token,
                "token_expires_at": stmt.excluded.token_expires_at,
                "updated_at": stmt.excluded.updated_at,
            }
        )
        db.execute(stmt)
        db.commit()

        connection = db.query(InstagramConnection).filter(
            InstagramConnection.instagram_user_id == instagram_user_id
        ).first()
        logger.info(f"Saved Instagram connection {instagram_user_id} (@{instagram_username}) for user {app_user_id}")
        return connection
    finally:
        if should_close:
            db.close()


def update_connection_token(
    instagram_user_id: str,
    access_token: str,
    expires_at: Optional[datetime],
    db: Session = None
) -> bool:
    """Replace the token and expiry of an existing connection in one UPDATE

    Returns:
        True if a row was updated, False if the connection does not exist
    """
    should_close = False
    if db is None:
        db = SessionLocal()
        should_close = True

    try:
        result = db.execute(
            update(InstagramConnection)
            .where(InstagramConnection.instagram_user_id == instagram_user_id)
            .values(
                access_token=encrypt(access_token),
                token_expires_at=expires_at,
                updated_at=datetime.now(timezone.utc),
            )
        )
        db.commit()
        return result.rowcount > 0
    finally:
        if should_close:
            db.close()
