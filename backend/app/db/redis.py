"""Redis client for session management and OAuth state"""
import logging
from typing import Optional

import redis

from app.core.config import get_settings

logger = logging.getLogger(__name__)

# Lazy initialization - no connection at import time
_client = None


def get_redis_client():
    """Get or create Redis client (lazy initialization)

    This prevents connection attempts during import, allowing mocks to be applied first.
    """
    global _client
    if _client is None:
        _client = redis.from_url(get_settings().REDIS_URL, decode_responses=True)
    return _client


# ============================================================================
# APPLICATION SESSIONS
# ============================================================================

def set_session(session_id: str, user_id: int) -> None:
    """Store session in Redis"""
    key = f"session:{session_id}"
    get_redis_client().setex(key, get_settings().SESSION_TTL, user_id)


def get_session(session_id: str) -> Optional[int]:
    """Get user_id from session"""
    key = f"session:{session_id}"
    user_id = get_redis_client().get(key)
    return int(user_id) if user_id else None


def delete_session(session_id: str) -> None:
    """Delete session from Redis"""
    key = f"session:{session_id}"
    get_redis_client().delete(key)


# ============================================================================
# OAUTH STATE (single-use CSRF values)
# ============================================================================

def _oauth_state_key(flow: str, owner: str) -> str:
    # Prefix with environment to prevent collisions between dev/prod
    return f"{get_settings().ENVIRONMENT}:{flow}_state:{owner}"


def put_oauth_state(flow: str, owner: str, value: str, ttl: Optional[int] = None) -> None:
    """Store the state issued with an authorization redirect

    Args:
        flow: OAuth flow name (e.g. "instagram_link", "google_login")
        owner: What the state is bound to (session id, or the state itself)
        value: State value to compare against on callback
        ttl: Seconds before the state lapses (default OAUTH_STATE_TTL)
    """
    get_redis_client().setex(
        _oauth_state_key(flow, owner),
        ttl or get_settings().OAUTH_STATE_TTL,
        value
    )


def get_oauth_state(flow: str, owner: str) -> Optional[str]:
    """Read a stored OAuth state without consuming it"""
    return get_redis_client().get(_oauth_state_key(flow, owner))


def clear_oauth_state(flow: str, owner: str) -> None:
    """Discard a stored OAuth state"""
    get_redis_client().delete(_oauth_state_key(flow, owner))


def pop_oauth_state(flow: str, owner: str) -> Optional[str]:
    """Read and delete a stored OAuth state in one round trip (single use)"""
    key = _oauth_state_key(flow, owner)
    pipe = get_redis_client().pipeline()
    pipe.get(key)
    pipe.delete(key)
    value, _ = pipe.execute()
    return value
