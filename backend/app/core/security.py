"""Security dependencies and access logging"""
import json
import logging
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import parse_qsl, urlencode

from fastapi import Depends, Request, Response

from app.core.config import Settings, get_settings
from app.core.errors import Unauthenticated
from app.db.redis import get_session

api_access_logger = logging.getLogger("api_access")

SESSION_COOKIE = "session_id"


def get_session_id(request: Request) -> Optional[str]:
    return request.cookies.get(SESSION_COOKIE)


def require_auth(request: Request) -> int:
    """Dependency: Require authentication, return user_id"""
    session_id = get_session_id(request)

    if not session_id:
        raise Unauthenticated("Not authenticated. Please log in.")

    user_id = get_session(session_id)
    if not user_id:
        raise Unauthenticated("Session expired. Please log in again.")

    return user_id


def require_session_id(request: Request, user_id: int = Depends(require_auth)) -> str:
    """Dependency: Require authentication, return the session id it rests on"""
    return get_session_id(request)


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


# Never written to the access log
SENSITIVE_QUERY_PARAMS = {"code", "state", "access_token", "hub.verify_token", "hub.challenge"}


def redacted_query(request: Request) -> Optional[str]:
    """Query string with OAuth codes, state and tokens masked"""
    if not request.url.query:
        return None
    pairs = parse_qsl(request.url.query, keep_blank_values=True)
    return urlencode([(k, "***" if k in SENSITIVE_QUERY_PARAMS else v) for k, v in pairs])


def log_api_access(
    request: Request,
    session_id: Optional[str] = None,
    status_code: int = 200,
    error: Optional[str] = None
):
    """One JSON line per request on the api_access logger"""
    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "method": request.method,
        "path": request.url.path,
        "query": redacted_query(request),
        "session": session_id[:8] if session_id else None,
        "client_ip": get_client_ip(request),
        "user_agent": request.headers.get("User-Agent"),
        "status_code": status_code,
        "error": error,
    }
    level = logging.WARNING if error or status_code >= 400 else logging.INFO
    api_access_logger.log(level, f"API Access: {json.dumps(entry)}")


def cookie_domain_for(host: str) -> Optional[str]:
    """Parent domain for the session cookie, None for localhost and IPs"""
    host = host.split(":")[0]
    labels = host.split(".")
    if len(labels) < 2 or host.replace(".", "").isdigit():
        return None
    return "." + ".".join(labels[-2:])


def set_auth_cookie(response: Response, session_id: str, request: Request, settings: Settings = None) -> None:
    """Attach the session cookie, shared with the frontend's parent domain"""
    settings = settings or get_settings()
    response.set_cookie(
        key=SESSION_COOKIE,
        value=session_id,
        domain=cookie_domain_for(request.headers.get("host", settings.DOMAIN)),
        httponly=True,
        secure=settings.ENVIRONMENT == "production",
        samesite="lax",
        max_age=settings.SESSION_TTL
    )


def clear_auth_cookie(response: Response, request: Request, settings: Settings = None) -> None:
    settings = settings or get_settings()
    response.delete_cookie(
        SESSION_COOKIE,
        domain=cookie_domain_for(request.headers.get("host", settings.DOMAIN)),
    )
