"""Middleware configuration for FastAPI application"""
import logging

from fastapi import Request
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import Settings
from app.core.security import get_session_id, log_api_access

security_logger = logging.getLogger("security")

DEV_FRONTEND_ORIGINS = ["http://localhost:3000", "http://127.0.0.1:3000"]


def get_allowed_origins(settings: Settings):
    """Origins allowed to call the API with credentials"""
    origins = [settings.FRONTEND_URL.rstrip("/")]
    origins += [o.strip().rstrip("/") for o in settings.CORS_EXTRA_ORIGINS.split(",") if o.strip()]
    if settings.ENVIRONMENT == "development":
        origins += DEV_FRONTEND_ORIGINS
    # Keep order, drop duplicates
    return list(dict.fromkeys(origins))


def setup_cors_middleware(app, settings: Settings):
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_allowed_origins(settings),
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )


async def access_log_middleware(request: Request, call_next):
    """Write one api_access line per request, including failed ones"""
    session_id = get_session_id(request)
    status_code = 500
    error = None

    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    except Exception as e:
        error = str(e)
        security_logger.error(f"Unhandled error while serving {request.url.path}: {error}", exc_info=True)
        raise
    finally:
        log_api_access(request, session_id, status_code, error)
