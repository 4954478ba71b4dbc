"""Error taxonomy for account linking, token lifecycle and publishing

Services raise these; the API layer turns them into a JSON payload
(`{"error": code, "detail": message, ...}`) or a login redirect.
"""
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse


class ConnectorError(Exception):
    """Base class for every typed failure in this service"""
    code = "error"
    status_code = 500

    def __init__(self, message: str, payload: Optional[Dict[str, Any]] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.payload = payload or {}
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "detail": self.message, **self.payload}


class InvalidInput(ConnectorError):
    """Malformed request data (user-correctable)"""
    code = "invalid_input"
    status_code = 400


class Unauthenticated(ConnectorError):
    """No valid application session"""
    code = "unauthenticated"
    status_code = 401


class TokenExpired(ConnectorError):
    """Stored credential is unusable; the user must re-link the account"""
    code = "token_expired"
    status_code = 401


class CsrfMismatch(ConnectorError):
    """OAuth state did not match the value issued with the redirect"""
    code = "csrf_mismatch"
    status_code = 403


class Forbidden(ConnectorError):
    """Account exists but belongs to another application user"""
    code = "forbidden"
    status_code = 403


class NotConnected(ConnectorError):
    """No linked Instagram account for this user / account id"""
    code = "not_connected"
    status_code = 404


class UpstreamError(ConnectorError):
    """Provider returned a non-2xx response (or could not be reached)"""
    code = "upstream_error"
    status_code = 502

    def __init__(self, message: str, payload: Optional[Dict[str, Any]] = None, status_code: Optional[int] = None):
        # Pass the provider status through; anything below 400 means transport trouble
        if status_code is not None and status_code < 400:
            status_code = 502
        super().__init__(message, payload=payload, status_code=status_code)


class UpstreamProtocolError(ConnectorError):
    """Provider returned 2xx but omitted a field we depend on"""
    code = "upstream_protocol_error"
    status_code = 502


async def connector_error_handler(request: Request, exc: ConnectorError) -> JSONResponse:
    """Exception handler registered on the FastAPI app"""
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
