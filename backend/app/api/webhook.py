"""Instagram webhook subscription verification"""
import logging
import secrets

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse

from app.core.config import Settings, get_settings

router = APIRouter(prefix="/api/webhook", tags=["webhook"])
instagram_logger = logging.getLogger("instagram")


def verify_subscription(mode: str, token: str, settings: Settings) -> bool:
    expected = settings.INSTAGRAM_WEBHOOK_VERIFY_TOKEN
    return mode == "subscribe" and bool(expected) and secrets.compare_digest(token.encode(), expected.encode())


@router.get("/instagram")
def instagram_webhook_verify(request: Request, settings: Settings = Depends(get_settings)):
    """Answer the hub.mode / hub.verify_token / hub.challenge handshake"""
    # Dotted parameter names, read straight from the query string
    mode = request.query_params.get("hub.mode")
    token = request.query_params.get("hub.verify_token")
    challenge = request.query_params.get("hub.challenge", "")

    if not mode or not token:
        return PlainTextResponse("Missing hub.mode or hub.verify_token", status_code=400)

    if not verify_subscription(mode, token, settings):
        instagram_logger.warning(f"Webhook verification failed (mode={mode})")
        return PlainTextResponse("Forbidden", status_code=403)

    instagram_logger.info("Webhook verified")
    return PlainTextResponse(challenge, status_code=200)
