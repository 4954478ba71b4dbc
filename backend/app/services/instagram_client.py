"""Instagram Business Login / Graph API client

Wraps every provider round trip the service makes: the three-legged
code -> short-lived -> long-lived token exchange, profile lookup,
long-lived token refresh, and the two content publishing calls.
Each call is a single httpx request with a bounded timeout; failures are
raised as typed ConnectorErrors and never retried here.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from app.core.config import INSTAGRAM_SCOPES, Settings
from app.core.errors import TokenExpired, UpstreamError, UpstreamProtocolError
from app.core.logging import mask_token
from app.core.otel import provider_span

instagram_logger = logging.getLogger("instagram")

# Graph API error signatures meaning the token itself is no longer usable
TOKEN_INVALID_ERROR_CODE = 190
TOKEN_INVALID_ERROR_SUBCODES = {463, 467}


@dataclass(frozen=True)
class ShortLivedToken:
    access_token: str
    user_id: str
    permissions: str


@dataclass(frozen=True)
class LongLivedToken:
    access_token: str
    expires_at: Optional[datetime]


@dataclass(frozen=True)
class InstagramProfile:
    id: str
    username: str
    account_type: Optional[str] = None


@dataclass(frozen=True)
class LinkedAccount:
    """Result of a completed code exchange, ready to be persisted"""
    instagram_user_id: str
    username: str
    access_token: str
    expires_at: Optional[datetime]
    account_type: Optional[str] = None


def expires_at_from(expires_in: Any, now: Optional[datetime] = None) -> Optional[datetime]:
    """Turn a provider `expires_in` (seconds) into an absolute UTC expiry"""
    if expires_in is None:
        return None
    try:
        seconds = int(expires_in)
    except (TypeError, ValueError):
        return None
    return (now or datetime.now(timezone.utc)) + timedelta(seconds=seconds)


def provider_error_body(response: httpx.Response) -> Dict[str, Any]:
    """Parse a provider error response into a dict, tolerating non-JSON bodies"""
    try:
        body = response.json()
    except ValueError:
        return {"message": response.text[:500]}
    if not isinstance(body, dict):
        return {"message": str(body)[:500]}
    return body


def provider_error_message(body: Dict[str, Any], fallback: str) -> str:
    error = body.get("error")
    if isinstance(error, dict) and error.get("message"):
        return error["message"]
    return body.get("error_message") or body.get("message") or (error if isinstance(error, str) else None) or fallback


def is_token_invalid_error(body: Dict[str, Any]) -> bool:
    """True when a Graph API error says the access token is expired or revoked"""
    error = body.get("error")
    if not isinstance(error, dict):
        return False

    def _as_int(value):
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    return (
        _as_int(error.get("code")) == TOKEN_INVALID_ERROR_CODE
        or _as_int(error.get("error_subcode")) in TOKEN_INVALID_ERROR_SUBCODES
    )


class InstagramClient:
    """Instagram API client bound to one Settings instance

    Args:
        settings: Application settings (credentials, endpoints, timeout)
        transport: Optional httpx transport (tests pass httpx.MockTransport)
    """

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self._transport = transport

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.settings.INSTAGRAM_HTTP_TIMEOUT,
            transport=self._transport
        )

    @property
    def is_configured(self) -> bool:
        return bool(
            self.settings.INSTAGRAM_CLIENT_ID
            and self.settings.INSTAGRAM_CLIENT_SECRET
            and self.settings.INSTAGRAM_REDIRECT_URI
        )

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    async def _send(self, client: httpx.AsyncClient, method: str, url: str, stage: str, **kwargs) -> httpx.Response:
        with provider_span(stage, method=method) as span:
            try:
                response = await client.request(method, url, **kwargs)
            except httpx.HTTPError as e:
                instagram_logger.error(f"Instagram request failed during {stage}: {type(e).__name__}: {e}")
                raise UpstreamError(
                    f"Could not reach Instagram during {stage}: {type(e).__name__}",
                    payload={"stage": stage}
                )
            span.set_attribute("http.status_code", response.status_code)
            return response

    def _raise_for_status(self, response: httpx.Response, stage: str, failure: str,
                          classify_token_errors: bool = False) -> None:
        if response.is_success:
            return

        body = provider_error_body(response)
        message = provider_error_message(body, f"Unknown error during {stage}")
        instagram_logger.error(f"{failure} (status {response.status_code}): {body}")

        payload = {"stage": stage, "provider_error": body}
        if classify_token_errors and is_token_invalid_error(body):
            raise TokenExpired(
                f"Instagram token is no longer valid. Please reconnect your account. ({message})",
                payload=payload
            )
        raise UpstreamError(f"{failure}: {message}", payload=payload, status_code=response.status_code)

    @staticmethod
    def _json(response: httpx.Response, stage: str) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            raise UpstreamProtocolError(f"Instagram returned a non-JSON body during {stage}", payload={"stage": stage})
        if not isinstance(data, dict):
            raise UpstreamProtocolError(f"Unexpected response format from Instagram during {stage}", payload={"stage": stage})
        return data

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def build_authorization_url(self, state: str) -> str:
        """Build the Instagram Business Login authorization URL"""
        params = {
            "client_id": self.settings.INSTAGRAM_CLIENT_ID,
            "redirect_uri": self.settings.INSTAGRAM_REDIRECT_URI,
            # Instagram expects comma-separated scopes
            "scope": ",".join(INSTAGRAM_SCOPES),
            "response_type": "code",
            "state": state,
        }
        return f"{self.settings.INSTAGRAM_AUTH_URL}?{urlencode(params)}"

    # ------------------------------------------------------------------
    # Token exchange
    # ------------------------------------------------------------------

    async def exchange_code(self, client: httpx.AsyncClient, code: str) -> ShortLivedToken:
        """Step 1: authorization code -> short-lived token"""
        stage = "token_exchange"
        response = await self._send(
            client, "POST", self.settings.INSTAGRAM_TOKEN_URL, stage,
            data={
                "client_id": self.settings.INSTAGRAM_CLIENT_ID,
                "client_secret": self.settings.INSTAGRAM_CLIENT_SECRET,
                "grant_type": "authorization_code",
                # Must match the URI registered with the app exactly
                "redirect_uri": self.settings.INSTAGRAM_REDIRECT_URI,
                "code": code,
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"}
        )
        self._raise_for_status(response, stage, "Failed to get short-lived access token")
        data = self._json(response, stage)

        # Business Login wraps the token in a one-element "data" list; older apps get it flat
        entry = data
        if isinstance(data.get("data"), list) and data["data"]:
            entry = data["data"][0]
        if not isinstance(entry, dict) or not entry.get("access_token") or not entry.get("user_id"):
            instagram_logger.error(f"Unexpected Instagram token response keys: {list(data.keys())}")
            raise UpstreamProtocolError("Unexpected response format from Instagram API", payload={"stage": stage})

        permissions = entry.get("permissions") or ""
        if isinstance(permissions, list):
            permissions = ",".join(permissions)

        instagram_logger.info(f"Short-lived token issued for Instagram user {entry['user_id']} - permissions: {permissions}")
        return ShortLivedToken(
            access_token=entry["access_token"],
            user_id=str(entry["user_id"]),
            permissions=permissions
        )

    async def exchange_for_long_lived_token(self, client: httpx.AsyncClient, short_lived_token: str) -> LongLivedToken:
        """Step 2: short-lived token -> long-lived token (about 60 days)"""
        stage = "long_lived_exchange"
        response = await self._send(
            client, "GET", f"{self.settings.INSTAGRAM_GRAPH_BASE}/access_token", stage,
            params={
                "grant_type": "ig_exchange_token",
                "client_secret": self.settings.INSTAGRAM_CLIENT_SECRET,
                "access_token": short_lived_token,
            }
        )
        self._raise_for_status(response, stage, "Failed to get long-lived access token")
        data = self._json(response, stage)

        access_token = data.get("access_token")
        if not access_token:
            raise UpstreamProtocolError("Long-lived token response did not include an access_token", payload={"stage": stage})

        expires_at = expires_at_from(data.get("expires_in"))
        instagram_logger.info(f"Exchanged for long-lived token (expires in {data.get('expires_in')}s)")
        return LongLivedToken(access_token=access_token, expires_at=expires_at)

    async def fetch_profile(self, client: httpx.AsyncClient, access_token: str) -> InstagramProfile:
        """Step 3: canonical business account id and username"""
        stage = "profile"
        response = await self._send(
            client, "GET", f"{self.settings.INSTAGRAM_GRAPH_BASE}/me", stage,
            params={"fields": "id,username,account_type", "access_token": access_token}
        )
        self._raise_for_status(response, stage, "Failed to get Instagram Business profile")
        data = self._json(response, stage)

        if not data.get("id"):
            raise UpstreamProtocolError("Instagram profile response did not include an id", payload={"stage": stage})

        return InstagramProfile(
            id=str(data["id"]),
            username=data.get("username") or "",
            account_type=data.get("account_type")
        )

    async def exchange_code_for_long_lived_token(self, code: str) -> LinkedAccount:
        """Run the full code -> long-lived token -> profile exchange

        Nothing is persisted here; the caller stores the result only after
        all three calls have succeeded.
        """
        async with self._http() as client:
            short_lived = await self.exchange_code(client, code)
            long_lived = await self.exchange_for_long_lived_token(client, short_lived.access_token)
            profile = await self.fetch_profile(client, long_lived.access_token)

        if profile.id != short_lived.user_id:
            instagram_logger.debug(
                f"Token step returned scoped id {short_lived.user_id}, profile returned business id {profile.id}"
            )
        instagram_logger.info(
            f"Instagram Business account @{profile.username} ({profile.id}, {profile.account_type or 'BUSINESS'}) "
            f"authorized - token {mask_token(long_lived.access_token)}"
        )
        return LinkedAccount(
            instagram_user_id=profile.id,
            username=profile.username,
            access_token=long_lived.access_token,
            expires_at=long_lived.expires_at,
            account_type=profile.account_type
        )

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh_long_lived_token(self, access_token: str) -> LongLivedToken:
        """Refresh a still-valid long-lived token"""
        stage = "refresh"
        async with self._http() as client:
            response = await self._send(
                client, "GET", f"{self.settings.INSTAGRAM_GRAPH_BASE}/refresh_access_token", stage,
                params={"grant_type": "ig_refresh_token", "access_token": access_token}
            )
        self._raise_for_status(response, stage, "Failed to refresh token")
        data = self._json(response, stage)

        new_token = data.get("access_token")
        if not new_token:
            raise UpstreamProtocolError("Refresh response did not include an access_token", payload={"stage": stage})
        return LongLivedToken(access_token=new_token, expires_at=expires_at_from(data.get("expires_in")))

    # ------------------------------------------------------------------
    # Content publishing
    # ------------------------------------------------------------------

    async def create_media_container(self, instagram_user_id: str, access_token: str,
                                     image_url: str, caption: Optional[str] = None) -> str:
        """Stage an image post; returns the container creation id"""
        stage = "create_container"
        payload = {"image_url": image_url, "access_token": access_token}
        if caption:
            payload["caption"] = caption

        instagram_logger.info(f"Creating media container for {instagram_user_id}: image_url={image_url}")
        async with self._http() as client:
            response = await self._send(
                client, "POST", f"{self.settings.instagram_api_base}/{instagram_user_id}/media", stage,
                json=payload
            )
        self._raise_for_status(response, stage, "Failed to create media container", classify_token_errors=True)
        data = self._json(response, stage)

        creation_id = data.get("id")
        if not creation_id:
            instagram_logger.error(f"Creation ID not found in container response: {data}")
            raise UpstreamProtocolError(
                "Media container created, but creation ID was not returned.",
                payload={"stage": stage}
            )
        return str(creation_id)

    async def publish_media_container(self, instagram_user_id: str, access_token: str, creation_id: str) -> str:
        """Publish a staged container; returns the Instagram media id"""
        stage = "publish"
        instagram_logger.info(f"Publishing media with creation ID: {creation_id}")
        async with self._http() as client:
            response = await self._send(
                client, "POST", f"{self.settings.instagram_api_base}/{instagram_user_id}/media_publish", stage,
                json={"creation_id": creation_id, "access_token": access_token}
            )
        self._raise_for_status(response, stage, "Failed to publish media", classify_token_errors=True)
        data = self._json(response, stage)

        post_id = data.get("id")
        if not post_id:
            raise UpstreamProtocolError(
                "Media published, but the post ID was not returned.",
                payload={"stage": stage}
            )
        return str(post_id)
