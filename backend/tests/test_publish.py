"""Publish workflow tests"""
from datetime import datetime, timedelta, timezone

import pytest

from app.core.errors import InvalidInput, NotConnected, TokenExpired, UpstreamError, UpstreamProtocolError
from app.db.helpers import upsert_connection
from app.services.publish_service import PublishService, validate_image_url
from app.services.token_refresh_service import TokenRefreshService
from fakes import REFRESH_PATH, media_path, media_publish_path

ACCOUNT = "17841400"


@pytest.fixture
def publisher(settings, instagram_client, db_session):
    refresher = TokenRefreshService(settings, instagram_client, db_session)
    return PublishService(settings, instagram_client, refresher)


@pytest.fixture
def linked_account(db_session, test_user):
    return upsert_connection(
        app_user_id=test_user.id,
        instagram_user_id=ACCOUNT,
        instagram_username="brandacct",
        access_token="IGQ-stored",
        expires_at=datetime.now(timezone.utc) + timedelta(days=50),
        db=db_session
    )


@pytest.mark.critical
class TestPublishWorkflow:
    @pytest.mark.asyncio
    async def test_publish_creates_then_publishes(self, publisher, instagram_api, linked_account):
        instagram_api.add(media_path(ACCOUNT), {"id": "17889455560051444"})
        instagram_api.add(media_publish_path(ACCOUNT), {"id": "17920238422030506"})

        result = await publisher.publish(ACCOUNT, "https://cdn.example.com/photo.jpg", "Launch day")

        assert result.creation_id == "17889455560051444"
        assert result.post_id == "17920238422030506"
        assert [r.url.path for r in instagram_api.requests] == [media_path(ACCOUNT), media_publish_path(ACCOUNT)]

        container_body = instagram_api.json(instagram_api.requests[0])
        assert container_body == {
            "image_url": "https://cdn.example.com/photo.jpg",
            "caption": "Launch day",
            "access_token": "IGQ-stored",
        }
        assert instagram_api.json(instagram_api.requests[1]) == {
            "creation_id": "17889455560051444",
            "access_token": "IGQ-stored",
        }

    @pytest.mark.asyncio
    async def test_caption_is_optional(self, publisher, instagram_api, linked_account):
        instagram_api.add(media_path(ACCOUNT), {"id": "c-1"})
        instagram_api.add(media_publish_path(ACCOUNT), {"id": "p-1"})

        await publisher.publish(ACCOUNT, "https://cdn.example.com/photo.jpg")

        assert "caption" not in instagram_api.json(instagram_api.requests[0])

    @pytest.mark.asyncio
    async def test_invalid_url_makes_no_outbound_call(self, publisher, instagram_api, linked_account):
        with pytest.raises(InvalidInput):
            await publisher.publish(ACCOUNT, "not a url")

        assert instagram_api.requests == []

    @pytest.mark.asyncio
    async def test_caption_over_limit_is_rejected(self, publisher, instagram_api, linked_account):
        with pytest.raises(InvalidInput) as exc_info:
            await publisher.publish(ACCOUNT, "https://cdn.example.com/photo.jpg", "x" * 2201)

        assert exc_info.value.payload["caption_length"] == 2201
        assert instagram_api.requests == []

    @pytest.mark.asyncio
    async def test_missing_creation_id_is_protocol_error(self, publisher, instagram_api, linked_account):
        instagram_api.add(media_path(ACCOUNT), {"status": "ok"})

        with pytest.raises(UpstreamProtocolError):
            await publisher.publish(ACCOUNT, "https://cdn.example.com/photo.jpg")

        assert instagram_api.calls(media_publish_path(ACCOUNT)) == []

    @pytest.mark.asyncio
    async def test_publish_step_failure_carries_creation_id(self, publisher, instagram_api, linked_account):
        instagram_api.add(media_path(ACCOUNT), {"id": "c-42"})
        instagram_api.add(
            media_publish_path(ACCOUNT),
            {"error": {"message": "Media ID is not available", "code": 9007}},
            status_code=400
        )

        with pytest.raises(UpstreamError) as exc_info:
            await publisher.publish(ACCOUNT, "https://cdn.example.com/photo.jpg")

        assert exc_info.value.payload["creation_id"] == "c-42"
        assert exc_info.value.to_dict()["creation_id"] == "c-42"

    @pytest.mark.asyncio
    async def test_missing_post_id_carries_creation_id(self, publisher, instagram_api, linked_account):
        instagram_api.add(media_path(ACCOUNT), {"id": "c-43"})
        instagram_api.add(media_publish_path(ACCOUNT), {})

        with pytest.raises(UpstreamProtocolError) as exc_info:
            await publisher.publish(ACCOUNT, "https://cdn.example.com/photo.jpg")

        assert exc_info.value.payload["creation_id"] == "c-43"

    @pytest.mark.asyncio
    async def test_revoked_token_subcode_is_token_expired(self, publisher, instagram_api, linked_account):
        instagram_api.add(
            media_path(ACCOUNT),
            {"error": {"message": "Error validating access token", "code": 190, "error_subcode": 463}},
            status_code=400
        )

        with pytest.raises(TokenExpired):
            await publisher.publish(ACCOUNT, "https://cdn.example.com/photo.jpg")

    @pytest.mark.asyncio
    async def test_expired_token_blocks_publishing(self, publisher, instagram_api, db_session, test_user):
        upsert_connection(
            app_user_id=test_user.id,
            instagram_user_id=ACCOUNT,
            instagram_username="brandacct",
            access_token="IGQ-old",
            expires_at=datetime.now(timezone.utc) - timedelta(hours=1),
            db=db_session
        )

        with pytest.raises(TokenExpired):
            await publisher.publish(ACCOUNT, "https://cdn.example.com/photo.jpg")

        assert instagram_api.requests == []

    @pytest.mark.asyncio
    async def test_expiring_token_is_refreshed_before_publishing(self, publisher, instagram_api, db_session, test_user):
        upsert_connection(
            app_user_id=test_user.id,
            instagram_user_id=ACCOUNT,
            instagram_username="brandacct",
            access_token="IGQ-old",
            expires_at=datetime.now(timezone.utc) + timedelta(days=1),
            db=db_session
        )
        instagram_api.add(REFRESH_PATH, {"access_token": "IGQ-fresh", "expires_in": 5184000})
        instagram_api.add(media_path(ACCOUNT), {"id": "c-1"})
        instagram_api.add(media_publish_path(ACCOUNT), {"id": "p-1"})

        await publisher.publish(ACCOUNT, "https://cdn.example.com/photo.jpg")

        assert instagram_api.json(instagram_api.calls(media_path(ACCOUNT))[0])["access_token"] == "IGQ-fresh"

    @pytest.mark.asyncio
    async def test_unknown_account_is_not_connected(self, publisher, instagram_api, db_session):
        with pytest.raises(NotConnected):
            await publisher.publish(ACCOUNT, "https://cdn.example.com/photo.jpg")

        assert instagram_api.requests == []


@pytest.mark.high
class TestImageUrlValidation:
    @pytest.mark.parametrize("image_url", [
        "https://cdn.example.com/photo.jpg",
        "http://images.example.org/a/b.png?size=large",
    ])
    def test_accepts_absolute_http_urls(self, image_url):
        assert validate_image_url(image_url) == image_url

    @pytest.mark.parametrize("image_url", [None, "", "not a url", "/relative/path.jpg", "ftp://example.com/a.jpg", "https://"])
    def test_rejects_everything_else(self, image_url):
        with pytest.raises(InvalidInput):
            validate_image_url(image_url)
