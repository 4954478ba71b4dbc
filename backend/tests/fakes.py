"""Scripted Instagram API for tests (served through httpx.MockTransport)"""
import json
from urllib.parse import parse_qs

import httpx


class FakeInstagram:
    """Scripted Instagram API behind httpx.MockTransport

    Responses are queued per path; the last queued response for a path is
    repeated. Every request is recorded for assertions.
    """

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, path: str, json_body=None, status_code: int = 200):
        self.routes.setdefault(path, []).append((status_code, json_body))
        return self

    def fail_transport(self, path: str):
        self.routes.setdefault(path, []).append((None, None))
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get(request.url.path)
        if not queue:
            return httpx.Response(404, json={"error": {"message": f"Unexpected call to {request.url.path}"}})

        status_code, body = queue.pop(0) if len(queue) > 1 else queue[0]
        if status_code is None:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(status_code, json=body)

    def calls(self, path: str):
        return [r for r in self.requests if r.url.path == path]

    @staticmethod
    def form(request: httpx.Request) -> dict:
        return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}

    @staticmethod
    def json(request: httpx.Request) -> dict:
        return json.loads(request.content)


# Provider paths used throughout the tests
TOKEN_PATH = "/oauth/access_token"
LONG_LIVED_PATH = "/access_token"
PROFILE_PATH = "/me"
REFRESH_PATH = "/refresh_access_token"


def media_path(instagram_user_id: str) -> str:
    return f"/v19.0/{instagram_user_id}/media"


def media_publish_path(instagram_user_id: str) -> str:
    return f"/v19.0/{instagram_user_id}/media_publish"


def script_successful_link(api: FakeInstagram, instagram_user_id: str = "17841400", username: str = "brandacct",
                           long_lived_token: str = "IGQ-long-lived", expires_in: int = 5183944,
                           account_type: str = "BUSINESS", wrapped: bool = True) -> FakeInstagram:
    """Queue the three provider responses of a successful code exchange"""
    token_entry = {"access_token": "IGQ-short-lived", "user_id": 9001, "permissions": "instagram_business_basic"}
    api.add(TOKEN_PATH, {"data": [token_entry]} if wrapped else token_entry)
    api.add(LONG_LIVED_PATH, {"access_token": long_lived_token, "token_type": "bearer", "expires_in": expires_in})
    api.add(PROFILE_PATH, {"id": instagram_user_id, "username": username, "account_type": account_type})
    return api
