"""
Pytest configuration for oidc_session. Fixed OAuth settings, and a fake token endpoint behind httpx.MockTransport.
"""
import os
from urllib.parse import parse_qsl

import httpx
import jwt
import pytest

os.environ.update(
    {
        "OAUTH_AUTHORIZATION_ENDPOINT": "https://as.example/oauth2/authorize",
        "OAUTH_TOKEN_ENDPOINT": "https://as.example/oauth2/token",
        "OAUTH_END_SESSION_ENDPOINT": "https://as.example/connect/logout",
        "OAUTH_CLIENT_ID": "test-client",
        "OAUTH_REDIRECT_URI": "http://127.0.0.1:8000/callback",
        "OAUTH_POST_LOGOUT_REDIRECT_URI": "http://127.0.0.1:8000/logged-out",
        "OAUTH_SCOPE": "openid profile email",
    }
)
# Public client by default; confidential tests add the secret explicitly
for _name in ("OAUTH_CLIENT_SECRET", "OAUTH_CLIENT_AUTH_METHOD", "OAUTH_SESSION_TRUST", "OAUTH_COOKIE_SECURE", "OAUTH_ENV"):
    os.environ.pop(_name, None)

TOKEN_ENDPOINT = "https://as.example/oauth2/token"
REDIRECT_URI = "http://127.0.0.1:8000/callback"
SIGNING_KEY = "test-signing-key-not-verified-by-the-client-0123456789"


class FakeTokenEndpoint:
    """Queue of canned replies; records every request it receives."""

    def __init__(self):
        self.replies: list = []
        self.requests: list[httpx.Request] = []

    def reply(self, status: int = 200, body=None) -> None:
        self.replies.append((status, body))

    def fail(self, exc: Exception) -> None:
        self.replies.append(exc)

    @property
    def calls(self) -> int:
        return len(self.requests)

    def form(self, index: int = -1) -> dict:
        return dict(parse_qsl(self.requests[index].content.decode("utf-8")))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.replies:
            return httpx.Response(500, json={"error": "server_error"})
        item = self.replies.pop(0)
        if isinstance(item, Exception):
            raise item
        status, body = item
        if isinstance(body, (dict, list)):
            return httpx.Response(status, json=body)
        return httpx.Response(status, content=body or b"")


@pytest.fixture
def token_endpoint():
    return FakeTokenEndpoint()


@pytest.fixture
def exchange_client(token_endpoint):
    from oidc_session.token_exchange import TokenExchangeClient

    http = httpx.Client(transport=httpx.MockTransport(token_endpoint))
    client = TokenExchangeClient(TOKEN_ENDPOINT, redirect_uri=REDIRECT_URI, http_client=http)
    yield client
    http.close()


@pytest.fixture
def settings():
    from oidc_session.config import load_settings

    return load_settings()


@pytest.fixture
def make_id_token():
    """Build a signed-looking ID token; the client never checks the signature."""

    def _make(**claims) -> str:
        token = jwt.encode(claims, SIGNING_KEY, algorithm="HS256")
        if isinstance(token, bytes):
            token = token.decode("utf-8")
        return token

    return _make
