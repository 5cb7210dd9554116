import time
from typing import Callable, List, Optional
from urllib.parse import parse_qs

import httpx
import pytest

from auth_proxy.oauth import (
    AuthInfo,
    InvalidTokenError,
    OAuthClientInformation,
    ProxyEndpoints,
    ProxyOAuthServerProvider,
)

UPSTREAM = "https://auth.example.com"


class RecordingTransport(httpx.MockTransport):
    """MockTransport that remembers every request it served."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.requests: List[httpx.Request] = []

        def _record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(_record)

    @property
    def last_form(self) -> dict:
        body = self.requests[-1].content.decode()
        return {k: v[0] for k, v in parse_qs(body, keep_blank_values=True).items()}


def json_response(status: int, body: Optional[dict] = None) -> Callable[[httpx.Request], httpx.Response]:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json=body if body is not None else {})

    return handler


@pytest.fixture
def client_record() -> OAuthClientInformation:
    return OAuthClientInformation(
        client_id="test-client",
        client_secret="test-secret",
        redirect_uris=["https://example.com/callback"],
    )


@pytest.fixture
def public_client() -> OAuthClientInformation:
    return OAuthClientInformation(client_id="public-client", redirect_uris=["https://public.example/cb"])


@pytest.fixture
def full_endpoints() -> ProxyEndpoints:
    return ProxyEndpoints(
        authorization_url=f"{UPSTREAM}/authorize",
        token_url=f"{UPSTREAM}/token",
        revocation_url=f"{UPSTREAM}/revoke",
        registration_url=f"{UPSTREAM}/register",
    )


@pytest.fixture
def verify_token():
    async def _verify(token: str) -> AuthInfo:
        if token == "valid-token":
            return AuthInfo(
                token=token,
                client_id="test-client",
                scopes=frozenset({"read", "write"}),
                expires_at=int(time.time()) + 3600,
            )
        raise InvalidTokenError("Invalid token")

    return _verify


@pytest.fixture
def get_client(client_record, public_client):
    clients = {c.client_id: c for c in (client_record, public_client)}

    async def _get(client_id: str):
        return clients.get(client_id)

    return _get


@pytest.fixture
def token_body() -> dict:
    return {
        "access_token": "new-access-token",
        "token_type": "Bearer",
        "expires_in": 3600,
        "refresh_token": "new-refresh-token",
    }


@pytest.fixture
def make_provider(full_endpoints, verify_token, get_client):
    def _make(
        handler: Callable[[httpx.Request], httpx.Response] = json_response(200),
        endpoints: Optional[ProxyEndpoints] = None,
        **kwargs,
    ):
        transport = RecordingTransport(handler)
        provider = ProxyOAuthServerProvider(
            endpoints or full_endpoints,
            verify_token=verify_token,
            get_client=get_client,
            http_client=httpx.AsyncClient(transport=transport),
            **kwargs,
        )
        return provider, transport

    return _make
