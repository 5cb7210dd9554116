import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from auth_proxy.oauth import (
    AuthorizationParams,
    ConfigurationError,
    OAuthClientInformation,
    OAuthClientMetadata,
    ProxyEndpoints,
    RedirectCollector,
    TokenRevocationRequest,
    UpstreamError,
    UpstreamTimeoutError,
    ValidationError,
)

from conftest import UPSTREAM, RecordingTransport, json_response


def _query(url: str) -> dict:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


class TestAuthorize:
    async def test_redirects_to_upstream_with_pkce_params(self, make_provider):
        provider, transport = make_provider(
            endpoints=ProxyEndpoints(
                authorization_url="https://a.example/authorize",
                token_url="https://a.example/token",
            )
        )
        client = OAuthClientInformation(client_id="c1", redirect_uris=["https://cb"])
        sink = RedirectCollector()

        await provider.authorize(
            client,
            AuthorizationParams(
                redirect_uri="https://cb",
                code_challenge="abc",
                state="xyz",
                scopes=["read", "write"],
            ),
            sink,
        )

        parsed = urlparse(sink.url)
        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == "https://a.example/authorize"
        assert _query(sink.url) == {
            "client_id": "c1",
            "response_type": "code",
            "redirect_uri": "https://cb",
            "code_challenge": "abc",
            "code_challenge_method": "S256",
            "state": "xyz",
            "scope": "read write",
        }
        assert "redirect_uri=https%3A%2F%2Fcb" in sink.url
        assert "scope=read+write" in sink.url
        assert transport.requests == []

    async def test_omits_state_and_scope_when_absent(self, make_provider, client_record):
        provider, _ = make_provider()
        sink = RedirectCollector()

        await provider.authorize(
            client_record,
            AuthorizationParams(redirect_uri="https://example.com/callback", code_challenge="abc"),
            sink,
        )

        query = _query(sink.url)
        assert "state" not in query
        assert "scope" not in query

    async def test_keeps_existing_upstream_query(self, make_provider, client_record):
        provider, _ = make_provider(
            endpoints=ProxyEndpoints(
                authorization_url=f"{UPSTREAM}/authorize?audience=api",
                token_url=f"{UPSTREAM}/token",
            )
        )
        sink = RedirectCollector()

        await provider.authorize(
            client_record,
            AuthorizationParams(redirect_uri="https://example.com/callback", code_challenge="abc"),
            sink,
        )

        query = _query(sink.url)
        assert query["audience"] == "api"
        assert query["client_id"] == "test-client"

    async def test_missing_authorization_url_fails_before_network(self, make_provider, client_record):
        provider, transport = make_provider(endpoints=ProxyEndpoints(token_url=f"{UPSTREAM}/token"))
        sink = RedirectCollector()

        with pytest.raises(ConfigurationError):
            await provider.authorize(
                client_record,
                AuthorizationParams(redirect_uri="https://example.com/callback", code_challenge="abc"),
                sink,
            )

        assert sink.url is None
        assert transport.requests == []


class TestTokenExchange:
    async def test_posts_form_and_returns_token(self, make_provider, client_record, token_body):
        provider, transport = make_provider(json_response(200, token_body))

        token = await provider.exchange_authorization_code(client_record, "auth-code", "verifier-123")

        assert token.access_token == "new-access-token"
        assert token.refresh_token == "new-refresh-token"
        request = transport.requests[0]
        assert request.method == "POST"
        assert str(request.url) == f"{UPSTREAM}/token"
        assert request.headers["content-type"] == "application/x-www-form-urlencoded"
        assert transport.last_form == {
            "grant_type": "authorization_code",
            "client_id": "test-client",
            "client_secret": "test-secret",
            "code": "auth-code",
            "code_verifier": "verifier-123",
        }

    async def test_verifier_not_forwarded_when_disabled(self, make_provider, client_record, token_body):
        provider, transport = make_provider(json_response(200, token_body), forward_code_verifier=False)

        await provider.exchange_authorization_code(client_record, "auth-code", "verifier-123")

        assert "code_verifier" not in transport.last_form

    async def test_public_client_sends_empty_secret(self, make_provider, public_client, token_body):
        provider, transport = make_provider(json_response(200, token_body))

        await provider.exchange_authorization_code(public_client, "auth-code")

        assert transport.last_form["client_secret"] == ""
        assert "code_verifier" not in transport.last_form

    async def test_upstream_400_carries_status(self, make_provider, client_record):
        provider, _ = make_provider(json_response(400, {"error": "invalid_grant"}))

        with pytest.raises(UpstreamError) as exc_info:
            await provider.exchange_authorization_code(client_record, "bad-code")

        assert exc_info.value.status_code == 400
        assert exc_info.value.error_code == "invalid_grant"
        assert exc_info.value.http_status == 400

    async def test_upstream_500_is_bad_gateway(self, make_provider, client_record):
        provider, _ = make_provider(json_response(500, {"error": "server_error"}))

        with pytest.raises(UpstreamError) as exc_info:
            await provider.exchange_authorization_code(client_record, "auth-code")

        assert exc_info.value.status_code == 500
        assert exc_info.value.http_status == 502

    async def test_malformed_token_body_is_validation_error(self, make_provider, client_record):
        provider, _ = make_provider(json_response(200, {"token_type": "Bearer"}))

        with pytest.raises(ValidationError):
            await provider.exchange_authorization_code(client_record, "auth-code")

    async def test_non_json_body_is_validation_error(self, make_provider, client_record):
        provider, _ = make_provider(lambda request: httpx.Response(200, text="<html>oops</html>"))

        with pytest.raises(ValidationError):
            await provider.exchange_authorization_code(client_record, "auth-code")

    async def test_timeout(self, make_provider, client_record):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        provider, _ = make_provider(handler)

        with pytest.raises(UpstreamTimeoutError) as exc_info:
            await provider.exchange_authorization_code(client_record, "auth-code")

        assert exc_info.value.status_code is None
        assert exc_info.value.http_status == 504

    async def test_connection_failure(self, make_provider, client_record):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        provider, _ = make_provider(handler)

        with pytest.raises(UpstreamError) as exc_info:
            await provider.exchange_authorization_code(client_record, "auth-code")

        assert exc_info.value.status_code is None
        assert exc_info.value.http_status == 502


class TestRefresh:
    async def test_refresh_with_scopes(self, make_provider, client_record, token_body):
        provider, transport = make_provider(json_response(200, token_body))

        token = await provider.exchange_refresh_token(client_record, "refresh-123", ["read", "write"])

        assert token.access_token == "new-access-token"
        assert transport.last_form == {
            "grant_type": "refresh_token",
            "client_id": "test-client",
            "client_secret": "test-secret",
            "refresh_token": "refresh-123",
            "scope": "read write",
        }

    async def test_refresh_without_scopes(self, make_provider, client_record, token_body):
        provider, transport = make_provider(json_response(200, token_body))

        await provider.exchange_refresh_token(client_record, "refresh-123")

        assert "scope" not in transport.last_form

    async def test_refresh_upstream_401(self, make_provider, client_record):
        provider, _ = make_provider(json_response(401, {"error": "invalid_client"}))

        with pytest.raises(UpstreamError) as exc_info:
            await provider.exchange_refresh_token(client_record, "refresh-123")

        assert exc_info.value.status_code == 401
        assert exc_info.value.http_status == 401


class TestRevocation:
    async def test_revoke_posts_form(self, make_provider, client_record):
        provider, transport = make_provider()

        await provider.revoke_token(client_record, TokenRevocationRequest("tok", "refresh_token"))

        assert str(transport.requests[0].url) == f"{UPSTREAM}/revoke"
        assert transport.last_form == {
            "token": "tok",
            "client_id": "test-client",
            "client_secret": "test-secret",
            "token_type_hint": "refresh_token",
        }

    async def test_revoke_failure(self, make_provider, client_record):
        provider, _ = make_provider(json_response(503))

        with pytest.raises(UpstreamError) as exc_info:
            await provider.revoke_token(client_record, TokenRevocationRequest("tok"))

        assert exc_info.value.status_code == 503


class TestRegistration:
    async def test_register_posts_json(self, make_provider):
        def handler(request):
            body = json.loads(request.content)
            return httpx.Response(201, json={**body, "client_id": "new-client", "client_secret": "s3cret"})

        provider, transport = make_provider(handler)

        registered = await provider.clients_store.register_client(
            OAuthClientMetadata(redirect_uris=["https://app.example/cb"], client_name="App")
        )

        assert registered.client_id == "new-client"
        assert registered.redirect_uris == ["https://app.example/cb"]
        request = transport.requests[0]
        assert str(request.url) == f"{UPSTREAM}/register"
        assert request.headers["content-type"] == "application/json"
        assert json.loads(request.content) == {"redirect_uris": ["https://app.example/cb"], "client_name": "App"}

    async def test_register_upstream_rejection(self, make_provider):
        provider, _ = make_provider(json_response(409, {"error": "invalid_client_metadata"}))

        with pytest.raises(UpstreamError) as exc_info:
            await provider.clients_store.register_client(OAuthClientMetadata(redirect_uris=["https://app.example/cb"]))

        assert exc_info.value.status_code == 409
        assert exc_info.value.error_code == "invalid_client_metadata"

    async def test_register_invalid_record(self, make_provider):
        provider, _ = make_provider(json_response(201, {"client_name": "missing id"}))

        with pytest.raises(ValidationError):
            await provider.clients_store.register_client(OAuthClientMetadata(redirect_uris=["https://app.example/cb"]))


class TestCapabilities:
    def test_full_endpoints_expose_every_capability(self, make_provider):
        provider, _ = make_provider()

        assert provider.revoke_token is not None
        assert provider.clients_store.register_client is not None
        assert provider.supports_revocation
        assert provider.supports_registration

    def test_capabilities_absent_without_urls(self, make_provider):
        provider, _ = make_provider(
            endpoints=ProxyEndpoints(authorization_url=f"{UPSTREAM}/authorize", token_url=f"{UPSTREAM}/token")
        )

        assert provider.revoke_token is None
        assert provider.clients_store.register_client is None
        assert not provider.supports_revocation
        assert not provider.supports_registration

    def test_upstream_endpoint_accessor(self, make_provider):
        provider, _ = make_provider(endpoints=ProxyEndpoints(token_url=f"{UPSTREAM}/token"))

        assert provider.upstream_endpoint("token") == f"{UPSTREAM}/token"
        assert provider.upstream_endpoint("authorize") is None
        assert provider.upstream_endpoint("unknown") is None


@pytest.mark.parametrize(
    "operation",
    [
        lambda p, c: p.exchange_authorization_code(c, "auth-code", "verifier"),
        lambda p, c: p.exchange_refresh_token(c, "refresh-123", ["read"]),
        # Unconfigured capabilities are not exposed, so call the bound implementations.
        lambda p, c: p._revoke_token(c, TokenRevocationRequest("tok")),
        lambda p, c: p._register_client(OAuthClientMetadata(redirect_uris=["https://app.example/cb"])),
    ],
    ids=["code", "refresh", "revoke", "register"],
)
async def test_missing_endpoint_fails_before_network(make_provider, client_record, operation):
    provider, transport = make_provider(endpoints=ProxyEndpoints())

    with pytest.raises(ConfigurationError):
        await operation(provider, client_record)

    assert transport.requests == []


class TestClientsAndVerification:
    async def test_get_client_delegates(self, make_provider, client_record):
        provider, transport = make_provider()

        assert await provider.clients_store.get_client("test-client") == client_record
        assert await provider.clients_store.get_client("nope") is None
        assert transport.requests == []

    async def test_sync_lookup_is_accepted(self, full_endpoints, verify_token, client_record):
        from auth_proxy.oauth import ProxyOAuthServerProvider

        provider = ProxyOAuthServerProvider(
            full_endpoints,
            verify_token=verify_token,
            get_client={"test-client": client_record}.get,
            http_client=httpx.AsyncClient(transport=RecordingTransport(json_response(200))),
        )

        assert await provider.clients_store.get_client("test-client") == client_record

    async def test_verify_access_token_delegates(self, make_provider):
        from auth_proxy.oauth import InvalidTokenError

        provider, _ = make_provider()

        info = await provider.verify_access_token("valid-token")
        assert info.client_id == "test-client"
        with pytest.raises(InvalidTokenError):
            await provider.verify_access_token("other")

    async def test_challenge_is_empty(self, make_provider, client_record):
        provider, _ = make_provider()

        assert await provider.challenge_for_authorization_code(client_record, "code") == ""
