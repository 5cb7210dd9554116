# auth_proxy/oauth/proxy_provider.py
"""
OAuth server provider that delegates every authorization-server operation to an
upstream OAuth server.

- authorize        -> 302 to the upstream authorization URL (PKCE S256 params forwarded)
- code / refresh   -> form POST to the upstream token URL
- revoke           -> form POST to the upstream revocation URL (only if configured)
- register         -> JSON POST to the upstream registration URL (only if configured)
- verify / lookup  -> caller-supplied functions

No session state is kept: codes, PKCE and redirect URI matching are the upstream's job.
Upstream calls are single-attempt; wrap the provider if you need retries.
"""

import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import httpx
from pydantic import ValidationError as PydanticValidationError

from auth_proxy.config import FORWARD_CODE_VERIFIER, UPSTREAM_HTTP_TIMEOUT

from .api_client import add_query_params, response_json, send_upstream
from .errors import ConfigurationError, ValidationError
from .models import (
    AuthInfo,
    AuthorizationParams,
    OAuthClientInformation,
    OAuthClientMetadata,
    OAuthToken,
    ProxyEndpoints,
    TokenRevocationRequest,
)
from .provider import OAuthClientsStore, OAuthServerProvider, RedirectSink

logger = logging.getLogger("mcp-auth-proxy.proxy_provider")

ClientLookup = Callable[[str], Union[Optional[OAuthClientInformation], Awaitable[Optional[OAuthClientInformation]]]]


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _parse_token(data: Any, operation: str) -> OAuthToken:
    try:
        return OAuthToken.model_validate(data)
    except PydanticValidationError as e:
        logger.warning("%s returned an invalid token response: %s", operation, e.errors(include_url=False))
        raise ValidationError(f"{operation} returned an invalid token response") from e


class ProxyOAuthServerProvider(OAuthServerProvider):
    def __init__(
        self,
        endpoints: ProxyEndpoints,
        verify_token: Callable[[str], Awaitable[AuthInfo]],
        get_client: ClientLookup,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = UPSTREAM_HTTP_TIMEOUT,
        forward_code_verifier: bool = FORWARD_CODE_VERIFIER,
    ):
        self._endpoints = endpoints
        self._verify_token = verify_token
        self._get_client = get_client
        self._http = http_client
        self._timeout = timeout
        self._forward_code_verifier = forward_code_verifier

        # Capabilities exist only when their upstream URL does.
        self.revoke_token = self._revoke_token if endpoints.revocation_url else None
        self.clients_store = OAuthClientsStore(
            get_client=self._lookup_client,
            register_client=self._register_client if endpoints.registration_url else None,
        )

        logger.info(
            "Proxy provider configured (authorize=%s token=%s revoke=%s register=%s)",
            endpoints.authorization_url,
            endpoints.token_url,
            endpoints.revocation_url or "-",
            endpoints.registration_url or "-",
        )

    @property
    def endpoints(self) -> ProxyEndpoints:
        return self._endpoints

    def upstream_endpoint(self, kind: str) -> Optional[str]:
        return {
            "authorize": self._endpoints.authorization_url,
            "token": self._endpoints.token_url,
            "revoke": self._endpoints.revocation_url,
            "register": self._endpoints.registration_url,
        }.get(kind)

    async def _post(self, url: str, operation: str, **kwargs: Any) -> httpx.Response:
        return await send_upstream("POST", url, operation=operation, timeout=self._timeout, client=self._http, **kwargs)

    # --- Clients ---

    async def _lookup_client(self, client_id: str) -> Optional[OAuthClientInformation]:
        return await _maybe_await(self._get_client(client_id))

    async def _register_client(self, client: OAuthClientMetadata) -> OAuthClientInformation:
        url = self._endpoints.registration_url
        if not url:
            raise ConfigurationError("No registration endpoint configured")

        response = await self._post(
            url,
            "Client registration",
            json_body=client.model_dump(mode="json", exclude_none=True),
        )
        data = response_json(response, "Client registration")
        try:
            registered = OAuthClientInformation.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError("Client registration returned an invalid client record") from e

        logger.info("Registered client upstream: %s", registered.client_id)
        return registered

    # --- Authorization ---

    async def authorize(
        self,
        client: OAuthClientInformation,
        params: AuthorizationParams,
        redirect: RedirectSink,
    ) -> None:
        authorization_url = self._endpoints.authorization_url
        if not authorization_url:
            raise ConfigurationError("No authorization endpoint configured")

        query: Dict[str, str] = {
            "client_id": client.client_id,
            "response_type": "code",
            "redirect_uri": params.redirect_uri,
            "code_challenge": params.code_challenge,
            "code_challenge_method": "S256",
        }
        if params.state:
            query["state"] = params.state
        scope = params.scope_string()
        if scope:
            query["scope"] = scope

        logger.debug("Redirecting client=%s to upstream authorization endpoint", client.client_id)
        redirect.redirect(add_query_params(authorization_url, query))

    async def challenge_for_authorization_code(self, client: OAuthClientInformation, authorization_code: str) -> str:
        # Codes live upstream; the upstream validates PKCE when the code is redeemed.
        return ""

    async def exchange_authorization_code(
        self,
        client: OAuthClientInformation,
        authorization_code: str,
        code_verifier: Optional[str] = None,
    ) -> OAuthToken:
        token_url = self._endpoints.token_url
        if not token_url:
            raise ConfigurationError("No token endpoint configured")

        form = {
            "grant_type": "authorization_code",
            "client_id": client.client_id,
            "client_secret": client.client_secret or "",
            "code": authorization_code,
        }
        if code_verifier and self._forward_code_verifier:
            form["code_verifier"] = code_verifier

        response = await self._post(token_url, "Token exchange", form=form)
        return _parse_token(response_json(response, "Token exchange"), "Token exchange")

    async def exchange_refresh_token(
        self,
        client: OAuthClientInformation,
        refresh_token: str,
        scopes: Optional[list] = None,
    ) -> OAuthToken:
        token_url = self._endpoints.token_url
        if not token_url:
            raise ConfigurationError("No token endpoint configured")

        form = {
            "grant_type": "refresh_token",
            "client_id": client.client_id,
            "client_secret": client.client_secret or "",
            "refresh_token": refresh_token,
        }
        if scopes:
            form["scope"] = " ".join(scopes)

        response = await self._post(token_url, "Token refresh", form=form)
        return _parse_token(response_json(response, "Token refresh"), "Token refresh")

    async def _revoke_token(self, client: OAuthClientInformation, request: TokenRevocationRequest) -> None:
        revocation_url = self._endpoints.revocation_url
        if not revocation_url:
            raise ConfigurationError("No revocation endpoint configured")

        form = {
            "token": request.token,
            "client_id": client.client_id,
            "client_secret": client.client_secret or "",
        }
        if request.token_type_hint:
            form["token_type_hint"] = request.token_type_hint

        await self._post(revocation_url, "Token revocation", form=form)

    # --- Resource side ---

    async def verify_access_token(self, token: str) -> AuthInfo:
        return await self._verify_token(token)
