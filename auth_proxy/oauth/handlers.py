# auth_proxy/oauth/handlers.py
"""
Starlette endpoints of the authorization surface.

Each handler parses the request, calls the matching provider operation and maps
failures through errors.error_response(); no raw exception reaches the server.
"""

import base64
import binascii
import hashlib
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response

from .api_client import add_query_params
from .errors import (
    NO_STORE_HEADERS,
    ConfigurationError,
    InvalidClientError,
    InvalidClientMetadataError,
    InvalidGrantError,
    InvalidRequestError,
    OAuthError,
    UnsupportedGrantTypeError,
    UnsupportedResponseTypeError,
    error_response,
)
from .models import (
    AuthorizationParams,
    OAuthClientInformation,
    OAuthClientMetadata,
    OAuthMetadata,
    TokenRevocationRequest,
)
from .provider import OAuthServerProvider, RedirectCollector

logger = logging.getLogger("mcp-auth-proxy.handlers")


def _base64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _pkce_s256(code_verifier: str) -> str:
    digest = hashlib.sha256(code_verifier.encode("utf-8")).digest()
    return _base64url(digest)


def _oauth_error_redirect(redirect_uri: str, error: OAuthError, state: Optional[str]) -> RedirectResponse:
    params: Dict[str, Optional[str]] = {"error": error.error_code, "state": state}
    if error.description:
        params["error_description"] = error.description
    return RedirectResponse(url=add_query_params(redirect_uri, params), status_code=302)


def _extract_basic_client_credentials(request: Request) -> Tuple[Optional[str], Optional[str]]:
    auth = request.headers.get("authorization")
    if not auth or not auth.lower().startswith("basic "):
        return None, None
    try:
        raw = base64.b64decode(auth.split(" ", 1)[1].strip()).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None, None
    if ":" not in raw:
        return None, None
    cid, csec = raw.split(":", 1)
    return cid, csec


async def _read_form(request: Request) -> Dict[str, str]:
    try:
        form = await request.form()
    except Exception as e:
        raise InvalidRequestError("Expected form-encoded body") from e
    return {k: v for k, v in form.items() if isinstance(v, str)}


async def _authenticate_client(
    provider: OAuthServerProvider, request: Request, form: Dict[str, str]
) -> OAuthClientInformation:
    """client_secret_post or client_secret_basic; public clients send only client_id."""
    client_id = form.get("client_id")
    client_secret = form.get("client_secret")
    basic_id, basic_secret = _extract_basic_client_credentials(request)
    if not client_id and basic_id:
        client_id = basic_id
    if not client_secret and basic_secret:
        client_secret = basic_secret

    if not client_id:
        raise InvalidRequestError("client_id is required")

    client = await provider.clients_store.get_client(client_id)
    if client is None:
        raise InvalidClientError("Invalid client_id")

    if client.client_secret:
        if not client_secret:
            raise InvalidClientError("Client secret is required")
        if client_secret != client.client_secret:
            raise InvalidClientError("Invalid client_secret")

    return client


@dataclass
class AuthorizationHandler:
    provider: OAuthServerProvider

    async def handle(self, request: Request) -> Response:
        """
        GET|POST /authorize?client_id=...&redirect_uri=...&response_type=code
            &code_challenge=...&code_challenge_method=S256&state=...&scope=...
        """
        try:
            if request.method == "POST":
                params: Dict[str, str] = await _read_form(request)
            else:
                params = dict(request.query_params)

            client, redirect_uri = await self._trusted_redirect(params)
        except Exception as e:
            # Redirect target not trusted yet: answer directly, never redirect.
            return error_response(e)

        state = params.get("state")
        try:
            auth_params = self._authorization_params(params, redirect_uri)
        except OAuthError as e:
            return _oauth_error_redirect(redirect_uri, e, state)

        collector = RedirectCollector()
        try:
            await self.provider.authorize(client, auth_params, collector)
        except Exception as e:
            return error_response(e)

        if not collector.url:
            logger.error("Provider %s finished authorize without redirecting", type(self.provider).__name__)
            return error_response(RuntimeError("authorize did not produce a redirect"))

        logger.info("Authorization started for client=%s", client.client_id)
        return RedirectResponse(url=collector.url, status_code=302, headers={"Cache-Control": "no-store"})

    async def _trusted_redirect(self, params: Dict[str, str]) -> Tuple[OAuthClientInformation, str]:
        client_id = params.get("client_id")
        if not client_id:
            raise InvalidRequestError("client_id is required")

        client = await self.provider.clients_store.get_client(client_id)
        if client is None:
            raise InvalidClientError("Invalid client_id")

        redirect_uri = params.get("redirect_uri")
        if redirect_uri:
            if redirect_uri not in client.redirect_uris:
                raise InvalidRequestError(f"Unregistered redirect_uri: {redirect_uri}")
            return client, redirect_uri

        if len(client.redirect_uris) == 1:
            return client, client.redirect_uris[0]

        raise InvalidRequestError("redirect_uri must be specified when client has multiple registered URIs")

    @staticmethod
    def _authorization_params(params: Dict[str, str], redirect_uri: str) -> AuthorizationParams:
        if params.get("response_type") != "code":
            raise UnsupportedResponseTypeError("Only response_type=code is supported")

        code_challenge = params.get("code_challenge")
        if not code_challenge:
            raise InvalidRequestError("code_challenge is required")

        if params.get("code_challenge_method", "S256") != "S256":
            raise InvalidRequestError("Only code_challenge_method=S256 is supported")

        scope = params.get("scope")
        return AuthorizationParams(
            redirect_uri=redirect_uri,
            code_challenge=code_challenge,
            state=params.get("state"),
            scopes=scope.split() if scope else None,
        )


@dataclass
class TokenHandler:
    provider: OAuthServerProvider

    async def handle(self, request: Request) -> Response:
        """
        POST /token
          grant_type=authorization_code  code=...  code_verifier=...
          grant_type=refresh_token       refresh_token=...  scope=...
        """
        try:
            form = await _read_form(request)
            client = await _authenticate_client(self.provider, request, form)

            grant_type = form.get("grant_type")
            if not grant_type:
                raise InvalidRequestError("grant_type is required")

            if grant_type == "authorization_code":
                tokens = await self._authorization_code(client, form)
            elif grant_type == "refresh_token":
                tokens = await self._refresh_token(client, form)
            else:
                raise UnsupportedGrantTypeError(f"Unsupported grant_type: {grant_type}")
        except Exception as e:
            return error_response(e)

        logger.info("Issued tokens via %s for client=%s", grant_type, client.client_id)
        return JSONResponse(tokens.model_dump(mode="json", exclude_none=True), headers=NO_STORE_HEADERS)

    async def _authorization_code(self, client: OAuthClientInformation, form: Dict[str, str]):
        code = form.get("code")
        if not code:
            raise InvalidRequestError("code is required")
        code_verifier = form.get("code_verifier") or None

        # Local PKCE check only when the provider tracks the challenge itself.
        challenge = await self.provider.challenge_for_authorization_code(client, code)
        if challenge:
            if not code_verifier:
                raise InvalidRequestError("code_verifier is required")
            if _pkce_s256(code_verifier) != challenge:
                raise InvalidGrantError("code_verifier does not match the challenge")

        return await self.provider.exchange_authorization_code(client, code, code_verifier)

    async def _refresh_token(self, client: OAuthClientInformation, form: Dict[str, str]):
        refresh_token = form.get("refresh_token")
        if not refresh_token:
            raise InvalidRequestError("refresh_token is required")
        scope = form.get("scope")
        return await self.provider.exchange_refresh_token(client, refresh_token, scope.split() if scope else None)


@dataclass
class RevocationHandler:
    provider: OAuthServerProvider

    async def handle(self, request: Request) -> Response:
        """POST /revoke  token=...  token_type_hint=...  (RFC 7009)"""
        revoke = self.provider.revoke_token
        try:
            if revoke is None:
                raise ConfigurationError("Token revocation is not supported by this provider")
            form = await _read_form(request)
            client = await _authenticate_client(self.provider, request, form)

            token = form.get("token")
            if not token:
                raise InvalidRequestError("token is required")

            await revoke(client, TokenRevocationRequest(token=token, token_type_hint=form.get("token_type_hint") or None))
        except Exception as e:
            return error_response(e)

        logger.info("Revoked token for client=%s", client.client_id)
        return Response(status_code=200, headers=NO_STORE_HEADERS)


@dataclass
class RegistrationHandler:
    provider: OAuthServerProvider

    async def handle(self, request: Request) -> Response:
        """POST /register  application/json client metadata (RFC 7591)"""
        register = self.provider.clients_store.register_client
        try:
            if register is None:
                raise ConfigurationError("Dynamic client registration is not supported by this provider")
            try:
                data: Any = await request.json()
            except ValueError as e:
                raise InvalidRequestError("Expected JSON body") from e
            if not isinstance(data, dict):
                raise InvalidClientMetadataError("Client metadata must be a JSON object")

            try:
                metadata = OAuthClientMetadata.model_validate(data)
            except PydanticValidationError as e:
                first = e.errors(include_url=False)[0] if e.errors() else {}
                field_name = ".".join(str(p) for p in first.get("loc", ())) or "body"
                raise InvalidClientMetadataError(f"Invalid value for {field_name}: {first.get('msg', 'invalid')}") from e

            client = await register(metadata)
        except Exception as e:
            return error_response(e)

        logger.info("Registered OAuth client: %s (id=%s)", client.client_name or "-", client.client_id)
        return JSONResponse(client.model_dump(mode="json", exclude_none=True), status_code=201, headers=NO_STORE_HEADERS)


@dataclass
class MetadataHandler:
    metadata: OAuthMetadata

    async def handle(self, request: Request) -> Response:
        if request.method not in ("GET", "HEAD"):
            return JSONResponse(
                {"error": "method_not_allowed", "error_description": f"The method {request.method} is not allowed for this endpoint"},
                status_code=405,
                headers={"Allow": "GET"},
            )
        return JSONResponse(self.metadata.to_json(), headers={"Cache-Control": "public, max-age=3600"})
