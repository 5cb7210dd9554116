# auth_proxy/oauth/resource_server.py

"""
Bearer token protection for resource endpoints.

What this module does:
- BearerAuthenticator turns an Authorization header into a verified AuthInfo
  (header parsing, delegated verification, expiry and required-scope checks).
- BearerAuthMiddleware protects a whole mounted ASGI app (e.g. the MCP resource).
  The verified AuthInfo is exposed under scope["auth_info"]; read it with get_auth_info().
- requires_bearer_auth() wraps a single endpoint and hands AuthInfo to it as an
  explicit argument.

Failures become 401 (invalid_token) or 403 (insufficient_scope) with an RFC 6750
WWW-Authenticate challenge; the body only carries error / error_description.
"""

import functools
import logging
import time
from typing import Awaitable, Callable, Iterable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from .errors import (
    InsufficientScopeError,
    InvalidTokenError,
    OAuthError,
    ServerError,
    UpstreamError,
    error_response,
)
from .models import AuthInfo

logger = logging.getLogger("mcp-auth-proxy.resource_server")

AUTH_SCOPE_KEY = "auth_info"

VerifyToken = Callable[[str], Awaitable[AuthInfo]]


class BearerAuthenticator:
    def __init__(
        self,
        verify_token: VerifyToken,
        required_scopes: Optional[Iterable[str]] = None,
        resource_metadata_url: Optional[str] = None,
    ):
        self.verify_token = verify_token
        self.required_scopes = frozenset(required_scopes or ())
        self.resource_metadata_url = resource_metadata_url

    async def authenticate(self, request: Request) -> AuthInfo:
        header = request.headers.get("authorization")
        if not header:
            raise InvalidTokenError("Missing Authorization header")

        parts = header.split()
        if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1]:
            raise InvalidTokenError("Invalid Authorization header format, expected 'Bearer TOKEN'")
        token = parts[1]

        try:
            auth_info = await self.verify_token(token)
        except (InvalidTokenError, InsufficientScopeError):
            raise
        except UpstreamError as e:
            # Upstream rejected our own call (e.g. introspection credentials), not the caller's token.
            logger.warning("Token verification failed upstream (status=%s): %s", e.status_code, e.description)
            raise ServerError("Token verification is unavailable") from e
        except ServerError:
            raise
        except OAuthError as e:
            raise InvalidTokenError(e.description or "Invalid token") from e
        except Exception as e:
            logger.debug("Token verification failed: %s", e)
            raise InvalidTokenError("Invalid or expired token") from e

        if auth_info.expires_at is not None and auth_info.expires_at < time.time():
            raise InvalidTokenError("Token has expired")

        if not self.required_scopes <= frozenset(auth_info.scopes):
            raise InsufficientScopeError("Insufficient scope")

        return auth_info

    def error_response(self, exc: BaseException) -> Response:
        scope = " ".join(sorted(self.required_scopes)) or None
        return error_response(exc, challenge_scope=scope, resource_metadata=self.resource_metadata_url)


def get_auth_info(request: Request) -> AuthInfo:
    """AuthInfo attached by BearerAuthMiddleware; raises if the request was not authenticated."""
    auth = request.scope.get(AUTH_SCOPE_KEY)
    if not isinstance(auth, AuthInfo):
        raise InvalidTokenError("Request is not authenticated")
    return auth


class BearerAuthMiddleware(BaseHTTPMiddleware):
    """
    Protect a mounted app with Bearer token validation.

    - missing/invalid token -> 401 + WWW-Authenticate
    - missing required scope -> 403 + WWW-Authenticate
    - valid -> scope["auth_info"] = AuthInfo, then downstream
    """

    def __init__(
        self,
        app: Callable,
        verify_token: VerifyToken,
        required_scopes: Optional[Iterable[str]] = None,
        resource_metadata_url: Optional[str] = None,
        exclude_paths: Optional[Iterable[str]] = None,
    ):
        super().__init__(app)
        self.authenticator = BearerAuthenticator(verify_token, required_scopes, resource_metadata_url)
        self.exclude_paths = set(exclude_paths or [])

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # CORS preflight carries no credentials
        if request.method.upper() == "OPTIONS":
            return await call_next(request)

        if request.url.path in self.exclude_paths:
            return await call_next(request)

        try:
            auth_info = await self.authenticator.authenticate(request)
        except Exception as e:
            return self.authenticator.error_response(e)

        request.scope[AUTH_SCOPE_KEY] = auth_info
        return await call_next(request)


def requires_bearer_auth(
    verify_token: VerifyToken,
    required_scopes: Optional[Iterable[str]] = None,
    resource_metadata_url: Optional[str] = None,
) -> Callable:
    """
    Decorator for Starlette endpoints taking (request, auth_info).

        @requires_bearer_auth(provider.verify_access_token, ["read"])
        async def whoami(request, auth):
            ...
    """
    authenticator = BearerAuthenticator(verify_token, required_scopes, resource_metadata_url)

    def decorator(handler: Callable[[Request, AuthInfo], Awaitable[Response]]) -> Callable[[Request], Awaitable[Response]]:
        @functools.wraps(handler)
        async def endpoint(request: Request) -> Response:
            try:
                auth_info = await authenticator.authenticate(request)
            except Exception as e:
                return authenticator.error_response(e)
            return await handler(request, auth_info)

        return endpoint

    return decorator
