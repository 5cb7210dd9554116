# auth_proxy/oauth/auth_server.py
"""
OAuth 2.0 authorization surface for an MCP protected resource.

Mounts (at the application root, so .well-known discovery works per RFC 8414):
- /authorize                                (GET, POST)
- /token                                    (POST)
- /.well-known/oauth-authorization-server   (GET, CORS open)
- /revoke     only when the provider can revoke tokens
- /register   only when the provider supports dynamic client registration

The provider decides what actually happens; with ProxyOAuthServerProvider every
operation is forwarded to the upstream authorization server.
"""

import logging
from typing import Iterable, List, Optional

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.routing import BaseRoute, Route

from .handlers import (
    AuthorizationHandler,
    MetadataHandler,
    RegistrationHandler,
    RevocationHandler,
    TokenHandler,
)
from .metadata import (
    AUTHORIZATION_PATH,
    METADATA_PATH,
    REGISTRATION_PATH,
    REVOCATION_PATH,
    TOKEN_PATH,
    build_metadata,
    validate_issuer_url,
)
from .provider import OAuthServerProvider

logger = logging.getLogger("mcp-auth-proxy.auth_server")


def cors_open(methods: Iterable[str]) -> List[Middleware]:
    # Web-based MCP clients read discovery documents cross-origin.
    return [Middleware(CORSMiddleware, allow_origins=["*"], allow_methods=list(methods), allow_headers=["*"])]


def create_auth_routes(
    provider: OAuthServerProvider,
    issuer_url: str,
    service_documentation_url: Optional[str] = None,
    scopes_supported: Optional[Iterable[str]] = None,
) -> List[BaseRoute]:
    # Fatal at startup, before any route exists.
    issuer = validate_issuer_url(issuer_url)
    metadata = build_metadata(provider, issuer, service_documentation_url, scopes_supported)

    routes: List[BaseRoute] = [
        Route(AUTHORIZATION_PATH, AuthorizationHandler(provider).handle, methods=["GET", "POST"]),
        Route(TOKEN_PATH, TokenHandler(provider).handle, methods=["POST"]),
        Route(
            METADATA_PATH,
            MetadataHandler(metadata).handle,
            methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
            middleware=cors_open(["GET"]),
        ),
    ]

    if provider.supports_registration:
        routes.append(Route(REGISTRATION_PATH, RegistrationHandler(provider).handle, methods=["POST"]))

    if provider.supports_revocation:
        routes.append(Route(REVOCATION_PATH, RevocationHandler(provider).handle, methods=["POST"]))

    logger.info(
        "Auth routes for issuer %s: %s",
        issuer,
        ", ".join(getattr(r, "path", "?") for r in routes),
    )
    return routes


def create_auth_server_app(
    provider: OAuthServerProvider,
    issuer_url: str,
    service_documentation_url: Optional[str] = None,
    scopes_supported: Optional[Iterable[str]] = None,
) -> Starlette:
    routes = create_auth_routes(provider, issuer_url, service_documentation_url, scopes_supported)
    return Starlette(routes=routes)
