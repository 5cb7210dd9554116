# auth_proxy/mount_apps.py

"""
ASGI application: OAuth proxy authorization surface + bearer-protected MCP resource.

Mounts:
1) Auth routes at /                          - /authorize, /token, /revoke, /register, .well-known (ROOT!)
2) MCP resource at MCP_RESOURCE_PATH (/mcp)  - FastMCP streamable-http app behind BearerAuthMiddleware

The auth routes stay at the root because RFC 8414 discovery lives under
/.well-known at the root of the issuer.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from fastmcp import FastMCP
from fastmcp.server.dependencies import get_http_request
from mcp.types import ToolAnnotations
from starlette.applications import Starlette
from starlette.routing import Mount

from auth_proxy import config
from auth_proxy.oauth.api_client import aclose_shared_client
from auth_proxy.oauth import (
    AuthInfo,
    BearerAuthMiddleware,
    ConfigurationError,
    IntrospectionTokenVerifier,
    JWTTokenVerifier,
    ProxyEndpoints,
    ProxyOAuthServerProvider,
    StaticClientLookup,
    create_auth_routes,
    get_auth_info,
)

logger = logging.getLogger("mcp-auth-proxy.mount_apps")


def _normalize_path(p: str) -> str:
    if not p:
        return "/"
    if not p.startswith("/"):
        p = "/" + p
    if p != "/" and p.endswith("/"):
        p = p[:-1]
    return p


def build_token_verifier() -> Callable[[str], Awaitable[AuthInfo]]:
    """Introspection when the upstream offers it, otherwise local JWT verification."""
    if config.UPSTREAM_INTROSPECTION_URL:
        logger.info("Verifying access tokens via introspection at %s", config.UPSTREAM_INTROSPECTION_URL)
        return IntrospectionTokenVerifier(
            config.UPSTREAM_INTROSPECTION_URL,
            client_id=config.UPSTREAM_CLIENT_ID,
            client_secret=config.UPSTREAM_CLIENT_SECRET,
            timeout=config.UPSTREAM_HTTP_TIMEOUT,
        )

    key = config.JWT_PUBLIC_KEY or config.JWT_SECRET
    if not key:
        raise ConfigurationError("Set UPSTREAM_INTROSPECTION_URL, JWT_PUBLIC_KEY or JWT_SECRET to verify access tokens.")

    logger.info("Verifying access tokens locally as %s JWTs", config.JWT_ALGORITHM)
    return JWTTokenVerifier(
        key,
        algorithms=[config.JWT_ALGORITHM],
        audience=config.JWT_AUDIENCE,
        issuer=config.JWT_ISSUER,
    )


def build_provider() -> ProxyOAuthServerProvider:
    endpoints = ProxyEndpoints(
        authorization_url=config.UPSTREAM_AUTHORIZATION_URL,
        token_url=config.UPSTREAM_TOKEN_URL,
        revocation_url=config.UPSTREAM_REVOCATION_URL,
        registration_url=config.UPSTREAM_REGISTRATION_URL,
    )
    if not endpoints.authorization_url or not endpoints.token_url:
        raise ConfigurationError("UPSTREAM_AUTHORIZATION_URL and UPSTREAM_TOKEN_URL must be set.")

    clients = StaticClientLookup.from_file(config.OAUTH_CLIENTS_FILE) if config.OAUTH_CLIENTS_FILE else StaticClientLookup()
    if not len(clients):
        logger.warning("No OAuth clients configured (OAUTH_CLIENTS_FILE); /authorize and /token will reject every client")

    return ProxyOAuthServerProvider(
        endpoints,
        verify_token=build_token_verifier(),
        get_client=clients,
        timeout=config.UPSTREAM_HTTP_TIMEOUT,
        forward_code_verifier=config.FORWARD_CODE_VERIFIER,
    )


def create_resource_mcp() -> FastMCP:
    mcp = FastMCP("mcp-auth-proxy-resource")

    @mcp.tool(annotations=ToolAnnotations(readOnlyHint=True))
    async def whoami() -> dict:
        """Return the verified identity of the caller (client id, scopes, expiry)."""
        auth = get_auth_info(get_http_request())
        return {
            "client_id": auth.client_id,
            "scopes": sorted(auth.scopes),
            "expires_at": auth.expires_at,
        }

    return mcp


def create_app(provider: Optional[ProxyOAuthServerProvider] = None, mcp: Optional[FastMCP] = None) -> Starlette:
    logger.info("Creating MCP OAuth proxy application...")

    provider = provider or build_provider()
    auth_routes = create_auth_routes(
        provider,
        config.ISSUER_URL,
        service_documentation_url=config.SERVICE_DOCUMENTATION_URL,
        scopes_supported=config.SCOPES_SUPPORTED or None,
    )
    logger.info("✓ Created auth routes (root /)")

    resource_path = _normalize_path(config.MCP_RESOURCE_PATH)
    mcp = mcp or create_resource_mcp()
    # Serve MCP at the mount root so Mount(resource_path) needs no path rewriting.
    mcp_app: Any = mcp.http_app(
        path="/",
        stateless_http=config.MCP_STATELESS_HTTP,
        json_response=config.MCP_JSON_RESPONSE,
    )
    protected = BearerAuthMiddleware(
        mcp_app,
        verify_token=provider.verify_access_token,
        required_scopes=config.REQUIRED_SCOPES,
    )
    logger.info("✓ Created protected MCP app (mounted at %s)", resource_path)

    # Nested lifespans are not run automatically; FastMCP needs its session manager started.
    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        try:
            async with mcp_app.lifespan(app):
                yield
        finally:
            await aclose_shared_client()

    routes = [Mount(resource_path, app=protected, name="mcp")]
    routes.extend(auth_routes)
    return Starlette(routes=routes, lifespan=lifespan)


def run_server(host: str = config.HOST, port: int = config.PORT) -> None:
    """
    host/port are only the bind address. What clients see in metadata is
    MCP_ISSUER_URL, which must be the public https URL in production.
    """
    import uvicorn

    app = create_app()

    logger.info("Starting MCP OAuth proxy (bind) on http://%s:%s", host, port)
    logger.info("  - Issuer:        %s", config.ISSUER_URL)
    logger.info("  - MCP resource:  %s", _normalize_path(config.MCP_RESOURCE_PATH))
    logger.info("  - Metadata:      %s/.well-known/oauth-authorization-server", config.ISSUER_URL.rstrip("/"))

    uvicorn.run(app, host=host, port=port, log_level=config.LOG_LEVEL.lower())
