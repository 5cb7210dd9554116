# OAuth 2.0 proxy authorization layer for MCP protected resources

from .errors import (
    ConfigurationError,
    OAuthError,
    InvalidRequestError,
    InvalidClientError,
    InvalidGrantError,
    InvalidTokenError,
    InsufficientScopeError,
    ServerError,
    UpstreamError,
    UpstreamTimeoutError,
    ValidationError,
    error_response,
)

from .models import (
    AuthInfo,
    AuthorizationParams,
    OAuthClientInformation,
    OAuthClientMetadata,
    OAuthMetadata,
    OAuthToken,
    ProxyEndpoints,
    TokenRevocationRequest,
)

from .provider import (
    OAuthClientsStore,
    OAuthServerProvider,
    RedirectCollector,
    RedirectSink,
)

from .proxy_provider import ProxyOAuthServerProvider

from .resource_server import (
    BearerAuthenticator,
    BearerAuthMiddleware,
    get_auth_info,
    requires_bearer_auth,
)

from .metadata import (
    build_metadata,
    validate_issuer_url,
)

from .auth_server import (
    create_auth_routes,
    create_auth_server_app,
)

from .proxy_router import (
    UpstreamMetadata,
    create_proxy_routes,
)

from .token_verifier import (
    IntrospectionTokenVerifier,
    JWTTokenVerifier,
)

from .clients import StaticClientLookup

__all__ = [
    # Errors
    "ConfigurationError",
    "OAuthError",
    "InvalidRequestError",
    "InvalidClientError",
    "InvalidGrantError",
    "InvalidTokenError",
    "InsufficientScopeError",
    "ServerError",
    "UpstreamError",
    "UpstreamTimeoutError",
    "ValidationError",
    "error_response",
    # Protocol types
    "AuthInfo",
    "AuthorizationParams",
    "OAuthClientInformation",
    "OAuthClientMetadata",
    "OAuthMetadata",
    "OAuthToken",
    "ProxyEndpoints",
    "TokenRevocationRequest",
    # Provider
    "OAuthClientsStore",
    "OAuthServerProvider",
    "RedirectCollector",
    "RedirectSink",
    "ProxyOAuthServerProvider",
    # Resource protection
    "BearerAuthenticator",
    "BearerAuthMiddleware",
    "get_auth_info",
    "requires_bearer_auth",
    # Authorization surface
    "build_metadata",
    "validate_issuer_url",
    "create_auth_routes",
    "create_auth_server_app",
    "UpstreamMetadata",
    "create_proxy_routes",
    # Verification / lookup
    "IntrospectionTokenVerifier",
    "JWTTokenVerifier",
    "StaticClientLookup",
]
