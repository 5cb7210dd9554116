# auth_proxy/oauth/metadata.py
"""
Authorization Server Metadata (RFC 8414) assembly.

Endpoint URLs follow one precedence rule per endpoint kind: an upstream URL the
provider exposes through upstream_endpoint() is advertised verbatim, otherwise
issuer + local route path. Revocation and registration entries exist only when
the provider has the matching capability.
"""

from typing import Iterable, Optional
from urllib.parse import urlparse

from .errors import ConfigurationError
from .models import OAuthMetadata
from .provider import OAuthServerProvider

AUTHORIZATION_PATH = "/authorize"
TOKEN_PATH = "/token"
REVOCATION_PATH = "/revoke"
REGISTRATION_PATH = "/register"
METADATA_PATH = "/.well-known/oauth-authorization-server"

LOCAL_PATHS = {
    "authorize": AUTHORIZATION_PATH,
    "token": TOKEN_PATH,
    "revoke": REVOCATION_PATH,
    "register": REGISTRATION_PATH,
}

_LOOPBACK_HOSTS = {"localhost", "127.0.0.1"}


def validate_issuer_url(issuer_url: str) -> str:
    """
    Issuer must be https (http allowed for localhost/127.0.0.1 only), with no
    query and no fragment. Returns the issuer exactly as configured.
    """
    parsed = urlparse(issuer_url or "")

    if not parsed.scheme or not parsed.netloc:
        raise ConfigurationError(f"Issuer URL must be absolute: {issuer_url!r}")
    # RFC 8414 has no loopback exemption; kept for local development.
    if parsed.scheme != "https" and (parsed.hostname or "") not in _LOOPBACK_HOSTS:
        raise ConfigurationError("Issuer URL must be HTTPS")
    if parsed.fragment or issuer_url.endswith("#"):
        raise ConfigurationError("Issuer URL must not have a fragment")
    if parsed.query or "?" in issuer_url:
        raise ConfigurationError("Issuer URL must not have a query string")

    return issuer_url


def endpoint_url(provider: OAuthServerProvider, kind: str, issuer_url: str) -> str:
    upstream = provider.upstream_endpoint(kind)
    if upstream:
        return upstream
    return f"{issuer_url.rstrip('/')}{LOCAL_PATHS[kind]}"


def build_metadata(
    provider: OAuthServerProvider,
    issuer_url: str,
    service_documentation_url: Optional[str] = None,
    scopes_supported: Optional[Iterable[str]] = None,
) -> OAuthMetadata:
    issuer = validate_issuer_url(issuer_url)

    metadata = OAuthMetadata(
        issuer=issuer,
        service_documentation=service_documentation_url,
        authorization_endpoint=endpoint_url(provider, "authorize", issuer),
        response_types_supported=["code"],
        code_challenge_methods_supported=["S256"],
        token_endpoint=endpoint_url(provider, "token", issuer),
        token_endpoint_auth_methods_supported=["client_secret_post"],
        grant_types_supported=["authorization_code", "refresh_token"],
        scopes_supported=list(scopes_supported) if scopes_supported else None,
    )

    if provider.supports_revocation:
        metadata.revocation_endpoint = endpoint_url(provider, "revoke", issuer)
        metadata.revocation_endpoint_auth_methods_supported = ["client_secret_post"]

    if provider.supports_registration:
        metadata.registration_endpoint = endpoint_url(provider, "register", issuer)

    return metadata
