# auth_proxy/oauth/errors.py
"""
OAuth error taxonomy and the single error -> HTTP response mapping.

Every route handler and the bearer middleware funnel exceptions through
error_response(), so the transport layer never sees a raw exception and
clients only ever receive the standard {"error", "error_description"} body.
"""

import logging
from typing import Any, Dict, Optional

from starlette.responses import JSONResponse, Response

logger = logging.getLogger("mcp-auth-proxy.errors")

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}

# Error codes an upstream server may return that we relay as-is (RFC 6749 5.2, RFC 7591 3.2.2).
_RELAYABLE_UPSTREAM_CODES = {
    "invalid_request",
    "invalid_client",
    "invalid_grant",
    "unauthorized_client",
    "unsupported_grant_type",
    "invalid_scope",
    "unsupported_token_type",
    "invalid_redirect_uri",
    "invalid_client_metadata",
}


class ConfigurationError(Exception):
    """
    Fatal misconfiguration (invalid issuer, missing upstream endpoint).

    Raised at construction/startup, or by a provider operation before any network
    call when the endpoint it needs was never configured. Not an OAuth protocol error.
    """


class OAuthError(Exception):
    error_code = "server_error"
    http_status = 400

    def __init__(self, description: str = "", error_uri: Optional[str] = None):
        super().__init__(description)
        self.description = description
        self.error_uri = error_uri

    def to_response_object(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.error_code}
        if self.description:
            body["error_description"] = self.description
        if self.error_uri:
            body["error_uri"] = self.error_uri
        return body


class InvalidRequestError(OAuthError):
    error_code = "invalid_request"


class InvalidClientError(OAuthError):
    error_code = "invalid_client"
    http_status = 401


class InvalidGrantError(OAuthError):
    error_code = "invalid_grant"


class UnauthorizedClientError(OAuthError):
    error_code = "unauthorized_client"


class UnsupportedGrantTypeError(OAuthError):
    error_code = "unsupported_grant_type"


class UnsupportedResponseTypeError(OAuthError):
    error_code = "unsupported_response_type"


class InvalidScopeError(OAuthError):
    error_code = "invalid_scope"


class InvalidClientMetadataError(OAuthError):
    error_code = "invalid_client_metadata"


class InvalidTokenError(OAuthError):
    error_code = "invalid_token"
    http_status = 401


class InsufficientScopeError(OAuthError):
    error_code = "insufficient_scope"
    http_status = 403


class ServerError(OAuthError):
    error_code = "server_error"
    http_status = 500


class UpstreamError(ServerError):
    """
    Non-2xx (or failed) response from the upstream authorization server.

    status_code is the exact status the upstream returned (None when the request
    never got a response); http_status is what we answer our own client with.
    """

    def __init__(
        self,
        description: str,
        status_code: Optional[int] = None,
        upstream_error: Optional[str] = None,
    ):
        super().__init__(description)
        self.status_code = status_code
        self.upstream_error = upstream_error

        if status_code is not None and 400 <= status_code < 500:
            self.http_status = 401 if status_code == 401 else 400
            if upstream_error in _RELAYABLE_UPSTREAM_CODES:
                self.error_code = upstream_error
            else:
                self.error_code = "invalid_request"
        else:
            self.http_status = 502


class UpstreamTimeoutError(UpstreamError):
    def __init__(self, description: str):
        super().__init__(description)
        self.http_status = 504


class ValidationError(ServerError):
    """Upstream answered 2xx with a body that does not have the expected shape."""

    http_status = 502


def bearer_challenge(
    error: OAuthError,
    scope: Optional[str] = None,
    resource_metadata: Optional[str] = None,
) -> str:
    """WWW-Authenticate value per RFC 6750 section 3."""
    parts = [f'error="{error.error_code}"']
    if error.description:
        safe_desc = error.description.replace('"', "'").replace("\\", "")[:200]
        parts.append(f'error_description="{safe_desc}"')
    if scope:
        parts.append(f'scope="{scope}"')
    if resource_metadata:
        parts.append(f'resource_metadata="{resource_metadata}"')
    return "Bearer " + ", ".join(parts)


def error_response(
    exc: BaseException,
    challenge_scope: Optional[str] = None,
    resource_metadata: Optional[str] = None,
) -> Response:
    """
    Map any exception to (status, body, headers).

    - InvalidTokenError / InsufficientScopeError -> 401 / 403 with WWW-Authenticate
    - other OAuthError kinds -> their own status
    - anything else (ConfigurationError included) -> 500 server_error, logged
    """
    if not isinstance(exc, OAuthError):
        logger.exception("Unexpected error while handling OAuth request", exc_info=exc)
        exc = ServerError("Internal Server Error")
    elif isinstance(exc, ServerError):
        logger.warning("OAuth server error (%s): %s", exc.http_status, exc.description)

    headers = dict(NO_STORE_HEADERS)
    if isinstance(exc, (InvalidTokenError, InsufficientScopeError)):
        scope = challenge_scope if isinstance(exc, InsufficientScopeError) else None
        headers["WWW-Authenticate"] = bearer_challenge(exc, scope=scope, resource_metadata=resource_metadata)

    return JSONResponse(exc.to_response_object(), status_code=exc.http_status, headers=headers)
