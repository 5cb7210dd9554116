# auth_proxy/oauth/token_verifier.py
"""
Ready-made token verification functions for ProxyOAuthServerProvider.

- JWTTokenVerifier: local signature + exp (+ optional aud/iss) check with PyJWT.
- IntrospectionTokenVerifier: RFC 7662 introspection against the upstream server.

Both are async callables `(token) -> AuthInfo` raising InvalidTokenError.
"""

import logging
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional

import httpx
import jwt

from .api_client import response_json, send_upstream
from auth_proxy.config import UPSTREAM_HTTP_TIMEOUT

from .errors import InvalidTokenError
from .models import AuthInfo

logger = logging.getLogger("mcp-auth-proxy.token_verifier")


def _scopes_from_claims(claims: Mapping[str, Any]) -> FrozenSet[str]:
    raw = claims.get("scope")
    if raw is None:
        raw = claims.get("scp")
    if isinstance(raw, str):
        return frozenset(raw.split())
    if isinstance(raw, (list, tuple)):
        return frozenset(str(s) for s in raw if s)
    return frozenset()


def _client_id_from_claims(claims: Mapping[str, Any]) -> str:
    for key in ("client_id", "azp", "sub"):
        value = claims.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def _int_or_none(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


class JWTTokenVerifier:
    def __init__(
        self,
        key: str,
        algorithms: Iterable[str] = ("HS256",),
        audience: Optional[str] = None,
        issuer: Optional[str] = None,
        leeway: int = 0,
    ):
        if not key:
            raise ValueError("JWT verification key must not be empty")
        self.key = key
        self.algorithms = list(algorithms)
        self.audience = audience
        self.issuer = issuer
        self.leeway = leeway

    async def __call__(self, token: str) -> AuthInfo:
        try:
            claims: Dict[str, Any] = jwt.decode(
                token,
                self.key,
                algorithms=self.algorithms,
                audience=self.audience,
                issuer=self.issuer,
                leeway=self.leeway,
                options={"verify_aud": self.audience is not None, "require": ["exp"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise InvalidTokenError("Token has expired") from e
        except jwt.InvalidTokenError as e:
            logger.debug("JWT rejected: %s", e)
            raise InvalidTokenError("Invalid token") from e

        return AuthInfo(
            token=token,
            client_id=_client_id_from_claims(claims),
            scopes=_scopes_from_claims(claims),
            expires_at=_int_or_none(claims.get("exp")),
            extra=claims,
        )


class IntrospectionTokenVerifier:
    def __init__(
        self,
        introspection_url: str,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = UPSTREAM_HTTP_TIMEOUT,
    ):
        self.introspection_url = introspection_url
        self.client_id = client_id
        self.client_secret = client_secret
        self._http = http_client
        self._timeout = timeout

    async def __call__(self, token: str) -> AuthInfo:
        form = {"token": token, "token_type_hint": "access_token"}
        if self.client_id:
            form["client_id"] = self.client_id
            form["client_secret"] = self.client_secret or ""

        response = await send_upstream(
            "POST",
            self.introspection_url,
            operation="Token introspection",
            form=form,
            timeout=self._timeout,
            client=self._http,
        )
        data = response_json(response, "Token introspection")

        if not isinstance(data, dict) or data.get("active") is not True:
            raise InvalidTokenError("Token is not active")

        return AuthInfo(
            token=token,
            client_id=_client_id_from_claims(data),
            scopes=_scopes_from_claims(data),
            expires_at=_int_or_none(data.get("exp")),
            extra=data,
        )
