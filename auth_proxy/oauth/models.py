# auth_proxy/oauth/models.py
"""
Shared OAuth value objects.

Payloads that cross the wire to or from the upstream server (token sets, client
records, metadata) are pydantic models so malformed upstream bodies are rejected
instead of coerced. Request-scoped values built locally are plain dataclasses.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class OAuthToken(BaseModel):
    """Token endpoint success response (RFC 6749 section 5.1)."""

    model_config = ConfigDict(extra="allow", frozen=True)

    access_token: str
    token_type: str
    expires_in: Optional[int] = Field(default=None, ge=0)
    refresh_token: Optional[str] = None
    scope: Optional[str] = None


class OAuthClientMetadata(BaseModel):
    """Dynamic client registration request body (RFC 7591 section 2)."""

    model_config = ConfigDict(extra="allow", frozen=True)

    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    redirect_uris: List[str]
    client_name: Optional[str] = None
    grant_types: Optional[List[str]] = None
    response_types: Optional[List[str]] = None
    token_endpoint_auth_method: Optional[str] = None
    scope: Optional[str] = None

    @field_validator("redirect_uris")
    @classmethod
    def _non_empty_redirects(cls, value: List[str]) -> List[str]:
        cleaned = [u.strip() for u in value if isinstance(u, str) and u.strip()]
        if not cleaned:
            raise ValueError("redirect_uris must be a non-empty list")
        return cleaned


class OAuthClientInformation(OAuthClientMetadata):
    """A registered client. client_id is always present once issued."""

    client_id: str
    client_id_issued_at: Optional[int] = None
    client_secret_expires_at: Optional[int] = None


class OAuthMetadata(BaseModel):
    """Authorization server metadata document (RFC 8414 section 2)."""

    model_config = ConfigDict(extra="allow")

    issuer: str
    service_documentation: Optional[str] = None
    authorization_endpoint: str
    token_endpoint: str
    registration_endpoint: Optional[str] = None
    scopes_supported: Optional[List[str]] = None
    response_types_supported: List[str] = ["code"]
    grant_types_supported: Optional[List[str]] = None
    token_endpoint_auth_methods_supported: Optional[List[str]] = None
    revocation_endpoint: Optional[str] = None
    revocation_endpoint_auth_methods_supported: Optional[List[str]] = None
    code_challenge_methods_supported: Optional[List[str]] = None

    def to_json(self) -> Dict[str, Any]:
        # Absent optional endpoints are omitted, never serialized as null.
        return self.model_dump(mode="json", exclude_none=True)


@dataclass(frozen=True)
class AuthorizationParams:
    redirect_uri: str
    code_challenge: str
    state: Optional[str] = None
    scopes: Optional[List[str]] = None

    def scope_string(self) -> Optional[str]:
        """Space-joined scopes in caller order, duplicates dropped; None when empty."""
        if not self.scopes:
            return None
        seen: Dict[str, None] = {}
        for s in self.scopes:
            if s:
                seen.setdefault(s, None)
        return " ".join(seen) or None


@dataclass(frozen=True)
class TokenRevocationRequest:
    token: str
    token_type_hint: Optional[str] = None


@dataclass(frozen=True)
class AuthInfo:
    """Result of access token verification; attached to the request, never stored."""

    token: str
    client_id: str
    scopes: FrozenSet[str] = frozenset()
    expires_at: Optional[int] = None
    extra: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ProxyEndpoints:
    authorization_url: Optional[str] = None
    token_url: Optional[str] = None
    revocation_url: Optional[str] = None
    registration_url: Optional[str] = None

    def is_empty(self) -> bool:
        return not any((self.authorization_url, self.token_url, self.revocation_url, self.registration_url))
