# auth_proxy/oauth/provider.py
"""
Capability contract every authorization backend satisfies.

Optional capabilities (token revocation, dynamic client registration) are plain
attributes that hold an async callable or None. Routers and the metadata
assembler check them structurally (`provider.revoke_token is not None`) and ask
`upstream_endpoint()` for URL overrides; nothing dispatches on concrete types.
"""

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional, Protocol

from .models import (
    AuthInfo,
    AuthorizationParams,
    OAuthClientInformation,
    OAuthClientMetadata,
    OAuthToken,
    TokenRevocationRequest,
)

ENDPOINT_KINDS = ("authorize", "token", "revoke", "register")

RevokeToken = Callable[[OAuthClientInformation, TokenRevocationRequest], Awaitable[None]]
RegisterClient = Callable[[OAuthClientMetadata], Awaitable[OAuthClientInformation]]
GetClient = Callable[[str], Awaitable[Optional[OAuthClientInformation]]]
VerifyToken = Callable[[str], Awaitable[AuthInfo]]


class RedirectSink(Protocol):
    def redirect(self, url: str) -> None: ...


class RedirectCollector:
    """RedirectSink for Starlette handlers: remembers the target so the handler can answer with it."""

    def __init__(self) -> None:
        self.url: Optional[str] = None

    def redirect(self, url: str) -> None:
        self.url = url


class OAuthClientsStore:
    def __init__(self, get_client: GetClient, register_client: Optional[RegisterClient] = None):
        self.get_client = get_client
        self.register_client = register_client


class OAuthServerProvider(ABC):
    clients_store: OAuthClientsStore
    revoke_token: Optional[RevokeToken] = None

    @abstractmethod
    async def authorize(
        self,
        client: OAuthClientInformation,
        params: AuthorizationParams,
        redirect: RedirectSink,
    ) -> None:
        """Start authorization by sending the user agent somewhere via `redirect`."""

    @abstractmethod
    async def challenge_for_authorization_code(self, client: OAuthClientInformation, authorization_code: str) -> str:
        """
        PKCE challenge stored for `authorization_code`.

        An empty string means the provider does not track codes and PKCE is
        verified by whoever redeems the code.
        """

    @abstractmethod
    async def exchange_authorization_code(
        self,
        client: OAuthClientInformation,
        authorization_code: str,
        code_verifier: Optional[str] = None,
    ) -> OAuthToken: ...

    @abstractmethod
    async def exchange_refresh_token(
        self,
        client: OAuthClientInformation,
        refresh_token: str,
        scopes: Optional[list] = None,
    ) -> OAuthToken: ...

    @abstractmethod
    async def verify_access_token(self, token: str) -> AuthInfo: ...

    def upstream_endpoint(self, kind: str) -> Optional[str]:
        """Absolute URL to advertise for endpoint `kind` instead of the local route, if any."""
        return None

    @property
    def supports_revocation(self) -> bool:
        return self.revoke_token is not None

    @property
    def supports_registration(self) -> bool:
        return self.clients_store.register_client is not None
