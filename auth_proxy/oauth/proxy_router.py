# auth_proxy/oauth/proxy_router.py
"""
Transparent pass-through of the OAuth surface to an upstream server.

Unlike auth_server.create_auth_routes(), nothing is interpreted locally: the
upstream metadata document is fetched once and served as-is, and each configured
endpoint relays method, query and body to its upstream URL and relays the answer
(status, body, content-type, Location) back.

The metadata fetch is memoized for the process lifetime. Concurrent first callers
are coalesced behind an asyncio.Lock so at most one upstream fetch is in flight.
"""

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional

import httpx
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import BaseRoute, Route

from .api_client import response_json, send_upstream
from auth_proxy.config import UPSTREAM_HTTP_TIMEOUT

from .auth_server import cors_open
from .errors import ConfigurationError, ValidationError, error_response
from .metadata import LOCAL_PATHS, METADATA_PATH

logger = logging.getLogger("mcp-auth-proxy.proxy_router")

# Request headers relayed upstream; everything else (cookies, host, ...) stays local.
_FORWARDED_REQUEST_HEADERS = ("content-type", "authorization", "accept")
_RELAYED_RESPONSE_HEADERS = ("content-type", "location", "cache-control", "pragma", "www-authenticate")


class UpstreamMetadata:
    """Memoized, single-flight fetch of an upstream metadata document."""

    def __init__(
        self,
        metadata_url: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = UPSTREAM_HTTP_TIMEOUT,
    ):
        self.metadata_url = metadata_url
        self._http = http_client
        self._timeout = timeout
        self._document: Optional[Dict[str, Any]] = None
        self._lock = asyncio.Lock()

    @property
    def cached(self) -> Optional[Dict[str, Any]]:
        return self._document

    async def get(self) -> Dict[str, Any]:
        if self._document is not None:
            return self._document

        async with self._lock:
            # Another caller may have filled it while we waited.
            if self._document is not None:
                return self._document

            response = await send_upstream(
                "GET",
                self.metadata_url,
                operation="Metadata fetch",
                timeout=self._timeout,
                client=self._http,
            )
            document = response_json(response, "Metadata fetch")
            if not isinstance(document, dict):
                raise ValidationError("Upstream metadata must be a JSON object")

            # Failed fetches raise above and are never cached.
            self._document = document
            logger.info("Cached upstream metadata from %s", self.metadata_url)
            return document


class PassThroughEndpoint:
    def __init__(
        self,
        target_url: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = UPSTREAM_HTTP_TIMEOUT,
    ):
        self.target_url = target_url
        self._http = http_client
        self._timeout = timeout

    async def handle(self, request: Request) -> Response:
        headers = {k: v for k, v in request.headers.items() if k.lower() in _FORWARDED_REQUEST_HEADERS}
        try:
            body = await request.body()
            upstream = await send_upstream(
                request.method,
                self.target_url,
                operation=f"Proxy {request.url.path}",
                content=body or None,
                params=list(request.query_params.multi_items()) or None,
                headers=headers,
                timeout=self._timeout,
                client=self._http,
                raise_for_status=False,
            )
        except Exception as e:
            return error_response(e)

        return Response(
            content=upstream.content,
            status_code=upstream.status_code,
            headers=_relayed_headers(upstream.headers),
        )


def _relayed_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    return {k: v for k, v in headers.items() if k.lower() in _RELAYED_RESPONSE_HEADERS}


def create_proxy_routes(
    metadata_url: Optional[str] = None,
    endpoints: Optional[Mapping[str, str]] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    timeout: float = UPSTREAM_HTTP_TIMEOUT,
) -> List[BaseRoute]:
    """
    endpoints maps an endpoint kind ("authorize", "token", "revoke", "register")
    to the absolute upstream URL it should be relayed to.
    """
    endpoints = {k: v for k, v in (endpoints or {}).items() if v}
    if not metadata_url and not endpoints:
        raise ConfigurationError("At least one of metadata_url or an endpoint must be provided")

    unknown = set(endpoints) - set(LOCAL_PATHS)
    if unknown:
        raise ConfigurationError(f"Unknown endpoint kind(s): {', '.join(sorted(unknown))}")

    routes: List[BaseRoute] = []

    if metadata_url:
        upstream_metadata = UpstreamMetadata(metadata_url, http_client=http_client, timeout=timeout)

        async def metadata_endpoint(request: Request) -> Response:
            try:
                document = await upstream_metadata.get()
            except Exception as e:
                return error_response(e)
            return JSONResponse(document, headers={"Cache-Control": "public, max-age=3600"})

        routes.append(Route(METADATA_PATH, metadata_endpoint, methods=["GET"], middleware=cors_open(["GET"])))

    for kind, url in endpoints.items():
        handler = PassThroughEndpoint(url, http_client=http_client, timeout=timeout)
        routes.append(Route(LOCAL_PATHS[kind], handler.handle, methods=["GET", "POST"]))

    logger.info(
        "Proxy routes: metadata=%s endpoints=%s",
        metadata_url or "-",
        ", ".join(f"{k}->{v}" for k, v in endpoints.items()) or "-",
    )
    return routes
