# auth_proxy/oauth/api_client.py

import logging
from typing import Any, Dict, Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

import httpx

from auth_proxy.config import UPSTREAM_HTTP_TIMEOUT, USER_AGENT
from .errors import UpstreamError, UpstreamTimeoutError, ValidationError

logger = logging.getLogger("mcp-auth-proxy.api_client")

# Reuse a single async client to avoid per-request connection overhead.
_client: Optional[httpx.AsyncClient] = None


async def _get_client() -> httpx.AsyncClient:
    global _client
    if _client is None or _client.is_closed:
        _client = httpx.AsyncClient(follow_redirects=False, headers={"User-Agent": USER_AGENT})
    return _client


async def aclose_shared_client() -> None:
    global _client
    if _client is not None and not _client.is_closed:
        await _client.aclose()
    _client = None


def add_query_params(url: str, params: Mapping[str, Optional[str]]) -> str:
    """Merge params into url's query string; None values are skipped, existing keys overwritten."""
    parsed = urlparse(url)
    q = dict(parse_qsl(parsed.query, keep_blank_values=True))
    q.update({k: v for k, v in params.items() if v is not None})
    return str(urlunparse(parsed._replace(query=urlencode(q))))


def _upstream_error_code(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except Exception:
        return None
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return body["error"]
    return None


async def send_upstream(
    method: str,
    url: str,
    *,
    operation: str,
    form: Optional[Dict[str, str]] = None,
    json_body: Optional[Any] = None,
    content: Optional[bytes] = None,
    headers: Optional[Dict[str, str]] = None,
    params: Optional[Any] = None,
    timeout: float = UPSTREAM_HTTP_TIMEOUT,
    client: Optional[httpx.AsyncClient] = None,
    raise_for_status: bool = True,
) -> httpx.Response:
    """
    Single-attempt request to the upstream authorization server.

    - form -> application/x-www-form-urlencoded, json_body -> application/json
    - timeouts -> UpstreamTimeoutError, transport failures -> UpstreamError(status_code=None)
    - non-2xx (when raise_for_status) -> UpstreamError carrying the exact upstream status
    """
    http = client or await _get_client()
    req_headers: Dict[str, str] = {"Accept": "application/json"}
    if headers:
        req_headers.update(headers)

    logger.debug("%s: %s %s", operation, method, url)
    try:
        response = await http.request(
            method,
            url,
            data=form,
            json=json_body,
            content=content,
            params=params,
            headers=req_headers,
            timeout=timeout,
        )
    except httpx.TimeoutException as e:
        logger.warning("%s timed out after %.1fs: %s", operation, timeout, url)
        raise UpstreamTimeoutError(f"{operation} timed out") from e
    except httpx.HTTPError as e:
        logger.warning("%s failed: %s (%s)", operation, url, e)
        raise UpstreamError(f"{operation} failed: upstream unreachable") from e

    if raise_for_status and not response.is_success:
        logger.warning("%s failed: upstream status %s", operation, response.status_code)
        raise UpstreamError(
            f"{operation} failed: {response.status_code}",
            status_code=response.status_code,
            upstream_error=_upstream_error_code(response),
        )

    return response


def response_json(response: httpx.Response, operation: str) -> Any:
    try:
        return response.json()
    except ValueError as e:
        raise ValidationError(f"{operation} returned a non-JSON body") from e
