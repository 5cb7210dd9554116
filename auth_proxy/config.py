# auth_proxy/config.py
"""
Environment-driven settings.

Values are read once at import time; server.py calls load_dotenv() before
importing anything from this package so a local .env file is honoured.
"""

import os
from typing import List, Optional


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = (os.getenv(name) or "").strip()
    return value or default


def _env_bool(name: str, default: bool) -> bool:
    value = _env(name)
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes", "on")


def _env_list(name: str) -> List[str]:
    return (_env(name) or "").split()


USER_AGENT = "mcp-auth-proxy/1.0"

# Public issuer of this authorization surface (what clients see in metadata).
ISSUER_URL = _env("MCP_ISSUER_URL", "http://localhost:8000")
SERVICE_DOCUMENTATION_URL = _env("SERVICE_DOCUMENTATION_URL")

# Upstream authorization server
UPSTREAM_AUTHORIZATION_URL = _env("UPSTREAM_AUTHORIZATION_URL")
UPSTREAM_TOKEN_URL = _env("UPSTREAM_TOKEN_URL")
UPSTREAM_REVOCATION_URL = _env("UPSTREAM_REVOCATION_URL")
UPSTREAM_REGISTRATION_URL = _env("UPSTREAM_REGISTRATION_URL")
UPSTREAM_INTROSPECTION_URL = _env("UPSTREAM_INTROSPECTION_URL")
UPSTREAM_CLIENT_ID = _env("UPSTREAM_CLIENT_ID")
UPSTREAM_CLIENT_SECRET = _env("UPSTREAM_CLIENT_SECRET")
UPSTREAM_HTTP_TIMEOUT = float(_env("UPSTREAM_HTTP_TIMEOUT", "30.0"))

# Send the PKCE code_verifier along with the authorization_code grant.
FORWARD_CODE_VERIFIER = _env_bool("FORWARD_CODE_VERIFIER", True)

# Local JWT verification (used when no introspection endpoint is configured)
JWT_SECRET = _env("JWT_SECRET")
JWT_PUBLIC_KEY = _env("JWT_PUBLIC_KEY")
JWT_ALGORITHM = _env("JWT_ALGORITHM", "HS256")
JWT_AUDIENCE = _env("JWT_AUDIENCE")
JWT_ISSUER = _env("JWT_ISSUER")

REQUIRED_SCOPES = _env_list("REQUIRED_SCOPES")
SCOPES_SUPPORTED = _env_list("SCOPES_SUPPORTED")

# JSON list of client records served by the static client lookup
OAUTH_CLIENTS_FILE = _env("OAUTH_CLIENTS_FILE")

MCP_RESOURCE_PATH = _env("MCP_RESOURCE_PATH", "/mcp")
# Streamable-http transport options for the protected MCP app
MCP_STATELESS_HTTP = _env_bool("MCP_STATELESS_HTTP", False)
MCP_JSON_RESPONSE = _env_bool("MCP_JSON_RESPONSE", False)

HOST = _env("HOST", "127.0.0.1")
PORT = int(_env("PORT", "8000"))
LOG_LEVEL = _env("LOG_LEVEL", "INFO")
