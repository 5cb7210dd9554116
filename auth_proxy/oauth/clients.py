# auth_proxy/oauth/clients.py
"""
Client lookup backed by a fixed set of client records.

Client storage is not this package's concern; this is the minimal lookup the
entrypoint hands to the proxy provider, fed from OAUTH_CLIENTS_FILE (a JSON list
of RFC 7591 client records).
"""

import json
import logging
from pathlib import Path
from typing import Dict, Iterable, Optional, Union

from .models import OAuthClientInformation

logger = logging.getLogger("mcp-auth-proxy.clients")


class StaticClientLookup:
    def __init__(self, clients: Iterable[OAuthClientInformation] = ()):
        self._clients: Dict[str, OAuthClientInformation] = {c.client_id: c for c in clients}

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "StaticClientLookup":
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(raw, list):
            raise ValueError(f"{path}: expected a JSON list of client records")
        clients = [OAuthClientInformation.model_validate(item) for item in raw]
        logger.info("Loaded %d OAuth client(s) from %s", len(clients), path)
        return cls(clients)

    async def __call__(self, client_id: str) -> Optional[OAuthClientInformation]:
        return self._clients.get(client_id)

    def __len__(self) -> int:
        return len(self._clients)
