"""Redirect URI policy and dynamic client registration (RFC 7591).

Registration is bookkeeping only: public clients authenticate with
PKCE, so no client secret is ever issued.
"""

import logging
import re
import time
import uuid
from typing import Iterable, Optional

from oauth.errors import InvalidClientMetadataError, InvalidRedirectUriError
from oauth.models import RegisteredClient

logger = logging.getLogger(__name__)

# Known MCP clients plus any local development URL
DEFAULT_REDIRECT_URI_PATTERNS = [
    r"^cursor://[^?#]*/oauth/callback$",
    r"^vscode://[^?#]*/oauth/callback$",
    r"^claude://[^?#]*callback$",
    r"^https?://localhost(:\d+)?(/[^?#\s]*)?$",
    r"^https?://127\.0\.0\.1(:\d+)?(/[^?#\s]*)?$",
]

SUPPORTED_GRANT_TYPES = ["authorization_code"]
SUPPORTED_RESPONSE_TYPES = ["code"]


class RedirectUriPolicy:
    """Allow-list of redirect URI patterns."""

    def __init__(self, extra_patterns: Iterable[str] = ()):
        patterns = list(DEFAULT_REDIRECT_URI_PATTERNS) + [p for p in extra_patterns if p]
        self._patterns = [re.compile(p) for p in patterns]

    def is_allowed(self, redirect_uri: Optional[str]) -> bool:
        if not redirect_uri or not isinstance(redirect_uri, str):
            return False
        return any(p.fullmatch(redirect_uri) for p in self._patterns)


class ClientRegistry:
    """In-memory registry of dynamically registered clients."""

    def __init__(self, redirect_policy: RedirectUriPolicy):
        self.redirect_policy = redirect_policy
        self._clients: dict[str, RegisteredClient] = {}

    def register(self, metadata: dict) -> RegisteredClient:
        """Validate client metadata and register a new public client."""
        redirect_uris = metadata.get("redirect_uris")
        if not redirect_uris or not isinstance(redirect_uris, list):
            raise InvalidRedirectUriError(
                "redirect_uris is required and must be a non-empty array"
            )

        for uri in redirect_uris:
            if not isinstance(uri, str):
                raise InvalidRedirectUriError("All redirect_uris must be strings")
            if not self.redirect_policy.is_allowed(uri):
                raise InvalidRedirectUriError(f"Invalid redirect_uri: {uri}")

        grant_types = metadata.get("grant_types") or list(SUPPORTED_GRANT_TYPES)
        unsupported = [g for g in grant_types if g not in SUPPORTED_GRANT_TYPES]
        if unsupported:
            raise InvalidClientMetadataError(
                f"Unsupported grant_types: {', '.join(map(str, unsupported))}"
            )

        response_types = metadata.get("response_types") or list(SUPPORTED_RESPONSE_TYPES)
        unsupported = [r for r in response_types if r not in SUPPORTED_RESPONSE_TYPES]
        if unsupported:
            raise InvalidClientMetadataError(
                f"Unsupported response_types: {', '.join(map(str, unsupported))}"
            )

        client = RegisteredClient(
            client_id=str(uuid.uuid4()),
            redirect_uris=list(redirect_uris),
            grant_types=list(grant_types),
            response_types=list(response_types),
            token_endpoint_auth_method=metadata.get("token_endpoint_auth_method") or "none",
            client_name=metadata.get("client_name"),
            scope=metadata.get("scope"),
            created_at=int(time.time()),
        )
        self._clients[client.client_id] = client
        logger.info(f"[REGISTER] Client registered: {client.client_name or client.client_id}")
        return client

    def get(self, client_id: str) -> Optional[RegisteredClient]:
        return self._clients.get(client_id)

    def is_registered(self, client_id: str) -> bool:
        return client_id in self._clients
