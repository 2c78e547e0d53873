"""Authorization code store.

When the upstream identity provider redirects back with its code, the
callback exchanges it immediately and binds the resulting tokens to a
fresh code of our own. The MCP client later redeems our code at
/oauth/token together with its PKCE verifier.
"""

import logging
import secrets
import time
from dataclasses import replace
from typing import Optional

from oauth.models import AuthorizationCodeEntry
from oauth.pkce import S256, verify_pkce
from oauth.stores import Clock, MemoryStore

logger = logging.getLogger(__name__)

CODE_TTL_SECONDS = 300


def generate_code() -> str:
    """Return a 32-character hex code from 16 random bytes."""
    return secrets.token_hex(16)


class AuthorizationCodeStore:

    def __init__(self, clock: Clock = time.time):
        self._codes: MemoryStore[AuthorizationCodeEntry] = MemoryStore(clock)

    def generate_code(self) -> str:
        return generate_code()

    def store(
        self,
        code: str,
        entry: AuthorizationCodeEntry,
        ttl: int = CODE_TTL_SECONDS,
    ) -> AuthorizationCodeEntry:
        now = self._codes.now()
        stored = replace(entry, created_at=now, expires_at=now + ttl)
        self._codes.set(code, stored)
        return stored

    def exchange(
        self,
        code: str,
        code_verifier: str,
        redirect_uri: Optional[str] = None,
        client_id: Optional[str] = None,
    ) -> Optional[AuthorizationCodeEntry]:
        """Redeem a code. Returns the entry once, or None.

        A wrong verifier, redirect_uri or client_id leaves the entry in
        place so the legitimate client can retry before it expires. This
        method must not await: the lookup and the delete happen in one step.
        """
        entry = self._codes.get(code)
        if entry is None:
            return None

        if entry.code_challenge_method != S256:
            return None

        if not verify_pkce(code_verifier, entry.code_challenge):
            logger.info("[CODE] PKCE verification failed, code kept for retry")
            return None

        if redirect_uri and redirect_uri != entry.redirect_uri:
            logger.info("[CODE] redirect_uri does not match authorization request")
            return None

        if client_id and client_id != entry.client_id:
            logger.info("[CODE] client_id does not match authorization request")
            return None

        self._codes.delete(code)
        return entry

    def has_code(self, code: str) -> bool:
        return code in self._codes

    def sweep(self) -> int:
        return self._codes.sweep()
