"""Pending authorization requests.

Stored when a client calls /oauth/authorize, before redirecting upstream,
and taken exactly once when the upstream redirects back to /oauth/callback.
"""

import time
from typing import Optional

from oauth.models import PendingAuthorization
from oauth.stores import Clock, MemoryStore

PENDING_TTL_SECONDS = 600


class PendingAuthorizationStore:

    def __init__(self, clock: Clock = time.time):
        self._pending: MemoryStore[PendingAuthorization] = MemoryStore(clock)

    def store(
        self,
        state: str,
        client_id: str,
        redirect_uri: str,
        code_challenge: str,
        code_challenge_method: str,
        ttl: int = PENDING_TTL_SECONDS,
        scope: Optional[str] = None,
    ) -> PendingAuthorization:
        entry = PendingAuthorization(
            state=state,
            client_id=client_id,
            redirect_uri=redirect_uri,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            expires_at=self._pending.now() + ttl,
            scope=scope,
        )
        self._pending.set(state, entry)
        return entry

    def take_and_remove(self, state: str) -> Optional[PendingAuthorization]:
        """Atomically read and delete; only one caller ever sees an entry."""
        return self._pending.pop(state)

    def sweep(self) -> int:
        return self._pending.sweep()

    def __contains__(self, state: str) -> bool:
        return state in self._pending
