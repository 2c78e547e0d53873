"""In-memory keyed stores for OAuth state.

Every OAuth store (PKCE challenges, pending authorizations, authorization
codes, issued tokens) keeps its records in a MemoryStore. Records carry
their own ``expires_at`` timestamp; expired records are invisible to
readers and are removed either lazily on access or by a periodic sweep.

All operations are synchronous dict operations with no await in between,
so a read-and-delete (``pop``) is atomic inside the event loop. A shared
key/value backend can replace this class as long as ``pop`` stays a single
compare-and-delete step.
"""

import time
from typing import Callable, Generic, Iterator, Optional, TypeVar

V = TypeVar("V")

Clock = Callable[[], float]


class MemoryStore(Generic[V]):
    """Dict-backed store of records exposing an ``expires_at`` attribute."""

    def __init__(self, clock: Clock = time.time):
        self._clock = clock
        self._data: dict[str, V] = {}

    def now(self) -> float:
        return self._clock()

    def _is_expired(self, value: V, now: float) -> bool:
        return value.expires_at < now

    def set(self, key: str, value: V) -> None:
        self._data[key] = value

    def get(self, key: str) -> Optional[V]:
        """Return the live record for key, dropping it if expired."""
        value = self._data.get(key)
        if value is None:
            return None
        if self._is_expired(value, self.now()):
            self._data.pop(key, None)
            return None
        return value

    def peek(self, key: str) -> Optional[V]:
        """Return the record for key even if it has expired."""
        return self._data.get(key)

    def is_expired(self, value: V) -> bool:
        return self._is_expired(value, self.now())

    def pop(self, key: str) -> Optional[V]:
        """Remove and return the live record for key (one-time read)."""
        value = self._data.pop(key, None)
        if value is None or self._is_expired(value, self.now()):
            return None
        return value

    def delete(self, key: str) -> None:
        # No error if a sweep or another request already removed it
        self._data.pop(key, None)

    def sweep(self) -> int:
        """Delete every expired record. Returns the number removed."""
        now = self.now()
        expired = [k for k, v in list(self._data.items()) if self._is_expired(v, now)]
        for key in expired:
            self._data.pop(key, None)
        return len(expired)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._data))
