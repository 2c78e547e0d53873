"""PKCE (Proof Key for Code Exchange) support.

Implements the S256 method of RFC 7636. PKCE is a contract between the
public client and this server only; it is never forwarded upstream.
"""

import base64
import hashlib
import logging
import re
import secrets
import time

from oauth.errors import InvalidRequestError
from oauth.models import PKCEChallenge
from oauth.stores import Clock, MemoryStore

logger = logging.getLogger(__name__)

S256 = "S256"
CHALLENGE_TTL_SECONDS = 600

# RFC 7636 section 4.2: 43-128 unreserved characters
CHALLENGE_PATTERN = re.compile(r"[A-Za-z0-9\-._~]{43,128}")


def compute_challenge(code_verifier: str) -> str:
    """Return BASE64URL(SHA256(code_verifier)) without padding."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def is_valid_challenge(code_challenge) -> bool:
    return isinstance(code_challenge, str) and CHALLENGE_PATTERN.fullmatch(code_challenge) is not None


def verify_pkce(code_verifier: str, code_challenge: str) -> bool:
    """Check a verifier against an S256 challenge in constant time."""
    if not isinstance(code_verifier, str) or not isinstance(code_challenge, str):
        return False
    if not code_verifier or not code_challenge:
        return False
    try:
        expected = compute_challenge(code_verifier)
        return secrets.compare_digest(expected, code_challenge)
    except (UnicodeEncodeError, TypeError):
        return False


def generate_pkce_pair() -> tuple[str, str]:
    """Generate a (code_verifier, code_challenge) pair."""
    code_verifier = secrets.token_urlsafe(32)
    return code_verifier, compute_challenge(code_verifier)


class PKCEVerifier:
    """Code challenges keyed by OAuth state.

    A record is consumed by the first successful verification. A failed
    verification leaves it in place so the client can retry until the
    record expires.
    """

    def __init__(self, clock: Clock = time.time):
        self._challenges: MemoryStore[PKCEChallenge] = MemoryStore(clock)

    def store_challenge(
        self,
        state: str,
        code_challenge: str,
        code_challenge_method: str,
        ttl: int = CHALLENGE_TTL_SECONDS,
    ) -> None:
        if code_challenge_method != S256:
            raise InvalidRequestError("code_challenge_method must be 'S256'")
        if not code_challenge:
            raise InvalidRequestError("code_challenge is required")
        if not is_valid_challenge(code_challenge):
            raise InvalidRequestError("code_challenge must be 43-128 characters of [A-Za-z0-9-._~]")

        self._challenges.set(state, PKCEChallenge(
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            expires_at=self._challenges.now() + ttl,
        ))

    def verify(self, state: str, code_verifier: str) -> bool:
        stored = self._challenges.get(state)
        if stored is None:
            return False
        if stored.code_challenge_method != S256:
            return False

        if not verify_pkce(code_verifier, stored.code_challenge):
            logger.debug("[PKCE] Verifier mismatch")
            return False

        self._challenges.delete(state)
        return True

    def discard(self, state: str) -> None:
        self._challenges.delete(state)

    def has_challenge(self, state: str) -> bool:
        return state in self._challenges

    def sweep(self) -> int:
        return self._challenges.sweep()
