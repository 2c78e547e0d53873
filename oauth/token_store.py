"""Token store and bearer token issuer.

Issued bearer tokens are signed JWTs and validate without a lookup.
Alongside each issued token the store keeps a TokenEntry keyed by the
raw upstream access token, used for stateful validation and revocation.

Revocation only removes the stateful entry: signed tokens that were
already handed out stay valid until they expire.
"""

import logging
import time
from typing import Optional

import jwt

from oauth import jwt_utils
from oauth.models import TokenEntry, TokenValidation
from oauth.stores import Clock, MemoryStore

logger = logging.getLogger(__name__)

EXPIRED = "expired"
NOT_FOUND = "not_found"
MALFORMED = "malformed"


class TokenStore:

    def __init__(self, secret: str, issuer: str, clock: Clock = time.time):
        self._secret = jwt_utils.check_secret(secret)
        self.issuer = issuer
        self._tokens: MemoryStore[TokenEntry] = MemoryStore(clock)

    def issue(
        self,
        access_token: str,
        refresh_token: Optional[str],
        user_id: str,
        email: str,
        company_domain: str,
        expires_in: int = jwt_utils.ACCESS_TOKEN_EXPIRE_SECONDS,
    ) -> str:
        """Mint a signed bearer token and record the upstream token."""
        now = self._tokens.now()
        signed = jwt_utils.create_access_token(
            self._secret,
            user_id=user_id,
            email=email,
            company_domain=company_domain,
            issuer=self.issuer,
            expires_in=expires_in,
            now=now,
        )

        self._tokens.set(access_token, TokenEntry(
            access_token=access_token,
            refresh_token=refresh_token,
            user_id=user_id,
            email=email,
            company_domain=company_domain,
            expires_at=now + expires_in,
            created_at=now,
        ))
        return signed

    def validate(self, token: str) -> TokenValidation:
        """Validate a token. Never raises."""
        if not token or not token.strip():
            return TokenValidation(valid=False, error=MALFORMED)

        try:
            claims = jwt_utils.decode_access_token(self._secret, token, issuer=self.issuer)
        except jwt.ExpiredSignatureError:
            return TokenValidation(valid=False, error=EXPIRED)
        except jwt.MissingRequiredClaimError:
            return TokenValidation(valid=False, error=MALFORMED)
        except jwt.InvalidTokenError:
            return self._validate_stateful(token)

        return TokenValidation(
            valid=True,
            user_id=claims.get("user_id") or claims.get("sub"),
            email=claims.get("email"),
            company_domain=claims.get("company_domain"),
        )

    def _validate_stateful(self, token: str) -> TokenValidation:
        entry = self._tokens.peek(token)
        if entry is None:
            return TokenValidation(valid=False, error=NOT_FOUND)

        if self._tokens.is_expired(entry):
            self._tokens.delete(token)
            return TokenValidation(valid=False, error=EXPIRED)

        return TokenValidation(
            valid=True,
            user_id=entry.user_id,
            email=entry.email,
            company_domain=entry.company_domain,
        )

    def lookup(self, access_token: str) -> Optional[TokenEntry]:
        return self._tokens.get(access_token)

    def revoke(self, token: str) -> None:
        self._tokens.delete(token)

    def sweep(self) -> int:
        return self._tokens.sweep()
