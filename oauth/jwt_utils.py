"""JWT utilities for bearer tokens issued by this server.

Provides stateless token generation and validation using PyJWT.
Tokens are self-describing: validity is proven by signature and expiry
checks, without looking anything up in the token store.
"""

import logging
import time
from typing import Optional

import jwt

logger = logging.getLogger(__name__)

# JWT configuration
JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_SECONDS = 60 * 60  # 1 hour
MIN_SECRET_LENGTH = 32

REQUIRED_CLAIMS = ["exp", "iat", "sub", "email", "company_domain"]


def check_secret(secret: str) -> str:
    """Return the signing secret, or raise if it is too short to be safe."""
    if not secret or len(secret) < MIN_SECRET_LENGTH:
        raise ValueError(f"JWT secret must be at least {MIN_SECRET_LENGTH} characters")
    return secret


def create_access_token(
    secret: str,
    user_id: str,
    email: str,
    company_domain: str,
    issuer: str,
    expires_in: int = ACCESS_TOKEN_EXPIRE_SECONDS,
    now: Optional[float] = None,
) -> str:
    """Create a signed access token.

    Args:
        secret: HMAC signing secret
        user_id: The user's unique identifier
        email: The user's verified email address
        company_domain: Domain part of the email
        issuer: The token issuer (server URL)
        expires_in: Token lifetime in seconds (default 1 hour)
        now: Issue time, defaults to the current time

    Returns:
        A signed JWT token string
    """
    issued_at = int(now if now is not None else time.time())

    payload = {
        "sub": user_id,                    # Subject - standard claim
        "user_id": user_id,
        "email": email,
        "company_domain": company_domain,
        "iss": issuer,                     # Issuer - standard claim
        "iat": issued_at,                  # Issued at - standard claim
        "exp": issued_at + expires_in,     # Expiration - standard claim
        "type": "access",
    }

    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def decode_access_token(secret: str, token: str, issuer: Optional[str] = None) -> dict:
    """Verify and decode an access token.

    Raises:
        jwt.ExpiredSignatureError: the token signature is valid but it expired
        jwt.MissingRequiredClaimError: a required claim is absent
        jwt.InvalidTokenError: any other signature or format problem
    """
    options = {"require": REQUIRED_CLAIMS}
    if issuer:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[JWT_ALGORITHM],
            options=options,
            issuer=issuer,
        )
    else:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[JWT_ALGORITHM],
            options=options,
        )

    if payload.get("type") != "access":
        logger.debug("[JWT] Token is not an access token")
        raise jwt.InvalidTokenError("Token is not an access token")

    return payload
