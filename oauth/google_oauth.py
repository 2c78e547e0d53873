"""Google OAuth integration.

This server is a confidential client towards Google: it authenticates
with its client secret, never with PKCE. After exchanging the code it
verifies the returned ID token against Google's published keys and
enforces the company email domain before handing anything back.
"""

import logging
import time
from typing import Optional
from urllib.parse import urlencode

import httpx
import jwt

from oauth.errors import DomainMismatchError, UpstreamError
from oauth.models import UpstreamTokens, UserInfo

logger = logging.getLogger(__name__)

GOOGLE_AUTHORIZATION_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
GOOGLE_JWKS_URL = "https://www.googleapis.com/oauth2/v3/certs"
GOOGLE_ISSUERS = ("https://accounts.google.com", "accounts.google.com")

UPSTREAM_SCOPES = ["openid", "email", "profile"]
DEFAULT_TIMEOUT_SECONDS = 10.0
JWKS_CACHE_SECONDS = 60 * 60


def email_domain(email: str) -> str:
    """Return the part of an email address after the last '@'."""
    if "@" not in email:
        return ""
    return email.rsplit("@", 1)[1].lower()


class GoogleOAuthClient:
    """Upstream OpenID Connect client for Google."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        required_domain: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        authorization_endpoint: str = GOOGLE_AUTHORIZATION_ENDPOINT,
        token_endpoint: str = GOOGLE_TOKEN_ENDPOINT,
        jwks_url: str = GOOGLE_JWKS_URL,
        issuers: tuple[str, ...] = GOOGLE_ISSUERS,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.required_domain = required_domain.lower() if required_domain else None
        self.timeout = timeout
        self.authorization_endpoint = authorization_endpoint
        self.token_endpoint = token_endpoint
        self.jwks_url = jwks_url
        self.issuers = issuers

        self._jwks: Optional[jwt.PyJWKSet] = None
        self._jwks_fetched_at = 0.0

    def build_authorization_url(self, state: str) -> str:
        """Build the Google consent URL for a pending authorization."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(UPSTREAM_SCOPES),
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        }
        return f"{self.authorization_endpoint}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> UpstreamTokens:
        """Exchange a Google authorization code for tokens.

        Raises:
            UpstreamError: Google is unreachable, timed out, or answered badly
            DomainMismatchError: the verified email is outside the company domain
        """
        data = {
            "code": code,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": self.redirect_uri,
            "grant_type": "authorization_code",
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self.token_endpoint,
                    data=data,
                    headers={"Accept": "application/json"},
                )
        except httpx.TimeoutException as e:
            logger.warning(f"[GOOGLE] Token endpoint timed out: {e}")
            raise UpstreamError("Identity provider timed out") from e
        except httpx.HTTPError as e:
            logger.warning(f"[GOOGLE] Token endpoint unreachable: {e}")
            raise UpstreamError("Identity provider unreachable") from e

        if response.status_code != 200:
            logger.warning(f"[GOOGLE] Token exchange failed with status {response.status_code}")
            raise UpstreamError("Token exchange with identity provider failed")

        try:
            tokens = response.json()
        except ValueError as e:
            raise UpstreamError("Identity provider returned a malformed response") from e

        if not isinstance(tokens, dict):
            raise UpstreamError("Identity provider returned a malformed response")

        access_token = tokens.get("access_token")
        if not access_token or not isinstance(access_token, str):
            raise UpstreamError("Failed to obtain access token")

        id_token = tokens.get("id_token")
        if not id_token or not isinstance(id_token, str):
            raise UpstreamError("Identity provider did not return an ID token")

        user_info = await self.verify_id_token(id_token)

        return UpstreamTokens(
            access_token=access_token,
            refresh_token=tokens.get("refresh_token"),
            id_token=id_token,
            user_info=user_info,
        )

    async def verify_id_token(self, id_token: str) -> UserInfo:
        """Verify an ID token's signature, audience and issuer, then the domain."""
        claims = await self._decode_id_token(id_token)

        email = claims.get("email")
        if not isinstance(email, str) or "@" not in email:
            raise UpstreamError("ID token carries no email address")
        if claims.get("email_verified") is False:
            raise UpstreamError("Email address is not verified")

        domain = email_domain(email)
        if self.required_domain and domain != self.required_domain:
            logger.warning(
                f"[GOOGLE] Rejected identity from domain {domain} "
                f"(required {self.required_domain})"
            )
            raise DomainMismatchError(domain, self.required_domain)

        return UserInfo(
            email=email,
            name=claims.get("name") or email,
            domain=domain,
            subject=claims.get("sub"),
            picture=claims.get("picture"),
        )

    async def _decode_id_token(self, id_token: str) -> dict:
        try:
            header = jwt.get_unverified_header(id_token)
        except jwt.InvalidTokenError as e:
            raise UpstreamError("Malformed ID token") from e

        signing_key = await self._get_signing_key(header.get("kid"))

        try:
            claims = jwt.decode(
                id_token,
                signing_key.key,
                algorithms=["RS256"],
                audience=self.client_id,
                options={"require": ["exp", "iat", "iss", "aud", "sub"]},
            )
        except jwt.InvalidTokenError as e:
            logger.warning(f"[GOOGLE] ID token rejected: {e}")
            raise UpstreamError("ID token verification failed") from e

        if claims.get("iss") not in self.issuers:
            logger.warning(f"[GOOGLE] ID token has unexpected issuer: {claims.get('iss')}")
            raise UpstreamError("ID token verification failed")

        return claims

    async def _get_signing_key(self, kid: Optional[str]) -> jwt.PyJWK:
        jwk_set = await self._get_jwks()
        key = self._find_key(jwk_set, kid)
        if key is None:
            # Google rotates keys; refetch once before giving up
            jwk_set = await self._get_jwks(force=True)
            key = self._find_key(jwk_set, kid)
        if key is None:
            raise UpstreamError("ID token signed with an unknown key")
        return key

    @staticmethod
    def _find_key(jwk_set: jwt.PyJWKSet, kid: Optional[str]) -> Optional[jwt.PyJWK]:
        for key in jwk_set.keys:
            if kid is None or key.key_id == kid:
                return key
        return None

    async def _get_jwks(self, force: bool = False) -> jwt.PyJWKSet:
        fresh = time.time() - self._jwks_fetched_at < JWKS_CACHE_SECONDS
        if self._jwks is not None and fresh and not force:
            return self._jwks

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(self.jwks_url)
                response.raise_for_status()
                jwks = response.json()
        except httpx.HTTPError as e:
            logger.warning(f"[GOOGLE] Could not fetch signing keys: {e}")
            raise UpstreamError("Could not fetch identity provider signing keys") from e
        except ValueError as e:
            raise UpstreamError("Identity provider returned malformed signing keys") from e

        keys = jwks.get("keys") if isinstance(jwks, dict) else None
        if not isinstance(keys, list) or not all(isinstance(k, dict) for k in keys):
            raise UpstreamError("Identity provider returned malformed signing keys")

        try:
            self._jwks = jwt.PyJWKSet.from_dict(jwks)
        except jwt.PyJWKSetError as e:
            raise UpstreamError("Identity provider returned no usable signing keys") from e

        self._jwks_fetched_at = time.time()
        logger.info(f"[GOOGLE] Loaded {len(self._jwks.keys)} signing keys")
        return self._jwks
