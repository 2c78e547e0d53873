"""OAuth authorization bridge.

Sequences the stores into one flow:

    NO_SESSION -> PENDING            (authorize)
    PENDING -> UPSTREAM_RETURNED     (callback takes the pending entry)
    UPSTREAM_RETURNED -> CODE_ISSUED (upstream exchange + domain check)
    CODE_ISSUED -> TOKEN_ISSUED      (token, PKCE verified)

Any step may end in FAILED. Failures never reveal whether a state, code
or token never existed, expired, or was already consumed.
"""

import logging
import uuid
from typing import Optional
from urllib.parse import urlencode

from oauth.authorization_codes import AuthorizationCodeStore
from oauth.clients import ClientRegistry, RedirectUriPolicy
from oauth.errors import (
    DomainMismatchError,
    InvalidGrantError,
    InvalidRequestError,
    UnsupportedGrantTypeError,
    UpstreamError,
)
from oauth.google_oauth import GoogleOAuthClient
from oauth.models import AuthorizationCodeEntry, TokenValidation
from oauth.pending import PendingAuthorizationStore
from oauth.pkce import S256, PKCEVerifier, is_valid_challenge
from oauth.token_store import TokenStore

logger = logging.getLogger(__name__)

GRANTED_SCOPE = "mcp:read mcp:write"
SUPPORTED_SCOPES = ["mcp:read", "mcp:write"]
TOKEN_EXPIRES_IN = 3600


def append_query(uri: str, params: dict) -> str:
    """Append query parameters to a redirect URI."""
    separator = "&" if "?" in uri else "?"
    return f"{uri}{separator}{urlencode(params)}"


def _short(value: str) -> str:
    return f"{value[:6]}..." if value and len(value) > 6 else "***"


def _require_string(name: str, value) -> None:
    if value is not None and not isinstance(value, str):
        raise InvalidRequestError(f"{name} must be a string")


class AuthorizationBridge:
    """Public-client PKCE flow in front of a confidential upstream client."""

    def __init__(
        self,
        upstream: GoogleOAuthClient,
        pkce: PKCEVerifier,
        pending: PendingAuthorizationStore,
        codes: AuthorizationCodeStore,
        tokens: TokenStore,
        redirect_policy: RedirectUriPolicy,
        clients: Optional[ClientRegistry] = None,
    ):
        self.upstream = upstream
        self.pkce = pkce
        self.pending = pending
        self.codes = codes
        self.tokens = tokens
        self.redirect_policy = redirect_policy
        self.clients = clients

    # ============== Authorize ==============

    def authorize(
        self,
        response_type: Optional[str],
        client_id: Optional[str],
        redirect_uri: Optional[str],
        state: Optional[str],
        code_challenge: Optional[str],
        code_challenge_method: Optional[str],
        scope: Optional[str] = None,
    ) -> str:
        """Validate an authorization request and return the upstream URL."""
        if response_type != "code":
            raise InvalidRequestError("response_type must be 'code'")
        if not client_id:
            raise InvalidRequestError("client_id is required")
        if not code_challenge:
            raise InvalidRequestError("code_challenge is required")
        if not is_valid_challenge(code_challenge):
            raise InvalidRequestError("code_challenge must be 43-128 characters of [A-Za-z0-9-._~]")
        if code_challenge_method != S256:
            raise InvalidRequestError("code_challenge_method must be 'S256'")
        if not state:
            raise InvalidRequestError("state is required")
        if not self.redirect_policy.is_allowed(redirect_uri):
            raise InvalidRequestError("Invalid redirect_uri")

        if self.clients is not None:
            client = self.clients.get(client_id)
            if client is not None and redirect_uri not in client.redirect_uris:
                raise InvalidRequestError("redirect_uri is not registered for this client")

        self.pkce.store_challenge(state, code_challenge, code_challenge_method)
        self.pending.store(
            state,
            client_id=client_id,
            redirect_uri=redirect_uri,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            scope=scope,
        )

        logger.info(f"[AUTHORIZE] Pending authorization for client {client_id}")
        return self.upstream.build_authorization_url(state)

    # ============== Callback ==============

    async def callback(
        self,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str] = None,
    ) -> str:
        """Handle the upstream redirect and return the client redirect URL."""
        if not state:
            raise InvalidRequestError("Missing state parameter")

        pending = self.pending.take_and_remove(state)
        if pending is None:
            raise InvalidRequestError("Invalid or expired state parameter. Please try again.")

        if error:
            logger.info(f"[CALLBACK] Upstream returned error: {error}")
            self.pkce.discard(state)
            return append_query(pending.redirect_uri, {
                "error": "access_denied" if error == "access_denied" else "server_error",
                "error_description": "Authorization was not granted by the identity provider",
                "state": state,
            })

        if not code:
            self.pkce.discard(state)
            return append_query(pending.redirect_uri, {
                "error": "invalid_request",
                "error_description": "Missing code parameter",
                "state": state,
            })

        try:
            upstream_tokens = await self.upstream.exchange_code(code)
        except DomainMismatchError as e:
            self.pkce.discard(state)
            return append_query(pending.redirect_uri, {
                "error": e.error,
                "error_description": e.description,
                "state": state,
            })
        except UpstreamError as e:
            logger.warning(f"[CALLBACK] Upstream exchange failed: {e.description}")
            self.pkce.discard(state)
            return append_query(pending.redirect_uri, {
                "error": "server_error",
                "error_description": e.description,
                "state": state,
            })

        our_code = self.codes.generate_code()
        self.codes.store(our_code, AuthorizationCodeEntry(
            access_token=upstream_tokens.access_token,
            refresh_token=upstream_tokens.refresh_token,
            id_token=upstream_tokens.id_token,
            user_info=upstream_tokens.user_info,
            client_id=pending.client_id,
            redirect_uri=pending.redirect_uri,
            code_challenge=pending.code_challenge,
            code_challenge_method=pending.code_challenge_method,
            state=state,
            scope=pending.scope,
        ))

        logger.info(f"[CALLBACK] Code issued for {upstream_tokens.user_info.email}")
        return append_query(pending.redirect_uri, {"code": our_code, "state": state})

    # ============== Token ==============

    def token(
        self,
        grant_type: Optional[str],
        code: Optional[str],
        redirect_uri: Optional[str],
        code_verifier: Optional[str],
        client_id: Optional[str] = None,
    ) -> dict:
        """Redeem an authorization code for a bearer token."""
        for name, value in (
            ("grant_type", grant_type),
            ("code", code),
            ("redirect_uri", redirect_uri),
            ("code_verifier", code_verifier),
            ("client_id", client_id),
        ):
            _require_string(name, value)

        if grant_type != "authorization_code":
            raise UnsupportedGrantTypeError("grant_type must be 'authorization_code'")
        if not code:
            raise InvalidRequestError("code is required")
        if not code_verifier:
            raise InvalidRequestError("code_verifier is required")

        entry = self.codes.exchange(
            code,
            code_verifier,
            redirect_uri=redirect_uri,
            client_id=client_id,
        )
        if entry is None:
            logger.info(f"[TOKEN] Rejected code {_short(code)}")
            raise InvalidGrantError("Invalid, expired or already used authorization code")

        # The code is consumed; the PKCE record for its state is no longer needed
        self.pkce.discard(entry.state)

        user = entry.user_info
        user_id = user.subject or str(uuid.uuid4())
        access_token = self.tokens.issue(
            entry.access_token,
            entry.refresh_token,
            user_id=user_id,
            email=user.email,
            company_domain=user.domain,
            expires_in=TOKEN_EXPIRES_IN,
        )

        logger.info(f"[TOKEN] Access token issued for {user.email}")
        return {
            "access_token": access_token,
            "token_type": "Bearer",
            "expires_in": TOKEN_EXPIRES_IN,
            "scope": GRANTED_SCOPE,
        }

    # ============== Validate ==============

    def validate(self, token: Optional[str]) -> TokenValidation:
        _require_string("token", token)
        result = self.tokens.validate(token or "")
        if not result.valid:
            logger.info(f"[VALIDATE] Token rejected: {result.error}")
        return result
