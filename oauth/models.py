"""Records kept by the OAuth stores.

Each store owns its own records. Cross references between stores are
plain strings (state, code, token), never shared objects.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class PKCEChallenge:
    code_challenge: str
    code_challenge_method: str
    expires_at: float


@dataclass
class PendingAuthorization:
    """An /authorize request waiting for the upstream callback."""

    state: str
    client_id: str
    redirect_uri: str
    code_challenge: str
    code_challenge_method: str
    expires_at: float
    scope: Optional[str] = None


@dataclass
class UserInfo:
    email: str
    name: str
    domain: str
    subject: Optional[str] = None
    picture: Optional[str] = None


@dataclass
class UpstreamTokens:
    """Result of exchanging an upstream code, after domain validation."""

    access_token: str
    user_info: UserInfo
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None


@dataclass
class AuthorizationCodeEntry:
    """Upstream tokens bound to one of our one-time authorization codes."""

    access_token: str
    user_info: UserInfo
    client_id: str
    redirect_uri: str
    code_challenge: str
    code_challenge_method: str
    state: str
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None
    scope: Optional[str] = None
    expires_at: float = 0.0
    created_at: float = 0.0


@dataclass
class TokenEntry:
    access_token: str
    user_id: str
    email: str
    company_domain: str
    expires_at: float
    created_at: float
    refresh_token: Optional[str] = None


@dataclass
class TokenValidation:
    valid: bool
    user_id: Optional[str] = None
    email: Optional[str] = None
    company_domain: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        if not self.valid:
            return {"valid": False, "error": self.error}
        return {
            "valid": True,
            "user_id": self.user_id,
            "email": self.email,
            "company_domain": self.company_domain,
        }


@dataclass
class RegisteredClient:
    client_id: str
    redirect_uris: list[str]
    grant_types: list[str] = field(default_factory=lambda: ["authorization_code"])
    response_types: list[str] = field(default_factory=lambda: ["code"])
    token_endpoint_auth_method: str = "none"
    client_name: Optional[str] = None
    scope: Optional[str] = None
    created_at: int = 0
