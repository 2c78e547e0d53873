"""Shared fixtures for OAuth bridge tests."""

from __future__ import annotations

import json
import time
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

import jwt as pyjwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient

from config import Config
from main import create_app
from oauth.authorization_codes import AuthorizationCodeStore
from oauth.bridge import AuthorizationBridge
from oauth.clients import ClientRegistry, RedirectUriPolicy
from oauth.errors import DomainMismatchError
from oauth.google_oauth import email_domain
from oauth.models import UpstreamTokens, UserInfo
from oauth.pending import PendingAuthorizationStore
from oauth.pkce import PKCEVerifier
from oauth.token_store import TokenStore

JWT_SECRET = "test-secret-0123456789abcdef0123456789abcdef"
BASE_URL = "https://auth.company.test"
CURSOR_REDIRECT = "cursor://anysphere.cursor-mcp/oauth/callback"
LOCAL_REDIRECT = "http://localhost:3000/oauth/callback"


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, start: float | None = None):
        self.now = start if start is not None else time.time()

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubUpstream:
    """Stands in for GoogleOAuthClient without any network access."""

    def __init__(
        self,
        email: str = "alice@company.com",
        required_domain: str | None = "company.com",
        error: Exception | None = None,
    ):
        self.email = email
        self.required_domain = required_domain
        self.error = error
        self.exchanged_codes: list[str] = []

    def build_authorization_url(self, state: str) -> str:
        return f"https://accounts.google.test/o/oauth2/v2/auth?{urlencode({'state': state})}"

    async def exchange_code(self, code: str) -> UpstreamTokens:
        self.exchanged_codes.append(code)
        if self.error is not None:
            raise self.error
        domain = email_domain(self.email)
        if self.required_domain and domain != self.required_domain:
            raise DomainMismatchError(domain, self.required_domain)
        return UpstreamTokens(
            access_token=f"google-access-{code}",
            refresh_token="google-refresh",
            id_token="google-id-token",
            user_info=UserInfo(
                email=self.email,
                name="Alice Example",
                domain=domain,
                subject="google-sub-123",
            ),
        )


def make_config(**overrides) -> Config:
    data = {
        "base_url": BASE_URL,
        "google_client_id": "google-client",
        "google_client_secret": "google-secret",
        "company_domain": "company.com",
        "jwt_secret": JWT_SECRET,
    }
    data.update(overrides)
    return Config(data)


def make_bridge(upstream=None, clock=None, with_registry: bool = True) -> AuthorizationBridge:
    clock = clock or FakeClock()
    policy = RedirectUriPolicy()
    return AuthorizationBridge(
        upstream=upstream or StubUpstream(),
        pkce=PKCEVerifier(clock),
        pending=PendingAuthorizationStore(clock),
        codes=AuthorizationCodeStore(clock),
        tokens=TokenStore(JWT_SECRET, issuer=BASE_URL, clock=clock),
        redirect_policy=policy,
        clients=ClientRegistry(policy) if with_registry else None,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def upstream() -> StubUpstream:
    return StubUpstream()


@pytest.fixture
def bridge(upstream: StubUpstream, clock: FakeClock) -> AuthorizationBridge:
    return make_bridge(upstream=upstream, clock=clock)


@pytest.fixture
def client(bridge: AuthorizationBridge) -> TestClient:
    app = create_app(make_config(), bridge=bridge)
    return TestClient(app)


# ============== Google ID token helpers ==============

@pytest.fixture(scope="session")
def google_keys() -> dict:
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()
    jwk = json.loads(pyjwt.algorithms.RSAAlgorithm.to_jwk(private_key.public_key()))
    jwk.update({"kid": "google-key-1", "use": "sig", "alg": "RS256"})
    return {"private": private_pem, "jwks": {"keys": [jwk]}, "kid": "google-key-1"}


def build_id_token(
    private_pem: str,
    kid: str,
    email: str = "alice@company.com",
    audience: str = "google-client",
    issuer: str = "https://accounts.google.com",
    expires_in: int = 600,
    **extra,
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "iss": issuer,
        "sub": "google-sub-123",
        "aud": audience,
        "email": email,
        "email_verified": True,
        "name": "Alice Example",
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=expires_in)).timestamp()),
    }
    payload.update(extra)
    return pyjwt.encode(payload, private_pem, algorithm="RS256", headers={"kid": kid})
