"""HTTP-level tests for the OAuth endpoints."""

from urllib.parse import parse_qs, urlparse

import httpx
import pytest
import respx
from fastapi.testclient import TestClient

from main import create_app
from oauth.google_oauth import GOOGLE_JWKS_URL, GOOGLE_TOKEN_ENDPOINT, GoogleOAuthClient
from oauth.pkce import generate_pkce_pair

from tests.conftest import (
    BASE_URL,
    CURSOR_REDIRECT,
    LOCAL_REDIRECT,
    StubUpstream,
    build_id_token,
    make_bridge,
    make_config,
)


def query(url: str) -> dict:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


def authorize(client: TestClient, state: str = "state-1", redirect_uri: str = LOCAL_REDIRECT, **extra):
    verifier, challenge = generate_pkce_pair()
    params = {
        "response_type": "code",
        "client_id": "client-1",
        "redirect_uri": redirect_uri,
        "state": state,
        "code_challenge": challenge,
        "code_challenge_method": "S256",
    }
    params.update(extra)
    response = client.get("/oauth/authorize", params=params, follow_redirects=False)
    return verifier, response


def obtain_code(client: TestClient, state: str = "state-1") -> tuple[str, str]:
    verifier, _ = authorize(client, state=state)
    response = client.get(
        "/oauth/callback",
        params={"code": "google-code", "state": state},
        follow_redirects=False,
    )
    assert response.status_code == 302
    return verifier, query(response.headers["location"])["code"]


def redeem(client: TestClient, code: str, verifier: str, redirect_uri: str = LOCAL_REDIRECT):
    return client.post("/oauth/token", data={
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": redirect_uri,
        "client_id": "client-1",
        "code_verifier": verifier,
    })


# ============== Discovery ==============

@pytest.mark.parametrize("path", [
    "/.well-known/oauth-authorization-server",
    "/.well-known/mcp-oauth-authorization-server",
])
def test_authorization_server_metadata(client, path):
    response = client.get(path)

    assert response.status_code == 200
    data = response.json()
    assert data["issuer"] == BASE_URL
    assert data["authorization_endpoint"] == f"{BASE_URL}/oauth/authorize"
    assert data["token_endpoint"] == f"{BASE_URL}/oauth/token"
    assert data["registration_endpoint"] == f"{BASE_URL}/oauth/register"
    assert data["code_challenge_methods_supported"] == ["S256"]
    assert data["grant_types_supported"] == ["authorization_code"]
    assert data["token_endpoint_auth_methods_supported"] == ["none"]


def test_protected_resource_metadata(client):
    data = client.get("/.well-known/oauth-protected-resource").json()
    assert data["resource"] == BASE_URL
    assert data["authorization_servers"] == [BASE_URL]


def test_health(client):
    assert client.get("/health").json() == {
        "status": "healthy",
        "service": "oauth-bridge",
        "version": "1.0.0",
    }


# ============== Registration ==============

def test_register_client(client):
    response = client.post("/oauth/register", json={
        "client_name": "Cursor",
        "redirect_uris": [CURSOR_REDIRECT],
    })

    assert response.status_code == 201
    data = response.json()
    assert data["client_id"]
    assert data["client_name"] == "Cursor"
    assert data["redirect_uris"] == [CURSOR_REDIRECT]
    assert data["token_endpoint_auth_method"] == "none"
    assert "client_secret" not in data


def test_register_rejects_unknown_redirect(client):
    response = client.post("/oauth/register", json={"redirect_uris": ["https://evil.example.com/cb"]})

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_redirect_uri"


def test_register_rejects_invalid_json(client):
    response = client.post(
        "/oauth/register",
        content="{not json",
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_request"


def test_register_disabled():
    bridge = make_bridge(with_registry=False)
    client = TestClient(create_app(make_config(), bridge=bridge))

    response = client.post("/oauth/register", json={"redirect_uris": [CURSOR_REDIRECT]})
    assert response.status_code == 404
    assert response.json()["error"] == "registration_not_available"


# ============== Authorize / Callback ==============

def test_authorize_redirects_upstream(client, bridge):
    _, response = authorize(client)

    assert response.status_code == 302
    assert response.headers["location"].startswith("https://accounts.google.test/")
    assert query(response.headers["location"])["state"] == "state-1"
    assert "state-1" in bridge.pending


def test_authorize_json_for_programmatic_clients(client):
    verifier, challenge = generate_pkce_pair()
    response = client.get(
        "/oauth/authorize",
        params={
            "response_type": "code",
            "client_id": "client-1",
            "redirect_uri": LOCAL_REDIRECT,
            "state": "state-1",
            "code_challenge": challenge,
            "code_challenge_method": "S256",
        },
        headers={"Accept": "application/json"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["redirect_required"] is True
    assert data["authorization_url"].startswith("https://accounts.google.test/")


@pytest.mark.parametrize("extra", [
    {"code_challenge_method": "plain"},
    {"code_challenge": ""},
    {"code_challenge": "é" * 43},
    {"code_challenge": "too-short"},
    {"redirect_uri": "https://evil.example.com/callback"},
    {"response_type": "token"},
])
def test_authorize_rejects_invalid_requests(client, extra):
    _, response = authorize(client, **extra)

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_request"


def test_callback_unknown_state(client, upstream):
    response = client.get(
        "/oauth/callback",
        params={"code": "google-code", "state": "forged"},
        follow_redirects=False,
    )

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_request"
    assert upstream.exchanged_codes == []


def test_callback_domain_mismatch():
    bridge = make_bridge(upstream=StubUpstream(email="mallory@other.com"))
    client = TestClient(create_app(make_config(), bridge=bridge))
    authorize(client)

    response = client.get(
        "/oauth/callback",
        params={"code": "google-code", "state": "state-1"},
        follow_redirects=False,
    )

    assert response.status_code == 302
    location = response.headers["location"]
    assert location.startswith(LOCAL_REDIRECT)
    assert query(location)["error"] == "access_denied"


def test_unexpected_error_is_generic_500():
    bridge = make_bridge(upstream=StubUpstream(error=RuntimeError("boom at /srv/app/secret.py")))
    client = TestClient(create_app(make_config(), bridge=bridge), raise_server_exceptions=False)
    authorize(client)

    response = client.get(
        "/oauth/callback",
        params={"code": "google-code", "state": "state-1"},
        follow_redirects=False,
    )

    assert response.status_code == 500
    assert response.json() == {
        "error": "server_error",
        "error_description": "An internal error occurred",
    }


# ============== Token ==============

def test_full_flow(client):
    verifier, code = obtain_code(client)

    response = redeem(client, code, verifier)
    assert response.status_code == 200
    assert response.headers["cache-control"] == "no-store"
    body = response.json()
    assert body["token_type"] == "Bearer"
    assert body["expires_in"] == 3600

    validation = client.post(
        "/oauth/token/validate",
        headers={"Authorization": f"Bearer {body['access_token']}"},
    )
    assert validation.status_code == 200
    assert validation.json() == {
        "valid": True,
        "user_id": "google-sub-123",
        "email": "alice@company.com",
        "company_domain": "company.com",
    }


def test_token_json_body(client):
    verifier, code = obtain_code(client)

    response = client.post("/oauth/token", json={
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": LOCAL_REDIRECT,
        "code_verifier": verifier,
    })
    assert response.status_code == 200
    assert response.json()["access_token"]


def test_token_invalid_json(client):
    response = client.post(
        "/oauth/token",
        content="{broken",
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 400
    assert response.json() == {"error": "invalid_request"}


@pytest.mark.parametrize("field,value", [
    ("code_verifier", 12345678),
    ("code", ["a"]),
    ("redirect_uri", [LOCAL_REDIRECT]),
    ("client_id", {"id": "client-1"}),
])
def test_token_json_rejects_non_string_fields(client, field, value):
    verifier, code = obtain_code(client)
    body = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": LOCAL_REDIRECT,
        "code_verifier": verifier,
    }
    body[field] = value

    response = client.post("/oauth/token", json=body)
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_request"


def test_token_code_reuse(client):
    verifier, code = obtain_code(client)
    assert redeem(client, code, verifier).status_code == 200

    response = redeem(client, code, verifier)
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_grant"


def test_token_tampered_verifier(client):
    verifier, code = obtain_code(client)

    response = redeem(client, code, "A" * 43)
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_grant"


def test_token_unsupported_grant(client):
    response = client.post("/oauth/token", data={"grant_type": "password", "code": "x"})

    assert response.status_code == 400
    assert response.json()["error"] == "unsupported_grant_type"


# ============== Validate ==============

def test_validate_missing_token(client):
    response = client.post("/oauth/token/validate")

    assert response.status_code == 401
    assert response.json() == {"valid": False, "error": "missing_token"}
    assert "resource_metadata" in response.headers["www-authenticate"]


def test_validate_unknown_token(client):
    response = client.post("/oauth/token/validate", headers={"Authorization": "Bearer not-a-token"})

    assert response.status_code == 401
    assert response.json() == {"valid": False, "error": "not_found"}


def test_validate_non_string_token_in_body(client):
    response = client.post("/oauth/token/validate", json={"token": 12345})

    assert response.status_code == 401
    assert response.json() == {"valid": False, "error": "missing_token"}


def test_validate_token_in_body(client):
    verifier, code = obtain_code(client)
    access_token = redeem(client, code, verifier).json()["access_token"]

    response = client.post("/oauth/token/validate", json={"token": access_token})
    assert response.status_code == 200
    assert response.json()["email"] == "alice@company.com"


# ============== Against mocked Google ==============

@respx.mock
def test_full_flow_against_google(google_keys):
    google = GoogleOAuthClient(
        client_id="google-client",
        client_secret="google-secret",
        redirect_uri=f"{BASE_URL}/oauth/callback",
        required_domain="company.com",
    )
    client = TestClient(create_app(make_config(), bridge=make_bridge(upstream=google)))

    id_token = build_id_token(google_keys["private"], google_keys["kid"])
    respx.post(GOOGLE_TOKEN_ENDPOINT).mock(return_value=httpx.Response(200, json={
        "access_token": "ya29.google-access",
        "id_token": id_token,
        "expires_in": 3599,
    }))
    respx.get(GOOGLE_JWKS_URL).mock(return_value=httpx.Response(200, json=google_keys["jwks"]))

    verifier, response = authorize(client)
    location = response.headers["location"]
    assert location.startswith("https://accounts.google.com/o/oauth2/v2/auth?")
    assert "code_challenge" not in query(location)

    callback = client.get(
        "/oauth/callback",
        params={"code": "google-code", "state": "state-1"},
        follow_redirects=False,
    )
    code = query(callback.headers["location"])["code"]

    access_token = redeem(client, code, verifier).json()["access_token"]
    result = client.post("/oauth/token/validate", headers={"Authorization": f"Bearer {access_token}"})
    assert result.json()["email"] == "alice@company.com"


@respx.mock
def test_callback_with_malformed_google_response_redirects():
    google = GoogleOAuthClient(
        client_id="google-client",
        client_secret="google-secret",
        redirect_uri=f"{BASE_URL}/oauth/callback",
        required_domain="company.com",
    )
    client = TestClient(create_app(make_config(), bridge=make_bridge(upstream=google)))
    respx.post(GOOGLE_TOKEN_ENDPOINT).mock(
        return_value=httpx.Response(200, json=["not", "an", "object"])
    )

    authorize(client)
    response = client.get(
        "/oauth/callback",
        params={"code": "google-code", "state": "state-1"},
        follow_redirects=False,
    )

    assert response.status_code == 302
    location = response.headers["location"]
    assert location.startswith(LOCAL_REDIRECT)
    assert query(location)["error"] == "server_error"
    assert query(location)["state"] == "state-1"
