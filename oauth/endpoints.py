"""OAuth 2.0 endpoints for the authorization bridge.

This module contains all OAuth-related endpoints:
- Discovery metadata (/.well-known/*)
- Client registration (/oauth/register)
- Authorization flow (/oauth/authorize, /oauth/callback)
- Token endpoints (/oauth/token, /oauth/token/validate)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Form, Request
from fastapi.responses import JSONResponse, RedirectResponse

from oauth.bridge import SUPPORTED_SCOPES, AuthorizationBridge
from oauth.errors import InvalidRequestError

logger = logging.getLogger(__name__)

# Router for OAuth endpoints
router = APIRouter(tags=["oauth"])

# These will be set by init_oauth_routes()
_server_url: str = ""
_bridge: Optional[AuthorizationBridge] = None


def init_oauth_routes(server_url: str, bridge: AuthorizationBridge):
    """Initialize OAuth routes with the server URL and the bridge.

    Must be called before including the router in the app.
    """
    global _server_url, _bridge
    _server_url = server_url.rstrip("/")
    _bridge = bridge


def _get_bridge() -> AuthorizationBridge:
    if _bridge is None:
        raise RuntimeError("OAuth routes used before init_oauth_routes()")
    return _bridge


# ============== Discovery Endpoints ==============

def authorization_server_metadata() -> dict:
    """OAuth 2.0 Authorization Server Metadata (RFC 8414)."""
    return {
        "issuer": _server_url,
        "authorization_endpoint": f"{_server_url}/oauth/authorize",
        "token_endpoint": f"{_server_url}/oauth/token",
        "registration_endpoint": f"{_server_url}/oauth/register",
        "scopes_supported": SUPPORTED_SCOPES,
        "response_types_supported": ["code"],
        "response_modes_supported": ["query"],
        "grant_types_supported": ["authorization_code"],
        "token_endpoint_auth_methods_supported": ["none"],
        "code_challenge_methods_supported": ["S256"],
    }


@router.get("/.well-known/oauth-authorization-server")
@router.get("/.well-known/mcp-oauth-authorization-server")
async def oauth_authorization_server():
    return authorization_server_metadata()


@router.get("/.well-known/oauth-protected-resource")
async def oauth_protected_resource():
    """OAuth 2.0 Protected Resource Metadata (RFC 9728)."""
    return {
        "resource": _server_url,
        "authorization_servers": [_server_url],
        "scopes_supported": SUPPORTED_SCOPES,
        "bearer_methods_supported": ["header"],
    }


# ============== Client Registration ==============

@router.post("/oauth/register")
async def register_client(request: Request):
    """OAuth 2.0 Dynamic Client Registration (RFC 7591)."""
    bridge = _get_bridge()
    if bridge.clients is None:
        return JSONResponse({
            "error": "registration_not_available",
            "error_description": "Dynamic client registration is not enabled",
        }, status_code=404)

    try:
        data = await request.json()
    except ValueError:
        data = None
    if not isinstance(data, dict):
        raise InvalidRequestError("Request body must be a JSON object")

    client = bridge.clients.register(data)

    body = {
        "client_id": client.client_id,
        "client_id_issued_at": client.created_at,
        "redirect_uris": client.redirect_uris,
        "grant_types": client.grant_types,
        "response_types": client.response_types,
        "token_endpoint_auth_method": client.token_endpoint_auth_method,
    }
    if client.client_name:
        body["client_name"] = client.client_name
    if client.scope:
        body["scope"] = client.scope
    return JSONResponse(body, status_code=201)


# ============== Authorization Flow ==============

@router.get("/oauth/authorize")
async def authorize(
    request: Request,
    response_type: Optional[str] = None,
    client_id: Optional[str] = None,
    redirect_uri: Optional[str] = None,
    scope: Optional[str] = None,
    state: Optional[str] = None,
    code_challenge: Optional[str] = None,
    code_challenge_method: Optional[str] = None,
):
    """OAuth 2.0 Authorization Endpoint - redirects to Google."""
    auth_url = _get_bridge().authorize(
        response_type=response_type,
        client_id=client_id,
        redirect_uri=redirect_uri,
        state=state,
        code_challenge=code_challenge,
        code_challenge_method=code_challenge_method,
        scope=scope,
    )

    # Programmatic clients get the URL instead of a redirect
    if "application/json" in request.headers.get("accept", ""):
        return JSONResponse({"authorization_url": auth_url, "redirect_required": True})

    return RedirectResponse(url=auth_url, status_code=302)


@router.get("/oauth/callback")
async def callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
):
    """Redirect target for Google; forwards our own code to the client."""
    redirect_url = await _get_bridge().callback(code=code, state=state, error=error)
    return RedirectResponse(url=redirect_url, status_code=302)


# ============== Token Endpoints ==============

@router.post("/oauth/token")
async def token(
    request: Request,
    grant_type: str = Form(None),
    code: str = Form(None),
    redirect_uri: str = Form(None),
    client_id: str = Form(None),
    code_verifier: str = Form(None),
):
    """OAuth 2.0 Token Endpoint."""
    # Handle form data or JSON
    if grant_type is None:
        try:
            data = await request.json()
        except ValueError:
            return JSONResponse({"error": "invalid_request"}, status_code=400)
        if not isinstance(data, dict):
            return JSONResponse({"error": "invalid_request"}, status_code=400)
        grant_type = data.get("grant_type")
        code = data.get("code")
        redirect_uri = data.get("redirect_uri")
        client_id = data.get("client_id")
        code_verifier = data.get("code_verifier")

    logger.debug(f"[TOKEN] grant_type: {grant_type}, client_id: {client_id}")

    body = _get_bridge().token(
        grant_type=grant_type,
        code=code,
        redirect_uri=redirect_uri,
        code_verifier=code_verifier,
        client_id=client_id,
    )
    return JSONResponse(body, headers={"Cache-Control": "no-store", "Pragma": "no-cache"})


def unauthorized_response(body: dict) -> JSONResponse:
    """Return 401 with WWW-Authenticate header pointing to resource metadata (RFC 9728)."""
    return JSONResponse(
        body,
        status_code=401,
        headers={
            "WWW-Authenticate": f'Bearer resource_metadata="{_server_url}/.well-known/oauth-protected-resource"'
        }
    )


async def _extract_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    if auth_header:
        return auth_header.strip()

    if "application/json" in request.headers.get("content-type", ""):
        try:
            data = await request.json()
        except ValueError:
            return None
        if isinstance(data, dict) and isinstance(data.get("token"), str):
            return data["token"]
    return None


@router.post("/oauth/token/validate")
async def token_validate(request: Request):
    """Validate a bearer token and return the identity it carries."""
    token_value = await _extract_token(request)
    if not token_value:
        logger.info("[VALIDATE] Request rejected: no token")
        return unauthorized_response({"valid": False, "error": "missing_token"})

    result = _get_bridge().validate(token_value)
    if not result.valid:
        return unauthorized_response(result.to_dict())
    return JSONResponse(result.to_dict())

