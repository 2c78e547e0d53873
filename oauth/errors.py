"""OAuth error taxonomy and FastAPI exception handlers.

Every error raised by the bridge carries an RFC 6749 error code and
a client-safe description. Handlers registered on the app turn them
into JSON bodies; anything unexpected becomes a generic server_error
so no stack trace or file path ever leaks to the client.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class OAuthError(Exception):
    """Base class for errors surfaced to OAuth clients."""

    error = "server_error"
    status_code = 400

    def __init__(self, description: str = "", status_code: int = None):
        super().__init__(description or self.error)
        self.description = description
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        body = {"error": self.error}
        if self.description:
            body["error_description"] = self.description
        return body


class InvalidRequestError(OAuthError):
    error = "invalid_request"


class InvalidGrantError(OAuthError):
    error = "invalid_grant"


class UnsupportedGrantTypeError(OAuthError):
    error = "unsupported_grant_type"


class InvalidRedirectUriError(OAuthError):
    error = "invalid_redirect_uri"


class InvalidClientMetadataError(OAuthError):
    error = "invalid_client_metadata"


class ServerError(OAuthError):
    error = "server_error"
    status_code = 500


class UpstreamError(ServerError):
    """The upstream identity provider was unreachable or answered badly."""


class DomainMismatchError(OAuthError):
    """Verified identity does not belong to the company domain."""

    error = "access_denied"
    status_code = 403

    def __init__(self, domain: str, required_domain: str):
        super().__init__("Email domain is not allowed for this server")
        self.domain = domain
        self.required_domain = required_domain


def register_exception_handlers(app: FastAPI) -> None:
    """Attach JSON error handlers to the app."""

    @app.exception_handler(OAuthError)
    async def oauth_error_handler(request: Request, exc: OAuthError):
        logger.info(f"[ERROR] {request.url.path}: {exc.error} ({exc.description})")
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"[ERROR] Unhandled error on {request.url.path}")
        return JSONResponse(
            {"error": "server_error", "error_description": "An internal error occurred"},
            status_code=500,
        )
