"""OAuth Authorization Bridge.

Presents a PKCE authorization-code flow to public MCP clients (Cursor,
VS Code, Claude Desktop, localhost tools) while acting as a confidential
client towards Google. Only identities from the configured company
domain receive bearer tokens.

All state is in memory and lives only as long as the process.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import Config, load_config, load_env_file
from logging_config import setup_logging
from oauth.authorization_codes import AuthorizationCodeStore
from oauth.bridge import AuthorizationBridge
from oauth.clients import ClientRegistry, RedirectUriPolicy
from oauth.endpoints import init_oauth_routes, router as oauth_router
from oauth.errors import register_exception_handlers
from oauth.google_oauth import GoogleOAuthClient
from oauth.pending import PendingAuthorizationStore
from oauth.pkce import PKCEVerifier
from oauth.sweeper import SweepJob, Sweeper
from oauth.token_store import TokenStore

logger = logging.getLogger(__name__)

VERSION = "1.0.0"

# Sweep intervals in seconds
PKCE_SWEEP_INTERVAL = 5 * 60
PENDING_SWEEP_INTERVAL = 60
CODE_SWEEP_INTERVAL = 60
TOKEN_SWEEP_INTERVAL = 5 * 60


def build_bridge(config: Config, upstream: Optional[GoogleOAuthClient] = None) -> AuthorizationBridge:
    """Wire the stores and the upstream client into a bridge."""
    if upstream is None:
        upstream = GoogleOAuthClient(
            client_id=config.google_client_id,
            client_secret=config.google_client_secret,
            redirect_uri=config.callback_url,
            required_domain=config.company_domain,
            timeout=config.upstream_timeout,
        )

    redirect_policy = RedirectUriPolicy(config.extra_redirect_uri_patterns)
    clients = ClientRegistry(redirect_policy) if config.enable_registration else None

    return AuthorizationBridge(
        upstream=upstream,
        pkce=PKCEVerifier(),
        pending=PendingAuthorizationStore(),
        codes=AuthorizationCodeStore(),
        tokens=TokenStore(config.jwt_secret, issuer=config.base_url),
        redirect_policy=redirect_policy,
        clients=clients,
    )


def build_sweeper(bridge: AuthorizationBridge) -> Sweeper:
    return Sweeper([
        SweepJob("pkce", PKCE_SWEEP_INTERVAL, bridge.pkce.sweep),
        SweepJob("pending", PENDING_SWEEP_INTERVAL, bridge.pending.sweep),
        SweepJob("codes", CODE_SWEEP_INTERVAL, bridge.codes.sweep),
        SweepJob("tokens", TOKEN_SWEEP_INTERVAL, bridge.tokens.sweep),
    ])


def create_app(config: Optional[Config] = None, bridge: Optional[AuthorizationBridge] = None) -> FastAPI:
    """Create the FastAPI app.

    Without arguments, configuration is read from the environment and
    validated; a ConfigError is raised if anything required is missing.
    """
    if config is None:
        load_env_file()
        config = load_config().validate()
        setup_logging(config.log_level, config.log_format)

    if bridge is None:
        bridge = build_bridge(config)

    sweeper = build_sweeper(bridge)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        sweeper.start()
        logger.info(f"[STARTUP] OAuth bridge ready at {config.base_url}")
        logger.info(f"[STARTUP] Company domain: {config.company_domain or 'unrestricted'}")
        yield
        await sweeper.stop()
        logger.info("[SHUTDOWN] Sweep tasks stopped")

    app = FastAPI(
        title="Company OAuth Bridge",
        description="OAuth 2.0 PKCE authorization server backed by Google sign-in",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.bridge = bridge
    app.state.sweeper = sweeper

    # Add CORS middleware for browser-based MCP client access
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )

    register_exception_handlers(app)

    init_oauth_routes(config.base_url, bridge)
    app.include_router(oauth_router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": "oauth-bridge", "version": VERSION}

    return app


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    load_env_file()
    config = load_config().validate()
    setup_logging(config.log_level, config.log_format)
    app = create_app(config)
    logger.info(f"Starting OAuth bridge on {config.host}:{config.port}")
    uvicorn.run(app, host=config.host, port=config.port, log_config=None)


if __name__ == "__main__":
    run()
