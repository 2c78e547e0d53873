"""Config management for the OAuth bridge.

Values come from the environment. A local .env file is loaded first
when present (see load_env_file).
"""
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


DEFAULT_BASE_URL = "http://localhost:3000"
MIN_JWT_SECRET_LENGTH = 32


class ConfigError(Exception):
    """Raised when required configuration is missing or invalid."""


class Config:
    """Configuration container."""

    def __init__(self, data: dict = None):
        self.data = data or {}

    @property
    def base_url(self) -> str:
        return (self.data.get("base_url") or DEFAULT_BASE_URL).rstrip("/")

    @property
    def callback_url(self) -> str:
        return f"{self.base_url}/oauth/callback"

    @property
    def host(self) -> str:
        return self.data.get("host") or "0.0.0.0"

    @property
    def port(self) -> int:
        return int(self.data.get("port") or 3000)

    @property
    def google_client_id(self) -> Optional[str]:
        return self.data.get("google_client_id")

    @property
    def google_client_secret(self) -> Optional[str]:
        return self.data.get("google_client_secret")

    @property
    def company_domain(self) -> Optional[str]:
        return self.data.get("company_domain") or None

    @property
    def jwt_secret(self) -> Optional[str]:
        return self.data.get("jwt_secret")

    @property
    def log_level(self) -> str:
        return (self.data.get("log_level") or "INFO").upper()

    @property
    def log_format(self) -> str:
        return (self.data.get("log_format") or "plain").lower()

    @property
    def upstream_timeout(self) -> float:
        return float(self.data.get("upstream_timeout") or 10.0)

    @property
    def extra_redirect_uri_patterns(self) -> list[str]:
        raw = self.data.get("extra_redirect_uri_patterns") or ""
        return [p.strip() for p in raw.split(",") if p.strip()]

    @property
    def enable_registration(self) -> bool:
        return str(self.data.get("enable_registration", "true")).lower() == "true"

    def problems(self) -> list[str]:
        """List everything wrong with this config."""
        problems = []
        if not self.google_client_id:
            problems.append("GOOGLE_CLIENT_ID is required")
        if not self.google_client_secret:
            problems.append("GOOGLE_CLIENT_SECRET is required")
        if not self.jwt_secret or len(self.jwt_secret) < MIN_JWT_SECRET_LENGTH:
            problems.append(f"JWT_SECRET must be at least {MIN_JWT_SECRET_LENGTH} characters")
        if self.log_format not in ("plain", "json"):
            problems.append("LOG_FORMAT must be 'plain' or 'json'")
        try:
            _ = (self.port, self.upstream_timeout)
        except ValueError:
            problems.append("PORT and UPSTREAM_TIMEOUT_SECONDS must be numbers")
        return problems

    def is_valid(self) -> bool:
        """Check if config has required fields."""
        return not self.problems()

    def validate(self) -> "Config":
        problems = self.problems()
        if problems:
            raise ConfigError("; ".join(problems))
        return self


def load_env_file(path: Path = Path(".env")) -> None:
    """Load a local .env file if there is one (does not override the environment)."""
    if path.exists():
        load_dotenv(path)


def load_config() -> Config:
    """Load config from environment variables."""
    return Config({
        "base_url": os.getenv("AUTH_BASE_URL") or os.getenv("MCP_BASE_URL"),
        "host": os.getenv("HOST"),
        "port": os.getenv("PORT"),
        "google_client_id": os.getenv("GOOGLE_CLIENT_ID"),
        "google_client_secret": os.getenv("GOOGLE_CLIENT_SECRET"),
        "company_domain": os.getenv("COMPANY_DOMAIN"),
        "jwt_secret": os.getenv("JWT_SECRET"),
        "log_level": os.getenv("LOG_LEVEL"),
        "log_format": os.getenv("LOG_FORMAT"),
        "upstream_timeout": os.getenv("UPSTREAM_TIMEOUT_SECONDS"),
        "extra_redirect_uri_patterns": os.getenv("EXTRA_REDIRECT_URI_PATTERNS"),
        "enable_registration": os.getenv("ENABLE_REGISTRATION", "true"),
    })
