"""Configuration management for Trakt MCP Server."""

import os
from typing import Optional, Dict, Mapping
from dataclasses import dataclass, field


BASE_URL = "https://api.trakt.tv"

LOG_LEVELS = {
    "debug": "DEBUG",
    "info": "INFO",
    "warn": "WARNING",
    "warning": "WARNING",
    "error": "ERROR",
}


@dataclass
class TraktConfig:
    """Trakt API credentials."""
    client_id: str = ""
    client_secret: str = ""
    access_token: str = ""
    refresh_token: str = ""
    base_url: str = BASE_URL
    timeout: int = 30

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.access_token)


@dataclass
class ServerConfig:
    """MCP server configuration."""
    log_level: str = "INFO"
    log_file: Optional[str] = None
    require_initialization: bool = False


@dataclass
class Config:
    """Main configuration."""
    trakt: TraktConfig = field(default_factory=TraktConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    def to_dict(self) -> Dict:
        """Convert configuration to dictionary for logging setup."""
        return {
            "log_level": self.server.log_level,
            "log_file": self.server.log_file,
            "configured": self.trakt.is_configured,
            "authenticated": self.trakt.is_authenticated,
        }


def parse_log_level(value: Optional[str]) -> str:
    """Map a LOG_LEVEL value onto a logging level name, defaulting to INFO."""
    if not value:
        return "INFO"
    return LOG_LEVELS.get(value.strip().lower(), "INFO")


def load_config(environ: Optional[Mapping[str, str]] = None) -> Config:
    """Load configuration from environment variables."""
    if environ is None:
        environ = os.environ

    trakt_config = TraktConfig(
        client_id=environ.get("TRAKT_CLIENT_ID", ""),
        client_secret=environ.get("TRAKT_CLIENT_SECRET", ""),
        access_token=environ.get("TRAKT_ACCESS_TOKEN", ""),
        refresh_token=environ.get("TRAKT_REFRESH_TOKEN", ""),
    )

    server_config = ServerConfig(
        log_level=parse_log_level(environ.get("LOG_LEVEL")),
        log_file=environ.get("LOG_FILE") or None,
    )

    return Config(trakt=trakt_config, server=server_config)
