"""Configuration loading for chesslink.

Settings come from environment variables, optionally seeded from a .env
file:

    CHESSLINK_API_URL     base URL of the API (default https://lichess.org)
    CHESSLINK_CLIENT_ID   OAuth client id sent in the PKCE flow
    CHESSLINK_TIMEOUT     request timeout in seconds
    LICHESS_TOKEN         personal access token, used when no stored token exists
"""

import os
from dataclasses import dataclass, replace
from pathlib import Path

from dotenv import load_dotenv

from .pipeline import DEFAULT_API_URL, DEFAULT_TIMEOUT

LOCAL_API_URL = "http://localhost:9663"
DEFAULT_CLIENT_ID = "chesslink"

# Env file search paths in priority order
ENV_SEARCH_PATHS = [
    Path(".env"),
    Path.home() / ".config" / "chesslink" / ".env",
]


@dataclass(frozen=True)
class Config:
    """Resolved client configuration."""

    api_url: str = DEFAULT_API_URL
    client_id: str = DEFAULT_CLIENT_ID
    timeout: float = DEFAULT_TIMEOUT
    token: str | None = None
    env_path: Path | None = None

    def local(self) -> "Config":
        """The same configuration pointed at a local development server."""
        return replace(self, api_url=LOCAL_API_URL)


def find_env_file(explicit_path: Path | None = None) -> Path | None:
    """Find the .env file, checking the explicit path, then project, then user level."""
    if explicit_path:
        return explicit_path if explicit_path.exists() else None

    for path in ENV_SEARCH_PATHS:
        if path.exists():
            return path
    return None


def _parse_timeout(value: str) -> float:
    try:
        timeout = float(value)
    except ValueError:
        raise ValueError(f"CHESSLINK_TIMEOUT must be a number of seconds, got {value!r}") from None
    if timeout <= 0:
        raise ValueError(f"CHESSLINK_TIMEOUT must be positive, got {value!r}")
    return timeout


def load_config(env_path: Path | None = None) -> Config:
    """Load configuration from the environment.

    Args:
        env_path: Explicit .env file to load (optional)

    Raises:
        ValueError: If CHESSLINK_TIMEOUT is not a positive number
    """
    env_file = find_env_file(env_path)
    if env_file:
        load_dotenv(env_file)

    timeout = DEFAULT_TIMEOUT
    raw_timeout = os.environ.get("CHESSLINK_TIMEOUT")
    if raw_timeout:
        timeout = _parse_timeout(raw_timeout)

    return Config(
        api_url=os.environ.get("CHESSLINK_API_URL", DEFAULT_API_URL).rstrip("/") or DEFAULT_API_URL,
        client_id=os.environ.get("CHESSLINK_CLIENT_ID", DEFAULT_CLIENT_ID) or DEFAULT_CLIENT_ID,
        timeout=timeout,
        token=os.environ.get("LICHESS_TOKEN") or None,
        env_path=env_file,
    )
