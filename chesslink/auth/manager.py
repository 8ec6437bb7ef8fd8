"""High-level authentication manager used by the CLI.

Combines the PKCE authorizer, the encrypted token store and the
configuration: log in through the browser, pick the token to send with
requests, report status, and log out with server-side revocation.
"""

import logging
import webbrowser
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Callable, Iterable

from ..config import Config
from ..endpoints import TOKEN_REVOKE
from ..pipeline import RequestPipeline
from ..result import ErrorInfo, Fail, One
from ..scopes import Scope
from .authorizer import DEFAULT_TIMEOUT, PkceAuthorizer
from .store import TokenStore
from .tokens import TokenSet

logger = logging.getLogger(__name__)


class AuthError(Exception):
    """Login or logout did not succeed."""

    def __init__(self, message: str, error: ErrorInfo | None = None):
        super().__init__(message)
        self.error = error


def _format_timedelta(td: timedelta) -> str:
    """Human-readable duration ("45 minutes", "3 days", "2 weeks")."""
    total_seconds = int(td.total_seconds())
    if total_seconds < 0:
        return "Expired"
    if total_seconds < 60:
        return f"{total_seconds} seconds"

    minutes = total_seconds // 60
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    hours = minutes // 60
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''}"
    days = hours // 24
    if days < 14:
        return f"{days} day{'s' if days != 1 else ''}"
    weeks = days // 7
    return f"{weeks} week{'s' if weeks != 1 else ''}"


@dataclass
class AuthStatus:
    """Authentication state for one API.

    ``source`` is "stored" for a token obtained with ``login``,
    "environment" for a personal token from LICHESS_TOKEN, or None.
    """

    api_url: str
    authenticated: bool = False
    source: str | None = None
    expired: bool = False
    expires_at: str | None = None
    expires_in_human: str | None = None
    scope: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "api_url": self.api_url,
            "authenticated": self.authenticated,
            "source": self.source,
            "expired": self.expired,
            "expires_at": self.expires_at,
            "expires_in_human": self.expires_in_human,
            "scope": self.scope,
        }


class AuthManager:
    """Token lifecycle for the configured API.

    Usage:
        manager = AuthManager(load_config())
        await manager.login([Scope.challenge_read], on_status=print)
        token = manager.token()
    """

    def __init__(
        self,
        config: Config,
        store: TokenStore | None = None,
        pipeline: RequestPipeline | None = None,
        open_url: Callable[[str], bool] = webbrowser.open,
    ):
        self.config = config
        self._store = store
        self._pipeline = pipeline
        self._open_url = open_url

    @property
    def store(self) -> TokenStore:
        if self._store is None:
            self._store = TokenStore()
        return self._store

    @asynccontextmanager
    async def _pipeline_context(self) -> AsyncGenerator[RequestPipeline, None]:
        if self._pipeline is not None:
            yield self._pipeline
            return
        async with RequestPipeline(self.config.api_url, timeout=self.config.timeout) as pipeline:
            yield pipeline

    def stored_token(self) -> TokenSet | None:
        return self.store.get_token(self.config.api_url)

    def token(self) -> str | None:
        """Access token to send with requests.

        A stored, unexpired token wins over the LICHESS_TOKEN personal token.
        """
        stored = self.stored_token()
        if stored is not None and not stored.is_expired():
            return stored.access_token
        if stored is not None:
            logger.info(f"Stored token for {self.config.api_url} has expired")
        return self.config.token

    def status(self) -> AuthStatus:
        stored = self.stored_token()
        if stored is None:
            return AuthStatus(
                api_url=self.config.api_url,
                authenticated=self.config.token is not None,
                source="environment" if self.config.token else None,
            )

        expires_in_human = None
        if stored.expires_at is not None:
            expires_in_human = _format_timedelta(stored.expires_at - datetime.now(timezone.utc))

        return AuthStatus(
            api_url=self.config.api_url,
            authenticated=True,
            source="stored",
            expired=stored.is_expired(),
            expires_at=stored.expires_at.isoformat() if stored.expires_at else None,
            expires_in_human=expires_in_human,
            scope=stored.scope,
        )

    async def login(
        self,
        scopes: Iterable[Scope],
        timeout: float | None = DEFAULT_TIMEOUT,
        open_browser: bool = True,
        on_status: Callable[[str], None] | None = None,
    ) -> TokenSet:
        """Run the PKCE flow and store the resulting token.

        Raises:
            AuthError: If the session does not end with a token
        """
        emit = on_status or (lambda message: None)

        async with self._pipeline_context() as pipeline:
            authorizer = PkceAuthorizer(pipeline, self.config.client_id)
            session = await authorizer.begin(scopes, timeout=timeout)

            emit(f"Waiting for authorization on {session.redirect_uri}")
            if not open_browser or not self._open_url(session.url):
                emit(f"Open this URL to authorize:\n{session.url}")

            result = await session.token()

        match result:
            case One(item=token):
                self.store.set_token(self.config.api_url, token)
                emit("Successfully authenticated!")
                return token
            case Fail(error=error):
                raise AuthError(f"Authorization failed: {error.describe()}", error)
            case _:
                raise AuthError(f"Authorization failed: unexpected result {result!r}")

    async def logout(self) -> bool:
        """Revoke the stored token server-side and delete it locally.

        Revocation failures are logged, not raised; the local copy is
        deleted either way. Returns False if no token was stored.
        """
        stored = self.stored_token()
        if stored is None:
            return False

        async with self._pipeline_context() as pipeline:
            result = await pipeline.execute(TOKEN_REVOKE, token=stored.access_token)
        if isinstance(result, Fail):
            logger.warning(f"Token revocation failed: {result.error.describe()}")

        deleted = self.store.delete_token(self.config.api_url)
        if deleted:
            logger.info(f"Logged out from {self.config.api_url}")
        return deleted
