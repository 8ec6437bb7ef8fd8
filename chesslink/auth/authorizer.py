"""OAuth2 authorization code flow with PKCE.

``PkceAuthorizer.begin()`` returns a session as soon as the redirect
listener is bound; the session's ``url`` is what the user opens in a
browser. A background task then drives the session:

    STARTED -> AWAITING_REDIRECT -> CODE_RECEIVED -> EXCHANGED
                                 \\-> DENIED         (user declined)
                                 \\-> FAILED         (state mismatch, exchange
                                                     failure, cancellation)
                                 \\-> TIMED_OUT      (no redirect in time)

``await session.token()`` resolves to ``One(TokenSet)`` or ``Fail(...)``.
The listener is closed on every terminal transition.
"""

import asyncio
import logging
from enum import Enum
from typing import Iterable
from urllib.parse import urlencode

from ..endpoints import TOKEN_EXCHANGE
from ..pipeline import RequestPipeline
from ..result import ErrorInfo, ErrorKind, Fail, One, Result
from ..scopes import Scope, join_scopes
from .callback import LocalhostCallbackServer
from .pkce import PkcePair, generate_pkce_pair, generate_state
from .tokens import TokenSet

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120.0  # seconds
AUTHORIZE_PATH = "/oauth"
PERSONAL_TOKEN_PATH = "/account/oauth/token/create"


class PkceStatus(Enum):
    STARTED = "started"
    AWAITING_REDIRECT = "awaiting_redirect"
    CODE_RECEIVED = "code_received"
    EXCHANGED = "exchanged"
    DENIED = "denied"
    TIMED_OUT = "timed_out"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (
            PkceStatus.EXCHANGED,
            PkceStatus.DENIED,
            PkceStatus.TIMED_OUT,
            PkceStatus.FAILED,
        )


def build_authorization_url(
    authorize_url: str,
    client_id: str,
    redirect_uri: str,
    scopes: Iterable[Scope],
    code_challenge: str,
    state: str,
) -> str:
    """Build the URL the user visits to grant access."""
    params: dict[str, str] = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "code_challenge_method": "S256",
        "code_challenge": code_challenge,
        "state": state,
    }
    scope = join_scopes(scopes)
    if scope:
        params["scope"] = scope
    return f"{authorize_url}?{urlencode(params)}"


def personal_token_url(api_url: str, description: str, scopes: Iterable[Scope]) -> str:
    """URL of the page that creates a personal access token with the given scopes.

    An alternative to the PKCE flow for scripts run by the account owner.
    """
    params: list[tuple[str, str]] = [("scopes[]", scope.wire) for scope in scopes]
    params.append(("description", description))
    return f"{api_url.rstrip('/')}{PERSONAL_TOKEN_PATH}?{urlencode(params)}"


class PkceSession:
    """One authorization attempt.

    Attributes:
        url: Authorization URL to open in a browser
        scopes: Requested scopes
        state: Correlation value expected back in the redirect
        pkce: Verifier/challenge pair
        status: Current PkceStatus
        error: ErrorInfo of a failed session
        token_set: The token of an exchanged session
    """

    def __init__(
        self,
        scopes: list[Scope],
        pkce: PkcePair,
        state: str,
        listener: LocalhostCallbackServer,
        timeout: float | None,
    ):
        self.scopes = scopes
        self.pkce = pkce
        self.state = state
        self.timeout = timeout
        self.url = ""
        self.status = PkceStatus.STARTED
        self.error: ErrorInfo | None = None
        self.token_set: TokenSet | None = None

        self._listener = listener
        self._task: asyncio.Task[Result] | None = None

    @property
    def redirect_uri(self) -> str:
        return self._listener.redirect_uri

    @property
    def listening(self) -> bool:
        return self._listener.listening

    def done(self) -> bool:
        return self.status.is_terminal

    def _finish(self, status: PkceStatus, error: ErrorInfo | None = None) -> Result:
        self.status = status
        self.error = error
        if error is not None:
            logger.warning(f"Authorization {status.value}: {error.describe()}")
            return Fail(error)
        logger.info("Authorization completed")
        assert self.token_set is not None
        return One(self.token_set)

    async def token(self) -> Result:
        """Wait for the session to finish.

        Returns:
            One(TokenSet) on success, Fail(ErrorInfo) otherwise

        Cancelling the task that waits here also cancels the session.
        """
        if self._task is None:
            raise RuntimeError("Session has not been started")

        try:
            return await asyncio.shield(self._task)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if self._task.cancelled() and not (current and current.cancelling()):
                # Cancelled through cancel(), not by our caller
                return Fail(self.error or ErrorInfo(ErrorKind.CANCELLED))
            await self.cancel()
            raise

    async def cancel(self) -> None:
        """Abort the session and close the listener."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        if not self.done():
            # A task cancelled before its first step never reaches _run's handler
            self._finish(
                PkceStatus.FAILED,
                ErrorInfo(ErrorKind.CANCELLED, message="Authorization cancelled"),
            )
        await self._listener.stop()


class PkceAuthorizer:
    """Starts PKCE sessions against the API's authorization server.

    Usage:
        authorizer = PkceAuthorizer(pipeline, client_id="my-app")
        session = await authorizer.begin([Scope.board_play], timeout=120)
        print(f"Open {session.url}")
        match await session.token():
            case One(item=token):
                ...
            case Fail(error=error):
                ...
    """

    def __init__(
        self,
        pipeline: RequestPipeline,
        client_id: str,
        authorize_url: str | None = None,
    ):
        self.pipeline = pipeline
        self.client_id = client_id
        self.authorize_url = authorize_url or f"{pipeline.base_url}{AUTHORIZE_PATH}"

    async def begin(
        self,
        scopes: Iterable[Scope],
        timeout: float | None = DEFAULT_TIMEOUT,
    ) -> PkceSession:
        """Start a session and return it without waiting for the user.

        Args:
            scopes: Scopes to request
            timeout: Seconds to wait for the redirect and exchange (None waits forever)
        """
        pkce = generate_pkce_pair()
        state = generate_state()
        listener = LocalhostCallbackServer(expected_state=state)
        session = PkceSession(list(scopes), pkce, state, listener, timeout)

        await listener.start()
        session.url = build_authorization_url(
            self.authorize_url,
            self.client_id,
            listener.redirect_uri,
            session.scopes,
            pkce.challenge,
            state,
        )
        session.status = PkceStatus.AWAITING_REDIRECT
        session._task = asyncio.create_task(self._run(session))
        logger.debug(f"Authorization session waiting on {listener.redirect_uri}")
        return session

    async def _run(self, session: PkceSession) -> Result:
        try:
            return await asyncio.wait_for(self._complete(session), timeout=session.timeout)
        except TimeoutError:
            return session._finish(
                PkceStatus.TIMED_OUT,
                ErrorInfo(
                    ErrorKind.TIMEOUT,
                    message=f"No authorization received within {session.timeout:g} seconds",
                ),
            )
        except asyncio.CancelledError:
            session._finish(
                PkceStatus.FAILED,
                ErrorInfo(ErrorKind.CANCELLED, message="Authorization cancelled"),
            )
            raise
        finally:
            await session._listener.stop()

    async def _complete(self, session: PkceSession) -> Result:
        callback = await session._listener.wait()

        if not callback.state_matches(session.state):
            return session._finish(
                PkceStatus.FAILED,
                ErrorInfo(ErrorKind.STATE_MISMATCH, message="State mismatch in redirect"),
            )

        if callback.error:
            detail = callback.error_description or callback.error
            return session._finish(
                PkceStatus.DENIED,
                ErrorInfo(ErrorKind.DENIED, message=f"{callback.error}: {detail}"),
            )

        if callback.code is None:
            return session._finish(
                PkceStatus.FAILED,
                ErrorInfo(ErrorKind.REMOTE_REJECTED, message="No authorization code in redirect"),
            )

        session.status = PkceStatus.CODE_RECEIVED
        await session._listener.stop()

        return await self._exchange(session, callback.code)

    async def _exchange(self, session: PkceSession, code: str) -> Result:
        result = await self.pipeline.execute(
            TOKEN_EXCHANGE,
            body={
                "grant_type": "authorization_code",
                "code": code,
                "code_verifier": session.pkce.verifier,
                "redirect_uri": session.redirect_uri,
                "client_id": self.client_id,
            },
        )

        match result:
            case One(item=dict() as payload):
                try:
                    session.token_set = TokenSet.from_token_response(
                        payload, self.pipeline.base_url, session.scopes
                    )
                except (KeyError, TypeError, ValueError) as e:
                    return session._finish(
                        PkceStatus.FAILED,
                        ErrorInfo(ErrorKind.DECODE_FAILURE, message=f"Malformed token response: {e!r}"),
                    )
                return session._finish(PkceStatus.EXCHANGED)
            case Fail(error=error):
                return session._finish(PkceStatus.FAILED, error)
            case _:
                return session._finish(
                    PkceStatus.FAILED,
                    ErrorInfo(ErrorKind.DECODE_FAILURE, message="Token endpoint returned no token"),
                )
