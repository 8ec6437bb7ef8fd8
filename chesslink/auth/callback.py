"""Single-use localhost listener for the OAuth redirect.

The listener:
- binds 127.0.0.1 on a port chosen by the OS
- accepts the first GET on its callback path and stops listening
- answers the browser with a short confirmation or error page
- ignores favicon and other stray requests browsers like to make
"""

import asyncio
import hmac
import html
import logging
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any
from urllib.parse import parse_qs, urlparse

logger = logging.getLogger(__name__)

CALLBACK_HOST = "127.0.0.1"
CALLBACK_PATH = "/callback"
READ_TIMEOUT = 10.0  # seconds a connection may take to send its request


class CallbackError(Exception):
    """Error while running the redirect listener."""

    pass


@dataclass(frozen=True)
class CallbackResult:
    """Query parameters delivered by the authorization redirect."""

    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None

    def is_success(self) -> bool:
        return self.code is not None and self.error is None

    def state_matches(self, expected: str) -> bool:
        """Constant-time comparison against the session's state."""
        return hmac.compare_digest(self.state or "", expected)


PAGE_HTML = """<!DOCTYPE html>
<html>
<head>
    <title>{title}</title>
    <style>
        body {{
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
            display: flex;
            justify-content: center;
            align-items: center;
            height: 100vh;
            margin: 0;
            background: #262421;
        }}
        .card {{
            background: #fff;
            padding: 40px 60px;
            border-radius: 8px;
            text-align: center;
            max-width: 420px;
        }}
        h1 {{ color: {color}; margin: 0 0 12px 0; font-size: 24px; }}
        p {{ color: #444; margin: 0; }}
        code {{ display: block; margin-top: 16px; color: #c0392b; }}
    </style>
</head>
<body>
    <div class="card">
        <h1>{title}</h1>
        <p>{message}</p>{detail}
    </div>
</body>
</html>"""


def render_page(title: str, message: str, detail: str | None = None, ok: bool = True) -> str:
    """Render the page shown in the browser. All dynamic text is escaped."""
    detail_html = f"\n        <code>{html.escape(detail)}</code>" if detail else ""
    return PAGE_HTML.format(
        title=html.escape(title),
        message=html.escape(message),
        detail=detail_html,
        color="#629924" if ok else "#c0392b",
    )


def parse_callback_url(url: str) -> CallbackResult:
    """Parse the redirect request target (``/callback?code=...&state=...``)."""
    params = parse_qs(urlparse(url).query)

    def first(name: str) -> str | None:
        values = params.get(name, [])
        return values[0] if values else None

    return CallbackResult(
        code=first("code"),
        state=first("state"),
        error=first("error"),
        error_description=first("error_description"),
    )


class LocalhostCallbackServer:
    """Ephemeral HTTP listener that receives exactly one redirect.

    Usage:
        async with LocalhostCallbackServer(expected_state=state) as server:
            url = build_url(redirect_uri=server.redirect_uri)
            result = await server.wait()
    """

    def __init__(
        self,
        expected_state: str | None = None,
        path: str = CALLBACK_PATH,
        read_timeout: float = READ_TIMEOUT,
    ):
        self.expected_state = expected_state
        self.path = path
        self.read_timeout = read_timeout
        self.port: int = 0
        self.redirect_uri: str = ""

        self._server: asyncio.Server | None = None
        self._result: CallbackResult | None = None
        self._received: asyncio.Event | None = None
        self._writers: set[asyncio.StreamWriter] = set()

    @property
    def listening(self) -> bool:
        return self._server is not None and self._server.is_serving()

    async def start(self) -> str:
        """Bind the listener and return the redirect URI."""
        self._received = asyncio.Event()
        self._server = await asyncio.start_server(self._handle_connection, CALLBACK_HOST, 0)

        sockets = self._server.sockets
        if not sockets:
            raise CallbackError("Failed to start callback listener: no sockets created")

        self.port = sockets[0].getsockname()[1]
        self.redirect_uri = f"http://{CALLBACK_HOST}:{self.port}{self.path}"
        logger.debug(f"Callback listener started on {self.redirect_uri}")
        return self.redirect_uri

    async def stop(self) -> None:
        """Close the listener. Safe to call more than once."""
        server, self._server = self._server, None
        if server is None:
            return
        server.close()
        # Idle pre-connects would otherwise keep wait_closed() pending
        for writer in list(self._writers):
            writer.close()
        await server.wait_closed()
        logger.debug(f"Callback listener on port {self.port} stopped")

    async def wait(self) -> CallbackResult:
        """Wait until the redirect arrives.

        Raises:
            CallbackError: If the listener was never started
        """
        if self._received is None:
            raise CallbackError("Callback listener not started")
        await self._received.wait()
        assert self._result is not None
        return self._result

    def _accept(self, result: CallbackResult) -> None:
        """Record the redirect and stop accepting connections."""
        self._result = result
        if self._server is not None:
            self._server.close()
        if self._received is not None:
            self._received.set()

    def _page_for(self, result: CallbackResult) -> str:
        if result.error:
            return render_page(
                "Authorization Denied",
                "Access was not granted. You can close this window.",
                f"{result.error}: {result.error_description or 'no description'}",
                ok=False,
            )
        if self.expected_state is not None and not result.state_matches(self.expected_state):
            return render_page(
                "Authorization Failed",
                "The response did not match the request that started it.",
                "state mismatch",
                ok=False,
            )
        if result.code is None:
            return render_page(
                "Authorization Failed",
                "No authorization code was received.",
                ok=False,
            )
        return render_page(
            "Authorization Successful",
            "You can close this window and return to the terminal.",
        )

    async def _read_request(
        self, reader: asyncio.StreamReader
    ) -> tuple[HTTPStatus, str, str, CallbackResult | None]:
        """Read one request and decide the response.

        Returns (status, body, content type, accepted redirect or None).
        """
        plain = "text/plain; charset=utf-8"
        try:
            request_line = (await reader.readline()).decode("utf-8", errors="replace")
            parts = request_line.strip().split(" ")
            if len(parts) < 2:
                return HTTPStatus.BAD_REQUEST, "Invalid request", plain, None

            method, target = parts[0], parts[1]

            # Drain headers
            while True:
                header_line = await reader.readline()
                if header_line in (b"\r\n", b"\n", b""):
                    break

            if self._result is not None:
                return HTTPStatus.GONE, "Callback already received", plain, None

            if method != "GET":
                return HTTPStatus.METHOD_NOT_ALLOWED, "Method not allowed", plain, None

            if urlparse(target).path != self.path:
                return HTTPStatus.NOT_FOUND, "Not found", plain, None

            result = parse_callback_url(target)
        except ValueError as e:
            # Oversized lines and unparseable targets
            logger.debug(f"Rejecting malformed callback request: {e}")
            return HTTPStatus.BAD_REQUEST, "Invalid request", plain, None

        # Claim the redirect now so later connections get 410
        self._result = result
        return HTTPStatus.OK, self._page_for(result), "text/html; charset=utf-8", result

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        self._writers.add(writer)
        accepted: CallbackResult | None = None
        try:
            status, body, content_type, accepted = await asyncio.wait_for(
                self._read_request(reader), timeout=self.read_timeout
            )
            if accepted is not None:
                # stop() must not cut off the confirmation page
                self._writers.discard(writer)
            await self._send(writer, status, body, content_type=content_type)

        except TimeoutError:
            logger.debug("Closing idle callback connection")

        except (ConnectionError, asyncio.IncompleteReadError) as e:
            logger.debug(f"Callback connection dropped: {e}")

        finally:
            self._writers.discard(writer)
            if accepted is not None:
                self._accept(accepted)
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError:
                pass

    async def _send(
        self,
        writer: asyncio.StreamWriter,
        status: HTTPStatus,
        body: str,
        content_type: str = "text/plain; charset=utf-8",
    ) -> None:
        payload = body.encode("utf-8")
        headers = (
            f"HTTP/1.1 {status.value} {status.phrase}\r\n"
            f"Content-Type: {content_type}\r\n"
            f"Content-Length: {len(payload)}\r\n"
            f"X-Content-Type-Options: nosniff\r\n"
            f"X-Frame-Options: DENY\r\n"
            f"Content-Security-Policy: default-src 'none'; style-src 'unsafe-inline'\r\n"
            f"Connection: close\r\n"
            f"\r\n"
        )
        writer.write(headers.encode("utf-8") + payload)
        await writer.drain()

    async def __aenter__(self) -> "LocalhostCallbackServer":
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.stop()
