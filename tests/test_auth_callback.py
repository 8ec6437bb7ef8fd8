"""Tests for the localhost redirect listener."""

import asyncio

import pytest

from chesslink.auth.callback import (
    CallbackError,
    CallbackResult,
    LocalhostCallbackServer,
    parse_callback_url,
    render_page,
)


async def send_request(port: int, target: str, method: str = "GET") -> bytes:
    """Send a raw HTTP request to the listener and return the full response."""
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    writer.write(f"{method} {target} HTTP/1.1\r\nHost: localhost\r\n\r\n".encode())
    await writer.drain()
    response = await reader.read()
    writer.close()
    await writer.wait_closed()
    return response


class TestParseCallbackUrl:
    """Tests for parse_callback_url."""

    def test_success(self) -> None:
        result = parse_callback_url("/callback?code=abc123&state=xyz789")
        assert result == CallbackResult(code="abc123", state="xyz789")
        assert result.is_success()

    def test_error(self) -> None:
        result = parse_callback_url("/callback?error=access_denied&error_description=User+denied&state=s")
        assert result.error == "access_denied"
        assert result.error_description == "User denied"
        assert not result.is_success()

    def test_first_value_wins(self) -> None:
        assert parse_callback_url("/callback?code=first&code=second").code == "first"

    def test_empty(self) -> None:
        assert parse_callback_url("/callback") == CallbackResult()


class TestCallbackResult:
    """Tests for CallbackResult.state_matches."""

    def test_state_matches(self) -> None:
        assert CallbackResult(state="abc").state_matches("abc")
        assert not CallbackResult(state="abd").state_matches("abc")
        assert not CallbackResult().state_matches("abc")


class TestRenderPage:
    """Tests for the browser page."""

    def test_dynamic_text_is_escaped(self) -> None:
        page = render_page("Denied", "x", "<script>alert(1)</script>", ok=False)
        assert "<script>" not in page
        assert "&lt;script&gt;" in page


class TestLocalhostCallbackServer:
    """Tests for LocalhostCallbackServer."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self) -> None:
        server = LocalhostCallbackServer()
        redirect_uri = await server.start()

        assert server.listening
        assert server.port > 0
        assert redirect_uri == f"http://127.0.0.1:{server.port}/callback"

        await server.stop()
        assert not server.listening
        # Stopping twice is harmless
        await server.stop()

    @pytest.mark.asyncio
    async def test_wait_before_start_raises(self) -> None:
        with pytest.raises(CallbackError, match="not started"):
            await LocalhostCallbackServer().wait()

    @pytest.mark.asyncio
    async def test_receives_redirect(self) -> None:
        async with LocalhostCallbackServer(expected_state="s1") as server:
            response = await send_request(server.port, "/callback?code=c1&state=s1")
            result = await asyncio.wait_for(server.wait(), timeout=5)

        assert result == CallbackResult(code="c1", state="s1")
        assert response.startswith(b"HTTP/1.1 200 OK")
        assert b"Authorization Successful" in response
        assert b"X-Frame-Options: DENY" in response

    @pytest.mark.asyncio
    async def test_stops_listening_after_redirect(self) -> None:
        async with LocalhostCallbackServer() as server:
            port = server.port
            await send_request(port, "/callback?code=c1&state=s1")
            await asyncio.wait_for(server.wait(), timeout=5)

            assert not server.listening
            with pytest.raises(OSError):
                await send_request(port, "/callback?code=c2&state=s1")

    @pytest.mark.asyncio
    async def test_denied_page(self) -> None:
        async with LocalhostCallbackServer(expected_state="s1") as server:
            response = await send_request(server.port, "/callback?error=access_denied&state=s1")
            result = await asyncio.wait_for(server.wait(), timeout=5)

        assert result.error == "access_denied"
        assert b"Authorization Denied" in response

    @pytest.mark.asyncio
    async def test_state_mismatch_page(self) -> None:
        async with LocalhostCallbackServer(expected_state="expected") as server:
            response = await send_request(server.port, "/callback?code=c1&state=forged")
            result = await asyncio.wait_for(server.wait(), timeout=5)

        assert result.state == "forged"
        assert b"state mismatch" in response

    @pytest.mark.asyncio
    async def test_stray_requests_ignored(self) -> None:
        async with LocalhostCallbackServer() as server:
            favicon = await send_request(server.port, "/favicon.ico")
            other = await send_request(server.port, "/elsewhere?code=nope")
            post = await send_request(server.port, "/callback?code=nope", method="POST")
            await send_request(server.port, "/callback?code=real&state=s")
            result = await asyncio.wait_for(server.wait(), timeout=5)

        assert favicon.startswith(b"HTTP/1.1 404")
        assert other.startswith(b"HTTP/1.1 404")
        assert post.startswith(b"HTTP/1.1 405")
        assert result.code == "real"

    @pytest.mark.asyncio
    async def test_unparseable_target_is_bad_request(self) -> None:
        async with LocalhostCallbackServer() as server:
            bad = await send_request(server.port, "http://[bad/callback?code=nope")
            assert server.listening
            await send_request(server.port, "/callback?code=real&state=s")
            result = await asyncio.wait_for(server.wait(), timeout=5)

        assert bad.startswith(b"HTTP/1.1 400")
        assert result.code == "real"

    @pytest.mark.asyncio
    async def test_idle_connection_is_dropped(self) -> None:
        async with LocalhostCallbackServer(read_timeout=0.1) as server:
            reader, writer = await asyncio.open_connection("127.0.0.1", server.port)
            # Nothing is sent; the listener gives up and closes the socket
            assert await asyncio.wait_for(reader.read(), timeout=5) == b""
            writer.close()
            await writer.wait_closed()

    @pytest.mark.asyncio
    async def test_stop_closes_idle_connections(self) -> None:
        server = LocalhostCallbackServer()
        await server.start()
        reader, writer = await asyncio.open_connection("127.0.0.1", server.port)
        await asyncio.sleep(0.05)

        await asyncio.wait_for(server.stop(), timeout=5)

        assert not server.listening
        assert await asyncio.wait_for(reader.read(), timeout=5) == b""
        writer.close()
        await writer.wait_closed()
