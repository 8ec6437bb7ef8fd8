"""Tests for CLI commands."""

import json
from collections.abc import Generator
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from click.testing import CliRunner

from conftest import json_response, ndjson_response
from chesslink.auth import AuthError, AuthManager, AuthStatus, TokenSet, TokenStore
from chesslink.cli import main
from chesslink.pipeline import RequestPipeline
from chesslink.result import ErrorInfo, ErrorKind
from chesslink.scopes import Scope


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def isolated_config(clean_env: None) -> Generator[None, None, None]:
    """Keep .env files on this machine out of the tests."""
    with patch("chesslink.config.ENV_SEARCH_PATHS", []):
        yield


@pytest.fixture
def store(no_keyring: None, store_dir: Path) -> Generator[TokenStore, None, None]:
    """Route the CLI's AuthManager to a temporary token store."""
    token_store = TokenStore(store_dir=store_dir)
    with patch("chesslink.cli.AuthManager", side_effect=lambda config: AuthManager(config, store=token_store)):
        yield token_store


@pytest.fixture
def api():
    """Route the CLI's pipelines to a MockTransport; set ``api.handler`` per test."""

    class Api:
        handler = staticmethod(lambda request: json_response(404, {}))
        requests: list[httpx.Request] = []

    def handle(request: httpx.Request) -> httpx.Response:
        Api.requests.append(request)
        return Api.handler(request)

    def make(base_url: str, timeout: float) -> RequestPipeline:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handle))
        return RequestPipeline(base_url, http_client=client, timeout=timeout)

    Api.requests = []
    with patch("chesslink.cli.RequestPipeline", side_effect=make):
        yield Api


@pytest.fixture
def mock_manager() -> Generator[MagicMock, None, None]:
    manager = MagicMock()
    with patch("chesslink.cli.AuthManager", return_value=manager):
        yield manager


class TestEndpointsCommand:
    """Tests for the endpoints command."""

    def test_lists_catalog(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["endpoints"])
        assert result.exit_code == 0
        assert "stream-events" in result.stdout
        assert "challenge:read" in result.stdout

    def test_json(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["--json", "endpoints"])
        assert result.exit_code == 0
        rows = json.loads(result.stdout)["data"]
        by_name = {row["Name"]: row for row in rows}
        assert by_name["user"]["Path"] == "/api/user/{username}"
        assert by_name["stream-board-game"]["Shape"] == "stream"


class TestCallCommand:
    """Tests for the call command."""

    def test_single_result(self, runner: CliRunner, store: TokenStore, api) -> None:
        api.handler = lambda request: json_response(200, {"id": "bob", "username": "Bob"})

        result = runner.invoke(main, ["--json", "call", "user", "-p", "username=bob"])

        assert result.exit_code == 0, result.stdout
        assert json.loads(result.stdout) == {"success": True, "data": {"id": "bob", "username": "Bob"}}
        assert api.requests[0].url == "https://lichess.org/api/user/bob"

    def test_query_and_body(self, runner: CliRunner, store: TokenStore, api) -> None:
        store.set_token("https://lichess.org", TokenSet(access_token="lio_x", api_url="https://lichess.org"))
        api.handler = lambda request: json_response(200, {"ok": True})

        result = runner.invoke(
            main,
            ["call", "challenge-decline", "-p", "challengeId=c1", "-d", "reason=later"],
        )

        assert result.exit_code == 0, result.stdout
        request = api.requests[0]
        assert request.headers["Authorization"] == "Bearer lio_x"
        assert request.content == b"reason=later"

    def test_none_match(self, runner: CliRunner, store: TokenStore, api) -> None:
        result = runner.invoke(main, ["call", "user", "-p", "username=ghost"])
        assert result.exit_code == 0
        assert "No match." in result.stdout

    def test_unknown_endpoint(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["call", "no-such-thing"])
        assert result.exit_code == 1
        assert "Unknown endpoint" in result.stderr

    def test_missing_path_argument(self, runner: CliRunner, store: TokenStore, api) -> None:
        result = runner.invoke(main, ["call", "user"])
        assert result.exit_code == 1
        assert "-p username=" in result.stderr
        assert api.requests == []

    def test_malformed_pair(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["call", "user", "-p", "username"])
        assert result.exit_code == 2
        assert "key=value" in result.stderr

    def test_scoped_endpoint_without_token(self, runner: CliRunner, store: TokenStore, api) -> None:
        result = runner.invoke(main, ["call", "stream-events"])

        assert result.exit_code == 1
        assert "auth login -s challenge:read" in result.stderr
        assert api.requests == []

    def test_environment_token(self, runner: CliRunner, store: TokenStore, api, monkeypatch) -> None:
        monkeypatch.setenv("LICHESS_TOKEN", "lip_personal")
        api.handler = lambda request: ndjson_response([])

        result = runner.invoke(main, ["call", "stream-events"])

        assert result.exit_code == 0, result.stderr
        assert api.requests[0].headers["Authorization"] == "Bearer lip_personal"

    def test_stream_lines_with_limit(self, runner: CliRunner, store: TokenStore, api) -> None:
        api.handler = lambda request: ndjson_response([json.dumps({"id": f"g{i}"}) for i in range(10)])

        result = runner.invoke(main, ["call", "user-games", "-p", "username=bob", "-q", "max=10", "--limit", "3"])

        assert result.exit_code == 0, result.stdout
        assert [json.loads(line)["id"] for line in result.stdout.splitlines()] == ["g0", "g1", "g2"]
        assert api.requests[0].url.params["max"] == "10"

    def test_stream_interrupted(self, runner: CliRunner, store: TokenStore, api) -> None:
        api.handler = lambda request: ndjson_response(['{"id": "g0"}'], error=httpx.ReadError("reset"))

        result = runner.invoke(main, ["call", "user-games", "-p", "username=bob"])

        assert result.exit_code == 1
        assert result.stdout.splitlines() == ['{"id":"g0"}']
        assert "transport" in result.stderr

    def test_remote_rejection(self, runner: CliRunner, store: TokenStore, api) -> None:
        api.handler = lambda request: json_response(400, {"error": "Invalid username"})

        result = runner.invoke(main, ["--json", "call", "user", "-p", "username=x"])

        assert result.exit_code == 1
        error = json.loads(result.stdout)["error"]
        assert error["type"] == "REMOTE_REJECTED"
        assert error["message"] == "Invalid username"

    def test_local_server(self, runner: CliRunner, store: TokenStore, api) -> None:
        api.handler = lambda request: json_response(200, {"id": "bob"})
        result = runner.invoke(main, ["--local", "call", "user", "-p", "username=bob"])
        assert result.exit_code == 0
        assert api.requests[0].url.host == "localhost"
        assert api.requests[0].url.port == 9663


class TestAuthCommands:
    """Tests for the auth command group."""

    def test_login(self, runner: CliRunner, mock_manager: MagicMock) -> None:
        mock_manager.login = AsyncMock(
            return_value=TokenSet(access_token="lio_new", api_url="https://lichess.org", scope="board:play")
        )

        result = runner.invoke(main, ["auth", "login", "-s", "board:play", "--no-browser", "-t", "30"])

        assert result.exit_code == 0, result.stdout
        assert "Logged in to https://lichess.org" in result.stdout
        args, kwargs = mock_manager.login.call_args
        assert args == ([Scope.board_play],)
        assert kwargs["timeout"] == 30
        assert kwargs["open_browser"] is False

    def test_login_rejects_unknown_scope(self, runner: CliRunner, mock_manager: MagicMock) -> None:
        result = runner.invoke(main, ["auth", "login", "-s", "telepathy:read"])
        assert result.exit_code == 2

    def test_login_failure(self, runner: CliRunner, mock_manager: MagicMock) -> None:
        error = ErrorInfo(ErrorKind.DENIED, message="access_denied")
        mock_manager.login = AsyncMock(side_effect=AuthError("Authorization failed: denied", error))

        result = runner.invoke(main, ["--json", "auth", "login"])

        assert result.exit_code == 1
        assert json.loads(result.stdout)["error"]["type"] == "DENIED"

    def test_status(self, runner: CliRunner, mock_manager: MagicMock) -> None:
        mock_manager.status.return_value = AuthStatus(
            api_url="https://lichess.org",
            authenticated=True,
            source="stored",
            scope="email:read",
            expires_in_human="3 days",
        )

        result = runner.invoke(main, ["auth", "status"])

        assert result.exit_code == 0
        assert "Source: stored" in result.stdout
        assert "Expires in: 3 days" in result.stdout

    def test_status_json_unauthenticated(self, runner: CliRunner, store: TokenStore) -> None:
        result = runner.invoke(main, ["--json", "auth", "status"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)["data"]
        assert data["authenticated"] is False
        assert data["api_url"] == "https://lichess.org"

    def test_logout(self, runner: CliRunner, mock_manager: MagicMock) -> None:
        mock_manager.logout = AsyncMock(return_value=True)
        mock_manager.config.api_url = "https://lichess.org"

        result = runner.invoke(main, ["auth", "logout"])

        assert result.exit_code == 0
        assert "Logged out from https://lichess.org" in result.stdout

    def test_logout_all(self, runner: CliRunner, mock_manager: MagicMock) -> None:
        result = runner.invoke(main, ["auth", "logout", "--all"])
        assert result.exit_code == 0
        mock_manager.store.clear_all.assert_called_once()

    def test_token_url(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["--local", "auth", "token-url", "-s", "board:play", "--description", "bot"])

        assert result.exit_code == 0
        url = result.stdout.strip()
        assert url.startswith("http://localhost:9663/account/oauth/token/create?")
        assert "scopes%5B%5D=board%3Aplay" in url
        assert "description=bot" in url
