"""CLI entry point for chesslink."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any, NoReturn

import click

from . import __version__
from .auth import AuthError, AuthManager, TokenStoreError, personal_token_url
from .auth.authorizer import DEFAULT_TIMEOUT as LOGIN_TIMEOUT
from .config import Config, load_config
from .endpoints import ENDPOINTS, get_endpoint
from .output import OutputHandler
from .pipeline import RequestPipeline
from .result import ErrorKind, Fail, Many, NoneMatch, One, Result
from .scopes import Scope

# Logger for CLI
logger = logging.getLogger("chesslink")

SCOPE_CHOICES = [scope.wire for scope in Scope]


def _plain(item: Any) -> Any:
    """Convert decoded models back to plain JSON-compatible data."""
    if is_dataclass(item) and not isinstance(item, type):
        return asdict(item)
    return item


def _parse_pairs(values: tuple[str, ...], option: str) -> dict[str, Any]:
    """Parse repeated ``key=value`` options; a repeated key becomes a list."""
    parsed: dict[str, Any] = {}
    for value in values:
        key, sep, val = value.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got {value!r}", param_hint=option)
        if key in parsed:
            existing = parsed[key]
            parsed[key] = existing + [val] if isinstance(existing, list) else [existing, val]
        else:
            parsed[key] = val
    return parsed


def _scopes(values: tuple[str, ...]) -> list[Scope]:
    return [scope for scope in (Scope.from_wire(v) for v in values) if scope is not None]


@click.group()
@click.option("--json", "json_mode", is_flag=True, help="Output in JSON format")
@click.option("--env-file", "env_path", type=click.Path(exists=True), help="Path to .env file")
@click.option("--local", is_flag=True, help="Use a development server on localhost:9663")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, json_mode: bool, env_path: str | None, local: bool, verbose: bool) -> None:
    """chesslink - Call the Lichess web API from the command line."""
    ctx.ensure_object(dict)
    ctx.obj["json_mode"] = json_mode
    ctx.obj["env_path"] = Path(env_path) if env_path else None
    ctx.obj["local"] = local
    ctx.obj["output"] = OutputHandler(json_mode)

    # Configure logging based on verbosity
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
    else:
        logging.basicConfig(level=logging.WARNING)


def get_config(ctx: click.Context) -> Config | NoReturn:
    """Get config from context, handling errors."""
    output: OutputHandler = ctx.obj["output"]
    try:
        config = load_config(ctx.obj["env_path"])
    except ValueError as e:
        output.error(e, error_type="ConfigError", help_text="Check the CHESSLINK_* environment variables.")
        raise SystemExit(1)  # Never reached due to sys.exit in output.error
    return config.local() if ctx.obj["local"] else config


def get_manager(ctx: click.Context) -> AuthManager:
    return AuthManager(get_config(ctx))


@main.command()
@click.pass_context
def endpoints(ctx: click.Context) -> None:
    """List the available endpoints."""
    output: OutputHandler = ctx.obj["output"]
    rows = [
        [
            d.name,
            d.method,
            d.path,
            d.scope.wire if d.scope else "-",
            d.shape.value,
        ]
        for d in ENDPOINTS.values()
    ]
    output.table(["Name", "Method", "Path", "Scope", "Shape"], rows)


@main.command()
@click.argument("name")
@click.option("--path", "-p", "path_args", multiple=True, help="Path argument as key=value")
@click.option("--query", "-q", "query", multiple=True, help="Query parameter as key=value")
@click.option("--data", "-d", "data", multiple=True, help="Body field as key=value")
@click.option("--limit", "-n", type=int, default=None, help="Stop after this many items")
@click.pass_context
def call(
    ctx: click.Context,
    name: str,
    path_args: tuple[str, ...],
    query: tuple[str, ...],
    data: tuple[str, ...],
    limit: int | None,
) -> None:
    """Call the endpoint NAME.

    Single results print as JSON. Lists and streams print one JSON object
    per line until the stream ends, --limit items were read, or Ctrl-C.

    Example: chesslink call user -p username=thibault
    """
    output: OutputHandler = ctx.obj["output"]
    try:
        descriptor = get_endpoint(name)
    except KeyError as e:
        output.error(e, error_type="UnknownEndpoint", help_text="Run 'chesslink endpoints' to list them.")
        return

    path_values = _parse_pairs(path_args, "--path")
    query_values = _parse_pairs(query, "--query")
    body = _parse_pairs(data, "--data") or None

    manager = get_manager(ctx)
    try:
        token = manager.token()
    except TokenStoreError as e:
        logger.warning(f"Ignoring stored token: {e}")
        token = manager.config.token

    async def run() -> Result:
        async with RequestPipeline(manager.config.api_url, timeout=manager.config.timeout) as pipeline:
            result = await pipeline.execute(descriptor, path_values, query_values, body, token)
            if isinstance(result, Many):
                async with result:
                    count = 0
                    async for item in result:
                        output.line(_plain(item))
                        count += 1
                        if limit is not None and count >= limit:
                            break
            return result

    try:
        result = asyncio.run(run())
    except ValueError as e:
        output.error(
            e,
            error_type="ArgumentError",
            help_text="Pass path arguments as -p key=value, e.g. "
            + " ".join(f"-p {p}=..." for p in descriptor.placeholders),
        )
        return
    except KeyboardInterrupt:
        click.echo("Interrupted.", err=True)
        return

    match result:
        case One(item=item):
            output.success(_plain(item))
        case NoneMatch():
            output.success(None, human_message="No match.")
        case Fail(error=error):
            help_text = None
            if error.kind is ErrorKind.UNAUTHORIZED and descriptor.scope is not None:
                help_text = (
                    f"Run 'chesslink auth login -s {descriptor.scope.wire}' "
                    "or set LICHESS_TOKEN to a personal token with that scope."
                )
            output.failure(error, help_text=help_text)
        case Many() as many:
            if many.malformed:
                click.secho(f"Skipped {many.malformed} malformed line(s).", fg="yellow", err=True)
            if many.error is not None:
                output.failure(many.error)


@main.group()
@click.pass_context
def auth(ctx: click.Context) -> None:
    """Log in, inspect and revoke access tokens."""
    pass


@auth.command("login")
@click.option("--scope", "-s", "scopes", multiple=True, type=click.Choice(SCOPE_CHOICES), help="Scope to request")
@click.option("--timeout", "-t", default=LOGIN_TIMEOUT, help="Seconds to wait for the browser redirect")
@click.option("--no-browser", is_flag=True, help="Print the authorization URL instead of opening it")
@click.pass_context
def auth_login(ctx: click.Context, scopes: tuple[str, ...], timeout: float, no_browser: bool) -> None:
    """Authorize this client in the browser (OAuth2 PKCE)."""
    output: OutputHandler = ctx.obj["output"]
    manager = get_manager(ctx)

    def on_status(message: str) -> None:
        click.echo(message, err=True)

    try:
        token = asyncio.run(
            manager.login(_scopes(scopes), timeout=timeout, open_browser=not no_browser, on_status=on_status)
        )
    except AuthError as e:
        output.error(e, error_type=e.error.kind.name if e.error else None)
        return
    except TokenStoreError as e:
        output.error(e, help_text="Run 'chesslink auth logout --all' and log in again.")
        return

    output.success(
        {
            "api_url": token.api_url,
            "scope": token.scope,
            "expires_at": token.expires_at.isoformat() if token.expires_at else None,
        },
        human_message=f"Logged in to {token.api_url}",
    )


@auth.command("status")
@click.pass_context
def auth_status(ctx: click.Context) -> None:
    """Show which token requests will use."""
    output: OutputHandler = ctx.obj["output"]
    manager = get_manager(ctx)
    try:
        status = manager.status()
    except TokenStoreError as e:
        output.error(e, help_text="Run 'chesslink auth logout --all' and log in again.")
        return

    if ctx.obj["json_mode"]:
        output.success(status.to_dict())
        return

    click.secho(f"{status.api_url}", fg="cyan", bold=True)
    if not status.authenticated:
        click.echo("  Not authenticated. Run 'chesslink auth login'.")
        return
    click.echo(f"  Source: {status.source}")
    if status.scope:
        click.echo(f"  Scopes: {status.scope}")
    if status.expired:
        click.secho("  Token expired. Run 'chesslink auth login'.", fg="red")
    elif status.expires_in_human:
        click.echo(f"  Expires in: {status.expires_in_human}")


@auth.command("logout")
@click.option("--all", "all_tokens", is_flag=True, help="Delete every stored token")
@click.pass_context
def auth_logout(ctx: click.Context, all_tokens: bool) -> None:
    """Revoke and delete the stored token."""
    output: OutputHandler = ctx.obj["output"]
    manager = get_manager(ctx)

    if all_tokens:
        manager.store.clear_all()
        output.success({"cleared": True}, human_message="Deleted all stored tokens.")
        return

    try:
        removed = asyncio.run(manager.logout())
    except TokenStoreError as e:
        output.error(e, help_text="Run 'chesslink auth logout --all' to clear the token store.")
        return

    if removed:
        output.success({"logged_out": True}, human_message=f"Logged out from {manager.config.api_url}")
    else:
        output.success({"logged_out": False}, human_message="No stored token.")


@auth.command("token-url")
@click.option("--scope", "-s", "scopes", multiple=True, type=click.Choice(SCOPE_CHOICES), help="Scope to include")
@click.option("--description", default="chesslink", help="Token description shown on the account page")
@click.pass_context
def auth_token_url(ctx: click.Context, scopes: tuple[str, ...], description: str) -> None:
    """Print the URL that creates a personal access token."""
    output: OutputHandler = ctx.obj["output"]
    config = get_config(ctx)
    url = personal_token_url(config.api_url, description, _scopes(scopes))
    output.success({"url": url}, human_message=url)
