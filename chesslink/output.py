"""Output formatters for human-readable and JSON output."""

import json
import sys
import traceback
from typing import Any

import click

from .result import ErrorInfo


def format_json(data: Any, success: bool = True) -> str:
    """Format data as a JSON envelope."""
    if success:
        output = {"success": True, "data": data}
    else:
        output = data  # Error dict already has success: false
    return json.dumps(output, indent=2, default=str)


def format_line(item: Any) -> str:
    """Format one streamed item as a single JSON line."""
    return json.dumps(item, separators=(",", ":"), default=str)


def format_error_json(
    error: Exception,
    error_type: str | None = None,
    help_text: str | None = None,
) -> str:
    """Format an error as JSON with helpful information."""
    return json.dumps(
        {
            "success": False,
            "error": {
                "type": error_type or type(error).__name__,
                "message": str(error),
                "traceback": traceback.format_exc(),
                "help": help_text or "",
            },
        },
        indent=2,
    )


def format_failure_json(error: ErrorInfo) -> str:
    """Format a failed API result as JSON."""
    return json.dumps(
        {
            "success": False,
            "error": {
                "type": error.kind.name,
                "status": error.status,
                "message": error.message or error.describe(),
                "body": error.body,
            },
        },
        indent=2,
        default=str,
    )


def output_error_human(message: str, help_text: str | None = None) -> None:
    """Output an error in human-readable format and exit."""
    click.secho(f"Error: {message}", fg="red", err=True)
    if help_text:
        click.echo(f"\n{help_text}", err=True)
    sys.exit(1)


class OutputHandler:
    """Handles output formatting based on mode (JSON or human)."""

    def __init__(self, json_mode: bool = False):
        self.json_mode = json_mode

    def success(self, data: Any, human_message: str | None = None) -> None:
        """Output success response."""
        if self.json_mode:
            click.echo(format_json(data))
        elif human_message:
            click.echo(human_message)
        else:
            click.echo(json.dumps(data, indent=2, default=str))

    def line(self, item: Any) -> None:
        """Output one item of a stream, one JSON object per line in both modes."""
        click.echo(format_line(item))

    def error(
        self,
        error: Exception,
        error_type: str | None = None,
        help_text: str | None = None,
    ) -> None:
        """Output an exception and exit with status 1."""
        if self.json_mode:
            click.echo(format_error_json(error, error_type, help_text))
            sys.exit(1)
        output_error_human(str(error), help_text)

    def failure(self, error: ErrorInfo, help_text: str | None = None) -> None:
        """Output a failed API result and exit with status 1."""
        if self.json_mode:
            click.echo(format_failure_json(error))
            sys.exit(1)
        output_error_human(error.describe(), help_text)

    def table(self, headers: list[str], rows: list[list[str]]) -> None:
        """Output a table (human mode only, JSON mode outputs raw data)."""
        if self.json_mode:
            click.echo(format_json([dict(zip(headers, row)) for row in rows]))
            return

        widths = [len(h) for h in headers]
        for row in rows:
            for i, cell in enumerate(row):
                widths[i] = max(widths[i], len(str(cell)))

        header_line = "  ".join(h.ljust(widths[i]) for i, h in enumerate(headers))
        click.secho(header_line, bold=True)
        click.echo("-" * len(header_line))
        for row in rows:
            click.echo("  ".join(str(c).ljust(widths[i]) for i, c in enumerate(row)))
