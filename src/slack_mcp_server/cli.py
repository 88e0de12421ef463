"""Command-line interface: transport selection and one-shot channel listings."""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
import sys
from typing import Any, Optional

import typer
import uvicorn
from rich.console import Console
from rich.table import Table

from .app import build_mcp_server
from .config import clear_settings_cache, get_settings
from .dispatcher import CHANNELS_LIST, DEFAULT_SORT, ToolDispatcher, ToolResult
from .encoding import decode
from .http import build_http_app
from .logs import configure_logging
from .provider import build_provider

console = Console()
err_console = Console(stderr=True)

TRANSPORTS = ("stdio", "http")

app = typer.Typer(help="Slack workspace bridge for the Model Context Protocol.", invoke_without_command=True)


@app.callback()
def _app_callback(ctx: typer.Context) -> None:
    """Default to ``serve-stdio`` when no subcommand is given."""
    if ctx.invoked_subcommand is None:
        serve_stdio()


@app.command("serve")
def serve(
    transport: str = typer.Option("stdio", "--transport", "-t", help="Transport type (stdio or http)."),
) -> None:
    """Run the MCP server over the chosen transport."""
    choice = transport.strip().lower()
    if choice not in TRANSPORTS:
        err_console.print(f"[red]Invalid transport type: {transport}. Must be 'stdio' or 'http'[/]")
        raise typer.Exit(code=2)
    if choice == "http":
        serve_http(host=None, port=None, path=None)
    else:
        serve_stdio()


@app.command("serve-http")
def serve_http(
    host: Optional[str] = typer.Option(None, help="Host interface for HTTP transport. Defaults to HTTP_HOST setting."),
    port: Optional[int] = typer.Option(None, help="Port for HTTP transport. Defaults to HTTP_PORT setting."),
    path: Optional[str] = typer.Option(None, help="HTTP path where the MCP endpoint is exposed."),
) -> None:
    """Run the MCP server over the Streamable HTTP transport."""
    if path:
        os.environ["HTTP_PATH"] = path
        clear_settings_cache()
    settings = get_settings()
    resolved_host = host or settings.http.host
    resolved_port = port or settings.http.port
    resolved_path = settings.http.path

    from . import rich_logger

    rich_logger.display_startup_banner(settings, resolved_host, resolved_port, resolved_path)

    app_ = build_http_app(settings)
    # HTTP-only MCP transport; stay compatible with tests that
    # monkeypatch uvicorn.run without the 'ws' parameter.
    kwargs: dict[str, Any] = {"host": resolved_host, "port": resolved_port, "log_level": "info"}
    if "ws" in inspect.signature(uvicorn.run).parameters:
        kwargs["ws"] = "none"
    uvicorn.run(app_, **kwargs)


@app.command("serve-stdio")
def serve_stdio() -> None:
    """Run the MCP server over stdio.

    stdout carries protocol frames only: logging goes to stderr and the
    rich tool panels are disabled.
    """
    os.environ["TOOLS_LOG_ENABLED"] = "false"
    os.environ["LOG_RICH_ENABLED"] = "false"
    clear_settings_cache()

    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    print("Slack MCP server - Starting stdio transport...", file=sys.stderr)

    server = build_mcp_server()
    server.run(transport="stdio")


async def _list_channels(sort: str, channel_types: list[str]) -> ToolResult:
    settings = get_settings()
    configure_logging(settings)
    provider = build_provider(settings)
    dispatcher = ToolDispatcher(provider, page_size=settings.slack.page_size, max_pages=settings.slack.max_pages)
    try:
        return await dispatcher.invoke(CHANNELS_LIST, {"sort": sort, "channel_types": channel_types or None})
    finally:
        await provider.aclose()


@app.command("channels")
def channels(
    sort: str = typer.Option(DEFAULT_SORT, "--sort", help="Ordering policy; 'popularity' or anything else for listing order."),
    channel_type: Optional[list[str]] = typer.Option(
        None,
        "--channel-type",
        help="Conversation kind to include (repeatable): public_channel, private_channel, mpim, im.",
    ),
    table: bool = typer.Option(False, "--table", help="Render a table instead of CSV."),
) -> None:
    """Fetch the workspace's conversations once and print them."""
    result = asyncio.run(_list_channels(sort, list(channel_type or [])))
    if not result.ok:
        err_console.print(f"[red]{result.error_type}: {result.message}[/]")
        cause = result.error.__cause__ if result.error is not None else None
        if cause is not None:
            err_console.print(f"[dim]caused by {type(cause).__name__}: {cause}[/]")
        raise typer.Exit(code=1)

    if not table:
        typer.echo(result.text, nl=False)
        return

    rows = decode(result.text.encode("utf-8"))
    view = Table(title=f"Conversations ({len(rows)})")
    view.add_column("ID", style="cyan", no_wrap=True)
    view.add_column("Name", style="bold")
    view.add_column("Topic")
    view.add_column("Purpose")
    view.add_column("Members", justify="right")
    for row in rows:
        view.add_row(row.id, row.name, row.topic, row.purpose, str(row.member_count))
    console.print(view)


@app.command("config")
def show_config() -> None:
    """Print the effective settings with credentials masked."""
    from . import rich_logger

    console.print(rich_logger.settings_table(get_settings()))


if __name__ == "__main__":  # pragma: no cover - manual execution path
    app()
