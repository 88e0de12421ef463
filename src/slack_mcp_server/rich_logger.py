"""Rich console output for tool call tracing and the HTTP startup banner.

Everything here prints to stderr; stdout is reserved for the stdio transport.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from rich import box
from rich.console import Console, Group, RenderableType
from rich.panel import Panel
from rich.rule import Rule
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from .config import Settings, mask_secret

console = Console(stderr=True, soft_wrap=True)


@dataclass
class ToolCallContext:
    """Context information for a tool call."""

    tool_name: str
    kwargs: dict[str, Any]
    start_time: float = field(default_factory=time.perf_counter)
    end_time: Optional[float] = None
    result: Any = None
    error: Optional[BaseException] = None
    success: bool = True
    _created_at: datetime = field(default_factory=datetime.now)

    @property
    def duration_ms(self) -> float:
        end = self.end_time if self.end_time else time.perf_counter()
        return (end - self.start_time) * 1000

    @property
    def timestamp(self) -> str:
        return self._created_at.strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]


def _safe_json_format(data: Any, max_length: int = 2000) -> str:
    """Format data as JSON with truncation."""
    json_str = json.dumps(data, indent=2, default=str, ensure_ascii=False)
    if len(json_str) > max_length:
        json_str = json_str[:max_length] + "\n... (truncated)"
    return json_str


def _create_info_table(ctx: ToolCallContext) -> Table:
    table = Table(show_header=False, box=box.SIMPLE, padding=(0, 1))
    table.add_column("Property", style="bold cyan", no_wrap=True)
    table.add_column("Value", style="white")
    table.add_row("Tool", Text(ctx.tool_name, style="bold bright_white"))
    table.add_row("Started", ctx.timestamp)
    return table


def _create_result_display(ctx: ToolCallContext) -> RenderableType:
    if ctx.error is not None:
        details = {
            "error_type": type(ctx.error).__name__,
            "message": str(ctx.error),
        }
        cause = ctx.error.__cause__
        if cause is not None:
            details["cause"] = f"{type(cause).__name__}: {cause}"
        body = _safe_json_format(details, max_length=1000)
        return Panel(Syntax(body, "json", theme="monokai", word_wrap=True), title="Error", border_style="red")
    if isinstance(ctx.result, str):
        lines = ctx.result.splitlines()
        preview = "\n".join(lines[:15])
        if len(lines) > 15:
            preview += f"\n... ({len(lines) - 15} more rows)"
        return Panel(Text(preview), title="Result", border_style="green")
    return Panel(Syntax(_safe_json_format(ctx.result), "json", theme="monokai", word_wrap=True), title="Result", border_style="green")


def log_tool_call_start(ctx: ToolCallContext) -> None:
    """Log the start of a tool call with its resolved arguments."""
    components: list[RenderableType] = [Rule(style="bright_blue"), _create_info_table(ctx)]
    if ctx.kwargs:
        params = _safe_json_format(ctx.kwargs, max_length=1000)
        components.append(Panel(Syntax(params, "json", theme="monokai", word_wrap=True), title="Parameters", border_style="cyan"))
    console.print(
        Panel(
            Group(*components),
            title="[bold bright_white on bright_blue] MCP TOOL CALL [/bold bright_white on bright_blue]",
            border_style="bright_blue",
            box=box.ROUNDED,
        )
    )


def log_tool_call_end(ctx: ToolCallContext) -> None:
    """Log the end of a tool call with its outcome and duration."""
    if not ctx.end_time:
        ctx.end_time = time.perf_counter()
    style = "bright_green" if ctx.success else "bright_red"
    status = "COMPLETED" if ctx.success else "FAILED"
    summary = Text.assemble(
        (ctx.tool_name, "bold white"),
        ("  "),
        (status, f"bold {style}"),
        ("  "),
        (f"{ctx.duration_ms:.1f}ms", "bold yellow"),
    )
    console.print(
        Panel(
            Group(summary, Text(), _create_result_display(ctx)),
            border_style=style,
            box=box.ROUNDED,
        )
    )


def log_error(message: str, error: Optional[BaseException] = None, **kwargs: Any) -> None:
    console.print(Text(message, style="bold bright_red"))
    details = dict(kwargs)
    if error is not None:
        details["error_type"] = type(error).__name__
        details["error_message"] = str(error)
    if details:
        console.print(Syntax(_safe_json_format(details, max_length=500), "json", theme="monokai", word_wrap=True))


def settings_table(settings: Settings) -> Table:
    """Effective settings with credentials masked."""
    table = Table(box=box.ROUNDED, border_style="bright_blue", show_header=True, header_style="bold bright_white")
    table.add_column("Setting", style="bold bright_cyan")
    table.add_column("Value", style="white")
    slack = settings.slack
    rows = [
        ("environment", settings.environment),
        ("demo_mode", str(slack.demo_mode)),
        ("xoxc_token", mask_secret(slack.xoxc_token) or "(unset)"),
        ("xoxd_token", mask_secret(slack.xoxd_token) or "(unset)"),
        ("api_base_url", slack.api_base_url),
        ("page_size", str(slack.page_size)),
        ("max_pages", str(slack.max_pages)),
        ("boot_timeout_seconds", f"{slack.boot_timeout_seconds:g}"),
        ("http", f"{settings.http.host}:{settings.http.port}{settings.http.path}"),
        ("request_log_enabled", str(settings.http.request_log_enabled)),
        ("cors_enabled", str(settings.cors.enabled)),
        ("log_level", settings.log_level),
    ]
    for name, value in rows:
        table.add_row(name, value)
    return table


def display_startup_banner(settings: Settings, host: str, port: int, path: str) -> None:
    """Print the HTTP transport banner."""
    endpoint = f"http://{host}:{port}{path}"
    mode = "[bold yellow]demo[/bold yellow]" if settings.slack.demo_mode else "[bold green]live[/bold green]"
    console.print()
    console.print(
        Panel(
            Group(
                Text.from_markup(f"[bold bright_white]Slack MCP server[/bold bright_white]  mode: {mode}"),
                Text.from_markup(f"endpoint: [bold cyan]{endpoint}[/bold cyan]  (POST/GET)"),
                Text(),
                settings_table(settings),
            ),
            title="[bold bright_yellow]Starting HTTP transport[/bold bright_yellow]",
            border_style="bright_blue",
            box=box.DOUBLE,
        )
    )
    console.print()
