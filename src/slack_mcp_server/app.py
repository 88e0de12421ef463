"""Application factory for the Slack MCP server."""

from __future__ import annotations

import logging
import os
import signal
import time
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from functools import wraps
from typing import Any, AsyncContextManager, Callable, Optional

from fastmcp import Context, FastMCP

from . import rich_logger
from .config import Settings, get_settings
from .dispatcher import CHANNELS_LIST, DEFAULT_SORT, ToolDispatcher, ToolResult
from .errors import AuthenticationError
from .logs import configure_logging
from .provider import STATE_FAILED, STATE_READY, SessionProvider, build_provider

logger = logging.getLogger(__name__)

SERVER_NAME = "slack-mcp-server"

TOOL_METRICS: defaultdict[str, dict[str, int]] = defaultdict(lambda: {"calls": 0, "errors": 0})


class ToolExecutionError(Exception):
    def __init__(self, error_type: str, message: str, *, recoverable: bool = True, data: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.error_type = error_type
        self.recoverable = recoverable
        self.data = data or {}

    def to_payload(self) -> dict[str, Any]:
        return {
            "error": {
                "type": self.error_type,
                "message": str(self),
                "recoverable": self.recoverable,
                "data": self.data,
            }
        }


def _record_tool_error(tool_name: str, exc: BaseException) -> None:
    logger.warning(
        "tool_error",
        extra={
            "tool": tool_name,
            "error": type(exc).__name__,
            "error_message": str(exc),
        },
    )


def _raise_for_result(tool_name: str, result: ToolResult) -> None:
    """Turn a failed ToolResult into the protocol-level tool error, chained to its cause."""
    if result.ok:
        return
    data = {"tool": tool_name, "cause": type(result.error).__name__, **result.data}
    raise ToolExecutionError(
        result.error_type,
        f"{result.error_type}: {result.message}",
        recoverable=result.recoverable,
        data=data,
    ) from result.error


def _instrument_tool(tool_name: str, *, settings: Settings) -> Callable[[Any], Any]:
    def decorator(func: Any) -> Any:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            metrics = TOOL_METRICS[tool_name]
            metrics["calls"] += 1

            log_ctx = None
            if settings.tools_log_enabled and settings.log_rich_enabled:
                try:
                    clean_kwargs = {k: v for k, v in kwargs.items() if k != "ctx"}
                    log_ctx = rich_logger.ToolCallContext(tool_name=tool_name, kwargs=clean_kwargs)
                    rich_logger.log_tool_call_start(log_ctx)
                except Exception:
                    # Logging errors should not break tool execution
                    log_ctx = None

            result = None
            error: Optional[BaseException] = None
            try:
                result = await func(*args, **kwargs)
            except ToolExecutionError as exc:
                metrics["errors"] += 1
                _record_tool_error(tool_name, exc)
                error = exc
                raise
            except ValueError as exc:
                metrics["errors"] += 1
                _record_tool_error(tool_name, exc)
                wrapped_exc = ToolExecutionError(
                    "INVALID_ARGUMENT",
                    f"Invalid argument value: {exc}. Check that all parameters have valid values.",
                    recoverable=True,
                    data={"tool": tool_name, "error_detail": str(exc)},
                )
                error = wrapped_exc
                raise wrapped_exc from exc
            except Exception as exc:
                metrics["errors"] += 1
                _record_tool_error(tool_name, exc)
                wrapped_exc = ToolExecutionError(
                    "UNHANDLED_EXCEPTION",
                    f"Unexpected error ({type(exc).__name__}): {exc}",
                    recoverable=False,
                    data={"tool": tool_name, "original_error": type(exc).__name__, "error_detail": str(exc)},
                )
                error = wrapped_exc
                raise wrapped_exc from exc
            finally:
                if log_ctx is not None:
                    with suppress(Exception):
                        log_ctx.end_time = time.perf_counter()
                        log_ctx.result = result
                        log_ctx.error = error
                        log_ctx.success = error is None
                        rich_logger.log_tool_call_end(log_ctx)
            return result

        return wrapper

    return decorator


def _tool_metrics_snapshot() -> list[dict[str, Any]]:
    return [
        {"name": name, "calls": data["calls"], "errors": data["errors"]}
        for name, data in sorted(TOOL_METRICS.items())
    ]


def _boot_failure_hook(settings: Settings) -> Callable[[BaseException], None]:
    def _on_failure(exc: BaseException) -> None:
        if isinstance(exc, AuthenticationError):
            rich_logger.log_error("Error booting Slack session provider", error=exc)
            logger.error("provider.boot_failed", extra={"error": str(exc)})
            if settings.slack.exit_on_auth_failure:
                # Credentials are unusable for the life of the process
                os.kill(os.getpid(), signal.SIGTERM)
            return
        logger.warning("provider.boot_deferred", extra={"error": f"{type(exc).__name__}: {exc}"})

    return _on_failure


def _lifespan_factory(settings: Settings, provider: SessionProvider) -> Callable[[FastMCP], AsyncContextManager[None]]:
    @asynccontextmanager
    async def lifespan(app: FastMCP) -> AsyncIterator[None]:
        # Bootstrap in the background; the transport is already accepting requests.
        provider.start(on_failure=_boot_failure_hook(settings))
        yield

    return lifespan


def build_mcp_server(
    settings: Optional[Settings] = None,
    provider: Optional[SessionProvider] = None,
) -> FastMCP:
    """Create and configure the FastMCP server instance."""
    settings = settings or get_settings()
    configure_logging(settings)
    provider = provider or build_provider(settings)
    dispatcher = ToolDispatcher(
        provider,
        page_size=settings.slack.page_size,
        max_pages=settings.slack.max_pages,
    )

    instructions = (
        "Slack workspace bridge. Use channels_list to enumerate conversations; "
        "results are CSV with header id,name,topic,purpose,memberCount."
    )
    mcp = FastMCP(name=SERVER_NAME, instructions=instructions, lifespan=_lifespan_factory(settings, provider))

    async def _ctx_info_safe(ctx: Context, message: str) -> None:
        try:
            await ctx.info(message)
        except Exception:
            # Context may not be available outside of a request; ignore logging
            return

    @mcp.tool(
        name=CHANNELS_LIST,
        description="List workspace conversations as CSV (id,name,topic,purpose,memberCount).",
    )
    @_instrument_tool(CHANNELS_LIST, settings=settings)
    async def channels_list(
        ctx: Context,
        sort: str = DEFAULT_SORT,
        channel_types: list[str] | None = None,
    ) -> str:
        """
        List channels and other conversations in the connected Slack workspace.

        Parameters
        ----------
        sort : str
            Ordering policy. ``"popularity"`` (default) orders by member count,
            highest first; any other value keeps Slack's listing order.
        channel_types : list[str] | None
            Conversation kinds to include, drawn from ``public_channel``,
            ``private_channel``, ``mpim`` and ``im``. Defaults to
            ``["public_channel"]``.

        Returns
        -------
        str
            CSV text. Channel names are prefixed with ``#``; direct and group
            direct messages with ``@``.
        """
        result = await dispatcher.invoke(CHANNELS_LIST, {"sort": sort, "channel_types": channel_types})
        _raise_for_result(CHANNELS_LIST, result)
        await _ctx_info_safe(ctx, f"channels_list returned {len(result.text.encode('utf-8'))} bytes of CSV")
        return result.text

    @mcp.tool(name="health_check", description="Return readiness information for the Slack bridge.")
    @_instrument_tool("health_check", settings=settings)
    async def health_check(ctx: Context) -> dict[str, Any]:
        """Report the session state without contacting Slack."""
        state = provider.state
        if state == STATE_READY:
            status = "ok"
        elif state == STATE_FAILED:
            status = "error"
        else:
            status = "degraded"
        return {
            "status": status,
            "server": SERVER_NAME,
            "environment": settings.environment,
            "demo_mode": provider.demo,
            "session_state": state,
            "http_host": settings.http.host,
            "http_port": settings.http.port,
            "tools": _tool_metrics_snapshot(),
        }

    return mcp
