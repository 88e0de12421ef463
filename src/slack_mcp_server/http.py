"""HTTP transport helpers wrapping FastMCP with FastAPI."""

from __future__ import annotations

import argparse
import contextlib
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Optional, Protocol, cast

import structlog
import uvicorn
from fastapi import FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastmcp import FastMCP
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .app import _boot_failure_hook, build_mcp_server
from .config import Settings, get_settings
from .logs import configure_logging
from .provider import STATE_READY, SessionProvider, build_provider

__all__ = ["MCPEndpoint", "RequestResponseLoggingMiddleware", "build_http_app", "main"]

# Bodies beyond this size are truncated in request logs
_MAX_LOGGED_BODY = 8192

_ALLOWED_METHODS = "GET, POST, PUT, DELETE, OPTIONS"


class _FastMCPLifespan(Protocol):
    def lifespan(self, app: Any) -> Any: ...


def _preview(chunks: list[bytes]) -> str:
    raw = b"".join(chunks)
    text = raw[:_MAX_LOGGED_BODY].decode("utf-8", errors="replace")
    if len(raw) > _MAX_LOGGED_BODY:
        text += f"... ({len(raw) - _MAX_LOGGED_BODY} more bytes)"
    return text


class RequestResponseLoggingMiddleware:
    """Log method, path, request body (POST/PUT), status and response body of every request.

    Works at the ASGI level: chunks are copied as they flow and logged once
    each body is complete.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app
        self._log = structlog.get_logger("http")

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        method = scope.get("method", "")
        path = scope.get("path", "")
        start = time.perf_counter()
        self._log.info("http.request", method=method, path=path)

        log_request_body = method in {"POST", "PUT"}
        request_chunks: list[bytes] = []
        response_chunks: list[bytes] = []
        status_code = 200

        async def receive_wrapper() -> Message:
            message = await receive()
            if log_request_body and message["type"] == "http.request":
                request_chunks.append(message.get("body", b""))
                if not message.get("more_body", False):
                    self._log.info("http.request_body", method=method, path=path, body=_preview(request_chunks))
            return message

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = int(message["status"])
            elif message["type"] == "http.response.body":
                response_chunks.append(message.get("body", b""))
            await send(message)

        try:
            await self.app(scope, receive_wrapper, send_wrapper)
        finally:
            duration_ms = int((time.perf_counter() - start) * 1000)
            fields: dict[str, Any] = {"method": method, "path": path, "status": status_code, "duration_ms": duration_ms}
            if any(response_chunks):
                fields["body"] = _preview(response_chunks)
            self._log.info("http.response", **fields)


class MCPEndpoint:
    """Forward the MCP base path to FastMCP's stateless streamable HTTP app.

    Bare ``OPTIONS`` requests are answered here with 200; real CORS
    preflights are handled by the CORS middleware before reaching this app.
    """

    def __init__(self, mcp_http_app: ASGIApp, inner_path: str = "/") -> None:
        self._app = mcp_http_app
        self._inner_path = inner_path

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            res = JSONResponse({"detail": "Not Found"}, status_code=404)
            await res(scope, receive, send)
            return

        if scope.get("method") == "OPTIONS":
            await Response(status_code=200, headers={"Allow": _ALLOWED_METHODS})(scope, receive, send)
            return

        # StreamableHTTP checks Accept and Content-Type; many clients send neither
        headers = [(k, v) for (k, v) in list(scope.get("headers") or []) if k.lower() != b"accept"]
        headers.append((b"accept", b"application/json, text/event-stream"))
        if scope.get("method") == "POST" and not any(k.lower() == b"content-type" for k, _ in headers):
            headers.append((b"content-type", b"application/json"))
        new_scope = dict(scope)
        new_scope["headers"] = headers
        # Both '/base' and '/base/' land on the sub-app's single route
        new_scope["path"] = self._inner_path
        new_scope["raw_path"] = self._inner_path.encode("ascii")
        new_scope["root_path"] = ""
        await self._app(new_scope, receive, send)


def build_http_app(
    settings: Settings,
    server: Optional[FastMCP] = None,
    provider: Optional[SessionProvider] = None,
) -> FastAPI:
    """Wrap the MCP server in FastAPI.

    Pass the same ``provider`` the ``server`` was built with so readiness
    reflects the session the tools use. The MCP endpoint only answers once
    the app lifespan has been entered.
    """
    configure_logging(settings)
    provider = provider or build_provider(settings)
    if server is None:
        server = build_mcp_server(settings, provider)

    # Stateless mode: a fresh transport per request, plain JSON bodies instead of SSE
    mcp_http_app = server.http_app(path="/", stateless_http=True, json_response=True)

    @asynccontextmanager
    async def lifespan_context(app: FastAPI) -> AsyncIterator[None]:
        # Enters the MCP server lifespan and starts the session manager's task group
        mcp_lifespan_app = cast(_FastMCPLifespan, mcp_http_app)
        async with mcp_lifespan_app.lifespan(mcp_http_app):
            # Bootstrap runs alongside startup; requests are accepted immediately.
            provider.start(on_failure=_boot_failure_hook(settings))
            try:
                yield
            finally:
                with contextlib.suppress(Exception):
                    await provider.aclose()

    fastapi_app = FastAPI(lifespan=lifespan_context)
    fastapi_app.state.provider = provider

    # Middleware added last runs first: logging wraps CORS so preflights are logged too.
    if settings.cors.enabled:
        fastapi_app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors.origins or ["*"],
            allow_credentials=False,
            allow_methods=settings.cors.allow_methods or ["*"],
            allow_headers=settings.cors.allow_headers or ["*"],
            expose_headers=["mcp-session-id"],
        )
    if settings.http.request_log_enabled:
        fastapi_app.add_middleware(RequestResponseLoggingMiddleware)

    @fastapi_app.get("/health/liveness")
    async def liveness() -> JSONResponse:
        return JSONResponse({"status": "alive"})

    @fastapi_app.get("/health/readiness")
    async def readiness() -> JSONResponse:
        state = provider.state
        if state == STATE_READY:
            return JSONResponse({"status": "ready", "demo_mode": provider.demo})
        structlog.get_logger("health").warning("readiness_pending", session_state=state)
        return JSONResponse(
            {"status": "not_ready", "session_state": state},
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    # Serve the MCP endpoint at both '/base' and '/base/'
    mount_base = settings.http.path or "/mcp"
    if not mount_base.startswith("/"):
        mount_base = "/" + mount_base
    base_no_slash = mount_base.rstrip("/") or "/"
    endpoint = MCPEndpoint(mcp_http_app)
    for route_path in dict.fromkeys([base_no_slash, base_no_slash.rstrip("/") + "/"]):
        fastapi_app.router.add_route(route_path, endpoint, include_in_schema=False)

    return fastapi_app


def main() -> None:
    """Run the HTTP transport using settings-specified host/port."""

    parser = argparse.ArgumentParser(description="Run the Slack MCP server HTTP transport")
    parser.add_argument("--host", help="Override HTTP host", default=None)
    parser.add_argument("--port", help="Override HTTP port", type=int, default=None)
    parser.add_argument("--log-level", help="Uvicorn log level", default="info")
    # Be tolerant of extraneous argv when invoked under test runners
    args, _unknown = parser.parse_known_args()

    settings = get_settings()
    host = args.host or settings.http.host
    port = args.port or settings.http.port

    app = build_http_app(settings)
    uvicorn.run(app, host=host, port=port, log_level=args.log_level)


if __name__ == "__main__":  # pragma: no cover - manual execution path
    main()
