"""Lazily bootstrapped, process-wide Slack session.

The live provider validates credentials once (``auth.test``) and hands the
same client to every caller afterwards. Bootstrap is single-flight: the
first caller schedules it as a task and every concurrent caller awaits that
same task. Callers arriving while bootstrap is still running block for at
most ``boot_timeout_seconds`` before failing with :class:`NotReadyError`.

Demo mode is a separate provider rather than a flag checked at call time.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Final, Optional, Protocol

import structlog

from .config import Settings, SlackSettings
from .errors import AuthenticationError, NotReadyError
from .slack import ConversationsAPI, DemoSlackClient, SlackClient

logger = structlog.get_logger("provider")

STATE_IDLE: Final[str] = "idle"
STATE_BOOTING: Final[str] = "booting"
STATE_READY: Final[str] = "ready"
STATE_FAILED: Final[str] = "failed"

BootFailureHook = Callable[[BaseException], None]


class SessionProvider(Protocol):
    @property
    def state(self) -> str: ...

    @property
    def demo(self) -> bool: ...

    def start(self, on_failure: Optional[BootFailureHook] = None) -> Optional[asyncio.Task[ConversationsAPI]]: ...

    async def provide(self) -> ConversationsAPI: ...

    async def aclose(self) -> None: ...


def _default_client_factory(settings: SlackSettings) -> SlackClient:
    return SlackClient(
        settings.xoxc_token,
        settings.xoxd_token,
        base_url=settings.api_base_url,
        timeout=settings.timeout_seconds,
    )


class ApiProvider:
    def __init__(
        self,
        settings: SlackSettings,
        *,
        client_factory: Callable[[SlackSettings], SlackClient] = _default_client_factory,
    ) -> None:
        self._settings = settings
        self._client_factory = client_factory
        self._session: Optional[SlackClient] = None
        self._failure: Optional[AuthenticationError] = None
        self._boot_task: Optional[asyncio.Task[ConversationsAPI]] = None
        self._state = STATE_IDLE
        self._failure_hook_attached = False
        self.bootstrap_count = 0

    @property
    def state(self) -> str:
        return self._state

    @property
    def demo(self) -> bool:
        return False

    @property
    def identity(self) -> dict[str, str]:
        return dict(self._session.identity) if self._session is not None else {}

    def _ensure_task(self) -> asyncio.Task[ConversationsAPI]:
        # No await between the check and the assignment, so this is atomic on the loop.
        task = self._boot_task
        if task is None:
            task = asyncio.get_running_loop().create_task(self._bootstrap(), name="slack-session-bootstrap")
            task.add_done_callback(self._consume_result)
            self._boot_task = task
        return task

    @staticmethod
    def _consume_result(task: asyncio.Task[ConversationsAPI]) -> None:
        # Retrieve the exception so background failures are never reported as unretrieved.
        if not task.cancelled():
            task.exception()

    def start(self, on_failure: Optional[BootFailureHook] = None) -> Optional[asyncio.Task[ConversationsAPI]]:
        """Begin bootstrap in the background; must be called from a running loop."""
        if self._session is not None or self._failure is not None:
            return self._boot_task
        task = self._ensure_task()
        # Both the server and HTTP app lifespans start bootstrap; notify once.
        if on_failure is not None and not self._failure_hook_attached:
            self._failure_hook_attached = True

            def _notify(done: asyncio.Task[ConversationsAPI]) -> None:
                if done.cancelled():
                    return
                exc = done.exception()
                if exc is not None:
                    on_failure(exc)

            task.add_done_callback(_notify)
        return task

    async def provide(self) -> ConversationsAPI:
        if self._session is not None:
            return self._session
        if self._failure is not None:
            raise self._failure
        task = self._ensure_task()
        try:
            # shield: a caller timing out must not cancel the shared bootstrap
            return await asyncio.wait_for(asyncio.shield(task), timeout=self._settings.boot_timeout_seconds)
        except asyncio.TimeoutError:
            raise NotReadyError(
                f"Slack session is still bootstrapping after {self._settings.boot_timeout_seconds:g}s; retry shortly.",
                data={"state": self._state},
            ) from None

    async def _bootstrap(self) -> ConversationsAPI:
        self.bootstrap_count += 1
        self._state = STATE_BOOTING
        logger.info("provider.booting")
        try:
            if not self._settings.has_credentials:
                raise AuthenticationError(
                    "SLACK_MCP_XOXC_TOKEN and SLACK_MCP_XOXD_TOKEN must both be set.",
                    data={
                        "xoxc_present": bool(self._settings.xoxc_token),
                        "xoxd_present": bool(self._settings.xoxd_token),
                    },
                )
            client = self._client_factory(self._settings)
            try:
                identity = await client.auth_test()
            except BaseException:
                await client.aclose()
                raise
        except AuthenticationError as exc:
            self._failure = exc
            self._state = STATE_FAILED
            logger.error("provider.authentication_failed", error=str(exc))
            raise
        except BaseException:
            # Transient failures are not cached; the next caller bootstraps again.
            self._state = STATE_IDLE
            self._boot_task = None
            self._failure_hook_attached = False
            raise
        self._session = client
        self._state = STATE_READY
        logger.info("provider.ready", team=identity.get("team", ""), user=identity.get("user", ""))
        return client

    async def aclose(self) -> None:
        task = self._boot_task
        if task is not None and not task.done():
            task.cancel()
        if self._session is not None:
            await self._session.aclose()
            self._session = None
            self._state = STATE_IDLE
        self._boot_task = None


class DemoProvider:
    """Session provider for demo credentials: never contacts Slack."""

    def __init__(self, client: Optional[DemoSlackClient] = None) -> None:
        self._client = client or DemoSlackClient()
        self.bootstrap_count = 0

    @property
    def state(self) -> str:
        return STATE_READY

    @property
    def demo(self) -> bool:
        return True

    @property
    def identity(self) -> dict[str, str]:
        return dict(self._client.identity)

    def start(self, on_failure: Optional[BootFailureHook] = None) -> None:
        logger.info("provider.demo_mode", detail="demo credentials set, skipping Slack bootstrap")
        return None

    async def provide(self) -> ConversationsAPI:
        return self._client

    async def aclose(self) -> None:
        await self._client.aclose()


def build_provider(settings: Settings) -> SessionProvider:
    if settings.slack.demo_mode:
        return DemoProvider()
    return ApiProvider(settings.slack)


__all__ = [
    "STATE_BOOTING",
    "STATE_FAILED",
    "STATE_IDLE",
    "STATE_READY",
    "ApiProvider",
    "DemoProvider",
    "SessionProvider",
    "build_provider",
]
