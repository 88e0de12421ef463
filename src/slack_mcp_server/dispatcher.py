"""Transport-agnostic tool dispatch: parameter defaults, the channel pipeline, and results."""

from __future__ import annotations

from collections.abc import Awaitable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import structlog

from .channels import ALL_CHANNEL_TYPES, DEFAULT_CHANNEL_TYPES, SortPolicy, normalize, sort_rows
from .encoding import encode
from .errors import BridgeError
from .fetcher import DEFAULT_MAX_PAGES, DEFAULT_PAGE_SIZE, ListingParams, fetch_all
from .provider import SessionProvider

logger = structlog.get_logger("dispatcher")

CHANNELS_LIST = "channels_list"
DEFAULT_SORT = SortPolicy.POPULARITY.value


@dataclass(frozen=True, slots=True)
class ToolResult:
    """Outcome of one tool invocation: encoded text, or a failure with its cause."""

    text: str = ""
    error: Optional[BaseException] = None
    error_type: str = ""
    message: str = ""
    recoverable: bool = False
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, text: str) -> ToolResult:
        return cls(text=text)

    @classmethod
    def failure(
        cls,
        error: BaseException,
        *,
        error_type: Optional[str] = None,
        recoverable: Optional[bool] = None,
        data: Optional[dict[str, Any]] = None,
    ) -> ToolResult:
        return cls(
            error=error,
            error_type=error_type or getattr(error, "error_type", "UNHANDLED_EXCEPTION"),
            message=str(error),
            recoverable=bool(getattr(error, "recoverable", False) if recoverable is None else recoverable),
            data={**getattr(error, "data", {}), **(data or {})},
        )


def resolve_sort(value: Any) -> str:
    if value is None:
        return DEFAULT_SORT
    text = str(value).strip()
    return text or DEFAULT_SORT


def resolve_channel_types(value: Any) -> tuple[str, ...]:
    """Resolve ``channel_types`` to a tuple of known kinds.

    Absent, ``None``, empty list and empty string all mean the default. A
    comma-separated string is accepted in place of a list.
    """
    if value is None:
        return DEFAULT_CHANNEL_TYPES
    if isinstance(value, str):
        items = [part.strip() for part in value.split(",")]
    elif isinstance(value, Sequence):
        items = [str(part).strip() for part in value]
    else:
        raise ValueError(f"channel_types must be a list of strings, got {type(value).__name__}")
    items = [item for item in items if item]
    if not items:
        return DEFAULT_CHANNEL_TYPES
    unknown = sorted({item for item in items if item not in ALL_CHANNEL_TYPES})
    if unknown:
        raise ValueError(f"unsupported channel_types {unknown}; allowed: {list(ALL_CHANNEL_TYPES)}")
    # de-duplicate, keep caller order
    return tuple(dict.fromkeys(items))


ToolHandler = Callable[[Mapping[str, Any]], Awaitable[str]]


class ToolDispatcher:
    def __init__(
        self,
        provider: SessionProvider,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_pages: int = DEFAULT_MAX_PAGES,
    ) -> None:
        self.provider = provider
        self._page_size = page_size
        self._max_pages = max_pages
        self._tools: dict[str, ToolHandler] = {CHANNELS_LIST: self._channels_list_handler}

    @property
    def tool_names(self) -> list[str]:
        return sorted(self._tools)

    async def invoke(self, tool_name: str, params: Optional[Mapping[str, Any]] = None) -> ToolResult:
        """Run ``tool_name``; failures come back as a failed ToolResult, never as partial text.

        ``asyncio.CancelledError`` is not a failure result; it propagates.
        """
        handler = self._tools.get(tool_name)
        if handler is None:
            return ToolResult.failure(
                LookupError(f"Unknown tool '{tool_name}'."),
                error_type="UNKNOWN_TOOL",
                data={"available": self.tool_names},
            )
        try:
            text = await handler(params or {})
        except BridgeError as exc:
            logger.warning("tool.failed", tool=tool_name, error_type=exc.error_type, error=str(exc))
            return ToolResult.failure(exc)
        except ValueError as exc:
            return ToolResult.failure(exc, error_type="INVALID_ARGUMENT", recoverable=True)
        except Exception as exc:
            logger.exception("tool.crashed", tool=tool_name, error=f"{type(exc).__name__}: {exc}")
            return ToolResult.failure(
                exc,
                error_type="UNHANDLED_EXCEPTION",
                recoverable=False,
                data={"original_error": type(exc).__name__},
            )
        return ToolResult.success(text)

    async def _channels_list_handler(self, params: Mapping[str, Any]) -> str:
        unexpected = sorted(set(params) - {"sort", "channel_types"})
        if unexpected:
            raise ValueError(f"unexpected parameters {unexpected}")
        return await self.channels_list(sort=params.get("sort"), channel_types=params.get("channel_types"))

    async def channels_list(self, *, sort: Any = None, channel_types: Any = None) -> str:
        """Fetch, normalize, order and encode the workspace's conversations as CSV."""
        sort_name = resolve_sort(sort)
        types = resolve_channel_types(channel_types)
        api = await self.provider.provide()
        records = await fetch_all(api, ListingParams.build(types, limit=self._page_size), max_pages=self._max_pages)
        rows = sort_rows(normalize(records), sort_name)
        return encode(tuple(rows)).decode("utf-8")


__all__ = [
    "CHANNELS_LIST",
    "DEFAULT_SORT",
    "ToolDispatcher",
    "ToolResult",
    "resolve_channel_types",
    "resolve_sort",
]
