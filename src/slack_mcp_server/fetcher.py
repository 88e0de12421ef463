"""Cursor-driven pagination over conversations.list."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import structlog

from .channels import DEFAULT_CHANNEL_TYPES
from .config import MAX_PAGE_SIZE
from .errors import PaginationExhaustedError, UpstreamError
from .slack import ConversationsAPI

logger = structlog.get_logger("channels")

DEFAULT_PAGE_SIZE = 100
DEFAULT_MAX_PAGES = 100


@dataclass(frozen=True, slots=True)
class ListingParams:
    channel_types: tuple[str, ...] = DEFAULT_CHANNEL_TYPES
    limit: int = DEFAULT_PAGE_SIZE
    exclude_archived: bool = True

    @classmethod
    def build(cls, channel_types: Sequence[str], *, limit: int = DEFAULT_PAGE_SIZE, exclude_archived: bool = True) -> ListingParams:
        return cls(
            channel_types=tuple(channel_types),
            limit=max(1, min(int(limit), MAX_PAGE_SIZE)),
            exclude_archived=exclude_archived,
        )


async def fetch_all(
    api: ConversationsAPI,
    params: ListingParams,
    *,
    max_pages: int = DEFAULT_MAX_PAGES,
) -> list[dict[str, Any]]:
    """Drain every page of conversations.list into one ordered list.

    The page that returns an empty cursor still carries records; it is
    appended before the loop stops. Any failing page aborts the whole fetch.
    """
    records: list[dict[str, Any]] = []
    cursor = ""
    pages = 0
    while True:
        if pages >= max_pages:
            logger.warning("channels.pagination_exhausted", pages=pages, records=len(records))
            raise PaginationExhaustedError(max_pages, len(records))
        # page boundary: yield so a pending cancellation is delivered here
        await asyncio.sleep(0)
        try:
            page = await api.conversations_list(
                types=params.channel_types,
                limit=params.limit,
                exclude_archived=params.exclude_archived,
                cursor=cursor,
            )
        except UpstreamError:
            raise
        except Exception as exc:
            raise UpstreamError(f"conversations.list failed on page {pages + 1}: {exc}", method="conversations.list") from exc
        pages += 1
        records.extend(page.channels)
        cursor = page.next_cursor
        if not cursor:
            break

    logger.info("channels.fetch_complete", pages=pages, records=len(records), types=",".join(params.channel_types))
    return records


__all__ = ["DEFAULT_MAX_PAGES", "DEFAULT_PAGE_SIZE", "ListingParams", "fetch_all"]
