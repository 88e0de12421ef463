"""Normalization of Slack conversation objects into flat channel rows, plus ordering."""

from __future__ import annotations

import enum
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Final

PUBLIC_CHANNEL: Final[str] = "public_channel"
PRIVATE_CHANNEL: Final[str] = "private_channel"
MPIM: Final[str] = "mpim"
IM: Final[str] = "im"

ALL_CHANNEL_TYPES: Final[tuple[str, ...]] = (MPIM, IM, PUBLIC_CHANNEL, PRIVATE_CHANNEL)
DEFAULT_CHANNEL_TYPES: Final[tuple[str, ...]] = (PUBLIC_CHANNEL,)

# Display prefix per conversation kind
CHANNEL_PREFIX: Final[str] = "#"
DIRECT_PREFIX: Final[str] = "@"
NAME_PREFIXES: Final[dict[str, str]] = {
    PUBLIC_CHANNEL: CHANNEL_PREFIX,
    PRIVATE_CHANNEL: CHANNEL_PREFIX,
    MPIM: DIRECT_PREFIX,
    IM: DIRECT_PREFIX,
}


@dataclass(frozen=True, slots=True)
class Channel:
    """A denormalized conversation row as exposed to tool callers."""

    id: str
    name: str
    topic: str
    purpose: str
    member_count: int


class SortPolicy(str, enum.Enum):
    POPULARITY = "popularity"
    NONE = "none"

    @classmethod
    def parse(cls, value: Any) -> SortPolicy:
        """Resolve a policy name; unknown names fall back to insertion order."""
        if isinstance(value, SortPolicy):
            return value
        text = str(value or "").strip().lower()
        for policy in cls:
            if policy.value == text:
                return policy
        return cls.NONE


def conversation_kind(record: Mapping[str, Any]) -> str:
    """Classify a Slack conversation object by its ``is_*`` flags."""
    if record.get("is_im"):
        return IM
    if record.get("is_mpim"):
        return MPIM
    if record.get("is_private") or record.get("is_group"):
        return PRIVATE_CHANNEL
    return PUBLIC_CHANNEL


def display_name(record: Mapping[str, Any]) -> str:
    kind = conversation_kind(record)
    if kind == IM:
        # IMs carry the counterpart user id rather than a name
        base = record.get("user") or record.get("name") or ""
    else:
        base = record.get("name") or ""
    return NAME_PREFIXES[kind] + str(base)


def _text_value(value: Any) -> str:
    if isinstance(value, Mapping):
        value = value.get("value")
    if value is None:
        return ""
    return str(value)


def _member_count(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        count = int(value)
    except (TypeError, ValueError):
        return 0
    return max(count, 0)


def normalize_channel(record: Mapping[str, Any]) -> Channel:
    return Channel(
        id=str(record.get("id") or ""),
        name=display_name(record),
        topic=_text_value(record.get("topic")),
        purpose=_text_value(record.get("purpose")),
        member_count=_member_count(record.get("num_members")),
    )


def normalize(records: Iterable[Mapping[str, Any]]) -> list[Channel]:
    """Map raw conversation objects to rows, one per record, in input order."""
    return [normalize_channel(record) for record in records]


def sort_rows(rows: Iterable[Channel], policy: SortPolicy | str) -> list[Channel]:
    """Order rows by ``policy``.

    ``popularity`` is descending by member count; ``sorted`` is stable so ties
    keep their prior relative order. Every other policy keeps insertion order.
    """
    ordered = list(rows)
    if SortPolicy.parse(policy) is SortPolicy.POPULARITY:
        ordered.sort(key=lambda row: row.member_count, reverse=True)
    return ordered


__all__ = [
    "ALL_CHANNEL_TYPES",
    "DEFAULT_CHANNEL_TYPES",
    "Channel",
    "SortPolicy",
    "conversation_kind",
    "display_name",
    "normalize",
    "normalize_channel",
    "sort_rows",
]
