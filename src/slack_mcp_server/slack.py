"""Thin async wrapper around the Slack Web API methods the bridge needs."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Final, Optional, Protocol

import httpx

from .channels import conversation_kind
from .errors import AuthenticationError, UpstreamError

# Slack error codes that mean the credentials themselves are unusable
AUTH_ERROR_CODES: Final[frozenset[str]] = frozenset(
    {
        "invalid_auth",
        "not_authed",
        "token_revoked",
        "token_expired",
        "account_inactive",
    }
)


@dataclass(frozen=True, slots=True)
class ConversationsPage:
    """One conversations.list response: raw channel objects plus the next cursor."""

    channels: list[dict[str, Any]] = field(default_factory=list)
    next_cursor: str = ""


class ConversationsAPI(Protocol):
    async def conversations_list(
        self,
        *,
        types: Sequence[str],
        limit: int,
        exclude_archived: bool,
        cursor: str = "",
    ) -> ConversationsPage: ...


class SlackClient:
    """Slack Web API client authenticated with a browser session token pair.

    The ``xoxc`` token travels as a bearer token and the ``xoxd`` value as the
    ``d`` cookie, which is how Slack's own web client authenticates.
    """

    def __init__(
        self,
        xoxc_token: str,
        xoxd_token: str,
        *,
        base_url: str = "https://slack.com/api",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._http = httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": f"Bearer {xoxc_token}"},
            cookies={"d": xoxd_token},
            timeout=timeout,
            transport=transport,
        )
        self.identity: dict[str, Any] = {}

    async def _call(
        self,
        http_method: str,
        api_method: str,
        *,
        params: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        try:
            response = await self._http.request(http_method, f"/{api_method}", params=params)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Slack {api_method} request failed: {exc}", method=api_method) from exc

        if response.status_code != 200:
            data: dict[str, Any] = {}
            retry_after = response.headers.get("Retry-After")
            if retry_after:
                data["retry_after"] = retry_after
            raise UpstreamError(
                f"Slack {api_method} returned HTTP {response.status_code}",
                method=api_method,
                status_code=response.status_code,
                data=data,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamError(f"Slack {api_method} returned a non-JSON body", method=api_method) from exc
        if not isinstance(payload, dict):
            raise UpstreamError(f"Slack {api_method} returned an unexpected body", method=api_method)

        if not payload.get("ok", False):
            code = str(payload.get("error") or "unknown_error")
            raise UpstreamError(f"Slack {api_method} failed: {code}", method=api_method, slack_error=code)
        return payload

    async def auth_test(self) -> dict[str, Any]:
        """Validate the credentials; rejected credentials raise AuthenticationError."""
        try:
            payload = await self._call("POST", "auth.test")
        except UpstreamError as exc:
            if exc.slack_error in AUTH_ERROR_CODES or exc.status_code in (401, 403):
                raise AuthenticationError(
                    f"Slack rejected the configured credentials ({exc.slack_error or exc.status_code}).",
                    data=exc.data,
                ) from exc
            raise
        self.identity = {
            "team": payload.get("team", ""),
            "team_id": payload.get("team_id", ""),
            "user": payload.get("user", ""),
            "user_id": payload.get("user_id", ""),
            "url": payload.get("url", ""),
        }
        return self.identity

    async def conversations_list(
        self,
        *,
        types: Sequence[str],
        limit: int,
        exclude_archived: bool,
        cursor: str = "",
    ) -> ConversationsPage:
        params: dict[str, Any] = {
            "types": ",".join(types),
            "limit": limit,
            "exclude_archived": exclude_archived,
        }
        if cursor:
            params["cursor"] = cursor
        payload = await self._call("GET", "conversations.list", params=params)
        metadata = payload.get("response_metadata") or {}
        return ConversationsPage(
            channels=list(payload.get("channels") or []),
            next_cursor=str(metadata.get("next_cursor") or ""),
        )

    async def aclose(self) -> None:
        await self._http.aclose()


def _demo_channel(
    cid: str,
    name: str,
    members: int,
    topic: str = "",
    purpose: str = "",
    **flags: Any,
) -> dict[str, Any]:
    record: dict[str, Any] = {
        "id": cid,
        "name": name,
        "is_channel": not (flags.get("is_im") or flags.get("is_mpim") or flags.get("is_private")),
        "num_members": members,
        "topic": {"value": topic},
        "purpose": {"value": purpose},
    }
    record.update(flags)
    return record


DEMO_CONVERSATIONS: Final[tuple[dict[str, Any], ...]] = (
    _demo_channel("C0DEMO001", "general", 42, "Company-wide announcements", "This channel is for workspace-wide communication"),
    _demo_channel("C0DEMO002", "random", 37, "", "Non-work banter and water cooler conversation"),
    _demo_channel("C0DEMO003", "engineering", 18, "Release train: Thursdays", "Engineering discussions"),
    _demo_channel("C0DEMO004", "design", 9, "", "Design reviews, critiques and inspiration"),
    _demo_channel("G0DEMO001", "incident-response", 6, "Pager rotation", "Private incident coordination", is_private=True, is_group=True),
    _demo_channel("G0DEMO002", "mpdm-alice--bob--carol-1", 3, "", "Group DM", is_mpim=True, is_private=True),
    {"id": "D0DEMO001", "is_im": True, "user": "U0DEMOBOB"},
    {"id": "D0DEMO002", "is_im": True, "user": "U0DEMOCAROL"},
)


class DemoSlackClient:
    """Locally stubbed workspace used when demo credentials are configured.

    Serves a fixed set of conversations with real cursor pagination so the
    whole pipeline can be exercised without contacting Slack.
    """

    def __init__(self, conversations: Sequence[dict[str, Any]] = DEMO_CONVERSATIONS) -> None:
        self._conversations = list(conversations)
        self.identity: dict[str, Any] = {"team": "demo", "user": "demo"}

    async def conversations_list(
        self,
        *,
        types: Sequence[str],
        limit: int,
        exclude_archived: bool,
        cursor: str = "",
    ) -> ConversationsPage:
        wanted = set(types)
        matching = [
            record
            for record in self._conversations
            if conversation_kind(record) in wanted and not (exclude_archived and record.get("is_archived"))
        ]
        try:
            offset = int(cursor) if cursor else 0
        except ValueError as exc:
            raise UpstreamError("invalid_cursor", method="conversations.list", slack_error="invalid_cursor") from exc
        page = matching[offset : offset + max(limit, 1)]
        end = offset + len(page)
        return ConversationsPage(channels=[dict(r) for r in page], next_cursor=str(end) if end < len(matching) else "")

    async def aclose(self) -> None:
        return None
