from __future__ import annotations

import pytest

from slack_mcp_server.dispatcher import CHANNELS_LIST, ToolDispatcher, resolve_channel_types, resolve_sort
from slack_mcp_server.encoding import decode
from slack_mcp_server.errors import AuthenticationError, NotReadyError, UpstreamError
from slack_mcp_server.provider import DemoProvider
from slack_mcp_server.slack import ConversationsPage
from tests.doubles import ScriptedConversations, StaticProvider, channel


def _single_page(*records) -> ScriptedConversations:
    return ScriptedConversations([ConversationsPage(channels=list(records), next_cursor="")])


@pytest.mark.asyncio
async def test_defaults_list_public_channels_by_popularity():
    dispatcher = ToolDispatcher(DemoProvider())

    result = await dispatcher.invoke(CHANNELS_LIST, {})

    assert result.ok
    rows = decode(result.text)
    assert [row.name for row in rows] == ["#general", "#random", "#engineering", "#design"]
    assert [row.member_count for row in rows] == sorted((row.member_count for row in rows), reverse=True)


@pytest.mark.asyncio
async def test_absent_parameters_resolve_to_documented_defaults():
    api = _single_page(channel("C1", "small", 1), channel("C2", "big", 50))
    dispatcher = ToolDispatcher(StaticProvider(api))

    result = await dispatcher.invoke(CHANNELS_LIST, {"sort": None, "channel_types": None})

    assert api.calls[0]["types"] == ("public_channel",)
    assert [row.id for row in decode(result.text)] == ["C2", "C1"]


@pytest.mark.asyncio
async def test_im_filter_requests_only_direct_messages():
    api = _single_page({"id": "D1", "is_im": True, "user": "U1"}, {"id": "D2", "is_im": True, "user": "U2"})
    dispatcher = ToolDispatcher(StaticProvider(api))

    result = await dispatcher.invoke(CHANNELS_LIST, {"channel_types": ["im"]})

    assert api.calls[0]["types"] == ("im",)
    assert result.text == "id,name,topic,purpose,memberCount\nD1,@U1,,,0\nD2,@U2,,,0\n"


@pytest.mark.asyncio
async def test_demo_workspace_paginates_with_small_pages():
    dispatcher = ToolDispatcher(DemoProvider(), page_size=2)

    result = await dispatcher.invoke(
        CHANNELS_LIST, {"channel_types": ["public_channel", "private_channel", "mpim", "im"], "sort": "none"}
    )

    rows = decode(result.text)
    assert len(rows) == 8
    assert rows[0].name == "#general"
    assert {row.name for row in rows if row.id.startswith("D")} == {"@U0DEMOBOB", "@U0DEMOCAROL"}


@pytest.mark.asyncio
async def test_unknown_sort_keeps_listing_order():
    api = _single_page(channel("C1", "a", 5), channel("C2", "b", 10), channel("C3", "c", 5))
    dispatcher = ToolDispatcher(StaticProvider(api))

    result = await dispatcher.invoke(CHANNELS_LIST, {"sort": "alphabetical-ish"})

    assert [row.id for row in decode(result.text)] == ["C1", "C2", "C3"]


@pytest.mark.asyncio
async def test_page_size_is_forwarded_as_limit():
    api = _single_page()
    dispatcher = ToolDispatcher(StaticProvider(api), page_size=250)

    await dispatcher.invoke(CHANNELS_LIST)

    assert api.calls[0]["limit"] == 250
    assert api.calls[0]["exclude_archived"] is True


@pytest.mark.asyncio
async def test_invalid_channel_type_is_an_argument_error():
    api = _single_page()
    dispatcher = ToolDispatcher(StaticProvider(api))

    result = await dispatcher.invoke(CHANNELS_LIST, {"channel_types": ["public_channel", "shared"]})

    assert not result.ok
    assert result.error_type == "INVALID_ARGUMENT"
    assert result.recoverable is True
    assert "shared" in result.message
    assert api.calls == []


@pytest.mark.asyncio
async def test_unexpected_parameter_is_an_argument_error():
    dispatcher = ToolDispatcher(StaticProvider(_single_page()))

    result = await dispatcher.invoke(CHANNELS_LIST, {"limit": 5})

    assert result.error_type == "INVALID_ARGUMENT"
    assert "limit" in result.message


@pytest.mark.asyncio
async def test_unknown_tool():
    dispatcher = ToolDispatcher(StaticProvider(_single_page()))

    result = await dispatcher.invoke("users_list", {})

    assert result.error_type == "UNKNOWN_TOOL"
    assert isinstance(result.error, LookupError)
    assert result.data["available"] == ["channels_list"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("error", "error_type", "recoverable"),
    [
        (AuthenticationError("Slack rejected the configured credentials (invalid_auth)."), "AUTHENTICATION_FAILED", False),
        (NotReadyError("still bootstrapping"), "NOT_READY", True),
    ],
)
async def test_session_errors_become_failures(error, error_type, recoverable):
    dispatcher = ToolDispatcher(StaticProvider(error=error))

    result = await dispatcher.invoke(CHANNELS_LIST, {})

    assert result.error is error
    assert result.error_type == error_type
    assert result.recoverable is recoverable
    assert result.text == ""


@pytest.mark.asyncio
async def test_unexpected_error_becomes_unhandled_failure():
    boom = RuntimeError("session factory exploded")
    dispatcher = ToolDispatcher(StaticProvider(error=boom))

    result = await dispatcher.invoke(CHANNELS_LIST, {})

    assert not result.ok
    assert result.error is boom
    assert result.error_type == "UNHANDLED_EXCEPTION"
    assert result.recoverable is False
    assert result.data["original_error"] == "RuntimeError"
    assert result.text == ""


@pytest.mark.asyncio
async def test_upstream_failure_preserves_cause_and_drops_partial_rows():
    boom = ConnectionResetError("peer reset")
    api = ScriptedConversations([ConversationsPage(channels=[channel("C1", "a", 1)], next_cursor="next"), boom])
    dispatcher = ToolDispatcher(StaticProvider(api))

    result = await dispatcher.invoke(CHANNELS_LIST, {})

    assert not result.ok
    assert result.text == ""
    assert isinstance(result.error, UpstreamError)
    assert result.error.__cause__ is boom
    assert result.data["method"] == "conversations.list"


@pytest.mark.asyncio
async def test_page_cap_failure_is_reported():
    api = ScriptedConversations([ConversationsPage(channels=[], next_cursor=f"c{i}") for i in range(5)])
    dispatcher = ToolDispatcher(StaticProvider(api), max_pages=2)

    result = await dispatcher.invoke(CHANNELS_LIST, {})

    assert result.error_type == "PAGINATION_EXHAUSTED"
    assert result.data == {"max_pages": 2, "records": 0}


@pytest.mark.asyncio
async def test_encoding_failure_is_reported():
    api = _single_page(channel("C1", "bad\udcff", 1))
    dispatcher = ToolDispatcher(StaticProvider(api))

    result = await dispatcher.invoke(CHANNELS_LIST, {})

    assert result.error_type == "ENCODING_ERROR"
    assert isinstance(result.error.__cause__, UnicodeEncodeError)


def test_resolve_sort_defaults():
    assert resolve_sort(None) == "popularity"
    assert resolve_sort("  ") == "popularity"
    assert resolve_sort("none") == "none"


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, ("public_channel",)),
        ([], ("public_channel",)),
        ("", ("public_channel",)),
        ("im, mpim", ("im", "mpim")),
        (["im", "im", "public_channel"], ("im", "public_channel")),
        (("private_channel",), ("private_channel",)),
    ],
)
def test_resolve_channel_types(value, expected):
    assert resolve_channel_types(value) == expected


@pytest.mark.parametrize("value", [42, {"im": True}, ["im", "group"]])
def test_resolve_channel_types_rejects_bad_values(value):
    with pytest.raises(ValueError):
        resolve_channel_types(value)
