from __future__ import annotations

import httpx
import pytest

from slack_mcp_server.errors import AuthenticationError, UpstreamError
from slack_mcp_server.slack import DemoSlackClient, SlackClient


def _client(handler) -> SlackClient:
    return SlackClient(
        "xoxc-111",
        "xoxd-222",
        base_url="https://slack.test/api",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_conversations_list_sends_params_and_session_credentials():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "ok": True,
                "channels": [{"id": "C1", "name": "general", "num_members": 3}],
                "response_metadata": {"next_cursor": "dGVhbTpDMDYx"},
            },
        )

    client = _client(handler)
    try:
        page = await client.conversations_list(types=["public_channel", "im"], limit=50, exclude_archived=True)
    finally:
        await client.aclose()

    request = seen[0]
    assert request.method == "GET"
    assert request.url.path == "/api/conversations.list"
    assert request.url.params["types"] == "public_channel,im"
    assert request.url.params["limit"] == "50"
    assert request.url.params["exclude_archived"] == "true"
    assert "cursor" not in request.url.params
    assert request.headers["Authorization"] == "Bearer xoxc-111"
    assert "d=xoxd-222" in request.headers["Cookie"]
    assert page.channels == [{"id": "C1", "name": "general", "num_members": 3}]
    assert page.next_cursor == "dGVhbTpDMDYx"


@pytest.mark.asyncio
async def test_cursor_is_sent_when_present_and_missing_metadata_ends_listing():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ok": True, "channels": []})

    client = _client(handler)
    try:
        page = await client.conversations_list(types=["im"], limit=10, exclude_archived=False, cursor="abc")
    finally:
        await client.aclose()

    assert seen[0].url.params["cursor"] == "abc"
    assert seen[0].url.params["exclude_archived"] == "false"
    assert page.next_cursor == ""


@pytest.mark.asyncio
async def test_ok_false_raises_upstream_error_with_slack_code():
    client = _client(lambda request: httpx.Response(200, json={"ok": False, "error": "missing_scope"}))
    try:
        with pytest.raises(UpstreamError) as excinfo:
            await client.conversations_list(types=["im"], limit=10, exclude_archived=True)
    finally:
        await client.aclose()

    assert excinfo.value.slack_error == "missing_scope"
    assert excinfo.value.data == {"method": "conversations.list", "slack_error": "missing_scope"}


@pytest.mark.asyncio
async def test_rate_limit_keeps_retry_after():
    client = _client(lambda request: httpx.Response(429, headers={"Retry-After": "3"}, text="slow down"))
    try:
        with pytest.raises(UpstreamError) as excinfo:
            await client.conversations_list(types=["im"], limit=10, exclude_archived=True)
    finally:
        await client.aclose()

    assert excinfo.value.status_code == 429
    assert excinfo.value.data["retry_after"] == "3"
    assert excinfo.value.recoverable is True


@pytest.mark.asyncio
async def test_non_json_body_is_upstream_error():
    client = _client(lambda request: httpx.Response(200, text="<html>maintenance</html>"))
    try:
        with pytest.raises(UpstreamError, match="non-JSON"):
            await client.conversations_list(types=["im"], limit=10, exclude_archived=True)
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_transport_failure_is_upstream_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler)
    try:
        with pytest.raises(UpstreamError) as excinfo:
            await client.conversations_list(types=["im"], limit=10, exclude_archived=True)
    finally:
        await client.aclose()

    assert isinstance(excinfo.value.__cause__, httpx.ConnectError)


@pytest.mark.asyncio
async def test_auth_test_records_identity():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        assert request.url.path == "/api/auth.test"
        return httpx.Response(200, json={"ok": True, "team": "Acme", "team_id": "T1", "user": "ana", "user_id": "U1"})

    client = _client(handler)
    try:
        identity = await client.auth_test()
    finally:
        await client.aclose()

    assert identity["team"] == "Acme"
    assert identity["user_id"] == "U1"
    assert client.identity == identity


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, json={"ok": False, "error": "invalid_auth"}),
        httpx.Response(200, json={"ok": False, "error": "token_revoked"}),
        httpx.Response(401, text="unauthorized"),
    ],
)
async def test_auth_test_maps_rejections_to_authentication_error(response):
    client = _client(lambda request: response)
    try:
        with pytest.raises(AuthenticationError) as excinfo:
            await client.auth_test()
    finally:
        await client.aclose()

    assert isinstance(excinfo.value.__cause__, UpstreamError)
    assert excinfo.value.recoverable is False


@pytest.mark.asyncio
async def test_auth_test_missing_permission_is_not_a_credential_rejection():
    client = _client(lambda request: httpx.Response(200, json={"ok": False, "error": "no_permission"}))
    try:
        with pytest.raises(UpstreamError) as excinfo:
            await client.auth_test()
    finally:
        await client.aclose()

    assert not isinstance(excinfo.value, AuthenticationError)
    assert excinfo.value.data["slack_error"] == "no_permission"


@pytest.mark.asyncio
async def test_auth_test_server_error_stays_transient():
    client = _client(lambda request: httpx.Response(503, text="unavailable"))
    try:
        with pytest.raises(UpstreamError) as excinfo:
            await client.auth_test()
    finally:
        await client.aclose()

    assert not isinstance(excinfo.value, AuthenticationError)


@pytest.mark.asyncio
async def test_demo_client_filters_and_paginates():
    client = DemoSlackClient()

    first = await client.conversations_list(types=["public_channel"], limit=3, exclude_archived=True)
    second = await client.conversations_list(types=["public_channel"], limit=3, exclude_archived=True, cursor=first.next_cursor)

    assert [c["name"] for c in first.channels] == ["general", "random", "engineering"]
    assert first.next_cursor == "3"
    assert [c["name"] for c in second.channels] == ["design"]
    assert second.next_cursor == ""


@pytest.mark.asyncio
async def test_demo_client_rejects_garbage_cursor():
    client = DemoSlackClient()
    with pytest.raises(UpstreamError) as excinfo:
        await client.conversations_list(types=["im"], limit=3, exclude_archived=True, cursor="not-a-cursor")
    assert excinfo.value.slack_error == "invalid_cursor"
