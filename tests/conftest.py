import contextlib

import pytest

from slack_mcp_server.config import clear_settings_cache
from slack_mcp_server.logs import reset_logging_state

_SLACK_ENV = (
    "SLACK_MCP_XOXC_TOKEN",
    "SLACK_MCP_XOXD_TOKEN",
    "SLACK_MCP_DEMO",
    "SLACK_MCP_DEMO_TOKEN",
    "SLACK_MCP_API_BASE_URL",
    "SLACK_MCP_PAGE_SIZE",
    "SLACK_MCP_MAX_PAGES",
    "SLACK_MCP_BOOT_TIMEOUT",
    "SLACK_MCP_HOST",
    "SLACK_MCP_PORT",
)


@pytest.fixture
def isolated_env(monkeypatch):
    """Provide isolated settings for tests and reset caches."""
    for name in _SLACK_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("APP_ENVIRONMENT", "test")
    monkeypatch.setenv("HTTP_HOST", "127.0.0.1")
    monkeypatch.setenv("HTTP_PORT", "8765")
    monkeypatch.setenv("HTTP_PATH", "/mcp/")
    # A failed bootstrap must never signal the test runner
    monkeypatch.setenv("SLACK_MCP_EXIT_ON_AUTH_FAILURE", "false")
    monkeypatch.setenv("SLACK_MCP_BOOT_TIMEOUT", "5")
    monkeypatch.setenv("TOOLS_LOG_ENABLED", "false")
    monkeypatch.setenv("LOG_RICH_ENABLED", "false")
    monkeypatch.setenv("LOG_LEVEL", "INFO")
    clear_settings_cache()
    reset_logging_state()
    try:
        yield
    finally:
        clear_settings_cache()
        reset_logging_state()


@pytest.fixture
def demo_env(isolated_env, monkeypatch):
    """isolated_env with demo credentials: the canned workspace, no Slack contact."""
    monkeypatch.setenv("SLACK_MCP_DEMO", "true")
    clear_settings_cache()
    yield


@pytest.fixture(autouse=True)
def _global_settings_cleanup():
    yield
    with contextlib.suppress(Exception):
        clear_settings_cache()

