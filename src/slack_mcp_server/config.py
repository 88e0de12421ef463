"""Application configuration loaded via python-decouple with typed helpers."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Final, Protocol, cast

from decouple import (
    Config as DecoupleConfig,
    RepositoryEmpty,
    RepositoryEnv,
)

_DOTENV_PATH: Final[Path] = Path(".env")

DEFAULT_HTTP_HOST: Final[str] = "127.0.0.1"
DEFAULT_HTTP_PORT: Final[int] = 13080
# Slack rejects conversations.list limits above this value
MAX_PAGE_SIZE: Final[int] = 1000


def _build_decouple_config() -> DecoupleConfig:
    # Gracefully handle missing .env (e.g., in CI/tests) by falling back to an empty repository.
    try:
        return DecoupleConfig(RepositoryEnv(str(_DOTENV_PATH)))
    except FileNotFoundError:
        return DecoupleConfig(RepositoryEmpty())


_decouple_config: Final[DecoupleConfig] = _build_decouple_config()


@dataclass(slots=True, frozen=True)
class SlackSettings:
    """Upstream Slack Web API credentials and pagination limits."""

    xoxc_token: str
    xoxd_token: str
    # Explicit demo switch; also implied when both tokens equal demo_token
    demo_mode: bool
    demo_token: str
    api_base_url: str
    timeout_seconds: float
    page_size: int
    max_pages: int
    boot_timeout_seconds: float
    exit_on_auth_failure: bool

    @property
    def has_credentials(self) -> bool:
        return bool(self.xoxc_token and self.xoxd_token)


@dataclass(slots=True, frozen=True)
class HttpSettings:
    """HTTP transport related settings."""

    host: str
    port: int
    path: str
    request_log_enabled: bool


@dataclass(slots=True, frozen=True)
class CorsSettings:
    """CORS configuration for the HTTP app."""

    enabled: bool
    origins: list[str]
    allow_methods: list[str]
    allow_headers: list[str]


@dataclass(slots=True, frozen=True)
class Settings:
    """Top-level application settings."""

    environment: str
    slack: SlackSettings
    http: HttpSettings
    cors: CorsSettings
    # Logging
    log_rich_enabled: bool
    log_level: str
    log_json_enabled: bool
    # Tools logging
    tools_log_enabled: bool


def _bool(value: str, *, default: bool) -> bool:
    normalized = value.strip().lower()
    if normalized in {"1", "true", "t", "yes", "y"}:
        return True
    if normalized in {"0", "false", "f", "no", "n"}:
        return False
    return default


def _int(value: str, *, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _float(value: str, *, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""
    environment = _decouple_config("APP_ENVIRONMENT", default="development")

    def _csv(name: str, default: str) -> list[str]:
        raw = _decouple_config(name, default=default)
        return [part.strip() for part in raw.split(",") if part.strip()]

    xoxc = _decouple_config("SLACK_MCP_XOXC_TOKEN", default="").strip()
    xoxd = _decouple_config("SLACK_MCP_XOXD_TOKEN", default="").strip()
    demo_token = _decouple_config("SLACK_MCP_DEMO_TOKEN", default="demo").strip()
    demo_mode = _bool(_decouple_config("SLACK_MCP_DEMO", default="false"), default=False) or (
        bool(demo_token) and xoxc == demo_token and xoxd == demo_token
    )

    page_size = _int(_decouple_config("SLACK_MCP_PAGE_SIZE", default="100"), default=100)
    if page_size <= 0:
        page_size = 100
    max_pages = _int(_decouple_config("SLACK_MCP_MAX_PAGES", default="100"), default=100)
    if max_pages <= 0:
        max_pages = 100
    boot_timeout = _float(_decouple_config("SLACK_MCP_BOOT_TIMEOUT", default="30"), default=30.0)
    if boot_timeout <= 0:
        boot_timeout = 30.0

    slack_settings = SlackSettings(
        xoxc_token=xoxc,
        xoxd_token=xoxd,
        demo_mode=demo_mode,
        demo_token=demo_token,
        api_base_url=_decouple_config("SLACK_MCP_API_BASE_URL", default="https://slack.com/api").rstrip("/"),
        timeout_seconds=_float(_decouple_config("SLACK_MCP_HTTP_TIMEOUT", default="30"), default=30.0),
        page_size=min(page_size, MAX_PAGE_SIZE),
        max_pages=max_pages,
        boot_timeout_seconds=boot_timeout,
        exit_on_auth_failure=_bool(_decouple_config("SLACK_MCP_EXIT_ON_AUTH_FAILURE", default="true"), default=True),
    )

    # SLACK_MCP_HOST / SLACK_MCP_PORT take precedence over the generic names
    host = _decouple_config("SLACK_MCP_HOST", default="") or _decouple_config("HTTP_HOST", default=DEFAULT_HTTP_HOST)
    port_raw = _decouple_config("SLACK_MCP_PORT", default="") or _decouple_config("HTTP_PORT", default=str(DEFAULT_HTTP_PORT))
    http_settings = HttpSettings(
        host=host,
        port=_int(port_raw, default=DEFAULT_HTTP_PORT),
        path=_decouple_config("HTTP_PATH", default="/mcp"),
        request_log_enabled=_bool(_decouple_config("HTTP_REQUEST_LOG_ENABLED", default="true"), default=True),
    )

    cors_settings = CorsSettings(
        enabled=_bool(_decouple_config("HTTP_CORS_ENABLED", default="true"), default=True),
        origins=_csv("HTTP_CORS_ORIGINS", default="*"),
        allow_methods=_csv("HTTP_CORS_ALLOW_METHODS", default="GET,POST,PUT,DELETE,OPTIONS"),
        allow_headers=_csv("HTTP_CORS_ALLOW_HEADERS", default="*"),
    )

    return Settings(
        environment=environment,
        slack=slack_settings,
        http=http_settings,
        cors=cors_settings,
        log_rich_enabled=_bool(_decouple_config("LOG_RICH_ENABLED", default="true"), default=True),
        log_level=_decouple_config("LOG_LEVEL", default="INFO"),
        log_json_enabled=_bool(_decouple_config("LOG_JSON_ENABLED", default="false"), default=False),
        tools_log_enabled=_bool(_decouple_config("TOOLS_LOG_ENABLED", default="true"), default=True),
    )


def mask_secret(value: str) -> str:
    """Return a display-safe rendition of a credential."""
    if not value:
        return ""
    if len(value) <= 8:
        return "*" * len(value)
    return f"{value[:4]}...{value[-4:]}"


class _CacheClearable(Protocol):
    def cache_clear(self) -> None: ...


def clear_settings_cache() -> None:
    """Clear the lru_cache for get_settings in a type-checker-friendly way."""
    cache_clear = getattr(cast(_CacheClearable, get_settings), "cache_clear", None)
    if callable(cache_clear):
        cache_clear()
