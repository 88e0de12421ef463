"""Error taxonomy shared by the session provider, the channel pipeline and the tool layer."""

from __future__ import annotations

from typing import Any, Optional


class BridgeError(Exception):
    """Base class for failures raised below the tool dispatcher."""

    error_type = "BRIDGE_ERROR"
    recoverable = False

    def __init__(self, message: str, *, data: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.data = data or {}


class AuthenticationError(BridgeError):
    """Credentials are missing or were rejected by Slack."""

    error_type = "AUTHENTICATION_FAILED"


class NotReadyError(BridgeError):
    """The session bootstrap has not finished yet."""

    error_type = "NOT_READY"
    recoverable = True


class UpstreamError(BridgeError):
    """A Slack Web API call failed."""

    error_type = "UPSTREAM_ERROR"
    recoverable = True

    def __init__(
        self,
        message: str,
        *,
        method: str = "",
        slack_error: str = "",
        status_code: Optional[int] = None,
        data: Optional[dict[str, Any]] = None,
    ) -> None:
        payload = dict(data or {})
        if method:
            payload.setdefault("method", method)
        if slack_error:
            payload.setdefault("slack_error", slack_error)
        if status_code is not None:
            payload.setdefault("status_code", status_code)
        super().__init__(message, data=payload)
        self.method = method
        self.slack_error = slack_error
        self.status_code = status_code


class PaginationExhaustedError(BridgeError):
    """The upstream kept returning cursors past the configured page cap."""

    error_type = "PAGINATION_EXHAUSTED"

    def __init__(self, max_pages: int, records: int) -> None:
        super().__init__(
            f"Pagination did not terminate after {max_pages} pages ({records} records fetched).",
            data={"max_pages": max_pages, "records": records},
        )
        self.max_pages = max_pages
        self.records = records


class EncodingError(BridgeError):
    """Rows could not be serialized to CSV."""

    error_type = "ENCODING_ERROR"


__all__ = [
    "AuthenticationError",
    "BridgeError",
    "EncodingError",
    "NotReadyError",
    "PaginationExhaustedError",
    "UpstreamError",
]
