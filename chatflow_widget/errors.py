from __future__ import annotations

from typing import Optional

_TRANSIENT_MARKERS = ("timeout", "network", "502", "503", "504")


class UpstreamError(Exception):
    """Any failure talking to the prediction API."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class UpstreamHTTPError(UpstreamError):
    def __init__(self, status_code: int, reason: str, body: str, *, prefix: str = "Flowise API error"):
        message = f"{prefix}: {status_code} {reason}".rstrip()
        if body:
            message = f"{message} - {body}"
        super().__init__(message, status_code=status_code, body=body)


class UpstreamNetworkError(UpstreamError):
    pass


class UpstreamTimeoutError(UpstreamError):
    pass


class UpstreamStreamError(UpstreamError):
    pass


def is_transient(exc: BaseException) -> bool:
    """Timeouts, network errors and 502/503/504 are worth another attempt."""
    message = str(exc).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)
