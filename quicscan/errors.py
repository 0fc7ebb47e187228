from __future__ import annotations

import re
from typing import Optional


class ScanError(Exception):
    """Base class for every failure the scanner distinguishes."""

    retryable = False
    fallback_eligible = False


class NavigationTimeout(ScanError):
    """No network activity within the inactivity window."""

    retryable = True
    fallback_eligible = True


class ProtocolError(ScanError):
    """Transport-level QUIC failure reported by the browser."""

    retryable = True
    fallback_eligible = True


class FrameDetachedAfterRedirect(ScanError):
    """The navigating frame went away after a redirect; treated as success."""


class NavigationFailed(ScanError):
    """Any other whole-navigation failure. Terminal."""


class ProxyStatsUnavailable(ScanError):
    """The proxy stats endpoint could not be read or returned garbage."""


class ConnectionRecordParseError(ScanError):
    """One brace-delimited connection record could not be decoded."""

    def __init__(self, record: str, reason: str) -> None:
        super().__init__(f"{reason}: {record}")
        self.record = record
        self.reason = reason


_QUIC_PATTERNS = (
    "QUIC_PROTOCOL_ERROR",
    "ERR_QUIC_PROTOCOL_ERROR",
)
_TIMEOUT_PATTERNS = (
    "navigation timeout",
    "timeout",
    "timeouterror",
)
_DETACHED_PATTERNS = (
    "frame was detached",
    "navigating frame was detached",
    "frame has been detached",
)


def _looks_like_quic_error(message: str) -> bool:
    if any(p in message for p in _QUIC_PATTERNS):
        return True
    lowered = message.lower()
    return "quic" in lowered and "protocol" in lowered and "error" in lowered


def classify_navigation_error(exc: BaseException) -> ScanError:
    """Map a raw browser exception onto the scanner's error taxonomy."""
    if isinstance(exc, ScanError):
        return exc
    message = str(exc) or type(exc).__name__
    lowered = message.lower()
    if any(p in lowered for p in _DETACHED_PATTERNS):
        classified: ScanError = FrameDetachedAfterRedirect(message)
    elif _looks_like_quic_error(message):
        classified = ProtocolError(message)
    elif any(p in lowered for p in _TIMEOUT_PATTERNS) or type(exc).__name__ == "TimeoutError":
        classified = NavigationTimeout(message)
    else:
        classified = NavigationFailed(message)
    classified.__cause__ = exc
    return classified


_NET_ERR_RE = re.compile(r"net::ERR_[A-Z0-9_]+")
_NON_WORD_RE = re.compile(r"[^a-zA-Z0-9\s]")
_SPACES_RE = re.compile(r"\s+")


def chrome_fail_marker(error: Optional[BaseException]) -> str:
    """Short, CSV-safe marker describing why navigation failed ("-" if it didn't)."""
    if error is None:
        return "-"
    message = str(error)
    if "net::ERR_" in message:
        match = _NET_ERR_RE.search(message)
        return match.group(0) if match else "CHROMIUM_ERROR"
    if "QUIC" in message:
        return "net::ERR_QUIC_PROTOCOL_ERROR" if "QUIC_PROTOCOL_ERROR" in message else "QUIC_ERROR"
    if isinstance(error, NavigationTimeout) or "timeout" in message.lower():
        return "NAVIGATION_TIMEOUT"
    first_line = message.split("\n")[0]
    cleaned = _SPACES_RE.sub("_", _NON_WORD_RE.sub("", first_line)).upper()[:30]
    return cleaned or "UNKNOWN_ERROR"
