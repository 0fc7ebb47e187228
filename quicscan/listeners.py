from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Hashable, List, Optional

from .domain_stats import DomainStatsAggregator, extract_domain
from .models import RedirectInfo
from .status_tracker import StatusPriorityTracker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestEvent:
    url: str
    resource_type: str = "other"
    method: str = "GET"
    is_main_frame: bool = False
    request_key: Optional[Hashable] = None


@dataclass(frozen=True)
class ResponseEvent:
    url: str
    status: int
    resource_type: str = "other"
    size: int = 0
    headers: Dict[str, str] = field(default_factory=dict)
    is_main_frame: bool = False
    remote_ip: Optional[str] = None
    request_key: Optional[Hashable] = None


@dataclass(frozen=True)
class RequestFailedEvent:
    url: str
    error_text: Optional[str]
    resource_type: str = "other"
    request_key: Optional[Hashable] = None


def is_main_domain(domain: str, target: str) -> bool:
    return domain == target or domain == f"www.{target}" or f"www.{domain}" == target


_IPV4_RE = re.compile(r"\b(\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3})\b")

# Checked in order; some CDNs and servers embed the backend address here.
IP_HEADERS = ("x-served-by", "server")


def header_ip(headers: Dict[str, str]) -> Optional[str]:
    """First IPv4 address found in the x-served-by or server response header."""
    for name in IP_HEADERS:
        value = _header(headers, name)
        if not value:
            continue
        match = _IPV4_RE.search(value)
        if match:
            return match.group(1)
    return None


@dataclass
class ScanState:
    """Everything one scan accumulates; built per scan and passed to handlers."""

    target: str
    aggregator: DomainStatsAggregator = field(default_factory=DomainStatsAggregator)
    tracker: StatusPriorityTracker = field(default_factory=StatusPriorityTracker)
    redirect: RedirectInfo = field(default_factory=RedirectInfo)
    main_status: Optional[int] = None
    main_headers: Dict[str, str] = field(default_factory=dict)
    fallback_used: bool = False

    def reset_attempt(self, keep_priority: bool = False) -> None:
        """Drop per-attempt aggregates; keep_priority preserves the status tracker."""
        self.aggregator.reset()
        self.redirect.clear()
        self.main_status = None
        self.main_headers = {}
        if not keep_priority:
            self.tracker.reset()


class ScanListeners:
    """Event sink the browser driver feeds.

    Each handler is synchronous: drivers finish any awaiting (e.g. reading a
    body to size it) before calling in, so every mutation runs uninterrupted.
    """

    def __init__(self, state: ScanState) -> None:
        self._state = state
        self._activity: List[Callable[[], None]] = []

    @property
    def state(self) -> ScanState:
        return self._state

    @property
    def activity_listener_count(self) -> int:
        return len(self._activity)

    def add_activity_listener(self, callback: Callable[[], None]) -> None:
        if callback not in self._activity:
            self._activity.append(callback)

    def remove_activity_listener(self, callback: Callable[[], None]) -> None:
        try:
            self._activity.remove(callback)
        except ValueError:
            pass

    def _notify_activity(self) -> None:
        for callback in list(self._activity):
            callback()

    def on_request(self, event: RequestEvent) -> None:
        state = self._state
        domain = extract_domain(event.url)
        state.aggregator.on_request(
            event.url,
            domain=domain,
            resource_type=event.resource_type,
            method=event.method,
            request_key=event.request_key,
        )
        timing = "[AFTER-LOAD]" if state.aggregator.load_event_fired else "[BEFORE-LOAD]"
        logger.debug("[%s] %s %s %s", event.resource_type.upper(), timing, event.method, event.url[:120])
        self._notify_activity()

    def on_response(self, event: ResponseEvent) -> None:
        state = self._state
        domain = extract_domain(event.url)
        state.aggregator.on_response(event.url, event.status, event.size, request_key=event.request_key)
        ip = event.remote_ip or header_ip(event.headers)
        if ip:
            state.aggregator.record_ip(domain, ip)

        if event.resource_type == "document":
            if is_main_domain(domain, state.target):
                state.tracker.observe(event.status)
            if event.is_main_frame:
                state.main_status = event.status
                state.main_headers = dict(event.headers)
                if 300 <= event.status < 400:
                    location = _header(event.headers, "location")
                    if state.redirect.capture(event.status, location):
                        logger.info("[REDIRECT] %s -> %s (HTTP %s)", event.url, location, event.status)
        self._notify_activity()

    def on_request_failed(self, event: RequestFailedEvent) -> None:
        self._state.aggregator.on_request_failed(event.url, event.error_text, request_key=event.request_key)

    def on_load(self) -> None:
        self._state.aggregator.mark_load_event()
        logger.info("[LOAD-EVENT] Page load event fired")

    def on_address(self, url: str, ip: Optional[str]) -> None:
        """Debugging-session report of the remote address that served `url`."""
        if ip:
            self._state.aggregator.record_ip(extract_domain(url), ip)


def _header(headers: Dict[str, str], name: str) -> Optional[str]:
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None
