from __future__ import annotations

import itertools
import logging
import time
from collections import OrderedDict, deque
from dataclasses import asdict
from typing import Callable, Deque, Dict, Hashable, List, Optional, Set, Tuple
from urllib.parse import urlsplit

from .models import (
    DomainStat,
    FailedResource,
    FailureCategory,
    PendingRequest,
    RequestedResource,
)

logger = logging.getLogger(__name__)

RESET_PATTERNS = (
    "net::err_connection_reset",
    "net::err_connection_refused",
    "net::err_connection_closed",
    "net::err_connection_failed",
    "net::err_network_changed",
    "net::err_internet_disconnected",
    "net::err_proxy_connection_failed",
    "net::err_tunnel_connection_failed",
    "connection reset",
    "connection was forcibly closed",
    "econnreset",
    "tcp_reset",
)

ABORTED_PATTERNS = (
    "net::err_aborted",
    "net::err_connection_aborted",
    "net::err_blocked_by_client",
    "net::err_blocked_by_response",
    "request was aborted",
    "request aborted",
    "operation was aborted",
)

_SPECIAL_SCHEMES = (
    ("data:", "data-url"),
    ("blob:", "blob-url"),
    ("chrome-extension:", "chrome-extension"),
    ("chrome:", "chrome-internal"),
)


def extract_domain(url: str) -> str:
    """Hostname of a URL, with placeholder names for non-network schemes."""
    if not url:
        return "unknown"
    for prefix, name in _SPECIAL_SCHEMES:
        if url.startswith(prefix):
            return name
    try:
        host = urlsplit(url).hostname
    except ValueError:
        return "invalid-url"
    return host or "invalid-url"


def classify_failure(error_text: Optional[str]) -> FailureCategory:
    """Bucket a browser request-failure message (e.g. net::ERR_CONNECTION_RESET)."""
    lowered = (error_text or "").lower()
    if any(p in lowered for p in ABORTED_PATTERNS):
        return FailureCategory.REQUEST_ABORTED
    if any(p in lowered for p in RESET_PATTERNS):
        return FailureCategory.CONNECTION_RESET
    return FailureCategory.CONNECTION_ERROR


RequestKey = Tuple[str, Hashable]


class DomainStatsAggregator:
    """Per-domain rollups fed by request lifecycle events for one scan attempt.

    Every request is keyed by (url, request_id). Callers that don't have a
    stable request id get a sequence number, and settlement without a key
    resolves the oldest pending request for that URL. Settling something that
    isn't pending is a no-op, which keeps
    total_requests == successful + http_errors + connection_errors."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._seq = itertools.count(1)
        self.reset()

    def reset(self) -> None:
        self._stats: Dict[str, DomainStat] = {}
        self._pending: "OrderedDict[RequestKey, PendingRequest]" = OrderedDict()
        self._pending_by_url: Dict[str, Deque[RequestKey]] = {}
        self._domain_to_ip: Dict[str, str] = {}
        self.requested_resources: List[RequestedResource] = []
        self.failed_resources: List[FailedResource] = []
        self.succeeded_domains: Set[str] = set()
        self.total_bytes = 0
        self.orphan_events = 0
        self.load_event_fired = False
        self.load_event_time: Optional[float] = None

    # ------------------------------------------------------------------
    # Lifecycle events
    # ------------------------------------------------------------------

    def _stat(self, domain: str) -> DomainStat:
        stat = self._stats.get(domain)
        if stat is None:
            now = self._clock()
            stat = DomainStat(domain=domain, first_seen=now, last_activity=now)
            known_ip = self._domain_to_ip.get(domain)
            if known_ip:
                stat.ip = known_ip
            self._stats[domain] = stat
        return stat

    def on_request(
        self,
        url: str,
        domain: Optional[str] = None,
        resource_type: str = "other",
        method: str = "GET",
        request_key: Optional[Hashable] = None,
    ) -> RequestKey:
        """Count a newly initiated request and mark it pending."""
        domain = domain or extract_domain(url)
        key: RequestKey = (url, request_key if request_key is not None else next(self._seq))

        stat = self._stat(domain)
        stat.total_requests += 1
        stat.resource_types[resource_type] += 1
        stat.last_activity = self._clock()

        self.requested_resources.append(
            RequestedResource(
                url=url,
                domain=domain,
                resource_type=resource_type,
                method=method,
                requested_after_load=self.load_event_fired,
            )
        )
        if key in self._pending:
            # Same key re-announced (e.g. a redirect hop reusing the request id):
            # settle the old entry as a success so counts stay balanced.
            logger.debug("Request key re-used before settlement: %s", url)
            self._settle_success(self._pop(key), 0, 0)
        self._pending[key] = PendingRequest(
            url=url,
            domain=domain,
            resource_type=resource_type,
            method=method,
            start_time=self._clock(),
            requested_after_load=self.load_event_fired,
        )
        self._pending_by_url.setdefault(url, deque()).append(key)
        return key

    def on_response(
        self,
        url: str,
        status: int,
        size: int = 0,
        request_key: Optional[Hashable] = None,
    ) -> bool:
        """Settle a pending request with an HTTP response; False if nothing was pending."""
        pending = self._take(url, request_key)
        if pending is None:
            self.orphan_events += 1
            logger.debug("Response for unknown request ignored: %s (%s)", url, status)
            return False

        status = int(status)
        size = max(0, int(size or 0))
        if 200 <= status < 400:
            self._settle_success(pending, status, size)
        else:
            stat = self._stat(pending.domain)
            stat.http_errors += 1
            self._count_status(stat, status, size)
            self.failed_resources.append(
                FailedResource(
                    url=url,
                    domain=pending.domain,
                    resource_type=pending.resource_type,
                    category=FailureCategory.HTTP_ERROR,
                    status_code=status,
                    error_text=f"HTTP {status}",
                )
            )
            logger.debug("[HTTP-ERROR] %s %s - HTTP %s", pending.resource_type.upper(), pending.domain, status)
        return True

    def on_request_failed(
        self,
        url: str,
        error_text: Optional[str],
        request_key: Optional[Hashable] = None,
    ) -> Optional[FailureCategory]:
        """Settle a pending request that failed below HTTP (reset, abort, refused...)."""
        pending = self._take(url, request_key)
        if pending is None:
            self.orphan_events += 1
            logger.debug("Failure for unknown request ignored: %s (%s)", url, error_text)
            return None

        category = classify_failure(error_text)
        stat = self._stat(pending.domain)
        stat.connection_errors += 1
        stat.last_activity = self._clock()
        if error_text:
            stat.error_messages.add(error_text)
        self.failed_resources.append(
            FailedResource(
                url=url,
                domain=pending.domain,
                resource_type=pending.resource_type,
                category=category,
                error_text=error_text,
            )
        )
        logger.debug("[FAILED] %s %s - %s (%s)", pending.resource_type.upper(), pending.domain, error_text, category.value)
        return category

    def record_ip(self, domain: str, ip: Optional[str]) -> bool:
        """Backfill a domain's IP; the first writer wins."""
        if not ip or domain in self._domain_to_ip:
            return False
        self._domain_to_ip[domain] = ip
        stat = self._stats.get(domain)
        if stat is not None and stat.ip is None:
            stat.ip = ip
        return True

    def mark_load_event(self) -> None:
        self.load_event_fired = True
        self.load_event_time = self._clock()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _pop(self, key: RequestKey) -> PendingRequest:
        pending = self._pending.pop(key)
        keys = self._pending_by_url.get(key[0])
        if keys is not None:
            try:
                keys.remove(key)
            except ValueError:
                pass
            if not keys:
                del self._pending_by_url[key[0]]
        return pending

    def _take(self, url: str, request_key: Optional[Hashable]) -> Optional[PendingRequest]:
        if request_key is not None:
            key = (url, request_key)
            if key in self._pending:
                return self._pop(key)
            return None
        keys = self._pending_by_url.get(url)
        if not keys:
            return None
        return self._pop(keys[0])

    def _settle_success(self, pending: PendingRequest, status: int, size: int) -> None:
        stat = self._stat(pending.domain)
        stat.successful += 1
        if status:
            self._count_status(stat, status, size)
        self.succeeded_domains.add(pending.domain)

    def _count_status(self, stat: DomainStat, status: int, size: int) -> None:
        stat.status_codes[str(status)] += 1
        stat.status_codes[f"{status // 100}xx"] += 1
        stat.total_bytes += size
        stat.last_activity = self._clock()
        self.total_bytes += size

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, domain: str) -> Optional[DomainStat]:
        return self._stats.get(domain)

    @property
    def domains(self) -> List[DomainStat]:
        return list(self._stats.values())

    @property
    def domain_to_ip(self) -> Dict[str, str]:
        return dict(self._domain_to_ip)

    @property
    def unique_domains(self) -> int:
        return len({r.domain for r in self.requested_resources})

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def pending_requests(self) -> List[PendingRequest]:
        return list(self._pending.values())

    def pending_by_domain(self) -> Dict[str, List[PendingRequest]]:
        grouped: Dict[str, List[PendingRequest]] = {}
        for pending in self._pending.values():
            grouped.setdefault(pending.domain, []).append(pending)
        return grouped

    @property
    def http_error_resources(self) -> List[FailedResource]:
        return [f for f in self.failed_resources if f.category is FailureCategory.HTTP_ERROR]

    @property
    def connection_failed_domains(self) -> List[str]:
        seen: Dict[str, None] = {}
        for failure in self.failed_resources:
            if failure.category is not FailureCategory.HTTP_ERROR:
                seen.setdefault(failure.domain, None)
        return list(seen)

    def failures_by_category(self, category: FailureCategory) -> List[FailedResource]:
        return [f for f in self.failed_resources if f.category is category]

    def snapshot(self) -> Dict[str, Dict]:
        """Export every DomainStat as a plain dict, busiest domain first."""
        ordered = sorted(self._stats.values(), key=lambda s: s.total_requests, reverse=True)
        exported: Dict[str, Dict] = {}
        for stat in ordered:
            row = asdict(stat)
            row["failed"] = stat.failed
            row["resource_types"] = dict(stat.resource_types)
            row["status_codes"] = dict(stat.status_codes)
            row["error_messages"] = sorted(stat.error_messages)
            exported[stat.domain] = row
        return exported
