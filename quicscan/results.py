"""Turn one scan's aggregated state into a CsvRow.

build_row() covers navigations that settled successfully; build_error_row()
produces the best-effort row for a terminal failure from whatever status,
IP and proxy information was captured before it.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from .config import CLOUDFLARE_CHALLENGE_HOST, DNS_FALLBACK_ADJUSTMENT_SECONDS, TRACKED_STATUS_CODES
from .connection_parser import parse_connections_detail, status_for_domain
from .domain_stats import DomainStatsAggregator
from .errors import chrome_fail_marker
from .listeners import ScanState, is_main_domain
from .models import (
    CsvRow,
    DomainStatistics,
    FailedResource,
    LanguageResult,
    NavigationOutcome,
    Protocol,
    ProxyConnectionRecord,
    ProxyStats,
    RedirectResolution,
)
from .proxy_summary import summarize_connections
from .redirects import UNRESOLVED, RedirectResolver

logger = logging.getLogger(__name__)

BLOCKED = "BLOCKED"
ERROR = "ERROR"

_REDIRECT_CODE_RE = re.compile(r"^3\d\d$")


def utc_timestamp(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def format_load_time(seconds: float) -> str:
    return f"{max(seconds, 0.0):.2f}"


def adjusted_load_time(seconds: float, stats: Optional[ProxyStats]) -> float:
    """Discount the proxy's DNS fallback delay from the measured load time."""
    if stats is None or not stats.dns_fallback_occurred:
        return seconds
    adjusted = max(0.0, seconds - DNS_FALLBACK_ADJUSTMENT_SECONDS)
    logger.info(
        "DNS fallback detected, adjusting load time: %.2fs -> %.2fs (-%gs)",
        seconds,
        adjusted,
        DNS_FALLBACK_ADJUSTMENT_SECONDS,
    )
    return adjusted


def backfill_proxy_ips(aggregator: DomainStatsAggregator, records: Optional[List[ProxyConnectionRecord]]) -> None:
    """Give domains the page touched the IP of their proxy connection, unless already known."""
    for record in records or ():
        if record.ip and aggregator.get(record.domain) is not None:
            aggregator.record_ip(record.domain, record.ip)


def proxy_connections(stats: Optional[ProxyStats]) -> Optional[List[ProxyConnectionRecord]]:
    """Parsed connection list, or None when the proxy supplied no blob at all."""
    if stats is None or not stats.connections_detail:
        return None
    return parse_connections_detail(stats.connections_detail)


def detect_cloudflare_challenge(final_url: Optional[str], aggregator: DomainStatsAggregator) -> str:
    if final_url and CLOUDFLARE_CHALLENGE_HOST in final_url:
        logger.info("[CLOUDFLARE CHALLENGE] final URL %s", final_url)
        return "Yes"
    if any(CLOUDFLARE_CHALLENGE_HOST in r.url for r in aggregator.requested_resources):
        logger.info("[CLOUDFLARE CHALLENGE DETECTED] among requested resources")
        return "Yes"
    if any(f.domain and CLOUDFLARE_CHALLENGE_HOST in f.domain for f in aggregator.failed_resources):
        logger.info("[CLOUDFLARE CHALLENGE IN FAILURES]")
        return "Yes"
    return "No"


def calculate_domain_statistics(
    http_errors: Iterable[FailedResource],
    target: str,
    connection_failed_domains: Iterable[str] = (),
) -> DomainStatistics:
    """Count non-200 sub-domains; the target itself is excluded to avoid double counting."""
    non_200: Dict[str, None] = {}
    counts = {code: 0 for code in TRACKED_STATUS_CODES}
    names: Dict[str, List[str]] = {code: [] for code in TRACKED_STATUS_CODES}

    for resource in http_errors:
        if is_main_domain(resource.domain, target) or not resource.status_code:
            continue
        non_200.setdefault(resource.domain, None)
        code = str(resource.status_code)
        if code in counts:
            counts[code] += 1
            if resource.domain not in names[code]:
                names[code].append(resource.domain)

    return DomainStatistics(
        non_200_domains=list(non_200),
        connection_failed_domains=list(dict.fromkeys(connection_failed_domains)),
        status_counts=counts,
        status_domain_names=names,
    )


def _status_text(status) -> str:
    return str(status) if status else "-"


def select_status_codes(
    state: ScanState,
    resolution: RedirectResolution,
    redirect_status: Optional[int],
    records: Optional[List[ProxyConnectionRecord]],
    response_status: Optional[int] = None,
) -> Tuple[str, str]:
    """Pick (first_status_code, redirected_status_code) for a completed scan."""
    target = state.target
    if resolution.redirect_detected:
        first = redirect_status or state.tracker.first_main_document_status
        if not first and records:
            extracted = status_for_domain(records, target)
            if extracted != "-":
                logger.debug("[REDIRECT-STATUS-EXTRACTED] %s: %s", target, extracted)
                first = extracted
        redirected = status_for_domain(records, resolution.redirected_domain) if records else "-"
        return _status_text(first), redirected

    first = state.main_status or response_status
    if not first and records:
        extracted = status_for_domain(records, target)
        if extracted != "-":
            logger.debug("[STATUS-EXTRACTED] %s: %s", target, extracted)
            first = extracted
    return _status_text(first), "-"


def build_row(
    state: ScanState,
    outcome: NavigationOutcome,
    stats: Optional[ProxyStats],
    language: LanguageResult,
    finished_at: float,
) -> CsvRow:
    aggregator = state.aggregator
    response = outcome.response
    if response is not None and response.remote_ip:
        aggregator.record_ip(state.target, response.remote_ip)

    records = proxy_connections(stats)
    redirect_status = state.redirect.redirect_status
    resolver = RedirectResolver(state.target, aggregator.domain_to_ip, records)
    backfill_proxy_ips(aggregator, records)
    resolution = resolver.resolve(state.redirect, response.url if response is not None else None)
    first_status, redirected_status = select_status_codes(
        state,
        resolution,
        redirect_status,
        records,
        response.status if response is not None else None,
    )

    domain_stats = calculate_domain_statistics(
        aggregator.http_error_resources,
        state.target,
        aggregator.connection_failed_domains,
    )
    summary = summarize_connections(stats, records or [], aggregator.unique_domains)

    return CsvRow(
        timestamp=utc_timestamp(),
        domain=state.target,
        ip_addr=resolution.original_ip,
        first_status_code=first_status,
        redirected_domain=resolution.redirected_domain,
        redirected_ip=resolution.redirected_ip,
        redirected_status_code=redirected_status,
        primary_language=language.primary_language,
        declared_language=language.declared_language,
        chrome_fail="-",
        load_time=format_load_time(adjusted_load_time(finished_at - outcome.started_at, stats)),
        total_domains=summary.total_domains,
        failed_domains=len(domain_stats.connection_failed_domains),
        not_200_domains=len(domain_stats.non_200_domains),
        status_counts=domain_stats.status_counts,
        status_domain_names=domain_stats.status_domain_names,
        tcp_return=outcome.protocol.value,
        cloudflare_challenge=detect_cloudflare_challenge(response.url if response is not None else None, aggregator),
        proxy=summary,
    )


def _proxy_redirect_target(target: str, records: List[ProxyConnectionRecord]) -> Optional[str]:
    """First other proxied domain, when the target's own connection answered 3xx."""
    origin = next((r for r in records if r.domain == target), None)
    if origin is None:
        return None
    if not any(_REDIRECT_CODE_RE.match(code) for code in origin.status_histogram):
        return None
    others = [r for r in records if r.domain != target]
    if not others:
        return None
    logger.debug("[ERROR-PROXY-REDIRECT] %s -> %s", target, others[0].domain)
    return others[0].domain


def build_error_row(
    state: ScanState,
    error: Optional[BaseException],
    stats: Optional[ProxyStats],
    protocol: Protocol = Protocol.QUIC,
) -> CsvRow:
    aggregator = state.aggregator
    tracker = state.tracker
    records = proxy_connections(stats)
    resolver = RedirectResolver(state.target, aggregator.domain_to_ip, records)
    backfill_proxy_ips(aggregator, records)

    seen_status = tracker.first_main_document_status or tracker.highest_priority_status

    redirected_domain = UNRESOLVED
    if state.redirect.has_redirect and state.redirect.location_header:
        location_domain = resolver.location_domain(state.redirect.location_header)
        if location_domain and location_domain != state.target:
            redirected_domain = location_domain
    elif records:
        redirected_domain = _proxy_redirect_target(state.target, records) or UNRESOLVED

    original_ip = resolver.resolve_ip(state.target)
    if original_ip != UNRESOLVED:
        redirected_ip = resolver.resolve_ip(redirected_domain) if redirected_domain != UNRESOLVED else UNRESOLVED
    elif seen_status:
        original_ip = redirected_ip = BLOCKED
    else:
        original_ip = redirected_ip = ERROR

    first_status = status_for_domain(records, state.target) if records else "-"
    if first_status == "-":
        first_status = _status_text(state.redirect.redirect_status or seen_status)
    redirected_status = "-"
    if redirected_domain != UNRESOLVED and records:
        redirected_status = status_for_domain(records, redirected_domain)

    chrome_fail = chrome_fail_marker(error)
    logger.info(
        "Error row: first status %s, priority status %s, chrome_fail %s",
        tracker.first_main_document_status,
        tracker.highest_priority_status,
        chrome_fail,
    )
    summary = summarize_connections(stats, records or [], 1)

    return CsvRow(
        timestamp=utc_timestamp(),
        domain=state.target,
        ip_addr=original_ip,
        first_status_code=first_status,
        redirected_domain=redirected_domain,
        redirected_ip=redirected_ip,
        redirected_status_code=redirected_status,
        primary_language=LanguageResult.failed().primary_language,
        declared_language=LanguageResult.failed().declared_language,
        chrome_fail=chrome_fail,
        load_time="-",
        total_domains=summary.total_domains,
        failed_domains=1,
        not_200_domains=0,
        status_counts={code: 0 for code in TRACKED_STATUS_CODES},
        status_domain_names={code: [] for code in TRACKED_STATUS_CODES},
        tcp_return=protocol.value,
        cloudflare_challenge=detect_cloudflare_challenge(None, aggregator),
        proxy=summary,
    )
