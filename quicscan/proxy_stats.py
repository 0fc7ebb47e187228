from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Mapping, Optional

import requests

from .config import DEFAULT_PROXY_STATS_TIMEOUT_SECONDS
from .errors import ProxyStatsUnavailable
from .models import ProxyStats

logger = logging.getLogger(__name__)


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return 0


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


def stats_from_payload(payload: Any) -> ProxyStats:
    """Coerce the endpoint's loosely typed JSON into ProxyStats, defaulting every field."""
    if not isinstance(payload, Mapping):
        raise ProxyStatsUnavailable(f"expected a JSON object, got {type(payload).__name__}")
    detail = payload.get("connections_detail") or ""
    if not isinstance(detail, str):
        detail = str(detail)
    timestamp = payload.get("timestamp")
    try:
        timestamp = float(timestamp) if timestamp is not None else time.time()
    except (TypeError, ValueError):
        timestamp = time.time()
    return ProxyStats(
        total_opened_streams=_as_int(payload.get("total_opened_streams")),
        total_redirects=_as_int(payload.get("total_redirects")),
        total_data_amount=_as_int(payload.get("total_data_amount")),
        total_previous_data_amount=_as_int(payload.get("total_previous_data_amount")),
        total_migrated_data_amount=_as_int(payload.get("total_migrated_data_amount")),
        total_stateless_resets=_as_int(payload.get("total_stateless_resets")),
        total_migration_disabled=_as_int(payload.get("total_migration_disabled")),
        dns_fallback_occurred=_as_bool(payload.get("dns_fallback_occurred")),
        connections_detail=detail,
        timestamp=timestamp,
        available=True,
    )


def default_stats(error: Optional[str] = None) -> ProxyStats:
    """Zero-valued stats substituted whenever the endpoint can't be used."""
    return ProxyStats(timestamp=time.time(), available=False, error=error)


class ProxyStatsClient:
    """Best-effort reader for the QUIC proxy's /stats endpoint."""

    def __init__(self, report_url: str, timeout: float = DEFAULT_PROXY_STATS_TIMEOUT_SECONDS) -> None:
        self._url = report_url
        self._timeout = timeout

    @property
    def url(self) -> str:
        return self._url

    def fetch_or_raise(self) -> ProxyStats:
        try:
            resp = requests.get(self._url, timeout=self._timeout)
        except requests.RequestException as exc:
            raise ProxyStatsUnavailable(f"{type(exc).__name__}: {exc}") from exc
        if resp.status_code != 200:
            raise ProxyStatsUnavailable(f"HTTP {resp.status_code} from {self._url}")
        try:
            payload = resp.json()
        except ValueError as exc:
            raise ProxyStatsUnavailable(f"invalid JSON from {self._url}") from exc
        return stats_from_payload(payload)

    def fetch(self) -> ProxyStats:
        """Fetch stats, degrading to default_stats() on any failure."""
        logger.debug("Fetching QUIC proxy statistics from %s", self._url)
        try:
            stats = self.fetch_or_raise()
        except ProxyStatsUnavailable as exc:
            logger.warning("Proxy stats unavailable: %s", exc)
            return default_stats(str(exc))
        logger.info(
            "Proxy stats: %s streams, %s redirects, %s bytes total, %s bytes migrated, DNS fallback: %s",
            stats.total_opened_streams,
            stats.total_redirects,
            stats.total_data_amount,
            stats.total_migrated_data_amount,
            "YES" if stats.dns_fallback_occurred else "NO",
        )
        return stats

    async def fetch_async(self) -> ProxyStats:
        return await asyncio.to_thread(self.fetch)
