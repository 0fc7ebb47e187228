from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Awaitable, Callable, Optional

from .backoff import BackoffStrategy
from .browser import BrowserDriver, LanguageDetector, PlaywrightDriver
from .config import ScanConfig
from .errors import classify_navigation_error
from .fallback import ProtocolFallbackController
from .listeners import ScanListeners, ScanState
from .models import CsvRow, LanguageResult, NavigationOutcome, Protocol, ProxyStats
from .proxy_stats import ProxyStatsClient
from .results import build_error_row, build_row
from .storage import CsvStorage, StorageBase

logger = logging.getLogger(__name__)


class Scanner:
    """Loads one target page and appends exactly one row describing the load.

    Every collaborator is injectable; by default the page is driven by
    Playwright, proxy statistics come from the configured report URL and the
    row goes to the configured CSV file.
    """

    def __init__(
        self,
        config: ScanConfig,
        driver: Optional[BrowserDriver] = None,
        proxy_client: Optional[ProxyStatsClient] = None,
        storage: Optional[StorageBase] = None,
        language_detector: Optional[LanguageDetector] = None,
        backoff: Optional[BackoffStrategy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._driver = driver or PlaywrightDriver(config.effective_proxy_server, headless=config.headless)
        if proxy_client is None and config.use_proxy:
            proxy_client = ProxyStatsClient(config.effective_report_url, config.proxy_stats_timeout_seconds)
        self._proxy_client = proxy_client
        if storage is None and config.csv_path:
            storage = CsvStorage(config.csv_path)
        self._storage = storage
        self._language_detector = language_detector
        self._backoff = backoff
        self._sleep = sleep
        self._clock = clock
        self.state = ScanState(target=config.target)
        self.listeners = ScanListeners(self.state)

    async def run(self) -> CsvRow:
        outcome: Optional[NavigationOutcome] = None
        try:
            controller = ProtocolFallbackController(
                self._driver,
                self.listeners,
                self._config,
                backoff=self._backoff,
                sleep=self._sleep,
                clock=self._clock,
            )
            outcome = await controller.run()
            if outcome.success:
                finished_at = self._clock()
                stats = await self._fetch_stats()
                language = await self._detect_language()
                row = build_row(self.state, outcome, stats, language, finished_at)
            else:
                logger.error("Navigation failed: %s", outcome.error)
                self._log_pending()
                stats = await self._fetch_stats()
                row = build_error_row(self.state, outcome.error, stats, outcome.protocol)
        except Exception as exc:  # noqa: BLE001
            logger.error("Scan of %s failed: %s: %s", self._config.target, type(exc).__name__, exc)
            error = classify_navigation_error(exc)
            stats = await self._fetch_stats()
            protocol = Protocol.TCP if self.state.fallback_used else Protocol.QUIC
            row = build_error_row(self.state, error, stats, protocol)
        finally:
            await self._close_driver()

        self._log_resource_statistics()
        self._write(row)
        self._log_summary(row, outcome)
        return row

    async def _fetch_stats(self) -> Optional[ProxyStats]:
        if not self._config.use_proxy or self._proxy_client is None:
            return None
        return await self._proxy_client.fetch_async()

    async def _detect_language(self) -> LanguageResult:
        if not self._config.detect_language or self._language_detector is None:
            return LanguageResult.skipped()
        try:
            text = await self._driver.page_text()
            primary = self._language_detector.detect(text)
            declared = await self._driver.declared_language()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Language detection failed: %s", exc)
            return LanguageResult.failed()
        logger.info("Primary language: %s, declared: %s", primary, declared or "unknown")
        return LanguageResult(primary_language=primary or "unknown", declared_language=declared or "unknown")

    async def _close_driver(self) -> None:
        try:
            await self._driver.close()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Browser close failed: %s", exc)

    def _write(self, row: CsvRow) -> None:
        if self._storage is None:
            return
        self._storage.write(row)
        self._storage.close()
        logger.info("Results written to %s", getattr(self._storage, "path", type(self._storage).__name__))

    def _log_pending(self) -> None:
        pending = self.state.aggregator.pending_requests()
        if not pending:
            return
        now = self._clock()
        logger.info("%s resources still pending:", len(pending))
        for request in pending:
            logger.info(
                "  - [%s] %s%s - waiting %.1fs",
                request.resource_type.upper(),
                request.domain,
                request.url[:60],
                now - request.start_time,
            )

    def _log_resource_statistics(self) -> None:
        aggregator = self.state.aggregator
        failed_domains = {f.domain for f in aggregator.failed_resources}
        logger.info(
            "Resources: %s total, %s unique domains",
            len(aggregator.requested_resources),
            aggregator.unique_domains,
        )
        logger.info(
            "Domains: %s/%s succeeded, %s failed, %s pending",
            len(aggregator.succeeded_domains),
            aggregator.unique_domains,
            len(failed_domains),
            len(aggregator.pending_by_domain()),
        )
        for domain, stat in aggregator.snapshot().items():
            logger.debug("[DOMAIN] %s %s", domain, json.dumps(stat, ensure_ascii=False, default=str))

    def _log_summary(self, row: CsvRow, outcome: Optional[NavigationOutcome]) -> None:
        summary = {
            "timestamp": time.time(),
            "event": "scan_complete",
            "domain": row.domain,
            "success": bool(outcome and outcome.success),
            "attempts": outcome.attempts if outcome else 0,
            "fallback_used": self.state.fallback_used,
            "ip_addr": row.ip_addr,
            "first_status_code": row.first_status_code,
            "redirected_domain": row.redirected_domain,
            "chrome_fail": row.chrome_fail,
            "load_time": row.load_time,
            "total_domains": row.total_domains,
            "not_200_domains": row.not_200_domains,
            "tcp_return": row.tcp_return,
            "cloudflare_challenge": row.cloudflare_challenge,
        }
        logger.info(json.dumps(summary, ensure_ascii=False))


async def scan(config: ScanConfig, **collaborators) -> CsvRow:
    return await Scanner(config, **collaborators).run()
