"""QUIC page-load scanner package.

Drives a browser through one page load, aggregates per-resource and
per-domain telemetry, reconciles it with the QUIC proxy's connection log
and appends a single CSV row per scan.

Key modules:
    scanner          -- Scanner, the top-level orchestration
    fallback         -- ProtocolFallbackController and InactivityTimer
    browser          -- BrowserDriver interface and PlaywrightDriver
    listeners        -- ScanState and the ScanListeners event sink
    domain_stats     -- DomainStatsAggregator for per-resource outcomes
    status_tracker   -- StatusPriorityTracker for first/highest statuses
    redirects        -- RedirectResolver for redirect target and IPs
    connection_parser-- parser and lookups for the proxy connection blob
    proxy_stats      -- ProxyStatsClient for the proxy /stats endpoint
    proxy_summary    -- proxy column block of the CSV row
    results          -- CsvRow assembly for success and failure
    storage          -- StorageBase and CsvStorage for the append-only log
    backoff          -- BackoffStrategy for exponential retry delays
    errors           -- ScanError taxonomy and navigation error mapping
    config           -- constants and the ScanConfig dataclass
    logger           -- setup_logger and the single-line formatter
    models           -- dataclasses and enums shared across modules
"""
