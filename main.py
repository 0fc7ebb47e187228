from __future__ import annotations

import argparse
import asyncio
import logging

from quicscan.config import (
    DEFAULT_CSV_PATH,
    DEFAULT_INACTIVITY_TIMEOUT_SECONDS,
    DEFAULT_MAX_RETRIES,
    PROXY_HOST,
    PROXY_PORT,
    REPORT_HOST,
    REPORT_PORT,
    ScanConfig,
    default_proxy_server,
    default_report_url,
)
from quicscan.logger import setup_logger
from quicscan.scanner import Scanner


def _normalize_target(raw: str) -> str:
    target = raw.strip()
    for prefix in ("https://", "http://"):
        if target.startswith(prefix):
            target = target[len(prefix):]
    return target.split("/", 1)[0]


def build_config(args: argparse.Namespace) -> ScanConfig:
    return ScanConfig(
        target=_normalize_target(args.url),
        use_proxy=args.use_proxy,
        proxy_server=default_proxy_server(args.proxy_host, args.proxy_port),
        report_url=args.report_url or default_report_url(port=args.report_port),
        tcp_fallback=args.tcp_fallback,
        csv_path=args.csv or None,
        detect_language=not args.no_lang,
        debug=args.debug,
        headless=not args.headed,
        max_retries=args.max_retries,
        inactivity_timeout_seconds=args.inactivity_timeout,
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Load one page and log how it travelled over QUIC")
    parser.add_argument("--url", required=True, help="Target domain, e.g. example.com")
    parser.add_argument("--csv", default=DEFAULT_CSV_PATH, help="Append the result row to this CSV file")

    parser.add_argument("--use-proxy", action="store_true", help="Route traffic through the QUIC proxy")
    parser.add_argument("--proxy-host", default=PROXY_HOST, help="QUIC proxy host")
    parser.add_argument("--proxy-port", type=int, default=PROXY_PORT, help="QUIC proxy port")
    parser.add_argument("--report-url", default=None, help="Proxy stats endpoint (overrides --report-port)")
    parser.add_argument("--report-port", type=int, default=REPORT_PORT, help=f"Proxy stats port on {REPORT_HOST}")

    parser.add_argument("--tcp-fallback", action="store_true", help="Retry over TCP once QUIC attempts are exhausted")
    parser.add_argument("--max-retries", type=int, default=DEFAULT_MAX_RETRIES, help="QUIC navigation attempts")
    parser.add_argument("--inactivity-timeout", type=float, default=DEFAULT_INACTIVITY_TIMEOUT_SECONDS, help="Seconds without network activity")

    parser.add_argument("--no-lang", action="store_true", help="Skip language detection")
    parser.add_argument("--headed", action="store_true", help="Show the browser window")
    parser.add_argument("--debug", action="store_true", help="Log every resource event")
    parser.add_argument("--log-file", default=None, help="Also write logs to this file")

    args = parser.parse_args()
    config = build_config(args)
    setup_logger(log_file=args.log_file, level=logging.DEBUG if config.debug else logging.INFO)

    row = asyncio.run(Scanner(config).run())
    print(f"\nDONE: domain={row.domain} status={row.first_status_code} chrome_fail={row.chrome_fail} tcp_return={row.tcp_return}")


if __name__ == "__main__":
    main()
