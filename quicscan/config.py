from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

# Rank of document statuses that prove the origin answered at the HTTP layer.
# Higher wins; any entry here forbids a QUIC->TCP fallback.
STATUS_PRIORITY: Dict[int, int] = {
    451: 4,
    403: 3,
    503: 2,
    500: 1,
}

# Sub-domain statuses broken out into their own CSV columns
TRACKED_STATUS_CODES = ("403", "451", "500", "503")

DEFAULT_MAX_RETRIES = 1
DEFAULT_BACKOFF_BASE_SECONDS = 2.0
DEFAULT_BACKOFF_MAX_SECONDS = 30.0
DEFAULT_INACTIVITY_TIMEOUT_SECONDS = 15.0
DEFAULT_NAVIGATION_TIMEOUT_SECONDS = 60.0
DEFAULT_PROXY_STATS_TIMEOUT_SECONDS = 5.0

# Subtracted from load_time when the proxy reports it had to fall back on DNS
DNS_FALLBACK_ADJUSTMENT_SECONDS = 3.0

PROXY_HOST = "localhost"
PROXY_PORT = 4433
PROXY_PROTOCOL = "http"

REPORT_HOST = "localhost"
REPORT_PORT = 9090
REPORT_PROTOCOL = "http"
REPORT_ENDPOINT = "/stats"

DEFAULT_CSV_PATH = "webpage_analysis_results.csv"

CLOUDFLARE_CHALLENGE_HOST = "challenges.cloudflare.com"

QUIC_FORCE_ARG = "--origin-to-force-quic-on=*"

BROWSER_ARGS: List[str] = [
    "--no-sandbox",
    "--ignore-certificate-errors",
    "--disable-dev-shm-usage",
    QUIC_FORCE_ARG,
    "--disable-features=PostQuantumKyber",
]

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/141.0.0.0 Safari/537.36"
)

DEFAULT_VIEWPORT = {"width": 1920, "height": 1080}

DEFAULT_HEADERS: Dict[str, str] = {
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,"
        "image/webp,image/apng,*/*;q=0.8,application/signed-exchange;v=b3;q=0.7"
    ),
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "Upgrade-Insecure-Requests": "1",
}


def default_proxy_server(host: str = PROXY_HOST, port: int = PROXY_PORT, protocol: str = PROXY_PROTOCOL) -> str:
    return f"{protocol}://{host}:{port}"


def default_report_url(
    host: str = REPORT_HOST,
    port: int = REPORT_PORT,
    protocol: str = REPORT_PROTOCOL,
    endpoint: str = REPORT_ENDPOINT,
) -> str:
    return f"{protocol}://{host}:{port}{endpoint}"


@dataclass(frozen=True)
class ScanConfig:
    """Per-run settings for one page-load scan."""

    target: str
    use_proxy: bool = False
    proxy_server: Optional[str] = None
    report_url: Optional[str] = None
    tcp_fallback: bool = False
    csv_path: Optional[str] = DEFAULT_CSV_PATH
    detect_language: bool = True
    debug: bool = False
    headless: bool = True
    max_retries: int = DEFAULT_MAX_RETRIES
    backoff_base_seconds: float = DEFAULT_BACKOFF_BASE_SECONDS
    backoff_max_seconds: float = DEFAULT_BACKOFF_MAX_SECONDS
    inactivity_timeout_seconds: float = DEFAULT_INACTIVITY_TIMEOUT_SECONDS
    navigation_timeout_seconds: float = DEFAULT_NAVIGATION_TIMEOUT_SECONDS
    proxy_stats_timeout_seconds: float = DEFAULT_PROXY_STATS_TIMEOUT_SECONDS

    @property
    def target_url(self) -> str:
        return f"https://{self.target}"

    @property
    def effective_proxy_server(self) -> Optional[str]:
        if not self.use_proxy:
            return None
        return self.proxy_server or default_proxy_server()

    @property
    def effective_report_url(self) -> str:
        return self.report_url or default_report_url()
