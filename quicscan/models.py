from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Set, Union


class Protocol(str, Enum):
    QUIC = "QUIC"
    TCP = "TCP"


class PathValidationState(str, Enum):
    IDLE = "idle"
    PROBING = "probing"
    VALIDATED = "validated"
    FAILED = "failed"
    MIGRATED = "migrated"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "PathValidationState":
        try:
            return cls((raw or "").strip().lower())
        except ValueError:
            return cls.UNKNOWN


class FailureKind(str, Enum):
    """Named connection failures the proxy reports in place of a status histogram."""

    HANDSHAKE_FAIL = "handshake fail"
    CONNECTION_CLOSE = "Connection Close"
    TIMEOUT = "timeout"
    REFUSED = "connection refused"
    UNREACHABLE = "network unreachable"


class FailureCategory(str, Enum):
    """How an individual resource failed."""

    HTTP_ERROR = "http_error"
    CONNECTION_RESET = "connection_reset"
    REQUEST_ABORTED = "request_aborted"
    CONNECTION_ERROR = "connection_error"


@dataclass(frozen=True)
class StatusHistogram:
    counts: Mapping[str, int]


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    count: int = 1


ConnectionOutcome = Union[StatusHistogram, Failure]


@dataclass(frozen=True)
class ProxyConnectionRecord:
    domain: str
    ip: str
    port: str
    outcome: ConnectionOutcome = field(default_factory=lambda: StatusHistogram({}))
    migration_disabled: bool = False
    stateless_reset: bool = False
    new_connection_id_received: bool = False
    path_validation_state: PathValidationState = PathValidationState.UNKNOWN
    total_data_bytes: int = 0
    previous_path_bytes: int = 0
    migrated_path_bytes: int = 0

    @property
    def status_histogram(self) -> Dict[str, int]:
        if isinstance(self.outcome, StatusHistogram):
            return dict(self.outcome.counts)
        return {self.outcome.kind.value: self.outcome.count}

    @property
    def connection_failed(self) -> bool:
        return isinstance(self.outcome, Failure)

    @property
    def failure_reason(self) -> Optional[str]:
        if isinstance(self.outcome, Failure):
            return self.outcome.kind.value
        return None

    @property
    def label(self) -> str:
        return f"{self.domain}:{self.ip}"


@dataclass
class PendingRequest:
    url: str
    domain: str
    resource_type: str
    method: str
    start_time: float
    requested_after_load: bool = False


@dataclass
class RequestedResource:
    url: str
    domain: str
    resource_type: str
    method: str
    requested_after_load: bool = False


@dataclass
class FailedResource:
    url: str
    domain: str
    resource_type: str
    category: FailureCategory
    status_code: Optional[int] = None
    error_text: Optional[str] = None


@dataclass
class DomainStat:
    domain: str
    first_seen: float
    last_activity: float
    ip: Optional[str] = None
    total_requests: int = 0
    successful: int = 0
    http_errors: int = 0
    connection_errors: int = 0
    total_bytes: int = 0
    resource_types: Counter = field(default_factory=Counter)
    status_codes: Counter = field(default_factory=Counter)
    error_messages: Set[str] = field(default_factory=set)

    @property
    def failed(self) -> int:
        return self.http_errors + self.connection_errors

    @property
    def settled(self) -> int:
        return self.successful + self.http_errors + self.connection_errors


@dataclass
class RedirectInfo:
    has_redirect: bool = False
    redirect_status: Optional[int] = None
    location_header: Optional[str] = None
    resolved_domain: Optional[str] = None
    resolved_ip: Optional[str] = None
    redirected_status_code: Optional[str] = None

    def capture(self, status: int, location: Optional[str]) -> bool:
        """Record the first top-level redirect; later ones are ignored."""
        if self.has_redirect:
            return False
        self.has_redirect = True
        self.redirect_status = status
        self.location_header = location
        return True

    def clear(self) -> None:
        self.has_redirect = False
        self.redirect_status = None
        self.location_header = None
        self.resolved_domain = None
        self.resolved_ip = None
        self.redirected_status_code = None


@dataclass(frozen=True)
class PriorityStatusState:
    first_main_document_status: Optional[int]
    highest_priority_status: Optional[int]


@dataclass(frozen=True)
class ProxyStats:
    total_opened_streams: int = 0
    total_redirects: int = 0
    total_data_amount: int = 0
    total_previous_data_amount: int = 0
    total_migrated_data_amount: int = 0
    total_stateless_resets: int = 0
    total_migration_disabled: int = 0
    dns_fallback_occurred: bool = False
    connections_detail: str = ""
    timestamp: float = 0.0
    available: bool = False
    error: Optional[str] = None

    @property
    def migration_success_rate(self) -> str:
        if self.total_data_amount > 0:
            return f"{self.total_migrated_data_amount / self.total_data_amount * 100:.2f}"
        return "0"


@dataclass(frozen=True)
class NavigationResponse:
    """What the browser collaborator reports for the top-level navigation."""

    url: str
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    remote_ip: Optional[str] = None


@dataclass(frozen=True)
class NavigationOutcome:
    success: bool
    protocol: Protocol
    attempts: int
    fallback_used: bool
    started_at: float
    response: Optional[NavigationResponse] = None
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class LanguageResult:
    primary_language: str
    declared_language: str

    @classmethod
    def skipped(cls) -> "LanguageResult":
        return cls(primary_language="Skipped", declared_language="unknown")

    @classmethod
    def failed(cls) -> "LanguageResult":
        return cls(primary_language="Error", declared_language="unknown")


@dataclass(frozen=True)
class RedirectResolution:
    original_ip: str
    redirected_domain: str
    redirected_ip: str
    redirect_detected: bool
    source: Optional[str] = None


@dataclass(frozen=True)
class DomainStatistics:
    non_200_domains: List[str]
    connection_failed_domains: List[str]
    status_counts: Dict[str, int]
    status_domain_names: Dict[str, List[str]]


@dataclass(frozen=True)
class ConnectionSummary:
    total_domains: Any
    new_connection_id_count: Any
    migration_disabled_new_id_conflicts: str
    pv_state_counts: str
    pv_probing_domains: str
    pv_failed_domains: str
    stateless_reset_domains: str
    migrated_domains: str
    connection_details: str
    total_opened_streams: Any
    total_data_amount: Any
    total_migrated_data_amount: Any
    total_stateless_resets: Any
    total_migration_disabled: Any
    migration_success_rate: Any


@dataclass(frozen=True)
class CsvRow:
    timestamp: str
    domain: str
    ip_addr: str
    first_status_code: str
    redirected_domain: str
    redirected_ip: str
    redirected_status_code: str
    primary_language: str
    declared_language: str
    chrome_fail: str
    load_time: str
    total_domains: Any
    failed_domains: int
    not_200_domains: int
    status_counts: Dict[str, int]
    status_domain_names: Dict[str, List[str]]
    tcp_return: str
    cloudflare_challenge: str
    proxy: ConnectionSummary
