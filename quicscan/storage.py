from __future__ import annotations

import csv
import io
import os
from abc import ABC, abstractmethod
from typing import Any, Iterable, List, Tuple

from .config import TRACKED_STATUS_CODES
from .models import CsvRow

CSV_COLUMNS: Tuple[str, ...] = (
    "timestamp",
    "domain",
    "ip_addr",
    "first_status_code",
    "redirected_domain",
    "redirected_ip",
    "redirected_status_code",
    "Primary Language",
    "Declared Language",
    "chrome_fail",
    "load_time",
    "total domains",
    "failed domains",
    "not 200 domains",
    "403 responses",
    "451 responses",
    "500 responses",
    "503 responses",
    "403 domain names",
    "451 domain names",
    "500 domain names",
    "503 domain names",
    "TCP return",
    "cloudflare_challenge",
    "total_opened_streams",
    "total_data_amount",
    "total_migrated_data_amount",
    "migrated_data_rate",
    "total_stateless_resets",
    "total_disable_connection_migrations",
    "new_connection_id_count",
    "migration_disabled_new_id_conflicts",
    "PVstate_idle:probing:validated:failed:migrated",
    "pv_probing_domains",
    "pv_failed_domains",
    "stateless_reset_domains",
    "migrated_domains",
    "connection_details",
)


def format_line(values: Iterable[Any]) -> str:
    """One CSV line; fields with a comma, quote or newline are quoted, inner quotes doubled."""
    buf = io.StringIO()
    csv.writer(buf, lineterminator="\n").writerow(values)
    return buf.getvalue()


def join_domains(domains: Iterable[str]) -> str:
    return "; ".join(f"{d}/" for d in domains)


def row_values(row: CsvRow) -> List[Any]:
    """Flatten a CsvRow into CSV_COLUMNS order."""
    proxy = row.proxy
    return [
        row.timestamp,
        row.domain,
        row.ip_addr,
        row.first_status_code,
        row.redirected_domain,
        row.redirected_ip,
        row.redirected_status_code,
        row.primary_language,
        row.declared_language,
        row.chrome_fail,
        row.load_time,
        row.total_domains,
        row.failed_domains,
        row.not_200_domains,
        *(row.status_counts.get(code, 0) for code in TRACKED_STATUS_CODES),
        *(join_domains(row.status_domain_names.get(code, [])) for code in TRACKED_STATUS_CODES),
        row.tcp_return,
        row.cloudflare_challenge,
        proxy.total_opened_streams,
        proxy.total_data_amount,
        proxy.total_migrated_data_amount,
        proxy.migration_success_rate,
        proxy.total_stateless_resets,
        proxy.total_migration_disabled,
        proxy.new_connection_id_count,
        proxy.migration_disabled_new_id_conflicts,
        proxy.pv_state_counts,
        proxy.pv_probing_domains,
        proxy.pv_failed_domains,
        proxy.stateless_reset_domains,
        proxy.migrated_domains,
        proxy.connection_details,
    ]


def format_header() -> str:
    return format_line(CSV_COLUMNS)


def format_row(row: CsvRow) -> str:
    return format_line(row_values(row))


class StorageBase(ABC):
    """Abstract base class for scan result sinks.

    Subclasses must implement write() and close().
    """

    @abstractmethod
    def write(self, row: CsvRow) -> None:
        """Persist a single scan row."""

    @abstractmethod
    def close(self) -> None:
        """Flush pending writes and release resources."""


class CsvStorage(StorageBase):
    """Append-only CSV log: header written once on create, one line per scan."""

    def __init__(self, path: str) -> None:
        self._path = os.path.abspath(path)

    @property
    def path(self) -> str:
        return self._path

    def write(self, row: CsvRow) -> None:
        is_new = not os.path.exists(self._path) or os.path.getsize(self._path) == 0
        with open(self._path, "a", encoding="utf-8", newline="") as f:
            writer = csv.writer(f, lineterminator="\n")
            if is_new:
                writer.writerow(CSV_COLUMNS)
            writer.writerow(row_values(row))

    def close(self) -> None:
        """Nothing is buffered between writes."""
