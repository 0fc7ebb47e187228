from __future__ import annotations

import re
from typing import List, Optional

from .models import ConnectionSummary, PathValidationState, ProxyConnectionRecord, ProxyStats

_PV_ORDER = (
    PathValidationState.IDLE,
    PathValidationState.PROBING,
    PathValidationState.VALIDATED,
    PathValidationState.FAILED,
    PathValidationState.MIGRATED,
)

_NEWLINES_RE = re.compile(r"[\r\n]+")


def _joined(items: List[str]) -> str:
    return "; ".join(items) or "-"


def summarize_connections(
    stats: Optional[ProxyStats],
    records: List[ProxyConnectionRecord],
    fallback_domain_count: int,
) -> ConnectionSummary:
    """Roll parsed proxy connections up into the CSV's proxy column block.

    Without a connections blob every proxy column is "-" and the domain count
    falls back to what the browser saw."""
    if stats is None or not stats.connections_detail:
        return ConnectionSummary(
            total_domains=fallback_domain_count,
            new_connection_id_count="-",
            migration_disabled_new_id_conflicts="-",
            pv_state_counts="-",
            pv_probing_domains="-",
            pv_failed_domains="-",
            stateless_reset_domains="-",
            migrated_domains="-",
            connection_details="-",
            total_opened_streams="-",
            total_data_amount="-",
            total_migrated_data_amount="-",
            total_stateless_resets="-",
            total_migration_disabled="-",
            migration_success_rate="-",
        )

    new_id_count = 0
    conflicts: List[str] = []
    pv_counts = {state: 0 for state in _PV_ORDER}
    probing: List[str] = []
    failed: List[str] = []
    resets: List[str] = []
    migrated: List[str] = []

    for record in records:
        label = record.label
        if record.new_connection_id_received:
            new_id_count += 1
        if record.migration_disabled and record.new_connection_id_received:
            conflicts.append(label)

        state = record.path_validation_state
        # unknown states count as idle
        if state not in pv_counts:
            state = PathValidationState.IDLE
        pv_counts[state] += 1
        if state is PathValidationState.PROBING:
            probing.append(label)
        elif state is PathValidationState.FAILED:
            failed.append(label)

        if record.stateless_reset:
            resets.append(label)
        if record.migrated_path_bytes > 0:
            migrated.append(f"{label}({record.total_data_bytes}:{record.migrated_path_bytes})")

    return ConnectionSummary(
        total_domains=len(records),
        new_connection_id_count=new_id_count,
        migration_disabled_new_id_conflicts=_joined(conflicts),
        pv_state_counts=":".join(str(pv_counts[s]) for s in _PV_ORDER),
        pv_probing_domains=_joined(probing),
        pv_failed_domains=_joined(failed),
        stateless_reset_domains=_joined(resets),
        migrated_domains=_joined(migrated),
        connection_details=_NEWLINES_RE.sub(" ", stats.connections_detail).strip(),
        total_opened_streams=stats.total_opened_streams,
        total_data_amount=stats.total_data_amount,
        total_migrated_data_amount=stats.total_migrated_data_amount,
        total_stateless_resets=stats.total_stateless_resets,
        total_migration_disabled=stats.total_migration_disabled,
        migration_success_rate=stats.migration_success_rate,
    )
