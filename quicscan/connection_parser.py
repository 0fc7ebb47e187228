"""Decoder for the QUIC proxy's ``connections_detail`` summary string.

The blob is a run of brace-delimited records::

    {example.com:93.184.216.34:443;status:200:13 204:1;total_data:900;migrated_path:200}

The first ``;``-separated token is ``domain:ip:port``; every other token is an
optional ``key:value`` pair. Records are decoded independently so one garbled
record never costs the rest of the blob.
"""
from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, List, Optional

from .errors import ConnectionRecordParseError
from .models import (
    ConnectionOutcome,
    Failure,
    FailureKind,
    PathValidationState,
    ProxyConnectionRecord,
    StatusHistogram,
)

logger = logging.getLogger(__name__)

_RECORD_RE = re.compile(r"\{([^}]+)\}")
_STATUS_PAIR_RE = re.compile(r"(\d+):(\d+)")
_CLOSE_COUNT_RE = re.compile(r"Connection Close:\s*(\d+)")

# Checked in order; the first substring found in a status token wins.
_FAILURE_TOKENS = (
    ("handshake fail", FailureKind.HANDSHAKE_FAIL),
    ("Connection Close", FailureKind.CONNECTION_CLOSE),
    ("timeout", FailureKind.TIMEOUT),
    ("refused", FailureKind.REFUSED),
    ("unreachable", FailureKind.UNREACHABLE),
)


def _to_int(raw: str) -> int:
    try:
        return int(raw.strip())
    except (TypeError, ValueError):
        return 0


def _value(part: str) -> str:
    return part.split(":", 1)[1] if ":" in part else ""


def parse_status_token(token: str) -> ConnectionOutcome:
    """Decode the text after ``status:`` into a histogram or a named failure."""
    for needle, kind in _FAILURE_TOKENS:
        if needle in token:
            count = 1
            if kind is FailureKind.CONNECTION_CLOSE:
                match = _CLOSE_COUNT_RE.search(token)
                count = int(match.group(1)) if match else 1
            return Failure(kind=kind, count=count)
    counts: Dict[str, int] = {}
    for code, count in _STATUS_PAIR_RE.findall(token):
        counts[code] = counts.get(code, 0) + int(count)
    return StatusHistogram(counts)


def parse_record(content: str) -> ProxyConnectionRecord:
    """Decode the inside of one ``{...}`` record, raising on a bad header token."""
    parts = [p.strip() for p in content.split(";")]
    head = parts[0].split(":")
    if len(head) < 3 or not head[0]:
        raise ConnectionRecordParseError(content, "expected domain:ip:port")

    fields: dict = {
        "domain": head[0].strip(),
        "ip": head[1].strip(),
        "port": head[2].strip(),
    }
    for part in parts[1:]:
        if not part:
            continue
        if part.startswith("status:"):
            fields["outcome"] = parse_status_token(part[len("status:"):])
        elif part.startswith("disable_connection_migration:"):
            fields["migration_disabled"] = "true" in _value(part)
        elif part.startswith("stateless_reset:"):
            fields["stateless_reset"] = "true" in _value(part)
        elif part.startswith("new_connection_id_received:"):
            fields["new_connection_id_received"] = "true" in _value(part)
        elif part.startswith("total_data:"):
            fields["total_data_bytes"] = _to_int(_value(part))
        elif part.startswith("previous_path:"):
            fields["previous_path_bytes"] = _to_int(_value(part))
        elif part.startswith("migrated_path:"):
            fields["migrated_path_bytes"] = _to_int(_value(part))
        elif part.startswith("path_validation_state:"):
            fields["path_validation_state"] = PathValidationState.parse(_value(part))
        else:
            logger.debug("Ignoring unknown connection field %r in %s", part, fields["domain"])
    return ProxyConnectionRecord(**fields)


def parse_connections_detail(blob: Optional[str]) -> List[ProxyConnectionRecord]:
    """Decode every well-formed record in the blob, preserving input order."""
    if not blob:
        return []
    records: List[ProxyConnectionRecord] = []
    for match in _RECORD_RE.finditer(blob):
        content = match.group(1)
        try:
            records.append(parse_record(content))
        except ConnectionRecordParseError as exc:
            logger.warning("Skipping connection record: %s", exc)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Skipping connection record {%s}: %s", content, exc)
    return records


def _strip_www(domain: str) -> str:
    return domain[4:] if domain.startswith("www.") else domain


def find_connection(records: Iterable[ProxyConnectionRecord], domain: str) -> Optional[ProxyConnectionRecord]:
    """Exact domain match, then the www.-prefixed form, then the www.-stripped form."""
    records = list(records)
    for candidate in (domain, f"www.{domain}", _strip_www(domain)):
        for record in records:
            if record.domain == candidate:
                return record
    return None


def find_connection_fuzzy(records: Iterable[ProxyConnectionRecord], domain: str) -> Optional[ProxyConnectionRecord]:
    """Like find_connection, falling back to a substring match in either direction."""
    records = list(records)
    record = find_connection(records, domain)
    if record is not None:
        return record
    for record in records:
        if record.ip and (domain in record.domain or record.domain in domain):
            return record
    return None


def domain_in_connections(records: Iterable[ProxyConnectionRecord], domain: str) -> bool:
    return find_connection_fuzzy(records, domain) is not None


def connection_status(record: ProxyConnectionRecord) -> str:
    """Best single status string for one connection ("-" when it carries none)."""
    outcome = record.outcome
    if isinstance(outcome, StatusHistogram):
        for code in outcome.counts:
            if code.isdigit():
                return code
        return "-"
    if outcome.kind is FailureKind.CONNECTION_CLOSE:
        return f"Connection Close: {outcome.count}"
    return outcome.kind.value


def status_for_domain(records: Iterable[ProxyConnectionRecord], domain: str) -> str:
    record = find_connection(records, domain)
    if record is None:
        return "-"
    return connection_status(record)
