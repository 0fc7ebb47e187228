"""Tests for CSV formatting and the CsvStorage class."""

import csv
import io
import os
import tempfile
import unittest
from dataclasses import replace

from quicscan.models import ConnectionSummary, CsvRow
from quicscan.storage import CSV_COLUMNS, CsvStorage, format_header, format_line, format_row, join_domains


def _summary(**overrides):
    fields = {name: "-" for name in ConnectionSummary.__dataclass_fields__}
    fields["total_domains"] = 3
    fields.update(overrides)
    return ConnectionSummary(**fields)


def _make_row(**overrides):
    defaults = dict(
        timestamp="2026-10-18T05:32:41.000Z",
        domain="example.com",
        ip_addr="93.184.216.34",
        first_status_code="200",
        redirected_domain="-",
        redirected_ip="-",
        redirected_status_code="-",
        primary_language="Skipped",
        declared_language="unknown",
        chrome_fail="-",
        load_time="1.23",
        total_domains=3,
        failed_domains=0,
        not_200_domains=1,
        status_counts={"403": 2, "451": 0, "500": 0, "503": 0},
        status_domain_names={"403": ["ads.example.net"], "451": [], "500": [], "503": []},
        tcp_return="QUIC",
        cloudflare_challenge="No",
        proxy=_summary(),
    )
    defaults.update(overrides)
    return CsvRow(**defaults)


def _parse(line):
    return next(csv.reader(io.StringIO(line)))


class TestFormatLine(unittest.TestCase):
    """Verify field quoting."""

    def test_plain_values_untouched(self):
        """Values without special characters are written as-is."""
        self.assertEqual(format_line(["example.com", 42, None]), "example.com,42,\n")

    def test_csv_reader_round_trip(self):
        """Commas, quotes and newlines survive a csv.reader split."""
        samples = [
            "a,b",
            'say "hi"',
            "line1\nline2",
            'all, of "them"\r\nat once',
            '"',
            ",,,",
        ]
        for sample in samples:
            self.assertEqual(_parse(format_line([sample, "next"])), [sample, "next"])

    def test_quotes_doubled(self):
        """Inner quotes are doubled inside a quoted field."""
        self.assertEqual(format_line(['say "hi"']), '"say ""hi"""\n')


class TestRowFormatting(unittest.TestCase):
    """Verify the header and row layout."""

    def test_header_has_all_columns(self):
        """The header parses into the 38 named columns in order."""
        self.assertEqual(len(CSV_COLUMNS), 38)
        self.assertEqual(_parse(format_header()), list(CSV_COLUMNS))

    def test_row_matches_header_width(self):
        """Every row has one value per column."""
        values = _parse(format_row(_make_row()))
        self.assertEqual(len(values), len(CSV_COLUMNS))
        record = dict(zip(CSV_COLUMNS, values))
        self.assertEqual(record["403 responses"], "2")
        self.assertEqual(record["403 domain names"], "ads.example.net/")
        self.assertEqual(record["TCP return"], "QUIC")
        self.assertEqual(record["chrome_fail"], "-")

    def test_domain_lists_joined(self):
        """Domain lists join with '; ' and end each name with '/'."""
        self.assertEqual(join_domains(["a.com", "b.com"]), "a.com/; b.com/")
        self.assertEqual(join_domains([]), "")

    def test_connection_details_with_commas(self):
        """A details blob containing commas stays in one column."""
        row = _make_row(proxy=_summary(connection_details="{a.com:1.1.1.1:443;status:200:1,204:2}"))
        values = _parse(format_row(row))
        self.assertEqual(len(values), len(CSV_COLUMNS))
        self.assertEqual(values[-1], "{a.com:1.1.1.1:443;status:200:1,204:2}")


class TestCsvStorage(unittest.TestCase):
    """Verify append-only writing."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self._tmp.name, "results.csv")

    def tearDown(self):
        self._tmp.cleanup()

    def test_header_written_once(self):
        """Two scans give one header and two rows."""
        storage = CsvStorage(self.path)
        storage.write(_make_row())
        storage.write(_make_row(domain="other.com"))
        storage.close()

        with open(self.path, newline="", encoding="utf-8") as f:
            rows = list(csv.reader(f))
        self.assertEqual(rows[0], list(CSV_COLUMNS))
        self.assertEqual([r[1] for r in rows[1:]], ["example.com", "other.com"])

    def test_existing_rows_preserved(self):
        """A second storage instance appends to the existing file."""
        CsvStorage(self.path).write(_make_row())
        CsvStorage(self.path).write(replace(_make_row(), chrome_fail="net::ERR_QUIC_PROTOCOL_ERROR"))
        with open(self.path, newline="", encoding="utf-8") as f:
            rows = list(csv.reader(f))
        self.assertEqual(len(rows), 3)
        self.assertEqual(rows[2][CSV_COLUMNS.index("chrome_fail")], "net::ERR_QUIC_PROTOCOL_ERROR")

    def test_header_added_to_empty_file(self):
        """A pre-created empty file still gets the header."""
        open(self.path, "w").close()
        CsvStorage(self.path).write(_make_row())
        with open(self.path, newline="", encoding="utf-8") as f:
            self.assertEqual(next(csv.reader(f)), list(CSV_COLUMNS))


if __name__ == "__main__":
    unittest.main()
