"""Tests for the proxy column block of the CSV row."""

import unittest

from quicscan.connection_parser import parse_connections_detail
from quicscan.models import ProxyStats
from quicscan.proxy_summary import summarize_connections

BLOB = (
    "{a.com:1.1.1.1:443;status:200:5;total_data:1000;migrated_path:200;path_validation_state:migrated;"
    "new_connection_id_received:true;disable_connection_migration:true}\n"
    "{b.com:2.2.2.2:443;status:handshake fail;path_validation_state:probing;stateless_reset:true} "
    "{c.com:3.3.3.3:443;status:200:1;path_validation_state:failed} "
    "{d.com:4.4.4.4:443;status:200:1;path_validation_state:bogus}"
)


class TestSummarizeConnections(unittest.TestCase):
    """Verify the derived proxy columns."""

    def setUp(self):
        self.stats = ProxyStats(
            total_opened_streams=9,
            total_data_amount=2000,
            total_migrated_data_amount=200,
            total_stateless_resets=1,
            total_migration_disabled=1,
            connections_detail=BLOB,
            available=True,
        )
        self.summary = summarize_connections(self.stats, parse_connections_detail(BLOB), 7)

    def test_counts(self):
        """Domain total comes from the proxy, not the browser."""
        self.assertEqual(self.summary.total_domains, 4)
        self.assertEqual(self.summary.new_connection_id_count, 1)
        self.assertEqual(self.summary.migration_disabled_new_id_conflicts, "a.com:1.1.1.1")

    def test_path_validation_histogram(self):
        """Unknown states are counted as idle."""
        self.assertEqual(self.summary.pv_state_counts, "1:1:0:1:1")
        self.assertEqual(self.summary.pv_probing_domains, "b.com:2.2.2.2")
        self.assertEqual(self.summary.pv_failed_domains, "c.com:3.3.3.3")

    def test_reset_and_migrated_lists(self):
        """Resets and migrations are labelled per connection."""
        self.assertEqual(self.summary.stateless_reset_domains, "b.com:2.2.2.2")
        self.assertEqual(self.summary.migrated_domains, "a.com:1.1.1.1(1000:200)")

    def test_totals_and_details(self):
        """Stats totals pass through and details lose their newlines."""
        self.assertEqual(self.summary.total_opened_streams, 9)
        self.assertEqual(self.summary.migration_success_rate, "10.00")
        self.assertNotIn("\n", self.summary.connection_details)

    def test_empty_lists_are_dashes(self):
        """Lists with nothing in them render as '-'."""
        blob = "{a.com:1.1.1.1:443;status:200:1}"
        summary = summarize_connections(ProxyStats(connections_detail=blob), parse_connections_detail(blob), 1)
        self.assertEqual(summary.pv_probing_domains, "-")
        self.assertEqual(summary.migrated_domains, "-")
        self.assertEqual(summary.pv_state_counts, "1:0:0:0:0")


class TestWithoutProxy(unittest.TestCase):
    """Verify the block when no proxy data exists."""

    def test_no_stats(self):
        """Without stats every proxy column is '-' and the browser count is used."""
        summary = summarize_connections(None, [], 5)
        self.assertEqual(summary.total_domains, 5)
        self.assertEqual(summary.total_opened_streams, "-")
        self.assertEqual(summary.pv_state_counts, "-")
        self.assertEqual(summary.connection_details, "-")

    def test_empty_detail(self):
        """Stats without a connections blob count as no proxy data."""
        summary = summarize_connections(ProxyStats(total_opened_streams=3), [], 2)
        self.assertEqual(summary.total_domains, 2)
        self.assertEqual(summary.migration_success_rate, "-")


if __name__ == "__main__":
    unittest.main()
