"""Tests for the DomainStatsAggregator class."""

import unittest

from quicscan.domain_stats import DomainStatsAggregator, classify_failure, extract_domain
from quicscan.models import FailureCategory


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now


def _assert_balanced(testcase, aggregator):
    for stat in aggregator.domains:
        testcase.assertEqual(
            stat.total_requests,
            stat.successful + stat.http_errors + stat.connection_errors,
            stat.domain,
        )


class TestExtractDomain(unittest.TestCase):
    """Verify hostname extraction and placeholder names."""

    def test_regular_url(self):
        """Regular URLs yield their hostname."""
        self.assertEqual(extract_domain("https://cdn.example.com/a.js?x=1"), "cdn.example.com")

    def test_special_schemes(self):
        """Non-network schemes get fixed placeholder names."""
        self.assertEqual(extract_domain("data:image/png;base64,AAAA"), "data-url")
        self.assertEqual(extract_domain("blob:https://example.com/uuid"), "blob-url")
        self.assertEqual(extract_domain("chrome-extension://abc/x.js"), "chrome-extension")
        self.assertEqual(extract_domain("chrome://settings"), "chrome-internal")

    def test_invalid_url(self):
        """URLs without a hostname map to invalid-url."""
        self.assertEqual(extract_domain("not a url"), "invalid-url")
        self.assertEqual(extract_domain("http://[::1"), "invalid-url")


class TestClassifyFailure(unittest.TestCase):
    """Verify the substring tables for request failures."""

    def test_reset(self):
        """Connection resets are recognised."""
        self.assertIs(classify_failure("net::ERR_CONNECTION_RESET"), FailureCategory.CONNECTION_RESET)

    def test_aborted(self):
        """Aborted requests are recognised, including connection aborts."""
        self.assertIs(classify_failure("net::ERR_ABORTED"), FailureCategory.REQUEST_ABORTED)
        self.assertIs(classify_failure("net::ERR_CONNECTION_ABORTED"), FailureCategory.REQUEST_ABORTED)

    def test_generic(self):
        """Anything else is a generic connection error."""
        self.assertIs(classify_failure("net::ERR_NAME_NOT_RESOLVED"), FailureCategory.CONNECTION_ERROR)
        self.assertIs(classify_failure(None), FailureCategory.CONNECTION_ERROR)


class TestLifecycle(unittest.TestCase):
    """Verify request settlement and the per-domain counts."""

    def setUp(self):
        self.clock = FakeClock()
        self.agg = DomainStatsAggregator(clock=self.clock)

    def test_success_http_error_and_failure(self):
        """Each terminal outcome lands in its own counter."""
        self.agg.on_request("https://a.com/1", resource_type="script")
        self.agg.on_request("https://a.com/2", resource_type="image")
        self.agg.on_request("https://a.com/3", resource_type="image")
        self.assertTrue(self.agg.on_response("https://a.com/1", 200, size=100))
        self.assertTrue(self.agg.on_response("https://a.com/2", 404, size=10))
        self.assertIs(
            self.agg.on_request_failed("https://a.com/3", "net::ERR_CONNECTION_RESET"),
            FailureCategory.CONNECTION_RESET,
        )

        stat = self.agg.get("a.com")
        self.assertEqual((stat.total_requests, stat.successful, stat.http_errors, stat.connection_errors), (3, 1, 1, 1))
        self.assertEqual(stat.failed, 2)
        self.assertEqual(stat.total_bytes, 110)
        self.assertEqual(self.agg.total_bytes, 110)
        self.assertEqual(stat.resource_types["image"], 2)
        self.assertEqual(stat.status_codes["404"], 1)
        self.assertEqual(stat.status_codes["4xx"], 1)
        self.assertEqual(stat.status_codes["2xx"], 1)
        self.assertIn("net::ERR_CONNECTION_RESET", stat.error_messages)
        self.assertEqual(self.agg.pending_count, 0)
        _assert_balanced(self, self.agg)

    def test_redirects_count_as_success(self):
        """3xx responses are successful settlements."""
        self.agg.on_request("https://a.com/")
        self.agg.on_response("https://a.com/", 301)
        self.assertEqual(self.agg.get("a.com").successful, 1)
        self.assertEqual(self.agg.http_error_resources, [])

    def test_orphan_settlement_is_ignored(self):
        """Settling a request that was never pending changes nothing."""
        self.assertFalse(self.agg.on_response("https://x.com/", 200))
        self.assertIsNone(self.agg.on_request_failed("https://x.com/", "net::ERR_FAILED"))
        self.assertEqual(self.agg.orphan_events, 2)
        self.assertIsNone(self.agg.get("x.com"))

    def test_double_settlement_is_idempotent(self):
        """A second settlement of the same request is an orphan."""
        self.agg.on_request("https://a.com/x", request_key="r1")
        self.agg.on_response("https://a.com/x", 200, request_key="r1")
        self.agg.on_request_failed("https://a.com/x", "net::ERR_ABORTED", request_key="r1")
        stat = self.agg.get("a.com")
        self.assertEqual((stat.successful, stat.connection_errors), (1, 0))
        _assert_balanced(self, self.agg)

    def test_concurrent_duplicates_do_not_alias(self):
        """Two in-flight requests to one URL settle independently."""
        self.agg.on_request("https://a.com/poll")
        self.agg.on_request("https://a.com/poll")
        self.assertEqual(self.agg.pending_count, 2)
        self.agg.on_response("https://a.com/poll", 200)
        self.agg.on_response("https://a.com/poll", 503)
        stat = self.agg.get("a.com")
        self.assertEqual((stat.total_requests, stat.successful, stat.http_errors), (2, 1, 1))
        _assert_balanced(self, self.agg)

    def test_keyed_settlement_out_of_order(self):
        """Request keys settle the exact request regardless of order."""
        self.agg.on_request("https://a.com/r", request_key="first")
        self.agg.on_request("https://a.com/r", request_key="second")
        self.agg.on_response("https://a.com/r", 500, request_key="second")
        pending = self.agg.pending_requests()
        self.assertEqual(len(pending), 1)
        self.agg.on_response("https://a.com/r", 200, request_key="first")
        _assert_balanced(self, self.agg)

    def test_reused_key_settles_previous(self):
        """Re-announcing a pending key settles the older entry first."""
        self.agg.on_request("https://a.com/", request_key="k")
        self.agg.on_request("https://a.com/", request_key="k")
        self.agg.on_response("https://a.com/", 200, request_key="k")
        stat = self.agg.get("a.com")
        self.assertEqual((stat.total_requests, stat.successful), (2, 2))

    def test_interleaved_events_stay_balanced(self):
        """Any interleaving of settlements keeps the per-domain invariant."""
        urls = [f"https://d{i % 3}.com/{i}" for i in range(12)]
        for url in urls:
            self.agg.on_request(url)
        for i, url in enumerate(reversed(urls)):
            if i % 3 == 0:
                self.agg.on_response(url, 200, size=5)
            elif i % 3 == 1:
                self.agg.on_response(url, 403)
            else:
                self.agg.on_request_failed(url, "net::ERR_CONNECTION_REFUSED")
        self.assertEqual(self.agg.pending_count, 0)
        _assert_balanced(self, self.agg)

    def test_pending_by_domain(self):
        """Unsettled requests are grouped by domain."""
        self.agg.on_request("https://a.com/1")
        self.agg.on_request("https://b.com/1")
        self.agg.on_request("https://b.com/2")
        grouped = self.agg.pending_by_domain()
        self.assertEqual(len(grouped["a.com"]), 1)
        self.assertEqual(len(grouped["b.com"]), 2)

    def test_requests_after_load_are_flagged(self):
        """Requests issued after the load event are marked as such."""
        self.agg.on_request("https://a.com/early")
        self.clock.now += 2
        self.agg.mark_load_event()
        self.agg.on_request("https://a.com/late")
        flags = [r.requested_after_load for r in self.agg.requested_resources]
        self.assertEqual(flags, [False, True])
        self.assertEqual(self.agg.load_event_time, 1002.0)

    def test_connection_failed_domains(self):
        """Only non-HTTP failures mark a domain as connection-failed."""
        self.agg.on_request("https://a.com/")
        self.agg.on_request("https://b.com/")
        self.agg.on_response("https://a.com/", 500)
        self.agg.on_request_failed("https://b.com/", "net::ERR_TIMED_OUT")
        self.assertEqual(self.agg.connection_failed_domains, ["b.com"])
        self.assertEqual(len(self.agg.failures_by_category(FailureCategory.CONNECTION_ERROR)), 1)

    def test_unique_domains(self):
        """Unique domains counts each requested domain once."""
        for url in ("https://a.com/1", "https://a.com/2", "https://b.com/"):
            self.agg.on_request(url)
        self.assertEqual(self.agg.unique_domains, 2)

    def test_reset(self):
        """reset() drops every aggregate."""
        self.agg.on_request("https://a.com/")
        self.agg.record_ip("a.com", "1.2.3.4")
        self.agg.reset()
        self.assertEqual(self.agg.domains, [])
        self.assertEqual(self.agg.domain_to_ip, {})
        self.assertEqual(self.agg.pending_count, 0)


class TestRecordIp(unittest.TestCase):
    """Verify first-writer-wins IP backfill."""

    def test_first_writer_wins(self):
        """A later IP for the same domain is ignored."""
        agg = DomainStatsAggregator()
        agg.on_request("https://a.com/")
        self.assertTrue(agg.record_ip("a.com", "1.1.1.1"))
        self.assertFalse(agg.record_ip("a.com", "2.2.2.2"))
        self.assertEqual(agg.get("a.com").ip, "1.1.1.1")

    def test_ip_before_first_request(self):
        """An IP learned before the domain's first request is applied to it."""
        agg = DomainStatsAggregator()
        agg.record_ip("a.com", "1.1.1.1")
        agg.on_request("https://a.com/")
        self.assertEqual(agg.get("a.com").ip, "1.1.1.1")

    def test_empty_ip_ignored(self):
        """Empty addresses are not recorded."""
        agg = DomainStatsAggregator()
        self.assertFalse(agg.record_ip("a.com", ""))
        self.assertEqual(agg.domain_to_ip, {})


class TestSnapshot(unittest.TestCase):
    """Verify the plain-dict export."""

    def test_snapshot_is_plain_data(self):
        """Histograms and messages export as dicts and sorted lists."""
        agg = DomainStatsAggregator()
        agg.on_request("https://a.com/x", resource_type="script")
        agg.on_request_failed("https://a.com/x", "net::ERR_FAILED")
        row = agg.snapshot()["a.com"]
        self.assertEqual(row["resource_types"], {"script": 1})
        self.assertEqual(row["error_messages"], ["net::ERR_FAILED"])
        self.assertEqual(row["failed"], 1)


if __name__ == "__main__":
    unittest.main()
