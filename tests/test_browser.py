"""Tests for browser_args and the PlaywrightDriver event handlers (no browser launched)."""

import asyncio
import unittest
from types import SimpleNamespace

from quicscan.browser import PlaywrightDriver, browser_args
from quicscan.config import QUIC_FORCE_ARG
from quicscan.listeners import ScanListeners, ScanState
from quicscan.models import Protocol

URL = "https://example.com/"


class FakeRequest:
    def __init__(self, frame):
        self.resource_type = "document"
        self.frame = frame


class FakeResponse:
    """Just enough of a Playwright Response for the driver's handlers."""

    def __init__(self, status, frame, body=b"", body_gate=None, server_ip=None, headers=None):
        self.url = URL
        self.status = status
        self.headers = headers or {}
        self.request = FakeRequest(frame)
        self._body = body
        self._body_gate = body_gate
        self._server_ip = server_ip

    async def body(self):
        if self._body_gate is not None:
            await self._body_gate.wait()
        return self._body

    async def server_addr(self):
        if self._server_ip is None:
            return None
        return {"ipAddress": self._server_ip, "port": 443}


class TestBrowserArgs(unittest.TestCase):
    """Verify protocol-specific Chromium flags."""

    def test_quic_forced_only_for_quic(self):
        """TCP launches drop the QUIC-forcing switch."""
        self.assertIn(QUIC_FORCE_ARG, browser_args(Protocol.QUIC))
        self.assertNotIn(QUIC_FORCE_ARG, browser_args(Protocol.TCP))


class TestPlaywrightDriverHandlers(unittest.IsolatedAsyncioTestCase):
    """Verify response handling and in-flight cancellation."""

    def setUp(self):
        self.state = ScanState(target="example.com")
        self.driver = PlaywrightDriver()
        self.driver.attach(ScanListeners(self.state))
        self.main_frame = object()
        self.driver._page = SimpleNamespace(main_frame=self.main_frame)

    async def test_response_delivered_with_size_and_address(self):
        """A finished handler reports body size and the server address."""
        self.driver._spawn_response(FakeResponse(200, self.main_frame, body=b"hello", server_ip="9.9.9.9"))
        await asyncio.gather(*list(self.driver._tasks))

        self.assertEqual(self.state.main_status, 200)
        self.assertEqual(self.state.aggregator.domain_to_ip, {"example.com": "9.9.9.9"})

    async def test_cancel_pending_drops_stale_responses(self):
        """Handlers still reading a body are cancelled and never reach the listeners."""
        gate = asyncio.Event()
        self.driver._spawn_response(FakeResponse(403, self.main_frame, body_gate=gate))
        await asyncio.sleep(0)

        await self.driver.cancel_pending()
        gate.set()
        await asyncio.sleep(0.01)

        self.assertEqual(self.driver._tasks, set())
        self.assertFalse(self.state.tracker.has_ranked_status)
        self.assertIsNone(self.state.main_status)

    async def test_close_without_launch(self):
        """close() on a driver that never launched is harmless."""
        await self.driver.close()
        self.assertIsNone(self.driver._page)


if __name__ == "__main__":
    unittest.main()
