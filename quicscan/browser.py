from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Set

from playwright.async_api import Browser, BrowserContext, CDPSession, Page, Playwright, async_playwright

from .config import BROWSER_ARGS, DEFAULT_HEADERS, DEFAULT_USER_AGENT, DEFAULT_VIEWPORT, QUIC_FORCE_ARG
from .listeners import RequestEvent, RequestFailedEvent, ResponseEvent, ScanListeners
from .models import NavigationResponse, Protocol

logger = logging.getLogger(__name__)


def browser_args(protocol: Protocol) -> list:
    """Chromium flags for `protocol`; TCP drops the QUIC-forcing switch."""
    if protocol is Protocol.QUIC:
        return list(BROWSER_ARGS)
    return [arg for arg in BROWSER_ARGS if arg != QUIC_FORCE_ARG]


class BrowserDriver(ABC):
    """Narrow interface to the browser that loads the page.

    Subclasses push every network event into the attached ScanListeners
    and must tolerate close() being called on a driver that never launched.
    """

    def __init__(self) -> None:
        self._listeners: Optional[ScanListeners] = None

    def attach(self, listeners: ScanListeners) -> None:
        self._listeners = listeners

    @property
    def listeners(self) -> Optional[ScanListeners]:
        return self._listeners

    @abstractmethod
    async def launch(self, protocol: Protocol) -> None:
        """Start a fresh browser forcing (QUIC) or not forcing (TCP) QUIC."""

    @abstractmethod
    async def navigate(self, url: str, timeout_s: float) -> Optional[NavigationResponse]:
        """Load `url` and return the top-level response, or None if there was none."""

    async def declared_language(self) -> Optional[str]:
        return None

    async def page_text(self) -> str:
        return ""

    async def cancel_pending(self) -> None:
        """Drop any event delivery still in flight from the previous attempt."""

    @abstractmethod
    async def close(self) -> None:
        """Release the browser."""


class LanguageDetector(ABC):
    """Hook that names the primary language of rendered page text."""

    @abstractmethod
    def detect(self, text: str) -> str:
        raise NotImplementedError


class PlaywrightDriver(BrowserDriver):
    """Chromium via Playwright, with a CDP session reporting remote addresses."""

    def __init__(self, proxy_server: Optional[str] = None, headless: bool = True) -> None:
        super().__init__()
        self._proxy_server = proxy_server
        self._headless = headless
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None
        self._cdp: Optional[CDPSession] = None
        self._tasks: Set[asyncio.Task] = set()

    async def launch(self, protocol: Protocol) -> None:
        if self._listeners is None:
            raise RuntimeError("attach() listeners before launch()")
        launch_kwargs: Dict[str, Any] = {"headless": self._headless, "args": browser_args(protocol)}
        if self._proxy_server:
            launch_kwargs["proxy"] = {"server": self._proxy_server}
        logger.info("Launching Chromium (%s%s)", protocol.value, f" via {self._proxy_server}" if self._proxy_server else "")

        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(**launch_kwargs)
        self._context = await self._browser.new_context(
            user_agent=DEFAULT_USER_AGENT,
            viewport=DEFAULT_VIEWPORT,
            extra_http_headers=DEFAULT_HEADERS,
            ignore_https_errors=True,
        )
        self._page = await self._context.new_page()

        self._page.on("request", self._on_request)
        self._page.on("response", self._spawn_response)
        self._page.on("requestfailed", self._on_request_failed)
        self._page.on("load", lambda _page: self._listeners.on_load())

        self._cdp = await self._context.new_cdp_session(self._page)
        await self._cdp.send("Network.enable")
        await self._cdp.send("Network.setCacheDisabled", {"cacheDisabled": True})
        self._cdp.on("Network.responseReceived", self._on_cdp_response)

    def _is_main_frame(self, request) -> bool:
        try:
            return request.frame is self._page.main_frame
        except Exception:  # noqa: BLE001 - service-worker requests have no frame
            return False

    def _on_request(self, request) -> None:
        self._listeners.on_request(
            RequestEvent(
                url=request.url,
                resource_type=request.resource_type,
                method=request.method,
                is_main_frame=self._is_main_frame(request),
                request_key=request,
            )
        )

    def _spawn_response(self, response) -> None:
        task = asyncio.ensure_future(self._on_response(response))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _response_size(self, response) -> int:
        length = response.headers.get("content-length")
        if length is not None:
            try:
                return int(length)
            except ValueError:
                pass
        try:
            return len(await response.body())
        except Exception as exc:  # noqa: BLE001
            logger.debug("No body for %s: %s", response.url[:120], exc)
            return 0

    async def _remote_ip(self, response) -> Optional[str]:
        try:
            address = await response.server_addr()
        except Exception as exc:  # noqa: BLE001
            logger.debug("No server address for %s: %s", response.url[:120], exc)
            return None
        return address.get("ipAddress") if address else None

    async def _on_response(self, response) -> None:
        request = response.request
        size = await self._response_size(response)
        remote_ip = await self._remote_ip(response)
        self._listeners.on_response(
            ResponseEvent(
                url=response.url,
                status=response.status,
                resource_type=request.resource_type,
                size=size,
                headers=dict(response.headers),
                is_main_frame=self._is_main_frame(request),
                remote_ip=remote_ip,
                request_key=request,
            )
        )

    def _on_request_failed(self, request) -> None:
        self._listeners.on_request_failed(
            RequestFailedEvent(
                url=request.url,
                error_text=request.failure,
                resource_type=request.resource_type,
                request_key=request,
            )
        )

    def _on_cdp_response(self, params: Dict[str, Any]) -> None:
        response = params.get("response", {})
        self._listeners.on_address(response.get("url", ""), response.get("remoteIPAddress"))

    async def navigate(self, url: str, timeout_s: float) -> Optional[NavigationResponse]:
        if self._page is None:
            raise RuntimeError("launch() before navigate()")
        response = await self._page.goto(url, wait_until="load", timeout=int(timeout_s * 1000))
        if response is None:
            return None
        remote_ip = await self._remote_ip(response)
        return NavigationResponse(
            url=self._page.url,
            status=response.status,
            headers=dict(response.headers),
            remote_ip=remote_ip,
        )

    async def declared_language(self) -> Optional[str]:
        if self._page is None:
            return None
        lang = await self._page.evaluate("() => document.documentElement.lang || ''")
        return lang or None

    async def page_text(self) -> str:
        if self._page is None:
            return ""
        return await self._page.evaluate("() => document.body ? document.body.innerText : ''")

    async def cancel_pending(self) -> None:
        """Cancel response handlers still reading bodies from an abandoned attempt."""
        tasks = list(self._tasks)
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.debug("Cancelled %s in-flight response handlers", len(tasks))

    async def close(self) -> None:
        await self.cancel_pending()
        if self._browser is not None:
            await self._browser.close()
        if self._playwright is not None:
            await self._playwright.stop()
        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None
        self._cdp = None
