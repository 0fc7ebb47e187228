from __future__ import annotations

import asyncio
import json
import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

from .backoff import BackoffStrategy
from .browser import BrowserDriver
from .config import ScanConfig
from .errors import FrameDetachedAfterRedirect, NavigationTimeout, ScanError, classify_navigation_error
from .listeners import ScanListeners
from .models import NavigationOutcome, NavigationResponse, Protocol

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InactivityTimer:
    """Deadline that every bump() pushes `window` seconds into the future.

    `expired` is a single-resolution future; cancel() clears the pending
    callback and cancels the future so it can never resolve late."""

    def __init__(self, window: float, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._window = window
        self._loop = loop
        self._handle: Optional[asyncio.TimerHandle] = None
        self._future: Optional[asyncio.Future] = None

    @property
    def window(self) -> float:
        return self._window

    @property
    def expired(self) -> asyncio.Future:
        if self._future is None:
            raise RuntimeError("InactivityTimer.start() has not been called")
        return self._future

    def start(self) -> None:
        loop = self._loop or asyncio.get_running_loop()
        self._loop = loop
        self._future = loop.create_future()
        self.bump()

    def bump(self) -> None:
        if self._future is None or self._future.done():
            return
        if self._handle is not None:
            self._handle.cancel()
        self._handle = self._loop.call_later(self._window, self._fire)

    def _fire(self) -> None:
        self._handle = None
        if self._future is not None and not self._future.done():
            self._future.set_result(True)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if self._future is not None and not self._future.done():
            self._future.cancel()


async def race_navigation(
    navigation: Awaitable[T],
    timer: InactivityTimer,
    listeners: ScanListeners,
) -> T:
    """Await `navigation` unless the page goes quiet for a whole timer window.

    Whichever side loses is torn down: the timer is always cancelled and
    unsubscribed, and a navigation that lost to the timer is cancelled."""
    nav_task = asyncio.ensure_future(navigation)
    timer.start()
    listeners.add_activity_listener(timer.bump)
    try:
        done, _ = await asyncio.wait({nav_task, timer.expired}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        nav_task.cancel()
        raise
    finally:
        listeners.remove_activity_listener(timer.bump)
        timer.cancel()

    if nav_task in done:
        return nav_task.result()

    nav_task.cancel()
    try:
        await nav_task
    except asyncio.CancelledError:
        pass
    except Exception as exc:  # noqa: BLE001
        logger.debug("Navigation settled after inactivity timeout: %s", exc)
    raise NavigationTimeout(f"Navigation timeout: No network activity for {timer.window:g}s")


class Decision(str, Enum):
    ACCEPT = "accept"
    RETRY = "retry"
    FALLBACK = "fallback"
    FAIL = "fail"


class ProtocolFallbackController:
    """Runs navigation attempts: QUIC with retries, then optionally one TCP attempt.

    A ranked status (451/403/503/500) seen at any point proves the origin
    answered over QUIC, so once one exists neither retries nor the TCP
    fallback are attempted."""

    def __init__(
        self,
        driver: BrowserDriver,
        listeners: ScanListeners,
        config: ScanConfig,
        backoff: Optional[BackoffStrategy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._driver = driver
        self._listeners = listeners
        self._config = config
        self._backoff = backoff or BackoffStrategy(config.backoff_base_seconds, config.backoff_max_seconds)
        self._sleep = sleep
        self._clock = clock

    @property
    def state(self):
        return self._listeners.state

    def decide(self, error: ScanError, protocol: Protocol, attempt: int) -> Decision:
        if isinstance(error, FrameDetachedAfterRedirect):
            return Decision.ACCEPT
        if not error.retryable or protocol is Protocol.TCP or self.state.tracker.has_ranked_status:
            return Decision.FAIL
        if attempt < self._config.max_retries:
            return Decision.RETRY
        if self._config.tcp_fallback and error.fallback_eligible:
            return Decision.FALLBACK
        return Decision.FAIL

    async def _attempt(self) -> Optional[NavigationResponse]:
        timer = InactivityTimer(self._config.inactivity_timeout_seconds)
        navigation = self._driver.navigate(self._config.target_url, self._config.navigation_timeout_seconds)
        return await race_navigation(navigation, timer, self._listeners)

    def _log_transition(self, event: str, **fields) -> None:
        record = {
            "timestamp": time.time(),
            "event": event,
            "target": self._config.target,
            **fields,
        }
        logger.info(json.dumps(record, ensure_ascii=False, default=str))

    async def run(self) -> NavigationOutcome:
        protocol = Protocol.QUIC
        attempt = 1
        self._driver.attach(self._listeners)
        await self._driver.launch(protocol)

        while True:
            self._log_transition("attempt", protocol=protocol.value, attempt=attempt, max_retries=self._config.max_retries)
            started = self._clock()
            try:
                response = await self._attempt()
            except Exception as exc:  # noqa: BLE001
                error = classify_navigation_error(exc)
            else:
                self._log_transition(
                    "done",
                    outcome="success",
                    protocol=protocol.value,
                    attempt=attempt,
                    status=response.status if response is not None else None,
                )
                return self._outcome(True, protocol, attempt, started, response=response)

            decision = self.decide(error, protocol, attempt)
            self._log_transition(
                decision.value,
                protocol=protocol.value,
                attempt=attempt,
                error_type=type(error).__name__,
                error=str(error)[:200],
                highest_priority_status=self.state.tracker.highest_priority_status,
            )

            if decision is Decision.ACCEPT:
                return self._outcome(True, protocol, attempt, started)
            if decision is Decision.FAIL:
                return self._outcome(False, protocol, attempt, started, error=error)

            if decision is Decision.RETRY:
                delay = self._backoff.get_sleep(attempt, type(error).__name__)
                logger.info("Retrying in %.1fs (attempt %s/%s)", delay, attempt + 1, self._config.max_retries)
                await self._sleep(delay)
                await self._driver.cancel_pending()
                self.state.reset_attempt(keep_priority=False)
                attempt += 1
                continue

            # FALLBACK: one TCP attempt, priority state and the fallback flag survive
            await self._driver.cancel_pending()
            self.state.reset_attempt(keep_priority=True)
            self.state.fallback_used = True
            protocol = Protocol.TCP
            attempt = 1
            try:
                await self._driver.close()
                await self._driver.launch(protocol)
            except Exception as exc:  # noqa: BLE001
                error = classify_navigation_error(exc)
                self._log_transition("fail", protocol=protocol.value, attempt=attempt, error=str(error)[:200])
                return self._outcome(False, protocol, attempt, self._clock(), error=error)

    def _outcome(
        self,
        success: bool,
        protocol: Protocol,
        attempt: int,
        started: float,
        response: Optional[NavigationResponse] = None,
        error: Optional[BaseException] = None,
    ) -> NavigationOutcome:
        return NavigationOutcome(
            success=success,
            protocol=protocol,
            attempts=attempt,
            fallback_used=self.state.fallback_used,
            started_at=started,
            response=response,
            error=error,
        )
