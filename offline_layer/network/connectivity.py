"""Connectivity monitoring with an active probe and reconnect notification."""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
import uuid
from typing import Any, Callable, Optional

from offline_layer.config import ConnectivityConfig
from offline_layer.errors import ProbeTimeoutError, TransportError
from offline_layer.models import ConnectivityState, RequestDescriptor
from offline_layer.network.transport import HttpTransport
from offline_layer.utils.diagnostics import Diagnostics

logger = logging.getLogger(__name__)

Callback = Callable[[], Any]

RECONNECT = "reconnect"
DISCONNECT = "disconnect"


class Subscription:
    """Disposable handle returned by the subscribe methods."""

    def __init__(self, monitor: ConnectivityMonitor, kind: str, callback: Callback):
        self._monitor = monitor
        self.kind = kind
        self.callback = callback
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def dispose(self) -> None:
        if self._active:
            self._active = False
            self._monitor._remove(self)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info) -> None:
        self.dispose()


class ConnectivityMonitor:
    """Owns the process-wide online/offline state.

    The active probe is authoritative. Passive OS signals only record
    Offline immediately or trigger a probe. Subscribers are told about
    confirmed transitions, once per transition.

    Each state update carries a logical stamp taken when it was started
    (probe launch or passive signal). An update older than the last applied
    one is discarded, so a slow probe can never overwrite a fresher state.
    """

    def __init__(
        self,
        transport: HttpTransport,
        config: ConnectivityConfig,
        diagnostics: Diagnostics,
        initial_state: Optional[ConnectivityState] = None,
    ):
        self._transport = transport
        self._config = config
        self._diagnostics = diagnostics
        if initial_state is None:
            initial_state = (
                ConnectivityState.ONLINE if config.assume_online else ConnectivityState.OFFLINE
            )
        self._state = initial_state
        self._stamps = itertools.count(1)
        self._applied_stamp = 0
        self._subscriptions: dict[str, list[Subscription]] = {RECONNECT: [], DISCONNECT: []}
        self._running = False
        self._timer_task: Optional[asyncio.Task] = None
        self._callback_tasks: set[asyncio.Task] = set()

    # --- State ---

    def current_state(self) -> ConnectivityState:
        return self._state

    @property
    def is_online(self) -> bool:
        return self._state is ConnectivityState.ONLINE

    @property
    def timer_running(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    # --- Probing ---

    async def probe(self) -> bool:
        """Send one cache-busting HEAD request to the probe URL.

        Returns:
            True if any response arrived before the deadline, False otherwise.
        """
        url = self._config.probe_url
        separator = "&" if "?" in url else "?"
        descriptor = RequestDescriptor(
            method="HEAD",
            url=f"{url}{separator}_={uuid.uuid4().hex}",
            headers=(("Cache-Control", "no-store"), ("Pragma", "no-cache")),
        )
        timeout = self._config.probe_timeout_seconds
        try:
            # wait_for cancels the in-flight request when the deadline passes.
            # The transport timeout is only a backstop.
            await asyncio.wait_for(
                self._transport.send(descriptor, timeout=timeout + 1.0),
                timeout=timeout,
            )
            return True
        except asyncio.TimeoutError:
            err = ProbeTimeoutError(f"Probe to {url} timed out after {timeout}s")
            self._diagnostics.emit("probe.timeout", str(err), url=url, timeout=timeout)
            return False
        except TransportError as e:
            self._diagnostics.emit("probe.failed", f"Probe to {url} failed: {e}", url=url)
            return False

    async def check_and_notify(self) -> ConnectivityState:
        """Probe and apply the result, notifying subscribers on a transition."""
        stamp = next(self._stamps)
        reachable = await self.probe()
        state = ConnectivityState.ONLINE if reachable else ConnectivityState.OFFLINE
        self._apply(state, stamp)
        return self._state

    def notify_offline(self) -> None:
        """Passive offline signal from the host, recorded without a probe."""
        logger.info("Host reported offline")
        self._apply(ConnectivityState.OFFLINE, next(self._stamps))

    async def notify_online(self) -> ConnectivityState:
        """Passive online hint from the host; only the probe decides."""
        logger.debug("Host reported online, confirming with probe")
        return await self.check_and_notify()

    def _apply(self, state: ConnectivityState, stamp: int) -> None:
        if stamp < self._applied_stamp:
            logger.debug(
                "Discarding stale connectivity result %s (stamp %d < %d)",
                state.value, stamp, self._applied_stamp,
            )
            return
        self._applied_stamp = stamp
        previous = self._state
        self._state = state
        if previous is state:
            return

        logger.info("Connectivity changed: %s -> %s", previous.value, state.value)
        if state is ConnectivityState.ONLINE:
            self._fire(RECONNECT)
        else:
            self._fire(DISCONNECT)

    def _fire(self, kind: str) -> None:
        for sub in list(self._subscriptions[kind]):
            try:
                result = sub.callback()
            except Exception:
                logger.exception("Error in %s callback", kind)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._callback_tasks.add(task)
                task.add_done_callback(self._on_callback_done)

    def _on_callback_done(self, task: asyncio.Task) -> None:
        self._callback_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Error in connectivity callback: %s", exc, exc_info=exc)

    # --- Subscriptions ---

    def subscribe_reconnect(self, callback: Callback) -> Subscription:
        """Call ``callback()`` once per confirmed Offline -> Online transition."""
        return self._add(RECONNECT, callback)

    def subscribe_disconnect(self, callback: Callback) -> Subscription:
        """Call ``callback()`` once per Online -> Offline transition."""
        return self._add(DISCONNECT, callback)

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.dispose()

    @property
    def subscriber_count(self) -> int:
        return sum(len(subs) for subs in self._subscriptions.values())

    def _add(self, kind: str, callback: Callback) -> Subscription:
        if not callable(callback):
            raise TypeError("callback must be callable")
        sub = Subscription(self, kind, callback)
        self._subscriptions[kind].append(sub)
        self._arm_timer()
        return sub

    def _remove(self, sub: Subscription) -> None:
        try:
            self._subscriptions[sub.kind].remove(sub)
        except ValueError:
            return
        if self.subscriber_count == 0:
            self._disarm_timer()

    # --- Background timer ---

    def _arm_timer(self) -> None:
        if not self._running or self.subscriber_count == 0 or self.timer_running:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._timer_task = loop.create_task(self._poll_loop())
        logger.debug(
            "Connectivity timer armed (every %.1fs)", self._config.probe_interval_seconds
        )

    def _disarm_timer(self) -> None:
        if self._timer_task is not None:
            self._timer_task.cancel()
            self._timer_task = None
            logger.debug("Connectivity timer stopped")

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.probe_interval_seconds)
            await self.check_and_notify()

    # --- Lifecycle ---

    async def start(self) -> None:
        """Run the initial probe and arm the timer if anyone is listening."""
        self._running = True
        await self.check_and_notify()
        self._arm_timer()
        logger.info("Connectivity monitor started (state=%s)", self._state.value)

    async def stop(self) -> None:
        self._running = False
        self._disarm_timer()
        pending = list(self._callback_tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("Connectivity monitor stopped")
