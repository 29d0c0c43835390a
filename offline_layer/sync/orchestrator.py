"""Drives queue replay when connectivity returns."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from offline_layer.config import SyncConfig
from offline_layer.network.connectivity import ConnectivityMonitor, Subscription
from offline_layer.sync.queue import WriteQueue
from offline_layer.sync.status import StatusReporter

logger = logging.getLogger(__name__)


class SyncOrchestrator:
    """Flushes the write queue on reconnect, with bounded linear backoff.

    On each confirmed reconnect the queue is flushed up to ``max_retries``
    times, waiting ``attempt * retry_delay_seconds`` between attempts and
    stopping at the first fully successful flush. While the connection stays
    up, a background loop re-flushes every ``flush_interval_seconds`` so that
    requests queued after an online-mode transport failure do not wait for the
    next offline/online cycle.
    """

    def __init__(
        self,
        queue: WriteQueue,
        monitor: ConnectivityMonitor,
        status: StatusReporter,
        config: SyncConfig,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._queue = queue
        self._monitor = monitor
        self._status = status
        self._config = config
        self._sleep = sleep
        self._subscriptions: list[Subscription] = []
        self._flush_loop_task: Optional[asyncio.Task] = None
        self._sync_task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._subscriptions:
            return
        self._subscriptions = [
            self._monitor.subscribe_reconnect(self._on_reconnect),
            self._monitor.subscribe_disconnect(self._status.set_offline),
        ]
        if self._monitor.is_online:
            self._status.set_online()
        else:
            self._status.set_offline()

        if self._config.flush_interval_seconds > 0:
            self._flush_loop_task = asyncio.get_running_loop().create_task(self._flush_loop())
        logger.info(
            "Sync orchestrator started (auto_sync=%s, max_retries=%d)",
            self._config.auto_sync, self._config.max_retries,
        )

    async def stop(self) -> None:
        for sub in self._subscriptions:
            sub.dispose()
        self._subscriptions = []
        if self._flush_loop_task is not None:
            self._flush_loop_task.cancel()
            await asyncio.gather(self._flush_loop_task, return_exceptions=True)
            self._flush_loop_task = None
        if self._sync_task is not None:
            self._sync_task.cancel()
            await asyncio.gather(self._sync_task, return_exceptions=True)
            self._sync_task = None

    @property
    def syncing(self) -> bool:
        return self._sync_task is not None and not self._sync_task.done()

    def _on_reconnect(self) -> None:
        if not self._config.auto_sync:
            self._status.set_online()
            return
        if self.syncing:
            logger.debug("Reconnect during a running sync, not starting another")
            return
        self._sync_task = asyncio.get_running_loop().create_task(self.sync_with_retry())

    async def sync_with_retry(self) -> bool:
        """Flush until the queue drains or the retry budget runs out.

        Returns:
            True if a flush attempt succeeded.
        """
        self._status.set_syncing()
        max_retries = self._config.max_retries
        attempt = 0

        while attempt < max_retries:
            attempt += 1
            try:
                result = await self._queue.flush()
            except Exception as e:
                logger.error("Sync attempt %d/%d raised: %s", attempt, max_retries, e)
                result = None

            if result is not None and result.success:
                logger.info("Sync succeeded on attempt %d/%d", attempt, max_retries)
                self._status.set_online()
                return True

            if result is not None:
                logger.warning(
                    "Sync attempt %d/%d left %d requests queued",
                    attempt, max_retries, result.remaining,
                )
            if attempt < max_retries:
                await self._sleep(attempt * self._config.retry_delay_seconds)

        remaining = self._queue.length()
        self._status.set_error(f"Sync failed after {attempt} attempts ({remaining} remaining)")
        return False

    async def sync_now(self) -> bool:
        """One flush attempt without retries. Fails fast while offline."""
        if not self._monitor.is_online:
            logger.warning("Cannot sync while offline")
            return False

        self._status.set_syncing()
        try:
            result = await self._queue.flush()
        except Exception as e:
            logger.error("Manual sync error: %s", e)
            self._status.set_error(f"Sync error: {e}")
            return False

        if result.success:
            self._status.set_online()
        else:
            self._status.set_error(f"Synced with {result.remaining} items remaining")
        return result.success

    async def _flush_loop(self) -> None:
        interval = self._config.flush_interval_seconds
        while True:
            await asyncio.sleep(interval)
            if not self._monitor.is_online or self._queue.length() == 0 or self._queue.flushing:
                continue
            logger.debug("Periodic flush of %d queued requests", self._queue.length())
            try:
                result = await self._queue.flush()
            except Exception as e:
                logger.error("Periodic flush failed: %s", e)
                continue
            if result.success:
                self._status.set_online()
