"""Main entry point and composition root for offline-layer."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Any, Optional

import httpx

from offline_layer.cache.response_cache import ResponseCache
from offline_layer.config import AppConfig, ConfigError, load_config
from offline_layer.factory import (
    create_inner_sync_transport,
    create_inner_transport,
    create_store,
)
from offline_layer.models import ConnectivityState, StatusSnapshot
from offline_layer.network.connectivity import ConnectivityMonitor
from offline_layer.network.interceptor import RequestInterceptor, SyncRequestInterceptor
from offline_layer.network.transport import HttpTransport
from offline_layer.storage.kv_store import KeyValueStoreBase
from offline_layer.sync.orchestrator import SyncOrchestrator
from offline_layer.sync.queue import WriteQueue
from offline_layer.sync.status import LoggingStatusReporter, StatusReporter
from offline_layer.utils.diagnostics import Diagnostics
from offline_layer.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


class OfflineLayer:
    """Wires the cache, queue, monitor and orchestrator around one transport.

    Usage::

        async with OfflineLayer(config) as layer:
            async with layer.client() as client:
                await client.post("https://api.example.com/orders", json={...})
    """

    def __init__(
        self,
        config: AppConfig,
        inner_transport: Optional[httpx.AsyncBaseTransport] = None,
        store: Optional[KeyValueStoreBase] = None,
        status: Optional[StatusReporter] = None,
        diagnostics: Optional[Diagnostics] = None,
        initial_state: Optional[ConnectivityState] = None,
        sync_transport: Optional[httpx.BaseTransport] = None,
    ):
        self._config = config
        self._owns_transport = inner_transport is None
        self._owns_sync_transport = sync_transport is None
        self._sync_inner = sync_transport or create_inner_sync_transport(config)
        self._owns_store = store is None
        self._inner = inner_transport or create_inner_transport(config)

        self.diagnostics = diagnostics or Diagnostics()
        self.store = store or create_store(config)
        self.status = status or LoggingStatusReporter()

        self._live = HttpTransport(self._inner, timeout=config.queue.replay_timeout_seconds)
        self.monitor = ConnectivityMonitor(
            self._live, config.connectivity, self.diagnostics, initial_state=initial_state
        )
        self.cache = ResponseCache(self.store, config.cache, self.diagnostics)
        self.queue = WriteQueue(self.store, self._live, config.queue, self.diagnostics)
        self.orchestrator = SyncOrchestrator(self.queue, self.monitor, self.status, config.sync)
        self.interceptor = RequestInterceptor(
            self._inner, self.monitor, self.cache, self.queue, self.diagnostics
        )
        # Bound to the running loop in start().
        self.sync_interceptor: Optional[SyncRequestInterceptor] = None
        self._maintenance_task: Optional[asyncio.Task] = None
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        if self._started:
            return
        await self.queue.load()
        await self.cache.purge_expired()
        # Subscribe before the first probe so a startup reconnect is not missed.
        self.orchestrator.start()
        await self.monitor.start()
        self.sync_interceptor = SyncRequestInterceptor(
            self._sync_inner, self.monitor, self.queue, asyncio.get_running_loop()
        )
        self._maintenance_task = asyncio.get_running_loop().create_task(self._maintenance_loop())
        self._started = True
        logger.info(
            "Offline layer started (state=%s, %d queued)",
            self.monitor.current_state().value, self.queue.length(),
        )

    async def stop(self) -> httpx.AsyncBaseTransport:
        """Tear everything down and return the original, unwrapped transport."""
        inner = self.interceptor.detach()
        if self.sync_interceptor is not None:
            self.sync_interceptor.detach()
        await self.interceptor.drain()
        await self.orchestrator.stop()
        await self.monitor.stop()
        if self._maintenance_task is not None:
            self._maintenance_task.cancel()
            await asyncio.gather(self._maintenance_task, return_exceptions=True)
            self._maintenance_task = None
        if self._owns_transport:
            await inner.aclose()
        if self._owns_sync_transport:
            self._sync_inner.close()
        if self._owns_store:
            await self.store.close()
        self._started = False
        logger.info("Offline layer stopped")
        return inner

    async def __aenter__(self) -> OfflineLayer:
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    def client(self, **kwargs: Any) -> httpx.AsyncClient:
        """An httpx client whose requests go through the interceptor."""
        return httpx.AsyncClient(transport=self.interceptor, **kwargs)

    def sync_client(self, **kwargs: Any) -> httpx.Client:
        """A blocking httpx client for worker threads; requires start()."""
        if self.sync_interceptor is None:
            raise RuntimeError("OfflineLayer.start() must run before sync_client()")
        return httpx.Client(transport=self.sync_interceptor, **kwargs)

    async def sync_now(self) -> bool:
        return await self.orchestrator.sync_now()

    async def snapshot(self) -> StatusSnapshot:
        return StatusSnapshot(
            state=self.monitor.current_state(),
            queue_length=self.queue.length(),
            cache_keys=tuple(await self.cache.list_keys()),
            status=getattr(self.status, "status", "unknown"),
        )

    async def _maintenance_loop(self) -> None:
        interval = self._config.maintenance.interval_seconds
        while True:
            await asyncio.sleep(interval)
            await self.cache.purge_expired()


async def run_command(
    config: AppConfig,
    command: str,
    inner_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> int:
    """Run one CLI command against the persisted state. Returns an exit code."""
    layer = OfflineLayer(config, inner_transport=inner_transport)
    try:
        await layer.queue.load()

        if command == "status":
            state = await layer.monitor.check_and_notify()
            snapshot = await layer.snapshot()
            print(f"Connectivity: {state.value}")
            print(f"Queued requests: {snapshot.queue_length}")
            for entry in layer.queue.snapshot():
                print(f"  {entry.descriptor.method} {entry.descriptor.url}")
            print(f"Cached responses: {len(snapshot.cache_keys)}")
            for key in snapshot.cache_keys:
                print(f"  {key}")
            return 0

        if command == "sync":
            await layer.monitor.check_and_notify()
            ok = await layer.sync_now()
            print(f"Sync {'succeeded' if ok else 'failed'}; {layer.queue.length()} requests queued")
            return 0 if ok else 1

        if command == "purge":
            removed = await layer.cache.purge_expired()
            print(f"Removed {removed} expired cache entries")
            return 0

        raise ValueError(f"Unknown command: {command}")
    finally:
        await layer.stop()


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Offline-first HTTP layer")
    parser.add_argument("--config", default="config", help="Path to config directory")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("status", help="Show connectivity, queued requests and cache keys")
    subparsers.add_parser("sync", help="Replay queued requests once")
    subparsers.add_parser("purge", help="Delete expired cache entries")
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    setup_logging(
        log_dir=config.logging.log_dir,
        level=config.logging.level,
        json_format=config.logging.json_format,
    )

    return asyncio.run(run_command(config, args.command))


if __name__ == "__main__":
    sys.exit(main())
