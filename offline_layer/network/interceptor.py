"""Routes outgoing requests to the network, the response cache or the write queue."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional

import httpx

from offline_layer.cache.response_cache import (
    CACHE_HEADER,
    ResponseCache,
    content_headers,
    to_response,
)
from offline_layer.errors import ValidationError
from offline_layer.models import READ_METHODS, RequestDescriptor
from offline_layer.network.connectivity import ConnectivityMonitor
from offline_layer.sync.queue import WriteQueue
from offline_layer.utils.diagnostics import Diagnostics

logger = logging.getLogger(__name__)

PLACEHOLDER_STATUS = 202

MSG_QUEUED_ONLINE = "Request queued"
MSG_QUEUED_OFFLINE = "Offline. Request queued."
MSG_FAILED = "Request failed"
MSG_NO_CACHE = "Offline, no cached data"

# Anything that stops a live exchange from producing a readable response.
LIVE_ERRORS = (httpx.HTTPError, OSError)


def synthesize_response(
    message: str,
    queued: bool,
    request: Optional[httpx.Request] = None,
) -> httpx.Response:
    """Build a 2xx placeholder response with a JSON acknowledgement body."""
    return httpx.Response(
        PLACEHOLDER_STATUS,
        headers={"Content-Type": "application/json", CACHE_HEADER: "placeholder"},
        content=json.dumps({"message": message, "queued": queued}).encode("utf-8"),
        request=request,
    )


class RequestInterceptor(httpx.AsyncBaseTransport):
    """Transport decorator that keeps a client usable while offline.

    Routing:
      online  + read     -> live, cached on success; cache or placeholder on failure
      online  + mutating -> live; queued on transport failure
      offline + read     -> cache, else placeholder
      offline + mutating -> queued, no delivery attempt

    Callers always get an ``httpx.Response``; transport errors never escape.
    After ``detach()`` every request is forwarded to the wrapped transport
    unchanged.
    """

    def __init__(
        self,
        inner: httpx.AsyncBaseTransport,
        monitor: ConnectivityMonitor,
        cache: ResponseCache,
        queue: WriteQueue,
        diagnostics: Diagnostics,
    ):
        self._inner = inner
        self._monitor = monitor
        self._cache = cache
        self._queue = queue
        self._diagnostics = diagnostics
        self._attached = True
        self._cache_tasks: set[asyncio.Task] = set()

    @property
    def attached(self) -> bool:
        return self._attached

    @property
    def inner(self) -> httpx.AsyncBaseTransport:
        return self._inner

    def detach(self) -> httpx.AsyncBaseTransport:
        """Stop intercepting and hand back the original transport."""
        self._attached = False
        logger.info("Request interception removed")
        return self._inner

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        if not self._attached:
            return await self._inner.handle_async_request(request)

        await request.aread()
        descriptor = RequestDescriptor.from_request(request)

        if self._monitor.is_online:
            if descriptor.is_read:
                return await self._online_read(request, descriptor)
            return await self._online_write(request, descriptor)

        if descriptor.is_read:
            return await self._offline_read(request, descriptor)
        return await self._offline_write(request, descriptor)

    async def _send_live(self, request: httpx.Request) -> httpx.Response:
        response = await self._inner.handle_async_request(request)
        try:
            await response.aread()
        finally:
            await response.aclose()
        # Rebuild so the caller gets a fresh, fully readable body.
        return httpx.Response(
            response.status_code,
            headers=content_headers(response.headers.multi_items()),
            content=response.content,
            request=request,
            extensions=response.extensions,
        )

    async def _online_read(
        self, request: httpx.Request, descriptor: RequestDescriptor
    ) -> httpx.Response:
        try:
            response = await self._send_live(request)
        except LIVE_ERRORS as e:
            logger.warning("Read %s failed while online: %s", descriptor.url, e)
            entry = await self._cache.match(descriptor)
            if entry is not None:
                return to_response(entry, request)
            return synthesize_response(MSG_FAILED, queued=False, request=request)

        if response.is_success:
            self._schedule_cache_write(descriptor, response)
        return response

    async def _online_write(
        self, request: httpx.Request, descriptor: RequestDescriptor
    ) -> httpx.Response:
        try:
            return await self._send_live(request)
        except LIVE_ERRORS as e:
            logger.warning(
                "%s %s failed while online, queueing: %s", descriptor.method, descriptor.url, e
            )
        return await self._enqueue(request, descriptor, MSG_QUEUED_ONLINE)

    async def _offline_read(
        self, request: httpx.Request, descriptor: RequestDescriptor
    ) -> httpx.Response:
        entry = await self._cache.match(descriptor)
        if entry is not None:
            logger.debug("Serving %s from cache (offline)", descriptor.url)
            return to_response(entry, request)
        return synthesize_response(MSG_NO_CACHE, queued=False, request=request)

    async def _offline_write(
        self, request: httpx.Request, descriptor: RequestDescriptor
    ) -> httpx.Response:
        return await self._enqueue(request, descriptor, MSG_QUEUED_OFFLINE)

    async def _enqueue(
        self, request: httpx.Request, descriptor: RequestDescriptor, message: str
    ) -> httpx.Response:
        try:
            await self._queue.enqueue(descriptor)
        except ValidationError as e:
            logger.error("Cannot queue %s %s: %s", descriptor.method, descriptor.url, e)
            return synthesize_response(MSG_FAILED, queued=False, request=request)
        return synthesize_response(message, queued=True, request=request)

    def _schedule_cache_write(self, descriptor: RequestDescriptor, response: httpx.Response) -> None:
        task = asyncio.ensure_future(self._cache.store(descriptor, response))
        self._cache_tasks.add(task)
        task.add_done_callback(self._on_cache_write_done)

    def _on_cache_write_done(self, task: asyncio.Task) -> None:
        self._cache_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._diagnostics.emit(
                "interceptor.cache_write_failed", f"Background cache write failed: {exc}"
            )

    async def drain(self) -> None:
        """Wait for pending background cache writes."""
        if self._cache_tasks:
            await asyncio.gather(*list(self._cache_tasks), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        await self._inner.aclose()


class SyncRequestInterceptor(httpx.BaseTransport):
    """Blocking-client counterpart for ``httpx.Client`` users.

    While offline, mutating requests are queued on the shared write queue and
    answered with a queued placeholder. Everything else, including every
    request made while online, goes to the wrapped transport untouched.

    The queue lives on an event loop, so calls must come from a worker thread
    while that loop is running (for example via ``asyncio.to_thread``).
    """

    def __init__(
        self,
        inner: httpx.BaseTransport,
        monitor: ConnectivityMonitor,
        queue: WriteQueue,
        loop: asyncio.AbstractEventLoop,
        enqueue_timeout: float = 30.0,
    ):
        self._inner = inner
        self._monitor = monitor
        self._queue = queue
        self._loop = loop
        self._enqueue_timeout = enqueue_timeout
        self._attached = True

    @property
    def attached(self) -> bool:
        return self._attached

    @property
    def inner(self) -> httpx.BaseTransport:
        return self._inner

    def detach(self) -> httpx.BaseTransport:
        self._attached = False
        logger.info("Blocking request interception removed")
        return self._inner

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        if not self._attached or self._monitor.is_online or request.method in READ_METHODS:
            return self._inner.handle_request(request)

        request.read()
        descriptor = RequestDescriptor.from_request(request)
        if _running_loop() is self._loop:
            raise RuntimeError("Blocking client used on the event loop thread; use a worker thread")

        future = asyncio.run_coroutine_threadsafe(self._queue.enqueue(descriptor), self._loop)
        try:
            future.result(timeout=self._enqueue_timeout)
        except ValidationError as e:
            logger.error("Cannot queue %s %s: %s", descriptor.method, descriptor.url, e)
            return synthesize_response(MSG_FAILED, queued=False, request=request)
        return synthesize_response(MSG_QUEUED_OFFLINE, queued=True, request=request)

    def close(self) -> None:
        self._inner.close()


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None
