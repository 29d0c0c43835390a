"""Durable FIFO queue of deferred mutating requests."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Optional
from urllib.parse import urlsplit

from offline_layer.config import QueueConfig
from offline_layer.errors import StorageError, TransportError, ValidationError
from offline_layer.models import QueuedRequest, RequestDescriptor, SyncFailure, SyncResult
from offline_layer.network.transport import HttpTransport
from offline_layer.storage.kv_store import KeyValueStoreBase
from offline_layer.utils.diagnostics import Diagnostics

logger = logging.getLogger(__name__)

_METHOD_TOKEN = re.compile(r"^[A-Z][A-Z0-9!#$%&'*+.^_`|~-]*$")


def validate_descriptor(descriptor: object) -> None:
    """Reject anything that could not be replayed.

    Raises:
        ValidationError: If the method or URL is missing or malformed.
    """
    if not isinstance(descriptor, RequestDescriptor):
        raise ValidationError(f"Expected RequestDescriptor, got {type(descriptor).__name__}")
    if not descriptor.method or not _METHOD_TOKEN.match(descriptor.method):
        raise ValidationError(f"Invalid HTTP method: {descriptor.method!r}")
    if not descriptor.url:
        raise ValidationError("Request URL is missing")
    parts = urlsplit(descriptor.url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ValidationError(f"Request URL must be absolute http(s): {descriptor.url!r}")
    if descriptor.body is not None and not isinstance(descriptor.body, bytes):
        raise ValidationError("Request body must be bytes or None")


class WriteQueue:
    """Ordered list of requests awaiting replay, persisted as one unit.

    Guarantees:
    - Insertion order is replay order, across restarts (see ``load``).
    - A flush keeps exactly the entries whose replay failed, in their
      original relative order, followed by anything enqueued mid-flush.
    - Only one flush runs at a time; concurrent callers share its result.
    - Under storage pressure the oldest entries are evicted one by one until
      the list fits, with one diagnostic per evicted entry.
    """

    def __init__(
        self,
        store: KeyValueStoreBase,
        transport: HttpTransport,
        config: QueueConfig,
        diagnostics: Diagnostics,
    ):
        self._store = store.namespace(config.namespace)
        self._key = config.key
        self._transport = transport
        self._replay_timeout = config.replay_timeout_seconds
        self._diagnostics = diagnostics
        self._entries: list[QueuedRequest] = []
        # Guards every mutation of _entries together with its persistence.
        self._lock = asyncio.Lock()
        self._flush_task: Optional[asyncio.Task] = None

    def length(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def snapshot(self) -> tuple[QueuedRequest, ...]:
        return tuple(self._entries)

    @property
    def flushing(self) -> bool:
        return self._flush_task is not None and not self._flush_task.done()

    async def load(self) -> int:
        """Reload persisted entries in their original order.

        Returns:
            Number of entries loaded.
        """
        async with self._lock:
            try:
                raw = await self._store.get(self._key)
                entries = [QueuedRequest.from_dict(item) for item in raw or []]
            except Exception as e:
                self._diagnostics.emit(
                    "queue.load_failed", f"Could not load persisted queue, starting empty: {e}"
                )
                entries = []
            self._entries = entries

        if entries:
            logger.info("Loaded %d queued requests from storage", len(entries))
        return len(entries)

    async def enqueue(self, descriptor: RequestDescriptor) -> QueuedRequest:
        """Append a request and persist the queue before returning.

        Raises:
            ValidationError: If the descriptor is malformed. Nothing is changed.
        """
        validate_descriptor(descriptor)
        entry = QueuedRequest(descriptor=descriptor)
        async with self._lock:
            self._entries.append(entry)
            await self._persist()
            length = len(self._entries)

        logger.info(
            "Queued %s %s (queue length %d)", descriptor.method, descriptor.url, length
        )
        return entry

    async def flush(self) -> SyncResult:
        """Replay every queued request once, in order.

        A call made while another flush is running joins it instead of
        starting a second pass.
        """
        if self.flushing:
            logger.debug("Flush already in progress, joining it")
            return await asyncio.shield(self._flush_task)

        self._flush_task = asyncio.ensure_future(self._flush())
        # A cancelled caller must not interrupt the pass half way.
        return await asyncio.shield(self._flush_task)

    async def _flush(self) -> SyncResult:
        async with self._lock:
            pending = list(self._entries)

        if not pending:
            return SyncResult(success=True, remaining=0, failures=())

        logger.info("Flushing %d queued requests", len(pending))
        failures: list[SyncFailure] = []
        for entry in pending:
            error = await self._replay(entry)
            if error is not None:
                failures.append(SyncFailure(request=entry, error_message=error))

        failed_ids = {f.request.entry_id for f in failures}
        attempted_ids = {e.entry_id for e in pending}
        async with self._lock:
            # Entries added mid-flush were never attempted and stay, in order.
            # Entries evicted mid-flush are already gone and stay gone.
            self._entries = [
                e for e in self._entries
                if e.entry_id in failed_ids or e.entry_id not in attempted_ids
            ]
            await self._persist()
            remaining = len(self._entries)

        logger.info(
            "Flush complete: %d replayed, %d failed, %d remaining",
            len(pending) - len(failures), len(failures), remaining,
        )
        return SyncResult(success=remaining == 0, remaining=remaining, failures=tuple(failures))

    async def _replay(self, entry: QueuedRequest) -> Optional[str]:
        """Deliver one entry. Returns an error message, or None if delivered."""
        d = entry.descriptor
        try:
            response = await self._transport.send(d, timeout=self._replay_timeout)
        except TransportError as e:
            logger.warning("Failed to replay %s %s, keeping in queue: %s", d.method, d.url, e)
            return str(e)
        except Exception as e:
            # One bad entry must not abort the pass for the entries behind it.
            logger.exception("Unexpected error replaying %s %s, keeping in queue", d.method, d.url)
            return f"{type(e).__name__}: {e}"

        if response.is_server_error:
            logger.warning(
                "Replay of %s %s got HTTP %d, keeping in queue",
                d.method, d.url, response.status_code,
            )
            return f"HTTP {response.status_code}"
        if response.is_client_error:
            # The server refused it; replaying the same request can not succeed.
            logger.warning(
                "Replay of %s %s rejected with HTTP %d, dropping",
                d.method, d.url, response.status_code,
            )
        else:
            logger.info("Replayed %s %s (HTTP %d)", d.method, d.url, response.status_code)
        return None

    async def _persist(self) -> None:
        """Write the whole list, evicting from the head on storage pressure.

        Caller must hold ``_lock``.
        """
        while True:
            try:
                await self._store.put(self._key, [e.to_dict() for e in self._entries])
                return
            except StorageError as e:
                if not self._entries:
                    self._diagnostics.emit(
                        "queue.persist_failed", f"Could not persist empty queue: {e}"
                    )
                    return
                logger.warning("Queue persistence failed (%s), evicting oldest entry", e)
                evicted = self._entries.pop(0)
                self._diagnostics.emit(
                    "queue.evicted",
                    f"Evicted queued {evicted.descriptor.method} {evicted.descriptor.url} "
                    "under storage pressure",
                    entry_id=evicted.entry_id,
                    remaining=len(self._entries),
                )
