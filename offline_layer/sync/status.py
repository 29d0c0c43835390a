"""Status reporting seam for connectivity and sync displays."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

logger = logging.getLogger(__name__)

ONLINE = "online"
OFFLINE = "offline"
SYNCING = "syncing"
ERROR = "error"


class StatusReporter(ABC):
    """Receives sync lifecycle updates. A status widget implements this."""

    @abstractmethod
    def set_online(self) -> None:
        """Connected and nothing left to sync."""

    @abstractmethod
    def set_offline(self) -> None:
        """Connectivity lost; requests are served from cache or queued."""

    @abstractmethod
    def set_syncing(self) -> None:
        """Queued requests are being replayed."""

    @abstractmethod
    def set_error(self, message: Optional[str] = None) -> None:
        """Sync gave up; ``message`` says what is left."""


class LoggingStatusReporter(StatusReporter):
    """Logs each transition and remembers the latest one."""

    def __init__(self, initial: str = ONLINE):
        self.status = initial
        self.message: Optional[str] = None
        self.history: list[str] = []

    def _set(self, status: str, message: Optional[str] = None) -> None:
        self.status = status
        self.message = message
        self.history.append(status)

    def set_online(self) -> None:
        self._set(ONLINE)
        logger.info("Status: online")

    def set_offline(self) -> None:
        self._set(OFFLINE, "Offline - cached mode")
        logger.info("Status: offline (cached mode)")

    def set_syncing(self) -> None:
        self._set(SYNCING)
        logger.info("Status: syncing queued requests")

    def set_error(self, message: Optional[str] = None) -> None:
        self._set(ERROR, message)
        logger.warning("Status: error (%s)", message or "sync failed")
