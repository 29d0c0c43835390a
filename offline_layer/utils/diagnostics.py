"""Out-of-band channel for non-fatal errors.

Cache write failures, queue evictions and probe timeouts never reach the
caller of a request. They are reported here instead, logged and kept in a
short ring of recent events for status displays and tests.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger("offline_layer.diagnostics")

DiagnosticListener = Callable[["DiagnosticEvent"], None]


@dataclass(frozen=True)
class DiagnosticEvent:
    kind: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


class Diagnostics:
    """Diagnostic sink with a bounded history and optional listeners."""

    def __init__(self, history_size: int = 200):
        self._events: deque[DiagnosticEvent] = deque(maxlen=history_size)
        self._listeners: list[DiagnosticListener] = []

    def emit(self, kind: str, message: str, **details: Any) -> DiagnosticEvent:
        event = DiagnosticEvent(kind=kind, message=message, details=details)
        self._events.append(event)
        logger.warning("[%s] %s", kind, message, extra={"diagnostic_kind": kind})

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error("Diagnostic listener failed for %s: %s", kind, e)
        return event

    def add_listener(self, listener: DiagnosticListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: DiagnosticListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def events(self, kind: str | None = None) -> list[DiagnosticEvent]:
        """Recent events, oldest first, optionally filtered by kind."""
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.kind == kind]

    def count(self, kind: str) -> int:
        return sum(1 for e in self._events if e.kind == kind)

    def clear(self) -> None:
        self._events.clear()
