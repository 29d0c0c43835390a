"""Core data models shared across all modules."""

from __future__ import annotations

import base64
import hashlib
import json
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import httpx

READ_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


class ConnectivityState(Enum):
    ONLINE = "online"
    OFFLINE = "offline"


@dataclass(frozen=True)
class RequestDescriptor:
    """Everything needed to re-issue a request later.

    Used both as the queue payload and as the input to ``fingerprint``.
    """
    method: str
    url: str
    headers: tuple[tuple[str, str], ...] = ()
    body: Optional[bytes] = None

    def __post_init__(self) -> None:
        if isinstance(self.method, str):
            object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(
            self, "headers", tuple((str(k), str(v)) for k, v in self.headers or ())
        )

    @property
    def is_read(self) -> bool:
        return self.method in READ_METHODS

    @classmethod
    def from_request(cls, request: httpx.Request) -> RequestDescriptor:
        """Build a descriptor from an httpx request whose body has been read."""
        content = request.content
        return cls(
            method=request.method,
            url=str(request.url),
            headers=tuple(request.headers.multi_items()),
            body=content or None,
        )

    def to_request(self) -> httpx.Request:
        return httpx.Request(
            self.method,
            self.url,
            headers=list(self.headers),
            content=self.body,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "method": self.method,
            "url": self.url,
            "headers": [list(pair) for pair in self.headers],
            "body": base64.b64encode(self.body).decode("ascii") if self.body is not None else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RequestDescriptor:
        body = data.get("body")
        return cls(
            method=data["method"],
            url=data["url"],
            headers=tuple((k, v) for k, v in data.get("headers") or ()),
            body=base64.b64decode(body) if body is not None else None,
        )


def canonical_form(descriptor: RequestDescriptor) -> str:
    """Serialize a descriptor so that structural equality means string equality.

    Field order is fixed: method, url, headers, body. Header names are
    lower-cased and the pairs sorted by (name, value); the body is hex or null.
    """
    headers = sorted((name.lower(), value) for name, value in descriptor.headers)
    payload = [
        ["method", descriptor.method.upper()],
        ["url", descriptor.url],
        ["headers", [list(pair) for pair in headers]],
        ["body", descriptor.body.hex() if descriptor.body is not None else None],
    ]
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


def fingerprint(descriptor: RequestDescriptor) -> str:
    """Deterministic cache key for a read request."""
    return hashlib.sha256(canonical_form(descriptor).encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CacheEntry:
    body: bytes
    headers: tuple[tuple[str, str], ...]
    stored_at: float
    status_code: int = 200

    def age(self, now: float) -> float:
        return now - self.stored_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "body": base64.b64encode(self.body).decode("ascii"),
            "headers": [list(pair) for pair in self.headers],
            "stored_at": self.stored_at,
            "status_code": self.status_code,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CacheEntry:
        return cls(
            body=base64.b64decode(data["body"]),
            headers=tuple((k, v) for k, v in data.get("headers") or ()),
            stored_at=float(data["stored_at"]),
            status_code=int(data.get("status_code", 200)),
        )


@dataclass(frozen=True)
class QueuedRequest:
    descriptor: RequestDescriptor
    entry_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    enqueued_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        data = self.descriptor.to_dict()
        data["id"] = self.entry_id
        data["enqueued_at"] = self.enqueued_at
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueuedRequest:
        return cls(
            descriptor=RequestDescriptor.from_dict(data),
            entry_id=data.get("id") or uuid.uuid4().hex,
            enqueued_at=float(data.get("enqueued_at") or time.time()),
        )


@dataclass(frozen=True)
class SyncFailure:
    request: QueuedRequest
    error_message: str


@dataclass(frozen=True)
class SyncResult:
    success: bool
    remaining: int
    failures: tuple[SyncFailure, ...] = ()


@dataclass(frozen=True)
class StatusSnapshot:
    """Read-only view handed to status displays."""
    state: ConnectivityState
    queue_length: int
    cache_keys: tuple[str, ...]
    status: str
