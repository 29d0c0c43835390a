import asyncio

import httpx
import pytest

from offline_layer.config import (
    AppConfig,
    CacheConfig,
    ConnectivityConfig,
    QueueConfig,
    StorageConfig,
    SyncConfig,
)
from offline_layer.network.transport import HttpTransport
from offline_layer.storage.kv_store import MemoryKeyValueStore
from offline_layer.utils.diagnostics import Diagnostics

PROBE_URL = "http://probe.test/generate_204"


class FakeNetwork:
    """Scriptable stand-in for the network behind an httpx.MockTransport."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.online = True
        self.fail_paths: set[str] = set()
        self.status_for: dict[str, int] = {}
        self.body_for: dict[str, bytes] = {}
        self.corrupt_paths: set[str] = set()

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.online or request.url.path in self.fail_paths:
            raise httpx.ConnectError("network unreachable", request=request)
        if request.url.path in self.corrupt_paths:
            return httpx.Response(
                200, headers={"Content-Encoding": "gzip"}, content=b"not gzip"
            )
        status = self.status_for.get(request.url.path, 200)
        body = self.body_for.get(request.url.path, b'{"ok": true}')
        return httpx.Response(
            status,
            headers={"Content-Type": "application/json", "X-Server": "fake"},
            content=body,
        )

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def requests_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def non_probe_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host != "probe.test"]


@pytest.fixture
def network():
    return FakeNetwork()


@pytest.fixture
def live(network):
    return HttpTransport(network.transport, timeout=5.0)


@pytest.fixture
def diagnostics():
    return Diagnostics()


@pytest.fixture
def memory_store():
    return MemoryKeyValueStore()


@pytest.fixture
def app_config():
    """Fast, in-memory configuration for component tests."""
    return AppConfig(
        connectivity=ConnectivityConfig(
            probe_url=PROBE_URL,
            probe_timeout_seconds=0.5,
            probe_interval_seconds=0.02,
        ),
        cache=CacheConfig(max_age_seconds=60),
        queue=QueueConfig(replay_timeout_seconds=5.0),
        sync=SyncConfig(retry_delay_seconds=0.0, flush_interval_seconds=0.0),
        storage=StorageConfig(backend="memory"),
    )


@pytest.fixture
def eventually():
    """Poll an async-side condition until it holds or a deadline passes."""

    async def _wait(predicate, timeout: float = 2.0, interval: float = 0.005) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(interval)

    return _wait


@pytest.fixture
def test_config_dir(tmp_path):
    """Creates a temporary config directory with test settings."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()

    settings = config_dir / "settings.yaml"
    settings.write_text("""
connectivity:
  probe_url: "http://probe.test/generate_204"
  probe_timeout_seconds: 2
  probe_interval_seconds: 10

cache:
  max_age_seconds: 3600

queue:
  key: "test-queue"

sync:
  max_retries: 5
  retry_delay_seconds: 0.5
  flush_interval_seconds: 0

storage:
  backend: "sqlite"
  db_path: "{db_path}"

logging:
  level: "DEBUG"
  json_format: false
  log_dir: "{log_dir}"
""".format(
        db_path=str(tmp_path / "data" / "offline.db"),
        log_dir=str(tmp_path / "logs"),
    ))

    return config_dir


@pytest.fixture
def tmp_db_path(tmp_path):
    """Returns a path for a temporary SQLite database."""
    return str(tmp_path / "test.db")
