from __future__ import annotations

import asyncio
from pathlib import Path
from typing import AsyncIterator, Callable, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

from journalsync.config import JournalSyncConfig
from journalsync.database.relay_manager import RelayStore
from journalsync.network.provider import DirectChannelProvider
from journalsync.services.engine import SyncEngine


class MemoryRelayStore(RelayStore):
    """Shared in-process relay: last write wins per key, watchers notified on put."""

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.writes: List[Tuple[str, str]] = []
        self.fail_with: Optional[BaseException] = None
        self.watch_failures: List[BaseException] = []
        self.subscribe_failures: List[BaseException] = []
        self._watchers: Dict[str, List[asyncio.Queue]] = {}

    async def put(self, key: str, value: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.data[key] = value
        self.writes.append((key, value))
        for queue in self._watchers.get(key, []):
            queue.put_nowait(key)

    async def take(self, key: str) -> Optional[str]:
        return self.data.pop(key, None)

    async def delete(self, key: str) -> bool:
        return self.data.pop(key, None) is not None

    async def watch(self, key: str) -> AsyncIterator[str]:
        if self.subscribe_failures:
            raise self.subscribe_failures.pop(0)
        queue: asyncio.Queue = asyncio.Queue()
        self._watchers.setdefault(key, []).append(queue)
        try:
            yield key
            if self.watch_failures:
                raise self.watch_failures.pop(0)
            while True:
                yield await queue.get()
        finally:
            self._watchers[key].remove(queue)

    def watcher_count(self, key: str) -> int:
        return len(self._watchers.get(key, []))


class FakeDirectProvider(DirectChannelProvider):
    """Direct channels between providers registered on the same ``switch`` dict."""

    def __init__(self, switch: Optional[Dict[str, "FakeDirectProvider"]] = None, enabled: bool = True):
        self.device_id: Optional[str] = None
        self.switch = switch if switch is not None else {}
        self.enabled = enabled
        self.started = False
        self.connected: set = set()
        self.sent: List[Tuple[str, str]] = []
        self.fail_sends = False
        self.connect_attempts: List[str] = []
        self.is_trusted: Callable[[str], bool] = lambda _peer: False
        self.on_message = None
        self.on_peer_online = None
        self.on_peer_offline = None

    def bind(self, device_id: str) -> "FakeDirectProvider":
        self.device_id = device_id
        self.switch[device_id] = self
        return self

    def available(self) -> bool:
        return self.enabled and self.started

    def is_connected(self, peer_id: str) -> bool:
        return peer_id in self.connected

    async def start(self, is_trusted, on_message, on_peer_online, on_peer_offline) -> None:
        self.is_trusted = is_trusted
        self.on_message = on_message
        self.on_peer_online = on_peer_online
        self.on_peer_offline = on_peer_offline
        self.started = True

    async def connect(self, peer_id: str) -> bool:
        self.connect_attempts.append(peer_id)
        remote = self.switch.get(peer_id)
        if not self.available() or remote is None or not remote.available():
            return False
        if not remote.is_trusted(self.device_id):
            return False
        self.connected.add(peer_id)
        remote.connected.add(self.device_id)
        remote.on_peer_online(self.device_id, False)
        self.on_peer_online(peer_id, True)
        return True

    async def send(self, peer_id: str, message: str) -> bool:
        if self.fail_sends or peer_id not in self.connected:
            return False
        self.sent.append((peer_id, message))
        remote = self.switch.get(peer_id)
        if remote is not None and remote.on_message is not None:
            remote.on_message(self.device_id, message)
        return True

    def connected_peers(self) -> List[str]:
        return sorted(self.connected)

    def drop(self, peer_id: str) -> None:
        self.connected.discard(peer_id)
        if self.on_peer_offline:
            self.on_peer_offline(peer_id)

    async def stop(self) -> None:
        self.started = False
        self.connected.clear()


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


async def deliver(engine: SyncEngine):
    """Consume the engine's relay mailbox and process it like the listener would."""
    envelope = await engine.relay.receive()
    assert envelope is not None, f"mailbox of {engine.device_id} is empty"
    await engine.handle_relay_envelope(envelope)
    return envelope


@pytest.fixture
def relay_store() -> MemoryRelayStore:
    return MemoryRelayStore()


@pytest.fixture
def make_engine(tmp_path: Path, relay_store: MemoryRelayStore):
    def factory(name: str, provider: Optional[DirectChannelProvider] = None, **config) -> SyncEngine:
        cfg = JournalSyncConfig(
            data_dir=tmp_path / name,
            device_name=name,
            direct_enabled=False,
            **config,
        )
        return SyncEngine(cfg, relay_store=relay_store, provider=provider)

    return factory


@pytest.fixture
def device_a(make_engine) -> SyncEngine:
    return make_engine("device-a")


@pytest.fixture
def device_b(make_engine) -> SyncEngine:
    return make_engine("device-b")


@pytest_asyncio.fixture
async def paired(device_a: SyncEngine, device_b: SyncEngine):
    """A shows its code, B scans it, A observes B's confirmation."""
    await device_b.accept_pairing(device_a.pairing_code())
    await deliver(device_a)
    return device_a, device_b


@pytest.fixture
def direct_engines(make_engine):
    """Two engines whose fake direct providers can reach each other."""
    switch: Dict[str, FakeDirectProvider] = {}
    engine_a = make_engine("direct-a", provider=FakeDirectProvider(switch))
    engine_b = make_engine("direct-b", provider=FakeDirectProvider(switch))
    engine_a.provider.bind(engine_a.device_id)
    engine_b.provider.bind(engine_b.device_id)
    return engine_a, engine_b
