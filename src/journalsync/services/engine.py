import asyncio
import logging
from typing import Awaitable, Dict, List, Optional, Set, Union

from journalsync.config import JournalSyncConfig
from journalsync.database.device_registry import DeviceRegistry
from journalsync.database.identity_store import IdentityStore
from journalsync.database.record_store import RecordStore
from journalsync.database.relay_manager import RelayStore
from journalsync.errors import IdentityUnavailable, JournalSyncError, MalformedEnvelope
from journalsync.models.devices import PairedDevice, PeerState
from journalsync.network.provider import DirectChannelProvider, NullDirectChannelProvider, WebRTCChannelProvider
from journalsync.schemas.envelopes import Envelope, PairingConfirmation, decode_envelope
from journalsync.services.events import EventBus, EventKind
from journalsync.services.merge import MergeResolver
from journalsync.services.pairing_service import PairingCode, PairingManager
from journalsync.services.relay_service import RelayService, create_relay_store
from journalsync.services.sync_service import SyncOrchestrator, SyncResult
from journalsync.services.transport import TransportSelector
from journalsync.utils.file_manager import FileManager

logger = logging.getLogger(__name__)


class SyncEngine:
    """All sync state for one process: identity, pairings, transports and the record store.

    Build one instance and pass it to whatever needs it. ``start()`` arms
    the relay listener and opens direct channels to paired devices;
    ``resume()`` must be called when the host returns from suspension.
    """

    def __init__(
        self,
        config: Optional[JournalSyncConfig] = None,
        *,
        relay_store: Optional[RelayStore] = None,
        provider: Optional[DirectChannelProvider] = None,
        files: Optional[FileManager] = None,
    ):
        self.config = config or JournalSyncConfig.from_env()
        try:
            self.files = files or FileManager(self.config.data_dir)
        except OSError as e:
            raise IdentityUnavailable(f"Data directory {self.config.data_dir} is unusable: {e}") from e

        self.identity_store = IdentityStore(self.files)
        self.identity = self.identity_store.ensure_identity()
        self.device_id = self.identity.device_id
        self.device_name = self.identity_store.default_device_name(self.config.device_name)

        self.registry = DeviceRegistry(self.files)
        self.store = RecordStore(self.files)
        self.events = EventBus()

        self.relay_store = relay_store or create_relay_store(self.config.relay)
        self.relay = RelayService(self.relay_store, self.device_id, events=self.events)

        if provider is None:
            if self.config.direct_enabled:
                provider = WebRTCChannelProvider(
                    device_id=self.device_id,
                    signaling_port=self.config.network_port,
                    device_name=self.device_name,
                )
            else:
                provider = NullDirectChannelProvider()
        self.provider = provider

        self.pairing = PairingManager(
            identity=self.identity,
            device_name=self.device_name,
            registry=self.registry,
            relay=self.relay,
            provider=self.provider,
            events=self.events,
        )
        self.selector = TransportSelector(self.provider, self.relay)
        self.resolver = MergeResolver(self.store)
        self.sync = SyncOrchestrator(
            identity=self.identity,
            registry=self.registry,
            store=self.store,
            selector=self.selector,
            relay=self.relay,
            resolver=self.resolver,
            events=self.events,
        )

        self._tasks: Set[asyncio.Task] = set()
        self.running = False

    async def start(self) -> None:
        if self.running:
            return
        self.running = True

        self.relay.listen(self.handle_relay_envelope)
        await self.provider.start(
            is_trusted=self.pairing.is_paired,
            on_message=self._on_direct_message,
            on_peer_online=self._on_peer_online,
            on_peer_offline=self._on_peer_offline,
        )
        await self.auto_connect_paired_devices()
        logger.info(f"Sync engine started for {self.device_name} ({self.device_id})")

    async def resume(self) -> None:
        """Re-arm listeners after the host process was suspended."""
        if not self.running:
            await self.start()
            return
        await self.relay.rearm()
        await self.auto_connect_paired_devices()

    async def stop(self) -> None:
        if not self.running:
            return
        self.running = False

        await self.relay.stop()
        await self.provider.stop()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        await self.relay_store.close()
        logger.info("Sync engine stopped")

    def _spawn(self, coro: Awaitable, label: str) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)

        def _done(finished: asyncio.Task) -> None:
            self._tasks.discard(finished)
            if finished.cancelled():
                return
            error = finished.exception()
            if error is not None:
                logger.error(f"{label} failed: {error}")

        task.add_done_callback(_done)
        return task

    async def auto_connect_paired_devices(self) -> None:
        if not self.provider.available():
            return
        for device in self.registry.get_paired_devices():
            try:
                await self.provider.connect(device.id)
            except Exception as e:
                logger.info(f"Could not connect to {device.display_name}: {e}")

    async def handle_relay_envelope(self, envelope: Envelope) -> None:
        if isinstance(envelope, PairingConfirmation):
            await self.pairing.handle_confirmation(envelope)
        else:
            await self.sync.handle_envelope(envelope)

    def _on_direct_message(self, peer_id: str, message: str) -> None:
        try:
            envelope = decode_envelope(message)
        except MalformedEnvelope as e:
            logger.warning(f"Ignoring direct message from {peer_id}: {e}")
            return

        if isinstance(envelope, PairingConfirmation) or envelope.from_device != peer_id:
            logger.warning(f"Ignoring unexpected direct message from {peer_id}")
            return
        self._spawn(self.sync.handle_envelope(envelope), f"Direct sync from {peer_id}")

    def _on_peer_online(self, peer_id: str, outbound: bool) -> None:
        self.events.publish(EventKind.PEER_ONLINE, peer_id, outbound=outbound)
        if outbound:
            self._spawn(self.sync_with_device(peer_id), f"Auto sync with {peer_id}")

    def _on_peer_offline(self, peer_id: str) -> None:
        logger.info(f"Peer disconnected: {peer_id}")
        self.events.publish(EventKind.PEER_OFFLINE, peer_id)

    def pairing_code(self) -> str:
        return self.pairing.pairing_code()

    async def accept_pairing(self, code: PairingCode) -> PairedDevice:
        return await self.pairing.accept_pairing(code)

    def get_paired_devices(self) -> List[PairedDevice]:
        return self.pairing.list_paired_devices()

    def peer_state(self, peer_id: str) -> PeerState:
        return self.pairing.peer_state(peer_id)

    async def sync_with_device(self, peer_id: str, bidirectional: Optional[bool] = None) -> SyncResult:
        if bidirectional is None:
            bidirectional = self.config.bidirectional
        return await self.sync.sync_with_device(peer_id, bidirectional=bidirectional)

    async def sync_all(self, bidirectional: Optional[bool] = None) -> Dict[str, Union[SyncResult, JournalSyncError]]:
        results: Dict[str, Union[SyncResult, JournalSyncError]] = {}
        for device in self.registry.get_paired_devices():
            try:
                results[device.id] = await self.sync_with_device(device.id, bidirectional)
            except JournalSyncError as e:
                logger.error(f"Sync with {device.display_name} failed: {e}")
                results[device.id] = e
        return results

    async def __aenter__(self) -> "SyncEngine":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()
