from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Union

from journalsync.database.device_registry import DeviceRegistry
from journalsync.database.record_store import RecordStore
from journalsync.errors import DecryptionError, MalformedEnvelope, NoSharedKey, RelayUploadError, TransportUnavailable
from journalsync.models.devices import DeviceIdentity
from journalsync.models.snapshot import SyncSnapshot, utc_now_iso
from journalsync.schemas.envelopes import SyncRequest, SyncResponse
from journalsync.services.events import EventBus, EventKind
from journalsync.services.merge import MergeReport, MergeResolver
from journalsync.services.relay_service import RelayService
from journalsync.services.transport import DIRECT, RELAY, TransportSelector
from journalsync.utils import crypto

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncResult:
    peer_id: str
    transport: str
    bidirectional: bool
    records: int
    completed_at: str


class SyncOrchestrator:

    def __init__(
        self,
        identity: DeviceIdentity,
        registry: DeviceRegistry,
        store: RecordStore,
        selector: TransportSelector,
        relay: RelayService,
        resolver: MergeResolver,
        events: EventBus,
    ):
        self.identity = identity
        self.registry = registry
        self.store = store
        self.selector = selector
        self.relay = relay
        self.resolver = resolver
        self.events = events

    def _require_key(self, peer_id: str) -> str:
        key = self.registry.get_sync_key(peer_id)
        if not key:
            raise NoSharedKey(peer_id)
        return key

    async def build_snapshot(self) -> SyncSnapshot:
        async with self.store.write_lock:
            return self.store.snapshot()

    async def _encrypted_snapshot(self, key: str) -> tuple[str, SyncSnapshot]:
        snapshot = await self.build_snapshot()
        return crypto.encrypt(snapshot.to_dict(), key), snapshot

    async def sync_with_device(self, peer_id: str, bidirectional: bool = True) -> SyncResult:
        """Send this device's full snapshot to ``peer_id``.

        Direct-channel delivery is final. Relay delivery optionally asks the
        peer to answer with its own snapshot.

        Raises:
            NoSharedKey: pairing with ``peer_id`` never completed.
            RelayUploadError: the relay write failed; ``reason`` says why.
        """
        key = self._require_key(peer_id)
        data, snapshot = await self._encrypted_snapshot(key)

        transport = self.selector.resolve(peer_id)
        if transport.kind == DIRECT:
            try:
                await transport.send(peer_id, SyncRequest(data=data, from_device=self.identity.device_id))
            except TransportUnavailable as e:
                logger.info(f"{e}; falling back to relay")
                transport = self.selector.relay

        if transport.kind == RELAY:
            envelope = SyncRequest(
                data=data,
                from_device=self.identity.device_id,
                bidirectional=True if bidirectional else None,
            )
            try:
                await transport.send(peer_id, envelope)
            except RelayUploadError as e:
                self.events.publish(EventKind.SYNC_FAILED, peer_id, reason=e.reason, error=str(e))
                raise

        completed_at = utc_now_iso()
        self.registry.update_last_sync(peer_id, completed_at)

        result = SyncResult(
            peer_id=peer_id,
            transport=transport.kind,
            bidirectional=bidirectional and transport.kind == RELAY,
            records=snapshot.record_count,
            completed_at=completed_at,
        )
        self.events.publish(
            EventKind.SYNC_SENT, peer_id, transport=result.transport, records=result.records)
        logger.info(f"Sync sent to device {peer_id} via {result.transport}")
        return result

    async def handle_envelope(self, envelope: Union[SyncRequest, SyncResponse]) -> Optional[MergeReport]:
        """Decrypt and merge a received snapshot. Bad envelopes are discarded before any write."""
        peer_id = envelope.from_device
        key = self.registry.get_sync_key(peer_id)
        if not key:
            logger.warning(f"Discarding sync from {peer_id}: no shared key")
            self.events.publish(EventKind.SYNC_FAILED, peer_id, reason="no_shared_key")
            return None

        try:
            snapshot = SyncSnapshot.from_dict(crypto.decrypt(envelope.data, key))
        except (DecryptionError, MalformedEnvelope) as e:
            logger.warning(f"Discarding sync from {peer_id}: {e}")
            self.events.publish(EventKind.SYNC_FAILED, peer_id, reason="decryption", error=str(e))
            return None

        report = await self.resolver.apply(snapshot)
        self.registry.update_last_sync(peer_id, utc_now_iso())
        self.events.publish(
            EventKind.SYNC_MERGED, peer_id,
            entries=len(snapshot.entries),
            expenses=len(snapshot.expenses),
            action_items=len(snapshot.action_items),
            is_response=envelope.is_response,
        )

        if envelope.wants_response:
            await self._respond(peer_id, key)
        return report

    async def _respond(self, peer_id: str, key: str) -> None:
        data, _ = await self._encrypted_snapshot(key)
        response = SyncResponse(data=data, from_device=self.identity.device_id)
        try:
            await self.relay.send(peer_id, response)
        except RelayUploadError as e:
            logger.warning(f"Sync response to {peer_id} not delivered: {e}")
            self.events.publish(EventKind.SYNC_FAILED, peer_id, reason=e.reason, error=str(e))
            return
        logger.info(f"Sync response sent to {peer_id}")
