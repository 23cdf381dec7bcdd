from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Union

from journalsync.database.device_registry import DeviceRegistry
from journalsync.errors import InvalidPairingData, JournalSyncError
from journalsync.models.devices import DeviceIdentity, PairedDevice, PeerState
from journalsync.models.snapshot import utc_now_iso
from journalsync.network.provider import DirectChannelProvider
from journalsync.schemas.envelopes import PairingConfirmation, PairingPayload
from journalsync.services.events import EventBus, EventKind
from journalsync.services.relay_service import RelayService

logger = logging.getLogger(__name__)

PairingCode = Union[str, bytes, Dict[str, Any], PairingPayload]


class PairingManager:
    """Turns a scanned pairing code into a trust relationship on both devices.

    The device that shows the code (the initiator) embeds its own sync
    key. The scanning device stores that key for the initiator and relays
    a confirmation carrying the same key back, so both sides end up with
    one identical shared key from a single one-directional scan.
    """

    def __init__(
        self,
        identity: DeviceIdentity,
        device_name: str,
        registry: DeviceRegistry,
        relay: RelayService,
        provider: DirectChannelProvider,
        events: EventBus,
    ):
        self.identity = identity
        self.device_name = device_name
        self.registry = registry
        self.relay = relay
        self.provider = provider
        self.events = events

    def generate_pairing_payload(self) -> PairingPayload:
        return PairingPayload(
            device_id=self.identity.device_id,
            sync_key=self.identity.local_key,
            device_name=self.device_name,
        )

    def pairing_code(self) -> str:
        return self.generate_pairing_payload().to_json()

    async def accept_pairing(self, code: PairingCode) -> PairedDevice:
        """Pair with the device that produced ``code``.

        Raises:
            InvalidPairingData: the code is malformed, lacks ``deviceId`` or
                ``syncKey``, or names this device.
        """
        payload = PairingPayload.parse(code)
        if payload.device_id == self.identity.device_id:
            raise InvalidPairingData("Cannot pair a device with itself")

        device = PairedDevice(
            id=payload.device_id,
            display_name=payload.device_name or "Unknown Device",
            paired_at=utc_now_iso(),
        )
        created = self.registry.upsert(device)
        self.registry.set_sync_key(payload.device_id, payload.sync_key)
        if not created:
            logger.info(f"Device {payload.device_id} already paired, updated")

        self.events.publish(EventKind.PAIRED, device.id, name=device.display_name, initiator=False)
        logger.info(f"Device paired successfully: {device.display_name}")

        confirmation = PairingConfirmation(
            from_device=self.identity.device_id,
            device_name=self.device_name,
            sync_key=payload.sync_key,
        )
        try:
            await self.relay.send(device.id, confirmation)
        except JournalSyncError as e:
            logger.warning(f"Pairing confirmation to {device.id} not delivered: {e}")

        try:
            await self.provider.connect(device.id)
        except Exception as e:
            logger.info(f"Could not establish a direct channel to {device.id}, but device is paired: {e}")

        return device

    async def handle_confirmation(self, confirmation: PairingConfirmation) -> PairedDevice:
        """Complete pairing on the initiator after the scanner confirmed. Replays are no-ops."""
        peer_id = confirmation.from_device
        self.registry.set_sync_key(peer_id, confirmation.sync_key)

        existing = self.registry.get_device(peer_id)
        if existing is not None:
            logger.debug(f"Pairing confirmation from known device {peer_id}")
            return existing

        device = PairedDevice(
            id=peer_id,
            display_name=confirmation.device_name or "Unknown Device",
            paired_at=utc_now_iso(),
        )
        self.registry.upsert(device)
        self.events.publish(EventKind.PAIRED, peer_id, name=device.display_name, initiator=True)
        logger.info(f"Pairing confirmed by {device.display_name}")
        return device

    def get_paired_devices(self) -> List[PairedDevice]:
        return self.registry.get_paired_devices()

    def list_paired_devices(self) -> List[PairedDevice]:
        """Paired devices without duplicates, most recently paired first."""
        unique = {device.id: device for device in self.registry.get_paired_devices()}
        return sorted(unique.values(), key=lambda device: device.paired_at, reverse=True)

    def is_paired(self, peer_id: str) -> bool:
        return self.registry.is_paired(peer_id)

    def shared_key(self, peer_id: str) -> Optional[str]:
        return self.registry.get_sync_key(peer_id)

    def peer_state(self, peer_id: str) -> PeerState:
        if not self.registry.is_paired(peer_id):
            return PeerState.UNKNOWN
        if not self.provider.available():
            return PeerState.PAIRED
        if self.provider.is_connected(peer_id):
            return PeerState.CONNECTED
        return PeerState.DISCONNECTED
