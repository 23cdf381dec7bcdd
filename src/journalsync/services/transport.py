import logging
from typing import Union

from journalsync.errors import TransportUnavailable
from journalsync.network.provider import DirectChannelProvider
from journalsync.schemas.envelopes import DirectSyncMessage, SyncRequest, SyncResponse
from journalsync.services.relay_service import RelayService

logger = logging.getLogger(__name__)

DIRECT = "direct"
RELAY = "relay"


class DirectTransport:
    kind = DIRECT
    final = True

    def __init__(self, provider: DirectChannelProvider):
        self.provider = provider

    async def send(self, peer_id: str, envelope: Union[SyncRequest, SyncResponse]) -> None:
        message = DirectSyncMessage(
            data=envelope.data,
            from_device=envelope.from_device,
            timestamp=envelope.timestamp,
        )
        if not await self.provider.send(peer_id, message.to_json()):
            raise TransportUnavailable(f"Direct channel to {peer_id} is not open")


class RelayTransport:
    kind = RELAY
    final = False

    def __init__(self, relay: RelayService):
        self.relay = relay

    async def send(self, peer_id: str, envelope: Union[SyncRequest, SyncResponse]) -> None:
        await self.relay.send(peer_id, envelope)


Transport = Union[DirectTransport, RelayTransport]


class TransportSelector:

    def __init__(self, provider: DirectChannelProvider, relay: RelayService):
        self.provider = provider
        self.direct = DirectTransport(provider)
        self.relay = RelayTransport(relay)

    def resolve(self, peer_id: str) -> Transport:
        """Pick the direct channel if one is open right now, else the relay. Never waits."""
        if self.provider.available() and self.provider.is_connected(peer_id):
            return self.direct
        return self.relay
