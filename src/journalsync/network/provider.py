"""
Direct-channel capability.

The sync engine never checks the platform itself: it is handed a
``DirectChannelProvider`` and asks it whether a channel to a peer is
open right now. ``NullDirectChannelProvider`` stands in where direct
channels are unsupported or disabled; the engine then uses the relay for
every peer, exactly as if all peers were offline.
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from journalsync.network.network import DEFAULT_SIGNAL_PORT, DirectNetwork

logger = logging.getLogger(__name__)

TrustCheck = Callable[[str], bool]
MessageHandler = Callable[[str, str], None]
PeerOnlineHandler = Callable[[str, bool], None]
PeerOfflineHandler = Callable[[str], None]


class DirectChannelProvider(ABC):

    @abstractmethod
    def available(self) -> bool:
        pass

    @abstractmethod
    def is_connected(self, peer_id: str) -> bool:
        pass

    @abstractmethod
    async def start(
        self,
        is_trusted: TrustCheck,
        on_message: MessageHandler,
        on_peer_online: PeerOnlineHandler,
        on_peer_offline: PeerOfflineHandler,
    ) -> None:
        pass

    @abstractmethod
    async def connect(self, peer_id: str) -> bool:
        """Try to open a channel to ``peer_id``; False when it cannot be reached."""
        pass

    @abstractmethod
    async def send(self, peer_id: str, message: str) -> bool:
        pass

    def connected_peers(self) -> List[str]:
        return []

    async def stop(self) -> None:
        pass


class NullDirectChannelProvider(DirectChannelProvider):

    def available(self) -> bool:
        return False

    def is_connected(self, peer_id: str) -> bool:
        return False

    async def start(self, is_trusted, on_message, on_peer_online, on_peer_offline) -> None:
        logger.info("Direct channels disabled; using relay only")

    async def connect(self, peer_id: str) -> bool:
        return False

    async def send(self, peer_id: str, message: str) -> bool:
        return False


class WebRTCChannelProvider(DirectChannelProvider):
    """aiortc data channels negotiated over LAN discovery and TCP signaling."""

    def __init__(self, device_id: str, signaling_port: int = DEFAULT_SIGNAL_PORT,
                 device_name: Optional[str] = None):
        self.device_id = device_id
        self.signaling_port = signaling_port
        self.device_name = device_name
        self.network: Optional[DirectNetwork] = None

    def available(self) -> bool:
        return self.network is not None and self.network.running

    def is_connected(self, peer_id: str) -> bool:
        return self.available() and self.network.is_connected(peer_id)

    async def start(self, is_trusted, on_message, on_peer_online, on_peer_offline) -> None:
        network = DirectNetwork(
            device_id=self.device_id,
            signaling_port=self.signaling_port,
            device_name=self.device_name,
            is_trusted=is_trusted,
        )
        network.on_message(on_message)
        network.on_peer_connected(lambda peer, outbound: on_peer_online(peer.peer_id, outbound))
        network.on_peer_disconnected(on_peer_offline)

        try:
            await network.start()
        except OSError as e:
            logger.warning(f"Direct channels unavailable: {e}")
            await network.stop()
            return

        self.network = network
        logger.info(f"Direct channel signaling on port {self.signaling_port}")

    async def connect(self, peer_id: str) -> bool:
        if not self.available():
            return False
        return await self.network.connect_to_device(peer_id)

    async def send(self, peer_id: str, message: str) -> bool:
        if not self.available():
            return False
        return self.network.send_to_peer(peer_id, message)

    def connected_peers(self) -> List[str]:
        if not self.available():
            return []
        return [peer.peer_id for peer in self.network.get_connected_peers()]

    async def stop(self) -> None:
        if self.network:
            await self.network.stop()
            self.network = None
