import json
import logging
import time
import uuid
from typing import Callable, Dict, List, Optional

from aiortc import RTCConfiguration, RTCDataChannel, RTCIceServer, RTCPeerConnection, RTCSessionDescription

logger = logging.getLogger(__name__)

CHUNK_PREFIX = "__CHUNK__"
PING = "__PING__"
PONG = "__PONG__"
CHUNK_SIZE = 16000


def split_message(message: str, chunk_size: int = CHUNK_SIZE) -> List[str]:
    if len(message) <= chunk_size:
        return [message]

    chunk_id = str(uuid.uuid4())[:8]
    total_chunks = (len(message) + chunk_size - 1) // chunk_size

    frames = []
    for i in range(total_chunks):
        start = i * chunk_size
        frames.append(CHUNK_PREFIX + json.dumps({
            "id": chunk_id,
            "index": i,
            "total": total_chunks,
            "data": message[start:start + chunk_size]
        }))
    return frames


class ChunkAssembler:
    """Reassembles frames produced by :func:`split_message`."""

    def __init__(self):
        self._buffer: Dict[str, Dict[int, str]] = {}

    def feed(self, frame: str) -> Optional[str]:
        """Return the complete message once all of its frames arrived, else None."""
        if not frame.startswith(CHUNK_PREFIX):
            return frame

        try:
            chunk = json.loads(frame[len(CHUNK_PREFIX):])
            chunk_id = chunk["id"]
            total = chunk["total"]
            parts = self._buffer.setdefault(chunk_id, {})
            parts[chunk["index"]] = chunk["data"]
        except (ValueError, KeyError, TypeError):
            logger.warning("Dropping malformed chunk frame")
            return None

        if len(parts) < total:
            return None

        del self._buffer[chunk_id]
        return "".join(parts[i] for i in range(total))

    @property
    def pending(self) -> int:
        return len(self._buffer)


class JournalPeer:

    def __init__(self, peer_id: str, peer_name: str = "Unknown"):
        self.peer_id = peer_id
        self.peer_name = peer_name
        self.is_connected = False
        self.last_seen = time.monotonic()
        self._assembler = ChunkAssembler()

        ice_servers = [RTCIceServer(urls="stun:stun.l.google.com:19302")]
        config = RTCConfiguration(iceServers=ice_servers)
        self.pc = RTCPeerConnection(configuration=config)
        self.data_channel: Optional[RTCDataChannel] = None
        self.on_message_callback: Optional[Callable[[str], None]] = None
        self.on_open_callback: Optional[Callable[[], None]] = None
        self.on_close_callback: Optional[Callable[[], None]] = None
        self._setup_connection_handlers()

    def _setup_connection_handlers(self):
        @self.pc.on("connectionstatechange")
        async def on_connection_state_change():
            state = self.pc.connectionState
            if state in ["failed", "closed", "disconnected"]:
                self._mark_closed()

        @self.pc.on("datachannel")
        def on_datachannel(channel: RTCDataChannel):
            self.data_channel = channel
            self._setup_data_channel_handlers(channel)

    def _setup_data_channel_handlers(self, channel: RTCDataChannel):
        @channel.on("open")
        def on_open():
            self.is_connected = True
            self.last_seen = time.monotonic()
            if self.on_open_callback:
                self.on_open_callback()

        @channel.on("message")
        def on_message(message):
            self.last_seen = time.monotonic()
            if isinstance(message, bytes):
                message = message.decode("utf-8", errors="replace")

            if message == PING:
                self._send_raw(PONG)
                return
            if message == PONG:
                return

            full_message = self._assembler.feed(message)
            if full_message is not None and self.on_message_callback:
                self.on_message_callback(full_message)

        @channel.on("close")
        def on_close():
            self._mark_closed()

    def _mark_closed(self):
        was_connected = self.is_connected
        self.is_connected = False
        if was_connected and self.on_close_callback:
            self.on_close_callback()

    async def create_offer(self) -> dict:
        self.data_channel = self.pc.createDataChannel("journalsync")
        self._setup_data_channel_handlers(self.data_channel)
        offer = await self.pc.createOffer()
        await self.pc.setLocalDescription(offer)
        return {
            "type": "offer",
            "sdp": self.pc.localDescription.sdp
        }

    async def handle_offer(self, offer_sdp: str) -> dict:
        await self.pc.setRemoteDescription(
            RTCSessionDescription(sdp=offer_sdp, type="offer")
        )
        answer = await self.pc.createAnswer()
        await self.pc.setLocalDescription(answer)
        return {
            "type": "answer",
            "sdp": self.pc.localDescription.sdp
        }

    async def handle_answer(self, answer_sdp: str):
        await self.pc.setRemoteDescription(
            RTCSessionDescription(sdp=answer_sdp, type="answer")
        )

    def _send_raw(self, frame: str) -> bool:
        if not self.data_channel or self.data_channel.readyState != "open":
            return False
        self.data_channel.send(frame)
        return True

    def send_message(self, message: str) -> bool:
        if not self.data_channel or self.data_channel.readyState != "open":
            return False
        try:
            for frame in split_message(message):
                self.data_channel.send(frame)
            return True
        except Exception as e:
            logger.warning(f"Send to {self.peer_id} failed: {e}")
            return False

    def send_ping(self) -> bool:
        return self._send_raw(PING)

    def is_alive(self, timeout: float = 20.0) -> bool:
        return time.monotonic() - self.last_seen <= timeout

    def on_message(self, callback: Callable[[str], None]):
        self.on_message_callback = callback

    def on_open(self, callback: Callable[[], None]):
        self.on_open_callback = callback

    def on_close(self, callback: Callable[[], None]):
        self.on_close_callback = callback

    async def close(self):
        if self.data_channel:
            self.data_channel.close()
        await self.pc.close()
        self.is_connected = False
