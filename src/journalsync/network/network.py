import asyncio
import json
import logging
import socket
from typing import Callable, Dict, List, Optional, Tuple

from journalsync.network.peer import JournalPeer

logger = logging.getLogger(__name__)

DELIM = b"\n---END_SDP---\n"
BROADCAST_MSG = b"JOURNALSYNC_DISCOVER"
ANNOUNCE_PREFIX = b"JOURNALSYNC_ANNOUNCE:"
DEFAULT_SIGNAL_PORT = 9999


def parse_announce(data: bytes) -> Optional[Tuple[str, int]]:
    """``JOURNALSYNC_ANNOUNCE:<device_id>:<port>`` -> (device_id, port)."""
    if not data.startswith(ANNOUNCE_PREFIX):
        return None
    try:
        device_id, port = data[len(ANNOUNCE_PREFIX):].decode().rsplit(":", 1)
        return device_id, int(port)
    except (UnicodeDecodeError, ValueError):
        return None


class DirectNetwork:
    """LAN discovery plus TCP signaling for WebRTC data channels between paired devices.

    Peers are keyed by device id. An offer from a device id that
    ``is_trusted`` rejects is dropped and its socket closed without an answer.
    """

    def __init__(self, device_id: str, signaling_port: int = DEFAULT_SIGNAL_PORT,
                 device_name: Optional[str] = None,
                 is_trusted: Optional[Callable[[str], bool]] = None):
        self.device_id = device_id
        self.signaling_port = signaling_port
        self.device_name = device_name or socket.gethostname()
        self.is_trusted = is_trusted or (lambda _device_id: False)
        self.peers: Dict[str, JournalPeer] = {}
        self.addresses: Dict[str, Tuple[str, int]] = {}
        self.server: Optional[asyncio.Server] = None
        self.udp_responder_task: Optional[asyncio.Task] = None
        self.heartbeat_task: Optional[asyncio.Task] = None
        self.running = False
        self.on_peer_connected_callback: Optional[Callable[[JournalPeer, bool], None]] = None
        self.on_peer_disconnected_callback: Optional[Callable[[str], None]] = None
        self.on_message_callback: Optional[Callable[[str, str], None]] = None

    def get_local_ip(self) -> str:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            s.connect(("8.8.8.8", 80))
            return s.getsockname()[0]
        except OSError:
            return "127.0.0.1"
        finally:
            s.close()

    async def udp_discover(self, timeout: float = 2.0) -> Dict[str, Tuple[str, int]]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._udp_discover_sync, timeout)

    def _udp_discover_sync(self, timeout: float) -> Dict[str, Tuple[str, int]]:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        sock.settimeout(timeout)

        found: Dict[str, Tuple[str, int]] = {}
        try:
            sock.sendto(BROADCAST_MSG, ("255.255.255.255", self.signaling_port))

            parts = self.get_local_ip().split(".")
            if len(parts) == 4:
                subnet_bcast = f"{parts[0]}.{parts[1]}.{parts[2]}.255"
                try:
                    sock.sendto(BROADCAST_MSG, (subnet_bcast, self.signaling_port))
                except OSError:
                    pass

            while True:
                try:
                    data, addr = sock.recvfrom(1024)
                except socket.timeout:
                    break

                announced = parse_announce(data)
                if announced is None:
                    continue
                device_id, port = announced
                if device_id != self.device_id:
                    found[device_id] = (addr[0], port)
        finally:
            sock.close()

        self.addresses.update(found)
        return found

    async def udp_responder(self):
        loop = asyncio.get_running_loop()
        reply = ANNOUNCE_PREFIX + f"{self.device_id}:{self.signaling_port}".encode()

        def udp_responder_sync():
            s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            try:
                s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                s.bind(("", self.signaling_port))
                s.settimeout(1.0)

                while self.running:
                    try:
                        data, addr = s.recvfrom(1024)
                        if data == BROADCAST_MSG:
                            s.sendto(reply, addr)
                    except socket.timeout:
                        continue
                    except OSError:
                        break
            finally:
                s.close()

        await loop.run_in_executor(None, udp_responder_sync)

    async def handle_signaling(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        try:
            raw = await asyncio.wait_for(reader.readuntil(DELIM), timeout=10.0)
            obj = json.loads(raw[:-len(DELIM)].decode())

            if obj.get("type") != "offer":
                return

            remote_id = obj.get("device_id")
            if not remote_id or not self.is_trusted(remote_id):
                logger.warning(f"Rejecting connection from unpaired device: {remote_id}")
                return

            existing = self.peers.get(remote_id)
            if existing and existing.is_connected:
                return

            peer = JournalPeer(peer_id=remote_id, peer_name=obj.get("device_name", "Unknown"))
            self._setup_peer_callbacks(peer, outbound=False)
            answer = await peer.handle_offer(obj["sdp"])

            answer_with_meta = {
                **answer,
                "device_id": self.device_id,
                "device_name": self.device_name,
            }
            writer.write(json.dumps(answer_with_meta).encode() + DELIM)
            await writer.drain()

            self.peers[remote_id] = peer

        except (asyncio.TimeoutError, asyncio.IncompleteReadError):
            pass
        except (ValueError, KeyError, OSError) as e:
            logger.warning(f"Signaling error: {e}")
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass

    async def connect_to_device(self, device_id: str) -> bool:
        existing = self.peers.get(device_id)
        if existing and existing.is_connected:
            return True

        address = self.addresses.get(device_id)
        if address is None:
            await self.udp_discover()
            address = self.addresses.get(device_id)
        if address is None:
            logger.debug(f"Device {device_id} not found on the local network")
            return False

        ip, port = address
        peer = JournalPeer(peer_id=device_id)
        try:
            self._setup_peer_callbacks(peer, outbound=True)
            offer = await peer.create_offer()

            offer_with_meta = {
                **offer,
                "device_id": self.device_id,
                "device_name": self.device_name,
            }

            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(ip, port), timeout=5.0)
            try:
                writer.write(json.dumps(offer_with_meta).encode() + DELIM)
                await writer.drain()
                raw = await asyncio.wait_for(reader.readuntil(DELIM), timeout=5.0)
            finally:
                writer.close()

            answer_obj = json.loads(raw[:-len(DELIM)].decode())
            if answer_obj.get("type") != "answer" or answer_obj.get("device_id") != device_id:
                await peer.close()
                return False

            peer.peer_name = answer_obj.get("device_name", peer.peer_name)
            await peer.handle_answer(answer_obj["sdp"])
            self.peers[device_id] = peer
            return True

        except (asyncio.TimeoutError, asyncio.IncompleteReadError, OSError, ValueError, KeyError) as e:
            logger.debug(f"Direct connection to {device_id} failed: {e}")
            await peer.close()
            return False

    def _setup_peer_callbacks(self, peer: JournalPeer, outbound: bool):
        def on_message(message: str):
            if self.on_message_callback:
                self.on_message_callback(peer.peer_id, message)

        def on_open():
            logger.info(f"Direct channel open: {peer.peer_name} ({peer.peer_id})")
            if self.on_peer_connected_callback:
                self.on_peer_connected_callback(peer, outbound)

        def on_close():
            if self.peers.get(peer.peer_id) is peer:
                del self.peers[peer.peer_id]
            if self.on_peer_disconnected_callback:
                self.on_peer_disconnected_callback(peer.peer_id)

        peer.on_message(on_message)
        peer.on_open(on_open)
        peer.on_close(on_close)

    async def heartbeat_loop(self):
        while self.running:
            await asyncio.sleep(5.0)

            for peer_id, peer in list(self.peers.items()):
                if not peer.is_connected:
                    continue
                if peer.is_alive(timeout=20.0):
                    peer.send_ping()
                else:
                    logger.info(f"Peer {peer_id} timed out")
                    await peer.close()
                    self.peers.pop(peer_id, None)
                    if self.on_peer_disconnected_callback:
                        self.on_peer_disconnected_callback(peer_id)

    async def start(self):
        self.running = True
        self.udp_responder_task = asyncio.create_task(self.udp_responder())
        self.heartbeat_task = asyncio.create_task(self.heartbeat_loop())

        self.server = await asyncio.start_server(
            self.handle_signaling, "0.0.0.0", self.signaling_port
        )

    def send_to_peer(self, peer_id: str, message: str) -> bool:
        peer = self.peers.get(peer_id)
        if peer and peer.is_connected:
            return peer.send_message(message)
        return False

    def is_connected(self, peer_id: str) -> bool:
        peer = self.peers.get(peer_id)
        return bool(peer and peer.is_connected)

    def get_connected_peers(self) -> List[JournalPeer]:
        return [peer for peer in self.peers.values() if peer.is_connected]

    def on_peer_connected(self, callback: Callable[[JournalPeer, bool], None]):
        self.on_peer_connected_callback = callback

    def on_peer_disconnected(self, callback: Callable[[str], None]):
        self.on_peer_disconnected_callback = callback

    def on_message(self, callback: Callable[[str, str], None]):
        self.on_message_callback = callback

    async def stop(self):
        self.running = False

        if self.server:
            self.server.close()
            await self.server.wait_closed()
            self.server = None

        for task in (self.udp_responder_task, self.heartbeat_task):
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self.udp_responder_task = None
        self.heartbeat_task = None

        for peer in list(self.peers.values()):
            await peer.close()
        self.peers.clear()
