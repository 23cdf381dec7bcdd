import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    PAIRED = "paired"
    PEER_ONLINE = "peer_online"
    PEER_OFFLINE = "peer_offline"
    SYNC_SENT = "sync_sent"
    SYNC_MERGED = "sync_merged"
    SYNC_FAILED = "sync_failed"
    RELAY_DROPPED = "relay_dropped"


@dataclass(frozen=True)
class SyncEvent:
    kind: EventKind
    peer_id: str
    detail: Dict[str, Any] = field(default_factory=dict)


class EventBus:
    """Fan-out of engine events to any number of subscriber queues."""

    def __init__(self, maxsize: int = 100):
        self.maxsize = maxsize
        self._subscribers: List[asyncio.Queue] = []
        self.history: List[SyncEvent] = []

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.maxsize)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def publish(self, kind: EventKind, peer_id: str, **detail: Any) -> SyncEvent:
        event = SyncEvent(kind=kind, peer_id=peer_id, detail=detail)
        self.history.append(event)
        del self.history[:-self.maxsize]

        for queue in self._subscribers:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"Event subscriber full, dropping {kind.value}")
        return event

    def last(self, kind: Optional[EventKind] = None) -> Optional[SyncEvent]:
        for event in reversed(self.history):
            if kind is None or event.kind == kind:
                return event
        return None
