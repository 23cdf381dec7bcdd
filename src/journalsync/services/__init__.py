"""Service layer for journalsync."""

from journalsync.services.engine import SyncEngine
from journalsync.services.events import EventBus, EventKind, SyncEvent
from journalsync.services.merge import MergeResolver, merge_records
from journalsync.services.pairing_service import PairingManager
from journalsync.services.relay_service import RelayService, classify_relay_error
from journalsync.services.sync_service import SyncOrchestrator, SyncResult
from journalsync.services.transport import TransportSelector

__all__ = [
    "EventBus",
    "EventKind",
    "MergeResolver",
    "PairingManager",
    "RelayService",
    "SyncEngine",
    "SyncEvent",
    "SyncOrchestrator",
    "SyncResult",
    "TransportSelector",
    "classify_relay_error",
    "merge_records",
]
