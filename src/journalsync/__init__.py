"""Peer device pairing and encrypted sync for a personal journal."""

from journalsync.config import JournalSyncConfig, RelayConfig
from journalsync.services.engine import SyncEngine

__version__ = "0.1.0"

__all__ = [
    'JournalSyncConfig',
    'RelayConfig',
    'SyncEngine',
]
