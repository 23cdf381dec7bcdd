from journalsync.database.device_registry import DeviceRegistry
from journalsync.database.identity_store import IdentityStore
from journalsync.database.record_store import RecordStore
from journalsync.database.relay_manager import RedisRelayManager, RelayStore, mailbox_key

__all__ = [
    'DeviceRegistry',
    'IdentityStore',
    'RecordStore',
    'RedisRelayManager',
    'RelayStore',
    'mailbox_key',
]
