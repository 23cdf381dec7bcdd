from journalsync.models.devices import DeviceIdentity, PairedDevice, PeerState
from journalsync.models.snapshot import SyncSnapshot

__all__ = [
    'DeviceIdentity',
    'PairedDevice',
    'PeerState',
    'SyncSnapshot',
]
