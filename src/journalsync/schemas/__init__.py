from journalsync.schemas.envelopes import (
    DirectSyncMessage,
    Envelope,
    PairingConfirmation,
    PairingPayload,
    SyncRequest,
    SyncResponse,
    decode_envelope,
)
from journalsync.schemas.records import ActionItem, Entry, Expense

__all__ = [
    'ActionItem',
    'DirectSyncMessage',
    'Entry',
    'Envelope',
    'Expense',
    'PairingConfirmation',
    'PairingPayload',
    'SyncRequest',
    'SyncResponse',
    'decode_envelope',
]
