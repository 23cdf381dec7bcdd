"""
Direct peer channels.

WebRTC data channels between paired devices on the same network, with a
capability interface so the sync engine can run without them.
"""

from journalsync.network.network import DirectNetwork
from journalsync.network.peer import JournalPeer
from journalsync.network.provider import (
    DirectChannelProvider,
    NullDirectChannelProvider,
    WebRTCChannelProvider,
)

__all__ = [
    'DirectChannelProvider',
    'DirectNetwork',
    'JournalPeer',
    'NullDirectChannelProvider',
    'WebRTCChannelProvider',
]
