from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class DeviceIdentity:
    """Anonymous identity of this installation. ``local_key`` never leaves the device."""
    device_id: str
    local_key: str


class PeerState(str, Enum):
    UNKNOWN = "unknown"
    PAIRED = "paired"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class PairedDevice:
    """A trusted peer, keyed by its device id."""
    id: str
    display_name: str
    paired_at: str
    last_sync_at: Optional[str] = None

    def with_last_sync(self, when: str) -> "PairedDevice":
        return replace(self, last_sync_at=when)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "name": self.display_name,
            "pairedAt": self.paired_at,
        }
        if self.last_sync_at:
            data["lastSyncAt"] = self.last_sync_at
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PairedDevice":
        return cls(
            id=data["id"],
            display_name=data.get("name") or "Unknown Device",
            paired_at=data.get("pairedAt", ""),
            last_sync_at=data.get("lastSyncAt"),
        )
