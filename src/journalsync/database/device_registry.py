import logging
import threading
from typing import Dict, List, Optional

from journalsync.models.devices import PairedDevice
from journalsync.utils.file_manager import FileManager

logger = logging.getLogger(__name__)

PAIRED_DEVICES_DOCUMENT = "paired_devices"
SYNC_KEYS_DOCUMENT = "sync_keys"


class DeviceRegistry:
    """Paired devices and the shared sync key held for each of them."""

    def __init__(self, files: FileManager):
        self.files = files
        self._lock = threading.RLock()

    def get_paired_devices(self) -> List[PairedDevice]:
        with self._lock:
            raw = self.files.read_json(PAIRED_DEVICES_DOCUMENT, default=[])
        return [PairedDevice.from_dict(item) for item in raw if isinstance(item, dict) and item.get("id")]

    def get_device(self, device_id: str) -> Optional[PairedDevice]:
        for device in self.get_paired_devices():
            if device.id == device_id:
                return device
        return None

    def is_paired(self, device_id: str) -> bool:
        return self.get_device(device_id) is not None

    def _save_devices(self, devices: List[PairedDevice]) -> None:
        self.files.write_json(
            PAIRED_DEVICES_DOCUMENT, [device.to_dict() for device in devices])

    def upsert(self, device: PairedDevice) -> bool:
        """Replace the record with the same id in place, or append. Returns True if appended."""
        with self._lock:
            devices = self.get_paired_devices()
            for index, existing in enumerate(devices):
                if existing.id == device.id:
                    devices[index] = device
                    self._save_devices(devices)
                    return False
            devices.append(device)
            self._save_devices(devices)
            return True

    def update_last_sync(self, device_id: str, when: str) -> bool:
        with self._lock:
            devices = self.get_paired_devices()
            updated = False
            for index, existing in enumerate(devices):
                if existing.id == device_id:
                    devices[index] = existing.with_last_sync(when)
                    updated = True
            if updated:
                self._save_devices(devices)
            return updated

    def _keys(self) -> Dict[str, str]:
        return self.files.read_json(SYNC_KEYS_DOCUMENT, default={})

    def get_sync_key(self, device_id: str) -> Optional[str]:
        with self._lock:
            return self._keys().get(device_id)

    def set_sync_key(self, device_id: str, sync_key: str) -> None:
        with self._lock:
            keys = self._keys()
            if keys.get(device_id) == sync_key:
                return
            keys[device_id] = sync_key
            self.files.write_json(SYNC_KEYS_DOCUMENT, keys, private=True)
        logger.debug(f"Stored shared sync key for {device_id}")
