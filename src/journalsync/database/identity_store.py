import logging
import secrets
import socket
from pathlib import Path
from typing import Optional

import ulid

from journalsync.errors import IdentityUnavailable
from journalsync.models.devices import DeviceIdentity
from journalsync.utils.file_manager import FileManager

logger = logging.getLogger(__name__)

IDENTITY_DOCUMENT = "identity"


class IdentityStore:

    def __init__(self, files: Optional[FileManager] = None, base_dir: Optional[Path] = None):
        self._base_dir = base_dir
        self._files = files
        self._identity: Optional[DeviceIdentity] = None

    def _file_manager(self) -> FileManager:
        if self._files is None:
            self._files = FileManager(self._base_dir)
        return self._files

    def ensure_identity(self) -> DeviceIdentity:
        """Load the persisted identity, creating it on first use. Never regenerates."""
        if self._identity is not None:
            return self._identity

        try:
            files = self._file_manager()
            data = files.read_json(IDENTITY_DOCUMENT)
            if data is None:
                identity = DeviceIdentity(
                    device_id=f"d_{ulid.new()}",
                    local_key=secrets.token_hex(32),
                )
                files.write_json(
                    IDENTITY_DOCUMENT,
                    {"deviceId": identity.device_id, "localKey": identity.local_key},
                    private=True,
                )
                logger.info(f"Created device identity {identity.device_id}")
            else:
                identity = DeviceIdentity(
                    device_id=data["deviceId"], local_key=data["localKey"])
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise IdentityUnavailable(f"Device identity unavailable: {e}") from e

        self._identity = identity
        return identity

    @property
    def device_id(self) -> str:
        return self.ensure_identity().device_id

    def default_device_name(self, configured: Optional[str] = None) -> str:
        if configured:
            return configured
        hostname = socket.gethostname().split('.')[0]
        if hostname:
            return hostname
        return f"Device {self.device_id[:8]}"
