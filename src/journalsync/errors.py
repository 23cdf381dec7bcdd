"""Exceptions raised by the sync engine."""

from typing import Optional


class JournalSyncError(Exception):
    """Base exception for sync engine errors."""

    pass


class IdentityUnavailable(JournalSyncError):
    """The device identity could not be loaded or persisted."""

    pass


class InvalidPairingData(JournalSyncError):
    """A scanned or pasted pairing code is not usable."""

    pass


class NoSharedKey(JournalSyncError):
    """No shared sync key is stored for the peer (pairing incomplete)."""

    def __init__(self, peer_id: str):
        super().__init__(f"No shared sync key for device {peer_id}; pair again")
        self.peer_id = peer_id


class DecryptionError(JournalSyncError):
    """Ciphertext could not be decrypted with the given key."""

    pass


class MalformedEnvelope(JournalSyncError):
    """A relay or direct-channel message does not match any known shape."""

    pass


class TransportUnavailable(JournalSyncError):
    """The direct channel could not deliver a message."""

    pass


class RelayUploadError(JournalSyncError):
    """Writing to the relay store failed.

    ``reason`` is one of ``STORE_MISSING``, ``PERMISSION_DENIED`` or
    ``UNKNOWN`` so callers can route the user toward a configuration fix
    or a retry.
    """

    STORE_MISSING = "store_missing"
    PERMISSION_DENIED = "permission_denied"
    UNKNOWN = "unknown"

    _HINTS = {
        STORE_MISSING: "relay store is not reachable; check REDIS_URI / REDIS_HOST",
        PERMISSION_DENIED: "relay store rejected the write; check REDIS_PASSWORD and ACLs",
        UNKNOWN: "relay upload failed; try again",
    }

    def __init__(self, reason: str, cause: Optional[BaseException] = None):
        hint = self._HINTS.get(reason, self._HINTS[self.UNKNOWN])
        message = f"{hint} ({cause})" if cause is not None else hint
        super().__init__(message)
        self.reason = reason
        self.cause = cause

    @property
    def retryable(self) -> bool:
        return self.reason == self.UNKNOWN
