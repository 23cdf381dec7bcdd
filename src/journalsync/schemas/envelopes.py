"""
Wire shapes exchanged between paired devices.

Everything written to ``mailbox/{deviceId}`` in the relay store, or sent
over a direct channel, is decoded exactly once by :func:`decode_envelope`
into one of ``PairingConfirmation``, ``SyncRequest`` or ``SyncResponse``.
"""

import json
import time
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from journalsync.errors import InvalidPairingData, MalformedEnvelope
from journalsync.models.snapshot import utc_now_iso

PAIRING_CONFIRMATION = "pairing_confirmation"
DIRECT_SYNC = "sync"


def epoch_ms() -> int:
    return int(time.time() * 1000)


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_json(self) -> str:
        return json.dumps(self.to_wire())


class PairingPayload(_WireModel):
    """Data embedded in a QR code or a copy-pasted pairing code."""
    device_id: str = Field(alias="deviceId", min_length=1)
    sync_key: str = Field(alias="syncKey", min_length=1)
    device_name: Optional[str] = Field(default=None, alias="deviceName")
    timestamp: str = Field(default_factory=utc_now_iso)

    @field_validator("device_id", "sync_key", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @classmethod
    def parse(cls, code: Union[str, bytes, Dict[str, Any], "PairingPayload"]) -> "PairingPayload":
        if isinstance(code, PairingPayload):
            return code

        if isinstance(code, (str, bytes)):
            try:
                code = json.loads(code)
            except (json.JSONDecodeError, UnicodeDecodeError) as exc:
                raise InvalidPairingData("Invalid pairing code format - not valid JSON") from exc

        if not isinstance(code, dict):
            raise InvalidPairingData("Invalid pairing code - expected a JSON object")

        if not code.get("deviceId") or not code.get("syncKey"):
            raise InvalidPairingData(
                "Missing required pairing information (deviceId or syncKey)")

        try:
            return cls.model_validate(code)
        except ValidationError as exc:
            raise InvalidPairingData(f"Invalid pairing code: {exc.errors()[0]['msg']}") from exc


class PairingConfirmation(_WireModel):
    type: str = PAIRING_CONFIRMATION
    from_device: str = Field(alias="fromDevice", min_length=1)
    device_name: Optional[str] = Field(default=None, alias="deviceName")
    sync_key: str = Field(alias="syncKey", min_length=1)
    timestamp: int = Field(default_factory=epoch_ms)


class SyncRequest(_WireModel):
    data: str
    from_device: str = Field(alias="fromDevice", min_length=1)
    timestamp: int = Field(default_factory=epoch_ms)
    bidirectional: Optional[bool] = None

    @property
    def is_response(self) -> bool:
        return False

    @property
    def wants_response(self) -> bool:
        return bool(self.bidirectional)


class SyncResponse(_WireModel):
    data: str
    from_device: str = Field(alias="fromDevice", min_length=1)
    timestamp: int = Field(default_factory=epoch_ms)
    is_response: bool = Field(default=True, alias="isResponse")

    @property
    def wants_response(self) -> bool:
        return False


class DirectSyncMessage(_WireModel):
    """Sync message sent over a direct channel; delivery is final."""
    type: str = DIRECT_SYNC
    data: str
    from_device: str = Field(alias="fromDevice", min_length=1)
    timestamp: int = Field(default_factory=epoch_ms)


Envelope = Union[PairingConfirmation, SyncRequest, SyncResponse]


def decode_envelope(raw: Union[str, bytes, Dict[str, Any]]) -> Envelope:
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise MalformedEnvelope("Envelope is not valid JSON") from exc

    if not isinstance(raw, dict):
        raise MalformedEnvelope("Envelope must be a JSON object")

    try:
        if raw.get("type") == PAIRING_CONFIRMATION:
            return PairingConfirmation.model_validate(raw)
        if "data" not in raw:
            raise MalformedEnvelope(f"Unknown envelope shape: {sorted(raw)}")
        if raw.get("isResponse"):
            return SyncResponse.model_validate(raw)
        if raw.get("type") == DIRECT_SYNC:
            raw = {**raw, "bidirectional": False}
        return SyncRequest.model_validate(raw)
    except ValidationError as exc:
        raise MalformedEnvelope(f"Invalid envelope: {exc.errors()[0]['msg']}") from exc
