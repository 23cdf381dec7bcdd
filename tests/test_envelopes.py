import json

import pytest

from journalsync.errors import InvalidPairingData, MalformedEnvelope
from journalsync.schemas.envelopes import (
    DirectSyncMessage,
    PairingConfirmation,
    PairingPayload,
    SyncRequest,
    SyncResponse,
    decode_envelope,
)
from journalsync.schemas.records import ActionItem, Entry, Expense


def test_pairing_payload_uses_wire_names():
    payload = PairingPayload(device_id="d_1", sync_key="abc", device_name="Laptop")
    wire = payload.to_wire()
    assert wire["deviceId"] == "d_1"
    assert wire["syncKey"] == "abc"
    assert wire["deviceName"] == "Laptop"
    assert "timestamp" in wire


def test_pairing_payload_parse_strips_whitespace():
    payload = PairingPayload.parse('{"deviceId": " d_1 ", "syncKey": "abc\\n", "extra": 1}')
    assert payload.device_id == "d_1"
    assert payload.sync_key == "abc"
    assert payload.device_name is None


@pytest.mark.parametrize("code", ["{", "[]", "null", b"\xff\xfe", '{"deviceId": "d_1"}'])
def test_pairing_payload_parse_rejects(code):
    with pytest.raises(InvalidPairingData):
        PairingPayload.parse(code)


def test_decode_pairing_confirmation():
    raw = json.dumps({
        "type": "pairing_confirmation",
        "fromDevice": "d_2",
        "deviceName": "Phone",
        "syncKey": "k",
        "timestamp": 1700000000000,
    })
    envelope = decode_envelope(raw)
    assert isinstance(envelope, PairingConfirmation)
    assert envelope.from_device == "d_2"
    assert envelope.sync_key == "k"


def test_decode_sync_request():
    envelope = decode_envelope({"data": "tok", "fromDevice": "d_2", "timestamp": 5, "bidirectional": True})
    assert isinstance(envelope, SyncRequest)
    assert envelope.wants_response
    assert not envelope.is_response


def test_decode_sync_request_without_flag_wants_no_response():
    envelope = decode_envelope({"data": "tok", "fromDevice": "d_2", "timestamp": 5})
    assert isinstance(envelope, SyncRequest)
    assert not envelope.wants_response


def test_decode_sync_response():
    envelope = decode_envelope({"data": "tok", "fromDevice": "d_2", "timestamp": 5, "isResponse": True})
    assert isinstance(envelope, SyncResponse)
    assert envelope.is_response
    assert not envelope.wants_response


def test_direct_message_is_never_answered():
    message = DirectSyncMessage(data="tok", from_device="d_2")
    wire = json.loads(message.to_json())
    assert wire["type"] == "sync"

    wire["bidirectional"] = True
    envelope = decode_envelope(wire)
    assert isinstance(envelope, SyncRequest)
    assert not envelope.wants_response


def test_response_serializes_flag():
    wire = SyncResponse(data="tok", from_device="d_1").to_wire()
    assert wire["isResponse"] is True
    assert wire["fromDevice"] == "d_1"


@pytest.mark.parametrize("raw", [
    "not json",
    "[1, 2]",
    json.dumps({"fromDevice": "d_2"}),
    json.dumps({"type": "pairing_confirmation", "fromDevice": "d_2"}),
    json.dumps({"data": "tok"}),
    json.dumps({"data": "tok", "fromDevice": ""}),
])
def test_decode_rejects_malformed(raw):
    with pytest.raises(MalformedEnvelope):
        decode_envelope(raw)


def test_record_schemas_generate_prefixed_ids():
    entry = Entry(text="hello", timestamp="2024-01-01T00:00:00Z")
    expense = Expense(entryId=entry.id, amount=12.5, currency="EUR", description="lunch")
    item = ActionItem(entryId=entry.id, title="call bank")

    assert entry.id.startswith("e_")
    assert expense.id.startswith("x_")
    assert item.id.startswith("a_")
    assert item.to_record()["entryId"] == entry.id
    assert item.to_record()["completed"] is False
