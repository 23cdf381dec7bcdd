from datetime import datetime, timezone

import pytest

from journalsync.errors import DecryptionError
from journalsync.utils import crypto

KEY = crypto.generate_sync_key()


@pytest.mark.parametrize("payload", [
    {"entries": [{"id": "e1", "timestamp": 100, "text": "hi"}], "expenses": [], "actionItems": []},
    ["a", 1, 2.5, None, True],
    "plain text with unicode: café ✓",
    0,
    {},
])
def test_round_trip(payload):
    assert crypto.decrypt(crypto.encrypt(payload, KEY), KEY) == payload


def test_round_trip_with_non_hex_key():
    key = "k3jd92kslq0x8zm1n2b3v4c5x6z7"
    assert crypto.decrypt(crypto.encrypt({"a": 1}, key), key) == {"a": 1}


def test_encrypt_is_not_deterministic():
    payload = {"id": "e1", "text": "same"}
    assert crypto.encrypt(payload, KEY) != crypto.encrypt(payload, KEY)


def test_wrong_key_raises():
    token = crypto.encrypt({"secret": True}, KEY)
    with pytest.raises(DecryptionError):
        crypto.decrypt(token, crypto.generate_sync_key())


def test_tampered_token_raises():
    token = crypto.encrypt({"secret": True}, KEY)
    flipped = token[:-5] + ("A" if token[-5] != "A" else "B") + token[-4:]
    with pytest.raises(DecryptionError):
        crypto.decrypt(flipped, KEY)


@pytest.mark.parametrize("garbage", ["", "not-a-token", "00ff" * 20, 12345, None])
def test_garbage_raises(garbage):
    with pytest.raises(DecryptionError):
        crypto.decrypt(garbage, KEY)


def test_empty_key_is_rejected_on_decrypt():
    token = crypto.encrypt({"a": 1}, KEY)
    with pytest.raises(DecryptionError):
        crypto.decrypt(token, "")


def test_serialize_is_canonical():
    assert crypto.serialize({"b": 1, "a": [2, 1]}) == crypto.serialize({"a": [2, 1], "b": 1})
    assert crypto.serialize({"b": 1, "a": 2}) == b'{"a":2,"b":1}'


def test_datetimes_are_serialized_as_iso_strings():
    moment = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)
    token = crypto.encrypt({"timestamp": moment}, KEY)
    assert crypto.decrypt(token, KEY) == {"timestamp": "2024-05-01T12:30:00+00:00"}


def test_derive_key_is_deterministic():
    first = crypto.derive_key("correct horse", "salt-1", iterations=1000)
    second = crypto.derive_key("correct horse", "salt-1", iterations=1000)
    assert first == second
    assert len(first) == 64


def test_derive_key_depends_on_passphrase_and_salt():
    base = crypto.derive_key("correct horse", "salt-1", iterations=1000)
    assert crypto.derive_key("battery staple", "salt-1", iterations=1000) != base
    assert crypto.derive_key("correct horse", "salt-2", iterations=1000) != base


def test_derived_key_encrypts():
    key = crypto.derive_key("passphrase", crypto.generate_salt(), iterations=1000)
    assert crypto.decrypt(crypto.encrypt([1, 2, 3], key), key) == [1, 2, 3]


def test_generated_keys_are_unique_hex():
    keys = {crypto.generate_sync_key() for _ in range(5)}
    assert len(keys) == 5
    for key in keys:
        assert len(key) == 64
        int(key, 16)
