"""
Symmetric encryption for sync payloads.

Payloads are serialized to canonical JSON and sealed with Fernet
(AES-128-CBC + HMAC-SHA256). Fernet draws a fresh IV for every call and
embeds it in the token, so identical inputs never produce identical
ciphertext. The Fernet key is derived from the shared sync key with
HKDF-SHA256.

Shared sync keys are usually 64 hex characters (32 random bytes); any
other string is accepted and used as UTF-8 key material.
"""

from __future__ import annotations

import base64
import binascii
import json
import secrets
from datetime import date, datetime
from typing import Any

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives.hashes import SHA256
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from journalsync.errors import DecryptionError

_HKDF_INFO = b"journalsync:sync-payload:v1"
KEY_BYTES = 32
DEFAULT_ITERATIONS = 100_000


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def serialize(payload: Any) -> bytes:
    """Canonical JSON encoding: sorted keys, compact separators."""
    return json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=_json_default,
    ).encode("utf-8")


def _key_material(key: str) -> bytes:
    if len(key) == KEY_BYTES * 2:
        try:
            return bytes.fromhex(key)
        except ValueError:
            pass
    return key.encode("utf-8")


def _fernet(key: str) -> Fernet:
    if not isinstance(key, str) or not key:
        raise ValueError("encryption key must be a non-empty string")

    hkdf = HKDF(algorithm=SHA256(), length=KEY_BYTES, salt=None, info=_HKDF_INFO)
    derived = hkdf.derive(_key_material(key))
    return Fernet(base64.urlsafe_b64encode(derived))


def encrypt(payload: Any, key: str) -> str:
    """Encrypt any JSON-serializable payload; returns a self-contained token."""
    return _fernet(key).encrypt(serialize(payload)).decode("ascii")


def decrypt(ciphertext: str, key: str) -> Any:
    """Inverse of :func:`encrypt`.

    Raises:
        DecryptionError: wrong key, tampered or truncated token, or a
            plaintext that is not JSON.
    """
    if isinstance(ciphertext, str):
        token = ciphertext.encode("ascii", errors="replace")
    elif isinstance(ciphertext, (bytes, bytearray)):
        token = bytes(ciphertext)
    else:
        raise DecryptionError(f"Cannot decrypt {type(ciphertext).__name__}")

    try:
        plaintext = _fernet(key).decrypt(token)
    except (InvalidToken, binascii.Error) as exc:
        raise DecryptionError("Decryption failed - invalid key or corrupted data") from exc
    except ValueError as exc:
        raise DecryptionError(f"Decryption failed: {exc}") from exc

    try:
        return json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DecryptionError("Decrypted payload is not valid JSON") from exc


def derive_key(passphrase: str, salt: str, iterations: int = DEFAULT_ITERATIONS) -> str:
    """Stretch a passphrase into a 64-hex-character key with PBKDF2-HMAC-SHA256."""
    kdf = PBKDF2HMAC(
        algorithm=SHA256(),
        length=KEY_BYTES,
        salt=salt.encode("utf-8"),
        iterations=iterations,
    )
    return kdf.derive(passphrase.encode("utf-8")).hex()


def generate_salt() -> str:
    return secrets.token_hex(16)


def generate_sync_key() -> str:
    return secrets.token_hex(KEY_BYTES)
