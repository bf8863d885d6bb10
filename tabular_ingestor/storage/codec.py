"""Row payload codec.

Every row write and read goes through a :class:`RowCodec`, so the
encryption toggle lives in one place instead of in each query.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

from ..exceptions import ConfigurationError
from ..utils.config import GlobalSettings, get_settings


def serialize_row(row: Mapping[str, Any]) -> bytes:
    """Canonical JSON bytes for a row map; key order follows the row."""

    return json.dumps(row, ensure_ascii=False, separators=(",", ":"), default=str).encode("utf-8")


def _looks_like_plain_json(payload: bytes) -> bool:
    return payload[:1] in (b"{", b"[")


class RowCodec(ABC):
    encrypted: bool = False

    @abstractmethod
    def encode_bytes(self, plaintext: bytes) -> bytes: ...

    @abstractmethod
    def decode_bytes(self, payload: bytes) -> bytes:
        """Return the plaintext JSON bytes stored in ``payload``."""

    def encode(self, row: Mapping[str, Any]) -> bytes:
        return self.encode_bytes(serialize_row(row))

    def decode(self, payload: bytes) -> dict[str, Any]:
        return json.loads(self.decode_bytes(payload))

    def is_encoded(self, payload: bytes) -> bool:
        """Whether ``payload`` is already in this codec's storage form."""

        return not self.encrypted


class PlainRowCodec(RowCodec):
    encrypted = False

    def encode_bytes(self, plaintext: bytes) -> bytes:
        return plaintext

    def decode_bytes(self, payload: bytes) -> bytes:
        return bytes(payload)


def derive_fernet_key(secret: str) -> bytes:
    """Use ``secret`` directly when it is a Fernet key, otherwise derive one with SHA-256."""

    candidate = secret.strip().encode("ascii", "ignore")
    if len(candidate) == 44:
        try:
            if len(base64.urlsafe_b64decode(candidate)) == 32:
                return candidate
        except (binascii.Error, ValueError):
            pass
    return base64.urlsafe_b64encode(hashlib.sha256(secret.encode("utf-8")).digest())


class FernetRowCodec(RowCodec):
    """Encrypts each row payload with a server-held key.

    Rows written before a key was configured are stored as plain JSON and are
    still readable.
    """

    encrypted = True

    def __init__(self, secret: str) -> None:
        if not secret or not secret.strip():
            raise ConfigurationError("Data encryption key must not be empty")
        self._fernet = Fernet(derive_fernet_key(secret))

    def encode_bytes(self, plaintext: bytes) -> bytes:
        return self._fernet.encrypt(plaintext)

    def decode_bytes(self, payload: bytes) -> bytes:
        raw = bytes(payload)
        try:
            return self._fernet.decrypt(raw)
        except InvalidToken:
            if _looks_like_plain_json(raw):
                return raw
            raise

    def is_encoded(self, payload: bytes) -> bool:
        return not _looks_like_plain_json(bytes(payload))


def build_row_codec(settings: GlobalSettings | None = None) -> RowCodec:
    settings = settings or get_settings()
    if settings.data_encryption_key:
        return FernetRowCodec(settings.data_encryption_key)
    return PlainRowCodec()
