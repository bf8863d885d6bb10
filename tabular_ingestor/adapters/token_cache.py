"""Bearer-token caching for service-account credentials."""

from __future__ import annotations

import hashlib
import time
from dataclasses import dataclass
from threading import Lock
from typing import Protocol

from cachetools import TLRUCache

EXPIRY_MARGIN_SECONDS = 60
DEFAULT_MAX_ENTRIES = 64


@dataclass(frozen=True, slots=True)
class AccessToken:
    value: str
    expires_at: float  # epoch seconds


class TokenCache(Protocol):
    """Keyed by credential fingerprint; ``get`` returns None once a token nears expiry."""

    def get(self, key: str) -> AccessToken | None: ...

    def put(self, key: str, token: AccessToken) -> None: ...


def _time_to_use(_key: str, token: AccessToken, _now: float) -> float:
    return token.expires_at - EXPIRY_MARGIN_SECONDS


class InMemoryTokenCache:
    """Thread-safe in-process cache that drops tokens 60 seconds before expiry."""

    def __init__(self, *, maxsize: int = DEFAULT_MAX_ENTRIES, timer=time.time) -> None:
        self._store: TLRUCache[str, AccessToken] = TLRUCache(
            maxsize=maxsize, ttu=_time_to_use, timer=timer
        )
        self._lock = Lock()

    def get(self, key: str) -> AccessToken | None:
        with self._lock:
            return self._store.get(key)

    def put(self, key: str, token: AccessToken) -> None:
        with self._lock:
            self._store[key] = token

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        with self._lock:
            self._store.expire()
            return len(self._store)


def credential_fingerprint(client_email: str, private_key: str) -> str:
    return hashlib.sha256(f"{client_email}|{private_key}".encode()).hexdigest()


_default_cache = InMemoryTokenCache()


def get_default_token_cache() -> InMemoryTokenCache:
    return _default_cache
