"""Agent shared-secret generation, hashing and request extraction."""

from __future__ import annotations

import hashlib
import hmac
import secrets

AGENT_KEY_HEADER = "x-agent-key"
HINT_LENGTH = 6


def generate_agent_key() -> str:
    return secrets.token_urlsafe(32)


def hash_agent_key(key: str) -> str:
    """Return the sha256 hex digest stored in place of the raw secret."""

    return hashlib.sha256(key.strip().encode("utf-8")).hexdigest()


def agent_key_hint(key: str) -> str:
    return f"...{key.strip()[-HINT_LENGTH:]}"


def verify_agent_key(candidate: str, stored_hash: str | None) -> bool:
    if not stored_hash or not candidate.strip():
        return False
    return hmac.compare_digest(hash_agent_key(candidate), stored_hash)


def extract_agent_key(
    *,
    header_key: str | None,
    authorization: str | None,
    body_key: str | None,
) -> str | None:
    """Pick the secret from the agent header, then a bearer token, then the form body."""

    if header_key and header_key.strip():
        return header_key.strip()
    if authorization:
        scheme, _, token = authorization.strip().partition(" ")
        if scheme.lower() == "bearer" and token.strip():
            return token.strip()
    if body_key and body_key.strip():
        return body_key.strip()
    return None
