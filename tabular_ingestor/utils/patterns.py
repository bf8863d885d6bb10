"""Name-pattern matching and path normalization shared by scanners and push ingress."""

from __future__ import annotations

import re
from collections.abc import Iterable
from functools import lru_cache
from pathlib import PurePath
from typing import Any

_LIST_SPLIT = re.compile(r"[\r\n;,]+")
_PATTERN_SPLIT = re.compile(r"[;,]")
_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def normalize_list(value: Any) -> list[str]:
    """Accept a list or a delimited string and return trimmed, non-empty entries."""

    if value is None:
        return []
    if isinstance(value, str):
        items: Iterable[Any] = _LIST_SPLIT.split(value)
    elif isinstance(value, list | tuple | set):
        items = value
    else:
        items = [value]
    return [str(item).strip() for item in items if str(item).strip()]


def normalize_extensions(value: Any, default: Iterable[str]) -> list[str]:
    """Lowercase extensions with a leading dot; fall back to ``default`` when empty."""

    result: list[str] = []
    for item in normalize_list(value):
        ext = item.lower()
        if not ext.startswith("."):
            ext = f".{ext}"
        if ext not in result:
            result.append(ext)
    return result or list(default)


@lru_cache(maxsize=256)
def _compile_pattern(part: str) -> re.Pattern[str]:
    body = re.escape(part).replace(r"\*", ".*").replace(r"\?", ".")
    return re.compile(f"^{body}$", re.IGNORECASE)


def matches_pattern(file_name: str, pattern: str | None) -> bool:
    """Glob-style match using ``*`` and ``?``; several patterns may be separated by ``;`` or ``,``.

    An empty pattern or ``*`` matches everything.
    """

    if pattern is None or not pattern.strip() or pattern.strip() == "*":
        return True
    parts = [part.strip() for part in _PATTERN_SPLIT.split(pattern) if part.strip()]
    if not parts:
        return True
    return any(_compile_pattern(part).match(file_name) for part in parts)


def file_extension(file_name: str) -> str:
    return PurePath(file_name).suffix.lower()


def normalize_remote_path(value: str) -> str:
    """Normalize an agent-reported path to forward slashes without a leading ``./`` or ``/``."""

    normalized = value.strip().replace("\\", "/")
    normalized = re.sub(r"^\./+", "", normalized)
    normalized = normalized.lstrip("/")
    return re.sub(r"/{2,}", "/", normalized)


def sanitize_file_name(name: str, *, max_length: int = 120) -> str:
    """Reduce a file name to characters safe for a staging path."""

    cleaned = _UNSAFE_NAME_CHARS.sub("_", name).strip("._")
    return (cleaned or "file")[:max_length]
