"""Helpers for linking a GET account from the validated-login redirect."""

from __future__ import annotations

import re
import secrets
from urllib.parse import parse_qs, urlparse

_UUID_PATTERN = re.compile(r"([0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12})")
_SESSION_QUERY_KEYS = ("sessionId", "sid", "token")


def extract_validated_session_id(text: str) -> str | None:
    """Find the GET session UUID in a pasted validated URL or raw text."""

    trimmed = text.strip() if isinstance(text, str) else ""
    if not trimmed:
        return None

    match = _UUID_PATTERN.search(trimmed)
    if match:
        return match.group(1)

    parsed = urlparse(trimmed)
    if not parsed.scheme or not parsed.netloc:
        return None
    query = parse_qs(parsed.query)
    for key in _SESSION_QUERY_KEYS:
        for candidate in query.get(key, []):
            match = _UUID_PATTERN.search(candidate)
            if match:
                return match.group(1)
    return None


def generate_device_id() -> str:
    """16 hex characters identifying this service as a GET device."""

    return secrets.token_hex(8)


def generate_pin() -> str:
    return f"{secrets.randbelow(10_000):04d}"


__all__ = ["extract_validated_session_id", "generate_device_id", "generate_pin"]
