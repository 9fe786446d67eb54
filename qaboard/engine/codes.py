"""
qaboard.engine.codes — Room Join Codes
=======================================

Codes are short uppercase tokens.  Users may type one, paste it in lower
case, or paste a whole invite link carrying it as ``?room=CODE``.
"""

from __future__ import annotations

import secrets
from urllib.parse import parse_qs, urlparse

from qaboard.constants import JOIN_QUERY_PARAM, ROOM_CODE_ALPHABET, ROOM_CODE_LENGTH


def generate_room_code(length: int = ROOM_CODE_LENGTH) -> str:
    return "".join(secrets.choice(ROOM_CODE_ALPHABET) for _ in range(length))


def normalize_join_code(raw: str | None) -> str | None:
    """Extract and uppercase a join code; None when nothing usable remains."""
    if raw is None:
        return None
    text = raw.strip()
    if not text:
        return None

    if "?" in text or "://" in text:
        query = parse_qs(urlparse(text).query)
        values = query.get(JOIN_QUERY_PARAM)
        if not values:
            return None
        text = values[0].strip()

    return text.upper() or None
