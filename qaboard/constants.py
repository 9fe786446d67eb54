"""
qaboard.constants — Shared Constants & Policy Knobs
====================================================

Single source of truth for the leveling policy, XP grants, and the
identifiers both stores agree on.  Import from here instead of scattering
magic numbers across call sites.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Leveling policy — banded: level = floor(xp / XP_PER_LEVEL) + BASE_LEVEL
# ---------------------------------------------------------------------------
XP_PER_LEVEL: int = 100
BASE_LEVEL: int = 1

# (minimum level, avatar stage), checked top-down.
AVATAR_STAGE_THRESHOLDS: tuple[tuple[int, int], ...] = (
    (12, 3),
    (7, 2),
    (3, 1),
)

# ---------------------------------------------------------------------------
# XP grants
# ---------------------------------------------------------------------------
QUESTION_XP: int = 12
ANSWER_XP: int = 12

# ---------------------------------------------------------------------------
# Rooms & display
# ---------------------------------------------------------------------------
ROOM_CODE_LENGTH: int = 6
ROOM_CODE_ALPHABET: str = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
ROOM_CODE_ATTEMPTS: int = 8
JOIN_QUERY_PARAM: str = "room"

ANONYMOUS_AUTHOR: str = "匿名"

# ---------------------------------------------------------------------------
# Local document
# ---------------------------------------------------------------------------
STORAGE_KEY: str = "lecture-qna-store"

# ---------------------------------------------------------------------------
# Timing defaults (overridable in config.yaml)
# ---------------------------------------------------------------------------
DEFAULT_POLL_INTERVAL_SECONDS: float = 5.0
DEFAULT_REQUEST_TIMEOUT_SECONDS: float = 10.0
DEFAULT_SESSION_TTL_HOURS: int = 24 * 7
