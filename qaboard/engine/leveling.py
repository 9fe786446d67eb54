"""
qaboard.engine.leveling — XP → Level → Avatar Stage
====================================================

Pure derivation, no I/O.  Both stores call :func:`apply_xp` inside their
own read-modify-write so the clamping and recomputation live in one place.
"""

from __future__ import annotations

import math

from qaboard.constants import AVATAR_STAGE_THRESHOLDS, BASE_LEVEL, XP_PER_LEVEL
from qaboard.models import Profile


def level_for_xp(xp: float) -> int:
    """Banded level: every ``XP_PER_LEVEL`` points is one level, starting at 1."""
    return math.floor(max(xp, 0) / XP_PER_LEVEL) + BASE_LEVEL


def avatar_stage_for_level(level: int) -> int:
    for minimum, stage in AVATAR_STAGE_THRESHOLDS:
        if level >= minimum:
            return stage
    return 0


def profile_for_xp(xp: float) -> Profile:
    """Build a consistent Profile from *xp*, clamped at 0."""
    clamped = max(xp, 0)
    level = level_for_xp(clamped)
    return Profile(xp=clamped, level=level, avatar_stage=avatar_stage_for_level(level))


def new_profile() -> Profile:
    return profile_for_xp(0)


def apply_xp(profile: Profile, amount: float) -> Profile:
    """Return *profile* shifted by *amount* (may be negative), floored at 0 xp."""
    return profile_for_xp(profile.xp + amount)
