"""
qaboard.models — Backend-Agnostic Entities
===========================================

The shapes every caller sees, whichever store serviced the call.  Both
stores produce these through :mod:`qaboard.mapping`; nothing outside that
module knows about ORM rows or document dicts.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import UTC, datetime


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class Role(enum.StrEnum):
    """Account roles.  TAs share teacher moderation rights."""
    TEACHER = "teacher"
    STUDENT = "student"
    TA = "ta"


STAFF_ROLES: frozenset[Role] = frozenset({Role.TEACHER, Role.TA})


class QuestionStatus(enum.StrEnum):
    OPEN = "open"
    RESOLVED = "resolved"


class ReactionType(enum.StrEnum):
    LIKE = "like"
    THANKS = "thanks"


def utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class Reactions:
    """Per-type reaction counts for one question or answer."""

    like: int = 0
    thanks: int = 0

    def as_dict(self) -> dict[str, int]:
        return {"like": self.like, "thanks": self.thanks}


@dataclass(slots=True)
class Profile:
    """Gamification state.  ``level`` and ``avatar_stage`` derive from ``xp``."""

    xp: float = 0
    level: int = 1
    avatar_stage: int = 0


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class UserAccount:
    id: str
    name: str
    role: Role
    email: str = ""
    avatar_url: str | None = None

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


@dataclass(slots=True)
class Room:
    id: str
    code: str
    name: str
    channel: str | None = None
    ta_key: str | None = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class Membership:
    user_id: str
    room_id: str
    joined_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class Answer:
    id: str
    question_id: str
    text: str
    author: str | None = None
    role: Role = Role.STUDENT
    created_at: datetime = field(default_factory=utcnow)
    reactions: Reactions = field(default_factory=Reactions)
    owner_id: str | None = None
    xp_awarded: float = 0


@dataclass(slots=True)
class Question:
    id: str
    room_id: str
    text: str
    status: QuestionStatus = QuestionStatus.OPEN
    created_at: datetime = field(default_factory=utcnow)
    owner_id: str | None = None
    author: str | None = None
    anonymous: bool = False
    reactions: Reactions = field(default_factory=Reactions)
    answers: list[Answer] = field(default_factory=list)
    xp_awarded: float = 0


# ---------------------------------------------------------------------------
# Session — explicit replacement for a hidden "current user" pointer
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class Session:
    """Who is acting.  Passed into every facade call.

    ``access_token`` is only set by the remote store, which authenticates
    each call from the token rather than from ``user``.
    """

    user: UserAccount
    access_token: str | None = None

    @property
    def user_id(self) -> str:
        return self.user.id

    @property
    def role(self) -> Role:
        return self.user.role

    @property
    def is_staff(self) -> bool:
        return self.user.is_staff
