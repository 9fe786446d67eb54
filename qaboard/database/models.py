"""
qaboard.database.models — SQLAlchemy 2.0 Data Models
=====================================================

Schema of the remote-relational backend.

Tables:
- accounts           — Authentication identities (email + password hash)
- profiles           — Display name, role, avatar, XP state (1:1 accounts)
- rooms              — Classroom sessions keyed by a unique join code
- room_members        — Who joined which room (unique per pair)
- questions          — Posts inside a room
- answers            — Replies to a question
- question_reactions — One row per (question, user, type)
- answer_reactions   — One row per (answer, user, type)

Children reference parents with ``ON DELETE CASCADE`` so deleting a
question removes its answers and every reaction on both.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all QA Board ORM models."""


# ---------------------------------------------------------------------------
# Accounts & profiles
# ---------------------------------------------------------------------------
class AccountRow(Base):
    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    profile: Mapped[ProfileRow | None] = relationship(
        back_populates="account", uselist=False, cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<AccountRow id={self.id} email={self.email!r}>"


class ProfileRow(Base):
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), primary_key=True
    )
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="student")
    avatar_url: Mapped[str | None] = mapped_column(String(500), default=None)
    xp: Mapped[float] = mapped_column(Float, default=0)
    level: Mapped[int] = mapped_column(Integer, default=1)
    avatar_stage: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    account: Mapped[AccountRow] = relationship(back_populates="profile")

    def __repr__(self) -> str:
        return f"<ProfileRow id={self.id} name={self.display_name!r} lvl={self.level}>"


# ---------------------------------------------------------------------------
# Rooms & membership
# ---------------------------------------------------------------------------
class RoomRow(Base):
    __tablename__ = "rooms"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    code: Mapped[str] = mapped_column(String(16), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    channel: Mapped[str | None] = mapped_column(String(200), default=None)
    ta_key: Mapped[str | None] = mapped_column(String(100), default=None)
    created_by: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("accounts.id", ondelete="SET NULL"), default=None
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    def __repr__(self) -> str:
        return f"<RoomRow id={self.id} code={self.code!r}>"


class RoomMemberRow(Base):
    __tablename__ = "room_members"

    room_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("rooms.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), primary_key=True
    )
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    room: Mapped[RoomRow] = relationship()

    __table_args__ = (
        Index("ix_room_members_user_joined", "user_id", "joined_at"),
    )


# ---------------------------------------------------------------------------
# Questions & answers
# ---------------------------------------------------------------------------
class QuestionRow(Base):
    __tablename__ = "questions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    room_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False
    )
    text: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="open")
    author: Mapped[str | None] = mapped_column(String(100), default=None)
    anonymous: Mapped[bool] = mapped_column(Boolean, default=False)
    owner_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("accounts.id", ondelete="SET NULL"), default=None
    )
    xp_awarded: Mapped[float] = mapped_column(Float, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    answers: Mapped[list[AnswerRow]] = relationship(
        back_populates="question",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="AnswerRow.created_at",
    )

    __table_args__ = (
        Index("ix_questions_room_created", "room_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<QuestionRow id={self.id} status={self.status}>"


class AnswerRow(Base):
    __tablename__ = "answers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    question_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("questions.id", ondelete="CASCADE"), nullable=False
    )
    text: Mapped[str] = mapped_column(Text, nullable=False)
    author: Mapped[str | None] = mapped_column(String(100), default=None)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="student")
    owner_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("accounts.id", ondelete="SET NULL"), default=None
    )
    xp_awarded: Mapped[float] = mapped_column(Float, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    question: Mapped[QuestionRow] = relationship(back_populates="answers")

    def __repr__(self) -> str:
        return f"<AnswerRow id={self.id} question={self.question_id}>"


# ---------------------------------------------------------------------------
# Reactions — the unique constraint is the toggle's correctness anchor
# ---------------------------------------------------------------------------
class QuestionReactionRow(Base):
    __tablename__ = "question_reactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    question_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("questions.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        UniqueConstraint(
            "question_id", "user_id", "type", name="uq_question_reactions_target_user_type"
        ),
    )


class AnswerReactionRow(Base):
    __tablename__ = "answer_reactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    answer_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("answers.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        UniqueConstraint(
            "answer_id", "user_id", "type", name="uq_answer_reactions_target_user_type"
        ),
    )
