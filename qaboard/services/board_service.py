"""
qaboard.services.board_service — The Data Access Facade
========================================================

The one entry point callers use.  It is built around a single
:class:`~qaboard.store.base.Store` chosen at start-up by
:func:`qaboard.store.factory.create_store` and never reveals which backend
that is.

Responsibilities layered on top of the store:

* explicit :class:`~qaboard.models.Session` on every call (who is acting);
* coercion of loose string inputs (status, role, reaction type, join code);
* XP grants for posting and the matching deduction on self-deletion;
* the self-service vs. staff variants of the status transitions;
* TA-key gating when a TA joins a room.

Errors from the store propagate unchanged; the facade adds none of its own
beyond ``ValidationError``/``PermissionDeniedError`` for the rules above.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Awaitable, Callable

from qaboard.constants import ANONYMOUS_AUTHOR, ANSWER_XP, DEFAULT_POLL_INTERVAL_SECONDS, QUESTION_XP
from qaboard.engine.codes import normalize_join_code
from qaboard.engine.lifecycle import ensure_owner, ensure_staff, parse_role, parse_status
from qaboard.engine.reactions import parse_reaction_type
from qaboard.exceptions import PermissionDeniedError
from qaboard.models import (
    Answer,
    Profile,
    Question,
    QuestionStatus,
    ReactionType,
    Role,
    Room,
    Session,
    UserAccount,
)
from qaboard.services.poller import RoomPoller
from qaboard.store.base import Store

logger = logging.getLogger(__name__)


def display_author(post: Question | Answer) -> str:
    """Name to show for a post; anonymous or unnamed questions show 匿名."""
    if isinstance(post, Question) and post.anonymous:
        return ANONYMOUS_AUTHOR
    return post.author or ANONYMOUS_AUTHOR


class BoardService:
    """Backend-agnostic API over one :class:`Store`."""

    def __init__(
        self, store: Store, *, poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS
    ) -> None:
        self._store = store
        self.poll_interval = poll_interval

    # -----------------------------------------------------------------------
    # Identity
    # -----------------------------------------------------------------------
    async def register_user(
        self, name: str, role: Role | str, email: str, password: str
    ) -> Session:
        session = await self._store.sign_up(name, parse_role(role), email, password)
        logger.info("Registered %s as %s", session.user_id, session.role.value)
        return session

    async def login_user(self, email: str, password: str) -> Session | None:
        return await self._store.sign_in(email, password)

    async def logout_user(self, session: Session) -> None:
        await self._store.sign_out(session)

    async def get_current_session(self) -> Session | None:
        return await self._store.current_session()

    async def update_display_name(self, session: Session, name: str) -> UserAccount:
        return await self._store.update_account(session, name=name)

    async def update_avatar(self, session: Session, avatar_url: str | None) -> UserAccount:
        return await self._store.update_account(session, avatar_url=avatar_url)

    # -----------------------------------------------------------------------
    # Rooms
    # -----------------------------------------------------------------------
    async def create_room(
        self,
        session: Session,
        name: str,
        channel: str | None = None,
        ta_key: str | None = None,
    ) -> Room:
        return await self._store.create_room(session, name, channel or None, ta_key or None)

    async def join_room(
        self, session: Session, code_or_url: str, ta_key: str | None = None
    ) -> Room | None:
        """Join by bare code or invite link.  None if no room has that code."""
        code = normalize_join_code(code_or_url)
        if code is None:
            return None
        room = await self._store.find_room_by_code(session, code)
        if room is None:
            return None
        if session.role is Role.TA and room.ta_key:
            if not ta_key or not secrets.compare_digest(ta_key, room.ta_key):
                raise PermissionDeniedError(
                    "TA key required to join this room as a TA", {"room": room.id}
                )
        await self._store.add_membership(session, room.id)
        logger.info("User %s joined room %s", session.user_id, room.code)
        return room

    async def list_joined_rooms(self, session: Session) -> list[Room]:
        return await self._store.list_joined_rooms(session)

    # -----------------------------------------------------------------------
    # Questions
    # -----------------------------------------------------------------------
    async def list_questions(self, session: Session, room_id: str) -> list[Question]:
        return await self._store.list_questions(session, room_id)

    async def get_question(self, session: Session, question_id: str) -> Question | None:
        return await self._store.get_question(session, question_id)

    async def create_question(
        self,
        session: Session,
        room_id: str,
        text: str,
        anonymous: bool = False,
        author: str | None = None,
    ) -> Question:
        """Post into *room_id*.  *author* overrides the display name unless anonymous."""
        question = await self._store.create_question(
            session,
            room_id,
            text,
            author=None if anonymous else (author or session.user.name),
            anonymous=anonymous,
            owner_id=session.user_id,
            xp_awarded=QUESTION_XP,
        )
        await self._store.add_xp(session, QUESTION_XP)
        return question

    async def update_question_status(
        self, session: Session, question_id: str, status: QuestionStatus | str
    ) -> Question | None:
        return await self._store.update_question_status(
            session, question_id, parse_status(status)
        )

    async def mark_understood(self, session: Session, question_id: str) -> Question | None:
        """Student self-service: the author marks their own question resolved."""
        question = await self._store.get_question(session, question_id)
        if question is None:
            return None
        ensure_owner(session, question.owner_id, entity="question", entity_id=question_id)
        return await self._store.update_question_status(
            session, question_id, QuestionStatus.RESOLVED
        )

    async def mark_answered(self, session: Session, question_id: str) -> Question | None:
        """Teacher/TA marks any question resolved."""
        ensure_staff(session, action="mark questions answered")
        return await self._store.update_question_status(
            session, question_id, QuestionStatus.RESOLVED
        )

    async def reopen(self, session: Session, question_id: str) -> Question | None:
        return await self._store.update_question_status(session, question_id, QuestionStatus.OPEN)

    async def add_question_reaction(
        self, session: Session, question_id: str, reaction_type: ReactionType | str
    ) -> Question | None:
        return await self._store.toggle_question_reaction(
            session, question_id, parse_reaction_type(reaction_type)
        )

    async def delete_question(self, session: Session, question_id: str) -> bool:
        question = await self._store.get_question(session, question_id)
        if question is None:
            return False
        deleted = await self._store.delete_question(session, question_id)
        if deleted and question.owner_id == session.user_id and question.xp_awarded:
            await self._store.add_xp(session, -question.xp_awarded)
        return deleted

    # -----------------------------------------------------------------------
    # Answers
    # -----------------------------------------------------------------------
    async def create_answer(self, session: Session, question_id: str, text: str) -> Answer:
        answer = await self._store.create_answer(
            session,
            question_id,
            text,
            author=session.user.name,
            role=session.role,
            owner_id=session.user_id,
            xp_awarded=ANSWER_XP,
        )
        await self._store.add_xp(session, ANSWER_XP)
        return answer

    async def update_answer(self, session: Session, answer_id: str, text: str) -> Answer | None:
        return await self._store.update_answer(session, answer_id, text)

    async def delete_answer(self, session: Session, answer_id: str) -> bool:
        answer = await self._store.get_answer(session, answer_id)
        if answer is None:
            return False
        deleted = await self._store.delete_answer(session, answer_id)
        if deleted and answer.owner_id == session.user_id and answer.xp_awarded:
            await self._store.add_xp(session, -answer.xp_awarded)
        return deleted

    async def add_answer_reaction(
        self, session: Session, answer_id: str, reaction_type: ReactionType | str
    ) -> Answer | None:
        return await self._store.toggle_answer_reaction(
            session, answer_id, parse_reaction_type(reaction_type)
        )

    # -----------------------------------------------------------------------
    # Profile
    # -----------------------------------------------------------------------
    async def get_profile(self, session: Session) -> Profile:
        return await self._store.get_profile(session)

    async def add_xp(self, session: Session, amount: float) -> Profile:
        return await self._store.add_xp(session, amount)

    # -----------------------------------------------------------------------
    # Refresh
    # -----------------------------------------------------------------------
    def poller(
        self,
        session: Session,
        room_id: str,
        on_update: Callable[[list[Question]], Awaitable[None] | None],
    ) -> RoomPoller:
        """A :class:`RoomPoller` that refreshes *room_id* every poll interval."""
        return RoomPoller(
            lambda: self.list_questions(session, room_id),
            on_update,
            interval=self.poll_interval,
        )
