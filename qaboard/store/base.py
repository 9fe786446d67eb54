"""
qaboard.store.base — The Store Contract
========================================

One behavioral contract, two implementations:

* :class:`qaboard.store.local.LocalStore` — a JSON document in named-blob
  storage, read and rewritten whole on every call.
* :class:`qaboard.store.remote.RemoteStore` — a relational database with
  token authentication and row-level write policies.

Every method is a coroutine.  Inputs and outputs are the entities from
:mod:`qaboard.models`; no backend-native shape crosses this boundary.
Errors are the ones in :mod:`qaboard.exceptions`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

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

# Sentinel for "argument not supplied" where None is a meaningful value.
UNSET = object()


class Store(ABC):
    """Persistent entity store."""

    # -----------------------------------------------------------------------
    # Identity & session
    # -----------------------------------------------------------------------
    @abstractmethod
    async def sign_up(self, name: str, role: Role, email: str, password: str) -> Session:
        """Create an account plus its profile and start a session.

        Raises ValidationError if *email* is already registered.
        """

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> Session | None:
        """Start a session, or return None on bad credentials."""

    @abstractmethod
    async def sign_out(self, session: Session) -> None: ...

    @abstractmethod
    async def current_session(self) -> Session | None:
        """Restore the persisted session, if any is still valid."""

    @abstractmethod
    async def update_account(
        self,
        session: Session,
        *,
        name: str | None = None,
        avatar_url: str | None | object = UNSET,
    ) -> UserAccount: ...

    # -----------------------------------------------------------------------
    # Rooms
    # -----------------------------------------------------------------------
    @abstractmethod
    async def create_room(
        self, session: Session, name: str, channel: str | None = None, ta_key: str | None = None
    ) -> Room:
        """Create a room with a fresh unique code; the creator joins it."""

    @abstractmethod
    async def find_room_by_code(self, session: Session, code: str) -> Room | None: ...

    @abstractmethod
    async def add_membership(self, session: Session, room_id: str) -> None:
        """Record that the session user joined *room_id* (idempotent)."""

    @abstractmethod
    async def list_joined_rooms(self, session: Session) -> list[Room]:
        """Rooms the session user joined, most recent first."""

    # -----------------------------------------------------------------------
    # Questions
    # -----------------------------------------------------------------------
    @abstractmethod
    async def list_questions(self, session: Session, room_id: str) -> list[Question]:
        """Newest first; answers oldest first; counts from reaction rows."""

    @abstractmethod
    async def get_question(self, session: Session, question_id: str) -> Question | None: ...

    @abstractmethod
    async def create_question(
        self,
        session: Session,
        room_id: str,
        text: str,
        author: str | None = None,
        anonymous: bool = False,
        owner_id: str | None = None,
        xp_awarded: float = 0,
    ) -> Question: ...

    @abstractmethod
    async def update_question_status(
        self, session: Session, question_id: str, status: QuestionStatus
    ) -> Question | None:
        """None if the question is gone; PermissionDeniedError if not allowed."""

    @abstractmethod
    async def delete_question(self, session: Session, question_id: str) -> bool:
        """Delete with cascade.  False if already gone; raises if not allowed."""

    @abstractmethod
    async def toggle_question_reaction(
        self, session: Session, question_id: str, reaction_type: ReactionType
    ) -> Question | None: ...

    # -----------------------------------------------------------------------
    # Answers
    # -----------------------------------------------------------------------
    @abstractmethod
    async def get_answer(self, session: Session, answer_id: str) -> Answer | None: ...

    @abstractmethod
    async def create_answer(
        self,
        session: Session,
        question_id: str,
        text: str,
        author: str | None,
        role: Role,
        owner_id: str | None = None,
        xp_awarded: float = 0,
    ) -> Answer:
        """Raises NotFoundError if the question does not exist."""

    @abstractmethod
    async def update_answer(self, session: Session, answer_id: str, text: str) -> Answer | None: ...

    @abstractmethod
    async def delete_answer(self, session: Session, answer_id: str) -> bool: ...

    @abstractmethod
    async def toggle_answer_reaction(
        self, session: Session, answer_id: str, reaction_type: ReactionType
    ) -> Answer | None: ...

    # -----------------------------------------------------------------------
    # Profile
    # -----------------------------------------------------------------------
    @abstractmethod
    async def get_profile(self, session: Session) -> Profile: ...

    @abstractmethod
    async def add_xp(self, session: Session, amount: float) -> Profile:
        """Atomic read-modify-write; xp floors at 0."""
