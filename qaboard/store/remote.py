"""
qaboard.store.remote — Remote Relational Store
===============================================

Entities live in the tables of :mod:`qaboard.database.models`.  Three
things make this backend behave like a hosted database rather than a
private one:

* **Authentication.**  ``sign_in``/``sign_up`` issue a signed access token
  (PyJWT, HS256, signed with the remote access key).  Every data call
  reads the acting user from that token, never from the caller's claims.
* **Row-level authorization.**  Writes carry the predicates from
  :mod:`qaboard.database.policies`.  A rejected write just affects zero
  rows; we follow up with an existence check to tell "gone" from "not
  allowed" and raise accordingly.
* **Live aggregates.**  Reaction counts are a ``GROUP BY`` over the
  reaction tables on every read; no counter column can drift.

Each operation runs synchronously on a worker thread via
:func:`run_blocking` and is bounded by ``request_timeout``: a transaction
that is still running at the deadline rolls back instead of committing.
Driver faults and timeouts surface as :class:`TransientBackendError`,
always after the rollback.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime, timedelta
from typing import Any, TypeVar

import jwt
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine, delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import InstrumentedAttribute, selectinload
from sqlalchemy.orm import Session as DbSession
from werkzeug.security import check_password_hash, generate_password_hash

from qaboard.constants import (
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_SESSION_TTL_HOURS,
    ROOM_CODE_ATTEMPTS,
)
from qaboard.database.engine import get_session, run_blocking
from qaboard.database.models import (
    AccountRow,
    AnswerReactionRow,
    AnswerRow,
    ProfileRow,
    QuestionReactionRow,
    QuestionRow,
    RoomMemberRow,
    RoomRow,
)
from qaboard.database.policies import can_create_room, owner_or_staff, self_only
from qaboard.engine.codes import generate_room_code
from qaboard.engine.leveling import apply_xp, new_profile
from qaboard.engine.reactions import ReactionState, tally
from qaboard.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    QABoardError,
    TransientBackendError,
    ValidationError,
)
from qaboard.mapping import (
    account_from_row,
    answer_from_row,
    profile_from_row,
    question_from_row,
    room_from_row,
)
from qaboard.models import (
    Answer,
    Profile,
    Question,
    QuestionStatus,
    Reactions,
    ReactionType,
    Role,
    Room,
    Session,
    UserAccount,
)
from qaboard.store.base import UNSET, Store

logger = logging.getLogger(__name__)

T = TypeVar("T")

JWT_ALGORITHM = "HS256"

_NO_SYNC = {"synchronize_session": False}

# Monotonic deadline of the current call; copied into the worker thread.
_deadline: ContextVar[float | None] = ContextVar("qaboard_remote_deadline", default=None)


class RemoteStore(Store):
    """Store backed by a relational database reached through SQLAlchemy."""

    def __init__(
        self,
        engine: Engine,
        access_key: str,
        *,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        session_ttl_hours: int = DEFAULT_SESSION_TTL_HOURS,
    ) -> None:
        if not access_key:
            raise RuntimeError("Remote access key is empty.")
        self.engine = engine
        self.request_timeout = request_timeout
        self.session_ttl = timedelta(hours=session_ttl_hours)
        self._access_key = access_key
        self._access_token: str | None = None

    # -----------------------------------------------------------------------
    # Transport
    # -----------------------------------------------------------------------
    @contextmanager
    def _session(self) -> Iterator[DbSession]:
        """Open a transaction that refuses to commit past the call's deadline.

        A worker thread cannot be interrupted, so the timeout is enforced
        here: late work is rolled back and reported as a timeout.
        """
        with get_session(self.engine) as db:
            yield db
            deadline = _deadline.get()
            if deadline is not None and time.monotonic() > deadline:
                raise TimeoutError("deadline passed before commit")

    async def _run(self, func_: Callable[..., T], *args: Any) -> T:
        token = _deadline.set(time.monotonic() + self.request_timeout)
        try:
            worker = asyncio.ensure_future(run_blocking(func_, *args))
        finally:
            _deadline.reset(token)
        try:
            try:
                return await asyncio.wait_for(
                    asyncio.shield(worker), timeout=self.request_timeout
                )
            except TimeoutError:
                # Wait for the worker to commit or roll back before answering.
                return await worker
        except TimeoutError as exc:
            raise TransientBackendError(
                f"Backend did not answer within {self.request_timeout:g}s"
            ) from exc
        except SQLAlchemyError as exc:
            logger.warning("Backend call %s failed: %s", func_.__name__, exc)
            raise TransientBackendError(
                "Backend request failed", {"reason": type(exc).__name__}
            ) from exc

    # -----------------------------------------------------------------------
    # Tokens
    # -----------------------------------------------------------------------
    def _issue_token(self, user_id: str) -> str:
        now = datetime.now(UTC)
        return jwt.encode(
            {"sub": user_id, "iat": now, "exp": now + self.session_ttl},
            self._access_key,
            algorithm=JWT_ALGORITHM,
        )

    def _token_subject(self, token: str | None) -> str | None:
        if not token:
            return None
        try:
            payload = jwt.decode(token, self._access_key, algorithms=[JWT_ALGORITHM])
        except InvalidTokenError:
            return None
        subject = payload.get("sub")
        return subject if isinstance(subject, str) else None

    def _actor(self, session: Session) -> str:
        """Authenticated user id for *session*, from its token alone."""
        subject = self._token_subject(session.access_token)
        if subject is None:
            raise PermissionDeniedError("Not signed in or session expired")
        return subject

    def _start_session(self, account: UserAccount) -> Session:
        token = self._issue_token(account.id)
        self._access_token = token
        return Session(user=account, access_token=token)

    # -----------------------------------------------------------------------
    # Read helpers (run inside a worker thread with an open DB session)
    # -----------------------------------------------------------------------
    @staticmethod
    def _count_reactions(
        db: DbSession, target: InstrumentedAttribute, ids: Sequence[str]
    ) -> dict[str, Reactions]:
        if not ids:
            return {}
        model = target.class_
        rows = db.execute(
            select(target, model.type, func.count())
            .where(target.in_(ids))
            .group_by(target, model.type)
        ).all()
        grouped: dict[str, list[tuple[str, int]]] = defaultdict(list)
        for target_id, reaction_type, count in rows:
            grouped[target_id].append((reaction_type, count))
        return {
            target_id: tally([t for t, _ in pairs], [c for _, c in pairs])
            for target_id, pairs in grouped.items()
        }

    def _hydrate(self, db: DbSession, rows: Sequence[QuestionRow]) -> list[Question]:
        question_ids = [row.id for row in rows]
        answer_ids = [answer.id for row in rows for answer in row.answers]
        by_question = self._count_reactions(db, QuestionReactionRow.question_id, question_ids)
        by_answer = self._count_reactions(db, AnswerReactionRow.answer_id, answer_ids)
        return [
            question_from_row(
                row,
                reactions=by_question.get(row.id),
                answers=[answer_from_row(a, by_answer.get(a.id)) for a in row.answers],
            )
            for row in rows
        ]

    def _load_question(self, db: DbSession, question_id: str) -> Question | None:
        row = db.scalar(
            select(QuestionRow)
            .options(selectinload(QuestionRow.answers))
            .where(QuestionRow.id == question_id)
        )
        if row is None:
            return None
        return self._hydrate(db, [row])[0]

    def _load_answer(self, db: DbSession, answer_id: str) -> Answer | None:
        row = db.get(AnswerRow, answer_id)
        if row is None:
            return None
        counts = self._count_reactions(db, AnswerReactionRow.answer_id, [answer_id])
        return answer_from_row(row, counts.get(answer_id))

    def _load_account(self, db: DbSession, user_id: str) -> UserAccount | None:
        account = db.get(AccountRow, user_id)
        if account is None:
            return None
        return account_from_row(account, db.get(ProfileRow, user_id))

    # -----------------------------------------------------------------------
    # Identity & session
    # -----------------------------------------------------------------------
    async def sign_up(self, name: str, role: Role, email: str, password: str) -> Session:
        normalized = email.strip().lower()

        def _sign_up() -> UserAccount:
            try:
                with self._session() as db:
                    taken = db.scalar(select(AccountRow.id).where(AccountRow.email == normalized))
                    if taken is not None:
                        raise ValidationError("Email already registered", {"email": normalized})
                    account = AccountRow(
                        email=normalized, password_hash=generate_password_hash(password)
                    )
                    db.add(account)
                    db.flush()
                    starting = new_profile()
                    profile = ProfileRow(
                        id=account.id,
                        display_name=name,
                        role=role.value,
                        xp=starting.xp,
                        level=starting.level,
                        avatar_stage=starting.avatar_stage,
                    )
                    db.add(profile)
                    db.flush()
                    return account_from_row(account, profile)
            except IntegrityError:
                # Lost a race with a concurrent sign-up for the same email.
                raise ValidationError("Email already registered", {"email": normalized}) from None

        account = await self._run(_sign_up)
        return self._start_session(account)

    async def sign_in(self, email: str, password: str) -> Session | None:
        normalized = email.strip().lower()

        def _sign_in() -> UserAccount | None:
            with self._session() as db:
                account = db.scalar(select(AccountRow).where(AccountRow.email == normalized))
                if account is None or not check_password_hash(account.password_hash, password):
                    return None
                profile = db.get(ProfileRow, account.id)
                if profile is None:
                    profile = ProfileRow(
                        id=account.id,
                        display_name=normalized.split("@", 1)[0],
                        role=Role.STUDENT.value,
                    )
                    db.add(profile)
                    db.flush()
                return account_from_row(account, profile)

        account = await self._run(_sign_in)
        if account is None:
            return None
        return self._start_session(account)

    async def sign_out(self, session: Session) -> None:
        if self._access_token is not None and self._access_token == session.access_token:
            self._access_token = None

    async def current_session(self) -> Session | None:
        token = self._access_token
        subject = self._token_subject(token)
        if subject is None:
            self._access_token = None
            return None

        def _current() -> UserAccount | None:
            with self._session() as db:
                return self._load_account(db, subject)

        account = await self._run(_current)
        if account is None:
            return None
        return Session(user=account, access_token=token)

    async def update_account(
        self,
        session: Session,
        *,
        name: str | None = None,
        avatar_url: str | None | object = UNSET,
    ) -> UserAccount:
        actor = self._actor(session)
        values: dict[str, Any] = {}
        if name is not None:
            values["display_name"] = name
        if avatar_url is not UNSET:
            values["avatar_url"] = avatar_url

        def _update() -> UserAccount:
            with self._session() as db:
                if values:
                    result = db.execute(
                        update(ProfileRow)
                        .where(self_only(ProfileRow.id, actor))
                        .values(**values)
                        .execution_options(**_NO_SYNC)
                    )
                    if result.rowcount == 0:
                        raise NotFoundError("profile", actor)
                account = self._load_account(db, actor)
                if account is None:
                    raise NotFoundError("account", actor)
                return account

        return await self._run(_update)

    # -----------------------------------------------------------------------
    # Rooms
    # -----------------------------------------------------------------------
    async def create_room(
        self, session: Session, name: str, channel: str | None = None, ta_key: str | None = None
    ) -> Room:
        actor = self._actor(session)

        def _create() -> Room:
            with self._session() as db:
                if not db.scalar(select(can_create_room(actor))):
                    raise PermissionDeniedError(
                        "Only teachers may create rooms", {"actor": actor}
                    )
                for _ in range(ROOM_CODE_ATTEMPTS):
                    code = generate_room_code()
                    if db.scalar(select(RoomRow.id).where(RoomRow.code == code)) is None:
                        break
                else:
                    raise QABoardError("Could not allocate a unique room code")

                row = RoomRow(
                    code=code, name=name, channel=channel, ta_key=ta_key or None, created_by=actor
                )
                db.add(row)
                db.flush()
                db.add(RoomMemberRow(room_id=row.id, user_id=actor))
                db.flush()
                return room_from_row(row)

        room = await self._run(_create)
        logger.info("Room %s created (code=%s)", room.id, room.code)
        return room

    async def find_room_by_code(self, session: Session, code: str) -> Room | None:
        self._actor(session)

        def _find() -> Room | None:
            with self._session() as db:
                row = db.scalar(select(RoomRow).where(RoomRow.code == code))
                return room_from_row(row) if row else None

        return await self._run(_find)

    async def add_membership(self, session: Session, room_id: str) -> None:
        actor = self._actor(session)

        def _join() -> None:
            try:
                with self._session() as db:
                    if db.get(RoomRow, room_id) is None:
                        raise NotFoundError("room", room_id)
                    if db.get(RoomMemberRow, (room_id, actor)) is None:
                        db.add(RoomMemberRow(room_id=room_id, user_id=actor))
                        db.flush()
            except IntegrityError:
                logger.debug("Membership %s/%s already recorded", room_id, actor)

        await self._run(_join)

    async def list_joined_rooms(self, session: Session) -> list[Room]:
        actor = self._actor(session)

        def _list() -> list[Room]:
            with self._session() as db:
                rows = db.scalars(
                    select(RoomRow)
                    .join(RoomMemberRow, RoomMemberRow.room_id == RoomRow.id)
                    .where(RoomMemberRow.user_id == actor)
                    .order_by(RoomMemberRow.joined_at.desc())
                ).all()
                return [room_from_row(row) for row in rows]

        return await self._run(_list)

    # -----------------------------------------------------------------------
    # Questions
    # -----------------------------------------------------------------------
    async def list_questions(self, session: Session, room_id: str) -> list[Question]:
        self._actor(session)

        def _list() -> list[Question]:
            with self._session() as db:
                rows = db.scalars(
                    select(QuestionRow)
                    .options(selectinload(QuestionRow.answers))
                    .where(QuestionRow.room_id == room_id)
                    .order_by(QuestionRow.created_at.desc())
                ).all()
                return self._hydrate(db, rows)

        return await self._run(_list)

    async def get_question(self, session: Session, question_id: str) -> Question | None:
        self._actor(session)

        def _get() -> Question | None:
            with self._session() as db:
                return self._load_question(db, question_id)

        return await self._run(_get)

    async def create_question(
        self,
        session: Session,
        room_id: str,
        text: str,
        author: str | None = None,
        anonymous: bool = False,
        owner_id: str | None = None,
        xp_awarded: float = 0,
    ) -> Question:
        actor = self._actor(session)
        if owner_id is not None and owner_id != actor:
            raise PermissionDeniedError("Cannot post on behalf of another user", {"actor": actor})

        def _create() -> Question:
            with self._session() as db:
                if db.get(RoomRow, room_id) is None:
                    raise NotFoundError("room", room_id)
                row = QuestionRow(
                    room_id=room_id,
                    text=text,
                    status=QuestionStatus.OPEN.value,
                    author=author,
                    anonymous=bool(anonymous),
                    owner_id=actor,
                    xp_awarded=xp_awarded,
                )
                db.add(row)
                db.flush()
                return question_from_row(row)

        return await self._run(_create)

    async def update_question_status(
        self, session: Session, question_id: str, status: QuestionStatus
    ) -> Question | None:
        actor = self._actor(session)

        def _update() -> Question | None:
            with self._session() as db:
                result = db.execute(
                    update(QuestionRow)
                    .where(QuestionRow.id == question_id, owner_or_staff(QuestionRow.owner_id, actor))
                    .values(status=status.value)
                    .execution_options(**_NO_SYNC)
                )
                if result.rowcount == 0:
                    if db.get(QuestionRow, question_id) is None:
                        return None
                    raise PermissionDeniedError(
                        f"Not allowed to modify question {question_id}",
                        {"entity": "question", "id": question_id, "actor": actor},
                    )
                return self._load_question(db, question_id)

        return await self._run(_update)

    async def delete_question(self, session: Session, question_id: str) -> bool:
        actor = self._actor(session)

        def _delete() -> bool:
            with self._session() as db:
                answer_ids = db.scalars(
                    select(AnswerRow.id).where(AnswerRow.question_id == question_id)
                ).all()
                result = db.execute(
                    delete(QuestionRow)
                    .where(QuestionRow.id == question_id, owner_or_staff(QuestionRow.owner_id, actor))
                    .execution_options(**_NO_SYNC)
                )
                if result.rowcount == 0:
                    if db.get(QuestionRow, question_id) is None:
                        return False
                    raise PermissionDeniedError(
                        f"Not allowed to delete question {question_id}",
                        {"entity": "question", "id": question_id, "actor": actor},
                    )
                # No-ops where the database already cascaded.
                if answer_ids:
                    db.execute(
                        delete(AnswerReactionRow)
                        .where(AnswerReactionRow.answer_id.in_(answer_ids))
                        .execution_options(**_NO_SYNC)
                    )
                    db.execute(
                        delete(AnswerRow)
                        .where(AnswerRow.id.in_(answer_ids))
                        .execution_options(**_NO_SYNC)
                    )
                db.execute(
                    delete(QuestionReactionRow)
                    .where(QuestionReactionRow.question_id == question_id)
                    .execution_options(**_NO_SYNC)
                )
                return True

        return await self._run(_delete)

    # -----------------------------------------------------------------------
    # Reactions
    # -----------------------------------------------------------------------
    @staticmethod
    def _insert_reaction(db: DbSession, row: QuestionReactionRow | AnswerReactionRow) -> None:
        """Insert inside a SAVEPOINT; uniqueness violations become ConflictError."""
        try:
            with db.begin_nested():
                db.add(row)
                db.flush()
        except IntegrityError as exc:
            raise ConflictError("Reaction already recorded") from exc

    def _toggle(
        self,
        db: DbSession,
        target: InstrumentedAttribute,
        target_id: str,
        actor: str,
        reaction_type: ReactionType,
    ) -> ReactionState:
        """Delete-then-insert toggle for one (target, user, type) tuple.

        Conflict policy: ignore.  If the insert collides with a row a
        concurrent call just wrote, the tuple is already PRESENT and this
        call is a no-op.
        """
        model = target.class_
        removed = db.execute(
            delete(model)
            .where(target == target_id, model.user_id == actor, model.type == reaction_type.value)
            .execution_options(**_NO_SYNC)
        ).rowcount
        if removed:
            return ReactionState.ABSENT

        try:
            self._insert_reaction(
                db, model(**{target.key: target_id}, user_id=actor, type=reaction_type.value)
            )
        except ConflictError:
            logger.debug(
                "Reaction race on %s/%s/%s resolved as no-op", target_id, actor, reaction_type
            )
        return ReactionState.PRESENT

    async def toggle_question_reaction(
        self, session: Session, question_id: str, reaction_type: ReactionType
    ) -> Question | None:
        actor = self._actor(session)

        def _toggle() -> Question | None:
            with self._session() as db:
                if db.get(QuestionRow, question_id) is None:
                    return None
                self._toggle(db, QuestionReactionRow.question_id, question_id, actor, reaction_type)
                # Same transaction, so the counts include this toggle.
                return self._load_question(db, question_id)

        return await self._run(_toggle)

    # -----------------------------------------------------------------------
    # Answers
    # -----------------------------------------------------------------------
    async def get_answer(self, session: Session, answer_id: str) -> Answer | None:
        self._actor(session)

        def _get() -> Answer | None:
            with self._session() as db:
                return self._load_answer(db, answer_id)

        return await self._run(_get)

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
        actor = self._actor(session)
        if owner_id is not None and owner_id != actor:
            raise PermissionDeniedError("Cannot post on behalf of another user", {"actor": actor})

        def _create() -> Answer:
            with self._session() as db:
                if db.get(QuestionRow, question_id) is None:
                    raise NotFoundError("question", question_id)
                row = AnswerRow(
                    question_id=question_id,
                    text=text,
                    author=author,
                    role=role.value,
                    owner_id=actor,
                    xp_awarded=xp_awarded,
                )
                db.add(row)
                db.flush()
                return answer_from_row(row)

        return await self._run(_create)

    async def update_answer(self, session: Session, answer_id: str, text: str) -> Answer | None:
        actor = self._actor(session)

        def _update() -> Answer | None:
            with self._session() as db:
                result = db.execute(
                    update(AnswerRow)
                    .where(AnswerRow.id == answer_id, owner_or_staff(AnswerRow.owner_id, actor))
                    .values(text=text)
                    .execution_options(**_NO_SYNC)
                )
                if result.rowcount == 0:
                    if db.get(AnswerRow, answer_id) is None:
                        return None
                    raise PermissionDeniedError(
                        f"Not allowed to modify answer {answer_id}",
                        {"entity": "answer", "id": answer_id, "actor": actor},
                    )
                return self._load_answer(db, answer_id)

        return await self._run(_update)

    async def delete_answer(self, session: Session, answer_id: str) -> bool:
        actor = self._actor(session)

        def _delete() -> bool:
            with self._session() as db:
                result = db.execute(
                    delete(AnswerRow)
                    .where(AnswerRow.id == answer_id, owner_or_staff(AnswerRow.owner_id, actor))
                    .execution_options(**_NO_SYNC)
                )
                if result.rowcount == 0:
                    if db.get(AnswerRow, answer_id) is None:
                        return False
                    raise PermissionDeniedError(
                        f"Not allowed to delete answer {answer_id}",
                        {"entity": "answer", "id": answer_id, "actor": actor},
                    )
                db.execute(
                    delete(AnswerReactionRow)
                    .where(AnswerReactionRow.answer_id == answer_id)
                    .execution_options(**_NO_SYNC)
                )
                return True

        return await self._run(_delete)

    async def toggle_answer_reaction(
        self, session: Session, answer_id: str, reaction_type: ReactionType
    ) -> Answer | None:
        actor = self._actor(session)

        def _toggle() -> Answer | None:
            with self._session() as db:
                if db.get(AnswerRow, answer_id) is None:
                    return None
                self._toggle(db, AnswerReactionRow.answer_id, answer_id, actor, reaction_type)
                return self._load_answer(db, answer_id)

        return await self._run(_toggle)

    # -----------------------------------------------------------------------
    # Profile
    # -----------------------------------------------------------------------
    async def get_profile(self, session: Session) -> Profile:
        actor = self._actor(session)

        def _get() -> Profile:
            with self._session() as db:
                return profile_from_row(db.get(ProfileRow, actor))

        return await self._run(_get)

    async def add_xp(self, session: Session, amount: float) -> Profile:
        actor = self._actor(session)

        def _add() -> Profile:
            with self._session() as db:
                row = db.scalar(
                    select(ProfileRow).where(self_only(ProfileRow.id, actor)).with_for_update()
                )
                if row is None:
                    raise NotFoundError("profile", actor)
                updated = apply_xp(profile_from_row(row), amount)
                row.xp = updated.xp
                row.level = updated.level
                row.avatar_stage = updated.avatar_stage
                return updated

        return await self._run(_add)
