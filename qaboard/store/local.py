"""
qaboard.store.local — Local JSON Document Store
================================================

Everything lives in one JSON document under ``STORAGE_KEY``.  Each call:

    1. takes the document's mutex (one per storage location + key),
    2. loads and normalizes the whole document,
    3. runs its mutation on the in-memory dict,
    4. writes the whole document back (writes only),

all on a worker thread via :func:`run_blocking`.  Holding the mutex across
load → mutate → save is what keeps two racing coroutines from losing each
other's updates.

A missing document is a first run.  A document that fails to parse is
logged and replaced by empty defaults; a document missing some collections
gets each one defaulted on its own.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from collections.abc import Callable
from typing import Any, TypeVar

from werkzeug.security import check_password_hash, generate_password_hash

from qaboard.constants import ROOM_CODE_ATTEMPTS, STORAGE_KEY
from qaboard.database.engine import run_blocking
from qaboard.engine.codes import generate_room_code
from qaboard.engine.leveling import apply_xp, new_profile
from qaboard.engine.lifecycle import ensure_can_manage, ensure_teacher
from qaboard.engine.reactions import tally_rows, toggle_row
from qaboard.exceptions import (
    NotFoundError,
    PermissionDeniedError,
    QABoardError,
    TransientBackendError,
    ValidationError,
)
from qaboard.mapping import (
    account_from_document,
    account_to_document,
    answer_from_document,
    answer_to_document,
    membership_from_document,
    membership_to_document,
    profile_from_document,
    profile_to_document,
    question_from_document,
    question_to_document,
    room_from_document,
    room_to_document,
    sort_questions,
)
from qaboard.models import (
    Answer,
    Membership,
    Profile,
    Question,
    QuestionStatus,
    ReactionType,
    Role,
    Room,
    Session,
    UserAccount,
)
from qaboard.store.base import UNSET, Store
from qaboard.store.blob import BlobStorage, MemoryBlobStorage

logger = logging.getLogger(__name__)

T = TypeVar("T")

_LIST_FIELDS = (
    "rooms",
    "questions",
    "users",
    "memberships",
    "questionReactions",
    "answerReactions",
)

# File-backed documents only, keyed by resolved directory and document key.
_FILE_LOCKS: dict[tuple[str, str], threading.Lock] = {}
_FILE_LOCKS_GUARD = threading.Lock()


def _lock_for(storage: BlobStorage, key: str) -> threading.Lock:
    """One mutex per backing location, shared by every store instance on it."""
    directory = getattr(storage, "directory", None)
    if directory is not None:
        with _FILE_LOCKS_GUARD:
            return _FILE_LOCKS.setdefault((str(directory.resolve()), key), threading.Lock())
    document_lock = getattr(storage, "document_lock", None)
    if document_lock is not None:
        return document_lock(key)
    return threading.Lock()


# ---------------------------------------------------------------------------
# Document shape
# ---------------------------------------------------------------------------
def empty_document() -> dict[str, Any]:
    doc: dict[str, Any] = {field: [] for field in _LIST_FIELDS}
    doc["profiles"] = {}
    doc["currentUserId"] = None
    return doc


def normalize_document(raw: Any) -> dict[str, Any]:
    """Default every collection independently; adopt the legacy ``profile``."""
    doc = empty_document()
    if not isinstance(raw, dict):
        return doc

    for field in _LIST_FIELDS:
        value = raw.get(field)
        if isinstance(value, list):
            doc[field] = [entry for entry in value if isinstance(entry, dict)]

    profiles = raw.get("profiles")
    if isinstance(profiles, dict):
        doc["profiles"] = {
            str(user_id): entry for user_id, entry in profiles.items() if isinstance(entry, dict)
        }

    current = raw.get("currentUserId")
    doc["currentUserId"] = current if isinstance(current, str) and current else None

    # Older documents kept one profile for whoever was signed in.
    legacy = raw.get("profile")
    owner = doc["currentUserId"]
    if isinstance(legacy, dict) and owner and owner not in doc["profiles"]:
        doc["profiles"][owner] = legacy

    return doc


def _find(rows: list[dict], entity_id: str) -> dict | None:
    for row in rows:
        if row.get("id") == entity_id:
            return row
    return None


def _find_answer(doc: dict, answer_id: str) -> tuple[dict, dict] | None:
    for question in doc["questions"]:
        for answer in question.get("answers") or []:
            if isinstance(answer, dict) and answer.get("id") == answer_id:
                return question, answer
    return None


def _new_id() -> str:
    return str(uuid.uuid4())


class LocalStore(Store):
    """Store backed by a single JSON document in :class:`BlobStorage`."""

    def __init__(self, storage: BlobStorage | None = None, key: str = STORAGE_KEY) -> None:
        self.storage = storage if storage is not None else MemoryBlobStorage()
        self.key = key
        self._lock = _lock_for(self.storage, key)

    # -----------------------------------------------------------------------
    # Load / save
    # -----------------------------------------------------------------------
    def load_document(self) -> dict[str, Any]:
        raw = self.storage.get_item(self.key)
        if raw is None:
            return empty_document()
        try:
            parsed = json.loads(raw)
        except ValueError:
            logger.warning("Local document %r is corrupt; resetting to defaults.", self.key)
            return empty_document()
        return normalize_document(parsed)

    def save_document(self, doc: dict[str, Any]) -> None:
        self.storage.set_item(self.key, json.dumps(doc, ensure_ascii=False))

    def _locked(self, fn: Callable[..., T], write: bool, *args: Any) -> T:
        with self._lock:
            doc = self.load_document()
            result = fn(doc, *args)
            if write:
                self.save_document(doc)
            return result

    async def _read(self, fn: Callable[..., T], *args: Any) -> T:
        return await self._run(fn, False, *args)

    async def _write(self, fn: Callable[..., T], *args: Any) -> T:
        return await self._run(fn, True, *args)

    async def _run(self, fn: Callable[..., T], write: bool, *args: Any) -> T:
        try:
            return await run_blocking(self._locked, fn, write, *args)
        except QABoardError:
            # PermissionDeniedError is also an OSError; let it through untouched.
            raise
        except OSError as exc:
            raise TransientBackendError(
                f"Local storage unavailable: {exc}", {"key": self.key}
            ) from exc

    # -----------------------------------------------------------------------
    # Document helpers
    # -----------------------------------------------------------------------
    @staticmethod
    def _require_user(doc: dict, session: Session) -> dict:
        user = _find(doc["users"], session.user_id)
        if user is None:
            raise PermissionDeniedError(
                "Not signed in", {"actor": session.user_id}
            )
        return user

    def _actor_role(self, doc: dict, session: Session) -> Role:
        return account_from_document(self._require_user(doc, session)).role

    @staticmethod
    def _question_entity(doc: dict, question: dict) -> Question:
        answers = [
            answer_from_document(
                entry,
                reactions=tally_rows(
                    doc["answerReactions"], target_field="answerId", target_id=entry.get("id")
                ),
            )
            for entry in question.get("answers") or []
            if isinstance(entry, dict)
        ]
        return question_from_document(
            question,
            reactions=tally_rows(
                doc["questionReactions"], target_field="questionId", target_id=question.get("id")
            ),
            answers=answers,
        )

    @staticmethod
    def _answer_entity(doc: dict, answer: dict) -> Answer:
        return answer_from_document(
            answer,
            reactions=tally_rows(
                doc["answerReactions"], target_field="answerId", target_id=answer.get("id")
            ),
        )

    @staticmethod
    def _ensure_profile(doc: dict, user_id: str) -> None:
        if user_id not in doc["profiles"]:
            doc["profiles"][user_id] = profile_to_document(new_profile())

    # -----------------------------------------------------------------------
    # Identity & session
    # -----------------------------------------------------------------------
    async def sign_up(self, name: str, role: Role, email: str, password: str) -> Session:
        normalized = email.strip().lower()

        def _sign_up(doc: dict) -> Session:
            if any((user.get("email") or "").lower() == normalized for user in doc["users"]):
                raise ValidationError("Email already registered", {"email": normalized})
            account = UserAccount(id=_new_id(), name=name, role=role, email=normalized)
            doc["users"].append(account_to_document(account, generate_password_hash(password)))
            self._ensure_profile(doc, account.id)
            doc["currentUserId"] = account.id
            return Session(user=account)

        return await self._write(_sign_up)

    async def sign_in(self, email: str, password: str) -> Session | None:
        normalized = email.strip().lower()

        def _sign_in(doc: dict) -> Session | None:
            for user in doc["users"]:
                if (user.get("email") or "").lower() != normalized:
                    continue
                password_hash = user.get("passwordHash")
                if not password_hash or not check_password_hash(password_hash, password):
                    return None
                self._ensure_profile(doc, user["id"])
                doc["currentUserId"] = user["id"]
                return Session(user=account_from_document(user))
            return None

        return await self._write(_sign_in)

    async def sign_out(self, session: Session) -> None:
        def _sign_out(doc: dict) -> None:
            if doc["currentUserId"] == session.user_id:
                doc["currentUserId"] = None

        await self._write(_sign_out)

    async def current_session(self) -> Session | None:
        def _current(doc: dict) -> Session | None:
            user_id = doc["currentUserId"]
            if not user_id:
                return None
            user = _find(doc["users"], user_id)
            return Session(user=account_from_document(user)) if user else None

        return await self._read(_current)

    async def update_account(
        self,
        session: Session,
        *,
        name: str | None = None,
        avatar_url: str | None | object = UNSET,
    ) -> UserAccount:
        def _update(doc: dict) -> UserAccount:
            user = self._require_user(doc, session)
            if name is not None:
                user["name"] = name
            if avatar_url is not UNSET:
                user["avatarUrl"] = avatar_url
            return account_from_document(user)

        return await self._write(_update)

    # -----------------------------------------------------------------------
    # Rooms
    # -----------------------------------------------------------------------
    async def create_room(
        self, session: Session, name: str, channel: str | None = None, ta_key: str | None = None
    ) -> Room:
        def _create(doc: dict) -> Room:
            ensure_teacher(
                self._actor_role(doc, session), actor_id=session.user_id, action="create rooms"
            )
            taken = {room.get("code") for room in doc["rooms"]}
            for _ in range(ROOM_CODE_ATTEMPTS):
                code = generate_room_code()
                if code not in taken:
                    break
            else:
                raise QABoardError("Could not allocate a unique room code")

            room = Room(id=_new_id(), code=code, name=name, channel=channel, ta_key=ta_key or None)
            doc["rooms"].insert(0, room_to_document(room))
            doc["memberships"].append(
                membership_to_document(Membership(user_id=session.user_id, room_id=room.id))
            )
            return room

        room = await self._write(_create)
        logger.info("Room %s created (code=%s)", room.id, room.code)
        return room

    async def find_room_by_code(self, session: Session, code: str) -> Room | None:
        def _find_code(doc: dict) -> Room | None:
            for room in doc["rooms"]:
                if room.get("code") == code:
                    return room_from_document(room)
            return None

        return await self._read(_find_code)

    async def add_membership(self, session: Session, room_id: str) -> None:
        def _join(doc: dict) -> None:
            self._require_user(doc, session)
            if _find(doc["rooms"], room_id) is None:
                raise NotFoundError("room", room_id)
            for entry in doc["memberships"]:
                if entry.get("userId") == session.user_id and entry.get("roomId") == room_id:
                    return
            doc["memberships"].append(
                membership_to_document(Membership(user_id=session.user_id, room_id=room_id))
            )

        await self._write(_join)

    async def list_joined_rooms(self, session: Session) -> list[Room]:
        def _list(doc: dict) -> list[Room]:
            joined = sorted(
                (
                    membership_from_document(entry)
                    for entry in doc["memberships"]
                    if entry.get("userId") == session.user_id
                ),
                key=lambda membership: membership.joined_at,
                reverse=True,
            )
            rooms = []
            for membership in joined:
                room = _find(doc["rooms"], membership.room_id)
                if room is not None:
                    rooms.append(room_from_document(room))
            return rooms

        return await self._read(_list)

    # -----------------------------------------------------------------------
    # Questions
    # -----------------------------------------------------------------------
    async def list_questions(self, session: Session, room_id: str) -> list[Question]:
        def _list(doc: dict) -> list[Question]:
            return sort_questions(
                self._question_entity(doc, question)
                for question in doc["questions"]
                if question.get("roomId") == room_id
            )

        return await self._read(_list)

    async def get_question(self, session: Session, question_id: str) -> Question | None:
        def _get(doc: dict) -> Question | None:
            question = _find(doc["questions"], question_id)
            return self._question_entity(doc, question) if question else None

        return await self._read(_get)

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
        def _create(doc: dict) -> Question:
            self._require_user(doc, session)
            if _find(doc["rooms"], room_id) is None:
                raise NotFoundError("room", room_id)
            question = Question(
                id=_new_id(),
                room_id=room_id,
                text=text,
                owner_id=owner_id or session.user_id,
                author=author,
                anonymous=bool(anonymous),
                xp_awarded=xp_awarded,
            )
            doc["questions"].insert(0, question_to_document(question))
            return question

        return await self._write(_create)

    async def update_question_status(
        self, session: Session, question_id: str, status: QuestionStatus
    ) -> Question | None:
        def _update(doc: dict) -> Question | None:
            question = _find(doc["questions"], question_id)
            if question is None:
                return None
            ensure_can_manage(
                session.user_id,
                self._actor_role(doc, session),
                question.get("ownerId"),
                entity="question",
                entity_id=question_id,
            )
            question["status"] = status.value
            return self._question_entity(doc, question)

        return await self._write(_update)

    async def delete_question(self, session: Session, question_id: str) -> bool:
        def _delete(doc: dict) -> bool:
            question = _find(doc["questions"], question_id)
            if question is None:
                return False
            ensure_can_manage(
                session.user_id,
                self._actor_role(doc, session),
                question.get("ownerId"),
                entity="question",
                entity_id=question_id,
            )
            answer_ids = {
                entry.get("id") for entry in question.get("answers") or [] if isinstance(entry, dict)
            }
            doc["questions"].remove(question)
            doc["questionReactions"] = [
                row for row in doc["questionReactions"] if row.get("questionId") != question_id
            ]
            doc["answerReactions"] = [
                row for row in doc["answerReactions"] if row.get("answerId") not in answer_ids
            ]
            return True

        return await self._write(_delete)

    async def toggle_question_reaction(
        self, session: Session, question_id: str, reaction_type: ReactionType
    ) -> Question | None:
        def _toggle(doc: dict) -> Question | None:
            question = _find(doc["questions"], question_id)
            if question is None:
                return None
            self._require_user(doc, session)
            toggle_row(
                doc["questionReactions"],
                target_field="questionId",
                target_id=question_id,
                user_id=session.user_id,
                reaction_type=reaction_type,
            )
            entity = self._question_entity(doc, question)
            question["reactions"] = entity.reactions.as_dict()
            return entity

        return await self._write(_toggle)

    # -----------------------------------------------------------------------
    # Answers
    # -----------------------------------------------------------------------
    async def get_answer(self, session: Session, answer_id: str) -> Answer | None:
        def _get(doc: dict) -> Answer | None:
            found = _find_answer(doc, answer_id)
            return self._answer_entity(doc, found[1]) if found else None

        return await self._read(_get)

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
        def _create(doc: dict) -> Answer:
            self._require_user(doc, session)
            question = _find(doc["questions"], question_id)
            if question is None:
                raise NotFoundError("question", question_id)
            answer = Answer(
                id=_new_id(),
                question_id=question_id,
                text=text,
                author=author,
                role=role,
                owner_id=owner_id or session.user_id,
                xp_awarded=xp_awarded,
            )
            answers = question.get("answers")
            if not isinstance(answers, list):
                answers = question["answers"] = []
            answers.append(answer_to_document(answer))
            return answer

        return await self._write(_create)

    async def update_answer(self, session: Session, answer_id: str, text: str) -> Answer | None:
        def _update(doc: dict) -> Answer | None:
            found = _find_answer(doc, answer_id)
            if found is None:
                return None
            _, answer = found
            ensure_can_manage(
                session.user_id,
                self._actor_role(doc, session),
                answer.get("ownerId"),
                entity="answer",
                entity_id=answer_id,
            )
            answer["text"] = text
            return self._answer_entity(doc, answer)

        return await self._write(_update)

    async def delete_answer(self, session: Session, answer_id: str) -> bool:
        def _delete(doc: dict) -> bool:
            found = _find_answer(doc, answer_id)
            if found is None:
                return False
            question, answer = found
            ensure_can_manage(
                session.user_id,
                self._actor_role(doc, session),
                answer.get("ownerId"),
                entity="answer",
                entity_id=answer_id,
            )
            question["answers"].remove(answer)
            doc["answerReactions"] = [
                row for row in doc["answerReactions"] if row.get("answerId") != answer_id
            ]
            return True

        return await self._write(_delete)

    async def toggle_answer_reaction(
        self, session: Session, answer_id: str, reaction_type: ReactionType
    ) -> Answer | None:
        def _toggle(doc: dict) -> Answer | None:
            found = _find_answer(doc, answer_id)
            if found is None:
                return None
            self._require_user(doc, session)
            _, answer = found
            toggle_row(
                doc["answerReactions"],
                target_field="answerId",
                target_id=answer_id,
                user_id=session.user_id,
                reaction_type=reaction_type,
            )
            entity = self._answer_entity(doc, answer)
            answer["reactions"] = entity.reactions.as_dict()
            return entity

        return await self._write(_toggle)

    # -----------------------------------------------------------------------
    # Profile
    # -----------------------------------------------------------------------
    async def get_profile(self, session: Session) -> Profile:
        def _get(doc: dict) -> Profile:
            return profile_from_document(doc["profiles"].get(session.user_id))

        return await self._read(_get)

    async def add_xp(self, session: Session, amount: float) -> Profile:
        def _add(doc: dict) -> Profile:
            self._require_user(doc, session)
            current = profile_from_document(doc["profiles"].get(session.user_id))
            updated = apply_xp(current, amount)
            doc["profiles"][session.user_id] = profile_to_document(updated)
            return updated

        return await self._write(_add)
