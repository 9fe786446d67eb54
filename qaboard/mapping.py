"""
qaboard.mapping — Row & Document → Entity Adapters
===================================================

The single place that knows what backend data looks like:

* ``*_from_row`` read SQLAlchemy rows from :mod:`qaboard.database.models`.
* ``*_from_document`` / ``*_to_document`` read and write the camelCase
  dicts kept in the local JSON document.

Every field is defaulted, so a nullable column or a key missing from an
older document never reaches callers as ``None`` where an entity expects a
value.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from qaboard.engine.leveling import profile_for_xp
from qaboard.models import (
    Answer,
    Membership,
    Profile,
    Question,
    QuestionStatus,
    Reactions,
    Role,
    Room,
    UserAccount,
    utcnow,
)

if TYPE_CHECKING:
    from qaboard.database.models import (
        AccountRow,
        AnswerRow,
        ProfileRow,
        QuestionRow,
        RoomRow,
    )


# ---------------------------------------------------------------------------
# Scalar helpers
# ---------------------------------------------------------------------------
def parse_timestamp(value: Any) -> datetime:
    """ISO string or datetime → aware UTC datetime.  Garbage → now."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return utcnow()
    else:
        return utcnow()
    if parsed.tzinfo is None:
        # SQLite hands back naive values for timezone-aware columns.
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def format_timestamp(value: datetime) -> str:
    return value.astimezone(UTC).isoformat()


def _role(value: Any, default: Role = Role.STUDENT) -> Role:
    try:
        return Role(value)
    except ValueError:
        return default


def _status(value: Any) -> QuestionStatus:
    try:
        return QuestionStatus(value)
    except ValueError:
        return QuestionStatus.OPEN


def _number(value: Any, default: float = 0) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return value


def reactions_from_value(value: Any) -> Reactions:
    if not isinstance(value, Mapping):
        return Reactions()
    return Reactions(
        like=max(int(_number(value.get("like"))), 0),
        thanks=max(int(_number(value.get("thanks"))), 0),
    )


def sort_answers(answers: Iterable[Answer]) -> list[Answer]:
    return sorted(answers, key=lambda answer: answer.created_at)


def sort_questions(questions: Iterable[Question]) -> list[Question]:
    """Newest first.  Stable, so equal timestamps keep insertion order."""
    return sorted(questions, key=lambda question: question.created_at, reverse=True)


# ---------------------------------------------------------------------------
# Remote rows
# ---------------------------------------------------------------------------
def room_from_row(row: RoomRow) -> Room:
    return Room(
        id=row.id,
        code=row.code,
        name=row.name or "",
        channel=row.channel,
        ta_key=row.ta_key or None,
        created_at=parse_timestamp(row.created_at),
    )


def answer_from_row(row: AnswerRow, reactions: Reactions | None = None) -> Answer:
    return Answer(
        id=row.id,
        question_id=row.question_id,
        text=row.text or "",
        author=row.author,
        role=_role(row.role),
        created_at=parse_timestamp(row.created_at),
        reactions=reactions or Reactions(),
        owner_id=row.owner_id,
        xp_awarded=_number(row.xp_awarded),
    )


def question_from_row(
    row: QuestionRow,
    *,
    reactions: Reactions | None = None,
    answers: Iterable[Answer] = (),
) -> Question:
    return Question(
        id=row.id,
        room_id=row.room_id,
        text=row.text or "",
        status=_status(row.status),
        created_at=parse_timestamp(row.created_at),
        owner_id=row.owner_id,
        author=row.author,
        anonymous=bool(row.anonymous),
        reactions=reactions or Reactions(),
        answers=sort_answers(answers),
        xp_awarded=_number(row.xp_awarded),
    )


def profile_from_row(row: ProfileRow | None) -> Profile:
    if row is None:
        return profile_for_xp(0)
    return profile_for_xp(_number(row.xp))


def account_from_row(account: AccountRow, profile: ProfileRow | None) -> UserAccount:
    return UserAccount(
        id=account.id,
        name=(profile.display_name if profile else None) or "",
        role=_role(profile.role if profile else None),
        email=account.email or "",
        avatar_url=profile.avatar_url if profile else None,
    )


# ---------------------------------------------------------------------------
# Local document
# ---------------------------------------------------------------------------
def room_from_document(doc: Mapping[str, Any]) -> Room:
    return Room(
        id=str(doc.get("id", "")),
        code=str(doc.get("code", "")),
        name=str(doc.get("name", "")),
        channel=doc.get("channel") or None,
        ta_key=doc.get("taKey") or doc.get("ta_key") or None,
        created_at=parse_timestamp(doc.get("createdAt")),
    )


def room_to_document(room: Room) -> dict[str, Any]:
    return {
        "id": room.id,
        "code": room.code,
        "name": room.name,
        "channel": room.channel,
        "taKey": room.ta_key,
        "createdAt": format_timestamp(room.created_at),
    }


def answer_from_document(doc: Mapping[str, Any], reactions: Reactions | None = None) -> Answer:
    return Answer(
        id=str(doc.get("id", "")),
        question_id=str(doc.get("questionId", "")),
        text=str(doc.get("text", "")),
        author=doc.get("author"),
        role=_role(doc.get("role")),
        created_at=parse_timestamp(doc.get("createdAt")),
        reactions=reactions if reactions is not None else reactions_from_value(doc.get("reactions")),
        owner_id=doc.get("ownerId"),
        xp_awarded=_number(doc.get("xpAwarded")),
    )


def answer_to_document(answer: Answer) -> dict[str, Any]:
    return {
        "id": answer.id,
        "questionId": answer.question_id,
        "text": answer.text,
        "author": answer.author,
        "role": answer.role.value,
        "createdAt": format_timestamp(answer.created_at),
        "reactions": answer.reactions.as_dict(),
        "ownerId": answer.owner_id,
        "xpAwarded": answer.xp_awarded,
    }


def question_from_document(
    doc: Mapping[str, Any],
    *,
    reactions: Reactions | None = None,
    answers: Iterable[Answer] | None = None,
) -> Question:
    if answers is None:
        raw_answers = doc.get("answers")
        answers = [
            answer_from_document(entry)
            for entry in (raw_answers if isinstance(raw_answers, list) else [])
            if isinstance(entry, Mapping)
        ]
    return Question(
        id=str(doc.get("id", "")),
        room_id=str(doc.get("roomId", "")),
        text=str(doc.get("text", "")),
        status=_status(doc.get("status")),
        created_at=parse_timestamp(doc.get("createdAt")),
        owner_id=doc.get("ownerId"),
        author=doc.get("author"),
        anonymous=bool(doc.get("anonymous", False)),
        reactions=reactions if reactions is not None else reactions_from_value(doc.get("reactions")),
        answers=sort_answers(answers),
        xp_awarded=_number(doc.get("xpAwarded")),
    )


def question_to_document(question: Question) -> dict[str, Any]:
    return {
        "id": question.id,
        "roomId": question.room_id,
        "text": question.text,
        "status": question.status.value,
        "createdAt": format_timestamp(question.created_at),
        "ownerId": question.owner_id,
        "author": question.author,
        "anonymous": question.anonymous,
        "reactions": question.reactions.as_dict(),
        "answers": [answer_to_document(answer) for answer in question.answers],
        "xpAwarded": question.xp_awarded,
    }


def profile_from_document(doc: Any) -> Profile:
    """Only ``xp`` is trusted; level and stage are always re-derived."""
    if not isinstance(doc, Mapping):
        return profile_for_xp(0)
    return profile_for_xp(_number(doc.get("xp")))


def profile_to_document(profile: Profile) -> dict[str, Any]:
    return {"xp": profile.xp, "level": profile.level, "avatarStage": profile.avatar_stage}


def account_from_document(doc: Mapping[str, Any]) -> UserAccount:
    return UserAccount(
        id=str(doc.get("id", "")),
        name=str(doc.get("name", "")),
        role=_role(doc.get("role")),
        email=str(doc.get("email") or ""),
        avatar_url=doc.get("avatarUrl") or None,
    )


def account_to_document(account: UserAccount, password_hash: str | None) -> dict[str, Any]:
    return {
        "id": account.id,
        "name": account.name,
        "role": account.role.value,
        "email": account.email,
        "avatarUrl": account.avatar_url,
        "passwordHash": password_hash,
    }


def membership_to_document(membership: Membership) -> dict[str, Any]:
    return {
        "userId": membership.user_id,
        "roomId": membership.room_id,
        "joinedAt": format_timestamp(membership.joined_at),
    }


def membership_from_document(doc: Mapping[str, Any]) -> Membership:
    return Membership(
        user_id=str(doc.get("userId", "")),
        room_id=str(doc.get("roomId", "")),
        joined_at=parse_timestamp(doc.get("joinedAt")),
    )
