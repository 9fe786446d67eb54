"""
qaboard.engine.lifecycle — Question/Answer Status & Ownership Rules
====================================================================

Status cycles ``open ⇄ resolved`` and is never terminal.  Who may change
it, edit, or delete is decided here for the local store; the remote store
expresses the same rules as SQL predicates in
:mod:`qaboard.database.policies`.

Rules:

* The owner of a question/answer may change status, edit and delete it.
* Any teacher or TA may do the same to anyone's post.
* Any other student may not.
"""

from __future__ import annotations

from qaboard.exceptions import PermissionDeniedError, ValidationError
from qaboard.models import STAFF_ROLES, QuestionStatus, Role, Session


def parse_status(value: str | QuestionStatus) -> QuestionStatus:
    try:
        return QuestionStatus(value)
    except ValueError:
        raise ValidationError(
            f"Unknown question status: {value!r}",
            {"allowed": [s.value for s in QuestionStatus]},
        ) from None


def parse_role(value: str | Role) -> Role:
    try:
        return Role(value)
    except ValueError:
        raise ValidationError(
            f"Unknown role: {value!r}",
            {"allowed": [r.value for r in Role]},
        ) from None


def can_manage(actor_id: str, actor_role: Role, owner_id: str | None) -> bool:
    """True if the actor owns the post or holds a staff role."""
    if actor_role in STAFF_ROLES:
        return True
    return owner_id is not None and owner_id == actor_id


def ensure_can_manage(
    actor_id: str,
    actor_role: Role,
    owner_id: str | None,
    *,
    entity: str,
    entity_id: str,
) -> None:
    if not can_manage(actor_id, actor_role, owner_id):
        raise PermissionDeniedError(
            f"Not allowed to modify {entity} {entity_id}",
            {"entity": entity, "id": entity_id, "actor": actor_id},
        )


def ensure_owner(session: Session, owner_id: str | None, *, entity: str, entity_id: str) -> None:
    """Self-service actions ("understood", reopen) are for the owner only."""
    if owner_id is None or owner_id != session.user_id:
        raise PermissionDeniedError(
            f"Only the author may do this to {entity} {entity_id}",
            {"entity": entity, "id": entity_id, "actor": session.user_id},
        )


def ensure_staff(session: Session, *, action: str) -> None:
    if not session.is_staff:
        raise PermissionDeniedError(
            f"Only teachers and TAs may {action}",
            {"actor": session.user_id, "role": session.role.value},
        )


def ensure_teacher(role: Role, *, actor_id: str, action: str) -> None:
    if role is not Role.TEACHER:
        raise PermissionDeniedError(
            f"Only teachers may {action}",
            {"actor": actor_id, "role": role.value},
        )
