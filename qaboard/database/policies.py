"""
qaboard.database.policies — Row-Level Authorization Predicates
===============================================================

The remote backend decides who may write a row inside the statement
itself: every UPDATE/DELETE carries a predicate built here, and the actor's
role is read from ``profiles`` in the same statement rather than trusted
from the caller.  A rejected write therefore shows up only as "zero rows
affected", which :mod:`qaboard.store.remote` turns into an explicit error.
"""

from __future__ import annotations

from sqlalchemy import ColumnElement, and_, exists, or_, select
from sqlalchemy.orm import InstrumentedAttribute

from qaboard.database.models import ProfileRow
from qaboard.models import STAFF_ROLES, Role


def actor_has_role(actor_id: str, roles) -> ColumnElement[bool]:
    return exists(
        select(ProfileRow.id).where(
            ProfileRow.id == actor_id,
            ProfileRow.role.in_([role.value for role in roles]),
        )
    )


def actor_is_staff(actor_id: str) -> ColumnElement[bool]:
    return actor_has_role(actor_id, STAFF_ROLES)


def owner_or_staff(owner_column: InstrumentedAttribute, actor_id: str) -> ColumnElement[bool]:
    """Predicate for editing/deleting a post: its owner or any teacher/TA."""
    return or_(
        and_(owner_column.is_not(None), owner_column == actor_id),
        actor_is_staff(actor_id),
    )


def self_only(id_column: InstrumentedAttribute, actor_id: str) -> ColumnElement[bool]:
    """Predicate for rows only their subject may touch (own profile)."""
    return id_column == actor_id


def can_create_room(actor_id: str) -> ColumnElement[bool]:
    return actor_has_role(actor_id, (Role.TEACHER,))
