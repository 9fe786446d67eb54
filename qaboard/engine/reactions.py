"""
qaboard.engine.reactions — Like/Thanks Toggle State Machine
============================================================

Each ``(target, user, type)`` tuple is either ABSENT or PRESENT.  A toggle
flips it: ABSENT → PRESENT inserts the tuple, PRESENT → ABSENT removes it.
Twice restores the original state; it is not a "set like" operation.

The helpers here are shared by both stores:

* :func:`toggle_row` mutates the local document's reaction rows.
* :func:`tally` turns reaction type values (document rows or a SQL
  ``GROUP BY``) into a :class:`Reactions` value.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable

from qaboard.exceptions import ValidationError
from qaboard.models import Reactions, ReactionType

_KNOWN_TYPES = frozenset(t.value for t in ReactionType)


class ReactionState(enum.Enum):
    ABSENT = "absent"
    PRESENT = "present"


def parse_reaction_type(value: str | ReactionType) -> ReactionType:
    """Coerce *value* to a :class:`ReactionType` or raise ValidationError."""
    try:
        return ReactionType(value)
    except ValueError:
        raise ValidationError(
            f"Unknown reaction type: {value!r}",
            {"allowed": [t.value for t in ReactionType]},
        ) from None


def tally(types: Iterable[str], counts: Iterable[int] | None = None) -> Reactions:
    """Count reaction *types* into a :class:`Reactions`.

    With *counts*, each type is paired with a pre-aggregated count (as
    returned by ``GROUP BY type``).  Unknown types are ignored.
    """
    reactions = Reactions()
    pairs = zip(types, counts) if counts is not None else ((t, 1) for t in types)
    for raw_type, count in pairs:
        if raw_type in _KNOWN_TYPES:
            setattr(reactions, raw_type, getattr(reactions, raw_type) + int(count))
    return reactions


def toggle_row(
    rows: list[dict],
    *,
    target_field: str,
    target_id: str,
    user_id: str,
    reaction_type: ReactionType,
) -> ReactionState:
    """Flip the tuple's presence in *rows* in place and return the new state.

    Any duplicates left behind by an older document are removed together,
    so at most one row per tuple survives.
    """
    matches = [
        row for row in rows
        if row.get(target_field) == target_id
        and row.get("userId") == user_id
        and row.get("type") == reaction_type.value
    ]
    if matches:
        for row in matches:
            rows.remove(row)
        return ReactionState.ABSENT

    rows.append({
        target_field: target_id,
        "userId": user_id,
        "type": reaction_type.value,
    })
    return ReactionState.PRESENT


def tally_rows(rows: Iterable[dict], *, target_field: str, target_id: str) -> Reactions:
    """Count the document rows that reference *target_id*."""
    return tally(
        row.get("type", "") for row in rows if row.get(target_field) == target_id
    )
