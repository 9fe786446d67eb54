"""
tests/test_engine_rules.py — Reaction, Lifecycle & Join-Code Rules
===================================================================

Pure helpers shared by both stores: toggle rows, tallies, ownership
checks, input coercion, join-code parsing.
"""

from __future__ import annotations

import pytest

from qaboard.constants import ROOM_CODE_ALPHABET, ROOM_CODE_LENGTH
from qaboard.engine.codes import generate_room_code, normalize_join_code
from qaboard.engine.lifecycle import (
    can_manage,
    ensure_can_manage,
    ensure_owner,
    ensure_staff,
    parse_role,
    parse_status,
)
from qaboard.engine.reactions import (
    ReactionState,
    parse_reaction_type,
    tally,
    tally_rows,
    toggle_row,
)
from qaboard.exceptions import PermissionDeniedError, ValidationError
from qaboard.models import QuestionStatus, Reactions, ReactionType, Role, Session, UserAccount


def _session(user_id: str = "u1", role: Role = Role.STUDENT) -> Session:
    return Session(user=UserAccount(id=user_id, name=user_id, role=role))


# ---------------------------------------------------------------------------
# Reactions
# ---------------------------------------------------------------------------
class TestToggleRow:
    def _toggle(self, rows, user_id="u1", reaction_type=ReactionType.LIKE):
        return toggle_row(
            rows,
            target_field="questionId",
            target_id="q1",
            user_id=user_id,
            reaction_type=reaction_type,
        )

    def test_absent_to_present(self):
        rows: list[dict] = []
        assert self._toggle(rows) is ReactionState.PRESENT
        assert rows == [{"questionId": "q1", "userId": "u1", "type": "like"}]

    def test_toggle_twice_restores(self):
        rows: list[dict] = []
        self._toggle(rows)
        assert self._toggle(rows) is ReactionState.ABSENT
        assert rows == []

    def test_types_are_independent(self):
        rows: list[dict] = []
        self._toggle(rows, reaction_type=ReactionType.LIKE)
        self._toggle(rows, reaction_type=ReactionType.THANKS)
        assert tally_rows(rows, target_field="questionId", target_id="q1") == Reactions(1, 1)

    def test_legacy_duplicates_collapse(self):
        """An older document with duplicate rows ends with none after one toggle."""
        row = {"questionId": "q1", "userId": "u1", "type": "like"}
        rows = [dict(row), dict(row)]
        assert self._toggle(rows) is ReactionState.ABSENT
        assert rows == []


class TestTally:
    def test_counts_each_row(self):
        assert tally(["like", "like", "thanks"]) == Reactions(like=2, thanks=1)

    def test_pre_aggregated_counts(self):
        assert tally(["like", "thanks"], [4, 2]) == Reactions(like=4, thanks=2)

    def test_unknown_types_ignored(self):
        assert tally(["like", "wow", ""]) == Reactions(like=1, thanks=0)

    def test_rows_for_other_targets_ignored(self):
        rows = [
            {"answerId": "a1", "userId": "u1", "type": "like"},
            {"answerId": "a2", "userId": "u1", "type": "like"},
        ]
        assert tally_rows(rows, target_field="answerId", target_id="a1").like == 1


class TestParsing:
    def test_reaction_type_from_string(self):
        assert parse_reaction_type("thanks") is ReactionType.THANKS

    def test_bad_reaction_type(self):
        with pytest.raises(ValidationError):
            parse_reaction_type("love")

    def test_status_from_string(self):
        assert parse_status("resolved") is QuestionStatus.RESOLVED

    def test_bad_status(self):
        with pytest.raises(ValidationError) as excinfo:
            parse_status("closed")
        assert excinfo.value.to_dict()["error"] == "VALIDATION_ERROR"

    def test_bad_role(self):
        with pytest.raises(ValidationError):
            parse_role("admin")


# ---------------------------------------------------------------------------
# Lifecycle / ownership
# ---------------------------------------------------------------------------
class TestOwnership:
    def test_owner_may_manage(self):
        assert can_manage("u1", Role.STUDENT, "u1")

    def test_other_student_may_not(self):
        assert not can_manage("u2", Role.STUDENT, "u1")

    def test_ownerless_post_only_staff(self):
        assert not can_manage("u2", Role.STUDENT, None)
        assert can_manage("t1", Role.TA, None)

    @pytest.mark.parametrize("role", [Role.TEACHER, Role.TA])
    def test_staff_may_manage_anything(self, role):
        assert can_manage("staff", role, "u1")

    def test_ensure_can_manage_raises_builtin_permission_error(self):
        with pytest.raises(PermissionError):
            ensure_can_manage("u2", Role.STUDENT, "u1", entity="question", entity_id="q1")

    def test_ensure_owner_rejects_staff_non_owner(self):
        with pytest.raises(PermissionDeniedError):
            ensure_owner(_session("t1", Role.TEACHER), "u1", entity="question", entity_id="q1")

    def test_ensure_staff(self):
        ensure_staff(_session("t1", Role.TA), action="test")
        with pytest.raises(PermissionDeniedError):
            ensure_staff(_session("u1"), action="test")


# ---------------------------------------------------------------------------
# Join codes
# ---------------------------------------------------------------------------
class TestJoinCodes:
    def test_generated_code_shape(self):
        code = generate_room_code()
        assert len(code) == ROOM_CODE_LENGTH
        assert set(code) <= set(ROOM_CODE_ALPHABET)
        assert code == code.upper()

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("abc123", "ABC123"),
            ("  XyZ789 ", "XYZ789"),
            ("https://board.example/join?room=ab12cd", "AB12CD"),
            ("/join?lang=ja&room=qq11ww", "QQ11WW"),
            ("https://board.example/join?lang=ja", None),
            ("", None),
            ("   ", None),
            (None, None),
        ],
    )
    def test_normalize(self, raw, expected):
        assert normalize_join_code(raw) == expected
